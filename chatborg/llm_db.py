# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at http://mozilla.org/MPL/2.0/.
"""
Persistence for conversations and image prompts.

Both repositories run on a shared SQLAlchemy async engine. Postgres (asyncpg)
is the production target; the tests run the same code on SQLite (aiosqlite).
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    Integer,
    Interval,
    MetaData,
    String,
    Table,
    Text,
    null,
    select,
    text,
    update,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from chatborg.errors import NotFoundError, PersistenceError
from chatborg.models import Chat, Message, Prompt

logger = logging.getLogger(__name__)

# --- Schema ---

metadata = MetaData()

JSONDocument = JSON(none_as_null=True).with_variant(
    postgresql.JSONB(none_as_null=True), "postgresql"
)

chats_table = Table(
    "chats",
    metadata,
    Column("id", BigInteger, primary_key=True, autoincrement=False),
    Column("topic_id", BigInteger, primary_key=True, autoincrement=False),
    Column("text_model", String, nullable=False),
    Column("image_model", String, nullable=False),
    Column("ttl", Interval, nullable=False),
    Column("system_prompt", Text, nullable=False, server_default=""),
    Column("messages", JSONDocument, nullable=True),
    Column("last_update", DateTime(timezone=True), nullable=True),
)

prompts_table = Table(
    "prompts",
    metadata,
    # SQLite only autoincrements INTEGER PRIMARY KEY columns
    Column(
        "id",
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    ),
    Column("text", Text, nullable=False),
)


# --- Engine ---

POOL_SIZE = 25
POOL_RECYCLE = 5 * 60


def _echo_from_bundebug(bundebug: int):
    if bundebug >= 2:
        return "debug"
    return bundebug == 1


def build_engine(dsn: str, *, bundebug: int = 0) -> AsyncEngine:
    """
    Creates an async engine from a libpq-style or SQLAlchemy DSN.

    `postgres://` URLs are moved onto the asyncpg driver and their `sslmode`
    query parameter becomes asyncpg's `ssl` connect argument.
    """
    url = make_url(dsn)
    connect_args = {}
    engine_kwargs = {}

    if url.drivername in ("postgres", "postgresql", "postgresql+asyncpg"):
        url = url.set(drivername="postgresql+asyncpg")
        sslmode = url.query.get("sslmode")
        if sslmode is not None:
            url = url.difference_update_query(["sslmode"])
            connect_args["ssl"] = sslmode
        engine_kwargs.update(
            pool_size=POOL_SIZE,
            max_overflow=0,
            pool_recycle=POOL_RECYCLE,
            pool_pre_ping=True,
        )
    elif url.drivername == "sqlite":
        url = url.set(drivername="sqlite+aiosqlite")

    return create_async_engine(
        url,
        echo=_echo_from_bundebug(bundebug),
        connect_args=connect_args,
        **engine_kwargs,
    )


async def ping(engine: AsyncEngine):
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        raise PersistenceError(f"database is unreachable: {e}") from e


def _insert_for(engine: AsyncEngine):
    if engine.dialect.name == "postgresql":
        return postgresql.insert
    if engine.dialect.name == "sqlite":
        return sqlite.insert
    raise PersistenceError(f"unsupported database dialect: {engine.dialect.name}")


def _as_utc(value):
    #: SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# --- Repositories ---


class ChatRepository:
    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def save(self, chat: Chat):
        """Inserts or updates the chat, stamping `last_update` with the current time."""
        now = datetime.now(timezone.utc)
        if chat.last_update is not None and now <= chat.last_update:
            now = chat.last_update + timedelta(microseconds=1)

        messages = None
        if chat.messages is not None:
            messages = [m.model_dump(mode="json") for m in chat.messages]

        values = {
            "text_model": chat.text_model,
            "image_model": chat.image_model,
            "ttl": chat.ttl,
            "system_prompt": chat.system_prompt,
            "messages": messages,
            "last_update": now,
        }
        insert = _insert_for(self.engine)
        stmt = insert(chats_table).values(id=chat.id, topic_id=chat.topic_id, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[chats_table.c.id, chats_table.c.topic_id],
            set_=values,
        )
        try:
            async with self.engine.begin() as conn:
                await conn.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to save chat {chat.id}/{chat.topic_id}: {e}") from e

        chat.last_update = now

    async def get(self, chat_id: int, topic_id: int) -> Chat:
        stmt = select(chats_table).where(
            chats_table.c.id == chat_id,
            chats_table.c.topic_id == topic_id,
        )
        try:
            async with self.engine.connect() as conn:
                row = (await conn.execute(stmt)).mappings().first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to load chat {chat_id}/{topic_id}: {e}") from e

        if row is None:
            raise NotFoundError(f"chat {chat_id}/{topic_id} not found")

        messages = row["messages"]
        return Chat(
            id=row["id"],
            topic_id=row["topic_id"],
            text_model=row["text_model"],
            image_model=row["image_model"],
            ttl=row["ttl"],
            system_prompt=row["system_prompt"] or "",
            messages=(
                [Message.model_validate(m) for m in messages]
                if messages is not None
                else None
            ),
            last_update=_as_utc(row["last_update"]),
        )

    async def delete_messages(self, chat_id: int, topic_id: int):
        """Drops the stored history. `last_update` is left as it was."""
        stmt = (
            update(chats_table)
            .where(
                chats_table.c.id == chat_id,
                chats_table.c.topic_id == topic_id,
            )
            .values(messages=null())
        )
        try:
            async with self.engine.begin() as conn:
                await conn.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"failed to clear messages of chat {chat_id}/{topic_id}: {e}"
            ) from e


class PromptRepository:
    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def save(self, prompt: Prompt) -> int:
        stmt = prompts_table.insert().values(text=prompt.text)
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to save prompt: {e}") from e

        prompt.id = result.inserted_primary_key[0]
        return prompt.id

    async def get_by_id(self, prompt_id: int) -> Prompt:
        stmt = select(prompts_table).where(prompts_table.c.id == prompt_id)
        try:
            async with self.engine.connect() as conn:
                row = (await conn.execute(stmt)).mappings().first()
        except SQLAlchemyError as e:
            raise PersistenceError(f"failed to load prompt {prompt_id}: {e}") from e

        if row is None:
            raise NotFoundError(f"prompt {prompt_id} not found")
        return Prompt(id=row["id"], text=row["text"])
