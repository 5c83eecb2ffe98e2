"""Shared fixtures: a migrated SQLite database and fake Telethon events."""

from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from chatborg import llm_db, migrations

CHAT_ID = 100
USER_ID = 1


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = llm_db.build_engine(f"sqlite:///{tmp_path / 'chatborg.db'}")
    await migrations.apply_migrations(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def chats(engine):
    return llm_db.ChatRepository(engine)


@pytest.fixture
def prompts(engine):
    return llm_db.PromptRepository(engine)


def make_client():
    client = MagicMock()
    client.send_message = AsyncMock()
    client.send_file = AsyncMock()
    return client


def make_message(text="", *, photo=None, voice=None, topic_id=None, media_bytes=None):
    reply_to = None
    if topic_id is not None:
        reply_to = SimpleNamespace(
            forum_topic=True, reply_to_top_id=None, reply_to_msg_id=topic_id
        )
    return SimpleNamespace(
        message=text,
        photo=photo,
        voice=voice,
        media=photo or voice,
        reply_to=reply_to,
        download_media=AsyncMock(return_value=media_bytes),
    )


def make_message_event(text="", *, sender_id=USER_ID, client=None, **kwargs):
    return SimpleNamespace(
        message=make_message(text, **kwargs),
        chat_id=CHAT_ID,
        sender_id=sender_id,
        client=client or make_client(),
    )


def make_callback_event(data: str, *, sender_id=USER_ID, client=None, topic_id=None):
    return SimpleNamespace(
        data=data.encode("utf-8"),
        chat_id=CHAT_ID,
        sender_id=sender_id,
        client=client or make_client(),
        answer=AsyncMock(),
        get_message=AsyncMock(return_value=make_message(topic_id=topic_id)),
    )


def sent_texts(client) -> list[str]:
    return [c.args[1] for c in client.send_message.call_args_list]
