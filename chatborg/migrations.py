"""
Forward-only schema migrations, applied at startup.

Each step is a plain function receiving a synchronous SQLAlchemy connection
(run through `AsyncConnection.run_sync`). Applied versions are recorded in the
`schema_migrations` table; a version is never applied twice.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from chatborg.errors import PersistenceError
from chatborg.llm_db import chats_table, prompts_table

logger = logging.getLogger(__name__)

migration_metadata = MetaData()

schema_migrations_table = Table(
    "schema_migrations",
    migration_metadata,
    Column("version", Integer, primary_key=True, autoincrement=False),
    Column("name", String, nullable=False),
    Column("applied_at", DateTime(timezone=True), nullable=False),
)


def _create_chats(conn):
    chats_table.create(conn, checkfirst=True)


def _create_prompts(conn):
    prompts_table.create(conn, checkfirst=True)


MIGRATIONS = [
    (1, "create_chats", _create_chats),
    (2, "create_prompts", _create_prompts),
]


async def applied_versions(engine: AsyncEngine) -> set[int]:
    async with engine.connect() as conn:
        result = await conn.execute(select(schema_migrations_table.c.version))
        return {row[0] for row in result}


async def apply_migrations(engine: AsyncEngine, migrations=None) -> list[int]:
    """Applies every pending migration in order; returns the versions applied now."""
    migrations = MIGRATIONS if migrations is None else migrations
    newly_applied = []
    try:
        async with engine.begin() as conn:
            await conn.run_sync(
                lambda sync_conn: schema_migrations_table.create(
                    sync_conn, checkfirst=True
                )
            )

        done = await applied_versions(engine)
        for version, name, step in sorted(migrations, key=lambda m: m[0]):
            if version in done:
                continue

            logger.info(f"Applying migration {version:04d}_{name}")
            async with engine.begin() as conn:
                await conn.run_sync(step)
                await conn.execute(
                    schema_migrations_table.insert().values(
                        version=version,
                        name=name,
                        applied_at=datetime.now(timezone.utc),
                    )
                )
            newly_applied.append(version)
    except SQLAlchemyError as e:
        raise PersistenceError(f"migration failed: {e}") from e

    return newly_applied
