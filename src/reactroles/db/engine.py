"""Async SQLAlchemy engine and session factory for the binding store.

Usage:
    engine = create_engine(settings.database_url)
    await init_schema(engine)
    async with get_session(engine) as session:
        ...
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncConnection,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from reactroles.db.models import Base

logger = logging.getLogger(__name__)


def create_engine(database_url: str) -> AsyncEngine:
    """Create an async engine. SQLite connections get WAL and a busy timeout."""
    is_sqlite = database_url.startswith("sqlite")
    connect_args: dict[str, object] = {"timeout": 15} if is_sqlite else {}

    engine = create_async_engine(database_url, echo=False, connect_args=connect_args)

    if is_sqlite:

        @event.listens_for(engine.sync_engine, "connect")
        def _set_sqlite_pragmas(dbapi_conn: object, connection_record: object) -> None:
            cursor = dbapi_conn.cursor()  # type: ignore[union-attr]
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA busy_timeout=15000")
            cursor.close()

    return engine


# One session factory per engine, keyed by the sync engine's identity.
_session_factories: dict[int, async_sessionmaker[AsyncSession]] = {}


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    key = id(engine.sync_engine)
    if key not in _session_factories:
        _session_factories[key] = async_sessionmaker(engine, expire_on_commit=False)
    return _session_factories[key]


@asynccontextmanager
async def get_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session that auto-commits on success, rolls back on error."""
    factory = create_session_factory(engine)
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:  # Re-raise pattern: catch all so any error rolls back
            await session.rollback()
            raise


async def init_schema(engine: AsyncEngine) -> None:
    """Create missing tables, then add columns newer models introduced."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        if engine.dialect.name == "sqlite":
            added = await auto_migrate_schema(conn)
            if added:
                logger.info("auto_migrate: added %d columns", added)


_SQLITE_TYPE_MAP: dict[str, str] = {
    "String": "VARCHAR",
    "Integer": "INTEGER",
    "BigInteger": "BIGINT",
    "Boolean": "BOOLEAN",
    "DateTime": "DATETIME",
    "JSON": "JSON",
}


async def auto_migrate_schema(conn: AsyncConnection) -> int:
    """Add nullable or scalar-defaulted columns missing from existing SQLite tables.

    NOT NULL columns without a SQL-expressible default are skipped with a
    warning. Returns the number of columns added.
    """
    added = 0
    for table_name, table in Base.metadata.tables.items():
        result = await conn.execute(text(f"PRAGMA table_info({table_name})"))
        existing_cols = {row[1] for row in result.fetchall()}
        if not existing_cols:
            continue

        for column in table.columns:
            if column.name in existing_cols:
                continue
            col_type = _SQLITE_TYPE_MAP.get(type(column.type).__name__, "TEXT")
            default = column.default.arg if column.default is not None else None
            if isinstance(default, bool):
                col_def = f"{column.name} {col_type} DEFAULT {int(default)}"
            elif isinstance(default, int):
                col_def = f"{column.name} {col_type} DEFAULT {default}"
            elif column.nullable:
                col_def = f"{column.name} {col_type}"
            else:
                logger.warning(
                    "auto_migrate: skipping %s.%s (NOT NULL with no SQL default)",
                    table_name,
                    column.name,
                )
                continue
            await conn.execute(text(f"ALTER TABLE {table_name} ADD COLUMN {col_def}"))
            logger.info("auto_migrate: added %s.%s", table_name, column.name)
            added += 1
    return added
