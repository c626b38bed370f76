"""Tests for the database layer: engine, ORM model, repository, database store."""

import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from reactroles.db.engine import create_engine, get_session, init_schema
from reactroles.db.models import Base
from reactroles.db.repository import Repository, row_to_binding
from reactroles.models.binding import BindingKind, Requirements
from reactroles.storage import DatabaseBindingStore
from helpers import GUILD, ROLE_A, ROLE_B, make_binding


@pytest.fixture
async def engine() -> AsyncEngine:
    """Create an in-memory SQLite engine with all tables."""
    eng = create_engine("sqlite+aiosqlite:///:memory:")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
async def repo(engine: AsyncEngine) -> Repository:
    """Yield a repository with a session bound to the in-memory database."""
    async with get_session(engine) as session:
        yield Repository(session)


@pytest.fixture
async def file_engine(tmp_path) -> AsyncEngine:
    """A file-backed engine so separate sessions share data."""
    eng = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'reactroles.db'}")
    await init_schema(eng)
    yield eng
    await eng.dispose()


class TestTableCreation:
    async def test_table_created(self, engine: AsyncEngine):
        async with engine.connect() as conn:
            tables = await conn.run_sync(
                lambda sync_conn: sync_conn.dialect.get_table_names(sync_conn)
            )
        assert "reaction_roles" in tables


class TestRepository:
    async def test_upsert_and_read(self, repo: Repository):
        binding = make_binding(
            roles=[ROLE_A, ROLE_B],
            kind=BindingKind.TOGGLE | BindingKind.JUST_WIN,
            max=2,
            requirements=Requirements(verified_developer=True),
            winners=[3, 1],
        )
        await repo.upsert_binding(binding)

        row = await repo.get_binding(binding.id)
        assert row is not None
        assert row.guild == GUILD
        assert row.kind == 6

        loaded = row_to_binding(row)
        assert loaded.id == binding.id
        assert loaded.roles == [ROLE_A, ROLE_B]
        assert loaded.kind == BindingKind.TOGGLE | BindingKind.JUST_WIN
        assert loaded.requirements.verified_developer
        assert loaded.winners == [3, 1]

    async def test_upsert_updates_existing(self, repo: Repository):
        binding = make_binding()
        await repo.upsert_binding(binding)
        binding.add_winner(9)
        binding.disable()
        await repo.upsert_binding(binding)

        rows = await repo.get_bindings(include_disabled=True)
        assert len(rows) == 1
        assert rows[0].winners == [9]
        assert rows[0].disabled

    async def test_disabled_filtered(self, repo: Repository):
        active = make_binding(emoji="a")
        gone = make_binding(emoji="b")
        gone.disable()
        await repo.upsert_binding(active)
        await repo.upsert_binding(gone)

        assert [r.id for r in await repo.get_bindings()] == [active.id]
        assert len(await repo.get_bindings(include_disabled=True)) == 2

    async def test_delete(self, repo: Repository):
        binding = make_binding()
        await repo.upsert_binding(binding)
        assert await repo.delete_binding(binding.id)
        assert not await repo.delete_binding(binding.id)
        assert await repo.get_binding(binding.id) is None


class TestDatabaseBindingStore:
    async def test_save_load_across_sessions(self, file_engine: AsyncEngine):
        store = DatabaseBindingStore(file_engine)
        a = make_binding(emoji="a", winners=[1])
        b = make_binding(emoji="b")

        await store.save([a, b], [a, b])
        b.disable()
        await store.save([a, b], [b])
        loaded = await store.load()

        assert [x.id for x in loaded] == [a.id]
        assert loaded[0].winners == [1]

    async def test_delete(self, file_engine: AsyncEngine):
        store = DatabaseBindingStore(file_engine)
        a = make_binding()
        await store.save([a], [a])

        await store.delete(a, [])

        assert await store.load() == []


class TestSchemaMigration:
    async def test_missing_column_added(self, tmp_path):
        eng = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'old.db'}")
        async with eng.begin() as conn:
            await conn.execute(
                text(
                    "CREATE TABLE reaction_roles (id VARCHAR PRIMARY KEY, message BIGINT, "
                    "channel BIGINT, guild BIGINT, emoji VARCHAR, roles JSON, max INTEGER, "
                    "kind INTEGER, requirements JSON, winners JSON, updated_at DATETIME)"
                )
            )

        await init_schema(eng)

        async with eng.connect() as conn:
            result = await conn.execute(text("PRAGMA table_info(reaction_roles)"))
            columns = {row[1] for row in result.fetchall()}
        await eng.dispose()
        assert "disabled" in columns
