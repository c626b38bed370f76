"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
from helpers import ROLE_A, ROLE_B, ROLE_C, FakePlatform

from reactroles.config import Settings
from reactroles.core.manager import ReactionRoleManager
from reactroles.storage import NullBindingStore


@pytest.fixture
def settings() -> Settings:
    """Test settings with defaults."""
    return Settings(
        reactroles_env="development",
        reactroles_storage="none",
        database_url="sqlite+aiosqlite:///:memory:",
    )


@pytest.fixture
def platform() -> FakePlatform:
    """A guild with one channel, one message and three manageable roles."""
    fake = FakePlatform()
    fake.add_guild()
    fake.add_message()
    for role_id in (ROLE_A, ROLE_B, ROLE_C):
        fake.add_guild_role(role_id)
    return fake


@pytest.fixture
async def manager(platform: FakePlatform) -> AsyncGenerator[ReactionRoleManager, None]:
    """A started manager with no storage and short timing windows."""
    mgr = ReactionRoleManager(
        platform,
        NullBindingStore(),
        debounce_seconds=0.05,
        ready_quiet_seconds=0.05,
    )
    await mgr.start()
    yield mgr
    await mgr.close()
