"""The chat-platform surface the reconciliation core depends on.

The core never touches discord.py objects directly. It talks to a
``ChatPlatform`` (implemented by ``reactroles.discord.adapter``) and works
with the small snapshots below, which keeps the policy code testable with an
in-memory fake.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


@dataclass
class Member:
    """A guild member as seen at resolve time.

    ``role_ids`` is updated in place by the reconciler after each successful
    add/remove so later checks in the same call chain see current state.
    """

    id: int
    guild_id: int
    role_ids: set[int] = field(default_factory=set)
    bot: bool = False
    boosting: bool = False
    verified_developer: bool = False
    display_name: str = ""

    def has_role(self, role_id: int) -> bool:
        return role_id in self.role_ids


@dataclass(frozen=True)
class Reactor:
    """A user who reacted with a given emoji."""

    id: int
    bot: bool = False


@dataclass
class MessageSnapshot:
    id: int
    channel_id: int
    guild_id: int | None
    emojis: set[str] = field(default_factory=set)


class ChatPlatform(Protocol):
    """Operations the core needs from the chat platform.

    Lookups return ``None`` for objects that no longer exist. Mutations raise
    ``PlatformNotFoundError`` when their target vanished and ``PlatformError``
    for any other failure.
    """

    @property
    def user_id(self) -> int:
        """The bot's own account id."""
        ...

    def guild_available(self, guild_id: int) -> bool: ...

    def channel_available(self, guild_id: int, channel_id: int) -> bool: ...

    def role_exists(self, guild_id: int, role_id: int) -> bool: ...

    def is_role_authorized(self, guild_id: int, role_id: int) -> bool:
        """Whether the bot may add/remove this role."""
        ...

    def resolve_emoji_identifier(self, emoji: str) -> str | None: ...

    async def resolve_member(self, guild_id: int, user_id: int) -> Member | None: ...

    async def fetch_message(self, channel_id: int, message_id: int) -> MessageSnapshot | None: ...

    async def fetch_reactors(
        self, channel_id: int, message_id: int, emoji: str
    ) -> list[Reactor]: ...

    async def add_role(self, member: Member, role_id: int) -> None: ...

    async def remove_role(self, member: Member, role_id: int) -> None: ...

    async def add_reaction(self, channel_id: int, message_id: int, emoji: str) -> None: ...

    async def remove_reaction(
        self, channel_id: int, message_id: int, emoji: str, user_id: int
    ) -> None: ...

    async def clear_reaction(self, channel_id: int, message_id: int, emoji: str) -> None: ...
