"""Test doubles and helpers shared by the test modules.

``FakePlatform`` is an in-memory ChatPlatform: guilds, channels, roles,
members, messages and per-emoji reactor lists. Every mutation is recorded in
``calls`` so tests can assert on exactly what the engine asked for.
"""

from __future__ import annotations

import dataclasses
import re

from reactroles.core.dispatcher import EventKind, ReactionEvent
from reactroles.core.errors import PlatformNotFoundError, PlatformUnknownEmojiError
from reactroles.core.manager import ReactionRoleManager
from reactroles.core.platform import Member, MessageSnapshot, Reactor
from reactroles.models.binding import Binding

BOT_ID = 999
GUILD = 1
CHANNEL = 10
MESSAGE = 100
ROLE_A = 501
ROLE_B = 502
ROLE_C = 503

_CUSTOM_EMOJI = re.compile(r"<a?:\w+:(\d+)>")


class FakePlatform:
    def __init__(self, user_id: int = BOT_ID) -> None:
        self._user_id = user_id
        self.guilds: set[int] = set()
        self.channels: dict[int, int] = {}
        self.roles: dict[int, set[int]] = {}
        self.unauthorized: set[int] = set()
        self.members: dict[tuple[int, int], Member] = {}
        self.messages: dict[int, MessageSnapshot] = {}
        self.reactions: dict[tuple[int, str], list[Reactor]] = {}
        self.custom_emojis: set[str] = set()
        self.unknown_emojis: set[str] = set()
        self.departed: set[int] = set()
        self.calls: list[tuple] = []

    # --- Test setup helpers ---

    def add_guild(self, guild_id: int = GUILD, channel_id: int = CHANNEL) -> None:
        self.guilds.add(guild_id)
        self.channels[channel_id] = guild_id
        self.roles.setdefault(guild_id, set())

    def add_guild_role(
        self, role_id: int, guild_id: int = GUILD, authorized: bool = True
    ) -> None:
        self.roles.setdefault(guild_id, set()).add(role_id)
        if not authorized:
            self.unauthorized.add(role_id)

    def add_member(self, user_id: int, guild_id: int = GUILD, **fields: object) -> Member:
        member = Member(id=user_id, guild_id=guild_id, **fields)  # type: ignore[arg-type]
        self.members[(guild_id, user_id)] = member
        return member

    def add_message(
        self, message_id: int = MESSAGE, channel_id: int = CHANNEL, guild_id: int | None = GUILD
    ) -> None:
        self.messages[message_id] = MessageSnapshot(
            id=message_id, channel_id=channel_id, guild_id=guild_id
        )

    def react(self, user_id: int, emoji: str, message_id: int = MESSAGE, bot: bool = False) -> None:
        reactors = self.reactions.setdefault((message_id, emoji), [])
        if all(r.id != user_id for r in reactors):
            reactors.append(Reactor(id=user_id, bot=bot))

    def unreact(self, user_id: int, emoji: str, message_id: int = MESSAGE) -> None:
        key = (message_id, emoji)
        self.reactions[key] = [r for r in self.reactions.get(key, []) if r.id != user_id]

    def reactor_ids(self, emoji: str, message_id: int = MESSAGE) -> list[int]:
        return [r.id for r in self.reactions.get((message_id, emoji), [])]

    def member_roles(self, user_id: int, guild_id: int = GUILD) -> set[int]:
        return set(self.members[(guild_id, user_id)].role_ids)

    def delete_message(self, message_id: int = MESSAGE) -> None:
        self.messages.pop(message_id, None)
        for key in [k for k in self.reactions if k[0] == message_id]:
            del self.reactions[key]

    def calls_named(self, name: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == name]

    # --- ChatPlatform ---

    @property
    def user_id(self) -> int:
        return self._user_id

    def guild_available(self, guild_id: int) -> bool:
        return guild_id in self.guilds

    def channel_available(self, guild_id: int, channel_id: int) -> bool:
        return self.channels.get(channel_id) == guild_id

    def role_exists(self, guild_id: int, role_id: int) -> bool:
        return role_id in self.roles.get(guild_id, set())

    def is_role_authorized(self, guild_id: int, role_id: int) -> bool:
        return self.role_exists(guild_id, role_id) and role_id not in self.unauthorized

    def resolve_emoji_identifier(self, emoji: str) -> str | None:
        match = _CUSTOM_EMOJI.fullmatch(emoji)
        if match:
            emoji = match.group(1)
        if emoji.isdigit():
            return emoji if emoji in self.custom_emojis else None
        return emoji or None

    async def resolve_member(self, guild_id: int, user_id: int) -> Member | None:
        member = self.members.get((guild_id, user_id))
        if member is None:
            return None
        return dataclasses.replace(member, role_ids=set(member.role_ids))

    async def fetch_message(self, channel_id: int, message_id: int) -> MessageSnapshot | None:
        message = self.messages.get(message_id)
        if message is None or message.channel_id != channel_id:
            return None
        emojis = {e for (mid, e), rs in self.reactions.items() if mid == message_id and rs}
        return dataclasses.replace(message, emojis=emojis)

    async def fetch_reactors(self, channel_id: int, message_id: int, emoji: str) -> list[Reactor]:
        self._require_message(message_id)
        return list(self.reactions.get((message_id, emoji), []))

    async def add_role(self, member: Member, role_id: int) -> None:
        self.calls.append(("add_role", member.id, role_id))
        self.members[(member.guild_id, member.id)].role_ids.add(role_id)

    async def remove_role(self, member: Member, role_id: int) -> None:
        if member.id in self.departed:
            raise PlatformNotFoundError(f"Unknown member {member.id}")
        self.calls.append(("remove_role", member.id, role_id))
        self.members[(member.guild_id, member.id)].role_ids.discard(role_id)

    async def add_reaction(self, channel_id: int, message_id: int, emoji: str) -> None:
        self._require_message(message_id)
        if emoji.isdigit() and emoji not in self.custom_emojis:
            raise PlatformNotFoundError(f"Unknown emoji {emoji}")
        if emoji in self.unknown_emojis:
            raise PlatformUnknownEmojiError("400 Bad Request (error code: 10014): Unknown Emoji")
        self.calls.append(("add_reaction", message_id, emoji))
        self.react(self._user_id, emoji, message_id, bot=True)

    async def remove_reaction(
        self, channel_id: int, message_id: int, emoji: str, user_id: int
    ) -> None:
        self._require_message(message_id)
        self.calls.append(("remove_reaction", message_id, emoji, user_id))
        self.unreact(user_id, emoji, message_id)

    async def clear_reaction(self, channel_id: int, message_id: int, emoji: str) -> None:
        self._require_message(message_id)
        self.calls.append(("clear_reaction", message_id, emoji))
        self.reactions.pop((message_id, emoji), None)

    def _require_message(self, message_id: int) -> None:
        if message_id not in self.messages:
            raise PlatformNotFoundError(f"Unknown message {message_id}")


async def user_reacts(
    manager: ReactionRoleManager,
    platform: FakePlatform,
    user_id: int,
    emoji: str,
    message_id: int = MESSAGE,
) -> None:
    """Simulate a member adding a reaction: platform state first, then the event."""
    platform.react(user_id, emoji, message_id)
    await manager.dispatch(
        EventKind.REACTION_ADDED,
        ReactionEvent(GUILD, CHANNEL, message_id, user_id, emoji),
    )


async def user_unreacts(
    manager: ReactionRoleManager,
    platform: FakePlatform,
    user_id: int,
    emoji: str,
    message_id: int = MESSAGE,
) -> None:
    platform.unreact(user_id, emoji, message_id)
    await manager.dispatch(
        EventKind.REACTION_REMOVED,
        ReactionEvent(GUILD, CHANNEL, message_id, user_id, emoji),
    )



class MemoryBindingStore:
    """An enabled store kept in memory. Records every save and delete."""

    enabled = True

    def __init__(self, bindings: list[Binding] | None = None) -> None:
        self.records = [b.to_record() for b in bindings or []]
        self.saved: list[list[str]] = []
        self.deleted: list[str] = []

    async def load(self) -> list[Binding]:
        return [Binding.from_record(r) for r in self.records]

    async def save(self, all_bindings: list[Binding], changed: list[Binding]) -> None:
        self.records = [b.to_record() for b in all_bindings]
        self.saved.append([b.id for b in changed])

    async def delete(self, binding: Binding, all_bindings: list[Binding]) -> None:
        self.records = [b.to_record() for b in all_bindings if b.id != binding.id]
        self.deleted.append(binding.id)


def make_binding(
    emoji: str = "👍",
    roles: list[int] | None = None,
    message_id: int = MESSAGE,
    **fields: object,
) -> Binding:
    return Binding(
        guild_id=GUILD,
        channel_id=CHANNEL,
        message_id=message_id,
        emoji=emoji,
        roles=roles or [ROLE_A],
        **fields,  # type: ignore[arg-type]
    )
