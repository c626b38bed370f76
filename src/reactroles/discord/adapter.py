"""discord.py implementation of the ChatPlatform protocol.

Emoji identifiers: custom emojis are identified by their snowflake as a
string, unicode emojis by the emoji itself.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import discord

from reactroles.core.errors import (
    PlatformError,
    PlatformNotFoundError,
    PlatformUnknownEmojiError,
)
from reactroles.core.platform import Member, MessageSnapshot, Reactor

logger = logging.getLogger(__name__)

AUDIT_REASON = "Reaction role"
UNKNOWN_EMOJI = 10014


@contextmanager
def translate_errors() -> Iterator[None]:
    """Map discord.py HTTP errors onto the core's platform errors."""
    try:
        yield
    except discord.NotFound as exc:
        raise PlatformNotFoundError(str(exc)) from exc
    except discord.HTTPException as exc:
        if exc.code == UNKNOWN_EMOJI:
            raise PlatformUnknownEmojiError(str(exc)) from exc
        raise PlatformError(str(exc)) from exc


def emoji_identifier(emoji: discord.PartialEmoji | discord.Emoji | str) -> str:
    if isinstance(emoji, str):
        return emoji
    if emoji.id:
        return str(emoji.id)
    return emoji.name or ""


def to_member(member: discord.Member) -> Member:
    return Member(
        id=member.id,
        guild_id=member.guild.id,
        role_ids={role.id for role in member.roles},
        bot=member.bot,
        boosting=member.premium_since is not None,
        verified_developer=member.public_flags.verified_bot_developer,
        display_name=member.display_name,
    )


class DiscordPlatform:
    """Adapter over a connected ``discord.Client``."""

    def __init__(self, client: discord.Client) -> None:
        self.client = client

    @property
    def user_id(self) -> int:
        user = self.client.user
        return user.id if user else 0

    # --- Synchronous cache lookups ---

    def guild_available(self, guild_id: int) -> bool:
        return self.client.get_guild(guild_id) is not None

    def channel_available(self, guild_id: int, channel_id: int) -> bool:
        guild = self.client.get_guild(guild_id)
        return guild is not None and guild.get_channel_or_thread(channel_id) is not None

    def role_exists(self, guild_id: int, role_id: int) -> bool:
        guild = self.client.get_guild(guild_id)
        return guild is not None and guild.get_role(role_id) is not None

    def is_role_authorized(self, guild_id: int, role_id: int) -> bool:
        guild = self.client.get_guild(guild_id)
        if guild is None:
            return False
        role = guild.get_role(role_id)
        me = guild.me
        if role is None or me is None:
            return False
        return me.guild_permissions.manage_roles and role.is_assignable()

    def resolve_emoji_identifier(self, emoji: str) -> str | None:
        emoji = emoji.strip()
        if not emoji:
            return None
        if emoji.isdigit():
            return emoji if self.client.get_emoji(int(emoji)) else None
        partial = discord.PartialEmoji.from_str(emoji)
        if partial.id:
            return str(partial.id) if self.client.get_emoji(partial.id) else None
        return partial.name or None

    # --- API calls ---

    async def resolve_member(self, guild_id: int, user_id: int) -> Member | None:
        member = await self._discord_member(guild_id, user_id)
        return to_member(member) if member is not None else None

    async def fetch_message(self, channel_id: int, message_id: int) -> MessageSnapshot | None:
        channel = self._messageable(channel_id)
        if channel is None:
            return None
        try:
            with translate_errors():
                message = await channel.fetch_message(message_id)
        except PlatformNotFoundError:
            return None
        return MessageSnapshot(
            id=message.id,
            channel_id=channel_id,
            guild_id=message.guild.id if message.guild else None,
            emojis={emoji_identifier(r.emoji) for r in message.reactions},
        )

    async def fetch_reactors(self, channel_id: int, message_id: int, emoji: str) -> list[Reactor]:
        channel = self._require_messageable(channel_id)
        with translate_errors():
            message = await channel.fetch_message(message_id)
            for reaction in message.reactions:
                if emoji_identifier(reaction.emoji) == emoji:
                    return [Reactor(id=u.id, bot=u.bot) async for u in reaction.users()]
        return []

    async def add_role(self, member: Member, role_id: int) -> None:
        discord_member = await self._require_member(member.guild_id, member.id)
        with translate_errors():
            await discord_member.add_roles(discord.Object(id=role_id), reason=AUDIT_REASON)

    async def remove_role(self, member: Member, role_id: int) -> None:
        discord_member = await self._require_member(member.guild_id, member.id)
        with translate_errors():
            await discord_member.remove_roles(discord.Object(id=role_id), reason=AUDIT_REASON)

    async def add_reaction(self, channel_id: int, message_id: int, emoji: str) -> None:
        message = self._require_messageable(channel_id).get_partial_message(message_id)
        with translate_errors():
            await message.add_reaction(self._reaction_emoji(emoji))

    async def remove_reaction(
        self, channel_id: int, message_id: int, emoji: str, user_id: int
    ) -> None:
        message = self._require_messageable(channel_id).get_partial_message(message_id)
        with translate_errors():
            await message.remove_reaction(self._reaction_emoji(emoji), discord.Object(id=user_id))

    async def clear_reaction(self, channel_id: int, message_id: int, emoji: str) -> None:
        message = self._require_messageable(channel_id).get_partial_message(message_id)
        with translate_errors():
            await message.clear_reaction(self._reaction_emoji(emoji))

    # --- Internals ---

    def _reaction_emoji(self, emoji: str) -> discord.Emoji | discord.PartialEmoji | str:
        if emoji.isdigit():
            custom = self.client.get_emoji(int(emoji))
            return custom if custom is not None else discord.PartialEmoji(name="_", id=int(emoji))
        return emoji

    def _messageable(self, channel_id: int) -> discord.TextChannel | discord.Thread | None:
        channel = self.client.get_channel(channel_id)
        if isinstance(channel, (discord.TextChannel, discord.Thread)):
            return channel
        return None

    def _require_messageable(self, channel_id: int) -> discord.TextChannel | discord.Thread:
        channel = self._messageable(channel_id)
        if channel is None:
            msg = f"Channel {channel_id} not found"
            raise PlatformNotFoundError(msg)
        return channel

    async def _discord_member(self, guild_id: int, user_id: int) -> discord.Member | None:
        guild = self.client.get_guild(guild_id)
        if guild is None:
            return None
        member = guild.get_member(user_id)
        if member is not None:
            return member
        try:
            with translate_errors():
                return await guild.fetch_member(user_id)
        except PlatformNotFoundError:
            return None

    async def _require_member(self, guild_id: int, user_id: int) -> discord.Member:
        member = await self._discord_member(guild_id, user_id)
        if member is None:
            msg = f"Member {user_id} not found in guild {guild_id}"
            raise PlatformNotFoundError(msg)
        return member
