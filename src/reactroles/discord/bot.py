"""Discord bot for reactroles.

Owns the gateway connection. Raw gateway events are translated into
dispatcher payloads and handed to the ReactionRoleManager; the manager runs
its boot reconciliation on the first ``on_ready``.

The bot is optional: if DISCORD_BOT_TOKEN is not set, nothing starts.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import discord
from discord import Intents, app_commands
from discord.ext import commands

from reactroles.core.dispatcher import (
    DeletedEvent,
    EventKind,
    ReactionEvent,
    ReactionsClearedEvent,
)
from reactroles.core.errors import ReactionRoleError
from reactroles.core.manager import ReactionRoleManager
from reactroles.discord.adapter import DiscordPlatform, emoji_identifier, to_member
from reactroles.models.binding import BindingKind, BindingSpec, Requirements

if TYPE_CHECKING:
    from reactroles.config import Settings
    from reactroles.core.hooks import Hooks
    from reactroles.core.platform import Member
    from reactroles.storage import BindingStore

logger = logging.getLogger(__name__)

KIND_CHOICES = [
    app_commands.Choice(name="Normal", value=int(BindingKind.NORMAL)),
    app_commands.Choice(name="Toggle (one role per message)", value=int(BindingKind.TOGGLE)),
    app_commands.Choice(name="Just win (keep role on un-react)", value=int(BindingKind.JUST_WIN)),
    app_commands.Choice(name="Just lose (react to drop role)", value=int(BindingKind.JUST_LOSE)),
    app_commands.Choice(name="Reversed", value=int(BindingKind.REVERSED)),
]


class ReactionRoleBot(commands.Bot):
    """Reaction-role bot. Forwards reaction and delete events to the manager."""

    def __init__(
        self,
        settings: Settings,
        store: BindingStore,
        hooks: Hooks | None = None,
    ) -> None:
        intents = Intents.default()
        intents.members = True  # Required to resolve reactors and winners on boot
        intents.emojis_and_stickers = True

        super().__init__(
            command_prefix="!",
            intents=intents,
            description="Reaction roles: react to a message, get a role.",
        )
        self.settings = settings
        self.platform = DiscordPlatform(self)
        self.manager = ReactionRoleManager.from_settings(self.platform, settings, store, hooks)
        self._boot_task: asyncio.Task[None] | None = None
        self.run_task: asyncio.Task[None] | None = None
        self._setup_commands()

    def _setup_commands(self) -> None:
        """Register slash commands on the bot's command tree."""

        @self.tree.command(name="reactionrole-add", description="Bind an emoji reaction to a role")
        @app_commands.describe(
            message_id="ID of a message in this channel",
            emoji="Emoji members react with",
            role="Role to give",
            kind="How the reaction behaves",
            max_winners="Maximum number of winners (0 = unlimited)",
            boost="Only server boosters can win",
            verified_developer="Only verified bot developers can win",
        )
        @app_commands.choices(kind=KIND_CHOICES)
        @app_commands.default_permissions(manage_roles=True)
        @app_commands.guild_only()
        async def add_command(
            interaction: discord.Interaction,
            message_id: str,
            emoji: str,
            role: discord.Role,
            kind: app_commands.Choice[int] | None = None,
            max_winners: int = 0,
            boost: bool = False,
            verified_developer: bool = False,
        ) -> None:
            spec = BindingSpec(
                channel_id=interaction.channel_id or 0,
                message_id=int(message_id) if message_id.isdigit() else 0,
                roles=[role.id],
                emoji=emoji,
                kind=kind.value if kind else int(BindingKind.NORMAL),
                max=max_winners,
                requirements=Requirements(boost=boost, verified_developer=verified_developer),
            )
            await self._handle_add(interaction, spec)

        @self.tree.command(name="reactionrole-remove", description="Remove a reaction role")
        @app_commands.describe(message_id="ID of the message", emoji="Emoji of the reaction role")
        @app_commands.default_permissions(manage_roles=True)
        @app_commands.guild_only()
        async def remove_command(
            interaction: discord.Interaction,
            message_id: str,
            emoji: str,
        ) -> None:
            await self._handle_remove(interaction, message_id, emoji)

    async def setup_hook(self) -> None:
        """Called before connecting. Syncs slash commands."""
        if self.settings.discord_guild_id:
            guild = discord.Object(id=int(self.settings.discord_guild_id))
            self.tree.copy_global_to(guild=guild)
            await self.tree.sync(guild=guild)
            logger.info("discord_commands_synced guild_id=%s", self.settings.discord_guild_id)
        else:
            await self.tree.sync()
            logger.info("discord_commands_synced globally")

    async def on_ready(self) -> None:
        """Start boot reconciliation once; on_ready also fires on reconnect."""
        user = self.user
        logger.info("discord_bot_ready user=%s", user.name if user else "unknown")
        if self._boot_task is None:
            self._boot_task = asyncio.create_task(self._boot(), name="reactroles-boot")

    async def _boot(self) -> None:
        try:
            await self.manager.start()
        except Exception:  # Last-resort handler; boot failures must not kill the gateway
            logger.exception("reaction_role_boot_failed")

    # --- Gateway events ---

    async def on_raw_reaction_add(self, payload: discord.RawReactionActionEvent) -> None:
        member = to_member(payload.member) if payload.member is not None else None
        await self.manager.dispatch(EventKind.REACTION_ADDED, self._reaction_event(payload, member))

    async def on_raw_reaction_remove(self, payload: discord.RawReactionActionEvent) -> None:
        await self.manager.dispatch(EventKind.REACTION_REMOVED, self._reaction_event(payload, None))

    async def on_raw_reaction_clear(self, payload: discord.RawReactionClearEvent) -> None:
        await self.manager.dispatch(
            EventKind.REACTIONS_CLEARED,
            ReactionsClearedEvent(
                guild_id=payload.guild_id,
                channel_id=payload.channel_id,
                message_id=payload.message_id,
            ),
        )

    async def on_raw_message_delete(self, payload: discord.RawMessageDeleteEvent) -> None:
        await self.manager.dispatch(
            EventKind.MESSAGE_DELETED, DeletedEvent(payload.message_id, payload.guild_id)
        )

    async def on_raw_bulk_message_delete(self, payload: discord.RawBulkMessageDeleteEvent) -> None:
        for message_id in payload.message_ids:
            await self.manager.dispatch(
                EventKind.MESSAGE_DELETED, DeletedEvent(message_id, payload.guild_id)
            )

    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel) -> None:
        await self.manager.dispatch(
            EventKind.CHANNEL_DELETED, DeletedEvent(channel.id, channel.guild.id)
        )

    async def on_guild_remove(self, guild: discord.Guild) -> None:
        await self.manager.dispatch(EventKind.GUILD_DELETED, DeletedEvent(guild.id, guild.id))

    async def on_guild_role_delete(self, role: discord.Role) -> None:
        await self.manager.dispatch(EventKind.ROLE_DELETED, DeletedEvent(role.id, role.guild.id))

    async def on_guild_emojis_update(
        self,
        guild: discord.Guild,
        before: list[discord.Emoji],
        after: list[discord.Emoji],
    ) -> None:
        remaining = {emoji.id for emoji in after}
        for emoji in before:
            if emoji.id not in remaining:
                await self.manager.dispatch(
                    EventKind.EMOJI_DELETED, DeletedEvent(emoji_identifier(emoji), guild.id)
                )

    @staticmethod
    def _reaction_event(
        payload: discord.RawReactionActionEvent, member: Member | None
    ) -> ReactionEvent:
        return ReactionEvent(
            guild_id=payload.guild_id,
            channel_id=payload.channel_id,
            message_id=payload.message_id,
            user_id=payload.user_id,
            emoji=emoji_identifier(payload.emoji),
            user_bot=bool(payload.member and payload.member.bot),
            member=member,
        )

    # --- Slash command handlers ---

    async def _handle_add(self, interaction: discord.Interaction, spec: BindingSpec) -> None:
        await interaction.response.defer(ephemeral=True)
        try:
            binding = await self.manager.register(spec)
        except ReactionRoleError as exc:
            await interaction.followup.send(f"Could not create reaction role: {exc}", ephemeral=True)
            return
        logger.info("reactionrole_add_command user=%s id=%s", interaction.user.id, binding.id)
        await interaction.followup.send(
            f"Reaction role `{binding.id}` created for {len(binding.roles)} role(s).",
            ephemeral=True,
        )

    async def _handle_remove(
        self, interaction: discord.Interaction, message_id: str, emoji: str
    ) -> None:
        if not message_id.isdigit():
            await interaction.response.send_message("Message ID must be a number.", ephemeral=True)
            return
        try:
            binding = await self.manager.disable(message_id=int(message_id), emoji=emoji)
        except ReactionRoleError as exc:
            await interaction.response.send_message(str(exc), ephemeral=True)
            return
        logger.info("reactionrole_remove_command user=%s id=%s", interaction.user.id, binding.id)
        await interaction.response.send_message(
            f"Reaction role `{binding.id}` removed.", ephemeral=True
        )

    async def close(self) -> None:
        """Clean shutdown: stop pending settles, flush writes, close the gateway."""
        await self.manager.close()
        await super().close()


def is_discord_enabled(settings: Settings) -> bool:
    """True only when discord_enabled is set and a token is configured."""
    return bool(settings.discord_enabled and settings.discord_bot_token)


async def start_reaction_role_bot(
    settings: Settings,
    store: BindingStore,
    hooks: Hooks | None = None,
) -> ReactionRoleBot:
    """Create and start the bot in the current event loop.

    Returns the bot instance so the caller can stop it during shutdown.
    The bot runs as a background task; this function returns immediately.
    """
    bot = ReactionRoleBot(settings=settings, store=store, hooks=hooks)

    async def _run_bot() -> None:
        try:
            await bot.start(settings.discord_bot_token)
        except asyncio.CancelledError:
            logger.info("discord_bot_cancelled")
        except Exception:  # Last-resort handler: bot.start can raise connection and auth errors
            logger.exception("discord_bot_error")
        finally:
            if not bot.is_closed():
                await bot.close()

    bot.run_task = asyncio.create_task(_run_bot(), name="discord-bot")
    logger.info("discord_bot_started")
    return bot
