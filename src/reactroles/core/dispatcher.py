"""Routes platform events to the reconciler or to cascade deletion.

The platform adapter translates gateway events into the small payloads
below and calls ``Dispatcher.dispatch``. Handlers are registered per
``EventKind`` so the reconciler never sees transport objects.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from reactroles.core.errors import PlatformError, PlatformNotFoundError
from reactroles.core.event_bus import ALL_REACTIONS_CLEARED
from reactroles.models.binding import ActionType, Binding

if TYPE_CHECKING:
    from reactroles.core.event_bus import EventBus
    from reactroles.core.platform import ChatPlatform, Member
    from reactroles.core.reconciler import Reconciler
    from reactroles.core.registry import Registry

logger = logging.getLogger(__name__)


class EventKind(StrEnum):
    REACTION_ADDED = "reaction_added"
    REACTION_REMOVED = "reaction_removed"
    REACTIONS_CLEARED = "reactions_cleared"
    MESSAGE_DELETED = "message_deleted"
    CHANNEL_DELETED = "channel_deleted"
    GUILD_DELETED = "guild_deleted"
    ROLE_DELETED = "role_deleted"
    EMOJI_DELETED = "emoji_deleted"


class DeleteCause(StrEnum):
    MESSAGE = "message"
    CHANNEL = "channel"
    GUILD = "guild"
    ROLE = "role"
    EMOJI = "emoji"
    REACTIONS_CLEARED = "reactions_cleared"


@dataclass
class ReactionEvent:
    guild_id: int | None
    channel_id: int
    message_id: int
    user_id: int
    emoji: str
    user_bot: bool = False
    member: Member | None = None


@dataclass
class ReactionsClearedEvent:
    guild_id: int | None
    channel_id: int
    message_id: int


@dataclass
class DeletedEvent:
    """Something a binding depends on was deleted.

    ``target`` is the deleted object's id (an emoji identifier for emojis).
    """

    target: int | str
    guild_id: int | None = None


CascadeHandler = Callable[[Binding, DeleteCause], Awaitable[None]]
Handler = Callable[[Any], Awaitable[None]]


class Dispatcher:
    def __init__(
        self,
        platform: ChatPlatform,
        registry: Registry,
        reconciler: Reconciler,
        event_bus: EventBus,
        cascade: CascadeHandler,
    ) -> None:
        self.platform = platform
        self.registry = registry
        self.reconciler = reconciler
        self.event_bus = event_bus
        self.cascade = cascade
        self._handlers: dict[EventKind, Handler] = {
            EventKind.REACTION_ADDED: self._on_reaction_added,
            EventKind.REACTION_REMOVED: self._on_reaction_removed,
            EventKind.REACTIONS_CLEARED: self._on_reactions_cleared,
            EventKind.MESSAGE_DELETED: self._cascade_by(self.registry.by_message, DeleteCause.MESSAGE),
            EventKind.CHANNEL_DELETED: self._cascade_by(self.registry.by_channel, DeleteCause.CHANNEL),
            EventKind.GUILD_DELETED: self._cascade_by(self.registry.by_guild, DeleteCause.GUILD),
            EventKind.ROLE_DELETED: self._cascade_by(self.registry.by_role, DeleteCause.ROLE),
            EventKind.EMOJI_DELETED: self._cascade_by(self.registry.by_emoji, DeleteCause.EMOJI),
        }

    def register(self, kind: EventKind, handler: Handler) -> None:
        """Replace the handler for ``kind``."""
        self._handlers[kind] = handler

    async def dispatch(self, kind: EventKind, event: object) -> None:
        handler = self._handlers.get(kind)
        if handler is None:
            msg = f"No handler registered for {kind!r}"
            raise ValueError(msg)
        await handler(event)

    # --- Reactions ---

    async def _on_reaction_added(self, event: ReactionEvent) -> None:
        await self._route_reaction(ActionType.GRANT, event)

    async def _on_reaction_removed(self, event: ReactionEvent) -> None:
        await self._route_reaction(ActionType.REVOKE, event)

    async def _route_reaction(self, action: ActionType, event: ReactionEvent) -> None:
        if event.user_bot or event.user_id == self.platform.user_id or event.guild_id is None:
            return
        binding = self.registry.get_enabled(event.message_id, event.emoji)
        if binding is None:
            return

        member = event.member
        if member is None:
            member = await self.platform.resolve_member(event.guild_id, event.user_id)
        if member is None or member.bot:
            return

        try:
            await self.reconciler.apply(action, member, binding)
        except PlatformNotFoundError:
            if await self.platform.fetch_message(binding.channel_id, binding.message_id) is None:
                await self.cascade(binding, DeleteCause.MESSAGE)
            else:
                logger.warning(
                    "reaction_target_missing action=%s member=%s binding=%s",
                    action.name,
                    member.id,
                    binding.id,
                )
        except PlatformError:
            logger.exception(
                "reaction_handling_failed action=%s member=%s binding=%s",
                action.name,
                member.id,
                binding.id,
            )

    async def _on_reactions_cleared(self, event: ReactionsClearedEvent) -> None:
        bindings = self.registry.by_message(event.message_id)
        if not bindings:
            return

        roles_affected: list[int] = []
        members_affected: list[Member] = []
        reactions_taken = 0
        for binding in bindings:
            roles, members, taken = await self.reconciler.revoke_winners(binding)
            roles_affected.extend(r for r in roles if r not in roles_affected)
            known = {m.id for m in members_affected}
            members_affected.extend(m for m in members if m.id not in known)
            reactions_taken += taken
            await self.cascade(binding, DeleteCause.REACTIONS_CLEARED)
            logger.info("binding_cleared binding=%s", binding.id)

        await self.event_bus.publish(
            ALL_REACTIONS_CLEARED,
            {
                "message_id": event.message_id,
                "channel_id": event.channel_id,
                "roles": roles_affected,
                "members": members_affected,
                "count": reactions_taken,
            },
        )

    # --- Cascade delete ---

    def _cascade_by(
        self, lookup: Callable[[Any], list[Binding]], cause: DeleteCause
    ) -> Handler:
        async def handler(event: DeletedEvent) -> None:
            for binding in lookup(event.target):
                if event.guild_id is not None and binding.guild_id != event.guild_id:
                    continue
                await self.cascade(binding, cause)

        return handler
