"""ReactionRoleManager: the public face of the reconciliation engine.

Wires the registry, policy components, debouncer, boot pass and dispatcher
together and exposes the operations callers use directly:

    manager = ReactionRoleManager(platform, JsonBindingStore("roles.json"))
    manager.event_bus.add_listener(ROLE_GRANTED, on_granted)
    await manager.start()                       # load + boot reconcile
    binding = await manager.register(BindingSpec(...))
    await manager.disable(binding)
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from reactroles.core.boot import DEFAULT_READY_QUIET_SECONDS, BootReconciler, ReadinessGate
from reactroles.core.debounce import DEFAULT_DEBOUNCE_SECONDS
from reactroles.core.dispatcher import DeleteCause, Dispatcher, EventKind
from reactroles.core.errors import (
    BindingNotFoundError,
    InvalidEmojiError,
    InvalidKindError,
    InvalidMessageError,
    InvalidRoleError,
    PlatformError,
    PlatformNotFoundError,
    PlatformUnknownEmojiError,
)
from reactroles.core.event_bus import READY, EventBus
from reactroles.core.hooks import Hooks
from reactroles.core.permissions import PermissionGuard
from reactroles.core.reconciler import Reconciler
from reactroles.core.registry import Registry
from reactroles.core.requirements import RequirementEvaluator
from reactroles.models.binding import Binding, BindingKind, BindingSpec, binding_id, is_valid_kind
from reactroles.storage import BindingStore, NullBindingStore, Persister

if TYPE_CHECKING:
    from reactroles.config import Settings
    from reactroles.core.platform import ChatPlatform

logger = logging.getLogger(__name__)

_CLEARS_REACTION = frozenset({DeleteCause.ROLE, DeleteCause.EMOJI})


class ReactionRoleManager:
    def __init__(
        self,
        platform: ChatPlatform,
        store: BindingStore | None = None,
        *,
        event_bus: EventBus | None = None,
        hooks: Hooks | None = None,
        hard_delete: bool = False,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        ready_quiet_seconds: float = DEFAULT_READY_QUIET_SECONDS,
    ) -> None:
        self.platform = platform
        self.store: BindingStore = store if store is not None else NullBindingStore()
        self.event_bus = event_bus or EventBus()
        self.hooks = hooks or Hooks()
        self.hard_delete = hard_delete
        self.registry = Registry()
        self.persister = Persister(self.store, lambda: list(self.registry))
        self.guard = PermissionGuard(platform, self.event_bus)
        self.evaluator = RequirementEvaluator(platform, self.event_bus)
        self.reconciler = Reconciler(
            platform,
            self.event_bus,
            self.registry,
            self.guard,
            self.evaluator,
            self.hooks,
            self.persister,
            debounce_seconds=debounce_seconds,
        )
        self.reconciler.on_vanished = self._on_vanished
        self.dispatcher = Dispatcher(
            platform, self.registry, self.reconciler, self.event_bus, self.cascade_delete
        )
        self.readiness = ReadinessGate(self._mark_ready, ready_quiet_seconds)
        self.boot = BootReconciler(
            platform,
            self.registry,
            self.reconciler,
            self.persister,
            self.cascade_delete,
            self.readiness,
        )
        self.is_ready = False
        self.ready_at: datetime | None = None
        self._started = False

    @classmethod
    def from_settings(
        cls,
        platform: ChatPlatform,
        settings: Settings,
        store: BindingStore,
        hooks: Hooks | None = None,
    ) -> ReactionRoleManager:
        return cls(
            platform,
            store,
            hooks=hooks,
            hard_delete=settings.reactroles_hard_delete,
            debounce_seconds=settings.reactroles_debounce_seconds,
            ready_quiet_seconds=settings.reactroles_ready_quiet_seconds,
        )

    @property
    def bindings(self) -> list[Binding]:
        return list(self.registry)

    # --- Lifecycle ---

    async def start(self) -> None:
        """Load persisted bindings and reconcile them against live state.

        Safe to call on every reconnect; only the first call does work.
        """
        if self._started:
            return
        self._started = True

        if not self.store.enabled:
            logger.info("storage_disabled boot_reconcile=skipped")
            await self._mark_ready()
            return

        for binding in await self.store.load():
            self.registry.add(binding)
        logger.info(
            "bindings_loaded total=%d enabled=%d", len(self.registry), len(self.registry.enabled())
        )
        await self.boot.run()

    async def dispatch(self, kind: EventKind, event: object) -> None:
        await self.dispatcher.dispatch(kind, event)

    async def wait_idle(self) -> None:
        """Wait for pending toggle settles and persistence writes."""
        await self.reconciler.debouncer.join()
        await self.persister.drain()

    async def close(self) -> None:
        self.readiness.cancel()
        self.reconciler.debouncer.cancel_all()
        await self.reconciler.debouncer.join()
        await self.persister.drain()

    async def _mark_ready(self) -> None:
        if self.is_ready:
            return
        self.is_ready = True
        self.ready_at = datetime.now(UTC)
        logger.info("reaction_role_manager_ready bindings=%d", len(self.registry.enabled()))
        await self.event_bus.publish(READY, {"ready_at": self.ready_at})

    # --- Registration ---

    async def register(self, spec: BindingSpec) -> Binding:
        """Validate ``spec``, react to the message and start tracking the binding.

        Raises InvalidMessageError, InvalidKindError, InvalidRoleError or
        InvalidEmojiError. Registering the same message/emoji pair again
        replaces the previous binding.
        """
        message = await self.platform.fetch_message(spec.channel_id, spec.message_id)
        if message is None:
            msg = f"Message {spec.message_id} not found in channel {spec.channel_id}."
            raise InvalidMessageError(msg)
        if message.guild_id is None:
            msg = "Message must be a guild message, cannot create reaction roles in DMs."
            raise InvalidMessageError(msg)
        guild_id = message.guild_id

        if not is_valid_kind(spec.kind):
            msg = f"Invalid reaction role kind: {spec.kind!r}."
            raise InvalidKindError(msg)

        roles = [r for r in dict.fromkeys(spec.roles) if self.platform.role_exists(guild_id, r)]
        if not roles:
            msg = f"Cannot resolve any of the roles {spec.roles}."
            raise InvalidRoleError(msg)

        emoji = self.platform.resolve_emoji_identifier(spec.emoji)
        if not emoji:
            msg = f"Cannot resolve emoji {spec.emoji!r}."
            raise InvalidEmojiError(msg)

        try:
            await self.platform.add_reaction(spec.channel_id, spec.message_id, emoji)
        except (PlatformNotFoundError, PlatformUnknownEmojiError) as exc:
            msg = f"Cannot react with emoji {spec.emoji!r}."
            raise InvalidEmojiError(msg) from exc

        binding = Binding(
            guild_id=guild_id,
            channel_id=spec.channel_id,
            message_id=spec.message_id,
            emoji=emoji,
            roles=roles,
            kind=BindingKind(spec.kind),
            max=spec.max or 0,
            requirements=spec.requirements,
        )
        self.registry.add(binding)
        await self.persister.flush(binding)
        logger.info("binding_registered id=%s roles=%s kind=%d", binding.id, roles, binding.kind)
        return binding

    # --- Disable / cascade delete ---

    async def disable(
        self,
        target: Binding | str | None = None,
        *,
        message_id: int | None = None,
        emoji: str | None = None,
        deleted: bool = False,
    ) -> Binding:
        """Disable a binding given the binding, its id, or its message and emoji.

        With ``hard_delete`` the binding is also dropped from the registry and
        the store. Raises BindingNotFoundError when nothing matches.
        """
        binding = self._resolve_target(target, message_id, emoji)
        binding.disable()
        if self.hard_delete:
            self.registry.remove(binding.id)
            await self.persister.delete(binding)
        else:
            await self.persister.flush(binding)

        if deleted:
            logger.info("binding_deleted id=%s", binding.id)
        else:
            logger.info("binding_disabled id=%s", binding.id)
        return binding

    async def cascade_delete(self, binding: Binding, cause: DeleteCause) -> None:
        """Soft-delete a binding whose message, channel, guild, role or emoji went away."""
        if binding.disabled:
            return
        if cause in _CLEARS_REACTION:
            await self._clear_binding_reaction(binding)
        logger.info("binding_cascade id=%s cause=%s", binding.id, cause.value)
        await self.disable(binding, deleted=True)

    async def _on_vanished(self, binding: Binding) -> None:
        await self.cascade_delete(binding, DeleteCause.MESSAGE)

    async def _clear_binding_reaction(self, binding: Binding) -> None:
        try:
            if not self.platform.channel_available(binding.guild_id, binding.channel_id):
                return
            if await self.platform.fetch_message(binding.channel_id, binding.message_id) is None:
                return
            await self.platform.clear_reaction(binding.channel_id, binding.message_id, binding.emoji)
        except PlatformError:
            logger.warning("clear_reaction_failed binding=%s", binding.id, exc_info=True)

    def _resolve_target(
        self, target: Binding | str | None, message_id: int | None, emoji: str | None
    ) -> Binding:
        binding: Binding | None = None
        if isinstance(target, Binding):
            binding = self.registry.get(target.id) or target
        elif isinstance(target, str):
            binding = self.registry.get(target)
        elif message_id is not None and emoji is not None:
            resolved = self.platform.resolve_emoji_identifier(emoji) or emoji
            binding = self.registry.get(binding_id(message_id, resolved))
        if binding is None:
            msg = f"No reaction role matches {target or (message_id, emoji)!r}."
            raise BindingNotFoundError(msg)
        return binding
