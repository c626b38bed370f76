"""Startup drift reconciliation.

While the bot was offline members kept reacting and un-reacting. On boot
every enabled binding is replayed against the live reactor list:

- reactors who are guild members go through the GRANT path
- reactors who left the guild have their stale reaction removed
- recorded winners who no longer react go through the REVOKE path

Readiness is declared once the pass has been quiet for a while (see
``ReadinessGate``), not the instant the loop ends.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from reactroles.core.dispatcher import CascadeHandler, DeleteCause
from reactroles.core.errors import PlatformError, PlatformNotFoundError
from reactroles.models.binding import ActionType, Binding

if TYPE_CHECKING:
    from reactroles.core.platform import ChatPlatform
    from reactroles.core.reconciler import Reconciler
    from reactroles.core.registry import Registry
    from reactroles.storage import Persister

logger = logging.getLogger(__name__)

DEFAULT_READY_QUIET_SECONDS = 5.0


class ReadinessGate:
    """Fires ``on_ready`` once, after ``quiet_seconds`` with no activity.

    ``hold()`` marks work in progress and stops the countdown; ``touch()``
    restarts it. After firing, both are no-ops.
    """

    def __init__(self, on_ready: Callable[[], Awaitable[None]], quiet_seconds: float) -> None:
        self._on_ready = on_ready
        self.quiet_seconds = quiet_seconds
        self._countdown: asyncio.Task[None] | None = None
        self.fired = False

    def hold(self) -> None:
        if self._countdown is not None and not self._countdown.done():
            self._countdown.cancel()
        self._countdown = None

    def touch(self) -> None:
        if self.fired:
            return
        self.hold()
        self._countdown = asyncio.create_task(self._count_down(), name="reactroles-ready")

    async def wait(self) -> None:
        """Wait for the current countdown, if any, to finish."""
        if self._countdown is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._countdown

    def cancel(self) -> None:
        self.hold()

    async def _count_down(self) -> None:
        await asyncio.sleep(self.quiet_seconds)
        if self.fired:
            return
        self.fired = True
        await self._on_ready()


class BootReconciler:
    def __init__(
        self,
        platform: ChatPlatform,
        registry: Registry,
        reconciler: Reconciler,
        persister: Persister,
        cascade: CascadeHandler,
        readiness: ReadinessGate,
    ) -> None:
        self.platform = platform
        self.registry = registry
        self.reconciler = reconciler
        self.persister = persister
        self.cascade = cascade
        self.readiness = readiness

    async def run(self) -> None:
        """Reconcile every enabled binding, then arm the readiness gate.

        A binding whose guild, channel or message vanished is cascade-deleted.
        Any other platform failure skips the rest of that guild's bindings.
        """
        bindings = self.registry.enabled()
        failed_guilds: set[int] = set()
        logger.info("boot_reconcile_start bindings=%d", len(bindings))

        for binding in bindings:
            if binding.disabled or binding.guild_id in failed_guilds:
                continue
            self.readiness.hold()
            try:
                await self.reconcile(binding)
            except PlatformNotFoundError:
                logger.info("boot_binding_vanished binding=%s", binding.id)
                await self.cascade(binding, DeleteCause.MESSAGE)
            except PlatformError:
                logger.exception(
                    "boot_reconcile_failed binding=%s guild=%s", binding.id, binding.guild_id
                )
                failed_guilds.add(binding.guild_id)
            finally:
                self.readiness.touch()

        if not bindings:
            self.readiness.touch()
        logger.info("boot_reconcile_done failed_guilds=%d", len(failed_guilds))

    async def reconcile(self, binding: Binding) -> None:
        platform = self.platform
        if not platform.guild_available(binding.guild_id):
            logger.info("boot_guild_missing binding=%s", binding.id)
            await self.cascade(binding, DeleteCause.GUILD)
            return
        if not platform.channel_available(binding.guild_id, binding.channel_id):
            logger.info("boot_channel_missing binding=%s", binding.id)
            await self.cascade(binding, DeleteCause.CHANNEL)
            return
        message = await platform.fetch_message(binding.channel_id, binding.message_id)
        if message is None:
            logger.info("boot_message_missing binding=%s", binding.id)
            await self.cascade(binding, DeleteCause.MESSAGE)
            return

        if binding.emoji not in message.emojis:
            await platform.add_reaction(binding.channel_id, binding.message_id, binding.emoji)

        reactors = await platform.fetch_reactors(
            binding.channel_id, binding.message_id, binding.emoji
        )
        present: set[int] = set()
        for reactor in reactors:
            if reactor.bot or reactor.id == platform.user_id:
                continue
            present.add(reactor.id)
            member = await platform.resolve_member(binding.guild_id, reactor.id)
            if member is None:
                await platform.remove_reaction(
                    binding.channel_id, binding.message_id, binding.emoji, reactor.id
                )
                logger.debug("boot_stale_reaction_removed user=%s binding=%s", reactor.id, binding.id)
                continue
            await self.reconciler.apply(ActionType.GRANT, member, binding)

        dropped = False
        for winner_id in list(binding.winners):
            if winner_id in present:
                continue
            member = await platform.resolve_member(binding.guild_id, winner_id)
            if member is None:
                binding.remove_winner(winner_id)
                dropped = True
                logger.debug("boot_winner_left user=%s binding=%s", winner_id, binding.id)
                continue
            if member.bot:
                continue
            await self.reconciler.apply(ActionType.REVOKE, member, binding)

        if dropped:
            self.persister.schedule(binding)
