"""Per-member debouncing for toggle groups.

A member flicking between mutually exclusive options on one message produces
a burst of reaction events. Each event reschedules a single settle task for
that member; the settle only runs once the member has been quiet for the
debounce window.

Per member the debouncer moves through ``idle -> scheduled -> running -> idle``.
Scheduling while ``scheduled`` replaces the pending task. Scheduling while
``running`` parks the request in a waiter that waits one window before each
of up to ``max_attempts`` re-checks, and then gives up. Settles for the
same member never overlap.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable, Coroutine
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from reactroles.core.platform import Member
    from reactroles.models.binding import Binding

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 1.0
DEFAULT_MAX_ATTEMPTS = 3

MemberKey = tuple[int, int]


class DebounceState(StrEnum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"


@dataclass
class DebounceTask:
    """One pending settle for a member on a toggle-group message."""

    member: Member
    guild_id: int
    channel_id: int
    message_id: int
    candidate: Binding | None = None
    attempts: int = 0

    @property
    def key(self) -> MemberKey:
        return (self.guild_id, self.member.id)


class ToggleGroupDebouncer:
    def __init__(
        self,
        settle: Callable[[DebounceTask], Awaitable[None]],
        window: float = DEFAULT_DEBOUNCE_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self._settle = settle
        self.window = window
        self.max_attempts = max_attempts
        self._timers: dict[MemberKey, asyncio.Task[None]] = {}
        self._waiters: dict[MemberKey, asyncio.Task[None]] = {}
        self._running: set[MemberKey] = set()
        self._locks: dict[MemberKey, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._tasks: set[asyncio.Task[None]] = set()

    def state(self, key: MemberKey) -> DebounceState:
        if key in self._running:
            return DebounceState.RUNNING
        if key in self._timers:
            return DebounceState.SCHEDULED
        return DebounceState.IDLE

    def schedule(self, task: DebounceTask) -> None:
        """Supersede any pending settle for the member with ``task``."""
        key = task.key
        waiter = self._waiters.pop(key, None)
        if waiter is not None:
            waiter.cancel()

        if key in self._running:
            logger.debug("toggle_member_busy member=%s", task.member.id)
            self._waiters[key] = self._spawn(self._wait_then_arm(task), "reactroles-toggle-wait")
            return
        self._arm(task)

    async def join(self) -> None:
        """Wait until every scheduled, waiting and running settle has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._timers.clear()
        self._waiters.clear()
        self._locks.clear()

    def _spawn(self, coro: Coroutine[object, object, None], name: str) -> asyncio.Task[None]:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _arm(self, task: DebounceTask) -> None:
        key = task.key
        previous = self._timers.pop(key, None)
        if previous is not None:
            previous.cancel()
        self._timers[key] = self._spawn(self._fire(task), "reactroles-toggle-settle")

    async def _wait_then_arm(self, task: DebounceTask) -> None:
        key = task.key
        for attempt in range(1, self.max_attempts + 1):
            task.attempts = attempt
            await asyncio.sleep(self.window)
            if key not in self._running:
                if self._waiters.get(key) is asyncio.current_task():
                    del self._waiters[key]
                self._arm(task)
                return

        if self._waiters.get(key) is asyncio.current_task():
            del self._waiters[key]
        logger.warning(
            "toggle_settle_abandoned member=%s message=%s attempts=%d",
            task.member.id,
            task.message_id,
            task.attempts,
        )

    async def _fire(self, task: DebounceTask) -> None:
        key = task.key
        await asyncio.sleep(self.window)
        if self._timers.get(key) is asyncio.current_task():
            del self._timers[key]

        async with self._locks[key]:
            self._running.add(key)
            try:
                await self._settle(task)
            except Exception:  # Background task, nobody awaits it
                logger.exception(
                    "toggle_settle_failed member=%s message=%s",
                    task.member.id,
                    task.message_id,
                )
            finally:
                self._running.discard(key)
        if key not in self._timers and key not in self._waiters:
            self._locks.pop(key, None)
