"""In-memory async event bus for reaction-role domain events.

The reconciler publishes events (``role.granted``, ``requirement.missing``, ...)
and consumers either register a listener callback or open a queue-backed
subscription. Events are fire-and-forget: with nobody listening they are
dropped.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import Any

logger = logging.getLogger(__name__)

READY = "ready"
ROLE_GRANTED = "role.granted"
ROLE_REVOKED = "role.revoked"
ALL_REACTIONS_CLEARED = "reactions.cleared"
MISSING_REQUIREMENT = "requirement.missing"
MISSING_AUTHORIZATION = "authorization.missing"

EVENT_TYPES = frozenset(
    {
        READY,
        ROLE_GRANTED,
        ROLE_REVOKED,
        ALL_REACTIONS_CLEARED,
        MISSING_REQUIREMENT,
        MISSING_AUTHORIZATION,
    }
)

Listener = Callable[[dict[str, Any]], Awaitable[None] | None]


class EventBus:
    """Async pub/sub bus.

    Usage:
        bus = EventBus()
        bus.add_listener(ROLE_GRANTED, lambda data: print(data["role_id"]))

        async with bus.subscribe(None) as sub:
            event = await sub.get(timeout=1.0)

        await bus.publish(ROLE_GRANTED, {"member": member, "role_id": 42})
    """

    def __init__(self) -> None:
        self._subscribers: dict[str, list[asyncio.Queue[dict[str, Any]]]] = defaultdict(list)
        self._wildcard_subscribers: list[asyncio.Queue[dict[str, Any]]] = []
        self._listeners: dict[str, list[Listener]] = defaultdict(list)

    def add_listener(self, event_type: str, listener: Listener) -> None:
        if event_type not in EVENT_TYPES:
            msg = f"Unknown event type: {event_type}"
            raise ValueError(msg)
        self._listeners[event_type].append(listener)

    def remove_listener(self, event_type: str, listener: Listener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners[event_type].remove(listener)

    async def publish(self, event_type: str, data: dict[str, Any]) -> int:
        """Deliver an event to listeners, typed and wildcard subscribers.

        Returns the number of receivers. A failing listener is logged and
        does not stop delivery to the others.
        """
        envelope = {"type": event_type, "data": data}
        count = 0

        for listener in list(self._listeners.get(event_type, [])):
            try:
                result = listener(data)
                if inspect.isawaitable(result):
                    await result
                count += 1
            except Exception:  # Listener code is user-supplied; isolate it
                logger.exception("event_listener_failed event=%s", event_type)

        for queue in [*self._subscribers.get(event_type, []), *self._wildcard_subscribers]:
            try:
                queue.put_nowait(envelope)
                count += 1
            except asyncio.QueueFull:
                logger.warning("Dropping event %s for slow subscriber", event_type)

        return count

    def subscribe(self, event_type: str | None = None, max_size: int = 100) -> Subscription:
        """Open a queue-backed subscription (all events when ``event_type`` is None).

        Use as an async context manager so the queue is unregistered on exit.
        """
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=max_size)
        return Subscription(self, queue, event_type)

    def _register(self, queue: asyncio.Queue[dict[str, Any]], event_type: str | None) -> None:
        if event_type is None:
            self._wildcard_subscribers.append(queue)
        else:
            self._subscribers[event_type].append(queue)

    def _unregister(self, queue: asyncio.Queue[dict[str, Any]], event_type: str | None) -> None:
        if event_type is None:
            with contextlib.suppress(ValueError):
                self._wildcard_subscribers.remove(queue)
        else:
            with contextlib.suppress(ValueError):
                self._subscribers[event_type].remove(queue)

    @property
    def subscriber_count(self) -> int:
        """Active subscriptions plus registered listeners."""
        typed = sum(len(subs) for subs in self._subscribers.values())
        listeners = sum(len(ls) for ls in self._listeners.values())
        return typed + len(self._wildcard_subscribers) + listeners


class Subscription:
    """An active subscription. Async context manager and async iterator."""

    def __init__(
        self,
        bus: EventBus,
        queue: asyncio.Queue[dict[str, Any]],
        event_type: str | None,
    ) -> None:
        self._bus = bus
        self._queue = queue
        self._event_type = event_type
        self._active = False

    async def __aenter__(self) -> Subscription:
        self._bus._register(self._queue, self._event_type)
        self._active = True
        return self

    async def __aexit__(self, *args: object) -> None:
        self._active = False
        self._bus._unregister(self._queue, self._event_type)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> dict[str, Any]:
        if not self._active:
            raise StopAsyncIteration
        try:
            return await self._queue.get()
        except asyncio.CancelledError:
            raise StopAsyncIteration from None

    async def get(self, timeout: float | None = None) -> dict[str, Any] | None:
        """Next event, or None after ``timeout`` seconds."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except TimeoutError:
            return None
