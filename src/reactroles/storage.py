"""Binding persistence: store backends and the fire-and-forget persister.

Backends:
- ``JsonBindingStore``: one JSON array, fully rewritten on every flush.
  Disabled bindings are loaded too so rewriting keeps them on disk.
- ``DatabaseBindingStore``: SQLAlchemy rows upserted by binding id. Disabled
  rows are filtered at load time; they stay in the table.
- ``NullBindingStore``: storage turned off.

The in-memory registry is the source of truth; a crash between a mutation and
its flush loses at most that mutation, which boot reconciliation rediscovers.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import pathlib
from collections.abc import Callable, Iterable
from typing import TYPE_CHECKING, Protocol

from pydantic import ValidationError

from reactroles.models.binding import Binding

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


class BindingStore(Protocol):
    enabled: bool

    async def load(self) -> list[Binding]: ...

    async def save(self, all_bindings: list[Binding], changed: list[Binding]) -> None:
        """Persist ``changed``; full-collection backends write ``all_bindings``."""
        ...

    async def delete(self, binding: Binding, all_bindings: list[Binding]) -> None: ...


class NullBindingStore:
    enabled = False

    async def load(self) -> list[Binding]:
        return []

    async def save(self, all_bindings: list[Binding], changed: list[Binding]) -> None:
        return None

    async def delete(self, binding: Binding, all_bindings: list[Binding]) -> None:
        return None


def _parse_records(records: Iterable[object], source: str) -> list[Binding]:
    bindings: list[Binding] = []
    for record in records:
        if not isinstance(record, dict) or not record.get("message"):
            continue
        try:
            bindings.append(Binding.from_record(record))
        except ValidationError:
            logger.warning("store_skipped_invalid_record source=%s id=%s", source, record.get("id"))
    return bindings


class JsonBindingStore:
    """Bindings as a JSON array at ``path``."""

    enabled = True

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = pathlib.Path(path)
        self._lock = asyncio.Lock()

    async def load(self) -> list[Binding]:
        if not self.path.exists():
            return []
        raw = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
        if not raw.strip():
            return []
        data = json.loads(raw)
        if not isinstance(data, list):
            logger.warning("json_store_unexpected_root path=%s", self.path)
            return []
        return _parse_records(data, str(self.path))

    async def save(self, all_bindings: list[Binding], changed: list[Binding]) -> None:
        await self._write(all_bindings)
        logger.debug("json_store_saved path=%s count=%d", self.path, len(all_bindings))

    async def delete(self, binding: Binding, all_bindings: list[Binding]) -> None:
        await self._write([b for b in all_bindings if b.id != binding.id])

    async def _write(self, bindings: list[Binding]) -> None:
        payload = json.dumps([b.to_record() for b in bindings], ensure_ascii=False)
        async with self._lock:
            await asyncio.to_thread(self._replace, payload)

    def _replace(self, payload: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(payload, encoding="utf-8")
        os.replace(tmp, self.path)


class DatabaseBindingStore:
    """Bindings as ``reaction_roles`` rows, upserted by id."""

    enabled = True

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    async def load(self) -> list[Binding]:
        from reactroles.db.engine import get_session
        from reactroles.db.repository import Repository, row_to_binding

        async with get_session(self.engine) as session:
            rows = await Repository(session).get_bindings(include_disabled=False)
            bindings: list[Binding] = []
            for row in rows:
                try:
                    bindings.append(row_to_binding(row))
                except ValidationError:
                    logger.warning("db_store_skipped_invalid_row id=%s", row.id)
            return bindings

    async def save(self, all_bindings: list[Binding], changed: list[Binding]) -> None:
        from reactroles.db.engine import get_session
        from reactroles.db.repository import Repository

        async with get_session(self.engine) as session:
            repo = Repository(session)
            for binding in changed:
                await repo.upsert_binding(binding)
        logger.debug("db_store_saved count=%d", len(changed))

    async def delete(self, binding: Binding, all_bindings: list[Binding]) -> None:
        from reactroles.db.engine import get_session
        from reactroles.db.repository import Repository

        async with get_session(self.engine) as session:
            await Repository(session).delete_binding(binding.id)


class Persister:
    """Schedules store writes without blocking the event-handling chain."""

    def __init__(self, store: BindingStore, snapshot: Callable[[], list[Binding]]) -> None:
        self.store = store
        self._snapshot = snapshot
        self._tasks: set[asyncio.Task[None]] = set()

    def schedule(self, *bindings: Binding) -> None:
        """Queue a background flush of ``bindings``. Failures are logged only."""
        if not self.store.enabled or not bindings:
            return
        task = asyncio.create_task(self._flush_logged(list(bindings)), name="reactroles-persist")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def flush(self, *bindings: Binding) -> None:
        """Write ``bindings`` now. Store errors propagate to the caller."""
        if not self.store.enabled:
            return
        await self.store.save(self._snapshot(), list(bindings))

    async def delete(self, binding: Binding) -> None:
        if not self.store.enabled:
            return
        await self.store.delete(binding, self._snapshot())

    async def drain(self) -> None:
        """Wait for every scheduled flush to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def _flush_logged(self, bindings: list[Binding]) -> None:
        try:
            await self.store.save(self._snapshot(), bindings)
        except Exception:  # Fire-and-forget: the next boot reconciles drift
            logger.exception("persist_failed bindings=%s", [b.id for b in bindings])
