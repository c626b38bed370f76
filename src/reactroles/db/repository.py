"""Repository for reaction-role bindings.

Wraps an async SQLAlchemy session. Writes are upserts keyed by binding id,
so flushing a binding twice is harmless.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reactroles.db.models import BindingRow
from reactroles.models.binding import Binding


def row_to_binding(row: BindingRow) -> Binding:
    return Binding.from_record(
        {
            "message": row.message,
            "channel": row.channel,
            "group": row.guild,
            "emoji": row.emoji,
            "roles": list(row.roles or []),
            "max": row.max,
            "kind": row.kind,
            "requirements": dict(row.requirements or {}),
            "disabled": row.disabled,
            "winners": list(row.winners or []),
        }
    )


class Repository:
    """Async repository for binding rows."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_bindings(self, include_disabled: bool = False) -> list[BindingRow]:
        stmt = select(BindingRow)
        if not include_disabled:
            stmt = stmt.where(BindingRow.disabled.is_(False))
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def get_binding(self, binding_id: str) -> BindingRow | None:
        return await self.session.get(BindingRow, binding_id)

    async def upsert_binding(self, binding: Binding) -> BindingRow:
        """Insert or update the row for ``binding``."""
        record = binding.to_record()
        row = await self.session.get(BindingRow, binding.id)
        if row is None:
            row = BindingRow(id=binding.id)
            self.session.add(row)
        row.message = binding.message_id
        row.channel = binding.channel_id
        row.guild = binding.guild_id
        row.emoji = binding.emoji
        row.roles = list(binding.roles)
        row.max = binding.max
        row.kind = record["kind"]
        row.requirements = record["requirements"]
        row.disabled = binding.disabled
        row.winners = list(binding.winners)
        await self.session.flush()
        return row

    async def delete_binding(self, binding_id: str) -> bool:
        row = await self.session.get(BindingRow, binding_id)
        if row is None:
            return False
        await self.session.delete(row)
        await self.session.flush()
        return True
