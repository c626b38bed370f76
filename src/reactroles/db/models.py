"""SQLAlchemy ORM models for the reaction-role store.

One table: ``reaction_roles``, one row per binding, keyed by the binding id.
Role and winner lists are stored as JSON arrays in the same shape as the
JSON file store.
"""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, String
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class BindingRow(Base):
    __tablename__ = "reaction_roles"

    id: Mapped[str] = mapped_column(String(120), primary_key=True)
    message: Mapped[int] = mapped_column(BigInteger, nullable=False)
    channel: Mapped[int] = mapped_column(BigInteger, nullable=False)
    guild: Mapped[int] = mapped_column(BigInteger, nullable=False)
    emoji: Mapped[str] = mapped_column(String(100), nullable=False)
    roles: Mapped[list] = mapped_column(JSON, default=list)
    max: Mapped[int] = mapped_column(Integer, default=0)
    kind: Mapped[int] = mapped_column(Integer, default=1)
    requirements: Mapped[dict] = mapped_column(JSON, default=dict)
    disabled: Mapped[bool] = mapped_column(Boolean, default=False)
    winners: Mapped[list] = mapped_column(JSON, default=list)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    __table_args__ = (
        Index("ix_reaction_roles_message", "message"),
        Index("ix_reaction_roles_disabled", "disabled"),
    )
