"""Reaction-role binding models.

A Binding maps one emoji reaction on one message to one or more roles.
"""

from __future__ import annotations

from enum import IntEnum, IntFlag, StrEnum
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_serializer,
    field_validator,
    model_validator,
)


class BindingKind(IntFlag):
    """Behaviour bits of a binding. Kinds compose, e.g. ``TOGGLE | REVERSED``."""

    NORMAL = 1
    TOGGLE = 2
    JUST_WIN = 4
    JUST_LOSE = 8
    REVERSED = 16


KIND_MASK = int(
    BindingKind.NORMAL
    | BindingKind.TOGGLE
    | BindingKind.JUST_WIN
    | BindingKind.JUST_LOSE
    | BindingKind.REVERSED
)


def is_valid_kind(value: int) -> bool:
    """True when ``value`` is a non-empty combination of known kind bits."""
    return isinstance(value, int) and 0 < value and not value & ~KIND_MASK


class BindingState(StrEnum):
    ACTIVE = "active"
    DISABLED = "disabled"


class ActionType(IntEnum):
    """What the reconciler is asked to do with a member's roles."""

    GRANT = 1
    REVOKE = 2


class RequirementType(StrEnum):
    BOOST = "boost"
    VERIFIED_DEVELOPER = "verified_developer"


class Requirements(BaseModel):
    """Eligibility flags a member must satisfy before winning a binding."""

    boost: bool = False
    verified_developer: bool = Field(
        default=False,
        validation_alias=AliasChoices("verified_developer", "verifiedDeveloper"),
        serialization_alias="verifiedDeveloper",
    )

    @property
    def has_any(self) -> bool:
        return self.boost or self.verified_developer


class Binding(BaseModel):
    """One configured reaction -> role rule.

    Identity is ``"{message_id}-{emoji}"``. ``winners`` keeps insertion order
    and never holds a member twice; capacity is first come, first served.
    """

    model_config = ConfigDict(validate_assignment=False)

    guild_id: int = Field(
        validation_alias=AliasChoices("guild_id", "group", "guild"),
        serialization_alias="group",
    )
    channel_id: int = Field(
        validation_alias=AliasChoices("channel_id", "channel"),
        serialization_alias="channel",
    )
    message_id: int = Field(
        validation_alias=AliasChoices("message_id", "message"),
        serialization_alias="message",
    )
    emoji: str
    roles: list[int] = Field(min_length=1)
    kind: BindingKind = BindingKind.NORMAL
    max: int = 0
    requirements: Requirements = Field(default_factory=Requirements)
    state: BindingState = BindingState.ACTIVE
    winners: list[int] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _translate_legacy_fields(cls, data: Any) -> Any:
        """Accept stored records: ``disabled`` flag and legacy ``type`` kind."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        if "kind" not in data and "type" in data:
            data["kind"] = data.pop("type")
        if "state" not in data and "disabled" in data:
            data["state"] = BindingState.DISABLED if data["disabled"] else BindingState.ACTIVE
        data.pop("disabled", None)
        data.pop("id", None)
        return data

    @field_validator("kind", mode="plain")
    @classmethod
    def _validate_kind(cls, value: Any) -> BindingKind:
        if isinstance(value, bool) or not isinstance(value, int):
            try:
                value = int(value)
            except (TypeError, ValueError):
                msg = f"invalid binding kind: {value!r}"
                raise ValueError(msg) from None
        if not is_valid_kind(value):
            msg = f"invalid binding kind: {value!r}"
            raise ValueError(msg)
        return BindingKind(value)

    @field_validator("max")
    @classmethod
    def _normalise_max(cls, value: int) -> int:
        return value if value > 0 else 0

    @field_validator("winners")
    @classmethod
    def _dedupe_winners(cls, value: list[int]) -> list[int]:
        return list(dict.fromkeys(value))

    @field_serializer("kind")
    def _serialize_kind(self, value: BindingKind) -> int:
        return int(value)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def id(self) -> str:
        return binding_id(self.message_id, self.emoji)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def disabled(self) -> bool:
        return self.state is BindingState.DISABLED

    def has_kind(self, flag: BindingKind) -> bool:
        return bool(self.kind & flag)

    @property
    def is_toggle(self) -> bool:
        return self.has_kind(BindingKind.TOGGLE)

    def is_full_for(self, member_id: int) -> bool:
        """True when granting ``member_id`` would exceed ``max``.

        Members already counted in ``winners`` never push the binding over.
        """
        if self.max <= 0 or member_id in self.winners:
            return False
        return len(self.winners) >= self.max

    def add_winner(self, member_id: int) -> bool:
        if member_id in self.winners:
            return False
        self.winners.append(member_id)
        return True

    def remove_winner(self, member_id: int) -> bool:
        if member_id not in self.winners:
            return False
        self.winners.remove(member_id)
        return True

    def disable(self) -> None:
        self.state = BindingState.DISABLED

    def to_record(self) -> dict[str, Any]:
        """Serialise to the persisted JSON record layout."""
        return self.model_dump(mode="json", by_alias=True, exclude={"state"})

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Binding:
        return cls.model_validate(record)


def binding_id(message_id: int, emoji: str) -> str:
    return f"{message_id}-{emoji}"


class BindingSpec(BaseModel):
    """User-supplied parameters for registering a new binding.

    The guild is taken from the target message, never from the caller.
    """

    channel_id: int
    message_id: int
    roles: list[int]
    emoji: str
    kind: int = int(BindingKind.NORMAL)
    max: int | None = None
    requirements: Requirements = Field(default_factory=Requirements)
