"""Eligibility checks a member must pass before winning a binding."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from reactroles.core.event_bus import MISSING_REQUIREMENT
from reactroles.models.binding import Binding, RequirementType

if TYPE_CHECKING:
    from reactroles.core.event_bus import EventBus
    from reactroles.core.platform import ChatPlatform, Member

logger = logging.getLogger(__name__)


class RequirementEvaluator:
    """Checks boost, then verified-developer. Only the first failure is reported."""

    def __init__(self, platform: ChatPlatform, event_bus: EventBus) -> None:
        self.platform = platform
        self.event_bus = event_bus

    async def evaluate(self, binding: Binding, member: Member) -> RequirementType | None:
        """Return the first missing requirement, or None when the member is eligible.

        On failure a ``requirement.missing`` event is published and the
        member's reaction is removed from the message.
        """
        missing = self._first_missing(binding, member)
        if missing is None:
            return None

        await self.event_bus.publish(
            MISSING_REQUIREMENT,
            {"requirement": missing, "member": member, "binding": binding},
        )
        await self.platform.remove_reaction(
            binding.channel_id, binding.message_id, binding.emoji, member.id
        )
        logger.info(
            "requirement_missing member=%s binding=%s requirement=%s",
            member.id,
            binding.id,
            missing.value,
        )
        return missing

    @staticmethod
    def _first_missing(binding: Binding, member: Member) -> RequirementType | None:
        requirements = binding.requirements
        if requirements.boost and not member.boosting:
            return RequirementType.BOOST
        if requirements.verified_developer and not member.verified_developer:
            return RequirementType.VERIFIED_DEVELOPER
        return None
