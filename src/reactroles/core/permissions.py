"""Authorization filter for the roles a binding wants to mutate."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from reactroles.core.event_bus import MISSING_AUTHORIZATION

if TYPE_CHECKING:
    from reactroles.core.event_bus import EventBus
    from reactroles.core.platform import ChatPlatform, Member
    from reactroles.models.binding import ActionType, Binding

logger = logging.getLogger(__name__)


class PermissionGuard:
    """Splits a binding's roles into ones the bot may manage and ones it may not.

    ``missing-authorization`` is published at most once per (role, member)
    pair for the lifetime of the process; the warned pairs are never persisted.
    """

    def __init__(self, platform: ChatPlatform, event_bus: EventBus) -> None:
        self.platform = platform
        self.event_bus = event_bus
        self._warned: set[tuple[int, int]] = set()

    def already_warned(self, role_id: int, member_id: int) -> bool:
        return (role_id, member_id) in self._warned

    async def filter_authorized(
        self, action: ActionType, binding: Binding, member: Member
    ) -> list[int]:
        """Return the authorized subset of ``binding.roles``, in binding order.

        Roles that no longer exist in the guild are dropped silently.
        """
        guild_id = binding.guild_id
        roles = [r for r in binding.roles if self.platform.role_exists(guild_id, r)]
        authorized = [r for r in roles if self.platform.is_role_authorized(guild_id, r)]
        newly_unauthorized = [
            r for r in roles if r not in authorized and (r, member.id) not in self._warned
        ]

        if newly_unauthorized:
            self._warned.update((r, member.id) for r in newly_unauthorized)
            logger.warning(
                "missing_authorization action=%s member=%s binding=%s roles=%s",
                action.name,
                member.id,
                binding.id,
                newly_unauthorized,
            )
            await self.event_bus.publish(
                MISSING_AUTHORIZATION,
                {
                    "action": action,
                    "member": member,
                    "roles": newly_unauthorized,
                    "binding": binding,
                },
            )
        return authorized
