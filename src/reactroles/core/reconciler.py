"""Grant/revoke policy pipeline.

``Reconciler.apply`` is the single decision point for "this member reacted"
and "this member un-reacted". It is shared by live reaction events and the
boot pass, so both follow the same rules:

1. disabled bindings are ignored
2. REVERSED flips the action
3. JUST_LOSE never grants (the reaction is removed), JUST_WIN never revokes
4. only roles the bot may manage are touched
5. grants respect capacity and requirements; TOGGLE grants are debounced
6. every role add/remove passes through the pre-mutation hooks

Grant and revoke are idempotent: a held role is never re-added and an absent
role is never removed, so no duplicate events or winners are produced.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from reactroles.core.debounce import (
    DEFAULT_DEBOUNCE_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    DebounceTask,
    ToggleGroupDebouncer,
)
from reactroles.core.errors import PlatformError, PlatformNotFoundError
from reactroles.core.event_bus import ROLE_GRANTED, ROLE_REVOKED
from reactroles.models.binding import ActionType, Binding, BindingKind

if TYPE_CHECKING:
    from reactroles.core.event_bus import EventBus
    from reactroles.core.hooks import Hooks
    from reactroles.core.permissions import PermissionGuard
    from reactroles.core.platform import ChatPlatform, Member
    from reactroles.core.registry import Registry
    from reactroles.core.requirements import RequirementEvaluator
    from reactroles.storage import Persister

logger = logging.getLogger(__name__)

VanishedHandler = Callable[[Binding], Awaitable[None]]


class Reconciler:
    def __init__(
        self,
        platform: ChatPlatform,
        event_bus: EventBus,
        registry: Registry,
        guard: PermissionGuard,
        evaluator: RequirementEvaluator,
        hooks: Hooks,
        persister: Persister,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self.platform = platform
        self.event_bus = event_bus
        self.registry = registry
        self.guard = guard
        self.evaluator = evaluator
        self.hooks = hooks
        self.persister = persister
        self.debouncer = ToggleGroupDebouncer(
            self.settle_toggle_group, window=debounce_seconds, max_attempts=max_attempts
        )
        # Set by the manager: cascade-deletes a binding whose message vanished.
        self.on_vanished: VanishedHandler | None = None

    async def apply(self, action: ActionType, member: Member, binding: Binding) -> None:
        if action not in (ActionType.GRANT, ActionType.REVOKE):
            msg = f"Unknown action type: {action!r}"
            raise ValueError(msg)
        if binding.disabled:
            return

        if binding.has_kind(BindingKind.REVERSED):
            action = ActionType.REVOKE if action is ActionType.GRANT else ActionType.GRANT

        if binding.has_kind(BindingKind.JUST_LOSE) and action is ActionType.GRANT:
            await self._remove_reaction(binding, member.id)
            logger.debug("just_lose_skip member=%s binding=%s", member.id, binding.id)
            return

        if binding.has_kind(BindingKind.JUST_WIN) and action is ActionType.REVOKE:
            logger.debug("just_win_keep member=%s binding=%s", member.id, binding.id)
            return

        authorized = await self.guard.filter_authorized(action, binding, member)
        if not authorized:
            logger.debug("no_authorized_roles member=%s binding=%s", member.id, binding.id)
            return

        if action is ActionType.GRANT:
            await self._grant(member, binding, authorized)
        else:
            await self._revoke(member, binding, authorized)

    async def _grant(self, member: Member, binding: Binding, authorized: list[int]) -> None:
        if binding.is_full_for(member.id):
            await self._remove_reaction(binding, member.id)
            logger.info(
                "capacity_reached member=%s binding=%s max=%d",
                member.id,
                binding.id,
                binding.max,
            )
            return

        if await self.evaluator.evaluate(binding, member) is not None:
            return

        if binding.is_toggle:
            self.debouncer.schedule(
                DebounceTask(
                    member=member,
                    guild_id=binding.guild_id,
                    channel_id=binding.channel_id,
                    message_id=binding.message_id,
                    candidate=binding,
                )
            )
            return

        changed = False
        for role_id in authorized:
            if member.has_role(role_id):
                continue
            if not await self.hooks.allow_grant(member, role_id, binding):
                continue
            await self._add_role(member, role_id, binding)
            if binding.add_winner(member.id):
                changed = True
        if changed:
            self.persister.schedule(binding)

    async def _revoke(self, member: Member, binding: Binding, authorized: list[int]) -> None:
        for role_id in authorized:
            if not member.has_role(role_id):
                continue
            if not await self.hooks.allow_revoke(member, role_id, binding):
                continue
            await self._remove_role(member, role_id, binding)
        if binding.remove_winner(member.id):
            self.persister.schedule(binding)

    # --- Toggle groups ---

    async def settle_toggle_group(self, task: DebounceTask) -> None:
        """Converge a member to at most one role of a message's toggle group.

        Every option other than the candidate is revoked and its reaction
        removed. The candidate (or, without one, the first option the member
        still reacts to) is then granted, unless its reaction is gone by now.
        """
        member = await self.platform.resolve_member(task.guild_id, task.member.id)
        if member is None:
            logger.info("toggle_member_gone member=%s", task.member.id)
            return

        group = self.registry.toggle_group(task.message_id)
        candidate = task.candidate
        touched: list[Binding] = []
        try:
            reacted: dict[str, bool] = {}
            for binding in group:
                reacted[binding.id] = await self._has_reacted(binding, member.id)
                if candidate is None and reacted[binding.id]:
                    candidate = binding
                    continue
                if candidate is not None and binding.id == candidate.id:
                    continue
                await self._revoke_toggle_option(member, binding, reacted[binding.id])
                touched.append(binding)

            if candidate is not None:
                touched.append(candidate)
                if candidate.disabled:
                    logger.debug("toggle_candidate_disabled binding=%s", candidate.id)
                else:
                    still_reacted = reacted.get(candidate.id)
                    if still_reacted is None:
                        still_reacted = await self._has_reacted(candidate, member.id)
                    if still_reacted:
                        await self._grant_toggle_candidate(member, candidate)
                    else:
                        logger.info(
                            "toggle_candidate_unreacted member=%s binding=%s",
                            member.id,
                            candidate.id,
                        )
        except PlatformNotFoundError:
            await self._handle_vanished_message(task, group)
            return
        finally:
            if touched:
                self.persister.schedule(*touched)

    async def _revoke_toggle_option(self, member: Member, binding: Binding, reacted: bool) -> None:
        authorized = await self.guard.filter_authorized(ActionType.REVOKE, binding, member)
        kept = False
        for role_id in authorized:
            if not member.has_role(role_id):
                continue
            if not await self.hooks.allow_revoke(member, role_id, binding):
                kept = True
                continue
            await self._remove_role(member, role_id, binding)
            logger.debug("toggle_revoked member=%s role=%s", member.id, role_id)
        if not kept:
            binding.remove_winner(member.id)
        if reacted:
            await self._remove_reaction(binding, member.id)

    async def _grant_toggle_candidate(self, member: Member, binding: Binding) -> None:
        authorized = await self.guard.filter_authorized(ActionType.GRANT, binding, member)
        if not authorized or binding.is_full_for(member.id):
            await self._remove_reaction(binding, member.id)
            return
        if await self.evaluator.evaluate(binding, member) is not None:
            return

        allowed = False
        for role_id in authorized:
            if not await self.hooks.allow_grant(member, role_id, binding):
                continue
            allowed = True
            if not member.has_role(role_id):
                await self._add_role(member, role_id, binding)
        if allowed:
            binding.add_winner(member.id)
        else:
            await self._remove_reaction(binding, member.id)

    async def _handle_vanished_message(self, task: DebounceTask, group: list[Binding]) -> None:
        message = await self.platform.fetch_message(task.channel_id, task.message_id)
        if message is not None:
            logger.warning(
                "toggle_settle_target_missing member=%s message=%s",
                task.member.id,
                task.message_id,
            )
            return
        logger.info("toggle_message_vanished message=%s", task.message_id)
        if self.on_vanished is not None:
            for binding in group:
                await self.on_vanished(binding)

    # --- Bulk revoke ---

    async def revoke_winners(self, binding: Binding) -> tuple[list[int], list[Member], int]:
        """Take the binding's roles back from every recorded winner.

        Returns (roles affected, members affected, winners processed). Used
        when every reaction on a message was cleared at once.
        """
        roles_affected: list[int] = []
        members_affected: list[Member] = []
        taken = 0
        for winner_id in list(binding.winners):
            member = await self.platform.resolve_member(binding.guild_id, winner_id)
            if member is None:
                continue
            authorized = await self.guard.filter_authorized(ActionType.REVOKE, binding, member)
            try:
                for role_id in authorized:
                    if await self.hooks.allow_revoke(member, role_id, binding):
                        if member.has_role(role_id):
                            await self._remove_role(member, role_id, binding)
                        if all(m.id != member.id for m in members_affected):
                            members_affected.append(member)
                    if role_id not in roles_affected:
                        roles_affected.append(role_id)
            except PlatformError:
                logger.warning(
                    "winner_revoke_failed member=%s binding=%s",
                    winner_id,
                    binding.id,
                    exc_info=True,
                )
                continue
            taken += 1
        return roles_affected, members_affected, taken

    # --- Platform helpers ---

    async def _has_reacted(self, binding: Binding, member_id: int) -> bool:
        reactors = await self.platform.fetch_reactors(
            binding.channel_id, binding.message_id, binding.emoji
        )
        return any(r.id == member_id for r in reactors)

    async def _remove_reaction(self, binding: Binding, member_id: int) -> None:
        await self.platform.remove_reaction(
            binding.channel_id, binding.message_id, binding.emoji, member_id
        )

    async def _add_role(self, member: Member, role_id: int, binding: Binding) -> None:
        await self.platform.add_role(member, role_id)
        member.role_ids.add(role_id)
        await self.event_bus.publish(
            ROLE_GRANTED, {"member": member, "role_id": role_id, "binding": binding}
        )
        logger.info("role_granted member=%s role=%s binding=%s", member.id, role_id, binding.id)

    async def _remove_role(self, member: Member, role_id: int, binding: Binding) -> None:
        await self.platform.remove_role(member, role_id)
        member.role_ids.discard(role_id)
        await self.event_bus.publish(
            ROLE_REVOKED, {"member": member, "role_id": role_id, "binding": binding}
        )
        logger.info("role_revoked member=%s role=%s binding=%s", member.id, role_id, binding.id)
