"""Pre-mutation hooks.

A hook is called right before a role is added to or removed from a member
and may veto the change by returning False. Hooks can be plain functions or
coroutines with the signature ``(member, role_id, binding) -> bool``.
"""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from reactroles.core.platform import Member
    from reactroles.models.binding import Binding

Hook = Callable[["Member", int, "Binding"], bool | Awaitable[bool]]


def _allow(member: Member, role_id: int, binding: Binding) -> bool:
    return True


@dataclass
class Hooks:
    pre_grant: Hook = _allow
    pre_revoke: Hook = _allow

    def __post_init__(self) -> None:
        if not callable(self.pre_grant):
            msg = "Hook 'pre_grant' must be callable."
            raise TypeError(msg)
        if not callable(self.pre_revoke):
            msg = "Hook 'pre_revoke' must be callable."
            raise TypeError(msg)

    async def allow_grant(self, member: Member, role_id: int, binding: Binding) -> bool:
        return await _call(self.pre_grant, member, role_id, binding)

    async def allow_revoke(self, member: Member, role_id: int, binding: Binding) -> bool:
        return await _call(self.pre_revoke, member, role_id, binding)


async def _call(hook: Hook, member: Member, role_id: int, binding: Binding) -> bool:
    result = hook(member, role_id, binding)
    if inspect.isawaitable(result):
        result = await result
    return result is True
