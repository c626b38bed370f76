"""Exception types raised by the reaction-role manager and platform adapters."""

from __future__ import annotations


class ReactionRoleError(Exception):
    """Base class for reaction-role failures."""


class InvalidMessageError(ReactionRoleError):
    """The target message is missing or not in a guild (e.g. a DM)."""


class InvalidRoleError(ReactionRoleError):
    """None of the requested roles exist in the message's guild."""


class InvalidEmojiError(ReactionRoleError):
    """The emoji cannot be resolved to a usable identifier."""


class InvalidKindError(ReactionRoleError):
    """The binding kind is not a combination of known kind bits."""


class BindingNotFoundError(ReactionRoleError):
    """No binding matches the given selector."""


class PlatformError(ReactionRoleError):
    """The chat platform rejected or failed an operation."""


class PlatformNotFoundError(PlatformError):
    """A guild, channel, message or member vanished while we were using it."""


class PlatformUnknownEmojiError(PlatformError):
    """The platform refused a reaction because it does not know the emoji."""
