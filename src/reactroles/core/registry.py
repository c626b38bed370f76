"""In-memory index of bindings.

Single writer: only the event-handling call chain (dispatcher, reconciler,
boot pass, manager) mutates it. Disabled bindings stay indexed so the JSON
store can keep writing them out; every lookup used for live event handling
filters them.
"""

from __future__ import annotations

from collections.abc import Iterator

from reactroles.models.binding import Binding, BindingKind, binding_id


class Registry:
    """Bindings keyed by ``"{message_id}-{emoji}"``, in insertion order."""

    def __init__(self) -> None:
        self._bindings: dict[str, Binding] = {}

    def __len__(self) -> int:
        return len(self._bindings)

    def __iter__(self) -> Iterator[Binding]:
        return iter(list(self._bindings.values()))

    def __contains__(self, key: str) -> bool:
        return key in self._bindings

    def add(self, binding: Binding) -> None:
        self._bindings[binding.id] = binding

    def remove(self, key: str) -> Binding | None:
        return self._bindings.pop(key, None)

    def clear(self) -> None:
        self._bindings.clear()

    def get(self, key: str) -> Binding | None:
        return self._bindings.get(key)

    def get_enabled(self, message_id: int, emoji: str) -> Binding | None:
        binding = self._bindings.get(binding_id(message_id, emoji))
        if binding is None or binding.disabled:
            return None
        return binding

    def enabled(self) -> list[Binding]:
        return [b for b in self._bindings.values() if not b.disabled]

    def disabled_count(self) -> int:
        return sum(1 for b in self._bindings.values() if b.disabled)

    # --- Lookups for routing and cascade delete ---

    def by_message(self, message_id: int) -> list[Binding]:
        return [b for b in self.enabled() if b.message_id == message_id]

    def by_channel(self, channel_id: int) -> list[Binding]:
        return [b for b in self.enabled() if b.channel_id == channel_id]

    def by_guild(self, guild_id: int) -> list[Binding]:
        return [b for b in self.enabled() if b.guild_id == guild_id]

    def by_role(self, role_id: int) -> list[Binding]:
        return [b for b in self.enabled() if role_id in b.roles]

    def by_emoji(self, emoji: str) -> list[Binding]:
        return [b for b in self.enabled() if b.emoji == emoji]

    def toggle_group(self, message_id: int) -> list[Binding]:
        """Enabled TOGGLE bindings sharing a message. Computed, never stored."""
        return [b for b in self.by_message(message_id) if b.has_kind(BindingKind.TOGGLE)]
