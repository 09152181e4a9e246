"""Back/forward history of visited article keys."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class HistoryStack:
    """Browser-style history: a list of keys plus a position pointer.

    ``entries[position]`` is always the key on screen. Pushing while not at
    the end drops the forward entries.
    """

    entries: list[str] = field(default_factory=list)
    position: int = -1

    @property
    def current(self) -> str | None:
        if self.position < 0:
            return None
        return self.entries[self.position]

    def push(self, key: str) -> None:
        del self.entries[self.position + 1 :]
        self.entries.append(key)
        self.position = len(self.entries) - 1

    def can_go_back(self) -> bool:
        return self.position > 0

    def can_go_forward(self) -> bool:
        return 0 <= self.position < len(self.entries) - 1

    def peek(self, offset: int) -> tuple[int, str] | None:
        """Return ``(index, key)`` of the entry ``offset`` steps away, if any."""
        index = self.position + offset
        if self.position < 0 or not 0 <= index < len(self.entries):
            return None
        return index, self.entries[index]

    def move_to(self, index: int) -> None:
        if not 0 <= index < len(self.entries):
            raise IndexError(f"history index {index} out of range")
        self.position = index
