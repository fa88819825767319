"""
Stack slot allocation for concurrently visible messages.

Slots are small non-negative integers. ``allocate`` always hands out the
smallest free slot, so the layout stays compact and predictable as
messages come and go.
"""

from __future__ import annotations

from dataclasses import dataclass

from constants import STACK_BASE_OFFSET, STACK_HORIZONTAL_VARIATION


@dataclass(frozen=True)
class StackOffset:
    """Visual offset of a stacked message, in pixels."""
    x: int
    y: int

    def as_dict(self) -> dict[str, int]:
        return {"x": self.x, "y": self.y}


class StackAllocator:
    """
    Hands out and reclaims integer slots.

    The held set never grows beyond the number of live messages, which is
    capped by the scheduler, so a linear scan for the lowest gap is enough.
    """

    def __init__(
        self,
        base_offset: int = STACK_BASE_OFFSET,
        horizontal_variation: int = STACK_HORIZONTAL_VARIATION,
    ) -> None:
        self.base_offset = base_offset
        self.horizontal_variation = horizontal_variation
        self._held: set[int] = set()

    def allocate(self) -> int:
        """Return the smallest slot not currently held."""
        slot = 0
        while slot in self._held:
            slot += 1
        self._held.add(slot)
        return slot

    def release(self, slot: int) -> None:
        """Free a slot for reuse. Releasing a free slot is a no-op."""
        self._held.discard(slot)

    def reset(self) -> None:
        self._held.clear()

    def offset_for(self, slot: int) -> StackOffset:
        """Deterministic layout transform: slots stack vertically, odd ones shift right."""
        variation = self.horizontal_variation
        return StackOffset(
            x=(slot % 2) * variation - variation // 2,
            y=slot * self.base_offset,
        )

    @property
    def held(self) -> frozenset[int]:
        return frozenset(self._held)

    def __len__(self) -> int:
        return len(self._held)
