"""
Message selection with anti-repetition.

Picks the next message text for a mode while avoiding the most recently
shown ones, and builds mixed pools from category master lists for modes
that ship no message list of their own.
"""

from __future__ import annotations

import logging
import math
import random
from typing import Mapping, Optional, Sequence

from constants import MIX_TOTAL_MESSAGES, SELECTOR_RECENT_WINDOW

logger = logging.getLogger(__name__)


class MessageSelector:
    """
    Chooses message texts.

    Args:
        rng: Random source; pass a seeded ``random.Random`` for reproducible picks
        recent_window: Upper bound on how many recent history entries are excluded
    """

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        recent_window: int = SELECTOR_RECENT_WINDOW,
    ) -> None:
        self._rng = rng or random.Random()
        self.recent_window = recent_window

    def recent_exclusions(self, pool: Sequence[str], history: Sequence[str]) -> set[str]:
        """The history entries that ``select`` will avoid for this pool."""
        window = min(self.recent_window, len(pool) // 2)
        if window <= 0:
            return set()
        return set(history[-window:])

    def select(self, pool: Sequence[str], history: Sequence[str]) -> Optional[str]:
        """
        Pick a random message that was not shown recently.

        Falls back to the whole pool when every entry is recent.

        Returns:
            Message text, or None if the pool is empty
        """
        if not pool:
            return None

        recent = self.recent_exclusions(pool, history)
        candidates = [msg for msg in pool if msg not in recent]
        if not candidates:
            candidates = list(pool)

        return self._rng.choice(candidates)

    def mix_categories(
        self,
        pools: Mapping[str, Sequence[str]],
        weights: Mapping[str, float],
        total: int = MIX_TOTAL_MESSAGES,
    ) -> list[tuple[str, str]]:
        """
        Build a mixed message pool from category master lists.

        Each category gets ``floor(total * weight)`` messages; the remainder
        goes to the category with the largest weight. Messages are sampled
        without replacement, capped by the size of each source pool.

        Args:
            pools: category name -> master message list
            weights: category name -> weight (normalized if they do not sum to 1.0)
            total: target size of the mixed pool

        Returns:
            List of (text, category) pairs
        """
        categories = [name for name in weights if weights[name] > 0]
        if not categories or total <= 0:
            return []

        weight_sum = sum(weights[name] for name in categories)
        targets = {name: math.floor(total * weights[name] / weight_sum) for name in categories}

        remainder = total - sum(targets.values())
        if remainder > 0:
            largest = max(categories, key=lambda name: weights[name])
            targets[largest] += remainder

        mixed: list[tuple[str, str]] = []
        for name in categories:
            source = list(pools.get(name, ()))
            count = min(targets[name], len(source))
            if count < targets[name]:
                logger.debug(
                    "[MessageSelector] Category %s has %d messages, wanted %d",
                    name, len(source), targets[name],
                )
            mixed.extend((text, name) for text in self._rng.sample(source, count))

        return mixed
