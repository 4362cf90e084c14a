"""Level curve and level-badge rarity.

xp_to_next(level) = floor(base * growth ** (level - 1)); with the defaults
that is 100, 150, 225, 337, 506, ...
"""

from __future__ import annotations

import math

from vpay.gamification.constants import Rarity

BASE_XP = 100
GROWTH = 1.5


def xp_to_next(level: int, base: int = BASE_XP, growth: float = GROWTH) -> int:
    """XP needed to go from ``level`` to ``level + 1``."""
    if level < 1:
        raise ValueError(f"level must be >= 1, got {level}")
    return max(1, math.floor(base * growth ** (level - 1)))


def settle_levels(
    level: int,
    xp: int,
    amount: int,
    base: int = BASE_XP,
    growth: float = GROWTH,
) -> tuple[int, int, int, list[int]]:
    """Apply ``amount`` XP to (level, xp) and cascade through thresholds.

    Returns (new_level, new_xp, new_xp_to_next, levels_reached) where
    levels_reached lists every level entered, in order.
    """
    threshold = xp_to_next(level, base, growth)
    new_xp = xp + amount
    reached: list[int] = []
    while new_xp >= threshold:
        new_xp -= threshold
        level += 1
        threshold = xp_to_next(level, base, growth)
        reached.append(level)
    return level, new_xp, threshold, reached


def level_rarity(level: int) -> str:
    if level >= 50:
        return Rarity.LEGENDARY
    if level >= 25:
        return Rarity.EPIC
    if level >= 10:
        return Rarity.RARE
    return Rarity.COMMON
