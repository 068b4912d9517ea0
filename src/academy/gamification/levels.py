"""Level computation from total XP.

level = floor(sqrt(total_xp / 100)), clamped to [1, 100]. The database
function ``calculate_user_level`` implements the same formula and MUST stay
in sync with this module.
"""

from __future__ import annotations

import math

MIN_LEVEL = 1
MAX_LEVEL = 100
XP_PER_LEVEL_UNIT = 100


def calculate_level(total_xp: int) -> int:
    """Return the level for a total XP amount."""
    raw = math.isqrt(max(total_xp, 0) // XP_PER_LEVEL_UNIT)
    return max(MIN_LEVEL, min(MAX_LEVEL, raw))


def xp_threshold(level: int) -> int:
    """Minimum total XP needed to be at ``level``."""
    if level <= MIN_LEVEL:
        return 0
    level = min(level, MAX_LEVEL)
    return XP_PER_LEVEL_UNIT * level * level


def compute_level(total_xp: int) -> dict:
    """Compute level info from total XP.

    Returns the level plus how far the user is into it, in the same shape
    the profile and XP endpoints serve.
    """
    level = calculate_level(total_xp)
    next_level = min(level + 1, MAX_LEVEL)

    floor_xp = xp_threshold(level)
    xp_for_level = xp_threshold(next_level) - floor_xp

    # At max level, avoid division by zero on the client progress bar
    if xp_for_level <= 0:
        xp_for_level = 1

    return {
        "level": level,
        "xp_into_level": max(total_xp, 0) - floor_xp,
        "xp_for_level": xp_for_level,
        "next_level": next_level,
    }
