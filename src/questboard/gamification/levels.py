"""Level computation.

The curve is flat: every ``level_step_points`` points is one level, with no
diminishing returns. Level 1 starts at zero points.
"""

from __future__ import annotations

from questboard.config import get_settings


def level_for_points(total_points: int, step: int | None = None) -> int:
    """``floor(total_points / step) + 1``."""
    step = step or get_settings().level_step_points
    return max(total_points, 0) // step + 1


def compute_level(total_points: int, step: int | None = None) -> dict:
    """Level plus progress towards the next one."""
    step = step or get_settings().level_step_points
    level = level_for_points(total_points, step)
    level_floor = (level - 1) * step
    return {
        "level": level,
        "points_into_level": total_points - level_floor,
        "points_for_level": step,
        "next_level": level + 1,
        "next_level_at": level * step,
    }
