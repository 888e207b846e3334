"""Level curve tests: flat 1000-point steps, level 1 at zero."""

import pytest

from questboard.gamification.levels import compute_level, level_for_points


class TestLevelForPoints:

    @pytest.mark.parametrize(
        ("points", "level"),
        [(0, 1), (1, 1), (999, 1), (1000, 2), (1001, 2), (2500, 3), (10_000, 11)],
    )
    def test_default_step(self, points, level):
        assert level_for_points(points) == level

    def test_custom_step(self):
        assert level_for_points(250, step=100) == 3

    def test_negative_total_clamps_to_level_1(self):
        assert level_for_points(-50) == 1


class TestComputeLevel:

    def test_progress_inside_level(self):
        result = compute_level(1250)
        assert result["level"] == 2
        assert result["points_into_level"] == 250
        assert result["points_for_level"] == 1000
        assert result["next_level"] == 3
        assert result["next_level_at"] == 2000

    def test_exact_boundary_starts_new_level(self):
        result = compute_level(3000)
        assert result["level"] == 4
        assert result["points_into_level"] == 0

    def test_zero_state(self):
        result = compute_level(0)
        assert result["level"] == 1
        assert result["next_level_at"] == 1000
