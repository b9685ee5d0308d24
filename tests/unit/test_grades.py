"""
Unit tests for the grade scale.

Tests:
- rank of each grade
- single-step transitions and clamping at both ends
- up/down round trips
"""

import pytest

from reinforce.core.grades import Direction, Grade, is_deficient, rank, step


class TestRank:
    """Ranks follow Low < Medium < High; None is unranked."""

    @pytest.mark.parametrize(
        "grade,expected",
        [(Grade.NONE, None), (Grade.LOW, 0), (Grade.MEDIUM, 1), (Grade.HIGH, 2)],
    )
    def test_rank(self, grade, expected):
        assert rank(grade) == expected


class TestStep:
    """Adjacent moves along the scale."""

    def test_down_from_low_clears_deficiency(self):
        assert step(Grade.LOW, Direction.DOWN) is Grade.NONE

    def test_up_from_none_starts_at_low(self):
        assert step(Grade.NONE, Direction.UP) is Grade.LOW

    def test_up_from_high_saturates(self):
        assert step(Grade.HIGH, Direction.UP) is Grade.HIGH

    def test_down_from_none_stays_none(self):
        assert step(Grade.NONE, Direction.DOWN) is Grade.NONE

    def test_single_steps(self):
        assert step(Grade.LOW, Direction.UP) is Grade.MEDIUM
        assert step(Grade.MEDIUM, Direction.UP) is Grade.HIGH
        assert step(Grade.HIGH, Direction.DOWN) is Grade.MEDIUM
        assert step(Grade.MEDIUM, Direction.DOWN) is Grade.LOW

    @pytest.mark.parametrize("grade", [Grade.LOW, Grade.MEDIUM])
    def test_up_then_down_returns_to_start(self, grade):
        assert step(step(grade, Direction.UP), Direction.DOWN) is grade

    def test_high_up_then_down_does_not_round_trip(self):
        """Saturation at High loses the step."""
        assert step(step(Grade.HIGH, Direction.UP), Direction.DOWN) is Grade.MEDIUM

    def test_low_down_then_up_returns_to_low(self):
        assert step(step(Grade.LOW, Direction.DOWN), Direction.UP) is Grade.LOW


def test_is_deficient():
    assert not is_deficient(Grade.NONE)
    assert all(is_deficient(g) for g in (Grade.LOW, Grade.MEDIUM, Grade.HIGH))
