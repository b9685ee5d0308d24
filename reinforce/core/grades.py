"""
Grade scale for student difficulties.

A grade measures how deficient a student is in a difficulty:

    None < Low < Medium < High

``NONE`` is the sentinel for "mastered / not currently deficient" and has no
rank. Moving between grades is always a single adjacent step:

- stepping down from Low clears the deficiency (None)
- stepping up from None starts at Low
- stepping up from High saturates at High
"""

from __future__ import annotations

from enum import Enum


class Grade(str, Enum):
    """Severity of a student's difficulty."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Direction(str, Enum):
    """Direction of a grade transition."""

    UP = "up"  # regression, more deficient
    DOWN = "down"  # improvement, less deficient


# Ranked grades in ascending severity; NONE is deliberately absent.
SCALE: tuple[Grade, ...] = (Grade.LOW, Grade.MEDIUM, Grade.HIGH)


def rank(grade: Grade) -> int | None:
    """Return the position of a grade on the scale, or None for NONE."""
    if grade is Grade.NONE:
        return None
    return SCALE.index(grade)


def step(grade: Grade, direction: Direction) -> Grade:
    """Move one position along the scale, clamping at both ends."""
    position = rank(grade)

    if direction is Direction.DOWN:
        if position is None:
            return Grade.NONE
        if position == 0:
            return Grade.NONE
        return SCALE[position - 1]

    if position is None:
        return SCALE[0]
    return SCALE[min(position + 1, len(SCALE) - 1)]


def is_deficient(grade: Grade) -> bool:
    """True when the grade still calls for reinforcement."""
    return grade is not Grade.NONE

