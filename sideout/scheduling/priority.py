"""Waitlist priority score.

score = 100
      + max((8 - recent_attendance) * 10, 0)   fewer recent sessions -> higher (0..80)
      + min(days_since_last * 0.5, 30)         longer absence -> higher (0..30)
      - no_shows * 15
      + waitlists * 3

Higher score is promoted first; equal scores fall back to registration time.
The result is not clamped and goes negative for chronic no-shows.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional, TypeVar

BASE_SCORE = 100.0
NEVER_ATTENDED_DAYS = 999


@dataclass(frozen=True)
class PriorityInputs:
    recent_attendance: int = 0
    days_since_last_attendance: int = NEVER_ATTENDED_DAYS
    no_shows: int = 0
    waitlists: int = 0


def days_since(last_attendance: Optional[date], as_of: date) -> int:
    """Whole days from last attendance to as_of; 0 when the attendance is dated later."""
    if last_attendance is None:
        return NEVER_ATTENDED_DAYS
    return max((as_of - last_attendance).days, 0)


def priority_score(inputs: PriorityInputs) -> float:
    attendance_factor = max((8 - inputs.recent_attendance) * 10, 0)
    recency_factor = min(inputs.days_since_last_attendance * 0.5, 30)
    no_show_penalty = inputs.no_shows * 15
    waitlist_bonus = inputs.waitlists * 3
    return BASE_SCORE + attendance_factor + recency_factor - no_show_penalty + waitlist_bonus


def as_decimal(score: float) -> Decimal:
    return Decimal(str(round(score, 2)))


T = TypeVar("T")


def waitlist_order(entries: Iterable[tuple[T, float, datetime]]) -> list[tuple[T, float]]:
    """Sort (item, score, registered_at) by score desc then registered_at asc."""
    ordered = sorted(entries, key=lambda e: (-e[1], e[2]))
    return [(item, score) for item, score, _ in ordered]
