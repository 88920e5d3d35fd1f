"""
Forgetting-curve review scheduler.

Interval progression (correct reviews):
    Review 0 -> 1 day
    Review 1 -> 3 days
    Review 2 -> 7 days
    Review 3 -> 16 days
    Review 4+ -> round(interval * easiness_factor)

Incorrect review:
    Reset interval to 1 day
    Reduce easiness_factor by 0.2 (min 1.3)

Easiness factor range: 1.3 - 2.5. Correct reviews leave it unchanged.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

from mastery_engine.core.models import DEFAULT_EASINESS, MasteryScore, utcnow

# =============================================================================
# Constants
# =============================================================================

MIN_EASINESS = 1.3
MAX_EASINESS = 2.5
EASINESS_DECREMENT = 0.2
FIXED_INTERVALS: tuple[int, ...] = (1, 3, 7, 16)
OVERDUE_AFTER = timedelta(days=1)

__all__ = [
    "DEFAULT_EASINESS",
    "EASINESS_DECREMENT",
    "FIXED_INTERVALS",
    "MAX_EASINESS",
    "MIN_EASINESS",
    "DueReviewSummary",
    "ReviewForecast",
    "ScheduleResult",
    "apply_schedule",
    "clamp_easiness",
    "due_review_summary",
    "due_scores",
    "initial_schedule",
    "is_due",
    "is_overdue",
    "next_review",
    "overdue_scores",
    "upcoming_reviews",
]


def clamp_easiness(value: float) -> float:
    return max(MIN_EASINESS, min(MAX_EASINESS, value))


# =============================================================================
# Core Algorithm
# =============================================================================


@dataclass(frozen=True)
class ScheduleResult:
    """Scheduler output for one review attempt."""

    interval: int  # days
    easiness: float
    review_count: int
    due_at: datetime


def next_review(
    previous_interval: int,
    previous_easiness: float,
    review_count: int,
    was_correct: bool,
    now: datetime | None = None,
) -> ScheduleResult:
    """
    Calculate the next review after a review attempt.

    Args:
        previous_interval: Interval (days) that led to this review
        previous_easiness: Current easiness factor
        review_count: Reviews completed before this one
        was_correct: Whether the review answer was correct
        now: Review time (defaults to utcnow)

    Returns:
        ScheduleResult with the new interval, easiness, count and due date
    """
    if review_count < 0:
        raise ValueError(f"review_count must be >= 0, got {review_count}")
    if previous_interval < 0:
        raise ValueError(f"previous_interval must be >= 0, got {previous_interval}")

    now = now or utcnow()
    easiness = clamp_easiness(previous_easiness)
    new_count = review_count + 1

    if not was_correct:
        interval = 1
        easiness = clamp_easiness(easiness - EASINESS_DECREMENT)
    elif new_count <= len(FIXED_INTERVALS):
        interval = FIXED_INTERVALS[new_count - 1]
    else:
        interval = max(1, round(previous_interval * easiness))

    return ScheduleResult(
        interval=interval,
        easiness=easiness,
        review_count=new_count,
        due_at=now + timedelta(days=interval),
    )


def initial_schedule(score: MasteryScore, now: datetime | None = None) -> MasteryScore:
    """Enter a freshly mastered node into the schedule: first review tomorrow."""
    now = now or utcnow()
    return score.copy(
        review_interval=FIXED_INTERVALS[0],
        easiness_factor=clamp_easiness(score.easiness_factor),
        next_review_at=now + timedelta(days=FIXED_INTERVALS[0]),
    )


def apply_schedule(score: MasteryScore, result: ScheduleResult) -> MasteryScore:
    return score.copy(
        review_interval=result.interval,
        easiness_factor=result.easiness,
        review_count=result.review_count,
        next_review_at=result.due_at,
    )


# =============================================================================
# Due / Overdue Queries
# =============================================================================


def is_due(score: MasteryScore, now: datetime | None = None) -> bool:
    """Practiced at least once and next_review_at <= now."""
    now = now or utcnow()
    return (
        score.practice_count >= 1
        and score.next_review_at is not None
        and score.next_review_at <= now
    )


def is_overdue(score: MasteryScore, now: datetime | None = None) -> bool:
    """More than one day past due."""
    now = now or utcnow()
    return is_due(score, now) and score.next_review_at < now - OVERDUE_AFTER


def _due_sort_key(score: MasteryScore) -> tuple[datetime, float]:
    return (score.next_review_at, score.bkt_probability)


def due_scores(scores: Iterable[MasteryScore], now: datetime | None = None) -> list[MasteryScore]:
    now = now or utcnow()
    return sorted((s for s in scores if is_due(s, now)), key=_due_sort_key)


def overdue_scores(scores: Iterable[MasteryScore], now: datetime | None = None) -> list[MasteryScore]:
    now = now or utcnow()
    return sorted((s for s in scores if is_overdue(s, now)), key=_due_sort_key)


# =============================================================================
# Forecasting
# =============================================================================


@dataclass
class ReviewForecast:
    """Reviews falling on one calendar day."""

    day: date
    node_codes: list[str] = field(default_factory=list)
    overdue_codes: list[str] = field(default_factory=list)

    @property
    def node_count(self) -> int:
        return len(self.node_codes)


def upcoming_reviews(
    scores: Iterable[MasteryScore],
    days: int = 7,
    now: datetime | None = None,
) -> list[ReviewForecast]:
    """
    Forecast reviews for the next ``days`` days.

    Overdue reviews are assigned to today. One entry per day, including empty days.
    """
    now = now or utcnow()
    today = now.date()
    end = now + timedelta(days=days)
    forecast = {today + timedelta(days=d): ReviewForecast(day=today + timedelta(days=d)) for d in range(days)}

    for score in sorted(
        (s for s in scores if s.practice_count >= 1 and s.next_review_at is not None),
        key=lambda s: s.next_review_at,
    ):
        if score.next_review_at > end:
            continue
        assigned = max(score.next_review_at.date(), today)
        entry = forecast.get(assigned)
        if entry is None:
            continue
        entry.node_codes.append(score.node_code)
        if score.next_review_at < now:
            entry.overdue_codes.append(score.node_code)

    return list(forecast.values())


@dataclass(frozen=True)
class DueReviewSummary:
    """Compact due-review status for notifications."""

    due_count: int
    overdue_count: int
    urgency: str  # "none" | "due" | "overdue"
    next_due_at: datetime | None


def due_review_summary(scores: Iterable[MasteryScore], now: datetime | None = None) -> DueReviewSummary:
    now = now or utcnow()
    scores = list(scores)
    due = due_scores(scores, now)
    overdue = [s for s in due if is_overdue(s, now)]
    future = [
        s.next_review_at
        for s in scores
        if s.practice_count >= 1 and s.next_review_at is not None and s.next_review_at > now
    ]

    if overdue:
        urgency = "overdue"
    elif due:
        urgency = "due"
    else:
        urgency = "none"

    return DueReviewSummary(
        due_count=len(due),
        overdue_count=len(overdue),
        urgency=urgency,
        next_due_at=min(future) if future else None,
    )
