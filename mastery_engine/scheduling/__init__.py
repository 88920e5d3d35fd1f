"""Spaced repetition: review scheduling and review sessions."""

from mastery_engine.scheduling.review import (
    ReviewNode,
    ReviewResult,
    ReviewService,
    ReviewSession,
    ReviewSummary,
    select_review_nodes,
)
from mastery_engine.scheduling.scheduler import (
    DueReviewSummary,
    ReviewForecast,
    ScheduleResult,
    apply_schedule,
    due_review_summary,
    due_scores,
    initial_schedule,
    is_due,
    is_overdue,
    next_review,
    overdue_scores,
    upcoming_reviews,
)

__all__ = [
    # Scheduler
    "DueReviewSummary",
    "ReviewForecast",
    "ScheduleResult",
    "apply_schedule",
    "due_review_summary",
    "due_scores",
    "initial_schedule",
    "is_due",
    "is_overdue",
    "next_review",
    "overdue_scores",
    "upcoming_reviews",
    # Review sessions
    "ReviewNode",
    "ReviewResult",
    "ReviewService",
    "ReviewSession",
    "ReviewSummary",
    "select_review_nodes",
]
