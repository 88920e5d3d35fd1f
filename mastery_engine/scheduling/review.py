"""
Review session builder.

Selection:
    1. Due nodes (practiced at least once, next_review_at <= now), overdue
       first, then weakest probability first, capped at ``max_nodes``
    2. If fewer than ``max_nodes``, up to ``refresher_count`` MASTERED nodes
       not practiced for ``stale_days`` days, oldest first

Each review answer updates BKT and the schedule in a single atomic write.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from loguru import logger

from mastery_engine.core.models import (
    ActivityTag,
    LearningSession,
    MasteryLevel,
    MasteryScore,
    QuestionResponse,
    SessionType,
    utcnow,
)
from mastery_engine.events.bus import EventBus, EventType, get_event_bus
from mastery_engine.persistence.repository import Repository
from mastery_engine.scheduling.scheduler import apply_schedule, is_due, is_overdue, next_review
from mastery_engine.session.state_machine import SessionState, SessionStateMachine, TeachingEvents
from mastery_engine.tracing.bkt import KnowledgeTracer

MAX_REVIEW_NODES = 10
REFRESHER_COUNT = 3
REFRESHER_STALE_DAYS = 14
MINUTES_PER_NODE = 2


@dataclass(frozen=True)
class ReviewNode:
    node_code: str
    probability: float
    level: MasteryLevel
    next_review_at: datetime | None
    overdue: bool = False
    refresher: bool = False


@dataclass(frozen=True)
class ReviewSession:
    session: LearningSession
    nodes: list[ReviewNode]
    estimated_minutes: int

    @property
    def node_codes(self) -> list[str]:
        return [n.node_code for n in self.nodes]


@dataclass(frozen=True)
class ReviewResult:
    node_code: str
    was_correct: bool
    probability: float
    level: MasteryLevel
    previous_interval: int
    next_interval: int
    easiness_factor: float
    next_review_at: datetime
    remaining: int


@dataclass(frozen=True)
class ReviewSummary:
    session_id: str
    total_nodes: int
    reviewed: int
    correct: int
    retention_rate: int  # percent
    completed: bool


def select_review_nodes(
    scores: Iterable[MasteryScore],
    now: datetime | None = None,
    max_nodes: int = MAX_REVIEW_NODES,
    refresher_count: int = REFRESHER_COUNT,
    stale_days: int = REFRESHER_STALE_DAYS,
) -> list[ReviewNode] | None:
    """
    Pick the nodes for one review session.

    Returns:
        Ordered ReviewNodes, or None when nothing is due and no refresher qualifies
    """
    now = now or utcnow()
    scores = list(scores)

    due = sorted(
        (s for s in scores if is_due(s, now)),
        key=lambda s: (not is_overdue(s, now), s.bkt_probability, s.next_review_at),
    )[:max_nodes]
    picked = [
        ReviewNode(s.node_code, s.bkt_probability, s.level, s.next_review_at, overdue=is_overdue(s, now))
        for s in due
    ]

    slots = min(refresher_count, max_nodes - len(picked))
    if slots > 0:
        taken = {s.node_code for s in due}
        stale_before = now - timedelta(days=stale_days)
        refreshers = sorted(
            (
                s
                for s in scores
                if s.node_code not in taken
                and s.level is MasteryLevel.MASTERED
                and s.last_practiced is not None
                and s.last_practiced <= stale_before
            ),
            key=lambda s: s.last_practiced,
        )[:slots]
        picked.extend(
            ReviewNode(s.node_code, s.bkt_probability, s.level, s.next_review_at, refresher=True)
            for s in refreshers
        )

    return picked or None


class ReviewService:
    """Repository-backed review sessions."""

    def __init__(
        self,
        repository: Repository,
        tracer: KnowledgeTracer | None = None,
        state_machine: SessionStateMachine | None = None,
        event_bus: EventBus | None = None,
        max_nodes: int | None = None,
        refresher_count: int | None = None,
        stale_days: int | None = None,
        minutes_per_node: int | None = None,
    ):
        from config import get_settings

        settings = get_settings()
        self.repository = repository
        self.tracer = tracer or KnowledgeTracer()
        self.event_bus = event_bus or get_event_bus()
        self.state_machine = state_machine or SessionStateMachine(self.event_bus)
        self.max_nodes = max_nodes if max_nodes is not None else settings.review_max_nodes
        self.refresher_count = refresher_count if refresher_count is not None else settings.review_refresher_count
        self.stale_days = stale_days if stale_days is not None else settings.review_refresher_stale_days
        self.minutes_per_node = minutes_per_node if minutes_per_node is not None else settings.review_minutes_per_node

    def build_session(self, student_id: str, now: datetime | None = None) -> ReviewSession | None:
        """Create a REVIEW session for the student, or None when there is nothing to review."""
        now = now or utcnow()
        nodes = select_review_nodes(
            self.repository.list_masteries(student_id),
            now,
            max_nodes=self.max_nodes,
            refresher_count=self.refresher_count,
            stale_days=self.stale_days,
        )
        if nodes is None:
            logger.debug(f"No reviews due for {student_id}")
            return None

        session = LearningSession(
            id=uuid.uuid4().hex,
            student_id=student_id,
            session_type=SessionType.REVIEW,
            state=SessionState.REVIEW,
            current_node_code=nodes[0].node_code,
            review_node_codes=[n.node_code for n in nodes],
            started_at=now,
        )
        self.repository.put_session(session)
        logger.info(f"Review session {session.id} for {student_id}: {len(nodes)} node(s)")
        return ReviewSession(session=session, nodes=nodes, estimated_minutes=len(nodes) * self.minutes_per_node)

    def process_answer(
        self,
        session_id: str,
        node_code: str,
        was_correct: bool,
        response_time_ms: int = 0,
        now: datetime | None = None,
    ) -> ReviewResult:
        """
        Record one review answer.

        Raises:
            NotFoundError: Unknown session or no mastery record for the node
            ValueError: Node is not part of the session, or the session is not in REVIEW
        """
        now = now or utcnow()
        session = self.repository.get_session(session_id)
        if node_code not in session.review_node_codes:
            raise ValueError(f"Node {node_code} is not part of review session {session_id}")
        if session.state != SessionState.REVIEW:
            raise ValueError(f"Review session {session_id} is {session.state}, not REVIEW")

        student_id = session.student_id
        previous = self.repository.get_mastery(student_id, node_code)

        def mutate(current: MasteryScore | None) -> MasteryScore:
            base = current or previous
            traced = self.tracer.update(base, was_correct, now, response_time_ms)
            schedule = next_review(base.review_interval, base.easiness_factor, base.review_count, was_correct, now)
            return apply_schedule(traced, schedule)

        score = self.repository.update_mastery(student_id, node_code, mutate)
        self.repository.append_response(
            QuestionResponse(
                student_id=student_id,
                node_code=node_code,
                session_id=session.id,
                question_text="",
                is_correct=was_correct,
                response_time_ms=response_time_ms,
                activity=ActivityTag.REVIEW,
                created_at=now,
            )
        )

        session.questions_answered += 1
        if was_correct:
            session.correct_answers += 1
        if node_code not in session.completed_node_codes:
            session.completed_node_codes.append(node_code)
        pending = [c for c in session.review_node_codes if c not in session.completed_node_codes]
        session.current_node_code = pending[0] if pending else None
        self.repository.put_session(session)

        event = EventType.REVIEW_PASSED if was_correct else EventType.REVIEW_FAILED
        self.event_bus.publish(
            event,
            student_id,
            node_code=node_code,
            session_id=session.id,
            next_review_at=score.next_review_at.isoformat(),
        )

        return ReviewResult(
            node_code=node_code,
            was_correct=was_correct,
            probability=score.bkt_probability,
            level=score.level,
            previous_interval=previous.review_interval,
            next_interval=score.review_interval,
            easiness_factor=score.easiness_factor,
            next_review_at=score.next_review_at,
            remaining=len(pending),
        )

    def summary(self, session_id: str) -> ReviewSummary:
        session = self.repository.get_session(session_id)
        total = session.questions_answered
        rate = round(session.correct_answers / total * 100) if total else 0
        return ReviewSummary(
            session_id=session.id,
            total_nodes=len(session.review_node_codes),
            reviewed=len(session.completed_node_codes),
            correct=session.correct_answers,
            retention_rate=rate,
            completed=session.is_completed,
        )

    def complete(self, session_id: str, now: datetime | None = None) -> ReviewSummary:
        """REVIEW -> COMPLETED."""
        session = self.repository.get_session(session_id)
        self.state_machine.transition(session, SessionState.COMPLETED, TeachingEvents.END_SESSION, now=now)
        self.repository.put_session(session)
        summary = self.summary(session_id)
        logger.info(f"Review session {session_id} completed: {summary.retention_rate}% retention")
        return summary
