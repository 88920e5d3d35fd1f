"""
SQLAlchemy-backed repository.

Mastery read-modify-write runs inside one transaction with
SELECT ... FOR UPDATE (dialects without row locks, such as SQLite, fall
back to the process-local per-pair lock that always wraps the update).
"""

from __future__ import annotations

import threading
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime

from loguru import logger
from sqlalchemy import Engine, create_engine, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from mastery_engine.core.errors import NotFoundError
from mastery_engine.core.models import (
    ActivityTag,
    KnowledgeNode,
    LearningGoal,
    LearningSession,
    MasteryLevel,
    MasteryScore,
    QuestionResponse,
    SessionType,
)
from mastery_engine.persistence.repository import MasteryMutator
from mastery_engine.persistence.tables import (
    Base,
    KnowledgeNodeRow,
    LearningGoalRow,
    LearningSessionRow,
    MasteryScoreRow,
    QuestionResponseRow,
)


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        return create_engine(
            database_url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, echo=echo, pool_pre_ping=True)


def _aware(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo; everything is stored as UTC
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _enum_value(value) -> str:
    return getattr(value, "value", value)


# ========================================
# Row <-> model mapping
# ========================================


def _node_from_row(row: KnowledgeNodeRow) -> KnowledgeNode:
    return KnowledgeNode(
        code=row.code,
        title=row.title,
        description=row.description or "",
        domain=row.domain,
        grade_level=row.grade_level,
        difficulty=row.difficulty,
        prerequisites=tuple(row.prerequisites or ()),
        successors=tuple(row.successors or ()),
    )


def _score_from_row(row: MasteryScoreRow) -> MasteryScore:
    return MasteryScore(
        student_id=row.student_id,
        node_code=row.node_code,
        bkt_probability=row.bkt_probability,
        level=MasteryLevel(row.level),
        practice_count=row.practice_count,
        correct_count=row.correct_count,
        last_practiced=_aware(row.last_practiced),
        personal_best_ms=row.personal_best_ms,
        review_count=row.review_count,
        review_interval=row.review_interval,
        easiness_factor=row.easiness_factor,
        next_review_at=_aware(row.next_review_at),
        fluency_drill_active=row.fluency_drill_active,
        truly_mastered=row.truly_mastered,
        consecutive_correct=row.consecutive_correct,
    )


def _copy_score_to_row(score: MasteryScore, row: MasteryScoreRow) -> None:
    row.bkt_probability = score.bkt_probability
    row.level = _enum_value(score.level)
    row.practice_count = score.practice_count
    row.correct_count = score.correct_count
    row.last_practiced = score.last_practiced
    row.personal_best_ms = score.personal_best_ms
    row.review_count = score.review_count
    row.review_interval = score.review_interval
    row.easiness_factor = score.easiness_factor
    row.next_review_at = score.next_review_at
    row.fluency_drill_active = score.fluency_drill_active
    row.truly_mastered = score.truly_mastered
    row.consecutive_correct = score.consecutive_correct


def _session_from_row(row: LearningSessionRow) -> LearningSession:
    return LearningSession(
        id=row.id,
        student_id=row.student_id,
        session_type=SessionType(row.session_type),
        state=row.state,
        current_node_code=row.current_node_code,
        learning_step=row.learning_step,
        step_correct=row.step_correct,
        step_total=row.step_total,
        questions_answered=row.questions_answered,
        correct_answers=row.correct_answers,
        consecutive_incorrect=row.consecutive_incorrect,
        mode=row.mode,
        review_node_codes=list(row.review_node_codes or []),
        completed_node_codes=list(row.completed_node_codes or []),
        started_at=_aware(row.started_at),
        ended_at=_aware(row.ended_at),
        duration_seconds=row.duration_seconds,
    )


def _copy_session_to_row(session: LearningSession, row: LearningSessionRow) -> None:
    row.student_id = session.student_id
    row.session_type = _enum_value(session.session_type)
    row.state = _enum_value(session.state)
    row.current_node_code = session.current_node_code
    row.learning_step = int(session.learning_step)
    row.step_correct = session.step_correct
    row.step_total = session.step_total
    row.questions_answered = session.questions_answered
    row.correct_answers = session.correct_answers
    row.consecutive_incorrect = session.consecutive_incorrect
    row.mode = session.mode
    row.review_node_codes = list(session.review_node_codes)
    row.completed_node_codes = list(session.completed_node_codes)
    row.started_at = session.started_at
    row.ended_at = session.ended_at
    row.duration_seconds = session.duration_seconds


class SqlRepository:
    """Repository backed by any SQLAlchemy 2.0 engine."""

    def __init__(self, engine: Engine | str | None = None):
        if engine is None:
            from config import get_settings

            settings = get_settings()
            engine = build_engine(settings.database_url, echo=settings.log_level == "DEBUG")
        elif isinstance(engine, str):
            engine = build_engine(engine)
        self.engine = engine
        self._session_factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
        self._lock = threading.Lock()
        self._pair_locks: dict[tuple[str, str], threading.Lock] = {}

    def init_db(self) -> None:
        """Initialize database tables."""
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database tables initialized")

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Provide a transactional scope around a series of operations."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:  # Intentionally broad - rollback on any error before re-raising
            session.rollback()
            raise
        finally:
            session.close()

    def _pair_lock(self, key: tuple[str, str]) -> threading.Lock:
        with self._lock:
            return self._pair_locks.setdefault(key, threading.Lock())

    # ========================================
    # Knowledge Nodes
    # ========================================

    def put_node(self, node: KnowledgeNode) -> None:
        with self.session_scope() as session:
            row = session.get(KnowledgeNodeRow, node.code) or KnowledgeNodeRow(code=node.code)
            row.title = node.title
            row.description = node.description
            row.domain = node.domain
            row.grade_level = node.grade_level
            row.difficulty = node.difficulty
            row.prerequisites = list(node.prerequisites)
            row.successors = list(node.successors)
            session.add(row)

    def find_node(self, code: str) -> KnowledgeNode | None:
        with self.session_scope() as session:
            row = session.get(KnowledgeNodeRow, code)
            return _node_from_row(row) if row else None

    def get_node(self, code: str) -> KnowledgeNode:
        node = self.find_node(code)
        if node is None:
            raise NotFoundError("KnowledgeNode", code)
        return node

    def list_nodes(self) -> list[KnowledgeNode]:
        with self.session_scope() as session:
            rows = session.scalars(select(KnowledgeNodeRow).order_by(KnowledgeNodeRow.code)).all()
            return [_node_from_row(r) for r in rows]

    # ========================================
    # Mastery
    # ========================================

    def find_mastery(self, student_id: str, node_code: str) -> MasteryScore | None:
        with self.session_scope() as session:
            row = session.get(MasteryScoreRow, (student_id, node_code))
            return _score_from_row(row) if row else None

    def get_mastery(self, student_id: str, node_code: str) -> MasteryScore:
        score = self.find_mastery(student_id, node_code)
        if score is None:
            raise NotFoundError("MasteryScore", f"{student_id}/{node_code}")
        return score

    def put_mastery(self, score: MasteryScore) -> None:
        with self._pair_lock(score.key), self.session_scope() as session:
            row = session.get(MasteryScoreRow, score.key) or MasteryScoreRow(
                student_id=score.student_id, node_code=score.node_code
            )
            _copy_score_to_row(score, row)
            session.add(row)

    def update_mastery(self, student_id: str, node_code: str, mutator: MasteryMutator) -> MasteryScore:
        """
        Atomic read-modify-write of one mastery row.

        FOR UPDATE cannot lock a row that does not exist yet, so a first
        insert that loses a race with another process is retried once as an
        update of the row that process created.
        """
        key = (student_id, node_code)
        with self._pair_lock(key):
            try:
                return self._update_mastery_once(key, mutator)
            except IntegrityError:
                logger.warning(f"Mastery {student_id}/{node_code} inserted concurrently, retrying as update")
                return self._update_mastery_once(key, mutator)

    def _update_mastery_once(self, key: tuple[str, str], mutator: MasteryMutator) -> MasteryScore:
        student_id, node_code = key
        with self.session_scope() as session:
            stmt = (
                select(MasteryScoreRow)
                .where(MasteryScoreRow.student_id == student_id, MasteryScoreRow.node_code == node_code)
                .with_for_update()
            )
            row = session.scalars(stmt).first()
            current = _score_from_row(row) if row else None
            updated = mutator(current)
            if updated.key != key:
                raise ValueError(f"Mutator changed mastery key {key} -> {updated.key}")
            if row is None:
                row = MasteryScoreRow(student_id=student_id, node_code=node_code)
                session.add(row)
            _copy_score_to_row(updated, row)
            return updated

    def list_masteries(self, student_id: str) -> list[MasteryScore]:
        with self.session_scope() as session:
            rows = session.scalars(
                select(MasteryScoreRow).where(MasteryScoreRow.student_id == student_id)
            ).all()
            return [_score_from_row(r) for r in rows]

    # ========================================
    # Responses
    # ========================================

    def append_response(self, response: QuestionResponse) -> None:
        with self.session_scope() as session:
            session.add(
                QuestionResponseRow(
                    student_id=response.student_id,
                    node_code=response.node_code,
                    session_id=response.session_id,
                    question_text=response.question_text,
                    is_correct=response.is_correct,
                    response_time_ms=response.response_time_ms,
                    activity=_enum_value(response.activity),
                    created_at=response.created_at,
                )
            )

    def list_responses(self, student_id: str, node_code: str, limit: int | None = None) -> list[QuestionResponse]:
        """Responses oldest first; ``limit`` keeps the most recent N."""
        stmt = (
            select(QuestionResponseRow)
            .where(QuestionResponseRow.student_id == student_id, QuestionResponseRow.node_code == node_code)
            .order_by(QuestionResponseRow.created_at.desc(), QuestionResponseRow.id.desc())
        )
        if limit:
            stmt = stmt.limit(limit)
        with self.session_scope() as session:
            rows = list(session.scalars(stmt).all())
        rows.reverse()
        return [
            QuestionResponse(
                student_id=r.student_id,
                node_code=r.node_code,
                session_id=r.session_id,
                question_text=r.question_text,
                is_correct=r.is_correct,
                response_time_ms=r.response_time_ms,
                activity=ActivityTag(r.activity),
                created_at=_aware(r.created_at),
            )
            for r in rows
        ]

    # ========================================
    # Sessions
    # ========================================

    def put_session(self, session_record: LearningSession) -> None:
        with self.session_scope() as session:
            row = session.get(LearningSessionRow, session_record.id) or LearningSessionRow(id=session_record.id)
            _copy_session_to_row(session_record, row)
            session.add(row)

    def find_session(self, session_id: str) -> LearningSession | None:
        with self.session_scope() as session:
            row = session.get(LearningSessionRow, session_id)
            return _session_from_row(row) if row else None

    def get_session(self, session_id: str) -> LearningSession:
        found = self.find_session(session_id)
        if found is None:
            raise NotFoundError("LearningSession", session_id)
        return found

    # ========================================
    # Goals
    # ========================================

    def put_goal(self, goal: LearningGoal) -> None:
        with self.session_scope() as session:
            row = session.get(LearningGoalRow, goal.id) or LearningGoalRow(id=goal.id)
            row.name = goal.name
            row.required_node_codes = list(goal.required_node_codes)
            session.add(row)

    def find_goal(self, goal_id: str) -> LearningGoal | None:
        with self.session_scope() as session:
            row = session.get(LearningGoalRow, goal_id)
            if row is None:
                return None
            return LearningGoal(id=row.id, name=row.name, required_node_codes=tuple(row.required_node_codes or ()))

    def get_goal(self, goal_id: str) -> LearningGoal:
        goal = self.find_goal(goal_id)
        if goal is None:
            raise NotFoundError("LearningGoal", goal_id)
        return goal
