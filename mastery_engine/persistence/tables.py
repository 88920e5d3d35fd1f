"""
SQLAlchemy table models for the SQL repository.

One table per persisted engine record. Diagnostic state is deliberately
absent: it lives only in the in-process TTL store.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


# ========================================
# KNOWLEDGE GRAPH
# ========================================


class KnowledgeNodeRow(Base):
    """Immutable concept definition."""

    __tablename__ = "knowledge_nodes"

    code: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    domain: Mapped[str] = mapped_column(String(64), default="Math")
    grade_level: Mapped[str] = mapped_column(String(8), default="K")
    difficulty: Mapped[int] = mapped_column(Integer, default=1)
    prerequisites: Mapped[list] = mapped_column(JSON, default=list)
    successors: Mapped[list] = mapped_column(JSON, default=list)


class LearningGoalRow(Base):
    __tablename__ = "learning_goals"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    required_node_codes: Mapped[list] = mapped_column(JSON, default=list)


# ========================================
# STUDENT STATE
# ========================================


class MasteryScoreRow(Base):
    """Per (student, node) mastery and scheduler state."""

    __tablename__ = "mastery_scores"

    student_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    node_code: Mapped[str] = mapped_column(String(64), primary_key=True)
    bkt_probability: Mapped[float] = mapped_column(Float, nullable=False)
    level: Mapped[str] = mapped_column(String(16), nullable=False)
    practice_count: Mapped[int] = mapped_column(Integer, default=0)
    correct_count: Mapped[int] = mapped_column(Integer, default=0)
    last_practiced: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    personal_best_ms: Mapped[int | None] = mapped_column(Integer)

    # Scheduler
    review_count: Mapped[int] = mapped_column(Integer, default=0)
    review_interval: Mapped[int] = mapped_column(Integer, default=0)
    easiness_factor: Mapped[float] = mapped_column(Float, default=2.5)
    next_review_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    # Flags
    fluency_drill_active: Mapped[bool] = mapped_column(Boolean, default=False)
    truly_mastered: Mapped[bool] = mapped_column(Boolean, default=False)
    consecutive_correct: Mapped[int] = mapped_column(Integer, default=0)

    __table_args__ = (Index("ix_mastery_scores_due", "student_id", "next_review_at"),)


class QuestionResponseRow(Base):
    """Write-once answer log."""

    __tablename__ = "question_responses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False)
    node_code: Mapped[str] = mapped_column(String(64), nullable=False)
    session_id: Mapped[str] = mapped_column(String(64), nullable=False)
    question_text: Mapped[str] = mapped_column(Text, default="")
    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    response_time_ms: Mapped[int] = mapped_column(Integer, default=0)
    activity: Mapped[str] = mapped_column(String(32), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("ix_question_responses_pair", "student_id", "node_code", "created_at"),)


class LearningSessionRow(Base):
    __tablename__ = "learning_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    student_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    session_type: Mapped[str] = mapped_column(String(16), nullable=False)
    state: Mapped[str] = mapped_column(String(32), nullable=False)
    current_node_code: Mapped[str | None] = mapped_column(String(64))
    learning_step: Mapped[int] = mapped_column(Integer, default=1)
    step_correct: Mapped[int] = mapped_column(Integer, default=0)
    step_total: Mapped[int] = mapped_column(Integer, default=0)
    questions_answered: Mapped[int] = mapped_column(Integer, default=0)
    correct_answers: Mapped[int] = mapped_column(Integer, default=0)
    consecutive_incorrect: Mapped[int] = mapped_column(Integer, default=0)
    mode: Mapped[str] = mapped_column(String(16), default="standard")
    review_node_codes: Mapped[list] = mapped_column(JSON, default=list)
    completed_node_codes: Mapped[list] = mapped_column(JSON, default=list)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    duration_seconds: Mapped[int | None] = mapped_column(Integer)
