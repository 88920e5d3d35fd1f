"""
Configuration settings for the mastery engine.

Uses Pydantic Settings for environment variable management with .env file support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ========================================
    # Database
    # ========================================
    database_url: str = Field(
        default="sqlite:///./mastery_engine.db",
        description="SQLAlchemy connection string for the persistence adapter",
    )

    # ========================================
    # Logging
    # ========================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging verbosity level",
    )
    log_file: str | None = Field(
        default=None,
        description="Log file path (None for stderr only)",
    )

    # ========================================
    # Knowledge Tracing (BKT)
    # ========================================
    bkt_p_guess: float = Field(
        default=0.2,
        ge=0.0,
        lt=0.5,
        description="Probability of a correct answer without mastery",
    )
    bkt_p_slip: float = Field(
        default=0.1,
        ge=0.0,
        lt=0.5,
        description="Probability of a wrong answer despite mastery",
    )
    bkt_p_learn: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Learning transition applied after a correct observation",
    )
    bkt_prior: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Prior probability of mastery for an unseen node",
    )
    bkt_mastered_min_practice: int = Field(
        default=3,
        ge=1,
        description="Minimum attempts before a node can be classified MASTERED",
    )

    # ========================================
    # Diagnostic Placement
    # ========================================
    diagnostic_max_questions: int = Field(
        default=20,
        ge=1,
        description="Question budget for a diagnostic run",
    )
    diagnostic_ttl_seconds: int = Field(
        default=3600,
        ge=1,
        description="Seconds an idle diagnostic state survives in the cache",
    )
    diagnostic_cache_size: int = Field(
        default=10_000,
        ge=1,
        description="Maximum concurrent diagnostic states held in memory",
    )

    # ========================================
    # Mastery Gate
    # ========================================
    gate_window: int = Field(
        default=10,
        ge=2,
        description="Number of recent responses evaluated by the gate",
    )
    gate_accuracy_threshold: float = Field(
        default=0.85,
        description="Minimum recent correctness rate",
    )
    gate_retention_threshold: float = Field(
        default=0.7,
        description="Minimum cold-recall correctness across sittings",
    )
    gate_retention_gap_hours: float = Field(
        default=20.0,
        description="Hours between sittings for a recall to count toward retention",
    )
    gate_require_retention_evidence: bool = Field(
        default=False,
        description="Fail retention when no cross-sitting evidence exists",
    )
    gate_consistency_types: int = Field(
        default=3,
        description="Distinct activity types that must contain a correct answer",
    )
    gate_consistency_max_variance: float = Field(
        default=0.05,
        description="Maximum variance of block accuracies inside the window",
    )
    gate_speed_personal_best_ratio: float = Field(
        default=1.5,
        description="Latest response may be at most this multiple of the personal best",
    )

    # ========================================
    # Session
    # ========================================
    struggle_streak: int = Field(
        default=3,
        ge=1,
        description="Consecutive incorrect answers that trigger STRUGGLING",
    )
    max_session_seconds: int = Field(
        default=7200,
        description="Durations above this are treated as abandoned sessions (recorded as 0)",
    )

    # ========================================
    # Spaced Repetition / Review
    # ========================================
    review_max_nodes: int = Field(
        default=10,
        ge=1,
        description="Maximum nodes in one review session",
    )
    review_refresher_count: int = Field(
        default=3,
        ge=0,
        description="Refresher slots filled with stale mastered nodes",
    )
    review_refresher_stale_days: int = Field(
        default=14,
        ge=1,
        description="Days without practice before a mastered node is a refresher",
    )
    review_minutes_per_node: int = Field(
        default=2,
        description="Time estimate per review node",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
