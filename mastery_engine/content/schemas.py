"""
Shape contracts for content-provider output.

Providers may return camelCase JSON (questionText, isCorrect); both
spellings are accepted.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

OPTION_COUNT = 4


class QuestionOption(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    id: str = Field(..., min_length=1, description="Option label (A-D)")
    text: str = Field(..., min_length=1, description="Option text shown to the student")
    is_correct: bool = Field(False, alias="isCorrect", description="Whether this option is the answer")


class Question(BaseModel):
    """A multiple-choice question with exactly one correct option."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    question_text: str = Field(..., min_length=1, alias="questionText")
    options: list[QuestionOption] = Field(..., description="Exactly four options")
    hint: str | None = Field(None, description="Optional hint")
    node_code: str | None = Field(None, alias="nodeCode")

    @field_validator("options")
    @classmethod
    def _check_options(cls, options: list[QuestionOption]) -> list[QuestionOption]:
        if len(options) != OPTION_COUNT:
            raise ValueError(f"Expected exactly {OPTION_COUNT} options, got {len(options)}")
        correct = sum(1 for o in options if o.is_correct)
        if correct != 1:
            raise ValueError(f"Expected exactly 1 correct option, got {correct}")
        ids = [o.id for o in options]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Option ids must be unique: {ids}")
        return options

    @property
    def correct_option(self) -> QuestionOption:
        return next(o for o in self.options if o.is_correct)

    def is_correct_choice(self, option_id: str) -> bool:
        return self.correct_option.id == option_id


class Explanation(BaseModel):
    """A concept explanation for the TEACHING state."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    title: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    worked_example: str | None = Field(None, alias="workedExample")
    node_code: str | None = Field(None, alias="nodeCode")
