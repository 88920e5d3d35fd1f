"""Content collaborator boundary: schemas, fallbacks and the validating gateway."""

from mastery_engine.content.fallbacks import (
    DEFAULT_QUESTION,
    FALLBACK_QUESTIONS,
    fallback_explanation,
    fallback_question,
)
from mastery_engine.content.gateway import ContentGateway, ContentProvider, parse_content
from mastery_engine.content.schemas import Explanation, Question, QuestionOption

__all__ = [
    "ContentGateway",
    "ContentProvider",
    "DEFAULT_QUESTION",
    "Explanation",
    "FALLBACK_QUESTIONS",
    "Question",
    "QuestionOption",
    "fallback_explanation",
    "fallback_question",
    "parse_content",
]
