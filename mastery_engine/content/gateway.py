"""
Content gateway.

Wraps a content provider (question/explanation generation) and guarantees
that callers only ever see shape-validated content: provider errors and
validation failures are logged and replaced with built-in fallbacks.
"""

from __future__ import annotations

import json
from typing import Any, Protocol

from loguru import logger
from pydantic import BaseModel, ValidationError

from mastery_engine.content.fallbacks import fallback_explanation, fallback_question
from mastery_engine.content.schemas import Explanation, Question
from mastery_engine.core.errors import ContentValidationError
from mastery_engine.core.models import KnowledgeNode


class ContentProvider(Protocol):
    """External question/explanation generator."""

    def generate_question(self, node: KnowledgeNode, context: dict[str, Any]) -> Any: ...

    def generate_explanation(self, node: KnowledgeNode, context: dict[str, Any]) -> Any: ...


def _strip_fences(raw: str) -> str:
    cleaned = raw.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.removeprefix("```json").removeprefix("```")
        cleaned = cleaned.removesuffix("```")
    return cleaned.strip()


def parse_content(raw: Any, model: type[BaseModel]) -> BaseModel:
    """
    Validate provider output against a schema.

    Accepts a model instance, a mapping, or a JSON string (optionally fenced).

    Raises:
        ContentValidationError: If the payload does not match the schema
    """
    if isinstance(raw, model):
        return raw
    try:
        if isinstance(raw, BaseModel):
            raw = raw.model_dump(by_alias=True)
        if isinstance(raw, str | bytes):
            raw = json.loads(_strip_fences(raw.decode() if isinstance(raw, bytes) else raw))
        if not isinstance(raw, dict):
            raise ContentValidationError(f"Expected an object, got {type(raw).__name__}")
        return model.model_validate(raw)
    except (ValidationError, json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ContentValidationError(str(e)) from e


class ContentGateway:
    """Validated access to a content provider with built-in fallbacks."""

    def __init__(self, provider: ContentProvider | None = None):
        self.provider = provider

    def question(self, node: KnowledgeNode, context: dict[str, Any] | None = None) -> Question:
        if self.provider is None:
            return fallback_question(node)
        try:
            raw = self.provider.generate_question(node, context or {})
            question = parse_content(raw, Question)
        except ContentValidationError as e:
            logger.warning(f"Invalid question for {node.code}, using fallback: {e}")
            return fallback_question(node)
        except Exception as e:
            logger.warning(f"Content provider failed for {node.code}, using fallback: {e}")
            return fallback_question(node)
        if question.node_code is None:
            question = question.model_copy(update={"node_code": node.code})
        return question

    def explanation(self, node: KnowledgeNode, context: dict[str, Any] | None = None) -> Explanation:
        if self.provider is None:
            return fallback_explanation(node)
        try:
            raw = self.provider.generate_explanation(node, context or {})
            return parse_content(raw, Explanation)
        except ContentValidationError as e:
            logger.warning(f"Invalid explanation for {node.code}, using fallback: {e}")
        except Exception as e:
            logger.warning(f"Content provider failed for {node.code}, using fallback: {e}")
        return fallback_explanation(node)
