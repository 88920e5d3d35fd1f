"""
Unit tests for the content gateway: provider output is validated and any
failure is replaced with built-in content.
"""

import json

import pytest

from mastery_engine.content import (
    DEFAULT_QUESTION,
    FALLBACK_QUESTIONS,
    ContentGateway,
    Explanation,
    Question,
    parse_content,
)
from mastery_engine.core.errors import ContentValidationError
from mastery_engine.core.models import KnowledgeNode
from mastery_engine.diagnostic.engine import DEFAULT_ORDERED_NODES

NODE = KnowledgeNode(code="1.OA.2", title="Add three numbers", description="Adding three whole numbers.")

VALID = {
    "questionText": "What is 2 + 2?",
    "options": [
        {"id": "A", "text": "3", "isCorrect": False},
        {"id": "B", "text": "4", "isCorrect": True},
        {"id": "C", "text": "5", "isCorrect": False},
        {"id": "D", "text": "22", "isCorrect": False},
    ],
    "hint": "Count on from 2.",
}


class StubProvider:
    def __init__(self, question=None, explanation=None, error=None):
        self._question = question
        self._explanation = explanation
        self._error = error

    def generate_question(self, node, context):
        if self._error:
            raise self._error
        return self._question

    def generate_explanation(self, node, context):
        if self._error:
            raise self._error
        return self._explanation


class TestParseContent:
    def test_camel_case_mapping(self):
        question = parse_content(VALID, Question)
        assert question.question_text == "What is 2 + 2?"
        assert question.correct_option.id == "B"
        assert question.is_correct_choice("B")

    def test_fenced_json(self):
        raw = "```json\n" + json.dumps(VALID) + "\n```"
        assert parse_content(raw, Question).hint == "Count on from 2."

    @pytest.mark.parametrize(
        "options",
        [
            VALID["options"][:3],
            [dict(o, isCorrect=True) for o in VALID["options"]],
            [dict(o, id="A") for o in VALID["options"]],
        ],
    )
    def test_bad_options_rejected(self, options):
        with pytest.raises(ContentValidationError):
            parse_content(dict(VALID, options=options), Question)

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", 42, {"questionText": ""}])
    def test_malformed_rejected(self, raw):
        with pytest.raises(ContentValidationError):
            parse_content(raw, Question)


class TestContentGateway:
    def test_valid_question_passes_through(self):
        question = ContentGateway(StubProvider(question=VALID)).question(NODE)
        assert question.question_text == "What is 2 + 2?"
        assert question.node_code == "1.OA.2"

    def test_invalid_question_uses_fallback(self):
        question = ContentGateway(StubProvider(question={"questionText": "?"})).question(NODE)
        assert question.question_text == FALLBACK_QUESTIONS["1.OA.2"].question_text

    def test_provider_error_uses_fallback(self):
        gateway = ContentGateway(StubProvider(error=TimeoutError("slow")))
        assert gateway.question(NODE).node_code == "1.OA.2"
        assert gateway.explanation(NODE).title == "Add three numbers"

    def test_unknown_node_gets_default_question(self):
        question = ContentGateway().question(KnowledgeNode(code="X.9", title="Unknown"))
        assert question.question_text == DEFAULT_QUESTION.question_text
        assert question.node_code == "X.9"

    def test_explanation_validated(self):
        gateway = ContentGateway(StubProvider(explanation={"title": "Adding", "body": "Put together.", "workedExample": "1+1=2"}))
        explanation = gateway.explanation(NODE)
        assert isinstance(explanation, Explanation)
        assert explanation.worked_example == "1+1=2"

    def test_invalid_explanation_uses_description(self):
        explanation = ContentGateway(StubProvider(explanation="garbage")).explanation(NODE)
        assert explanation.body == "Adding three whole numbers."


def test_every_diagnostic_node_has_a_fallback():
    for node in DEFAULT_ORDERED_NODES:
        question = FALLBACK_QUESTIONS[node.node_code]
        assert len(question.options) == 4
        assert sum(o.is_correct for o in question.options) == 1
