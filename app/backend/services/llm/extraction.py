"""
Structured payload extraction from free-form model output.

Local models wrap the JSON they were asked for in prose ("Sure! Here are
the topics: {...} Let me know if..."). The extractor cuts out the region
between the first ``{`` and the last ``}`` and validates it against the
expected record shape.

A failed extraction is an expected outcome, not an exception: every
function here returns None when the payload is absent or malformed, and
the caller applies its own fallback.
"""

import logging
from typing import TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ...models import EvaluationResult, Question, QuestionType, Topic

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=BaseModel)


# =============================================================================
# Payload Shapes (what the model is asked to produce)
# =============================================================================


class TopicPayload(BaseModel):
    """A topic as produced by the model."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1)
    description: str = ""
    difficulty: int = 3
    est_minutes: int = 30

    @field_validator("difficulty")
    @classmethod
    def clamp_difficulty(cls, v: int) -> int:
        """Models sometimes answer 0 or 10; keep the 1-5 scale."""
        return max(1, min(5, v))

    @field_validator("est_minutes")
    @classmethod
    def non_negative_minutes(cls, v: int) -> int:
        return max(0, v)


class TopicListPayload(BaseModel):
    """{"topics": [{name, description, difficulty, est_minutes}, ...]}"""

    topics: list[TopicPayload]


class QuestionPayload(BaseModel):
    """A question as produced by the model."""

    model_config = ConfigDict(str_strip_whitespace=True)

    question: str = Field(..., min_length=1)
    expected_answer: str = ""
    hints: list[str] = Field(default_factory=list)
    type: str = ""


class QuestionListPayload(BaseModel):
    """{"questions": [{question, expected_answer, hints, type}, ...]}"""

    questions: list[QuestionPayload]


class EvaluationPayload(BaseModel):
    """{"is_correct": bool, "feedback": str}"""

    is_correct: bool
    feedback: str = ""


class PriorityPayload(BaseModel):
    """{"priority": [topic name, ...]} with the most important first."""

    priority: list[str]


# =============================================================================
# Extraction
# =============================================================================


def extract_json_region(text: str) -> str | None:
    """
    Locate the structured region inside ``text``.

    Returns:
        The substring from the first ``{`` to the last ``}`` inclusive, or
        None if either delimiter is missing or they are out of order.
    """
    if not text:
        return None
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or start >= end:
        return None
    return text[start : end + 1]


def decode_payload(text: str, shape: type[P]) -> P | None:
    """
    Decode the structured payload embedded in ``text`` as ``shape``.

    Decoding is all-or-nothing: the whole payload validates or None is
    returned. Surrounding prose is ignored.

    Args:
        text: Raw model output.
        shape: Pydantic model describing the expected payload.

    Returns:
        The validated payload, or None when absent or malformed.
    """
    region = extract_json_region(text)
    if region is None:
        logger.warning("No %s payload found in model output (%d chars)", shape.__name__, len(text or ""))
        return None

    try:
        return shape.model_validate_json(region)
    except ValidationError as e:
        logger.warning(
            "Malformed %s payload (%d error(s)): %s",
            shape.__name__,
            e.error_count(),
            region[:500],
        )
        return None


def parse_topics(text: str) -> list[Topic] | None:
    """Decode a topic list; None when the payload is absent or malformed."""
    payload = decode_payload(text, TopicListPayload)
    if payload is None:
        return None
    return [
        Topic(
            name=t.name,
            description=t.description,
            difficulty=t.difficulty,
            est_minutes=t.est_minutes,
        )
        for t in payload.topics
    ]


def parse_questions(text: str, difficulty: int = 3, topic_name: str | None = None) -> list[Question] | None:
    """Decode a question list; unknown or empty types become open questions."""
    payload = decode_payload(text, QuestionListPayload)
    if payload is None:
        return None

    questions = []
    for q in payload.questions:
        try:
            question_type = QuestionType(q.type.strip().lower())
        except ValueError:
            question_type = QuestionType.OPEN
        questions.append(
            Question(
                question=q.question,
                expected_answer=q.expected_answer,
                hints=[h for h in q.hints if h.strip()],
                type=question_type,
                difficulty=difficulty,
                topic_name=topic_name,
            )
        )
    return questions


def parse_evaluation(text: str) -> EvaluationResult | None:
    """Decode an answer evaluation."""
    payload = decode_payload(text, EvaluationPayload)
    if payload is None:
        return None
    return EvaluationResult(is_correct=payload.is_correct, feedback=payload.feedback)


def parse_priority(text: str) -> list[str] | None:
    """Decode a priority ranking of topic names, most important first."""
    payload = decode_payload(text, PriorityPayload)
    if payload is None:
        return None
    return [name.strip() for name in payload.priority if name.strip()]
