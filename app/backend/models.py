"""
Pydantic models for the document analysis and tutoring backend.

Defines strict types for generation requests and responses, streamed
content chunks, study documents and the records extracted from model
output (topics, questions, evaluations).
"""

import re
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# Generation Types
# =============================================================================


class GenerateOptions(BaseModel):
    """
    Optional parameters for a single generation call.

    Attributes:
        model: Model override. None uses the provider's active model.
        system: System instruction sent alongside the prompt.
        temperature: Sampling temperature.
        top_p: Nucleus sampling probability mass.
        top_k: Top-k sampling cutoff.
        max_tokens: Upper bound on generated tokens.
    """

    model_config = ConfigDict(frozen=True)

    model: str | None = Field(default=None, description="Model override")
    system: str | None = Field(default=None, description="System instruction")
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    top_p: float | None = Field(default=None, gt=0.0, le=1.0)
    top_k: int | None = Field(default=None, ge=1)
    max_tokens: int | None = Field(default=None, ge=1)


class GenerationRequest(GenerateOptions):
    """A prompt plus its generation options. Immutable once issued."""

    prompt: str = Field(..., description="Prompt text")


class GenerationResponse(BaseModel):
    """Text produced by the backend for one request."""

    content: str = Field(default="", description="Produced text")
    model: str = Field(default="", description="Model that produced the text")
    done: bool = Field(default=True, description="Whether generation completed")


class ContentChunk(BaseModel):
    """
    One increment of a streaming response.

    The last chunk of a stream has ``done`` set or carries an ``error``.
    """

    content: str = ""
    done: bool = False
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.done or self.error is not None


class ChatRole(str, Enum):
    """Roles in a chat history."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    """Single chat turn."""

    role: ChatRole
    content: str


class ModelInfo(BaseModel):
    """A model installed on the backend."""

    name: str
    modified_at: datetime | None = None
    size: int = 0


# =============================================================================
# Study Material Types
# =============================================================================


class DocumentCategory(str, Enum):
    """Pipeline-assigned category of a study document."""

    PRIMARY = "primary"  # Main study material, analyzed for topics
    REFERENCE = "reference"  # Exams/exercises, used only for ranking


class Document(BaseModel):
    """A study document whose text has already been extracted."""

    id: str = Field(..., description="Document identifier")
    name: str = Field(..., min_length=1, description="Display name (usually the filename)")
    content: str = Field(default="", description="Full text content")

    def category(self, reference_markers: list[str]) -> DocumentCategory:
        """Categorize by name: any reference marker makes it reference material."""
        if any(name_has_marker(self.name, marker) for marker in reference_markers):
            return DocumentCategory.REFERENCE
        return DocumentCategory.PRIMARY


def name_has_marker(name: str, marker: str) -> bool:
    """
    Check whether a document name contains a marker word.

    The marker must start a word. It may carry an inflection ("exams",
    "Klausuren") or open a compound through a linking "s" ("Übungsblatt"),
    but a longer unrelated word does not count ("Examples" is not "exam").
    """
    if not marker:
        return False
    pattern = rf"(?<![^\W\d_]){re.escape(marker.lower())}(?:s[^\W\d_]*|e?n|e)?(?![^\W\d_])"
    return re.search(pattern, name.lower()) is not None


class Topic(BaseModel):
    """
    A unit of study material extracted from documents.

    Attributes:
        name: Short topic title.
        description: Human-readable description.
        difficulty: Difficulty from 1 (easy) to 5 (hard).
        est_minutes: Estimated study time in minutes.
        order: Ordering rank, assigned downstream when a plan is built.
    """

    name: str = Field(..., min_length=1, description="Topic title")
    description: str = Field(default="", description="Short description")
    difficulty: int = Field(default=3, ge=1, le=5, description="Difficulty 1-5")
    est_minutes: int = Field(default=30, ge=0, description="Estimated study minutes")
    order: int | None = Field(default=None, ge=1, description="Ordering rank")


class QuestionType(str, Enum):
    """Supported question formats."""

    OPEN = "open"
    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"


class Question(BaseModel):
    """A study question generated for a topic."""

    question: str = Field(..., min_length=1)
    expected_answer: str = ""
    hints: list[str] = Field(default_factory=list)
    type: QuestionType = QuestionType.OPEN
    difficulty: int = Field(default=3, ge=1, le=5)
    topic_name: str | None = None


class EvaluationResult(BaseModel):
    """Verdict on a learner's answer."""

    is_correct: bool
    feedback: str = ""


class Explanation(BaseModel):
    """A generated explanation of a topic."""

    title: str
    content: str


# =============================================================================
# API Request/Response Models
# =============================================================================


class AnalyzeRequest(BaseModel):
    """Request model for the document analysis endpoint."""

    documents: list[Document] = Field(
        ...,
        min_length=1,
        description="Documents to analyze, in priority order",
    )


class AnalyzeResponse(BaseModel):
    """Response model for the document analysis endpoint."""

    topics: list[Topic] = Field(..., description="Ordered, deduplicated topics")
    document_count: int = Field(..., ge=0, description="Documents received")
    duration_seconds: float = Field(..., ge=0.0, description="Wall-clock analysis time")

    @field_validator("duration_seconds")
    @classmethod
    def round_duration(cls, v: float) -> float:
        """Round duration to 3 decimal places."""
        return round(v, 3)


class BackendStatusResponse(BaseModel):
    """Inference backend status."""

    provider: str
    available: bool
    current_model: str


class SelectModelRequest(BaseModel):
    """Request model for switching the active model."""

    name: str = Field(..., min_length=1)


class ExplainRequest(BaseModel):
    """Request model for topic explanations."""

    topic: Topic
    content: str = ""


class QuestionsRequest(BaseModel):
    """Request model for question generation."""

    topic: Topic
    content: str = ""
    difficulty: int = Field(default=3, ge=1, le=5)
    count: int = Field(default=3, ge=1, le=20)


class EvaluateRequest(BaseModel):
    """Request model for answer evaluation."""

    question: Question
    answer: str


class ChatRequest(BaseModel):
    """Request model for a context-grounded chat turn."""

    messages: list[ChatMessage] = Field(..., min_length=1)
    topic: Topic
    context: str = ""


class ChatResponse(BaseModel):
    """Response model for a chat turn."""

    message: ChatMessage
    model: str


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(default="healthy")
    message: str = Field(default="")
    version: str = Field(default="1.0.0")
