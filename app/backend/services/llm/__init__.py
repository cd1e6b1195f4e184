"""
LLM service package for document analysis and tutoring.

This package provides the inference core split into:
- gate: Admission control for the single-flight backend
- resilience: Retry loop with error classification
- streaming: Incremental decoding of streamed responses
- extraction: Structured payload extraction from model output
- analysis: Document analysis pipeline (documents -> ordered topics)
- tutor: Explanations, questions, answer evaluation and chat
- providers: Backend clients (Ollama, OpenAI-compatible, mock)

The LLMService class wires them together around one shared call layer.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence

from ...config import Settings, get_settings
from ...models import (
    ChatMessage,
    ContentChunk,
    Document,
    EvaluationResult,
    Explanation,
    GenerationResponse,
    ModelInfo,
    Question,
    Topic,
)
from .analysis import DocumentAnalyzer
from .exceptions import (
    BackendError,
    LLMServiceError,
    NoUsableDocumentsError,
    RetryExhaustedError,
)
from .gate import AdmissionGate
from .providers import LLMProvider, build_provider
from .resilience import ErrorKind, ResilientCaller, classify_error
from .tutor import Tutor

logger = logging.getLogger(__name__)

__all__ = [
    "AdmissionGate",
    "BackendError",
    "DocumentAnalyzer",
    "ErrorKind",
    "LLMService",
    "LLMServiceError",
    "NoUsableDocumentsError",
    "ResilientCaller",
    "RetryExhaustedError",
    "Tutor",
    "classify_error",
    "get_llm_service",
]


# =============================================================================
# LLMService Class
# =============================================================================


class LLMService:
    """
    Inference orchestration for the study platform.

    Owns the provider, the admission gate and the resilient call layer, and
    exposes document analysis and tutoring on top of them. All features
    share one gate, so the backend never sees more concurrent calls than
    ``gate_capacity``.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        provider: LLMProvider | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the LLM service.

        Args:
            settings: Application settings. If None, reads from config/environment.
            provider: Backend client. If None, built from ``settings.llm_backend``.
            sleep: Awaitable sleep used between retries.
        """
        self.settings = settings or get_settings()
        self.provider = provider or build_provider(self.settings)
        self.gate = AdmissionGate(self.settings.gate_capacity)
        self.caller = ResilientCaller(
            self.provider,
            gate=self.gate,
            max_attempts=self.settings.max_attempts,
            crash_cooldown=self.settings.crash_cooldown_seconds,
            backoff_base=self.settings.backoff_base_seconds,
            sleep=sleep,
        )
        self.analyzer = DocumentAnalyzer(
            self.caller,
            fast_model=self.settings.fast_model,
            reference_markers=self.settings.reference_markers,
            primary_char_budget=self.settings.primary_char_budget,
            reference_char_cap=self.settings.reference_char_cap,
            reference_total_cap=self.settings.reference_total_cap,
            document_timeout=self.settings.document_timeout_seconds,
            ranking_timeout=self.settings.ranking_timeout_seconds,
        )
        self.tutor = Tutor(self.caller)

    # -------------------------------------------------------------------------
    # Backend management
    # -------------------------------------------------------------------------

    @property
    def current_model(self) -> str:
        return self.provider.current_model

    async def is_available(self) -> bool:
        return await self.provider.is_available()

    async def list_models(self) -> list[ModelInfo]:
        return await self.provider.list_models()

    def set_model(self, name: str) -> None:
        """Switch the main model for subsequent calls."""
        logger.info("Switching model: %s -> %s", self.provider.current_model, name)
        self.provider.set_model(name)

    async def startup(self) -> bool:
        """
        Check the backend and settle on an installed model.

        Never raises: an unreachable backend is logged and reported as
        unavailable so the service can start anyway.

        Returns:
            Whether the backend answered.
        """
        if not await self.provider.is_available():
            logger.warning("%s backend not reachable, starting without it", self.provider.name)
            return False

        try:
            models = await self.provider.list_models()
        except Exception as e:
            logger.warning("Could not list installed models: %s", e)
            return True

        logger.info(
            "%s backend available, %d model(s) installed: %s",
            self.provider.name,
            len(models),
            ", ".join(m.name for m in models),
        )

        resolve = getattr(self.provider, "resolve_model", None)
        if resolve is not None:
            try:
                await resolve()
            except Exception as e:
                logger.warning("Could not resolve model: %s", e)
        logger.info("Active model: %s", self.provider.current_model)
        return True

    async def aclose(self) -> None:
        close = getattr(self.provider, "aclose", None)
        if close is not None:
            await close()

    # -------------------------------------------------------------------------
    # Features
    # -------------------------------------------------------------------------

    async def analyze_documents(self, documents: Sequence[Document]) -> list[Topic]:
        """
        Turn study documents into an ordered, deduplicated topic list.

        Delegates to the analysis pipeline.
        """
        return await self.analyzer.analyze(documents)

    async def explain_topic(self, topic: Topic, content: str = "") -> Explanation:
        return await self.tutor.explain_topic(topic, content)

    def stream_explanation(self, topic: Topic, content: str = "") -> AsyncIterator[ContentChunk]:
        return self.tutor.stream_explanation(topic, content)

    async def generate_questions(
        self,
        topic: Topic,
        content: str = "",
        difficulty: int = 3,
        count: int = 3,
    ) -> list[Question]:
        return await self.tutor.generate_questions(topic, content, difficulty, count)

    async def evaluate_answer(self, question: Question, answer: str) -> EvaluationResult:
        return await self.tutor.evaluate_answer(question, answer)

    async def chat_with_context(
        self,
        messages: list[ChatMessage],
        context: str,
        topic: Topic,
    ) -> GenerationResponse:
        return await self.tutor.chat_with_context(messages, context, topic)


# =============================================================================
# Singleton Factory
# =============================================================================

_llm_service: LLMService | None = None


def get_llm_service() -> LLMService:
    """Get or create the LLM service singleton."""
    global _llm_service
    if _llm_service is None:
        _llm_service = LLMService()
    return _llm_service
