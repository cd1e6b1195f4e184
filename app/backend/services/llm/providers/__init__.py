"""
Inference backend clients.

All variants satisfy the LLMProvider protocol:
- ollama: local Ollama server over HTTP
- openai_compat: OpenAI-compatible chat-completions servers
- mock: scripted offline provider for development and tests
"""

import logging

from ....config import Settings
from ..exceptions import LLMServiceError
from .base import LLMProvider
from .mock import MockProvider
from .ollama import OllamaProvider
from .openai_compat import OpenAIProvider

logger = logging.getLogger(__name__)

__all__ = [
    "LLMProvider",
    "MockProvider",
    "OllamaProvider",
    "OpenAIProvider",
    "build_provider",
]


def build_provider(settings: Settings) -> LLMProvider:
    """Create the provider selected by ``settings.llm_backend``."""
    backend = settings.llm_backend.lower()
    if backend == "ollama":
        return OllamaProvider(
            base_url=settings.ollama_url,
            default_model=settings.default_model,
            timeout=settings.request_timeout_seconds,
            stream_queue_size=settings.stream_queue_size,
        )
    if backend == "openai":
        return OpenAIProvider(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            default_model=settings.default_model,
            timeout=settings.request_timeout_seconds,
            stream_queue_size=settings.stream_queue_size,
        )
    if backend == "mock":
        logger.warning(
            "LLM backend running in MOCK MODE. Set LLM_BACKEND=ollama for real analysis."
        )
        return MockProvider(model=settings.default_model)
    raise LLMServiceError(f"Unknown LLM backend '{settings.llm_backend}'")
