"""
Capability interface shared by all inference backends.

The call layer, the analysis pipeline and the tutor depend only on this
protocol, never on a concrete backend client.
"""

from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

from ....models import (
    ChatMessage,
    ContentChunk,
    GenerateOptions,
    GenerationRequest,
    GenerationResponse,
    ModelInfo,
)


@runtime_checkable
class LLMProvider(Protocol):
    """Generate, stream, chat, list models, check availability, select model."""

    name: str

    @property
    def current_model(self) -> str: ...

    def set_model(self, model: str) -> None: ...

    async def generate(self, request: GenerationRequest) -> GenerationResponse: ...

    def generate_stream(self, request: GenerationRequest) -> AsyncIterator[ContentChunk]: ...

    async def chat(
        self,
        messages: list[ChatMessage],
        options: GenerateOptions | None = None,
    ) -> GenerationResponse: ...

    async def list_models(self) -> list[ModelInfo]: ...

    async def is_available(self) -> bool: ...
