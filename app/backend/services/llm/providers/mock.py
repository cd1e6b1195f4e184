"""
Offline provider for local development and tests.

Plays back scripted responses in order; once the script runs out it
echoes the prompt back.
"""

import logging
from collections import deque
from collections.abc import AsyncIterator, Iterable

from ....models import (
    ChatMessage,
    ContentChunk,
    GenerateOptions,
    GenerationRequest,
    GenerationResponse,
    ModelInfo,
)

logger = logging.getLogger(__name__)


class MockProvider:
    """
    Scripted provider.

    Each scripted item is either response text or an exception instance,
    which is raised instead of answering. Every request is recorded in
    ``requests`` in arrival order.
    """

    name = "Mock"

    def __init__(
        self,
        responses: Iterable[str | BaseException] = (),
        model: str = "mock-model",
        available: bool = True,
    ):
        self._script: deque[str | BaseException] = deque(responses)
        self._model = model
        self.available = available
        self.requests: list[GenerationRequest] = []
        self.chats: list[list[ChatMessage]] = []

    def queue(self, *responses: str | BaseException) -> None:
        """Append items to the script."""
        self._script.extend(responses)

    @property
    def current_model(self) -> str:
        return self._model

    def set_model(self, model: str) -> None:
        if model:
            self._model = model

    async def is_available(self) -> bool:
        return self.available

    async def list_models(self) -> list[ModelInfo]:
        return [ModelInfo(name=self._model)]

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        self.requests.append(request)
        text = self._next(request.prompt)
        return GenerationResponse(content=text, model=request.model or self._model)

    async def generate_stream(self, request: GenerationRequest) -> AsyncIterator[ContentChunk]:
        self.requests.append(request)
        text = self._next(request.prompt)
        for word in text.split(" "):
            yield ContentChunk(content=word + " ")
        yield ContentChunk(done=True)

    async def chat(
        self,
        messages: list[ChatMessage],
        options: GenerateOptions | None = None,
    ) -> GenerationResponse:
        self.chats.append(list(messages))
        last = messages[-1].content if messages else ""
        text = self._next(last)
        model = options.model if options and options.model else self._model
        return GenerationResponse(content=text, model=model)

    def _next(self, prompt: str) -> str:
        if not self._script:
            logger.debug("Mock script exhausted, echoing prompt")
            return f"[ECHO RESPONSE]\n{prompt}"
        item = self._script.popleft()
        if isinstance(item, BaseException):
            raise item
        return item
