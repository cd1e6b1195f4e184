"""
OpenAI-compatible backend client.

Works against the OpenAI API and any server speaking the chat-completions
protocol (llama.cpp server, vLLM, LM Studio, Ollama's /v1 endpoint).
"""

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing
from datetime import datetime, timezone
from typing import Any

from ....models import (
    ChatMessage,
    ChatRole,
    ContentChunk,
    GenerateOptions,
    GenerationRequest,
    GenerationResponse,
    ModelInfo,
)
from ..exceptions import LLMServiceError
from ..streaming import decode_stream

logger = logging.getLogger(__name__)


def parse_completion_chunk(event: Any) -> ContentChunk | None:
    """Turn one ChatCompletionChunk into a ContentChunk (None for empty keep-alives)."""
    if not event.choices:
        return None
    choice = event.choices[0]
    content = (choice.delta.content if choice.delta else None) or ""
    done = choice.finish_reason is not None
    if not content and not done:
        return None
    return ContentChunk(content=content, done=done)


class OpenAIProvider:
    """Provider for OpenAI-compatible chat-completions servers."""

    name = "OpenAI"

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        default_model: str = "gpt-4.1-mini",
        timeout: float = 900.0,
        stream_queue_size: int = 100,
        client: Any = None,
    ):
        """
        Initialize the OpenAI-compatible provider.

        Args:
            api_key: API key. Local servers accept any non-empty value.
            base_url: Server URL. None targets api.openai.com.
            default_model: Model used when a request carries no override.
            timeout: Ceiling in seconds for one request.
            stream_queue_size: Queue capacity for streamed responses.
            client: Preconfigured AsyncOpenAI client.
        """
        self._model = default_model
        self.stream_queue_size = stream_queue_size
        self._client = client
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout

    @property
    def client(self):
        """Lazy-load the OpenAI client."""
        if self._client is None:
            try:
                from openai import AsyncOpenAI
            except ImportError as e:
                raise LLMServiceError(
                    "openai library not installed. Run: pip install openai"
                ) from e

            self._client = AsyncOpenAI(
                api_key=self._api_key or "not-needed",
                base_url=self._base_url,
                timeout=self._timeout,
                # Retries are owned by the resilient call layer
                max_retries=0,
            )
        return self._client

    @property
    def current_model(self) -> str:
        return self._model

    def set_model(self, model: str) -> None:
        if model:
            self._model = model

    async def is_available(self) -> bool:
        try:
            await self.client.models.list()
        except Exception as e:
            logger.debug("OpenAI-compatible backend unavailable: %s", e)
            return False
        return True

    async def list_models(self) -> list[ModelInfo]:
        page = await self.client.models.list()
        return [
            ModelInfo(
                name=m.id,
                modified_at=datetime.fromtimestamp(m.created, tz=timezone.utc),
            )
            for m in page.data
        ]

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        messages = [ChatMessage(role=ChatRole.USER, content=request.prompt)]
        return await self.chat(messages, request)

    async def generate_stream(self, request: GenerationRequest) -> AsyncIterator[ContentChunk]:
        messages = [ChatMessage(role=ChatRole.USER, content=request.prompt)]
        stream = await self.client.chat.completions.create(
            **self._build_kwargs(messages, request),
            stream=True,
        )

        async with aclosing(
            decode_stream(
                aiter(stream),
                parse_completion_chunk,
                close=stream.close,
                queue_size=self.stream_queue_size,
            )
        ) as chunks:
            async for chunk in chunks:
                yield chunk

    async def chat(
        self,
        messages: list[ChatMessage],
        options: GenerateOptions | None = None,
    ) -> GenerationResponse:
        kwargs = self._build_kwargs(messages, options)
        logger.info("OpenAI chat: model=%s, %d message(s)", kwargs["model"], len(messages))

        response = await self.client.chat.completions.create(**kwargs)
        choice = response.choices[0]
        return GenerationResponse(
            content=choice.message.content or "",
            model=response.model,
            done=choice.finish_reason is not None,
        )

    def _build_kwargs(
        self,
        messages: list[ChatMessage],
        options: GenerateOptions | None,
    ) -> dict[str, Any]:
        formatted = [{"role": m.role.value, "content": m.content} for m in messages]
        kwargs: dict[str, Any] = {"model": self._model}
        if options is None:
            kwargs["messages"] = formatted
            return kwargs

        if options.model:
            kwargs["model"] = options.model
        if options.system:
            formatted.insert(0, {"role": "system", "content": options.system})
        kwargs["messages"] = formatted
        if options.temperature is not None:
            kwargs["temperature"] = options.temperature
        if options.top_p is not None:
            kwargs["top_p"] = options.top_p
        if options.max_tokens is not None:
            kwargs["max_tokens"] = options.max_tokens
        return kwargs
