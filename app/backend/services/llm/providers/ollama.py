"""
Ollama backend client.

Talks to a local Ollama server over its HTTP API (/api/generate, /api/chat,
/api/tags) with an httpx.AsyncClient. Streaming responses are NDJSON and
are decoded by the shared streaming decoder.
"""

import logging
import time
from collections.abc import AsyncIterator
from contextlib import aclosing
from typing import Any

import httpx

from ....models import (
    ChatMessage,
    ContentChunk,
    GenerateOptions,
    GenerationRequest,
    GenerationResponse,
    ModelInfo,
)
from ..exceptions import BackendError
from ..streaming import decode_stream, parse_ndjson_frame

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"
DEFAULT_MODEL = "qwen2.5:7b"


class OllamaProvider:
    """
    Provider for a local Ollama server.

    Attributes:
        name: Provider family name.
        base_url: Server URL without trailing slash.
    """

    name = "Ollama"

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        default_model: str = DEFAULT_MODEL,
        timeout: float = 900.0,
        stream_queue_size: int = 100,
        client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize the Ollama provider.

        Args:
            base_url: Ollama server URL.
            default_model: Model used when a request carries no override.
            timeout: Ceiling in seconds for one HTTP request. Large prompts
                on small machines take minutes.
            stream_queue_size: Queue capacity for streamed responses.
            client: Preconfigured client (tests inject a mock transport).
        """
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self._model = default_model or DEFAULT_MODEL
        self.stream_queue_size = stream_queue_size
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout, connect=10.0),
        )

    @property
    def current_model(self) -> str:
        return self._model

    def set_model(self, model: str) -> None:
        if model:
            self._model = model

    async def aclose(self) -> None:
        await self._client.aclose()

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    async def is_available(self) -> bool:
        try:
            response = await self._client.get("/api/tags", timeout=5.0)
        except httpx.HTTPError:
            return False
        return response.status_code == 200

    async def list_models(self) -> list[ModelInfo]:
        try:
            response = await self._client.get("/api/tags")
        except httpx.HTTPError as e:
            raise BackendError(f"Ollama not reachable at {self.base_url}: {e}") from e
        self._raise_for_status(response)

        data = response.json()
        return [
            ModelInfo(
                name=m["name"],
                modified_at=m.get("modified_at"),
                size=m.get("size", 0),
            )
            for m in data.get("models", [])
        ]

    async def resolve_model(self) -> str:
        """
        Make sure the active model is installed.

        Falls back to the first installed model when the configured one is
        missing. Leaves the model untouched if the server cannot be queried.
        """
        try:
            models = await self.list_models()
        except BackendError as e:
            logger.warning("Could not verify model '%s': %s", self._model, e)
            return self._model

        names = [m.name for m in models]
        if names and self._model not in names:
            logger.warning("Model '%s' not installed, using '%s'", self._model, names[0])
            self._model = names[0]
        return self._model

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        payload = self._build_payload(request, stream=False)
        payload["prompt"] = request.prompt

        logger.info(
            "Ollama generate: model=%s, prompt=%d chars",
            payload["model"],
            len(request.prompt),
        )
        start = time.perf_counter()
        try:
            response = await self._client.post("/api/generate", json=payload)
        except httpx.HTTPError as e:
            logger.error("Ollama request failed after %.1fs: %s", time.perf_counter() - start, e)
            raise BackendError(f"Ollama request failed: {e}") from e
        logger.info(
            "Ollama answered after %.1fs (status %d)",
            time.perf_counter() - start,
            response.status_code,
        )
        self._raise_for_status(response)

        data = response.json()
        content = data.get("response", "")
        logger.info("Ollama generate succeeded: %d chars", len(content))
        return GenerationResponse(
            content=content,
            model=data.get("model", payload["model"]),
            done=bool(data.get("done", True)),
        )

    async def generate_stream(self, request: GenerationRequest) -> AsyncIterator[ContentChunk]:
        payload = self._build_payload(request, stream=True)
        payload["prompt"] = request.prompt

        http_request = self._client.build_request("POST", "/api/generate", json=payload)
        try:
            response = await self._client.send(http_request, stream=True)
        except httpx.HTTPError as e:
            raise BackendError(f"Ollama stream request failed: {e}") from e
        if response.status_code != 200:
            await response.aread()
            await response.aclose()
            self._raise_for_status(response)

        # The response closes with this generator, inside the caller's slot
        async with aclosing(
            decode_stream(
                response.aiter_lines(),
                parse_ndjson_frame,
                close=response.aclose,
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
        payload = self._build_payload(options, stream=False)
        payload["messages"] = [
            {"role": m.role.value, "content": m.content} for m in messages
        ]
        # The chat endpoint takes the system instruction as a message
        system = payload.pop("system", None)
        if system:
            payload["messages"].insert(0, {"role": "system", "content": system})

        try:
            response = await self._client.post("/api/chat", json=payload)
        except httpx.HTTPError as e:
            raise BackendError(f"Ollama chat failed: {e}") from e
        self._raise_for_status(response)

        data = response.json()
        return GenerationResponse(
            content=data.get("message", {}).get("content", ""),
            model=data.get("model", payload["model"]),
            done=bool(data.get("done", True)),
        )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _build_payload(self, options: GenerateOptions | None, stream: bool) -> dict[str, Any]:
        """Build the JSON body shared by generate and chat."""
        payload: dict[str, Any] = {
            "model": (options.model if options and options.model else self._model),
            "stream": stream,
        }
        if options is None:
            return payload

        sampling = {
            "temperature": options.temperature,
            "top_p": options.top_p,
            "top_k": options.top_k,
            "num_predict": options.max_tokens,
        }
        sampling = {k: v for k, v in sampling.items() if v is not None}
        if sampling:
            payload["options"] = sampling
        if options.system:
            payload["system"] = options.system
        return payload

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code != 200:
            body = response.text[:500]
            logger.error("Ollama error response (%d): %s", response.status_code, body)
            raise BackendError(
                f"Ollama error ({response.status_code}): {body}",
                status_code=response.status_code,
            )
