"""
Resilient call layer for the inference backend.

Wraps each generation call with admission control and bounded retries:

1. The admission gate is acquired once, before the first attempt, and held
   for the whole retry loop so concurrent callers serialize including
   their retries.
2. Failures are classified. Cancellation propagates immediately, backend
   crashes (process terminated, 5xx) get a fixed cool-down, client errors
   are not retried and anything else is retried after ``attempt * base``
   seconds of backoff.
3. When the ceiling is reached the last error is raised, wrapped in
   RetryExhaustedError.

Deadlines belong to the caller: wrap a call in ``asyncio.timeout()`` and
the resulting cancellation stops the loop like any other cancellation.
"""

import asyncio
import logging
import re
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import aclosing
from enum import Enum
from typing import TypeVar

from ...models import (
    ChatMessage,
    ContentChunk,
    GenerateOptions,
    GenerationRequest,
    GenerationResponse,
)
from .exceptions import RetryExhaustedError
from .gate import AdmissionGate
from .providers.base import LLMProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Signature of a crashed runner or a server-side failure in an error message
_CRASH_SIGNATURE = re.compile(r"terminated|\b5\d\d\b", re.IGNORECASE)

# Client-side statuses that still deserve another attempt
_RETRYABLE_CLIENT_STATUSES = {408, 425, 429}


class ErrorKind(str, Enum):
    """How the call layer reacts to a failed attempt."""

    CANCELLED = "cancelled"  # Propagate, never retry
    BACKEND_CRASH = "backend_crash"  # Cool down, then retry
    FATAL = "fatal"  # Raise, never retry
    TRANSIENT = "transient"  # Back off, then retry


def _status_code(error: BaseException) -> int | None:
    """Status code carried by backend, httpx or openai errors."""
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    return status if isinstance(status, int) else None


def classify_error(error: BaseException) -> ErrorKind:
    """
    Classify a failed attempt.

    Args:
        error: The exception raised by the attempt.

    Returns:
        The ErrorKind deciding whether and how to retry.
    """
    if isinstance(error, asyncio.CancelledError):
        return ErrorKind.CANCELLED

    status = _status_code(error)
    if status is not None:
        if status >= 500:
            return ErrorKind.BACKEND_CRASH
        if 400 <= status < 500 and status not in _RETRYABLE_CLIENT_STATUSES:
            return ErrorKind.FATAL

    if _CRASH_SIGNATURE.search(str(error)):
        return ErrorKind.BACKEND_CRASH
    return ErrorKind.TRANSIENT


class ResilientCaller:
    """
    Single-flight, retrying access to an LLMProvider.

    Every generation, chat and stream call goes through the same admission
    gate. Higher-level features (document analysis, explanations, question
    generation, chat) share one caller so the backend sees one call at a
    time.
    """

    def __init__(
        self,
        provider: LLMProvider,
        gate: AdmissionGate | None = None,
        max_attempts: int = 3,
        crash_cooldown: float = 5.0,
        backoff_base: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize the call layer.

        Args:
            provider: Backend client.
            gate: Admission gate. A private single-slot gate when omitted.
            max_attempts: Retry ceiling (attempts, not retries).
            crash_cooldown: Seconds to wait after a backend crash.
            backoff_base: Backoff multiplier for other transient failures.
            sleep: Awaitable sleep, injectable for tests.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.provider = provider
        self.gate = gate or AdmissionGate(1)
        self.max_attempts = max_attempts
        self.crash_cooldown = crash_cooldown
        self.backoff_base = backoff_base
        self._sleep = sleep

    async def generate(
        self,
        prompt: str,
        options: GenerateOptions | None = None,
    ) -> GenerationResponse:
        """Generate a completion for ``prompt``."""
        request = _build_request(prompt, options)
        return await self._call(lambda: self.provider.generate(request), "generate")

    async def chat(
        self,
        messages: list[ChatMessage],
        options: GenerateOptions | None = None,
    ) -> GenerationResponse:
        """Continue a chat history."""
        history = list(messages)
        return await self._call(lambda: self.provider.chat(history, options), "chat")

    async def stream(
        self,
        prompt: str,
        options: GenerateOptions | None = None,
    ) -> AsyncIterator[ContentChunk]:
        """
        Stream a completion for ``prompt``.

        The gate slot is held until the stream ends or the consumer closes
        it, so consume with ``contextlib.aclosing``. Streams are not retried:
        a failure, including a rejected or unreachable request before the
        first chunk, surfaces as the error-bearing last chunk.
        """
        request = _build_request(prompt, options)
        async with self.gate.slot():
            try:
                async with aclosing(self.provider.generate_stream(request)) as chunks:
                    async for chunk in chunks:
                        yield chunk
            except Exception as e:
                logger.error("Backend stream failed: %s", e)
                yield ContentChunk(error=str(e) or type(e).__name__)

    async def _call(self, call: Callable[[], Awaitable[T]], label: str) -> T:
        async with self.gate.slot():
            return await self._with_retry(call, label)

    async def _with_retry(self, call: Callable[[], Awaitable[T]], label: str) -> T:
        last_error: Exception | None = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await call()
            except asyncio.CancelledError:
                logger.info(
                    "Backend %s cancelled during attempt %d/%d",
                    label,
                    attempt,
                    self.max_attempts,
                )
                raise
            except Exception as e:
                last_error = e
                kind = classify_error(e)

            if kind is ErrorKind.FATAL:
                logger.error("Backend %s failed with a non-retryable error: %s", label, last_error)
                raise last_error

            if attempt == self.max_attempts:
                break

            if kind is ErrorKind.BACKEND_CRASH:
                logger.warning(
                    "Backend crashed during %s (attempt %d/%d), cooling down %.1fs: %s",
                    label,
                    attempt,
                    self.max_attempts,
                    self.crash_cooldown,
                    last_error,
                )
                await self._sleep(self.crash_cooldown)
            else:
                delay = (attempt + 1) * self.backoff_base
                logger.warning(
                    "Backend %s failed (attempt %d/%d), retrying in %.1fs: %s",
                    label,
                    attempt,
                    self.max_attempts,
                    delay,
                    last_error,
                )
                await self._sleep(delay)

        logger.error(
            "Backend %s failed after %d attempt(s): %s",
            label,
            self.max_attempts,
            last_error,
        )
        raise RetryExhaustedError(self.max_attempts, last_error) from last_error


def _build_request(prompt: str, options: GenerateOptions | None) -> GenerationRequest:
    if options is None:
        return GenerationRequest(prompt=prompt)
    return GenerationRequest(prompt=prompt, **options.model_dump())
