"""
Router for tutoring endpoints.

Handles:
- Topic explanations (complete and streamed)
- Question generation
- Answer evaluation
- Context-grounded chat
"""

import logging
from collections.abc import AsyncIterator
from contextlib import aclosing

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from ..models import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ChatRole,
    EvaluateRequest,
    EvaluationResult,
    ExplainRequest,
    Explanation,
    Question,
    QuestionsRequest,
)
from ..services.llm import LLMService, get_llm_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tutor", tags=["tutor"])


@router.post("/explain", response_model=Explanation)
async def explain_topic(
    request: ExplainRequest,
    service: LLMService = Depends(get_llm_service),
) -> Explanation:
    """Explain a topic in markdown, grounded in the supplied material."""
    return await service.explain_topic(request.topic, request.content)


@router.post("/explain/stream")
async def stream_explanation(
    request: ExplainRequest,
    service: LLMService = Depends(get_llm_service),
) -> StreamingResponse:
    """
    Stream an explanation as newline-delimited JSON.

    Each line is a content chunk; the last one has ``done`` set or carries
    an ``error``.
    """

    async def ndjson() -> AsyncIterator[str]:
        async with aclosing(service.stream_explanation(request.topic, request.content)) as chunks:
            async for chunk in chunks:
                yield chunk.model_dump_json() + "\n"

    return StreamingResponse(ndjson(), media_type="application/x-ndjson")


@router.post("/questions", response_model=list[Question])
async def generate_questions(
    request: QuestionsRequest,
    service: LLMService = Depends(get_llm_service),
) -> list[Question]:
    """Generate study questions for a topic."""
    return await service.generate_questions(
        request.topic,
        request.content,
        difficulty=request.difficulty,
        count=request.count,
    )


@router.post("/evaluate", response_model=EvaluationResult)
async def evaluate_answer(
    request: EvaluateRequest,
    service: LLMService = Depends(get_llm_service),
) -> EvaluationResult:
    """Evaluate a learner's answer to a question."""
    return await service.evaluate_answer(request.question, request.answer)


@router.post("/chat", response_model=ChatResponse)
async def chat(
    request: ChatRequest,
    service: LLMService = Depends(get_llm_service),
) -> ChatResponse:
    """Answer the last chat message using only the supplied context."""
    response = await service.chat_with_context(request.messages, request.context, request.topic)
    return ChatResponse(
        message=ChatMessage(role=ChatRole.ASSISTANT, content=response.content),
        model=response.model,
    )
