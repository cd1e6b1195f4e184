"""
Router for document analysis.

Handles:
- Turning a set of study documents into an ordered topic list
"""

import asyncio
import logging
import time

from fastapi import APIRouter, Depends, HTTPException, status

from ..config import Settings, get_settings
from ..models import AnalyzeRequest, AnalyzeResponse
from ..services.llm import LLMService, get_llm_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["analysis"])


@router.post("/analyze", response_model=AnalyzeResponse)
async def analyze_documents(
    request: AnalyzeRequest,
    service: LLMService = Depends(get_llm_service),
    settings: Settings = Depends(get_settings),
) -> AnalyzeResponse:
    """
    Analyze study documents and return their topics.

    Primary documents are analyzed one after another; exam and exercise
    material only influences the order of the result.

    Args:
        request: Documents with already extracted text.
        service: LLM service.
        settings: Application settings (analysis deadline).

    Returns:
        Ordered, deduplicated topics.
    """
    start = time.perf_counter()
    logger.info("Analysis requested for %d document(s)", len(request.documents))

    try:
        async with asyncio.timeout(settings.analysis_timeout_seconds):
            topics = await service.analyze_documents(request.documents)
    except TimeoutError:
        logger.error("Analysis aborted after %.0fs", settings.analysis_timeout_seconds)
        raise HTTPException(
            status_code=status.HTTP_504_GATEWAY_TIMEOUT,
            detail=f"Analysis did not finish within {settings.analysis_timeout_seconds:.0f} seconds",
        )

    return AnalyzeResponse(
        topics=topics,
        document_count=len(request.documents),
        duration_seconds=time.perf_counter() - start,
    )
