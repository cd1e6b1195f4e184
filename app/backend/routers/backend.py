"""
Router for inference backend management.

Handles:
- Backend status
- Listing installed models
- Switching the active model
"""

import logging

from fastapi import APIRouter, Depends

from ..models import BackendStatusResponse, ModelInfo, SelectModelRequest
from ..services.llm import LLMService, get_llm_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/llm", tags=["llm"])


@router.get("/status", response_model=BackendStatusResponse)
async def backend_status(service: LLMService = Depends(get_llm_service)) -> BackendStatusResponse:
    """Report whether the backend answers and which model is active."""
    return BackendStatusResponse(
        provider=service.provider.name,
        available=await service.is_available(),
        current_model=service.current_model,
    )


@router.get("/models", response_model=list[ModelInfo])
async def list_models(service: LLMService = Depends(get_llm_service)) -> list[ModelInfo]:
    """List the models installed on the backend."""
    return await service.list_models()


@router.put("/model", response_model=BackendStatusResponse)
async def select_model(
    request: SelectModelRequest,
    service: LLMService = Depends(get_llm_service),
) -> BackendStatusResponse:
    """
    Switch the active model.

    The model is not checked against the installed ones; an unknown name
    surfaces on the next generation call.
    """
    service.set_model(request.name)
    return BackendStatusResponse(
        provider=service.provider.name,
        available=await service.is_available(),
        current_model=service.current_model,
    )
