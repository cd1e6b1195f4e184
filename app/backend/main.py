"""
FastAPI application for the study platform backend.

Provides endpoints for:
- Analyzing study documents into an ordered topic list
- Inspecting the inference backend and switching models
- Explanations, question generation, answer evaluation and chat
"""

import logging

from contextlib import asynccontextmanager

from fastapi import FastAPI, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .models import HealthResponse
from .routers import analysis, backend, tutor
from .services.llm import LLMServiceError, NoUsableDocumentsError, get_llm_service

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if get_settings().debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    logger.info("Starting Study Platform Service...")
    service = get_llm_service()
    await service.startup()
    logger.info("Services initialized successfully")
    yield
    logger.info("Shutting down Study Platform Service...")
    await service.aclose()


# Create FastAPI application
app = FastAPI(
    title="Study Platform API",
    description="Document analysis and tutoring with a local LLM",
    version="1.0.0",
    lifespan=lifespan,
)

# Configure CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:5173",  # Vite development server
        "http://127.0.0.1:5173",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# Health Endpoints
# =============================================================================


@app.get("/", response_model=HealthResponse)
async def root() -> HealthResponse:
    """Root endpoint - health check."""
    return HealthResponse(status="healthy", message="Study Platform API is running")


@app.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="healthy", message="Service is healthy")


# =============================================================================
# Include Routers
# =============================================================================

app.include_router(analysis.router)
app.include_router(backend.router)
app.include_router(tutor.router)


# =============================================================================
# Exception Handlers
# =============================================================================


@app.exception_handler(NoUsableDocumentsError)
async def no_usable_documents_handler(request, exc: NoUsableDocumentsError):
    """Handle analysis runs that produced nothing."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": str(exc)},
    )


@app.exception_handler(LLMServiceError)
async def llm_service_error_handler(request, exc: LLMServiceError):
    """Handle inference backend errors."""
    logger.error("LLM service error on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": str(exc)},
    )
