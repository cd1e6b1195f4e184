"""Pytest configuration and fixtures."""

import asyncio
import json
from typing import Generator

import pytest
from fastapi.testclient import TestClient

from app.backend.config import Settings, get_settings
from app.backend.main import app
from app.backend.models import Document, GenerationRequest, GenerationResponse
from app.backend.services import llm as llm_package
from app.backend.services.llm import LLMService
from app.backend.services.llm.providers import MockProvider


class BlockingProvider(MockProvider):
    """
    Mock provider whose generate calls hang until cancelled.

    Only prompts containing ``block_marker`` hang; the default empty marker
    blocks every call.
    """

    def __init__(self, block_marker: str = "", **kwargs):
        super().__init__(**kwargs)
        self.block_marker = block_marker
        self.blocked = 0

    async def generate(self, request: GenerationRequest) -> GenerationResponse:
        if self.block_marker in request.prompt:
            self.requests.append(request)
            self.blocked += 1
            await asyncio.Event().wait()
        return await super().generate(request)


def _topics_answer(*names: str, prose: bool = True) -> str:
    """Build a model answer holding a topic list payload."""
    payload = json.dumps(
        {
            "topics": [
                {"name": name, "description": f"About {name}", "difficulty": 2, "est_minutes": 20}
                for name in names
            ]
        }
    )
    if prose:
        return f"Sure! Here are the topics:\n{payload}\nGood luck studying."
    return payload


@pytest.fixture
def topics_answer():
    """Builder for model answers holding a topic list payload."""
    return _topics_answer


@pytest.fixture
def blocking_provider() -> BlockingProvider:
    """Provider whose generate calls hang; narrow with ``block_marker``."""
    return BlockingProvider(model="main-model")


@pytest.fixture
def settings() -> Settings:
    """Settings for tests: mock backend, no retry delays, short timeouts."""
    return Settings(
        llm_backend="mock",
        default_model="main-model",
        fast_model="fast-model",
        crash_cooldown_seconds=0.0,
        backoff_base_seconds=0.0,
        document_timeout_seconds=5.0,
        ranking_timeout_seconds=5.0,
        analysis_timeout_seconds=30.0,
    )


@pytest.fixture
def provider() -> MockProvider:
    """Scripted provider; queue answers with provider.queue(...)."""
    return MockProvider(model="main-model")


@pytest.fixture
def sleeps() -> list[float]:
    """Delays requested by the retry loop, in order."""
    return []


@pytest.fixture
def recording_sleep(sleeps: list[float]):
    """Sleep that records the delay and only yields to the event loop."""

    async def sleep(delay: float) -> None:
        sleeps.append(delay)
        await asyncio.sleep(0)

    return sleep


@pytest.fixture
def service(settings: Settings, provider: MockProvider, recording_sleep) -> LLMService:
    """LLM service wired to the mock provider."""
    return LLMService(settings=settings, provider=provider, sleep=recording_sleep)


@pytest.fixture
def client(
    service: LLMService,
    settings: Settings,
    monkeypatch: pytest.MonkeyPatch,
) -> Generator[TestClient, None, None]:
    """Create a test client for the FastAPI application backed by the mock service."""
    monkeypatch.setattr(llm_package, "_llm_service", service)
    app.dependency_overrides[get_settings] = lambda: settings
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def lecture_documents() -> list[Document]:
    """Three lecture scripts and one past exam."""
    return [
        Document(id="1", name="lecture_01_intro.pdf", content="Introduction to logistics."),
        Document(id="2", name="lecture_02_supply.pdf", content="Supply chains and procurement."),
        Document(id="3", name="lecture_03_transport.pdf", content="Transport planning."),
        Document(id="4", name="Exam_2023.pdf", content="Q1: Explain transport planning."),
    ]
