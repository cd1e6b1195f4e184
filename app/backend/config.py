"""
Application configuration using Pydantic Settings.

Automatically loads environment variables from .env files.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Inference backend
    llm_backend: str = "ollama"  # ollama | openai | mock
    ollama_url: str = "http://localhost:11434"
    openai_api_key: str | None = None
    openai_base_url: str | None = None

    # Models: the main interactive model and a light one for bulk analysis
    default_model: str = "qwen2.5:7b"
    fast_model: str = "llama3.2:3b"

    # Call layer
    gate_capacity: int = Field(default=1, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    crash_cooldown_seconds: float = Field(default=5.0, ge=0.0)
    backoff_base_seconds: float = Field(default=2.0, ge=0.0)
    stream_queue_size: int = Field(default=100, ge=1)
    request_timeout_seconds: float = Field(default=900.0, gt=0.0)

    # Document analysis
    analysis_timeout_seconds: float = Field(default=900.0, gt=0.0)
    document_timeout_seconds: float = Field(default=300.0, gt=0.0)
    ranking_timeout_seconds: float = Field(default=60.0, gt=0.0)
    primary_char_budget: int = Field(default=4000, ge=1)
    reference_char_cap: int = Field(default=2000, ge=1)
    reference_total_cap: int = Field(default=10000, ge=1)
    reference_markers: list[str] = Field(
        default_factory=lambda: ["exam", "exercise", "klausur", "übung"]
    )

    # Debug flags
    debug: bool = False

    model_config = SettingsConfigDict(
        # Load from .env file in the backend directory
        env_file=Path(__file__).parent / ".env",
        env_file_encoding="utf-8",
        extra="ignore",
        # Case insensitive environment variable names
        case_sensitive=False,
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached application settings.

    Returns:
        Settings: Application configuration loaded from environment.
    """
    return Settings()
