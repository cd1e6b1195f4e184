"""
Services package for the study platform backend.

Contains:
- llm: Inference orchestration (admission, retries, streaming,
  document analysis and tutoring)
"""

from .llm import LLMService, get_llm_service

__all__ = ["LLMService", "get_llm_service"]
