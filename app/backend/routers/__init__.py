"""
Routers package for FastAPI endpoints.

Organized by domain:
- analysis: Document analysis
- backend: Inference backend status and model selection
- tutor: Explanations, questions, evaluation and chat
"""

from . import analysis, backend, tutor

__all__ = ["analysis", "backend", "tutor"]
