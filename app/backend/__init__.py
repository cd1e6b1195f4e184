"""
Study Platform Backend Application.

A FastAPI service that turns study documents into an ordered topic list
and tutors on those topics using a local LLM backend (Ollama by default).
"""

__version__ = "1.0.0"
