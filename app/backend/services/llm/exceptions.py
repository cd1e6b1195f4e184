"""
Shared exceptions for inference service modules.
"""


class LLMServiceError(Exception):
    """Raised when inference service operations fail."""

    pass


class BackendError(LLMServiceError):
    """Raised when the backend answers with a non-success status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RetryExhaustedError(LLMServiceError):
    """Raised when every attempt of a call failed; wraps the last failure."""

    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"Backend call failed after {attempts} attempt(s): {last_error}")
        self.attempts = attempts
        self.last_error = last_error


class NoUsableDocumentsError(LLMServiceError):
    """Raised when document analysis has nothing it could analyze."""

    pass
