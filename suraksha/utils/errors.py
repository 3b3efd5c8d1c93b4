"""
Error taxonomy for the submission pipeline.

Each error carries the HTTP status and a short machine-readable type so the
API layer can render it without knowing where it was raised.
"""

from typing import Optional


class SurakshaError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code: int = 500
    error_type: str = "internal_error"
    public_message: Optional[str] = None

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def detail(self) -> str:
        return self.public_message or self.message


class InvalidSubmissionError(SurakshaError):
    """A submission failed a precondition. No model call is made."""

    status_code = 400
    error_type = "validation_error"

    def __init__(self, field: str, message: str):
        super().__init__(message)
        self.field = field


class MediaError(SurakshaError):
    """Uploaded file could not be read, decoded, or sampled."""

    status_code = 422
    error_type = "media_error"


class ModelCallError(SurakshaError):
    """The outbound model call failed (network, auth, quota, timeout)."""

    status_code = 502
    error_type = "analysis_failed"
    public_message = "Analysis failed. Please try again."


class ModelContractError(SurakshaError):
    """The model answered, but not in the declared response schema."""

    status_code = 502
    error_type = "analysis_failed"
    public_message = "Analysis failed. Please try again."


class StoreError(SurakshaError):
    """History store read or write failed."""

    status_code = 503
    error_type = "store_error"
