"""Custom exception hierarchy for skillwriter."""

from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(str, Enum):
    """Machine-readable failure codes attached to section and run results."""

    # Backend process errors
    SPAWN_FAILED = "SPAWN_FAILED"
    TIMEOUT = "TIMEOUT"
    EXIT_NONZERO = "EXIT_NONZERO"
    EMPTY_OUTPUT = "EMPTY_OUTPUT"

    # Configuration errors
    UNKNOWN_MODEL = "UNKNOWN_MODEL"
    NO_SECTIONS = "NO_SECTIONS"

    # Generic errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class SkillwriterError(Exception):
    """
    Base exception for all skillwriter errors.

    Carries:
    - Human-readable message
    - Machine-readable error code
    - Optional additional details
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize exception.

        Args:
            message: Human-readable error message
            error_code: Machine-readable error code
            details: Optional additional context/details
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a serializable dict."""
        return {
            "error": self.error_code.value,
            "message": self.message,
            "details": self.details,
        }


class ModelConfigError(SkillwriterError):
    """Model id not found in the backend model registry.

    The message lists every known model id so the caller can correct the
    typo without reading the source.
    """

    def __init__(self, model_id: str, known: list[str]):
        super().__init__(
            message=(
                f"No backend mapping for model '{model_id}'. "
                f"Known models: {', '.join(sorted(known))}"
            ),
            error_code=ErrorCode.UNKNOWN_MODEL,
            details={"model_id": model_id},
        )
        self.model_id = model_id
