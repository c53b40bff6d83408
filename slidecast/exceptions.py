"""Custom exceptions for slidecast.

Every error the render core raises is one of four kinds (validation, not
found, encoding, system). Each carries a machine-readable code and converts
to the ``ErrorInfo`` used in API responses.
"""

from typing import Any

from slidecast.constants.error_codes import get_error_spec
from slidecast.schemas.envelope import ErrorInfo


class SlidecastError(Exception):
    """Base exception for all slidecast errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
        suggested_fix: str | None = None,
    ):
        self.message = message or self.__class__.message
        if code:
            self.code = code
        if status_code:
            self.status_code = status_code
        self.details = details or {}
        self.suggested_fix = suggested_fix
        super().__init__(self.message)

    def to_error_info(self) -> ErrorInfo:
        """Convert exception to ErrorInfo for API response."""
        spec = get_error_spec(self.code)
        return ErrorInfo(
            code=self.code,
            message=self.message,
            details=self.details,
            retryable=spec.get("retryable", False),
            suggested_fix=self.suggested_fix or spec.get("suggested_fix"),
        )


# =============================================================================
# Validation Errors (400)
# =============================================================================


class ValidationError(SlidecastError):
    """Invalid input: missing/excess files, unknown effect, empty input set."""

    code = "VALIDATION_ERROR"
    status_code = 400
    message = "Validation failed"

    def __init__(self, message: str | None = None, *, errors: list[str] | None = None):
        self.errors = list(errors) if errors else []
        if message is None and self.errors:
            message = "; ".join(self.errors)
        super().__init__(message, details={"errors": self.errors} if self.errors else None)


# =============================================================================
# Resource Not Found Errors (404)
# =============================================================================


class NotFoundError(SlidecastError):
    """Referenced resource (preset, effect, output artifact) is absent."""

    code = "NOT_FOUND"
    status_code = 404
    message = "Resource not found"

    def __init__(self, resource: str | None = None, name: str | None = None):
        if resource and name:
            message = f"{resource} not found: {name}"
        elif resource:
            message = f"{resource} not found"
        else:
            message = self.message
        super().__init__(message)


# =============================================================================
# Encoding Errors (500)
# =============================================================================


class EncodingError(SlidecastError):
    """External engine failure (non-zero exit, error event, kill)."""

    code = "ENCODING_ERROR"
    status_code = 500
    message = "Encoding failed"

    def __init__(self, message: str | None = None, *, diagnostic: str | None = None):
        self.diagnostic = diagnostic or ""
        super().__init__(
            message,
            details={"diagnostic": self.diagnostic} if self.diagnostic else None,
        )


# =============================================================================
# System Errors (500)
# =============================================================================


class StorageError(SlidecastError):
    """Filesystem I/O failure on ledger, manifest, upload or temp files."""

    code = "SYSTEM_ERROR"
    status_code = 500
    message = "Storage error"

    def __init__(self, message: str | None = None, *, path: str | None = None):
        self.path = path
        super().__init__(message, details={"path": path} if path else None)
