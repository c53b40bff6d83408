"""Error codes dictionary for the slidecast API.

This is the single source of truth for all error codes, their retryability,
and suggested recovery hints. Used by exception handlers to generate
machine-readable error responses.
"""

from typing import TypedDict


class ErrorCodeSpec(TypedDict, total=False):
    """Specification for an error code."""

    retryable: bool
    suggested_fix: str
    suggested_endpoint: str


# Error codes dictionary - single source of truth
ERROR_CODES: dict[str, ErrorCodeSpec] = {
    # ==========================================================================
    # Validation errors (not retryable, fix input)
    # ==========================================================================
    "VALIDATION_ERROR": {
        "retryable": False,
        "suggested_fix": "Check the uploaded files and effect options against GET /api/video/effects",
        "suggested_endpoint": "GET /api/video/effects",
    },
    "BAD_REQUEST": {
        "retryable": False,
    },
    # ==========================================================================
    # Resource errors
    # ==========================================================================
    "NOT_FOUND": {
        "retryable": False,
        "suggested_fix": "List finished videos with GET /api/video/mappings",
        "suggested_endpoint": "GET /api/video/mappings",
    },
    # ==========================================================================
    # Encoding errors (engine failure, no automatic retry)
    # ==========================================================================
    "ENCODING_ERROR": {
        "retryable": True,
        "suggested_fix": "Inspect the engine diagnostic; re-submit once the input is fixed",
    },
    # ==========================================================================
    # System errors
    # ==========================================================================
    "SYSTEM_ERROR": {
        "retryable": True,
    },
    "INTERNAL_ERROR": {
        "retryable": True,
    },
}


def get_error_spec(code: str) -> ErrorCodeSpec:
    """Get error specification for a given code.

    Returns an empty spec (non-retryable) for unknown codes.
    """
    return ERROR_CODES.get(code, {"retryable": False})
