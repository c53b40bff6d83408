"""Response envelope shared by every API route.

Success: ``{request_id, success: true, message, data, meta}``.
Failure: ``{request_id, success: false, message, error, meta}``.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ResponseMeta(BaseModel):
    api_version: str = "1.0"
    processing_time_ms: int
    timestamp: datetime
    warnings: list[str] = Field(default_factory=list)


class ErrorInfo(BaseModel):
    """Machine-readable error; ``details`` carries per-kind context
    (validation messages, engine diagnostic, offending path)."""

    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    retryable: bool = False
    suggested_fix: str | None = None


class EnvelopeResponse(BaseModel):
    request_id: str
    success: bool = True
    message: str | None = None  # human-readable summary
    data: Any | None = None
    error: ErrorInfo | None = None
    meta: ResponseMeta
