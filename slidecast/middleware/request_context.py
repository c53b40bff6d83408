from dataclasses import dataclass
from datetime import datetime, timezone
from time import perf_counter
from typing import Any
from uuid import uuid4

from slidecast.schemas.envelope import EnvelopeResponse, ErrorInfo, ResponseMeta


@dataclass
class RequestContext:
    request_id: str
    start_time: float
    warnings: list[str]


def create_request_context() -> RequestContext:
    return RequestContext(
        request_id=str(uuid4()),
        start_time=perf_counter(),
        warnings=[],
    )


def build_meta(context: RequestContext, api_version: str = "1.0") -> ResponseMeta:
    processing_time_ms = int((perf_counter() - context.start_time) * 1000)
    return ResponseMeta(
        api_version=api_version,
        processing_time_ms=processing_time_ms,
        timestamp=datetime.now(timezone.utc),
        warnings=context.warnings,
    )


def envelope_success(context: RequestContext, data: Any, message: str | None = None) -> EnvelopeResponse:
    return EnvelopeResponse(
        request_id=context.request_id,
        success=True,
        message=message,
        data=data,
        meta=build_meta(context),
    )


def envelope_error(context: RequestContext, error: ErrorInfo) -> EnvelopeResponse:
    return EnvelopeResponse(
        request_id=context.request_id,
        success=False,
        message=error.message,
        error=error,
        meta=build_meta(context),
    )
