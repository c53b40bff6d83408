import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from slidecast.api import videos
from slidecast.config import get_settings
from slidecast.constants.error_codes import get_error_spec
from slidecast.exceptions import SlidecastError
from slidecast.middleware.request_context import create_request_context, envelope_error
from slidecast.schemas.envelope import ErrorInfo

settings = get_settings()
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    for directory in (
        os.path.join(settings.upload_dir, "images"),
        os.path.join(settings.upload_dir, "audio"),
        settings.output_dir,
        os.path.dirname(os.path.abspath(settings.ledger_path)),
    ):
        os.makedirs(directory, exist_ok=True)
    logger.info(f"{settings.app_name} {settings.app_version} started ({settings.environment})")
    yield


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _http_error_code(status_code: int) -> str:
    mapping = {
        400: "BAD_REQUEST",
        404: "NOT_FOUND",
        416: "BAD_REQUEST",
        422: "VALIDATION_ERROR",
        500: "INTERNAL_ERROR",
    }
    return mapping.get(status_code, "HTTP_ERROR")


def _envelope_response(status_code: int, error: ErrorInfo, headers: dict | None = None) -> JSONResponse:
    envelope = envelope_error(create_request_context(), error)
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(envelope.model_dump(exclude_none=True)),
        headers=headers,
    )


@app.exception_handler(SlidecastError)
async def slidecast_exception_handler(request: Request, exc: SlidecastError) -> JSONResponse:
    """Convert a SlidecastError to an envelope error response."""
    if exc.status_code >= 500:
        logger.error(f"{exc.code} on {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{exc.code} on {request.url.path}: {exc.message}")
    return _envelope_response(exc.status_code, exc.to_error_info())


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle FastAPI request validation errors (422) with envelope format."""
    spec = get_error_spec("VALIDATION_ERROR")

    # Build a human-readable message from validation errors
    errors = exc.errors()
    if errors:
        first_error = errors[0]
        loc = " -> ".join(str(x) for x in first_error.get("loc", []))
        msg = first_error.get("msg", "Validation error")
        message = f"{loc}: {msg}" if loc else msg
    else:
        message = "Request validation failed"

    error = ErrorInfo(
        code="VALIDATION_ERROR",
        message=message,
        retryable=spec.get("retryable", False),
        suggested_fix=spec.get("suggested_fix"),
    )
    return _envelope_response(422, error)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    error_code = _http_error_code(exc.status_code)
    spec = get_error_spec(error_code)
    error = ErrorInfo(
        code=error_code,
        message=str(exc.detail),
        retryable=spec.get("retryable", False),
        suggested_fix=spec.get("suggested_fix"),
    )
    return _envelope_response(exc.status_code, error, headers=getattr(exc, "headers", None))


# Global exception handler: never leak a stack trace
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled exception: {exc}")
    spec = get_error_spec("INTERNAL_ERROR")
    error = ErrorInfo(
        code="INTERNAL_ERROR",
        message=str(exc) if settings.debug else "Internal server error",
        retryable=spec.get("retryable", False),
        suggested_fix=spec.get("suggested_fix"),
    )
    return _envelope_response(500, error)


# Routers
app.include_router(videos.router, prefix="/api/video", tags=["video"])


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy", "version": settings.app_version}
