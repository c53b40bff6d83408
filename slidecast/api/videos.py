"""Video API router.

Thin HTTP layer over the render pipeline: uploads in, envelope responses
out. Finished videos are served from the output directory, with byte-range
support for in-browser preview.
"""

import json
import logging
import os
from functools import lru_cache
from typing import Iterator

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile, status
from fastapi.responses import FileResponse, StreamingResponse

from slidecast.config import get_settings
from slidecast.effects.catalog import describe_effect, list_effects, list_presets, validate
from slidecast.exceptions import NotFoundError, ValidationError
from slidecast.middleware.request_context import create_request_context, envelope_success
from slidecast.render.pipeline import RenderPipeline, RenderRequest
from slidecast.schemas.effects import EffectCatalogResponse, EffectDescription, PresetInfo
from slidecast.schemas.envelope import EnvelopeResponse
from slidecast.schemas.render import GenerateVideoResponse, MappingsResponse
from slidecast.services.job_ledger import JobLedger, get_job_ledger
from slidecast.services.upload_store import UploadStore

logger = logging.getLogger(__name__)

router = APIRouter()

STREAM_CHUNK_SIZE = 1024 * 1024


@lru_cache
def get_pipeline() -> RenderPipeline:
    return RenderPipeline(get_settings(), ledger=get_job_ledger())


@lru_cache
def get_upload_store() -> UploadStore:
    return UploadStore(get_settings())


# =============================================================================
# Helpers
# =============================================================================


def _parse_effects(raw: str | None) -> dict | None:
    if raw is None or not raw.strip():
        return None
    try:
        effects = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError(f"Effects must be a JSON object: {e.msg}") from e
    if effects is not None and not isinstance(effects, dict):
        raise ValidationError("Effects must be a JSON object")
    return effects


def resolve_output_file(filename: str) -> str:
    """Absolute path of a finished video inside the output directory.

    Raises:
        NotFoundError: If the name escapes the directory or the file is absent
    """
    output_dir = os.path.realpath(get_settings().output_dir)
    if not filename or os.path.basename(filename) != filename or filename in (".", ".."):
        raise NotFoundError("Video file", filename)

    path = os.path.realpath(os.path.join(output_dir, filename))
    if os.path.dirname(path) != output_dir or not os.path.isfile(path):
        raise NotFoundError("Video file", filename)
    return path


def parse_byte_range(header: str, file_size: int) -> tuple[int, int]:
    """Parse a single ``bytes=start-end`` range into inclusive offsets.

    Raises:
        HTTPException: 416 if the range is malformed or unsatisfiable
    """
    unsatisfiable = HTTPException(
        status_code=status.HTTP_416_REQUESTED_RANGE_NOT_SATISFIABLE,
        detail=f"Invalid range: {header}",
        headers={"Content-Range": f"bytes */{file_size}"},
    )
    unit, _, spec = header.partition("=")
    if unit.strip().lower() != "bytes" or "," in spec:
        raise unsatisfiable

    start_text, sep, end_text = spec.strip().partition("-")
    if not sep:
        raise unsatisfiable
    try:
        if start_text == "":
            # suffix range: last N bytes
            length = int(end_text)
            if length <= 0:
                raise unsatisfiable
            start, end = max(file_size - length, 0), file_size - 1
        else:
            start = int(start_text)
            end = int(end_text) if end_text else file_size - 1
    except ValueError:
        raise unsatisfiable from None

    end = min(end, file_size - 1)
    if start < 0 or start > end:
        raise unsatisfiable
    return start, end


def _iter_file(path: str, start: int, end: int) -> Iterator[bytes]:
    with open(path, "rb") as f:
        f.seek(start)
        remaining = end - start + 1
        while remaining > 0:
            chunk = f.read(min(STREAM_CHUNK_SIZE, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk


async def _generate(
    images: list[UploadFile] | None,
    voiceover: list[UploadFile] | None,
    effects: dict | None,
    pipeline: RenderPipeline,
    store: UploadStore,
) -> EnvelopeResponse:
    context = create_request_context()
    image_assets, audio_assets = await store.save_request_files(images, voiceover)
    logger.info(
        f"[API] Generating video from {len(image_assets)} images, "
        f"voiceover={audio_assets[0].original_name}"
    )

    result = await pipeline.render(RenderRequest(images=image_assets, audio=audio_assets, effects=effects))

    filename = result.output_filename
    data = GenerateVideoResponse(
        video_file=filename,
        download_url=f"/api/video/download/{filename}",
        preview_url=f"/api/video/preview/{filename}",
        processing_time=f"{result.processing_time_ms}ms",
        effects=result.entry.effects,
        mapping=result.entry.to_record(),
    )
    message = "Video with effects generated successfully" if effects else "Video generated successfully"
    return envelope_success(context, data.model_dump(by_alias=True), message)


# =============================================================================
# Generation
# =============================================================================


@router.post("/generate", response_model=EnvelopeResponse)
async def generate_video(
    images: list[UploadFile] | None = File(None),
    voiceover: list[UploadFile] | None = File(None),
    pipeline: RenderPipeline = Depends(get_pipeline),
    store: UploadStore = Depends(get_upload_store),
) -> EnvelopeResponse:
    """Render a slideshow from uploaded images and one voiceover track."""
    return await _generate(images, voiceover, None, pipeline, store)


@router.post("/generate-with-effects", response_model=EnvelopeResponse)
async def generate_video_with_effects(
    images: list[UploadFile] | None = File(None),
    voiceover: list[UploadFile] | None = File(None),
    effects: str | None = Form(None),
    pipeline: RenderPipeline = Depends(get_pipeline),
    store: UploadStore = Depends(get_upload_store),
) -> EnvelopeResponse:
    """Same as ``/generate`` plus a JSON ``effects`` form field.

    ``effects`` keys: transition, motion, color, overlay, transitionDuration, preset.
    """
    # options are validated before any upload is written
    options = _parse_effects(effects)
    if options:
        result = validate(options)
        if not result.is_valid:
            raise ValidationError(errors=result.errors)
    return await _generate(images, voiceover, options, pipeline, store)


# =============================================================================
# Output
# =============================================================================


@router.get("/download/{filename}")
async def download_video(filename: str) -> FileResponse:
    path = resolve_output_file(filename)
    return FileResponse(path, media_type="video/mp4", filename=filename)


@router.get("/preview/{filename}")
async def preview_video(filename: str, request: Request) -> StreamingResponse:
    """Stream a video, honouring a single ``Range`` header."""
    path = resolve_output_file(filename)
    file_size = os.path.getsize(path)
    range_header = request.headers.get("range")

    if not range_header:
        return StreamingResponse(
            _iter_file(path, 0, file_size - 1),
            media_type="video/mp4",
            headers={"Content-Length": str(file_size), "Accept-Ranges": "bytes"},
        )

    start, end = parse_byte_range(range_header, file_size)
    return StreamingResponse(
        _iter_file(path, start, end),
        status_code=status.HTTP_206_PARTIAL_CONTENT,
        media_type="video/mp4",
        headers={
            "Content-Range": f"bytes {start}-{end}/{file_size}",
            "Accept-Ranges": "bytes",
            "Content-Length": str(end - start + 1),
        },
    )


@router.get("/mappings", response_model=EnvelopeResponse)
async def get_mappings(ledger: JobLedger = Depends(get_job_ledger)) -> EnvelopeResponse:
    context = create_request_context()
    entries = await ledger.list_async()
    message = "Mappings retrieved successfully" if entries else "No mappings found"
    return envelope_success(context, MappingsResponse(mappings=entries).model_dump(), message)


# =============================================================================
# Effect catalog
# =============================================================================


@router.get("/effects", response_model=EnvelopeResponse)
async def get_effects() -> EnvelopeResponse:
    context = create_request_context()
    catalog = list_effects()
    data = EffectCatalogResponse(
        **catalog,
        presets={name: PresetInfo(**preset.to_dict()) for name, preset in list_presets().items()},
    )
    return envelope_success(context, data.model_dump(), "Available effects retrieved successfully")


@router.get("/effects/preview/{effect_type}/{name}", response_model=EnvelopeResponse)
async def preview_effect(effect_type: str, name: str) -> EnvelopeResponse:
    context = create_request_context()
    data = EffectDescription(**describe_effect(effect_type, name))
    return envelope_success(context, data.model_dump(exclude_none=True))


@router.get("/effects/preset/{name}", response_model=EnvelopeResponse)
async def get_preset(name: str) -> EnvelopeResponse:
    context = create_request_context()
    data = EffectDescription(**describe_effect("preset", name))
    return envelope_success(context, data.model_dump())
