"""
Render pipeline for slideshow videos.

This module runs one job end to end:
1. Validate inputs and resolve effects (nothing is spawned for bad input)
2. Measure the narration, merging multiple parts first
3. Split the narration evenly across the images
4. Compile the filter graph
5. Encode through the orchestrator
6. Append the finished job to the ledger

A job only reaches ``succeeded`` once its ledger entry is written; any
failure before that leaves it ``failed`` with no ledger entry.
"""

import asyncio
import logging
import os
import secrets
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional
from uuid import uuid4

from slidecast.config import Settings, get_settings
from slidecast.effects.catalog import EffectSpec, resolve_effects
from slidecast.exceptions import SlidecastError, StorageError, ValidationError
from slidecast.render.audio_concat import AudioConcatenator
from slidecast.render.duration import estimate_total_async, segment_durations
from slidecast.render.filter_graph import GraphConfig, compile_graph
from slidecast.render.orchestrator import EncodingOrchestrator
from slidecast.schemas.render import (
    AssetSummary,
    LedgerEntry,
    LedgerSettings,
    OutputSummary,
    VoiceoverSummary,
)
from slidecast.services.job_ledger import JobLedger

logger = logging.getLogger(__name__)


class RenderStatus(str, Enum):
    """Render job status."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# ============================================================================
# Dataclasses
# ============================================================================


@dataclass(frozen=True)
class MediaAsset:
    """An uploaded input file."""

    path: str
    original_name: str
    size: int

    @classmethod
    def from_path(cls, path: str, original_name: str | None = None) -> "MediaAsset":
        try:
            size = os.path.getsize(path)
        except OSError:
            size = 0
        return cls(path=path, original_name=original_name or os.path.basename(path), size=size)

    @property
    def filename(self) -> str:
        return os.path.basename(self.path)

    def summary(self) -> AssetSummary:
        return AssetSummary(filename=self.filename, original_name=self.original_name, size=self.size)


@dataclass
class RenderRequest:
    """Validated-at-upload inputs for one job."""

    images: list[MediaAsset]
    audio: list[MediaAsset]
    effects: Optional[Mapping[str, Any]] = None
    output_basename: str = "generated_video"


@dataclass
class RenderJob:
    """Render job information."""

    id: str
    created_at: datetime
    images: list[MediaAsset]
    audio: list[MediaAsset]
    effects: EffectSpec
    output_filename: str
    output_path: str
    status: RenderStatus = RenderStatus.PENDING
    segment_durations: list[float] = field(default_factory=list)
    total_duration: Optional[float] = None
    progress: float = 0.0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "id": self.id,
            "status": self.status.value,
            "images": [a.filename for a in self.images],
            "audio": [a.filename for a in self.audio],
            "effects": self.effects.to_dict(),
            "output_filename": self.output_filename,
            "segment_durations": self.segment_durations,
            "total_duration": self.total_duration,
            "progress": self.progress,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error_message": self.error_message,
        }


@dataclass
class RenderResult:
    """Success descriptor handed back to the caller."""

    job: RenderJob
    entry: LedgerEntry
    processing_time_ms: int

    @property
    def output_filename(self) -> str:
        return self.job.output_filename


def create_safe_video_filename(base_name: str = "video", extension: str = "mp4") -> str:
    """``<base>_<epoch ms>_<random>.mp4`` with the base reduced to [a-z0-9_]."""
    safe_name = "".join(c if c.isascii() and c.isalnum() else "_" for c in base_name).lower()
    return f"{safe_name}_{int(time.time() * 1000)}_{secrets.token_hex(3)}.{extension}"


# ============================================================================
# Pipeline
# ============================================================================


class RenderPipeline:
    """Drives one job from validated inputs to a ledger entry."""

    def __init__(
        self,
        settings: Settings | None = None,
        orchestrator: EncodingOrchestrator | None = None,
        ledger: JobLedger | None = None,
        concatenator: AudioConcatenator | None = None,
    ):
        self.settings = settings or get_settings()
        self.orchestrator = orchestrator or EncodingOrchestrator(self.settings)
        self.ledger = ledger or JobLedger(self.settings.ledger_path)
        self.concatenator = concatenator or AudioConcatenator(self.settings)
        self.graph_config = GraphConfig.from_settings(self.settings)
        self._jobs: dict[str, RenderJob] = {}

    def validate_request(self, request: RenderRequest) -> EffectSpec:
        """
        Check inputs and resolve effects.

        Raises:
            ValidationError: On missing/excess/unsupported files or bad effects
        """
        s = self.settings
        errors: list[str] = []

        if not request.images:
            errors.append("At least one image is required")
        elif len(request.images) > s.max_image_count:
            errors.append(f"Too many images: {len(request.images)} (max {s.max_image_count})")
        if not request.audio:
            errors.append("A voiceover audio file is required")

        for image in request.images:
            if Path(image.path).suffix.lower() not in s.supported_image_formats:
                errors.append(f"Unsupported image format: {image.original_name}")
            elif not os.path.isfile(image.path):
                errors.append(f"Image file not found: {image.original_name}")
        for audio in request.audio:
            if Path(audio.path).suffix.lower() not in s.supported_audio_formats:
                errors.append(f"Unsupported audio format: {audio.original_name}")
            elif not os.path.isfile(audio.path) or os.path.getsize(audio.path) == 0:
                errors.append(f"Invalid or empty audio file: {audio.original_name}")

        if errors:
            raise ValidationError(errors=errors)

        return resolve_effects(request.effects, s.default_transition_duration)

    def create_job(self, request: RenderRequest, effects: EffectSpec) -> RenderJob:
        """Create a new pending job for validated inputs."""
        output_filename = create_safe_video_filename(request.output_basename)
        job = RenderJob(
            id=str(uuid4()),
            created_at=datetime.now(timezone.utc),
            images=list(request.images),
            audio=list(request.audio),
            effects=effects,
            output_filename=output_filename,
            output_path=os.path.join(self.settings.output_dir, output_filename),
        )
        self._jobs[job.id] = job
        self._evict_finished_jobs()
        return job

    def _evict_finished_jobs(self) -> None:
        """Drop the oldest finished jobs once more than ``max_tracked_jobs`` are kept."""
        excess = len(self._jobs) - self.settings.max_tracked_jobs
        if excess <= 0:
            return
        finished = [
            job_id
            for job_id, job in self._jobs.items()
            if job.status in (RenderStatus.SUCCEEDED, RenderStatus.FAILED)
        ]
        for job_id in finished[:excess]:
            del self._jobs[job_id]

    def get_job(self, job_id: str) -> Optional[RenderJob]:
        """Get a render job by ID."""
        return self._jobs.get(job_id)

    def list_jobs(self) -> list[RenderJob]:
        return list(self._jobs.values())

    async def _prepare_audio(self, job: RenderJob) -> tuple[str, float]:
        """Return the narration track path and its duration."""
        if len(job.audio) == 1:
            path = job.audio[0].path
            return path, await estimate_total_async(path, settings=self.settings)

        merged_dir = os.path.join(self.settings.upload_dir, "audio")
        try:
            os.makedirs(merged_dir, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Failed to create audio directory: {e}", path=merged_dir) from e
        merged = os.path.join(merged_dir, f"merged_{job.id}.mp3")
        result = await self.concatenator.concatenate_async([a.path for a in job.audio], merged)
        return result.output_path, result.total_duration

    def build_ledger_entry(self, job: RenderJob, audio_path: str, processing_time_ms: int) -> LedgerEntry:
        """Project a finished job onto its ledger record."""
        voice = job.audio[0] if len(job.audio) == 1 else MediaAsset.from_path(audio_path)
        per_image = job.segment_durations[0] if job.segment_durations else 0.0
        return LedgerEntry(
            id=job.id,
            timestamp=(job.completed_at or datetime.now(timezone.utc)).isoformat(),
            images=[image.summary() for image in job.images],
            voiceover=VoiceoverSummary(
                filename=voice.filename,
                original_name=voice.original_name if len(job.audio) == 1 else "+".join(
                    a.original_name for a in job.audio
                ),
                size=voice.size,
                duration=job.total_duration or 0.0,
                parts=len(job.audio),
            ),
            effects=None if job.effects.is_empty else job.effects.to_dict(),
            output=OutputSummary(filename=job.output_filename, path=job.output_path),
            processing_time=f"{processing_time_ms}ms",
            settings=LedgerSettings(
                duration_per_image=f"{per_image:.2f}s",
                total_images=len(job.images),
                resolution=f"{self.graph_config.width}x{self.graph_config.height}",
                fps=self.graph_config.fps,
            ),
        )

    async def render(
        self,
        request: RenderRequest,
        *,
        cancel_event: asyncio.Event | None = None,
        on_progress: Callable[[float], None] | None = None,
    ) -> RenderResult:
        """
        Run one job.

        Args:
            request: Uploaded inputs and effect options
            cancel_event: Setting it kills the encode
            on_progress: Receives the encode fraction in [0, 1]

        Returns:
            RenderResult with the job and its ledger entry

        Raises:
            ValidationError: Bad input (raised before any job is created)
            EncodingError: FFmpeg failed, was cancelled or timed out
            StorageError: Filesystem failure on merge, output or ledger
        """
        start = time.perf_counter()
        effects = self.validate_request(request)
        job = self.create_job(request, effects)
        logger.info(
            f"[RENDER] Job {job.id}: {len(job.images)} images, {len(job.audio)} audio part(s), "
            f"effects={effects.to_dict()}"
        )

        def _on_start(command: list[str]) -> None:
            job.status = RenderStatus.RUNNING
            job.started_at = datetime.now(timezone.utc)

        def _on_progress(fraction: float) -> None:
            job.progress = fraction
            if on_progress:
                on_progress(fraction)

        try:
            audio_path, total = await self._prepare_audio(job)
            job.total_duration = total
            job.segment_durations = segment_durations(total, len(job.images))
            logger.info(
                f"[RENDER] Job {job.id}: narration {total:.2f}s, "
                f"{job.segment_durations[0]:.2f}s per image"
            )

            graph = compile_graph(
                [image.path for image in job.images],
                job.segment_durations,
                job.effects,
                self.graph_config,
            )

            try:
                os.makedirs(self.settings.output_dir, exist_ok=True)
            except OSError as e:
                raise StorageError(f"Failed to create output directory: {e}", path=self.settings.output_dir) from e

            await self.orchestrator.encode(
                graph,
                audio_path,
                job.output_path,
                total,
                cancel_event=cancel_event,
                on_start=_on_start,
                on_progress=_on_progress,
            )

            job.completed_at = datetime.now(timezone.utc)
            processing_time_ms = int((time.perf_counter() - start) * 1000)
            entry = self.build_ledger_entry(job, audio_path, processing_time_ms)
            await self.ledger.append_async(entry.to_record())
        except SlidecastError as e:
            job.status = RenderStatus.FAILED
            job.error_message = e.message
            logger.error(f"[RENDER] Job {job.id} failed: {e.message}")
            raise
        except BaseException:
            # caller cancellation or an unexpected error
            job.status = RenderStatus.FAILED
            job.error_message = "Aborted"
            raise

        job.status = RenderStatus.SUCCEEDED
        logger.info(f"[RENDER] Job {job.id} succeeded in {processing_time_ms}ms: {job.output_path}")
        return RenderResult(job=job, entry=entry, processing_time_ms=processing_time_ms)
