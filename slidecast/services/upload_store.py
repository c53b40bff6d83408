"""Persist multipart uploads to the upload directory.

Every upload is checked (count, extension, size) before anything is written,
so a rejected request leaves no files behind.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from fastapi import UploadFile

from slidecast.config import Settings, get_settings
from slidecast.exceptions import StorageError, ValidationError
from slidecast.render.pipeline import MediaAsset

logger = logging.getLogger(__name__)


@dataclass
class _PendingUpload:
    original_name: str
    extension: str
    content: bytes


class UploadStore:
    """Writes uploaded images and audio under ``upload_dir/{images,audio}``."""

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()
        self.max_bytes = self.settings.max_upload_size_mb * 1024 * 1024

    async def _read(
        self,
        uploads: list[UploadFile],
        allowed: list[str],
        kind: str,
        errors: list[str],
    ) -> list[_PendingUpload]:
        pending: list[_PendingUpload] = []
        for upload in uploads:
            name = upload.filename or f"unnamed_{uuid4().hex[:8]}"
            extension = Path(name).suffix.lower()
            if extension not in allowed:
                errors.append(f"Unsupported {kind} format: {name} (allowed: {', '.join(allowed)})")
                continue
            content = await upload.read(self.max_bytes + 1)
            if len(content) == 0:
                errors.append(f"Empty {kind} file: {name}")
            elif len(content) > self.max_bytes:
                errors.append(f"{name} exceeds the {self.settings.max_upload_size_mb}MB upload limit")
            else:
                pending.append(_PendingUpload(name, extension, content))
        return pending

    def _write(self, pending: _PendingUpload, subdir: str) -> MediaAsset:
        directory = os.path.join(self.settings.upload_dir, subdir)
        path = os.path.abspath(os.path.join(directory, f"{uuid4()}{pending.extension}"))
        try:
            os.makedirs(directory, exist_ok=True)
            with open(path, "wb") as f:
                f.write(pending.content)
        except OSError as e:
            raise StorageError(f"Failed to store upload {pending.original_name}: {e}", path=path) from e
        return MediaAsset(path=path, original_name=pending.original_name, size=len(pending.content))

    async def save_request_files(
        self,
        images: list[UploadFile] | None,
        voiceover: list[UploadFile] | None,
    ) -> tuple[list[MediaAsset], list[MediaAsset]]:
        """
        Validate and store one request's files.

        Returns:
            (image assets, audio assets) with absolute paths

        Raises:
            ValidationError: On missing/excess files, bad extension or size
            StorageError: If a file cannot be written
        """
        images = images or []
        voiceover = voiceover or []
        s = self.settings
        errors: list[str] = []

        if not images:
            errors.append("At least one image is required")
        elif len(images) > s.max_image_count:
            errors.append(f"Too many images: {len(images)} (max {s.max_image_count})")
        if not voiceover:
            errors.append("A voiceover audio file is required")
        elif len(voiceover) > s.max_audio_count:
            errors.append(f"Too many voiceover files: {len(voiceover)} (max {s.max_audio_count})")
        if errors:
            raise ValidationError(errors=errors)

        pending_images = await self._read(images, s.supported_image_formats, "image", errors)
        pending_audio = await self._read(voiceover, s.supported_audio_formats, "audio", errors)
        if errors:
            raise ValidationError(errors=errors)

        image_assets: list[MediaAsset] = []
        audio_assets: list[MediaAsset] = []
        for item in pending_images:
            image_assets.append(await asyncio.to_thread(self._write, item, "images"))
        for item in pending_audio:
            audio_assets.append(await asyncio.to_thread(self._write, item, "audio"))

        logger.info(f"[UPLOAD] Stored {len(image_assets)} images and {len(audio_assets)} audio files")
        return image_assets, audio_assets
