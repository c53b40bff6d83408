"""
Audio concatenation using FFmpeg.

This module handles:
- Input validation (missing / empty files)
- Single-input passthrough (verbatim copy, no transcode)
- Sequential normalization of every input to a canonical WAV format
- One concat-demuxer pass over an ordered manifest
- Guaranteed removal of intermediate files
"""

import asyncio
import logging
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from slidecast.config import Settings, get_settings
from slidecast.exceptions import EncodingError, StorageError, ValidationError
from slidecast.render.duration import estimate_total

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OutputCodec:
    """Codec and container chosen for the merged track."""

    codec: str
    container: str


OUTPUT_CODECS: dict[str, OutputCodec] = {
    ".mp3": OutputCodec("libmp3lame", "mp3"),
    ".wav": OutputCodec("pcm_s16le", "wav"),
    ".aac": OutputCodec("aac", "adts"),
    ".m4a": OutputCodec("aac", "ipod"),
    ".ogg": OutputCodec("libvorbis", "ogg"),
    ".flac": OutputCodec("flac", "flac"),
}
DEFAULT_OUTPUT_CODEC = OUTPUT_CODECS[".mp3"]

# codecs that ignore -b:a
_LOSSLESS = {"pcm_s16le", "flac"}


def output_codec_for(output_path: str) -> OutputCodec:
    """Pick codec/container from the output extension; unknown extensions get MP3."""
    return OUTPUT_CODECS.get(Path(output_path).suffix.lower(), DEFAULT_OUTPUT_CODEC)


def _manifest_line(path: str) -> str:
    escaped = Path(path).as_posix().replace("'", "'\\''")
    return f"file '{escaped}'"


@dataclass
class ConcatResult:
    """Merged narration track."""

    output_path: str
    total_duration: float
    source_count: int

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "output_path": self.output_path,
            "total_duration": self.total_duration,
            "source_count": self.source_count,
        }


class AudioConcatenator:
    """
    FFmpeg-based audio concatenator.

    Every input is converted one at a time to pcm_s16le WAV at a fixed
    sample rate and channel count, then the parts are joined by the concat
    demuxer in a single pass.
    """

    def __init__(self, settings: Settings | None = None, temp_root: str | None = None):
        self.settings = settings or get_settings()
        self.ffmpeg_path = self.settings.ffmpeg_path
        self.temp_root = temp_root or self.settings.temp_dir
        self.sample_rate = self.settings.concat_sample_rate
        self.channels = self.settings.concat_channels

    def _validate(self, paths: Sequence[str]) -> None:
        if not paths:
            raise ValidationError("No audio files provided")

        errors: list[str] = []
        for path in paths:
            if not os.path.isfile(path):
                errors.append(f"Audio file not found: {path}")
            elif os.path.getsize(path) == 0:
                errors.append(f"Invalid or empty audio file: {path}")
        if errors:
            raise ValidationError(errors=errors)

    def _run(self, cmd: list[str], step: str) -> None:
        timeout = self.settings.concat_timeout_s
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired as e:
            logger.error(f"[AUDIO CONCAT] {step} timed out after {timeout}s")
            raise EncodingError(f"FFmpeg {step} timed out after {timeout}s") from e
        except OSError as e:
            raise EncodingError(f"Failed to start ffmpeg for {step}: {e}") from e
        if result.returncode != 0:
            logger.error(f"[AUDIO CONCAT] {step} failed: {result.stderr}")
            raise EncodingError(f"FFmpeg {step} failed", diagnostic=result.stderr)

    def _convert_to_wav(self, source: str, output_path: str) -> str:
        """Normalize one input to the canonical WAV format."""
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-i", source,
            "-vn",
            "-c:a", "pcm_s16le",
            "-ar", str(self.sample_rate),
            "-ac", str(self.channels),
            "-f", "wav",
            output_path,
        ]
        self._run(cmd, f"conversion of {source}")
        return output_path

    def _write_manifest(self, parts: list[str], manifest_path: str) -> str:
        try:
            with open(manifest_path, "w", encoding="utf-8") as f:
                f.write("\n".join(_manifest_line(p) for p in parts))
                f.write("\n")
        except OSError as e:
            raise StorageError(f"Failed to write concat manifest: {e}", path=manifest_path) from e
        return manifest_path

    def _concat_parts(self, manifest_path: str, output_path: str) -> str:
        codec = output_codec_for(output_path)
        cmd = [
            self.ffmpeg_path,
            "-y",
            "-f", "concat",
            "-safe", "0",
            "-i", manifest_path,
            "-c:a", codec.codec,
        ]
        if codec.codec not in _LOSSLESS:
            cmd += ["-b:a", self.settings.concat_bitrate]
        cmd += [
            "-ar", str(self.sample_rate),
            "-ac", str(self.channels),
            "-f", codec.container,
            output_path,
        ]
        logger.info(f"[AUDIO CONCAT] Concat command: {' '.join(cmd)}")
        self._run(cmd, "concatenation")
        return output_path

    def concatenate(self, paths: Sequence[str], output_path: str) -> ConcatResult:
        """
        Merge audio files into one track.

        Args:
            paths: Input files, in playback order
            output_path: Destination; its extension selects the codec

        Returns:
            ConcatResult with the measured duration of the merged track

        Raises:
            ValidationError: If no paths are given or any is missing/empty
            EncodingError: If an FFmpeg step fails
            StorageError: If temp files or the output cannot be written
        """
        paths = list(paths)
        self._validate(paths)

        if len(paths) == 1:
            source = paths[0]
            try:
                if os.path.abspath(source) != os.path.abspath(output_path):
                    shutil.copyfile(source, output_path)
            except OSError as e:
                raise StorageError(f"Failed to copy audio file: {e}", path=output_path) from e
            duration = estimate_total(output_path, settings=self.settings)
            logger.info(f"[AUDIO CONCAT] Single input copied: {output_path} ({duration:.2f}s)")
            return ConcatResult(output_path=output_path, total_duration=duration, source_count=1)

        try:
            work_dir = tempfile.mkdtemp(prefix="slidecast_audio_", dir=self.temp_root)
        except OSError as e:
            raise StorageError(f"Failed to create temp directory: {e}", path=self.temp_root) from e

        try:
            parts: list[str] = []
            # sequential on purpose: one ffmpeg process at a time
            for index, source in enumerate(paths):
                part = os.path.join(work_dir, f"part_{index}.wav")
                logger.info(f"[AUDIO CONCAT] Converting {index + 1}/{len(paths)}: {source}")
                parts.append(self._convert_to_wav(source, part))

            manifest = self._write_manifest(parts, os.path.join(work_dir, "files.txt"))
            self._concat_parts(manifest, output_path)
        finally:
            shutil.rmtree(work_dir, ignore_errors=True)

        duration = estimate_total(output_path, settings=self.settings)
        logger.info(
            f"[AUDIO CONCAT] Merged {len(paths)} files into {output_path} ({duration:.2f}s)"
        )
        return ConcatResult(output_path=output_path, total_duration=duration, source_count=len(paths))

    async def concatenate_async(self, paths: Sequence[str], output_path: str) -> ConcatResult:
        """``concatenate`` without blocking the event loop."""
        return await asyncio.to_thread(self.concatenate, paths, output_path)
