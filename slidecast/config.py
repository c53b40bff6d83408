import json
from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Slidecast API"
    app_version: str = "0.1.0"
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: str = "INFO"

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "http://localhost:3000,http://localhost:5173"

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from comma-separated string or JSON array."""
        v = self.cors_origins_raw
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        return [origin.strip() for origin in v.split(",") if origin.strip()]

    # Storage layout
    upload_dir: str = "./uploads"
    output_dir: str = "./output/videos"
    ledger_path: str = "./output/mappings.json"
    temp_dir: str | None = None  # None = system temp directory

    # Upload limits
    max_upload_size_mb: int = 50
    max_image_count: int = 10
    max_audio_count: int = 1
    supported_image_formats: list[str] = [".jpg", ".jpeg", ".png", ".bmp", ".gif", ".tiff", ".webp"]
    supported_audio_formats: list[str] = [".mp3", ".wav", ".aac", ".m4a", ".ogg", ".flac"]

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    probe_timeout_s: float = 30.0

    # Render settings
    render_output_width: int = 1920
    render_output_height: int = 1080
    render_fps: int = 30
    render_video_codec: str = "libx264"
    render_audio_codec: str = "aac"
    render_video_bitrate: str = "4000k"
    render_audio_bitrate: str = "128k"
    render_crf: int = 23
    render_preset: str = "medium"

    # Motion
    ken_burns_zoom: float = 1.2  # ceiling for kenburns zoom
    ken_burns_zoom_step: float = 0.0015  # zoom added per frame
    zoom_ramp_factor: float = 1.4  # end (zoom_in) / start (zoom_out) zoom
    pan_zoom: float = 1.3  # fixed zoom while panning, leaves room to travel
    shake_zoom: float = 1.1
    shake_amplitude_x: float = 5.0
    shake_amplitude_y: float = 3.0

    # Effects
    default_transition_duration: float = 0.8

    # Duration estimation
    duration_fallback_s: float = 60.0
    duration_estimate_bitrate: int = 128000  # bits per second
    duration_estimate_min_s: float = 5.0
    duration_estimate_max_s: float = 60.0

    # Audio concatenation (canonical intermediate format)
    concat_sample_rate: int = 44100
    concat_channels: int = 2
    concat_bitrate: str = "128k"
    concat_timeout_s: float = 600.0  # per ffmpeg step

    # Encoding lifecycle
    max_concurrent_renders: int = 2
    render_timeout_s: float = 1800.0
    max_tracked_jobs: int = 100  # finished jobs kept in memory


@lru_cache
def get_settings() -> Settings:
    return Settings()
