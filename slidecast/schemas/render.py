from pydantic import BaseModel, ConfigDict, Field


class AssetSummary(BaseModel):
    """Uploaded input as recorded in the ledger."""

    model_config = ConfigDict(populate_by_name=True)

    filename: str
    original_name: str = Field(alias="originalName")
    size: int


class VoiceoverSummary(AssetSummary):
    duration: float
    parts: int = 1  # number of uploaded audio files merged into the track


class OutputSummary(BaseModel):
    filename: str
    path: str


class LedgerSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    duration_per_image: str = Field(alias="durationPerImage")  # e.g. "10.00s"
    total_images: int = Field(alias="totalImages")
    resolution: str  # e.g. "1920x1080"
    fps: int


class LedgerEntry(BaseModel):
    """Persisted projection of a succeeded render job.

    Serialized with camelCase keys so existing ``mappings.json`` files stay
    readable.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    timestamp: str  # ISO 8601, UTC
    images: list[AssetSummary]
    voiceover: VoiceoverSummary
    effects: dict | None = None
    output: OutputSummary
    processing_time: str = Field(alias="processingTime")  # e.g. "5321ms"
    settings: LedgerSettings

    def to_record(self) -> dict:
        """JSON-ready dict with wire (camelCase) keys."""
        return self.model_dump(by_alias=True, mode="json")


class GenerateVideoResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_file: str = Field(alias="videoFile")
    download_url: str = Field(alias="downloadUrl")
    preview_url: str = Field(alias="previewUrl")
    processing_time: str = Field(alias="processingTime")
    effects: dict | None = None
    mapping: dict


class MappingsResponse(BaseModel):
    mappings: list[dict]
