from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

class GeneralConfig(BaseModel):
    base_path: Optional[Path] = None
    output_path: Path
    extensions: List[str] = Field(default_factory=lambda: [".mov", ".mp4", ".avi", ".mkv", ".m4v"])
    concurrency: int = Field(default=1, gt=0)
    audio_codec: str = "aac"
    error_report: Path = Path("errors.json")
    process_timeout: Optional[float] = Field(default=None, gt=0)
    debug: bool = False
    log_path: Optional[str] = None

    @field_validator("extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        return [(ext if ext.startswith(".") else f".{ext}").lower() for ext in v]

class ToolsConfig(BaseModel):
    ffmpeg: str = "ffmpeg"
    ffprobe: str = "ffprobe"

class StagesConfig(BaseModel):
    """Per-stage toggles for the per-file pipeline."""
    encode: bool = True
    webm: bool = True
    mp4: bool = True
    thumbnail: bool = True
    file_info: bool = False  # metadata export pass (sibling .json)

class EncodingConfig(BaseModel):
    scale_width: int = Field(default=960, gt=0)
    audio_bitrate: str = "192k"
    webm_video_bitrate: str = "1M"

class ThumbnailConfig(BaseModel):
    frame_count: int = Field(default=50, gt=0)
    width: int = Field(default=320, gt=0)
    height: int = Field(default=180, gt=0)
    delay_ms: int = Field(default=500, gt=0)
    colors: int = Field(default=64, ge=2, le=256)

class IdempotencyConfig(BaseModel):
    tolerance_hours: int = Field(default=0, ge=0)
    tolerance_minutes: int = Field(default=0, ge=0)
    tolerance_seconds: int = Field(default=1, ge=0)

class PublishConfig(BaseModel):
    s3_upload: bool = False
    fake_upload: bool = False
    bucket: str = ""
    s3_key: Optional[str] = None
    s3_secret: Optional[str] = None
    s3_region: Optional[str] = None
    s3_endpoint_url: Optional[str] = None
    mirror_root: Optional[Path] = None  # defaults to general.output_path

    @model_validator(mode="after")
    def validate_backend(self):
        if self.s3_upload and self.fake_upload:
            raise ValueError("s3_upload and fake_upload are mutually exclusive")
        if self.s3_upload and not self.bucket:
            raise ValueError("s3_upload requires a bucket")
        return self

    @property
    def enabled(self) -> bool:
        return self.s3_upload or self.fake_upload

class AppConfig(BaseModel):
    general: GeneralConfig
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    stages: StagesConfig = Field(default_factory=StagesConfig)
    encoding: EncodingConfig = Field(default_factory=EncodingConfig)
    thumbnail: ThumbnailConfig = Field(default_factory=ThumbnailConfig)
    idempotency: IdempotencyConfig = Field(default_factory=IdempotencyConfig)
    publish: PublishConfig = Field(default_factory=PublishConfig)

    @model_validator(mode="after")
    def default_mirror_root(self):
        if self.publish.mirror_root is None:
            self.publish.mirror_root = self.general.output_path
        return self
