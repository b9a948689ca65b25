from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, Field

# (hours, minutes, seconds); None when the prober output could not be parsed
Duration = Optional[Tuple[int, int, int]]


class VbtError(Exception):
    """Base class for pipeline errors."""


class DiscoveryError(VbtError):
    """Input tree cannot be enumerated (fatal)."""


class ProbeError(VbtError):
    """ffprobe exited with a non-zero code."""


class TranscodeError(VbtError):
    """ffmpeg exited with a non-zero code or timed out."""


class ThumbnailError(VbtError):
    """A thumbnail sub-step failed."""


class PublishError(VbtError):
    """Upload or mirror copy failed."""


class ReportWriteError(VbtError):
    """Error report could not be persisted (fatal)."""


class OutputFormat(str, Enum):
    WEBM = "webm"
    MP4 = "mp4"


class TaskState(str, Enum):
    DISCOVERED = "DISCOVERED"
    SKIPPED = "SKIPPED"
    CONVERTED = "CONVERTED"
    ERRORED = "ERRORED"


class StageStatus(str, Enum):
    OK = "OK"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


class FileTask(BaseModel):
    input_path: Path
    output_base: Path  # mirrors input_path under the output root, without extension
    outputs: Dict[OutputFormat, Path] = Field(default_factory=dict)
    state: TaskState = TaskState.DISCOVERED

    @classmethod
    def from_input(cls, input_path: Path, base_path: Path, output_root: Path) -> "FileTask":
        input_path = input_path.absolute()
        rel_path = input_path.relative_to(base_path.absolute())
        output_base = output_root.absolute() / rel_path.with_suffix("")
        outputs = {
            fmt: output_base.with_name(f"{output_base.name}.{fmt.value}")
            for fmt in OutputFormat
        }
        return cls(input_path=input_path, output_base=output_base, outputs=outputs)

    @property
    def output_dir(self) -> Path:
        return self.output_base.parent

    @property
    def thumbnail_path(self) -> Path:
        return self.output_base.with_name(f"{self.output_base.name}.gif")

    @property
    def metadata_path(self) -> Path:
        return self.output_base.with_name(f"{self.output_base.name}.json")


class ErrorRecord(BaseModel):
    error: str
    error_type: str
    stage: str
    infile: Path
    outfile: Optional[Path] = None

    @classmethod
    def from_exception(cls, exc: BaseException, stage: str, infile: Path, outfile: Optional[Path] = None) -> "ErrorRecord":
        return cls(
            error=str(exc) or exc.__class__.__name__,
            error_type=exc.__class__.__name__,
            stage=stage,
            infile=infile,
            outfile=outfile,
        )


class StageResult(BaseModel):
    status: StageStatus
    output_path: Optional[Path] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == StageStatus.OK

    @property
    def available(self) -> bool:
        """Output is on disk, either produced now or confirmed by the skip check."""
        return self.status in (StageStatus.OK, StageStatus.SKIPPED)


class RunSummary(BaseModel):
    files_found: int = 0
    converted: int = 0
    skipped: int = 0
    errored: int = 0
    errors: List[ErrorRecord] = Field(default_factory=list)
    elapsed_seconds: float = 0.0
