"""Per-file pipeline stages.

Each stage returns a StageResult and never raises: failures are recorded in
the run's ErrorCollector at the stage boundary so sibling files (and later
stages of the same file) keep going.
"""

import secrets
import shutil
import logging
import threading
from pathlib import Path
from typing import List, Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from vbt.config.models import ThumbnailConfig
from vbt.domain.models import FileTask, OutputFormat, StageResult, StageStatus, ThumbnailError
from vbt.infrastructure.ffmpeg import FFmpegAdapter
from vbt.infrastructure.ffprobe import FFprobeAdapter
from vbt.infrastructure.housekeeping import SCRATCH_PREFIX
from vbt.infrastructure.publisher import make_object_key
from vbt.pipeline.errors import ErrorCollector
from vbt.pipeline.idempotency import IdempotencyChecker


class TranscodeStage:
    """Produces one target-format output unless an equivalent one already exists."""

    def __init__(self, ffmpeg_adapter: FFmpegAdapter, checker: IdempotencyChecker, errors: ErrorCollector):
        self.ffmpeg_adapter = ffmpeg_adapter
        self.checker = checker
        self.errors = errors
        self.logger = logging.getLogger(__name__)

    def run(self, task: FileTask, fmt: OutputFormat) -> StageResult:
        output_path = task.outputs[fmt]
        try:
            if self.checker.should_skip(task.input_path, output_path):
                return StageResult(status=StageStatus.SKIPPED, output_path=output_path)
            self.ffmpeg_adapter.transcode(task.input_path, output_path, fmt)
        except Exception as e:
            self.errors.record(e, f"transcode:{fmt.value}", task.input_path, output_path)
            return StageResult(status=StageStatus.FAILED, output_path=output_path, error=str(e))
        self.logger.info(f"Processed {task.input_path} -> {output_path.name}")
        return StageResult(status=StageStatus.OK, output_path=output_path)


class ThumbnailStage:
    """Builds an animated GIF preview from evenly sampled frames of a video.

    Frames are extracted into a scratch directory next to the video, which is
    removed on every exit path. Resizing is serialised across all workers by a
    lock owned by the stage instance, bounding Pillow's peak memory no matter
    how many files run in parallel.
    """

    def __init__(
        self,
        ffmpeg_adapter: FFmpegAdapter,
        ffprobe_adapter: FFprobeAdapter,
        errors: ErrorCollector,
        config: Optional[ThumbnailConfig] = None,
    ):
        self.ffmpeg_adapter = ffmpeg_adapter
        self.ffprobe_adapter = ffprobe_adapter
        self.errors = errors
        self.config = config or ThumbnailConfig()
        self.logger = logging.getLogger(__name__)
        self._resize_lock = threading.Lock()

    def run(self, task: FileTask, source: Optional[Path] = None) -> StageResult:
        source = source or task.outputs[OutputFormat.MP4]
        gif_path = source.with_suffix(".gif")
        frames_dir = source.parent / f"{SCRATCH_PREFIX}{secrets.token_hex(8)}"
        try:
            frames_dir.mkdir()
            try:
                self._build_preview(source, frames_dir, gif_path)
            finally:
                self.logger.debug(f"Remove frames folder {frames_dir}")
                shutil.rmtree(frames_dir, ignore_errors=True)
        except Exception as e:
            self.errors.record(e, "thumbnail", task.input_path, gif_path)
            return StageResult(status=StageStatus.FAILED, output_path=gif_path, error=str(e))
        return StageResult(status=StageStatus.OK, output_path=gif_path)

    def _build_preview(self, source: Path, frames_dir: Path, gif_path: Path):
        duration = self.ffprobe_adapter.get_duration_seconds(source)
        self.logger.debug(f"THUMB_EXTRACT: {source.name} frames={self.config.frame_count}")
        self.ffmpeg_adapter.extract_frames(source, frames_dir, self.config.frame_count, duration)

        frames = self.filter_frames(frames_dir)
        if not frames:
            raise ThumbnailError(f"No usable frames extracted from {source}")

        with self._resize_lock:
            resized = [self._resize(frame) for frame in frames]

        self._compose(resized, gif_path)
        self.logger.info(f"THUMB_END: {gif_path.name} frames={len(resized)}")

    def filter_frames(self, frames_dir: Path) -> List[Path]:
        """Drops every entry that is not a PNG image (partial or corrupt extraction)."""
        kept: List[Path] = []
        for entry in sorted(frames_dir.iterdir()):
            detected = None
            if entry.is_file():
                try:
                    with Image.open(entry) as im:
                        detected = im.format
                except (UnidentifiedImageError, OSError):
                    detected = None
            if detected != "PNG":
                self.logger.debug(f"Remove non png file {entry.name} with type: {detected}")
                if entry.is_dir():
                    shutil.rmtree(entry, ignore_errors=True)
                else:
                    entry.unlink()
                continue
            kept.append(entry)
        return kept

    def _resize(self, frame: Path) -> Path:
        target = frame.with_name(f"sc-{frame.name}")
        with Image.open(frame) as im:
            thumb = ImageOps.fit(
                im.convert("RGB"),
                (self.config.width, self.config.height),
                method=Image.Resampling.BICUBIC,
            )
            thumb.save(target, format="PNG")
        frame.unlink()
        return target

    def _compose(self, frames: List[Path], gif_path: Path):
        images = []
        try:
            for frame in frames:
                with Image.open(frame) as im:
                    images.append(im.convert("RGB").quantize(colors=self.config.colors))
            first, rest = images[0], images[1:]
            first.save(
                gif_path,
                format="GIF",
                save_all=True,
                append_images=rest,
                duration=self.config.delay_ms,
                loop=0,
            )
        finally:
            for image in images:
                image.close()


class PublishStage:
    """Pushes an output to the configured backend under a deterministic key."""

    def __init__(self, publisher, bucket: str, output_root: Path, errors: ErrorCollector):
        self.publisher = publisher
        self.bucket = bucket
        self.output_root = Path(output_root).absolute()
        self.errors = errors
        self.logger = logging.getLogger(__name__)

    def run(self, task: FileTask, output_path: Path, converted: bool) -> StageResult:
        if not converted:
            self.logger.debug(f"PUBLISH_SKIP: {output_path.name} (no converted output)")
            return StageResult(status=StageStatus.SKIPPED, output_path=output_path)
        if not task.input_path.exists():
            self.logger.info(f"Not publishing output of non-existent file: {task.input_path}")
            return StageResult(status=StageStatus.SKIPPED, output_path=output_path)
        try:
            key = make_object_key(output_path, self.output_root)
            self.publisher.publish(output_path, self.bucket, key)
        except Exception as e:
            self.errors.record(e, "publish", task.input_path, output_path)
            return StageResult(status=StageStatus.FAILED, output_path=output_path, error=str(e))
        return StageResult(status=StageStatus.OK, output_path=output_path)
