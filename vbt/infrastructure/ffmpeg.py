import shlex
import subprocess
import logging
import time
from pathlib import Path
from typing import List, Optional, Sequence
from vbt.config.models import EncodingConfig
from vbt.domain.models import OutputFormat, TranscodeError, ThumbnailError

STDERR_TAIL_CHARS = 2000


def format_command(cmd: Sequence[str]) -> str:
    """Renders an argument list as a copy-pasteable shell line (logs only)."""
    return shlex.join(str(c) for c in cmd)


def tmp_output_path(output_path: Path) -> Path:
    """In-progress name for an output; renamed into place on success."""
    return output_path.with_name(f"{output_path.name}.tmp")


class FFmpegAdapter:
    """Wrapper around ffmpeg for the MP4/WebM profiles and frame sampling."""

    def __init__(
        self,
        ffmpeg_bin: str = "ffmpeg",
        encoding: Optional[EncodingConfig] = None,
        audio_codec: str = "aac",
        timeout: Optional[float] = None,
        debug: bool = False,
    ):
        self.ffmpeg_bin = ffmpeg_bin
        self.encoding = encoding or EncodingConfig()
        self.audio_codec = audio_codec
        self.timeout = timeout
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    def _profile_args(self, fmt: OutputFormat) -> List[str]:
        scale = f"scale={self.encoding.scale_width}:-1"
        if fmt == OutputFormat.MP4:
            return [
                "-acodec", self.audio_codec,
                "-b:a", self.encoding.audio_bitrate,
                "-vcodec", "libx264",
                "-vf", scale,
                "-pix_fmt", "yuv420p",
                "-profile:v", "baseline",
                "-level", "3",
                "-strict", "-2",
            ]
        return [
            "-vcodec", "libvpx-vp9",
            "-vf", scale,
            "-b:v", self.encoding.webm_video_bitrate,
            "-acodec", "libvorbis",
        ]

    def build_command(self, input_path: Path, output_path: Path, fmt: OutputFormat) -> List[str]:
        """Constructs the ffmpeg command line arguments."""
        cmd = [
            self.ffmpeg_bin,
            "-y",  # Overwrite output files
            "-i", str(input_path),
        ]
        cmd.extend(self._profile_args(fmt))
        # Write to .tmp during encoding; the extension no longer names the container
        cmd.extend(["-f", fmt.value, str(tmp_output_path(output_path))])
        return cmd

    def _execute(self, cmd: List[str], error_cls, label: str) -> subprocess.CompletedProcess:
        if self.debug:
            self.logger.debug(f"FFMPEG_CMD: {format_command(cmd)}")
        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, encoding="utf-8", errors="replace", timeout=self.timeout
            )
        except subprocess.TimeoutExpired as e:
            raise error_cls(f"ffmpeg timed out after {e.timeout}s ({label})") from e
        except OSError as e:
            raise error_cls(f"ffmpeg could not be started ({self.ffmpeg_bin}): {e}") from e
        if result.returncode != 0:
            stderr_tail = (result.stderr or "").strip()[-STDERR_TAIL_CHARS:]
            raise error_cls(f"ffmpeg exited with code {result.returncode} ({label}): {stderr_tail}")
        return result

    def transcode(self, input_path: Path, output_path: Path, fmt: OutputFormat):
        """Encodes input_path into output_path; raises TranscodeError on failure."""
        start_time = time.monotonic()
        tmp_path = tmp_output_path(output_path)
        cmd = self.build_command(input_path, output_path, fmt)
        self.logger.info(f"FFMPEG_START: {input_path.name} -> {output_path.name}")

        try:
            result = self._execute(cmd, TranscodeError, f"{fmt.value} {input_path.name}")
        except TranscodeError:
            if tmp_path.exists():
                tmp_path.unlink()
            raise

        if self.debug and result.stdout:
            self.logger.debug(result.stdout)
        if not tmp_path.exists():
            raise TranscodeError(f"ffmpeg reported success but wrote no output: {tmp_path}")
        tmp_path.replace(output_path)

        elapsed = time.monotonic() - start_time
        self.logger.info(f"FFMPEG_END: {output_path.name} status=completed elapsed={elapsed:.2f}s")

    def extract_frames(self, input_path: Path, frames_dir: Path, count: int, duration_seconds: float) -> None:
        """Samples `count` evenly spaced PNG frames from input_path into frames_dir."""
        rate = count / duration_seconds
        cmd = [
            self.ffmpeg_bin,
            "-y",
            "-i", str(input_path),
            "-vf", f"fps={rate:.6f}",
            "-frames:v", str(count),
            str(frames_dir / "frame-%03d.png"),
        ]
        self._execute(cmd, ThumbnailError, f"frames {input_path.name}")
