import subprocess
import json
import logging
from pathlib import Path
from typing import Any, List, Optional
from vbt.domain.models import Duration, ProbeError

DURATION_MARKER = "Duration:"


def parse_duration(diagnostics: str) -> Duration:
    """Extracts (hours, minutes, seconds) from ffprobe's banner output.

    Looks for the first line like ``Duration: 01:02:03.45, start: ...`` and
    truncates to whole seconds. Returns None when no such line exists or the
    value is not numeric (``Duration: N/A``).
    """
    for line in diagnostics.splitlines():
        if DURATION_MARKER not in line:
            continue
        value = line.split(DURATION_MARKER, 1)[1].split(",", 1)[0].strip()
        parts = value.split(".", 1)[0].split(":")
        if len(parts) != 3:
            return None
        try:
            hours, minutes, seconds = (int(p) for p in parts)
        except ValueError:
            return None
        return hours, minutes, seconds
    return None


class FFprobeAdapter:
    """Wrapper around ffprobe for durations and stream/format metadata."""

    def __init__(self, ffprobe_bin: str = "ffprobe", timeout: Optional[float] = None):
        self.ffprobe_bin = ffprobe_bin
        self.timeout = timeout
        self.logger = logging.getLogger(__name__)

    @staticmethod
    def _to_float(value: Any) -> float:
        try:
            return float(value)
        except (TypeError, ValueError):
            return 0.0

    def _run(self, args: List[str], file_path: Path) -> subprocess.CompletedProcess:
        cmd = [self.ffprobe_bin, *args, str(file_path)]
        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, encoding="utf-8", errors="replace", timeout=self.timeout
            )
        except subprocess.TimeoutExpired as e:
            raise ProbeError(f"ffprobe timed out after {e.timeout}s for {file_path}") from e
        except OSError as e:
            raise ProbeError(f"ffprobe could not be started ({self.ffprobe_bin}): {e}") from e
        if result.returncode != 0:
            self.logger.debug(f"PROBE_FAIL: {file_path} code={result.returncode}")
            raise ProbeError(f"ffprobe exited with code {result.returncode} for {file_path}: {result.stderr.strip()}")
        return result

    def get_duration(self, file_path: Path) -> Duration:
        """Probes the duration annotation; None if ffprobe printed none."""
        result = self._run([], file_path)
        duration = parse_duration(result.stderr)
        if duration is None:
            self.logger.debug(f"PROBE_NO_DURATION: {file_path}")
        return duration

    def get_file_info(self, file_path: Path) -> str:
        """Returns ffprobe's JSON stream/format description verbatim."""
        result = self._run(
            ["-v", "quiet", "-print_format", "json", "-show_format", "-show_streams"],
            file_path,
        )
        return result.stdout

    def get_duration_seconds(self, file_path: Path) -> float:
        """Duration in seconds from the structured output (format, then first stream)."""
        data = json.loads(self.get_file_info(file_path))
        duration = self._to_float(data.get("format", {}).get("duration"))
        if duration <= 0:
            for stream in data.get("streams", []):
                duration = self._to_float(stream.get("duration"))
                if duration > 0:
                    break
        if duration <= 0:
            raise ProbeError(f"No usable duration reported for {file_path}")
        return duration
