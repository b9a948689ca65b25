import logging
from pathlib import Path
from typing import Optional
from vbt.config.models import IdempotencyConfig
from vbt.domain.models import Duration, ProbeError
from vbt.infrastructure.ffprobe import FFprobeAdapter


def durations_equal(first: Duration, second: Duration, tolerance_seconds: int = 0,
                    tolerance_minutes: int = 0, tolerance_hours: int = 0) -> bool:
    """Component-wise comparison; anything but two numeric triples is unequal."""
    if first is None or second is None:
        return False
    if len(first) != 3 or len(second) != 3:
        return False
    if not all(isinstance(v, int) for v in (*first, *second)):
        return False
    return (
        abs(first[0] - second[0]) <= tolerance_hours
        and abs(first[1] - second[1]) <= tolerance_minutes
        and abs(first[2] - second[2]) <= tolerance_seconds
    )


class IdempotencyChecker:
    """Decides whether an existing output already matches its input."""

    def __init__(self, ffprobe_adapter: FFprobeAdapter, config: Optional[IdempotencyConfig] = None):
        self.ffprobe_adapter = ffprobe_adapter
        self.config = config or IdempotencyConfig()
        self.logger = logging.getLogger(__name__)

    def should_skip(self, input_path: Path, output_path: Path) -> bool:
        if not output_path.exists() or output_path.stat().st_size == 0:
            return False

        try:
            duration_in = self.ffprobe_adapter.get_duration(input_path)
            duration_out = self.ffprobe_adapter.get_duration(output_path)
        except ProbeError as e:
            self.logger.warning(f"SKIP_CHECK: cannot compare durations for {output_path.name}, re-encoding: {e}")
            return False

        if duration_in is not None and duration_out is not None and duration_in != duration_out:
            self.logger.debug(f"Unequal durations IN: {duration_in} OUT: {duration_out}")

        skip = durations_equal(
            duration_in,
            duration_out,
            tolerance_seconds=self.config.tolerance_seconds,
            tolerance_minutes=self.config.tolerance_minutes,
            tolerance_hours=self.config.tolerance_hours,
        )
        if skip:
            self.logger.info(f"SKIP: {output_path.name} already converted (duration {duration_out})")
        return skip
