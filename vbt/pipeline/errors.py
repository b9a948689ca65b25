import json
import logging
import threading
from pathlib import Path
from typing import List, Optional
from vbt.domain.events import StageFailed
from vbt.domain.models import ErrorRecord, ReportWriteError
from vbt.infrastructure.event_bus import EventBus


class ErrorCollector:
    """Append-only, thread-safe list of per-file failures for one run."""

    def __init__(self, event_bus: Optional[EventBus] = None):
        self.event_bus = event_bus
        self.logger = logging.getLogger(__name__)
        self._records: List[ErrorRecord] = []
        self._lock = threading.Lock()

    def record(self, exc: BaseException, stage: str, infile: Path, outfile: Optional[Path] = None) -> ErrorRecord:
        entry = ErrorRecord.from_exception(exc, stage=stage, infile=infile, outfile=outfile)
        with self._lock:
            self._records.append(entry)
        self.logger.error(f"STAGE_FAILED: {stage} {infile} -> {outfile}: {entry.error}")
        if self.event_bus:
            self.event_bus.publish(StageFailed(record=entry))
        return entry

    def snapshot(self) -> List[ErrorRecord]:
        with self._lock:
            return list(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def write_report(self, report_path: Path) -> Path:
        """Persists all records as a JSON array. Raises ReportWriteError."""
        payload = [r.model_dump(mode="json") for r in self.snapshot()]
        try:
            report_path.parent.mkdir(parents=True, exist_ok=True)
            report_path.write_text(json.dumps(payload, indent=2))
        except OSError as e:
            raise ReportWriteError(f"Cannot write error report {report_path}: {e}") from e
        self.logger.info(f"Error report written: {report_path} ({len(payload)} errors)")
        return report_path
