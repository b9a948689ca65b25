"""Pipeline orchestrator for batch transcoding runs.

Coordinates discovery, the optional metadata export pass, the bounded
concurrency main pass and the final error report. Uses the EventBus to keep
the console reporter decoupled from the pipeline.

Key responsibilities:
- Discover media files under the base path and map them to output paths
- Run each file's stages (WebM → publish, MP4 → thumbnail → publish) on a
  fixed-size worker pool, one file per worker at a time
- Keep per-file failures inside the file: stages record them, the run goes on
- Persist the run's errors to a JSON report once everything has finished
"""

import time
import logging
import concurrent.futures
from collections import deque
from pathlib import Path
from typing import Callable, List, Optional

from vbt.config.models import AppConfig
from vbt.domain.models import (
    DiscoveryError,
    FileTask,
    OutputFormat,
    ProbeError,
    RunSummary,
    StageResult,
    StageStatus,
    TaskState,
)
from vbt.domain.events import (
    DiscoveryStarted,
    DiscoveryFinished,
    TaskStarted,
    TaskFinished,
    ProcessingFinished,
)
from vbt.infrastructure.event_bus import EventBus
from vbt.infrastructure.file_scanner import FileScanner
from vbt.infrastructure.ffprobe import FFprobeAdapter
from vbt.infrastructure.ffmpeg import FFmpegAdapter
from vbt.infrastructure.housekeeping import HousekeepingService
from vbt.pipeline.errors import ErrorCollector
from vbt.pipeline.idempotency import IdempotencyChecker
from vbt.pipeline.stages import PublishStage, ThumbnailStage, TranscodeStage

FORMAT_ORDER = (OutputFormat.WEBM, OutputFormat.MP4)


class Orchestrator:
    """Batch transcoding pipeline orchestrator.

    Implements the "submit-on-demand" pattern: never more than `concurrency`
    futures are in flight, and a new file is submitted as soon as a worker
    finishes one. Stages within a file run strictly in order on the worker
    that owns the file; workers share only the ErrorCollector and the
    filesystem (every task writes to its own output paths).

    Args:
        config: AppConfig with paths, toggles, tool and publish settings.
        event_bus: EventBus for lifecycle events.
        file_scanner: FileScanner for discovering input files.
        ffprobe_adapter: FFprobeAdapter for durations and metadata export.
        ffmpeg_adapter: FFmpegAdapter for encodes and frame sampling.
        publisher: Publish backend (S3 or local mirror); None disables publishing.
        housekeeping: HousekeepingService for leftovers of interrupted runs.
    """

    def __init__(
        self,
        config: AppConfig,
        event_bus: EventBus,
        file_scanner: FileScanner,
        ffprobe_adapter: FFprobeAdapter,
        ffmpeg_adapter: FFmpegAdapter,
        publisher=None,
        housekeeping: Optional[HousekeepingService] = None,
    ):
        self.config = config
        self.event_bus = event_bus
        self.file_scanner = file_scanner
        self.ffprobe_adapter = ffprobe_adapter
        self.ffmpeg_adapter = ffmpeg_adapter
        self.publisher = publisher
        self.housekeeping = housekeeping or HousekeepingService()
        self.logger = logging.getLogger(__name__)

        self.output_root = Path(config.general.output_path).absolute()
        self.errors = ErrorCollector(event_bus)
        self._build_stages()

    def _build_stages(self):
        checker = IdempotencyChecker(self.ffprobe_adapter, self.config.idempotency)
        self.transcode_stage = TranscodeStage(self.ffmpeg_adapter, checker, self.errors)
        self.thumbnail_stage = ThumbnailStage(
            self.ffmpeg_adapter, self.ffprobe_adapter, self.errors, self.config.thumbnail
        )
        self.publish_stage = None
        if self.publisher is not None:
            self.publish_stage = PublishStage(
                self.publisher, self.config.publish.bucket, self.output_root, self.errors
            )

    def _enabled_formats(self) -> List[OutputFormat]:
        stages = self.config.stages
        enabled = {OutputFormat.WEBM: stages.webm, OutputFormat.MP4: stages.mp4}
        return [fmt for fmt in FORMAT_ORDER if enabled[fmt]]

    def _perform_discovery(self, base_path: Path) -> List[FileTask]:
        """Scans base_path and builds one FileTask per candidate file."""
        files = self.file_scanner.scan(base_path)
        return [FileTask.from_input(f, base_path, self.output_root) for f in files]

    def _export_file_info(self, task: FileTask):
        """Writes ffprobe's JSON description next to the task's outputs."""
        try:
            info = self.ffprobe_adapter.get_file_info(task.input_path)
            task.output_dir.mkdir(parents=True, exist_ok=True)
            task.metadata_path.write_text(info)
        except (ProbeError, OSError) as e:
            self.logger.warning(f"FILE_INFO_FAIL: {task.input_path}: {e}")
            return
        self.logger.debug(f"FILE_INFO: {task.metadata_path}")

    def _thumbnail_is_current(self, task: FileTask, transcode: Optional[StageResult]) -> bool:
        if transcode is None or transcode.status != StageStatus.SKIPPED:
            return False
        gif = task.thumbnail_path
        return gif.exists() and gif.stat().st_size > 0

    def _run_stages(self, task: FileTask) -> TaskState:
        """Runs every enabled stage of one file in order and derives its final state."""
        results: List[StageResult] = []
        transcoded = False

        for fmt in self._enabled_formats():
            output_path = task.outputs[fmt]
            transcode = None
            if self.config.stages.encode:
                transcode = self.transcode_stage.run(task, fmt)
                results.append(transcode)
                transcoded = transcoded or transcode.ok
                available = transcode.available
            else:
                available = output_path.exists()

            if fmt == OutputFormat.MP4 and self.config.stages.thumbnail and available:
                if self._thumbnail_is_current(task, transcode):
                    self.logger.debug(f"THUMB_SKIP: {task.thumbnail_path.name} (up to date)")
                else:
                    results.append(self.thumbnail_stage.run(task, output_path))

            if self.publish_stage is not None:
                results.append(self.publish_stage.run(task, output_path, converted=available))

        if any(r.status == StageStatus.FAILED for r in results):
            return TaskState.ERRORED
        if transcoded:
            return TaskState.CONVERTED
        return TaskState.SKIPPED

    def _process_file(self, task: FileTask):
        """Processes a single file; never raises."""
        filename = task.input_path.name
        start_time = time.monotonic()
        self.logger.info(f"PROCESS_START: {task.input_path}")
        self.event_bus.publish(TaskStarted(task=task))

        try:
            task.output_dir.mkdir(parents=True, exist_ok=True)
            # Fast pre-filter only; the per-format duration check stays authoritative
            if task.output_base.is_file():
                self.logger.info(f"PROCESS_SKIP: {filename} (marked done: {task.output_base})")
                task.state = TaskState.SKIPPED
            else:
                task.state = self._run_stages(task)
        except Exception as e:
            self.errors.record(e, "pipeline", task.input_path, task.output_base)
            task.state = TaskState.ERRORED
        finally:
            elapsed = time.monotonic() - start_time
            self.logger.info(f"PROCESS_END: {filename} status={task.state.value} elapsed={elapsed:.2f}s")
            self.event_bus.publish(TaskFinished(task=task, elapsed_seconds=elapsed))

    def _run_pool(self, tasks: List[FileTask], worker: Callable[[FileTask], None]):
        """Runs worker over tasks with at most `concurrency` in flight."""
        max_inflight = self.config.general.concurrency
        pending = deque(tasks)
        in_flight = {}  # future -> FileTask

        with concurrent.futures.ThreadPoolExecutor(max_workers=max_inflight) as executor:
            def submit_batch():
                while len(in_flight) < max_inflight and pending:
                    task = pending.popleft()
                    in_flight[executor.submit(worker, task)] = task

            submit_batch()
            while in_flight:
                done, _ = concurrent.futures.wait(
                    set(in_flight.keys()),
                    return_when=concurrent.futures.FIRST_COMPLETED,
                )
                for future in done:
                    task = in_flight.pop(future)
                    try:
                        future.result()
                    except Exception as e:
                        self.logger.error(f"Worker failed for {task.input_path}: {e}")
                submit_batch()

    def run(self, base_path: Optional[Path] = None) -> RunSummary:
        """Runs one full batch and returns its summary.

        Raises DiscoveryError when the input tree cannot be enumerated and
        ReportWriteError when the error report cannot be written; every other
        failure ends up in the report.
        """
        start_time = time.monotonic()
        self.errors = ErrorCollector(self.event_bus)
        self._build_stages()
        base_path = base_path or self.config.general.base_path
        if base_path is None:
            raise DiscoveryError("No input directory given (set general.base_path or pass it on the command line)")
        base_path = Path(base_path).absolute()

        if self.output_root.exists():
            self.housekeeping.cleanup_temp_files(self.output_root)
            self.housekeeping.cleanup_scratch_dirs(self.output_root)

        self.logger.info(f"Discovery started: {base_path}")
        self.event_bus.publish(DiscoveryStarted(directory=base_path))
        tasks = self._perform_discovery(base_path)
        self.logger.info(f"Discovery finished: found={len(tasks)}")
        self.event_bus.publish(DiscoveryFinished(files_found=len(tasks)))

        if self.config.stages.file_info and tasks:
            self.logger.info("Metadata export started")
            self._run_pool(tasks, self._export_file_info)

        if tasks:
            self._run_pool(tasks, self._process_file)

        self.errors.write_report(Path(self.config.general.error_report))

        summary = RunSummary(
            files_found=len(tasks),
            converted=sum(1 for t in tasks if t.state == TaskState.CONVERTED),
            skipped=sum(1 for t in tasks if t.state == TaskState.SKIPPED),
            errored=sum(1 for t in tasks if t.state == TaskState.ERRORED),
            errors=self.errors.snapshot(),
            elapsed_seconds=time.monotonic() - start_time,
        )
        self.logger.info(
            f"All files processed: converted={summary.converted}, skipped={summary.skipped}, "
            f"errored={summary.errored}, errors={len(summary.errors)}"
        )
        self.event_bus.publish(ProcessingFinished(summary=summary))
        return summary
