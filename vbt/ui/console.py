import threading
from typing import Optional
from rich.console import Console
from rich.table import Table
from vbt.infrastructure.event_bus import EventBus
from vbt.domain.models import TaskState
from vbt.domain.events import (
    DiscoveryStarted, DiscoveryFinished, TaskFinished, StageFailed, ProcessingFinished
)

STATE_STYLES = {
    TaskState.CONVERTED: "green",
    TaskState.SKIPPED: "dim",
    TaskState.ERRORED: "red",
    TaskState.DISCOVERED: "yellow",
}


class ConsoleReporter:
    """Subscribes to EventBus and prints progress lines with rich."""

    def __init__(self, bus: EventBus, console: Optional[Console] = None, verbose: bool = False):
        self.bus = bus
        self.console = console or Console()
        self.verbose = verbose
        self._lock = threading.Lock()
        self.total = 0
        self.finished = 0
        self._setup_subscriptions()

    def _setup_subscriptions(self):
        self.bus.subscribe(DiscoveryStarted, self.on_discovery_started)
        self.bus.subscribe(DiscoveryFinished, self.on_discovery_finished)
        self.bus.subscribe(TaskFinished, self.on_task_finished)
        self.bus.subscribe(StageFailed, self.on_stage_failed)
        self.bus.subscribe(ProcessingFinished, self.on_processing_finished)

    def on_discovery_started(self, event: DiscoveryStarted):
        with self._lock:
            self.console.print(f"Scanning [bold]{event.directory}[/bold]")

    def on_discovery_finished(self, event: DiscoveryFinished):
        with self._lock:
            self.total = event.files_found
            self.console.print(f"Found {event.files_found} file(s)")

    def on_task_finished(self, event: TaskFinished):
        with self._lock:
            self.finished += 1
            style = STATE_STYLES.get(event.task.state, "white")
            self.console.print(
                f"[{self.finished}/{self.total}] [{style}]{event.task.state.value:<9}[/{style}] "
                f"{event.task.input_path.name} ({event.elapsed_seconds:.1f}s)",
                highlight=False,
            )

    def on_stage_failed(self, event: StageFailed):
        if not self.verbose:
            return
        with self._lock:
            self.console.print(
                f"  [red]{event.record.stage}[/red] {event.record.infile.name}: {event.record.error}",
                highlight=False,
            )

    def on_processing_finished(self, event: ProcessingFinished):
        summary = event.summary
        table = Table(title="Run summary", show_header=False)
        table.add_row("Files found", str(summary.files_found))
        table.add_row("Converted", f"[green]{summary.converted}[/green]")
        table.add_row("Skipped", str(summary.skipped))
        table.add_row("Errored", f"[red]{summary.errored}[/red]" if summary.errored else "0")
        table.add_row("Error records", str(len(summary.errors)))
        table.add_row("Elapsed", f"{summary.elapsed_seconds:.1f}s")
        with self._lock:
            self.console.print(table)
