"""Domain events for the batch transcoding pipeline.

Events represent state changes and notifications that flow through the EventBus,
decoupling the pipeline orchestrator from the console reporter.

See `infrastructure/event_bus.py` for the pub/sub mechanism.
"""

from pathlib import Path
from pydantic import BaseModel
from .models import FileTask, ErrorRecord, RunSummary


class Event(BaseModel):
    """Base class for all domain events.

    Events are validated Pydantic models. They are not frozen by default.
    """

    pass


class TaskEvent(Event):
    """Base class for events related to a specific file task."""

    task: FileTask


class TaskStarted(TaskEvent):
    """Emitted when a worker picks up a file."""

    pass


class TaskFinished(TaskEvent):
    """Emitted when a file's pipeline has run to completion (any final state)."""

    elapsed_seconds: float = 0.0


class StageFailed(Event):
    """Emitted for every recorded stage failure."""

    record: ErrorRecord


class PublishProgress(Event):
    """Emitted as an upload reports transferred bytes."""

    path: Path
    key: str
    bytes_sent: int
    bytes_total: int


class DiscoveryStarted(Event):
    """Emitted when file discovery begins."""

    directory: Path


class DiscoveryFinished(Event):
    """Emitted after file discovery is complete."""

    files_found: int


class ProcessingFinished(Event):
    """Emitted when the run is over and the error report has been written."""

    summary: RunSummary
