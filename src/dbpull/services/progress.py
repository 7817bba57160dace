"""Weighted progress reporting across the pull stages.

Each stage owns a fixed share of the overall 0-100 range. Stages report an
intra-stage percentage and the reporter maps it into the overall range,
keeping the emitted sequence non-decreasing for the whole job.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

from dbpull.core.output import console


class Stage(Enum):
    """Pipeline stages that report progress, in execution order."""
    BACKUP = "backup"
    DUMP = "dump"
    IMPORT = "import"


STAGE_ORDER = (Stage.BACKUP, Stage.DUMP, Stage.IMPORT)


@dataclass(frozen=True)
class StageWeights:
    """Share of overall progress per stage. Must sum to 100."""

    backup: int = 33
    dump: int = 33
    import_: int = 34

    def __post_init__(self) -> None:
        if min(self.backup, self.dump, self.import_) < 0:
            raise ValueError("Stage weights cannot be negative")
        if self.backup + self.dump + self.import_ != 100:
            raise ValueError(
                f"Stage weights must sum to 100, got "
                f"{self.backup + self.dump + self.import_}"
            )

    def weight(self, stage: Stage) -> int:
        return {
            Stage.BACKUP: self.backup,
            Stage.DUMP: self.dump,
            Stage.IMPORT: self.import_,
        }[stage]

    def preceding(self, stage: Stage) -> int:
        """Sum of the weights of every stage before this one."""
        total = 0
        for s in STAGE_ORDER:
            if s is stage:
                return total
            total += self.weight(s)
        return total

    def ceiling(self, stage: Stage) -> int:
        """Overall percent when this stage is complete."""
        return self.preceding(stage) + self.weight(stage)


DEFAULT_WEIGHTS = StageWeights()


def overall_percent(
    stage: Stage,
    intra_percent: float,
    weights: StageWeights = DEFAULT_WEIGHTS,
) -> int:
    """Map a stage's own 0-100 percentage into the overall 0-100 range."""
    intra = max(0.0, min(100.0, float(intra_percent)))
    value = weights.preceding(stage) + round(intra * weights.weight(stage) / 100)
    return min(100, value)


def intra_percent(done: int, total: int) -> int:
    """Percent of total reached by done; 0 when the total is unknown."""
    if total <= 0:
        return 0
    return min(100, round(100 * done / total))


def format_bytes(size_bytes: float) -> str:
    """Format bytes as human-readable string.

    Args:
        size_bytes: Size in bytes

    Returns:
        Formatted string (e.g., "1.5 GB")
    """
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if abs(size_bytes) < 1024:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} PB"


@dataclass(frozen=True)
class ProgressEvent:
    """One progress update as seen by the caller."""

    message: str
    percent: int


class ProgressSink(Protocol):
    """Receives progress events. Must not block for long."""

    def on_progress(self, message: str, percent: int) -> None:
        ...


class NullSink:
    """Drops every event."""

    def on_progress(self, message: str, percent: int) -> None:
        pass


class CallbackSink:
    """Adapts a plain ``callback(message, percent)`` function."""

    def __init__(self, callback: Callable[[str, int], None]) -> None:
        self._callback = callback

    def on_progress(self, message: str, percent: int) -> None:
        self._callback(message, percent)


class RecordingSink:
    """Keeps every event; the last one doubles as a job status."""

    def __init__(self) -> None:
        self.events: list[ProgressEvent] = []

    def on_progress(self, message: str, percent: int) -> None:
        self.events.append(ProgressEvent(message, percent))

    @property
    def last(self) -> Optional[ProgressEvent]:
        return self.events[-1] if self.events else None

    @property
    def percents(self) -> list[int]:
        return [e.percent for e in self.events]


class ProgressReporter:
    """The single writer to a job's progress sink.

    Guarantees:
    - Percent never decreases across the job
    - Sink exceptions never propagate into the pipeline
    """

    def __init__(
        self,
        sink: Optional[ProgressSink] = None,
        weights: StageWeights = DEFAULT_WEIGHTS,
    ) -> None:
        self.sink = sink or NullSink()
        self.weights = weights
        self.last_percent = 0

    def emit(self, percent: int, message: str) -> int:
        """Send one event, raised to the last emitted percent if lower."""
        percent = max(self.last_percent, min(100, int(percent)))
        self.last_percent = percent
        try:
            self.sink.on_progress(message, percent)
        except Exception as e:
            console.debug(f"Progress sink failed: {e}")
        return percent

    def report(self, stage: Stage, intra: float, message: str) -> int:
        """Report intra-stage progress for stage."""
        return self.emit(overall_percent(stage, intra, self.weights), message)

    def stage_floor(self, stage: Stage, message: str) -> int:
        """Announce the start of stage at its floor."""
        return self.emit(self.weights.preceding(stage), message)

    def stage_done(self, stage: Stage, message: str) -> int:
        """Announce the end of stage at its ceiling."""
        return self.emit(self.weights.ceiling(stage), message)

    def complete(self, message: str = "Complete") -> int:
        return self.emit(100, message)
