"""Pull orchestration.

Sequences validation, the optional local backup, the remote dump and the
import, and owns the temporary dump file: it is removed after every run,
successful or not. The local backup is never removed.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from dbpull.core.audit import AuditEventType, AuditLogger, AuditResult, get_audit_logger
from dbpull.core.config import (
    DEFAULT_BACKUP_DIR,
    LocalDatabaseConfig,
    RemoteDatabaseConfig,
    SshConfig,
)
from dbpull.core.exceptions import ConfigurationError, DbPullError, PipelineError
from dbpull.core.executor import CommandExecutor
from dbpull.core.output import console
from dbpull.services.backup import POLL_INTERVAL, BackupStage
from dbpull.services.connections import ConnectionSet, resolve_connections
from dbpull.services.dump import DumpStage, create_dump_artifact
from dbpull.services.importer import ImportMode, ImportStage
from dbpull.services.progress import (
    DEFAULT_WEIGHTS,
    ProgressReporter,
    ProgressSink,
    Stage,
    StageWeights,
)
from dbpull.services.sizing import SizeEstimator


class PipelineState(Enum):
    """Where a pull is in its lifecycle."""
    VALIDATING = "validating"
    BACKING_UP = "backing_up"
    DUMPING = "dumping"
    IMPORTING = "importing"
    CLEANING_UP = "cleaning_up"
    DONE = "done"
    FAILED = "failed"


# Stage names reported for failures in each state
_STATE_STAGES = {
    PipelineState.VALIDATING: "validation",
    PipelineState.BACKING_UP: Stage.BACKUP.value,
    PipelineState.DUMPING: Stage.DUMP.value,
    PipelineState.IMPORTING: Stage.IMPORT.value,
    PipelineState.CLEANING_UP: "cleanup",
}


@dataclass(frozen=True)
class PullJobContext:
    """Everything a pull needs, fixed at job start.

    Either the raw configuration sections or already resolved connections
    must be supplied. Raw sections are validated when the pipeline runs.
    """

    local: Optional[LocalDatabaseConfig] = None
    remote: Optional[RemoteDatabaseConfig] = None
    ssh: Optional[SshConfig] = None
    connections: Optional[ConnectionSet] = None
    backup_dir: Path = DEFAULT_BACKUP_DIR
    skip_backup: bool = False
    timeout: float = 600
    poll_interval: float = POLL_INTERVAL
    weights: StageWeights = DEFAULT_WEIGHTS

    def resolve(self) -> ConnectionSet:
        """Return validated connections.

        Raises:
            ConfigurationError: If settings are missing or invalid
        """
        if self.connections is not None:
            return self.connections
        if self.local is None or self.remote is None or self.ssh is None:
            raise ConfigurationError(
                "No connection settings supplied",
                hint="Pass the ssh, remote and local sections or resolved connections",
            )
        return resolve_connections(self.local, self.remote, self.ssh)


@dataclass
class TransferJob:
    """Mutable state of one pull while it runs."""

    skip_backup: bool
    timeout: float
    state: PipelineState = PipelineState.VALIDATING
    # Sum of the weights of stages finished so far
    consumed_weight: int = 0
    backup_path: Optional[Path] = None
    dump_path: Optional[Path] = None


@dataclass
class PullResult:
    """Outcome of one pull."""

    state: PipelineState
    backup_path: Optional[Path] = None
    failed_stage: Optional[str] = None
    error: Optional[DbPullError] = None
    duration: float = 0.0
    completed_weight: int = 0

    @property
    def success(self) -> bool:
        return self.state is PipelineState.DONE

    def raise_for_failure(self) -> None:
        """Raise the recorded error if the pull failed."""
        if self.error is not None:
            raise self.error


class PullPipeline:
    """Run one pull from validation to cleanup.

    Usage:
        pipeline = PullPipeline(context, executor=CommandExecutor(), sink=sink)
        result = pipeline.execute()
        result.raise_for_failure()
    """

    def __init__(
        self,
        context: PullJobContext,
        *,
        executor: CommandExecutor,
        sink: Optional[ProgressSink] = None,
        audit: Optional[AuditLogger] = None,
        import_mode: Optional[ImportMode] = None,
        artifact_factory: Callable[[], Path] = create_dump_artifact,
    ) -> None:
        self.context = context
        self.executor = executor
        self.reporter = ProgressReporter(sink, context.weights)
        self.audit = audit or get_audit_logger()
        self.import_mode = import_mode
        self.artifact_factory = artifact_factory
        self.job = TransferJob(skip_backup=context.skip_backup, timeout=context.timeout)
        self._target = "local"

    def _enter(self, state: PipelineState) -> None:
        console.debug(f"Pull state: {self.job.state.value} -> {state.value}")
        self.job.state = state

    def execute(self) -> PullResult:
        """Run the pull. Failures are returned in the result, not raised."""
        started = time.monotonic()
        error: Optional[DbPullError] = None
        failed_state: Optional[PipelineState] = None

        with self.audit.correlation("pull"):
            try:
                self._run()
            except DbPullError as e:
                error = e
                failed_state = self.job.state
            except Exception as e:
                error = PipelineError(
                    f"Unexpected error during pull: {e}",
                    details=[type(e).__name__],
                )
                error.__cause__ = e
                failed_state = self.job.state
            finally:
                self._enter(PipelineState.CLEANING_UP)
                self._cleanup()

            duration = time.monotonic() - started

            if error is None:
                self._enter(PipelineState.DONE)
                self.reporter.complete("Complete")
                self.audit.log_operation(
                    AuditEventType.PULL_SUCCESS,
                    AuditResult.SUCCESS,
                    self._target,
                    parameters={
                        "backup_path": str(self.job.backup_path) if self.job.backup_path else None,
                        "duration_seconds": round(duration, 2),
                    },
                )
                return PullResult(
                    state=PipelineState.DONE,
                    backup_path=self.job.backup_path,
                    duration=duration,
                    completed_weight=self.job.consumed_weight,
                )

            error.stage = error.stage or _STATE_STAGES.get(failed_state)
            self._enter(PipelineState.FAILED)
            self.audit.log_operation(
                AuditEventType.PULL_FAILURE,
                AuditResult.FAILURE,
                self._target,
                error=error.message,
                stage=error.stage,
                parameters={"completed_weight": self.job.consumed_weight},
            )
            return PullResult(
                state=PipelineState.FAILED,
                backup_path=self.job.backup_path,
                failed_stage=error.stage,
                error=error,
                duration=duration,
                completed_weight=self.job.consumed_weight,
            )

    def _run(self) -> None:
        ctx = self.context
        estimator = SizeEstimator(self.executor)

        connections = ctx.resolve()
        self._target = connections.local.database
        self.audit.log_operation(
            AuditEventType.PULL_START,
            AuditResult.PENDING,
            self._target,
            parameters={
                "remote_host": connections.shell.host,
                "remote_database": connections.remote.database,
                "skip_backup": ctx.skip_backup,
                "timeout": ctx.timeout,
            },
        )

        backup = BackupStage(
            self.executor,
            estimator,
            self.reporter,
            backup_dir=ctx.backup_dir,
            timeout=ctx.timeout,
            poll_interval=ctx.poll_interval,
        )
        if ctx.skip_backup:
            backup.skip()
        else:
            self._enter(PipelineState.BACKING_UP)
            self.job.backup_path = backup.run(connections.local)
            self.audit.log_operation(
                AuditEventType.BACKUP_CREATE,
                AuditResult.SUCCESS,
                self._target,
                parameters={"path": str(self.job.backup_path)},
            )
        self.job.consumed_weight = ctx.weights.ceiling(Stage.BACKUP)

        self._enter(PipelineState.DUMPING)
        self.job.dump_path = self.artifact_factory()
        DumpStage(
            self.executor,
            estimator,
            self.reporter,
            timeout=ctx.timeout,
            poll_interval=ctx.poll_interval,
        ).run(connections.remote, connections.shell, self.job.dump_path)
        self.job.consumed_weight = ctx.weights.ceiling(Stage.DUMP)

        self._enter(PipelineState.IMPORTING)
        ImportStage(
            self.executor,
            self.reporter,
            timeout=ctx.timeout,
            mode=self.import_mode,
        ).run(self.job.dump_path, connections.local)
        self.job.consumed_weight = ctx.weights.ceiling(Stage.IMPORT)

    def _cleanup(self) -> None:
        """Remove the temporary dump file, if one was created."""
        path = self.job.dump_path
        if path is None:
            return
        try:
            path.unlink()
            console.debug(f"Removed temporary dump {path}")
        except FileNotFoundError:
            pass
        except OSError as e:
            console.warn(f"Could not remove temporary dump {path}: {e}")
