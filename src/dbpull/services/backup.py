"""Local safety backup before anything is overwritten.

Runs mysqldump against the local database into a timestamped file under
the backup directory. Progress comes from the growing file size measured
against the schema size estimate.
"""

import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from dbpull.core.exceptions import BackupFailedError, DbPullError
from dbpull.core.executor import CommandExecutor, CommandResult, ProcessHandle
from dbpull.core.output import console
from dbpull.services.connections import DatabaseEndpoint
from dbpull.services.progress import ProgressReporter, Stage, format_bytes, intra_percent
from dbpull.services.sizing import SizeEstimator
from dbpull.services.ssh import mysql_client_args, mysql_env


# Seconds between file size checks while a dump is being written
POLL_INTERVAL = 0.2

BACKUP_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


def backup_artifact_path(
    backup_dir: Path,
    database: str,
    now: Optional[datetime] = None,
) -> Path:
    """Return ``{backup_dir}/{database}_{YYYYMMDD_HHMMSS}.sql``.

    The directory is created if it does not exist.
    """
    backup_dir = Path(backup_dir)
    backup_dir.mkdir(parents=True, exist_ok=True)
    timestamp = (now or datetime.now()).strftime(BACKUP_TIMESTAMP_FORMAT)
    return backup_dir / f"{database}_{timestamp}.sql"


def file_size(path: Path) -> int:
    """Size of path in bytes, 0 if it does not exist yet."""
    try:
        return path.stat().st_size
    except FileNotFoundError:
        return 0


def remove_partial(path: Path) -> None:
    """Delete a partially written artifact, if any."""
    try:
        path.unlink()
        console.debug(f"Removed partial file {path}")
    except FileNotFoundError:
        pass


def follow_file_growth(
    executor: CommandExecutor,
    handle: ProcessHandle,
    artifact: Path,
    on_size: Callable[[int], None],
    poll_interval: float = POLL_INTERVAL,
) -> CommandResult:
    """Poll artifact size while handle runs, then wait for it.

    The process is killed if anything interrupts the loop.

    Raises:
        TimeoutExceededError: If the process outlives its deadline
    """
    try:
        while handle.running() and not handle.expired():
            on_size(file_size(artifact))
            if poll_interval > 0:
                time.sleep(poll_interval)
        return executor.wait(handle)
    except BaseException:
        executor.kill(handle)
        raise


class BackupStage:
    """Dump the local database to a timestamped file."""

    def __init__(
        self,
        executor: CommandExecutor,
        estimator: SizeEstimator,
        reporter: ProgressReporter,
        *,
        backup_dir: Path,
        timeout: Optional[float] = None,
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        self.executor = executor
        self.estimator = estimator
        self.reporter = reporter
        self.backup_dir = Path(backup_dir)
        self.timeout = timeout
        self.poll_interval = poll_interval

    def skip(self) -> None:
        """Record that the backup was skipped on request."""
        self.reporter.emit(0, "Skipping backup")

    def run(self, local: DatabaseEndpoint, now: Optional[datetime] = None) -> Path:
        """Back up the local database.

        Args:
            local: Local database endpoint
            now: Timestamp for the file name (defaults to now)

        Returns:
            Path of the completed backup file

        Raises:
            BackupFailedError: If mysqldump exits non-zero
            TimeoutExceededError: If mysqldump runs past the timeout
        """
        artifact = backup_artifact_path(self.backup_dir, local.database, now)
        console.verbose(f"Creating local backup at {artifact}")
        self.reporter.stage_floor(Stage.BACKUP, "Backing up local database")

        estimate = self.estimator.estimate_size_bytes(local)

        def on_size(size: int) -> None:
            self.reporter.report(
                Stage.BACKUP,
                intra_percent(size, estimate),
                f"Backing up local database ({format_bytes(size)})",
            )

        try:
            handle = self.executor.start(
                ["mysqldump", *mysql_client_args(local), local.database],
                description=f"Back up local database {local.database}",
                timeout=self.timeout,
                env=mysql_env(local),
                stdout_path=artifact,
            )
            result = follow_file_growth(
                self.executor, handle, artifact, on_size, self.poll_interval
            )
        except DbPullError as e:
            remove_partial(artifact)
            e.stage = e.stage or Stage.BACKUP.value
            raise
        except BaseException:
            remove_partial(artifact)
            raise

        if not result.success:
            remove_partial(artifact)
            raise BackupFailedError(
                "Failed to create local backup",
                command=result.command,
                return_code=result.return_code,
                stderr=result.stderr,
                hint="Check the local database credentials and that mysqldump is installed",
                stage=Stage.BACKUP.value,
            )

        self.reporter.stage_done(
            Stage.BACKUP, f"Local backup saved ({format_bytes(file_size(artifact))})"
        )
        console.verbose(f"Local backup saved to {artifact}")
        return artifact
