"""Remote dump of the production database over SSH.

mysqldump runs on the production host in single-transaction mode so it
never locks tables for concurrent writers. Its output streams back over
the SSH channel into a local temporary file.
"""

import os
import tempfile
from pathlib import Path
from typing import Optional

from dbpull.core.exceptions import DbPullError, DumpFailedError
from dbpull.core.executor import CommandExecutor
from dbpull.core.output import console
from dbpull.services.backup import (
    POLL_INTERVAL,
    file_size,
    follow_file_growth,
    remove_partial,
)
from dbpull.services.connections import DatabaseEndpoint, ShellEndpoint
from dbpull.services.progress import ProgressReporter, Stage, format_bytes, intra_percent
from dbpull.services.sizing import SizeEstimator
from dbpull.services.ssh import (
    build_ssh_command,
    mysql_client_args,
    password_input,
    with_password_from_stdin,
)


def create_dump_artifact() -> Path:
    """Create an empty temporary file to receive the remote dump."""
    fd, path = tempfile.mkstemp(prefix="db_pull_", suffix=".sql")
    os.close(fd)
    return Path(path)


def remote_dump_argv(remote: DatabaseEndpoint) -> list[str]:
    """mysqldump invocation run on the production host."""
    return [
        "mysqldump",
        *mysql_client_args(remote),
        "--single-transaction",
        "--quick",
        "--lock-tables=false",
        remote.database,
    ]


class DumpStage:
    """Stream a consistent dump of the remote database into a local file."""

    def __init__(
        self,
        executor: CommandExecutor,
        estimator: SizeEstimator,
        reporter: ProgressReporter,
        *,
        timeout: Optional[float] = None,
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        self.executor = executor
        self.estimator = estimator
        self.reporter = reporter
        self.timeout = timeout
        self.poll_interval = poll_interval

    def run(
        self,
        remote: DatabaseEndpoint,
        shell: ShellEndpoint,
        artifact: Path,
    ) -> Path:
        """Dump remote into artifact.

        On failure the partial artifact is removed before raising.

        Raises:
            DumpFailedError: If ssh or the remote mysqldump exits non-zero
            TimeoutExceededError: If the transfer runs past the timeout
        """
        self.reporter.stage_floor(Stage.DUMP, "Dumping production database")
        console.verbose(f"Dumping {remote.database} from {shell.host}")

        estimate = self.estimator.estimate_size_bytes(remote, via_shell=shell)
        if estimate:
            console.debug(f"Remote schema size estimate: {format_bytes(estimate)}")

        def on_size(size: int) -> None:
            self.reporter.report(
                Stage.DUMP,
                intra_percent(size, estimate),
                f"Dumping production database ({format_bytes(size)})",
            )

        try:
            handle = self.executor.start(
                build_ssh_command(shell, with_password_from_stdin(remote_dump_argv(remote))),
                description=f"Dump {remote.database} from {shell.destination}",
                timeout=self.timeout,
                stdout_path=artifact,
                input=password_input(remote),
            )
            result = follow_file_growth(
                self.executor, handle, artifact, on_size, self.poll_interval
            )
        except DbPullError as e:
            remove_partial(artifact)
            e.stage = e.stage or Stage.DUMP.value
            raise
        except BaseException:
            remove_partial(artifact)
            raise

        if not result.success:
            remove_partial(artifact)
            raise DumpFailedError(
                "Failed to dump production database",
                command=result.command,
                return_code=result.return_code,
                stderr=result.stderr,
                hint="Check SSH access and the production database credentials",
                stage=Stage.DUMP.value,
            )

        self.reporter.stage_done(
            Stage.DUMP, f"Production dump received ({format_bytes(file_size(artifact))})"
        )
        return artifact
