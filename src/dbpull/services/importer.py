"""Loading the dump into the local database.

Two strategies, chosen once per job:

- Metered: ``pv`` streams the file into ``mysql`` and reports exact
  percentages on stderr.
- Chunked: the file is written into ``mysql``'s stdin in fixed-size
  chunks and progress is the share of bytes forwarded.

Neither strategy deletes the dump file; the pipeline owns it.
"""

import re
import shlex
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Optional

from dbpull.core.exceptions import DbPullError, ImportFailedError
from dbpull.core.executor import DEFAULT_CHUNK_SIZE, CommandExecutor, CommandResult
from dbpull.core.output import console
from dbpull.services.backup import file_size
from dbpull.services.connections import DatabaseEndpoint
from dbpull.services.progress import ProgressReporter, Stage, intra_percent, overall_percent
from dbpull.services.ssh import mysql_client_args, mysql_env


PV_PERCENT_PATTERN = re.compile(r"(\d+)\s*%")

# Seconds allowed for the pv capability probe
PV_PROBE_TIMEOUT = 10


class ImportMode(Enum):
    """How the dump is fed into mysql."""
    METERED = "metered"
    CHUNKED = "chunked"


def detect_import_mode(executor: CommandExecutor) -> ImportMode:
    """Use pv when it is installed, otherwise fall back to chunked writes."""
    try:
        result = executor.run(
            ["pv", "-V"],
            description="Check for pv",
            check=False,
            timeout=PV_PROBE_TIMEOUT,
        )
    except DbPullError as e:
        console.debug(f"pv unavailable: {e}")
        return ImportMode.CHUNKED

    return ImportMode.METERED if result.success else ImportMode.CHUNKED


def mysql_import_argv(local: DatabaseEndpoint) -> list[str]:
    return ["mysql", *mysql_client_args(local), local.database]


def import_message(percent: int) -> str:
    return f"Importing into local database ({percent}%)"


class ImportStrategy(ABC):
    """Feeds a dump file into the local database."""

    def __init__(
        self,
        executor: CommandExecutor,
        reporter: ProgressReporter,
        *,
        timeout: Optional[float] = None,
    ) -> None:
        self.executor = executor
        self.reporter = reporter
        self.timeout = timeout

    def _advance(self, percent: int) -> None:
        """Emit only when the overall percent strictly increases."""
        overall = overall_percent(Stage.IMPORT, percent, self.reporter.weights)
        if overall > self.reporter.last_percent:
            self.reporter.report(Stage.IMPORT, percent, import_message(percent))

    @staticmethod
    def _check(result: CommandResult) -> None:
        if not result.success:
            raise ImportFailedError(
                "Failed to import into local database",
                command=result.command,
                return_code=result.return_code,
                stderr=result.stderr,
                hint="Check the local database credentials and that the database exists",
                stage=Stage.IMPORT.value,
            )

    @abstractmethod
    def import_artifact(self, artifact: Path, local: DatabaseEndpoint) -> None:
        """Load artifact into local.

        Raises:
            ImportFailedError: If mysql exits non-zero
            TimeoutExceededError: If the import runs past the timeout
        """


class MeteredImport(ImportStrategy):
    """``pv -f -p FILE | mysql ...`` with pv's percentages as progress."""

    def import_artifact(self, artifact: Path, local: DatabaseEndpoint) -> None:
        command = (
            f"pv -f -p {shlex.quote(str(artifact))} | {shlex.join(mysql_import_argv(local))}"
        )

        def on_line(line: str) -> None:
            match = PV_PERCENT_PATTERN.search(line)
            if match:
                self._advance(int(match.group(1)))

        handle = self.executor.start(
            command,
            description=f"Import {artifact.name} into {local.database} through pv",
            timeout=self.timeout,
            env=mysql_env(local),
            shell=True,
        )
        try:
            result = self.executor.wait(handle, on_output_line=on_line)
        except BaseException:
            self.executor.kill(handle)
            raise

        self._check(result)


class ChunkedImport(ImportStrategy):
    """Write the file into mysql's stdin in fixed-size chunks."""

    def __init__(
        self,
        executor: CommandExecutor,
        reporter: ProgressReporter,
        *,
        timeout: Optional[float] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        super().__init__(executor, reporter, timeout=timeout)
        self.chunk_size = chunk_size

    def import_artifact(self, artifact: Path, local: DatabaseEndpoint) -> None:
        total = file_size(artifact)

        def on_chunk(written: int) -> None:
            if total > 0:
                self._advance(intra_percent(written, total))

        handle = self.executor.start(
            mysql_import_argv(local),
            description=f"Import {artifact.name} into {local.database}",
            timeout=self.timeout,
            env=mysql_env(local),
            keep_stdin_open=True,
        )
        try:
            with open(artifact, "rb") as reader:
                written = self.executor.pipe_into(
                    handle, reader, chunk_size=self.chunk_size, on_chunk=on_chunk
                )
            console.debug(f"Forwarded {written} of {total} bytes to mysql")
            result = self.executor.wait(handle)
        except BaseException:
            self.executor.kill(handle)
            raise

        self._check(result)


class ImportStage:
    """Resolve the import mode once and run the matching strategy."""

    def __init__(
        self,
        executor: CommandExecutor,
        reporter: ProgressReporter,
        *,
        timeout: Optional[float] = None,
        mode: Optional[ImportMode] = None,
    ) -> None:
        self.executor = executor
        self.reporter = reporter
        self.timeout = timeout
        self.mode = mode

    def strategy(self) -> ImportStrategy:
        if self.mode is None:
            self.mode = detect_import_mode(self.executor)
            console.debug(f"Import mode: {self.mode.value}")

        if self.mode is ImportMode.METERED:
            return MeteredImport(self.executor, self.reporter, timeout=self.timeout)
        return ChunkedImport(self.executor, self.reporter, timeout=self.timeout)

    def run(self, artifact: Path, local: DatabaseEndpoint) -> None:
        """Import artifact into the local database."""
        self.reporter.stage_floor(Stage.IMPORT, "Importing into local database")
        strategy = self.strategy()

        try:
            strategy.import_artifact(artifact, local)
        except DbPullError as e:
            e.stage = e.stage or Stage.IMPORT.value
            raise

        self.reporter.stage_done(Stage.IMPORT, "Importing into local database")
