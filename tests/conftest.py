"""Shared fixtures: a scripted stand-in for CommandExecutor and sample settings."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import pytest

from dbpull.core.audit import AuditLogger
from dbpull.core.config import (
    AppConfig,
    LocalDatabaseConfig,
    PullConfig,
    RemoteDatabaseConfig,
    SshConfig,
)
from dbpull.core.executor import CommandResult
from dbpull.core.output import console
from dbpull.services.connections import ConnectionSet, DatabaseEndpoint, ShellEndpoint


@dataclass
class Behavior:
    """What a faked process does."""

    return_code: int = 0
    stdout: str = ""
    stderr: str = ""
    chunks: list[bytes] = field(default_factory=list)
    stderr_lines: list[str] = field(default_factory=list)
    error: Optional[BaseException] = None
    # Raised from wait() or pipe_into(), as when the deadline passes
    wait_error: Optional[BaseException] = None
    pipe_error: Optional[BaseException] = None


class FakeHandle:
    """Process stand-in that writes one chunk per liveness check."""

    pid = 4242

    def __init__(self, kind: str, command, behavior: Behavior, stdout_path: Optional[Path]) -> None:
        self.kind = kind
        self.command = command
        self.behavior = behavior
        self.stdout_path = stdout_path
        self.pending = list(behavior.chunks)
        self.received = 0
        self.killed = False
        self.finished = False
        self.running_checks = 0

    def _write_next(self) -> None:
        chunk = self.pending.pop(0)
        if self.stdout_path is not None:
            with open(self.stdout_path, "ab") as f:
                f.write(chunk)

    def running(self) -> bool:
        self.running_checks += 1
        if self.pending:
            self._write_next()
            return True
        return False

    def expired(self) -> bool:
        return False

    def flush(self) -> None:
        while self.pending:
            self._write_next()


def classify(command) -> str:
    """Name the external program a command stands for."""
    if isinstance(command, str):
        return "import-metered"
    text = " ".join(command)
    if command[0] == "pv":
        return "pv-probe"
    if command[0] == "ssh":
        return "remote-size" if "information_schema" in text else "dump"
    if command[0] == "mysqldump":
        return "backup"
    if "-e" in command:
        return "local-size"
    return "import-chunked"


class FakeExecutor:
    """Scripted CommandExecutor.

    Every command is classified (backup, dump, import-chunked, ...) and
    answered from ``behaviors``. All invocations are recorded in ``calls``
    and counted in ``spawned``.
    """

    def __init__(self) -> None:
        self.console = console
        self.spawned = 0
        self.calls: list[tuple[str, object, dict]] = []
        self.handles: list[FakeHandle] = []
        self.piped_bytes = 0
        self.behaviors: dict[str, Behavior] = {
            "pv-probe": Behavior(return_code=1),
            "local-size": Behavior(stdout="1000\n"),
            "remote-size": Behavior(stdout="2000\n"),
            "backup": Behavior(chunks=[b"-- local backup\n"]),
            "dump": Behavior(chunks=[b"-- production dump\n"]),
            "import-metered": Behavior(),
            "import-chunked": Behavior(),
        }

    def script(self, kind: str, **kwargs) -> Behavior:
        self.behaviors[kind] = Behavior(**kwargs)
        return self.behaviors[kind]

    def kinds(self) -> list[str]:
        return [kind for kind, _, _ in self.calls]

    def call(self, kind: str) -> tuple[object, dict]:
        for k, command, kwargs in self.calls:
            if k == kind:
                return command, kwargs
        raise AssertionError(f"No {kind} call recorded: {self.kinds()}")

    def run(self, command, **kwargs) -> CommandResult:
        kind = classify(command)
        self.calls.append((kind, command, kwargs))
        self.spawned += 1
        behavior = self.behaviors[kind]
        if behavior.error is not None:
            raise behavior.error
        return CommandResult(str(command), behavior.return_code, behavior.stdout, behavior.stderr)

    def start(self, command, **kwargs) -> FakeHandle:
        kind = classify(command)
        self.calls.append((kind, command, kwargs))
        self.spawned += 1
        behavior = self.behaviors[kind]
        if behavior.error is not None:
            raise behavior.error
        stdout_path = kwargs.get("stdout_path")
        if stdout_path is not None:
            Path(stdout_path).write_bytes(b"")
        handle = FakeHandle(kind, command, behavior, stdout_path)
        self.handles.append(handle)
        return handle

    def wait(self, handle: FakeHandle, on_output_line=None) -> CommandResult:
        handle.flush()
        if handle.behavior.wait_error is not None:
            self.kill(handle)
            raise handle.behavior.wait_error
        if on_output_line is not None:
            for line in handle.behavior.stderr_lines:
                on_output_line(line)
        handle.finished = True
        return CommandResult(
            str(handle.command),
            handle.behavior.return_code,
            handle.behavior.stdout,
            handle.behavior.stderr,
        )

    def kill(self, handle: FakeHandle) -> None:
        handle.killed = True
        handle.finished = True

    def pipe_into(self, handle: FakeHandle, reader, *, chunk_size=64 * 1024, on_chunk=None) -> int:
        if handle.behavior.pipe_error is not None:
            self.kill(handle)
            raise handle.behavior.pipe_error
        total = 0
        while True:
            chunk = reader.read(chunk_size)
            if not chunk:
                break
            total += len(chunk)
            if on_chunk is not None:
                on_chunk(total)
        handle.received = total
        self.piped_bytes += total
        return total


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def connections() -> ConnectionSet:
    return ConnectionSet(
        local=DatabaseEndpoint("127.0.0.1", 3306, "root", "localpw", "app_local"),
        remote=DatabaseEndpoint("127.0.0.1", 3306, "forge", "s3cret", "app_prod"),
        shell=ShellEndpoint("prod.example.com", 22, "forge", "/home/me/.ssh/id_ed25519"),
    )


@pytest.fixture
def audit(tmp_path: Path) -> AuditLogger:
    return AuditLogger(log_path=tmp_path / "audit" / "audit.log")


@pytest.fixture
def pull_config(tmp_path: Path) -> PullConfig:
    return PullConfig(
        environment="local",
        timeout=600,
        job_timeout=3600,
        backup_dir=tmp_path / "backups",
        ssh=SshConfig(host="prod.example.com", key_path="/home/me/.ssh/id_ed25519"),
        remote=RemoteDatabaseConfig(database="app_prod", username="forge", password="s3cret"),
        local=LocalDatabaseConfig(database="app_local", username="root", password="localpw"),
    )


@pytest.fixture
def app_config(pull_config: PullConfig) -> AppConfig:
    return AppConfig(config=pull_config, use_environment=False)
