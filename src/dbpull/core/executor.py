"""Process runner for every external command the pull spawns.

Provides:
- Blocking execution with output capture
- Non-blocking start with liveness polling
- Streaming stderr lines to a listener (rate meter parsing)
- Chunked writes into a running process's stdin
- Per-invocation timeouts with forced termination

This is the only module allowed to create OS processes.
"""

import codecs
import os
import re
import select
import shlex
import signal
import subprocess
import threading
import time
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Union

from dbpull.core.exceptions import ExecutionError, ProcessLaunchError, TimeoutExceededError
from dbpull.core.output import Console, console as default_console


Command = Union[list[str], str]
LineListener = Callable[[str], None]

# Bytes per write into a process's stdin
DEFAULT_CHUNK_SIZE = 64 * 1024

_LINE_BREAK = re.compile(r"[\r\n]")


class _StreamPump(threading.Thread):
    """Drain one pipe in the background so the child never blocks on it.

    Output is kept as raw bytes for the final report and split into lines
    on either ``\\n`` or ``\\r`` (progress meters redraw with ``\\r``).
    """

    def __init__(self, stream: BinaryIO, name: str) -> None:
        super().__init__(name=name, daemon=True)
        self._stream = stream
        self._chunks: list[bytes] = []
        self._lines: list[str] = []
        self._partial = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._listener: Optional[LineListener] = None
        self._lock = threading.Lock()

    def run(self) -> None:
        read = getattr(self._stream, "read1", self._stream.read)
        while True:
            data = read(4096)
            if not data:
                break
            self._chunks.append(data)
            self._feed(self._decoder.decode(data))
        self._feed(self._decoder.decode(b"", final=True))
        if self._partial:
            self._deliver(self._partial)
            self._partial = ""

    def _feed(self, text: str) -> None:
        parts = _LINE_BREAK.split(self._partial + text)
        self._partial = parts.pop()
        for line in parts:
            if line:
                self._deliver(line)

    def _deliver(self, line: str) -> None:
        with self._lock:
            self._lines.append(line)
            if self._listener is not None:
                self._listener(line)

    def set_listener(self, listener: LineListener) -> None:
        """Attach a listener, replaying lines that arrived before it."""
        with self._lock:
            for line in self._lines:
                listener(line)
            self._listener = listener

    @property
    def text(self) -> str:
        return b"".join(self._chunks).decode("utf-8", errors="replace")


class ProcessHandle:
    """A started external process.

    Owned by the stage that started it; must be finished through
    ``CommandExecutor.wait`` or ``CommandExecutor.kill``.
    """

    def __init__(
        self,
        process: subprocess.Popen,
        command: str,
        timeout: Optional[float],
    ) -> None:
        self.process = process
        self.command = command
        self.timeout = timeout or None
        self.started_at = time.monotonic()
        self.deadline = self.started_at + timeout if timeout else None
        self.finished = False

        self._stdout_pump = (
            _StreamPump(process.stdout, f"stdout-{process.pid}") if process.stdout else None
        )
        self._stderr_pump = (
            _StreamPump(process.stderr, f"stderr-{process.pid}") if process.stderr else None
        )
        for pump in (self._stdout_pump, self._stderr_pump):
            if pump is not None:
                pump.start()

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def returncode(self) -> Optional[int]:
        """Exit status, None while running."""
        return self.process.poll()

    def running(self) -> bool:
        """Check if the process has not exited yet."""
        return self.process.poll() is None

    def expired(self) -> bool:
        """Check if the process has used up its time allowance."""
        return self.deadline is not None and time.monotonic() >= self.deadline

    def remaining(self) -> Optional[float]:
        """Seconds left before the deadline, None if unlimited."""
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def stdout(self) -> str:
        return self._stdout_pump.text if self._stdout_pump else ""

    @property
    def stderr(self) -> str:
        return self._stderr_pump.text if self._stderr_pump else ""

    def listen(self, listener: LineListener) -> None:
        """Deliver every stderr line to listener."""
        if self._stderr_pump is not None:
            self._stderr_pump.set_listener(listener)

    def _finish(self, join_timeout: float = 5.0) -> None:
        """Join output pumps and release pipes after the process exited."""
        for pump in (self._stdout_pump, self._stderr_pump):
            if pump is not None:
                pump.join(join_timeout)
        for stream in (self.process.stdin, self.process.stdout, self.process.stderr):
            if stream is not None and not stream.closed:
                try:
                    stream.close()
                except BrokenPipeError:
                    pass
        self.finished = True


class CommandResult:
    """Result of a command execution."""

    def __init__(self, command: str, return_code: int, stdout: str, stderr: str) -> None:
        self.command = command
        self.return_code = return_code
        self.stdout = stdout
        self.stderr = stderr

    @property
    def success(self) -> bool:
        """Check if command succeeded."""
        return self.return_code == 0

    def __repr__(self) -> str:
        return f"CommandResult(command={self.command!r}, return_code={self.return_code})"


class CommandExecutor:
    """Spawns, watches and reaps external commands.

    Features:
    - Output capture for processing
    - Timeout support (0 or None = unlimited)
    - Environment injection on top of the current environment
    - Sensitive command masking in debug output
    - Invocation counter (``spawned``)
    """

    # Seconds between SIGTERM and SIGKILL when stopping a process
    KILL_GRACE_PERIOD = 5.0

    def __init__(self, console: Optional[Console] = None) -> None:
        self.console = console or default_console
        self.spawned = 0

    @staticmethod
    def _display(command: Command, sensitive: bool) -> str:
        if sensitive:
            return "<sensitive command>"
        return command if isinstance(command, str) else shlex.join(command)

    @staticmethod
    def _environment(env: Optional[dict[str, str]]) -> Optional[dict[str, str]]:
        if not env:
            return None
        run_env = os.environ.copy()
        run_env.update(env)
        return run_env

    def run(
        self,
        command: Command,
        *,
        description: Optional[str] = None,
        check: bool = True,
        sensitive: bool = False,
        timeout: Optional[float] = None,
        env: Optional[dict[str, str]] = None,
        input: Optional[str] = None,
    ) -> CommandResult:
        """Execute a command to completion.

        Args:
            command: Command as list of strings
            description: Human-readable description for logging
            check: Raise exception on non-zero exit
            sensitive: Don't log the actual command
            timeout: Command timeout in seconds (0/None = unlimited)
            env: Additional environment variables
            input: Text written to the command's stdin

        Returns:
            CommandResult with output

        Raises:
            ExecutionError: If command fails and check=True
            TimeoutExceededError: If the timeout elapses (process is killed)
            ProcessLaunchError: If the command cannot be started
        """
        if description:
            self.console.verbose(description)

        cmd_display = self._display(command, sensitive)
        self.console.debug(f"Running: {cmd_display}")

        self.spawned += 1
        try:
            result = subprocess.run(
                command,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=timeout or None,
                env=self._environment(env),
                input=input,
                stdin=None if input is not None else subprocess.DEVNULL,
            )
        except subprocess.TimeoutExpired as e:
            raise TimeoutExceededError(
                f"Command timed out after {timeout}s: {description or cmd_display}",
                command=cmd_display,
                timeout=timeout,
            ) from e
        except OSError as e:
            raise ProcessLaunchError(
                f"Failed to start command: {description or cmd_display}",
                command=cmd_display,
                details=[str(e)],
                hint="Check that the program is installed and on PATH",
            ) from e

        cmd_result = CommandResult(
            command=cmd_display,
            return_code=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )

        if check and result.returncode != 0:
            raise ExecutionError(
                f"Command failed: {description or cmd_display}",
                command=cmd_display,
                return_code=result.returncode,
                stderr=result.stderr,
            )

        return cmd_result

    def start(
        self,
        command: Command,
        *,
        description: Optional[str] = None,
        sensitive: bool = False,
        timeout: Optional[float] = None,
        env: Optional[dict[str, str]] = None,
        stdout_path: Optional[Path] = None,
        input: Optional[Union[str, bytes]] = None,
        keep_stdin_open: bool = False,
        shell: bool = False,
    ) -> ProcessHandle:
        """Start a command without waiting for it.

        Args:
            command: Command as list of strings (a string when shell=True)
            description: Human-readable description for logging
            sensitive: Don't log the actual command
            timeout: Allowed runtime in seconds (0/None = unlimited)
            env: Additional environment variables
            stdout_path: Redirect stdout into this file instead of a pipe
            input: Data written to stdin, which is then closed
            keep_stdin_open: Leave stdin as an open pipe for pipe_into()
            shell: Run through /bin/sh (only for pipelines)

        Returns:
            ProcessHandle to poll and wait on

        Raises:
            ProcessLaunchError: If the command cannot be started
        """
        if description:
            self.console.verbose(description)

        cmd_display = self._display(command, sensitive)
        self.console.debug(f"Starting: {cmd_display}")

        stdin = subprocess.PIPE if (input is not None or keep_stdin_open) else subprocess.DEVNULL
        stdout_file = open(stdout_path, "wb") if stdout_path is not None else None

        self.spawned += 1
        try:
            process = subprocess.Popen(  # noqa: S602
                command,
                stdin=stdin,
                stdout=stdout_file if stdout_file is not None else subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self._environment(env),
                shell=shell,
                start_new_session=True,
            )
        except OSError as e:
            raise ProcessLaunchError(
                f"Failed to start command: {description or cmd_display}",
                command=cmd_display,
                details=[str(e)],
                hint="Check that the program is installed and on PATH",
            ) from e
        finally:
            # The child holds its own descriptor
            if stdout_file is not None:
                stdout_file.close()

        handle = ProcessHandle(process, cmd_display, timeout)

        if input is not None:
            data = input.encode() if isinstance(input, str) else input
            try:
                process.stdin.write(data)
                process.stdin.close()
            except BrokenPipeError:
                self.console.debug(f"Process {process.pid} exited before reading its input")

        return handle

    def wait(
        self,
        handle: ProcessHandle,
        on_output_line: Optional[LineListener] = None,
    ) -> CommandResult:
        """Block until the process exits or its deadline passes.

        Args:
            handle: Handle returned by start()
            on_output_line: Receives every stderr line as it arrives

        Returns:
            CommandResult; a non-zero exit is not raised here

        Raises:
            TimeoutExceededError: If the deadline passes (process is killed)
        """
        if on_output_line is not None:
            handle.listen(on_output_line)

        try:
            handle.process.wait(timeout=handle.remaining())
        except subprocess.TimeoutExpired as e:
            self.kill(handle)
            raise TimeoutExceededError(
                f"Command timed out after {handle.timeout}s",
                command=handle.command,
                timeout=handle.timeout,
                stderr=handle.stderr,
            ) from e

        handle._finish()
        return CommandResult(
            command=handle.command,
            return_code=handle.process.returncode,
            stdout=handle.stdout,
            stderr=handle.stderr,
        )

    def kill(self, handle: ProcessHandle) -> None:
        """Terminate the process (and its process group) and reap it."""
        if handle.finished:
            return

        if handle.running():
            self._signal(handle, signal.SIGTERM)
            try:
                handle.process.wait(timeout=self.KILL_GRACE_PERIOD)
            except subprocess.TimeoutExpired:
                self._signal(handle, signal.SIGKILL)
                handle.process.wait()
            self.console.debug(f"Killed process {handle.pid}: {handle.command}")

        handle._finish()

    @staticmethod
    def _signal(handle: ProcessHandle, sig: int) -> None:
        try:
            os.killpg(handle.pid, sig)
        except ProcessLookupError:
            pass

    @staticmethod
    def _write_all(handle: ProcessHandle, fd: int, data: bytes) -> bool:
        """Write data to a non-blocking fd, False if the deadline passed first."""
        view = memoryview(data)
        while view:
            remaining = handle.remaining()
            if remaining == 0.0:
                return False
            _, writable, _ = select.select([], [fd], [], remaining)
            if not writable:
                return False
            try:
                written = os.write(fd, view)
            except BlockingIOError:
                continue
            view = view[written:]
        return True

    def pipe_into(
        self,
        handle: ProcessHandle,
        reader: BinaryIO,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        on_chunk: Optional[Callable[[int], None]] = None,
    ) -> int:
        """Stream reader into the process's stdin, then close stdin.

        Writes are bounded by the handle's deadline. When it passes, the
        process is killed before its stdin is closed, so it never sees a
        clean end of input on a truncated stream.

        Args:
            handle: Handle started with keep_stdin_open=True
            reader: Binary source
            chunk_size: Bytes per write
            on_chunk: Called with the running total after each chunk

        Returns:
            Total bytes written

        Raises:
            TimeoutExceededError: If the deadline passes (process is killed)
        """
        stdin = handle.process.stdin
        if stdin is None or stdin.closed:
            raise ValueError("Process was started without an open stdin")

        fd = stdin.fileno()
        os.set_blocking(fd, False)

        total = 0
        expired = False
        try:
            while True:
                if handle.expired():
                    expired = True
                    break
                chunk = reader.read(chunk_size)
                if not chunk:
                    break
                if not self._write_all(handle, fd, chunk):
                    expired = True
                    break
                total += len(chunk)
                if on_chunk is not None:
                    on_chunk(total)
        except BrokenPipeError:
            # Exit status tells the caller what went wrong
            self.console.debug(f"Process {handle.pid} closed its input after {total} bytes")
        except BaseException:
            self.kill(handle)
            raise

        if expired:
            self.kill(handle)
            raise TimeoutExceededError(
                f"Command timed out after {handle.timeout}s",
                command=handle.command,
                timeout=handle.timeout,
                stderr=handle.stderr,
            )

        try:
            stdin.close()
        except BrokenPipeError:
            pass

        return total
