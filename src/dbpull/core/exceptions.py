"""Custom exceptions for the database pull tool.

All exceptions provide:
- Clear error messages
- Optional hints for resolution
- Optional details for debugging
- The pipeline stage that raised them, when known
- Exit codes for proper shell integration
"""

from typing import Optional


class DbPullError(Exception):
    """Base exception for all dbpull errors.

    Attributes:
        message: Human-readable error description
        hint: Suggested action to resolve the error
        details: Additional context for debugging
        stage: Pipeline stage that failed (e.g. "dump"), if any
        exit_code: Shell exit code (1-127)
    """

    exit_code: int = 1

    def __init__(
        self,
        message: str,
        *,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
        stage: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.hint = hint
        self.details = details or []
        self.stage = stage

    def __str__(self) -> str:
        return self.message


class ConfigurationError(DbPullError):
    """Configuration file or settings errors.

    Raised when:
    - Config file unreadable or invalid YAML
    - Missing required endpoint fields (all of them are reported at once)
    - Local database engine is not MySQL
    """
    exit_code = 2

    def __init__(
        self,
        message: str,
        *,
        missing_fields: Optional[list[str]] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
        stage: Optional[str] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details, stage=stage)
        self.missing_fields = missing_fields or []


class ValidationError(DbPullError):
    """Input validation errors (ports, paths, identifiers)."""
    exit_code = 3


class SafetyError(DbPullError):
    """Safety check failures.

    Raised when:
    - Pull attempted against a production environment without --force
    - Another pull holds the lock on the local database
    """
    exit_code = 4

    def __init__(
        self,
        message: str,
        *,
        blocked_operation: Optional[str] = None,
        required_flags: Optional[list[str]] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
    ) -> None:
        if not hint and required_flags:
            hint = f"Use {' '.join(required_flags)} to proceed"
        super().__init__(message, hint=hint, details=details)
        self.blocked_operation = blocked_operation
        self.required_flags = required_flags or []


class ExecutionError(DbPullError):
    """External command failures (non-zero exit)."""
    exit_code = 5

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        return_code: Optional[int] = None,
        stderr: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
        stage: Optional[str] = None,
    ) -> None:
        if not details:
            details = []
        if return_code is not None:
            details.append(f"Exit code: {return_code}")
        if stderr:
            details.append(f"Error output: {stderr.strip()}")
        super().__init__(message, hint=hint, details=details, stage=stage)
        self.command = command
        self.return_code = return_code
        self.stderr = stderr


class TimeoutExceededError(ExecutionError):
    """A process ran past its allotted time and was killed."""

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        timeout: Optional[float] = None,
        stderr: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            command=command,
            stderr=stderr,
            hint="Increase the timeout (0 disables it) or check connectivity",
            stage=stage,
        )
        self.timeout = timeout


class ProcessLaunchError(DbPullError):
    """The OS could not start a required subprocess."""
    exit_code = 6

    def __init__(
        self,
        message: str,
        *,
        command: Optional[str] = None,
        hint: Optional[str] = None,
        details: Optional[list[str]] = None,
        stage: Optional[str] = None,
    ) -> None:
        super().__init__(message, hint=hint, details=details, stage=stage)
        self.command = command


# Stage failures

class BackupFailedError(ExecutionError):
    """Local mysqldump backup failed. No remote data was touched."""
    exit_code = 12


class DumpFailedError(ExecutionError):
    """Remote mysqldump over SSH failed."""
    exit_code = 13


class ImportFailedError(ExecutionError):
    """Loading the dump into the local database failed."""
    exit_code = 14


class PipelineError(DbPullError):
    """Unexpected failure inside the pipeline (wraps non-dbpull exceptions)."""
    exit_code = 1
