"""Audit trail of pulls.

One JSON object per line, appended under an exclusive ``flock`` so a
foreground pull and a background worker can share the file. The file is
rotated once it passes its size limit, and parameter values whose key
looks like a secret are replaced before anything is written.

Background pulls have no terminal attached, so their outcome is only
visible to an operator through this log. Write failures are reported at
debug level and never stop a pull.
"""

import fcntl
import getpass
import json
import os
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Optional

from dbpull.core.config import DEFAULT_AUDIT_LOG_PATH
from dbpull.core.output import console


DEFAULT_MAX_SIZE_MB = 20
DEFAULT_BACKUP_COUNT = 5

REDACTED = "***REDACTED***"

# Parameter keys containing any of these are never written
SECRET_MARKERS = ("pass", "secret", "key", "token", "credential")


class AuditEventType(Enum):
    PULL_START = "pull.start"
    PULL_SUCCESS = "pull.success"
    PULL_FAILURE = "pull.failure"
    PULL_QUEUED = "pull.queued"
    BACKUP_CREATE = "backup.create"
    SECURITY_BLOCKED = "security.blocked"


class AuditResult(Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    BLOCKED = "blocked"
    PENDING = "pending"


def redact(key: str, value: Any) -> Any:
    """Replace secret-looking values, descending into dicts and lists."""
    if any(marker in key.lower() for marker in SECRET_MARKERS):
        return REDACTED
    if isinstance(value, dict):
        return {k: redact(k, v) for k, v in value.items()}
    if isinstance(value, list):
        return [redact(key, item) for item in value]
    return value


def _current_user() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return str(os.getuid())


@dataclass
class AuditEvent:
    """One line of the audit log."""

    event_type: AuditEventType
    result: AuditResult
    target_name: Optional[str] = None
    target_type: str = "database"
    operation: str = "pull"
    parameters: dict[str, Any] = field(default_factory=dict)
    message: Optional[str] = None
    error: Optional[str] = None
    stage: Optional[str] = None
    actor: str = field(default_factory=_current_user)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    session_id: Optional[str] = None
    correlation_id: Optional[str] = None

    def to_json(self) -> str:
        record = {
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "result": self.result.value,
            "actor": self.actor,
            "target": {"type": self.target_type, "name": self.target_name},
            "operation": self.operation,
            "parameters": {k: redact(k, v) for k, v in self.parameters.items()},
            "message": self.message,
            "error": self.error,
            "stage": self.stage,
            "session_id": self.session_id,
            "correlation_id": self.correlation_id,
        }
        return json.dumps(record, default=str)


class AuditLogger:
    """Appends AuditEvents to a JSON-lines file.

    Usage:
        audit = AuditLogger(Path("/var/log/dbpull/audit.log"))
        with audit.correlation("pull"):
            audit.log_operation(AuditEventType.PULL_START, AuditResult.PENDING, "app")
    """

    def __init__(
        self,
        log_path: Optional[Path] = None,
        max_size_mb: int = DEFAULT_MAX_SIZE_MB,
        backup_count: int = DEFAULT_BACKUP_COUNT,
        enabled: bool = True,
    ) -> None:
        self.log_path = Path(log_path) if log_path else DEFAULT_AUDIT_LOG_PATH
        self.max_size_bytes = max_size_mb * 1024 * 1024
        self.backup_count = max(1, backup_count)
        self.enabled = enabled
        self.session_id = uuid.uuid4().hex
        self._correlations: list[str] = []

    def log(self, event: AuditEvent) -> None:
        if not self.enabled:
            return

        event.session_id = self.session_id
        event.correlation_id = self._correlations[-1] if self._correlations else None

        try:
            self._append(event.to_json() + "\n")
            self._rotate_if_needed()
        except OSError as e:
            console.debug(f"Audit log not written ({self.log_path}): {e}")

    def _append(self, line: str) -> None:
        self.log_path.parent.mkdir(mode=0o750, parents=True, exist_ok=True)
        fd = os.open(self.log_path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o640)
        with os.fdopen(fd, "a") as f:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX)
            f.write(line)
            f.flush()
            os.fsync(f.fileno())

    def _rotate_if_needed(self) -> None:
        """Shift audit.log -> audit.1 -> audit.2 ... once the size limit is passed."""
        if self.log_path.stat().st_size <= self.max_size_bytes:
            return

        generations = [self.log_path.with_suffix(f".{n}") for n in range(1, self.backup_count + 1)]
        generations[-1].unlink(missing_ok=True)
        for older, newer in zip(reversed(generations[:-1]), reversed(generations[1:])):
            if older.exists():
                older.rename(newer)
        self.log_path.rename(generations[0])
        self.log_path.touch(mode=0o640)

    @contextmanager
    def correlation(self, operation: str) -> Iterator[str]:
        """Tag every event logged inside the block with one correlation id."""
        correlation_id = f"{operation}_{uuid.uuid4().hex[:8]}"
        self._correlations.append(correlation_id)
        try:
            yield correlation_id
        finally:
            self._correlations.pop()

    def log_operation(
        self,
        event_type: AuditEventType,
        result: AuditResult,
        target_name: str,
        *,
        target_type: str = "database",
        parameters: Optional[dict[str, Any]] = None,
        message: Optional[str] = None,
        error: Optional[str] = None,
        stage: Optional[str] = None,
    ) -> None:
        self.log(AuditEvent(
            event_type=event_type,
            result=result,
            target_name=target_name,
            target_type=target_type,
            parameters=parameters or {},
            message=message,
            error=error,
            stage=stage,
        ))

    def log_blocked(self, reason: str, target_name: Optional[str] = None) -> None:
        """Record a pull refused by a safety check."""
        self.log(AuditEvent(
            event_type=AuditEventType.SECURITY_BLOCKED,
            result=AuditResult.BLOCKED,
            target_name=target_name,
            message=reason,
        ))


_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Process-wide logger writing to the default location."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger
