"""Core framework components for dbpull."""

from dbpull.core.exceptions import (
    DbPullError,
    ConfigurationError,
    ValidationError,
    SafetyError,
    ExecutionError,
    TimeoutExceededError,
    ProcessLaunchError,
    BackupFailedError,
    DumpFailedError,
    ImportFailedError,
    PipelineError,
)

from dbpull.core.context import ExecutionContext, create_context
from dbpull.core.output import console, Console, Verbosity
from dbpull.core.config import AppConfig, PullConfig
from dbpull.core.safety import ProductionDetector, PullLock, check_production_gate
from dbpull.core.audit import AuditLogger, AuditEvent, AuditEventType, AuditResult, get_audit_logger
from dbpull.core.executor import CommandExecutor, CommandResult, ProcessHandle

__all__ = [
    # Exceptions
    "DbPullError",
    "ConfigurationError",
    "ValidationError",
    "SafetyError",
    "ExecutionError",
    "TimeoutExceededError",
    "ProcessLaunchError",
    "BackupFailedError",
    "DumpFailedError",
    "ImportFailedError",
    "PipelineError",
    # Context
    "ExecutionContext",
    "create_context",
    # Output
    "console",
    "Console",
    "Verbosity",
    # Config
    "AppConfig",
    "PullConfig",
    # Safety
    "ProductionDetector",
    "PullLock",
    "check_production_gate",
    # Audit
    "AuditLogger",
    "AuditEvent",
    "AuditEventType",
    "AuditResult",
    "get_audit_logger",
    # Executor
    "CommandExecutor",
    "CommandResult",
    "ProcessHandle",
]
