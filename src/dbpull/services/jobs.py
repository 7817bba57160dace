"""Entry points that start a pull.

Two ways in, with the same checks up front:

- ``run_pull``: run to completion and return the result
- ``PullJobQueue.enqueue``: hand the pull to a background worker

The production gate and configuration validation happen before anything
is spawned or queued, so a refused job never reaches a worker.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Optional

from dbpull.core.audit import AuditEventType, AuditLogger, AuditResult, get_audit_logger
from dbpull.core.config import AppConfig
from dbpull.core.exceptions import SafetyError
from dbpull.core.executor import CommandExecutor
from dbpull.core.output import console
from dbpull.core.safety import ProductionDetector, PullLock, check_production_gate
from dbpull.services.connections import resolve_connections
from dbpull.services.importer import ImportMode
from dbpull.services.pipeline import PullJobContext, PullPipeline, PullResult
from dbpull.services.progress import ProgressSink, RecordingSink


LOCK_FILE_NAME = ".dbpull.lock"


def lock_path(backup_dir: Path) -> Path:
    return Path(backup_dir) / LOCK_FILE_NAME


def build_job_context(
    app_config: AppConfig,
    *,
    skip_backup: bool = False,
    timeout: Optional[float] = None,
) -> PullJobContext:
    """Build the immutable job context from loaded configuration.

    Connections are resolved here, so invalid settings fail before any
    work starts.

    Raises:
        ConfigurationError: If required settings are missing or invalid
    """
    connections = resolve_connections(app_config.local, app_config.remote, app_config.ssh)
    return PullJobContext(
        connections=connections,
        backup_dir=app_config.backup_dir,
        skip_backup=skip_backup,
        timeout=app_config.timeout if timeout is None else timeout,
    )


def check_environment_gate(
    app_config: AppConfig,
    force: bool,
    *,
    detector: Optional[ProductionDetector] = None,
    audit: Optional[AuditLogger] = None,
) -> None:
    """Refuse to pull into a production environment unless forced.

    Raises:
        SafetyError: If production is detected and force is False
    """
    detector = detector or ProductionDetector(environment=app_config.config.environment)
    try:
        check_production_gate(detector, force)
    except SafetyError as e:
        (audit or get_audit_logger()).log_blocked(
            e.message,
            target_name=app_config.local.database,
        )
        raise

    if force and detector.is_production():
        console.warn("Production environment detected, continuing because of --force")


def run_pull(
    app_config: AppConfig,
    *,
    force: bool = False,
    skip_backup: bool = False,
    timeout: Optional[float] = None,
    sink: Optional[ProgressSink] = None,
    executor: Optional[CommandExecutor] = None,
    audit: Optional[AuditLogger] = None,
    import_mode: Optional[ImportMode] = None,
    detector: Optional[ProductionDetector] = None,
) -> PullResult:
    """Run a pull to completion.

    Raises:
        SafetyError: If the production gate refuses or another pull is running
        ConfigurationError: If the configuration is invalid

    Returns:
        PullResult; stage failures are reported there, not raised
    """
    audit = audit or get_audit_logger()
    check_environment_gate(app_config, force, detector=detector, audit=audit)
    context = build_job_context(app_config, skip_backup=skip_backup, timeout=timeout)

    with PullLock(lock_path(context.backup_dir)):
        return PullPipeline(
            context,
            executor=executor or CommandExecutor(),
            sink=sink,
            audit=audit,
            import_mode=import_mode,
        ).execute()


class PullJobQueue:
    """Runs pulls on a background worker.

    Jobs use the configured ``job_timeout`` for every process. A failed
    job is written to the audit log and the console, and its future
    carries the error.
    """

    def __init__(
        self,
        max_workers: int = 1,
        *,
        executor: Optional[CommandExecutor] = None,
        audit: Optional[AuditLogger] = None,
    ) -> None:
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="dbpull")
        self.executor = executor
        self.audit = audit

    def enqueue(
        self,
        app_config: AppConfig,
        *,
        force: bool = False,
        skip_backup: bool = False,
        timeout: Optional[float] = None,
        sink: Optional[ProgressSink] = None,
        import_mode: Optional[ImportMode] = None,
        detector: Optional[ProductionDetector] = None,
    ) -> "Future[PullResult]":
        """Check and queue a pull.

        Raises:
            SafetyError: If the production gate refuses
            ConfigurationError: If the configuration is invalid

        Returns:
            Future resolving to the PullResult, or to the job's error
        """
        audit = self.audit or get_audit_logger()
        check_environment_gate(app_config, force, detector=detector, audit=audit)
        context = build_job_context(
            app_config,
            skip_backup=skip_backup,
            timeout=app_config.job_timeout if timeout is None else timeout,
        )

        audit.log_operation(
            AuditEventType.PULL_QUEUED,
            AuditResult.PENDING,
            context.connections.local.database,
            parameters={"skip_backup": skip_backup, "timeout": context.timeout},
        )
        console.info("Database pull queued")

        return self._pool.submit(
            self._work, context, sink or RecordingSink(), import_mode, audit
        )

    def _work(
        self,
        context: PullJobContext,
        sink: ProgressSink,
        import_mode: Optional[ImportMode],
        audit: AuditLogger,
    ) -> PullResult:
        try:
            with PullLock(lock_path(context.backup_dir)):
                result = PullPipeline(
                    context,
                    executor=self.executor or CommandExecutor(),
                    sink=sink,
                    audit=audit,
                    import_mode=import_mode,
                ).execute()
            result.raise_for_failure()
        except SafetyError as e:
            audit.log_blocked(e.message, target_name=context.connections.local.database)
            console.error(f"Background database pull failed: {e.message}")
            raise
        except Exception as e:
            console.error(f"Background database pull failed: {e}")
            raise

        console.success("Background database pull completed")
        return result

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    def __enter__(self) -> "PullJobQueue":
        return self

    def __exit__(self, *exc: object) -> None:
        self.shutdown(wait=True)
