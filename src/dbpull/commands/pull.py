"""The pull command.

Runs the pull in the foreground with a progress bar, or hands it to the
background queue and reports the outcome when the worker finishes.
"""

from typing import Optional

from rich.progress import Progress, TaskID

from dbpull.core.context import ExecutionContext
from dbpull.services.backup import file_size
from dbpull.services.jobs import PullJobQueue, run_pull
from dbpull.services.pipeline import PullResult
from dbpull.services.progress import RecordingSink, format_bytes


class RichProgressSink:
    """Drives a rich progress bar from pull progress events."""

    def __init__(self, progress: Progress, task_id: TaskID) -> None:
        self.progress = progress
        self.task_id = task_id

    def on_progress(self, message: str, percent: int) -> None:
        self.progress.update(self.task_id, completed=percent, description=message)


def _show_plan(ctx: ExecutionContext, skip_backup: bool, background: bool) -> None:
    app_config = ctx.config
    ctx.console.print()
    ctx.console.print("[bold]Database Pull[/bold]")
    ctx.console.print(f"  Production host: {app_config.ssh.user}@{app_config.ssh.host or '(not set)'}")
    ctx.console.print(f"  Remote database: {app_config.remote.database or '(not set)'}")
    ctx.console.print(f"  Local database:  {app_config.local.database or '(not set)'}")
    ctx.console.print(f"  Local backup:    {'skipped' if skip_backup else app_config.backup_dir}")
    ctx.console.print(f"  Mode:            {'background' if background else 'foreground'}")
    ctx.console.print()


def _show_result(ctx: ExecutionContext, result: PullResult) -> None:
    details = {"Duration": f"{result.duration:.1f}s"}
    if result.backup_path is not None:
        details["Backup"] = f"{result.backup_path} ({format_bytes(file_size(result.backup_path))})"
    if not result.success:
        details["Failed stage"] = result.failed_stage or "unknown"
        details["Completed"] = f"{result.completed_weight}%"
    ctx.console.operation_summary("Database pull", result.success, details)


def run_pull_command(
    ctx: ExecutionContext,
    *,
    skip_backup: bool = False,
    background: bool = False,
    timeout: Optional[int] = None,
) -> PullResult:
    """Run the pull for the CLI.

    Raises:
        DbPullError: If the pull is refused or fails
    """
    _show_plan(ctx, skip_backup, background)

    if background:
        sink = RecordingSink()
        with PullJobQueue() as queue:
            future = queue.enqueue(
                ctx.config,
                force=ctx.force,
                skip_backup=skip_backup,
                timeout=timeout,
                sink=sink,
            )
            ctx.console.step("Waiting for the background pull to finish...")
            try:
                result = future.result()
            finally:
                if sink.last is not None:
                    ctx.console.verbose(f"Last progress: {sink.last.message} ({sink.last.percent}%)")
        _show_result(ctx, result)
        return result

    with ctx.console.progress() as progress:
        task_id = progress.add_task("Starting", total=100)
        result = run_pull(
            ctx.config,
            force=ctx.force,
            skip_backup=skip_backup,
            timeout=timeout,
            sink=RichProgressSink(progress, task_id),
        )

    _show_result(ctx, result)
    result.raise_for_failure()
    ctx.console.success("Production database pulled successfully.")
    return result
