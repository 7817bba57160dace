"""Integration tests for the dbpull CLI.

Tests the CLI interface of the pull and config commands, mocking the job
entry points so no ssh or mysql process is needed.
"""

from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock, patch

import pytest
from typer.testing import CliRunner

from dbpull import __version__
from dbpull.cli import app
from dbpull.core.config import get_example_config
from dbpull.core.exceptions import DumpFailedError, ImportFailedError, SafetyError
from dbpull.services.pipeline import PipelineState, PullResult


runner = CliRunner()

ENV_VARS = (
    "APP_ENV",
    "ENVIRONMENT",
    "PRODUCTION_SSH_HOST",
    "PRODUCTION_SSH_KEY_PATH",
    "PRODUCTION_DB_DATABASE",
    "PRODUCTION_DB_USERNAME",
    "PRODUCTION_DB_PASSWORD",
    "DB_CONNECTION",
    "DB_DATABASE",
    "DB_PASSWORD",
    "DB_PULL_PRODUCTION_TIMEOUT",
    "DB_PULL_PRODUCTION_JOB_TIMEOUT",
)

COMPLETE_CONFIG = """\
environment: local
backup_dir: {backup_dir}
ssh:
  host: prod.example.com
  key_path: /home/me/.ssh/id_ed25519
remote:
  database: app_prod
  username: forge
  password: s3cret
local:
  database: app_local
"""


@pytest.fixture(autouse=True)
def isolated(monkeypatch, tmp_path) -> None:
    """Run every command in an empty directory without override variables."""
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    path = tmp_path / "dbpull.yaml"
    path.write_text(COMPLETE_CONFIG.format(backup_dir=tmp_path / "backups"))
    return path


@pytest.fixture
def mock_run_pull() -> Generator[MagicMock, None, None]:
    with patch("dbpull.commands.pull.run_pull") as mock:
        mock.return_value = PullResult(state=PipelineState.DONE, duration=1.5)
        yield mock


@pytest.fixture
def mock_queue() -> Generator[MagicMock, None, None]:
    """PullJobQueue whose enqueued future resolves immediately."""
    with patch("dbpull.commands.pull.PullJobQueue") as mock:
        queue = mock.return_value.__enter__.return_value
        queue.enqueue.return_value.result.return_value = PullResult(
            state=PipelineState.DONE, duration=2.0
        )
        yield queue


class TestGlobalOptions:
    """Tests for the root command."""

    def test_version(self):
        result = runner.invoke(app, ["--version"])

        assert result.exit_code == 0
        assert f"dbpull version {__version__}" in result.output

    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])

        assert result.exit_code == 0
        assert "pull" in result.output
        assert "config" in result.output


class TestPullCommand:
    """Tests for `dbpull pull`."""

    def test_foreground_success(self, config_file, mock_run_pull):
        result = runner.invoke(app, ["pull", "--config", str(config_file)])

        assert result.exit_code == 0, result.output
        mock_run_pull.assert_called_once()
        kwargs = mock_run_pull.call_args.kwargs
        assert kwargs["force"] is False
        assert kwargs["skip_backup"] is False
        assert kwargs["timeout"] is None
        assert kwargs["sink"] is not None

    def test_flags_are_passed(self, config_file, mock_run_pull):
        result = runner.invoke(
            app,
            ["pull", "--config", str(config_file), "--no-backup", "--timeout", "0", "--force"],
        )

        assert result.exit_code == 0, result.output
        kwargs = mock_run_pull.call_args.kwargs
        assert kwargs["skip_backup"] is True
        assert kwargs["timeout"] == 0
        assert kwargs["force"] is True

    def test_negative_timeout_is_rejected(self, config_file, mock_run_pull):
        result = runner.invoke(app, ["pull", "--config", str(config_file), "--timeout", "-1"])

        assert result.exit_code == 2
        mock_run_pull.assert_not_called()

    def test_stage_failure_exit_code(self, config_file, mock_run_pull):
        """A failed dump exits with the dump failure code."""
        error = DumpFailedError("Failed to dump production database", return_code=255, stage="dump")
        mock_run_pull.return_value = PullResult(
            state=PipelineState.FAILED, failed_stage="dump", error=error
        )

        result = runner.invoke(app, ["pull", "--config", str(config_file)])

        assert result.exit_code == 13
        assert "stage: dump" in result.output

    def test_refused_in_production(self, config_file, mock_run_pull):
        mock_run_pull.side_effect = SafetyError(
            "Refusing to run in production.", required_flags=["--force"]
        )

        result = runner.invoke(app, ["pull", "--config", str(config_file)])

        assert result.exit_code == 4

    def test_missing_configuration(self, tmp_path):
        """Real validation runs before anything is spawned."""
        path = tmp_path / "partial.yaml"
        path.write_text("remote:\n  database: app_prod\n")

        with patch("dbpull.services.jobs.CommandExecutor") as executor:
            result = runner.invoke(app, ["pull", "--config", str(path)])

        assert result.exit_code == 2
        assert "PRODUCTION_SSH_HOST" in result.output
        executor.assert_not_called()

    def test_background_success(self, config_file, mock_queue, mock_run_pull):
        result = runner.invoke(app, ["pull", "--config", str(config_file), "--background"])

        assert result.exit_code == 0, result.output
        mock_queue.enqueue.assert_called_once()
        assert mock_queue.enqueue.call_args.kwargs["timeout"] is None
        mock_run_pull.assert_not_called()

    def test_background_failure(self, config_file, mock_queue):
        mock_queue.enqueue.return_value.result.side_effect = ImportFailedError(
            "Failed to import into local database", stage="import"
        )

        result = runner.invoke(app, ["pull", "--config", str(config_file), "--background"])

        assert result.exit_code == 14


class TestConfigCommands:
    """Tests for `dbpull config`."""

    def test_example(self):
        result = runner.invoke(app, ["config", "example"])

        assert result.exit_code == 0
        assert "PRODUCTION_DB_PASSWORD" in result.output

    def test_init(self, tmp_path):
        path = tmp_path / "new.yaml"

        result = runner.invoke(app, ["config", "init", "--config", str(path)])

        assert result.exit_code == 0
        assert path.read_text() == get_example_config()

        again = runner.invoke(app, ["config", "init", "--config", str(path)])
        assert again.exit_code == 2
        assert "already exists" in again.output

        forced = runner.invoke(app, ["config", "init", "--config", str(path), "--force"])
        assert forced.exit_code == 0

    def test_validate(self, config_file):
        result = runner.invoke(app, ["config", "validate", "--config", str(config_file)])

        assert result.exit_code == 0, result.output

    def test_validate_reports_missing(self, tmp_path):
        path = tmp_path / "dbpull.yaml"
        path.write_text("local:\n  driver: mysql\n")

        result = runner.invoke(app, ["config", "validate", "--config", str(path)])

        assert result.exit_code == 2
        assert "Missing required configuration" in result.output

    def test_show_hides_passwords(self, config_file):
        result = runner.invoke(app, ["config", "show", "--config", str(config_file)])

        assert result.exit_code == 0
        assert "s3cret" not in result.output
