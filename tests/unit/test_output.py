"""Unit tests for console levels and the CLI execution context."""

from pathlib import Path

from dbpull.core.context import create_context
from dbpull.core.output import Console, Verbosity


class TestConsole:
    """Tests for Console verbosity handling."""

    def test_normal_hides_verbose_and_debug(self, capsys):
        out = Console()

        out.info("pulling")
        out.verbose("details")
        out.debug("Running: mysqldump")

        captured = capsys.readouterr().out
        assert "[INFO] pulling" in captured
        assert "details" not in captured
        assert "mysqldump" not in captured

    def test_debug_shows_everything(self, capsys):
        out = Console()
        out.configure(verbosity=Verbosity.DEBUG)

        out.verbose("details")
        out.debug("Running: mysqldump")

        captured = capsys.readouterr().out
        assert "details" in captured
        assert "[DEBUG] Running: mysqldump" in captured

    def test_quiet_keeps_errors_on_stderr(self, capsys):
        out = Console()
        out.configure(verbosity=Verbosity.QUIET, no_color=True)

        out.success("done")
        out.error("Failed to dump production database")

        captured = capsys.readouterr()
        assert captured.out == ""
        assert "[ERROR] Failed to dump production database" in captured.err

    def test_verbosity_is_clamped(self):
        out = Console()
        out.configure(verbosity=7)
        assert out.verbosity is Verbosity.DEBUG


class TestCreateContext:
    """Tests for create_context()."""

    def test_verbose_flags(self):
        assert create_context(verbose=1).verbosity == Verbosity.VERBOSE
        assert create_context(verbose=5).verbosity == Verbosity.DEBUG
        assert create_context().verbosity == Verbosity.NORMAL

    def test_quiet_wins(self):
        ctx = create_context(verbose=2, quiet=True)
        assert ctx.verbosity == Verbosity.QUIET
        assert not ctx.is_verbose
        create_context()

    def test_config_path(self, tmp_path):
        ctx = create_context(config=tmp_path / "x.yaml", force=True)
        assert ctx.config_path == tmp_path / "x.yaml"
        assert ctx.force
        assert create_context().config_path == Path("dbpull.yaml")
