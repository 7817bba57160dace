"""Console output for dbpull, built on Rich.

Every message goes through a level that fixes its label, colour, stream
and the verbosity it needs. Warnings and errors go to stderr so stdout
stays usable when piped.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.syntax import Syntax


class Verbosity(IntEnum):
    """Output verbosity levels."""
    QUIET = 0    # Errors only
    NORMAL = 1
    VERBOSE = 2  # -v
    DEBUG = 3    # -vv, shows every command line


@dataclass(frozen=True)
class _Level:
    label: str
    style: str
    minimum: Verbosity
    stderr: bool = False

    def render(self, message: str) -> str:
        if not self.label:
            return f"[{self.style}]{message}[/{self.style}]"
        return f"[{self.style}]{self.label}[/{self.style}] {message}"


_LEVELS = {
    "info": _Level("[INFO]", "green", Verbosity.NORMAL),
    "success": _Level("[OK]", "green", Verbosity.NORMAL),
    "step": _Level("->", "blue", Verbosity.NORMAL),
    "verbose": _Level("", "dim", Verbosity.VERBOSE),
    "debug": _Level("[DEBUG]", "cyan", Verbosity.DEBUG),
    "hint": _Level("Hint:", "cyan", Verbosity.QUIET),
    "warn": _Level("[WARN]", "yellow", Verbosity.QUIET, stderr=True),
    "error": _Level("[ERROR]", "red", Verbosity.QUIET, stderr=True),
}


class Console:
    """Process-wide console, configured once by the CLI.

    Background workers write through the same instance; Rich serializes
    the writes.
    """

    def __init__(self) -> None:
        self.verbosity = Verbosity.NORMAL
        self.no_color = False
        self._out, self._err = self._rich_consoles(no_color=False)

    @staticmethod
    def _rich_consoles(no_color: bool) -> tuple[RichConsole, RichConsole]:
        return (
            RichConsole(highlight=False, no_color=no_color),
            RichConsole(stderr=True, highlight=False, no_color=no_color),
        )

    def configure(self, verbosity: int = Verbosity.NORMAL, no_color: bool = False) -> None:
        """Apply --verbose/--quiet and --no-color."""
        self.verbosity = Verbosity(max(Verbosity.QUIET, min(verbosity, Verbosity.DEBUG)))
        if no_color != self.no_color:
            self.no_color = no_color
            self._out, self._err = self._rich_consoles(no_color)

    def _emit(self, level: str, message: str) -> None:
        lvl = _LEVELS[level]
        if self.verbosity < lvl.minimum:
            return
        (self._err if lvl.stderr else self._out).print(lvl.render(message))

    def info(self, message: str) -> None:
        self._emit("info", message)

    def success(self, message: str) -> None:
        self._emit("success", message)

    def step(self, message: str) -> None:
        self._emit("step", message)

    def verbose(self, message: str) -> None:
        """Shown with -v and above."""
        self._emit("verbose", message)

    def debug(self, message: str) -> None:
        """Shown with -vv only."""
        self._emit("debug", message)

    def hint(self, message: str) -> None:
        self._emit("hint", message)

    def warn(self, message: str) -> None:
        self._emit("warn", message)

    def error(self, message: str) -> None:
        self._emit("error", message)

    def print(self, message: Any = "", **kwargs: Any) -> None:
        """Print markup or any Rich renderable as is."""
        self._out.print(message, **kwargs)

    def yaml(self, yaml_text: str, title: str = "Configuration") -> None:
        syntax = Syntax(yaml_text, "yaml", theme="monokai", line_numbers=False)
        self._out.print(Panel(syntax, title=title, border_style="cyan"))

    def _panel(self, title: str, items: dict[str, Any], border: str) -> None:
        lines = []
        for key, value in items.items():
            if isinstance(value, bool):
                value = "[green]Yes[/green]" if value else "[red]No[/red]"
            lines.append(f"[bold]{key}:[/bold] {value}")
        self._out.print(Panel("\n".join(lines), title=title, border_style=border))

    def summary(self, title: str, items: dict[str, Any]) -> None:
        """Key/value panel."""
        self._panel(title, items, "blue")

    def operation_summary(self, operation: str, success: bool, details: dict[str, Any]) -> None:
        """Result panel for a finished operation, green or red."""
        status = "[green]SUCCESS[/green]" if success else "[red]FAILED[/red]"
        self._panel(f"{operation} - {status}", details, "green" if success else "red")

    def progress(self) -> Progress:
        """Percentage bar for a pull; hidden in quiet mode."""
        return Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=self._out,
            disable=self.verbosity <= Verbosity.QUIET,
        )


console = Console()
