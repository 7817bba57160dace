"""Per-invocation state shared by the CLI commands.

Holds the command line flags and loads the configuration on first use, so
commands that never touch it (``config example``) work without a file.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dbpull.core.config import DEFAULT_CONFIG_PATH, AppConfig
from dbpull.core.output import Console, Verbosity, console


@dataclass
class ExecutionContext:
    """Flags of one CLI invocation.

    Attributes:
        force: Run even when the local environment is production
        verbosity: Console verbosity for this run
        no_color: Plain output
        config_path: YAML file to load
    """

    force: bool = False
    verbosity: Verbosity = Verbosity.NORMAL
    no_color: bool = False
    config_path: Path = DEFAULT_CONFIG_PATH
    _config: Optional[AppConfig] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        console.configure(verbosity=self.verbosity, no_color=self.no_color)

    @property
    def console(self) -> Console:
        return console

    @property
    def config(self) -> AppConfig:
        """File values plus environment overrides, read once."""
        if self._config is None:
            self._config = AppConfig(config_path=self.config_path)
        return self._config

    @property
    def is_verbose(self) -> bool:
        return self.verbosity >= Verbosity.VERBOSE


def create_context(
    force: bool = False,
    verbose: int = 0,
    quiet: bool = False,
    no_color: bool = False,
    config: Optional[Path] = None,
) -> ExecutionContext:
    """Build the context from CLI options. ``--quiet`` beats any ``-v``."""
    if quiet:
        verbosity = Verbosity.QUIET
    else:
        verbosity = Verbosity(min(Verbosity.NORMAL + verbose, Verbosity.DEBUG))

    return ExecutionContext(
        force=force,
        verbosity=verbosity,
        no_color=no_color,
        config_path=config or DEFAULT_CONFIG_PATH,
    )
