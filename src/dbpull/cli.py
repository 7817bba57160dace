"""Typer application for dbpull.

Commands stay thin: they build an ExecutionContext, call into
``dbpull.commands`` and turn a DbPullError into its exit code.
"""

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console

from dbpull import __version__
from dbpull.core.config import DEFAULT_CONFIG_PATH
from dbpull.core.context import ExecutionContext, create_context
from dbpull.core.exceptions import DbPullError
from dbpull.core.output import console


app = typer.Typer(
    name="dbpull",
    help="Pull the production MySQL database into the local one.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
)

config_app = typer.Typer(
    name="config",
    help="Inspect and create the dbpull configuration file.",
    no_args_is_help=True,
)
app.add_typer(config_app, name="config")


# Options shared by several commands
ForceOption = Annotated[
    bool,
    typer.Option(
        "--force",
        "-f",
        help="Pull even when this machine looks like production. With config init: overwrite.",
        is_flag=True,
    ),
]

VerboseOption = Annotated[
    int,
    typer.Option(
        "--verbose",
        "-v",
        count=True,
        help="More output; -vv also prints every command run.",
    ),
]

QuietOption = Annotated[
    bool,
    typer.Option("--quiet", "-q", help="Only print errors.", is_flag=True),
]

NoColorOption = Annotated[
    bool,
    typer.Option("--no-color", help="Plain output without colors.", is_flag=True),
]

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help=f"YAML configuration file (default: {DEFAULT_CONFIG_PATH}).",
        dir_okay=False,
    ),
]


def version_callback(value: bool) -> None:
    if value:
        Console().print(f"dbpull version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Print the version and exit.",
        ),
    ] = False,
) -> None:
    """Pull the production MySQL database into the local one.

    Backs up the local database, dumps production over SSH with a
    consistent non-locking read, and imports the dump locally.

    [bold]Examples:[/bold]
        dbpull pull
        dbpull pull --no-backup
        dbpull pull --background --timeout 0
        dbpull config validate
    """


def handle_error(error: DbPullError) -> None:
    """Print error, its details and hint, then exit with its code."""
    where = f" (stage: {error.stage})" if error.stage else ""
    console.error(f"{error.message}{where}")
    for detail in error.details:
        console.print(f"  [dim]{detail}[/dim]")
    if error.hint:
        console.hint(error.hint)
    raise typer.Exit(error.exit_code)


@app.command("pull")
def pull_cmd(
    no_backup: Annotated[
        bool,
        typer.Option("--no-backup", help="Skip the local backup before importing.", is_flag=True),
    ] = False,
    background: Annotated[
        bool,
        typer.Option(
            "--background",
            help="Run on the background job queue (uses job_timeout).",
            is_flag=True,
        ),
    ] = False,
    timeout: Annotated[
        Optional[int],
        typer.Option(
            "--timeout",
            "-t",
            help="Seconds allowed per process, 0 for no limit. Overrides the config.",
            min=0,
        ),
    ] = None,
    force: ForceOption = False,
    verbose: VerboseOption = 0,
    quiet: QuietOption = False,
    config: ConfigOption = None,
    no_color: NoColorOption = False,
) -> None:
    """Replace the local database with a copy of production.

    Steps:
    - Back up the local database to the backup directory
    - Dump production over SSH (single transaction, no table locks)
    - Import the dump into the local database

    [bold]Examples:[/bold]

        # Full pull with a local backup first
        dbpull pull

        # Skip the local backup
        dbpull pull --no-backup

        # Pull through the background queue without a time limit
        dbpull pull --background --timeout 0
    """
    from dbpull.commands.pull import run_pull_command

    ctx = create_context(
        force=force, verbose=verbose, quiet=quiet, no_color=no_color, config=config
    )
    try:
        run_pull_command(ctx, skip_backup=no_backup, background=background, timeout=timeout)
    except DbPullError as e:
        handle_error(e)


def _run_config_command(ctx: ExecutionContext, action, *args) -> None:
    try:
        action(ctx, *args)
    except DbPullError as e:
        handle_error(e)


@config_app.command("show")
def config_show(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Show the effective configuration (file plus environment), passwords hidden."""
    from dbpull.commands.config import show_config

    ctx = create_context(verbose=verbose, no_color=no_color, config=config)
    _run_config_command(ctx, show_config)


@config_app.command("init")
def config_init(
    config: ConfigOption = None,
    force: ForceOption = False,
    no_color: NoColorOption = False,
) -> None:
    """Write a commented example configuration file."""
    from dbpull.commands.config import create_config

    ctx = create_context(no_color=no_color, config=config)
    _run_config_command(ctx, create_config, force)


@config_app.command("validate")
def config_validate(
    config: ConfigOption = None,
    verbose: VerboseOption = 0,
    no_color: NoColorOption = False,
) -> None:
    """Check that every setting a pull needs is present and valid."""
    from dbpull.commands.config import validate_config

    ctx = create_context(verbose=verbose, no_color=no_color, config=config)
    _run_config_command(ctx, validate_config)


@config_app.command("example")
def config_example(no_color: NoColorOption = False) -> None:
    """Print an example configuration file."""
    from dbpull.commands.config import print_example

    _run_config_command(create_context(no_color=no_color), print_example)


if __name__ == "__main__":
    app()
