"""The config subcommands: show, init, validate and example."""

from dbpull.core.config import AppConfig, get_example_config, init_config
from dbpull.core.context import ExecutionContext
from dbpull.services.connections import resolve_connections


def show_config(ctx: ExecutionContext) -> None:
    """Print the effective configuration with passwords hidden."""
    app_config = ctx.config
    path = ctx.config_path
    status = "found" if path.exists() else "not found, using defaults"

    ctx.console.print()
    ctx.console.print(f"[bold]Config file:[/bold] {path} ({status})")
    ctx.console.print()
    ctx.console.yaml(app_config.config.to_yaml(), title="Effective configuration")
    ctx.console.summary("Passwords", {
        "PRODUCTION_DB_PASSWORD": "Set" if app_config.remote.password else "Not set",
        "DB_PASSWORD": "Set" if app_config.local.password else "Not set",
    })


def create_config(ctx: ExecutionContext, force: bool) -> None:
    """Write the commented example file to the config path.

    Raises:
        ConfigurationError: If the file exists and force is False
    """
    init_config(ctx.config_path, force=force)
    ctx.console.success(f"Wrote {ctx.config_path}")
    ctx.console.info("Point it at your production host, then run: dbpull pull")
    ctx.console.hint("Keep passwords in PRODUCTION_DB_PASSWORD and DB_PASSWORD")


def validate_config(ctx: ExecutionContext) -> None:
    """Check that a pull could start with the current settings.

    Raises:
        ConfigurationError: If the file is invalid or settings are missing
    """
    app_config = AppConfig(config_path=ctx.config_path)
    connections = resolve_connections(app_config.local, app_config.remote, app_config.ssh)

    ctx.console.success(f"Configuration is valid: {ctx.config_path}")
    ctx.console.verbose(
        f"{connections.shell.destination}:{connections.remote.database} -> "
        f"{connections.local.host}:{connections.local.database}"
    )
    if ctx.is_verbose:
        ctx.console.yaml(app_config.config.to_yaml())

    if app_config.is_production:
        ctx.console.warn("Environment is production; pulls require --force")
    if app_config.timeout == 0:
        ctx.console.warn("timeout is 0; interactive pulls will never time out")


def print_example(ctx: ExecutionContext) -> None:
    ctx.console.print(get_example_config(), markup=False)
