"""Endpoint resolution and validation.

Turns the raw configuration sections into validated, immutable endpoint
descriptors. Pure: nothing here touches the network or spawns a process,
and it must succeed before anything else in a pull does.
"""

import os
from dataclasses import dataclass

from dbpull.core.config import (
    SUPPORTED_DRIVER,
    LocalDatabaseConfig,
    RemoteDatabaseConfig,
    SshConfig,
)
from dbpull.core.exceptions import ConfigurationError, ValidationError
from dbpull.core.validation import Validator


@dataclass(frozen=True)
class DatabaseEndpoint:
    """A MySQL server and schema reachable with a username/password."""

    host: str
    port: int
    username: str
    password: str
    database: str

    def __repr__(self) -> str:
        return (
            f"DatabaseEndpoint(host={self.host!r}, port={self.port}, "
            f"username={self.username!r}, database={self.database!r})"
        )


@dataclass(frozen=True)
class ShellEndpoint:
    """SSH access to the production host."""

    host: str
    port: int
    user: str
    key_path: str

    @property
    def destination(self) -> str:
        return f"{self.user}@{self.host}"


@dataclass(frozen=True)
class ConnectionSet:
    """The three endpoints a pull needs."""

    local: DatabaseEndpoint
    remote: DatabaseEndpoint
    shell: ShellEndpoint


def find_missing_fields(
    local: LocalDatabaseConfig,
    remote: RemoteDatabaseConfig,
    ssh: SshConfig,
) -> list[str]:
    """List every required setting that is empty, by its variable name."""
    required = [
        (ssh.host, "PRODUCTION_SSH_HOST"),
        (ssh.key_path, "PRODUCTION_SSH_KEY_PATH"),
        (remote.database, "PRODUCTION_DB_DATABASE"),
        (remote.username, "PRODUCTION_DB_USERNAME"),
        (remote.password, "PRODUCTION_DB_PASSWORD"),
        (local.database, "DB_DATABASE (local)"),
    ]
    return [name for value, name in required if not value]


def resolve_connections(
    local: LocalDatabaseConfig,
    remote: RemoteDatabaseConfig,
    ssh: SshConfig,
) -> ConnectionSet:
    """Validate raw endpoint settings and build the connection set.

    Every missing field is reported in a single error. A local driver other
    than MySQL is rejected outright.

    Raises:
        ConfigurationError: If anything is missing or unsupported
    """
    missing = find_missing_fields(local, remote, ssh)

    if (local.driver or "").lower() != SUPPORTED_DRIVER:
        raise ConfigurationError(
            "Local database connection must be MySQL.",
            missing_fields=missing,
            details=[f"Configured driver: {local.driver or '(none)'}"]
            + ([f"Also missing: {', '.join(missing)}"] if missing else []),
            hint="Set DB_CONNECTION=mysql or local.driver in the config file",
        )

    if missing:
        raise ConfigurationError(
            f"Missing required configuration: {', '.join(missing)}",
            missing_fields=missing,
            hint="Set them in dbpull.yaml or the environment (see: dbpull config example)",
        )

    try:
        ssh_host = Validator(ssh.host).hostname().get()
        key_path = Validator(os.path.expanduser(ssh.key_path)).path().get()
        Validator(remote.host).hostname()
        Validator(local.host).hostname()
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid configuration: {e.message}",
            hint=e.hint,
        ) from e

    return ConnectionSet(
        local=DatabaseEndpoint(
            host=local.host or "127.0.0.1",
            port=local.port or 3306,
            username=local.username or "",
            password=local.password or "",
            database=local.database,
        ),
        remote=DatabaseEndpoint(
            host=remote.host or "127.0.0.1",
            port=remote.port or 3306,
            username=remote.username,
            password=remote.password,
            database=remote.database,
        ),
        shell=ShellEndpoint(
            host=ssh_host,
            port=ssh.port or 22,
            user=ssh.user or "forge",
            key_path=key_path,
        ),
    )
