"""Unit tests for endpoint resolution and command construction."""

import shlex

import pytest

from dbpull.core.config import LocalDatabaseConfig, RemoteDatabaseConfig, SshConfig
from dbpull.core.exceptions import ConfigurationError
from dbpull.services.connections import (
    DatabaseEndpoint,
    ShellEndpoint,
    find_missing_fields,
    resolve_connections,
)
from dbpull.services.ssh import (
    build_ssh_command,
    mysql_client_args,
    mysql_env,
    password_input,
    with_password_from_stdin,
)


def complete_sections():
    return (
        LocalDatabaseConfig(database="app_local"),
        RemoteDatabaseConfig(database="app_prod", username="forge", password="s3cret"),
        SshConfig(host="prod.example.com", key_path="/keys/id_ed25519"),
    )


class TestResolveConnections:
    """Tests for resolve_connections()."""

    def test_complete_config(self):
        local, remote, ssh = complete_sections()

        result = resolve_connections(local, remote, ssh)

        assert result.local.database == "app_local"
        assert result.local.username == "root"
        assert result.remote.password == "s3cret"
        assert result.shell.destination == "forge@prod.example.com"
        assert result.shell.port == 22

    def test_defaults(self):
        """Hosts and ports fall back to the usual defaults."""
        local, remote, ssh = complete_sections()

        result = resolve_connections(local, remote, ssh)

        assert (result.remote.host, result.remote.port) == ("127.0.0.1", 3306)
        assert (result.local.host, result.local.port) == ("127.0.0.1", 3306)
        assert result.local.password == ""

    def test_expands_key_path(self, monkeypatch):
        monkeypatch.setenv("HOME", "/home/dev")
        local, remote, _ = complete_sections()

        result = resolve_connections(
            local, remote, SshConfig(host="prod.example.com", key_path="~/.ssh/id_rsa")
        )

        assert result.shell.key_path == "/home/dev/.ssh/id_rsa"

    def test_reports_all_missing_fields_at_once(self):
        """Empty ssh host, key path and local database are named together."""
        with pytest.raises(ConfigurationError) as exc:
            resolve_connections(
                LocalDatabaseConfig(database=None),
                RemoteDatabaseConfig(database="app_prod", username="forge", password="s3cret"),
                SshConfig(host=None, key_path=""),
            )

        error = exc.value
        assert error.missing_fields == [
            "PRODUCTION_SSH_HOST",
            "PRODUCTION_SSH_KEY_PATH",
            "DB_DATABASE (local)",
        ]
        assert error.message == (
            "Missing required configuration: "
            "PRODUCTION_SSH_HOST, PRODUCTION_SSH_KEY_PATH, DB_DATABASE (local)"
        )
        assert error.exit_code == 2

    def test_everything_missing(self):
        missing = find_missing_fields(
            LocalDatabaseConfig(),
            RemoteDatabaseConfig(username=None),
            SshConfig(),
        )
        assert missing == [
            "PRODUCTION_SSH_HOST",
            "PRODUCTION_SSH_KEY_PATH",
            "PRODUCTION_DB_DATABASE",
            "PRODUCTION_DB_USERNAME",
            "PRODUCTION_DB_PASSWORD",
            "DB_DATABASE (local)",
        ]

    def test_rejects_other_drivers(self):
        """Only MySQL can be the local database."""
        _, remote, ssh = complete_sections()

        with pytest.raises(ConfigurationError) as exc:
            resolve_connections(LocalDatabaseConfig(driver="pgsql", database="x"), remote, ssh)

        assert exc.value.message == "Local database connection must be MySQL."

    def test_driver_error_still_lists_missing(self):
        _, remote, _ = complete_sections()

        with pytest.raises(ConfigurationError) as exc:
            resolve_connections(LocalDatabaseConfig(driver="sqlite"), remote, SshConfig())

        assert "PRODUCTION_SSH_HOST" in exc.value.missing_fields
        assert "DB_DATABASE (local)" in exc.value.missing_fields

    def test_driver_is_case_insensitive(self):
        _, remote, ssh = complete_sections()
        result = resolve_connections(LocalDatabaseConfig(driver="MySQL", database="x"), remote, ssh)
        assert result.local.database == "x"

    def test_rejects_shell_metacharacters_in_host(self):
        local, remote, _ = complete_sections()

        with pytest.raises(ConfigurationError, match="Invalid configuration"):
            resolve_connections(
                local, remote, SshConfig(host="prod;rm -rf /", key_path="/keys/id")
            )

    def test_ipv6_hosts(self):
        _, remote, ssh = complete_sections()

        result = resolve_connections(
            LocalDatabaseConfig(host="::1", database="app_local"), remote, ssh
        )

        assert result.local.host == "::1"

    def test_endpoint_repr_hides_password(self):
        endpoint = DatabaseEndpoint("h", 3306, "u", "topsecret", "db")
        assert "topsecret" not in repr(endpoint)


class TestSshCommands:
    """Tests for ssh and mysql command construction."""

    def test_ssh_flags(self):
        shell = ShellEndpoint("prod.example.com", 2222, "deploy", "/keys/id")

        argv = build_ssh_command(shell, "uptime")

        assert argv == [
            "ssh",
            "-o", "StrictHostKeyChecking=no",
            "-o", "BatchMode=yes",
            "-p", "2222",
            "-i", "/keys/id",
            "deploy@prod.example.com",
            "uptime",
        ]

    def test_password_read_from_stdin(self):
        """The remote command never carries the password itself."""
        endpoint = DatabaseEndpoint("127.0.0.1", 3306, "forge", "p@ss word", "app_prod")
        argv = ["mysqldump", *mysql_client_args(endpoint), "app_prod"]

        remote = with_password_from_stdin(argv)

        assert remote.startswith("IFS= read -r MYSQL_PWD && export MYSQL_PWD && exec ")
        assert "p@ss word" not in remote
        assert shlex.split(remote.split("exec ", 1)[1]) == argv
        assert password_input(endpoint) == "p@ss word\n"

    def test_client_args_and_env(self):
        endpoint = DatabaseEndpoint("db.local", 3307, "root", "pw", "app")
        assert mysql_client_args(endpoint) == ["-h", "db.local", "-P", "3307", "-u", "root"]
        assert mysql_env(endpoint) == {"MYSQL_PWD": "pw"}
