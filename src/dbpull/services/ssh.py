"""Command line construction for ssh and the MySQL clients.

Local clients get the password through MYSQL_PWD. Remote commands read the
database password from stdin instead of taking it as an argument, so it
never shows up in a process listing on either host.
"""

import shlex

from dbpull.services.connections import DatabaseEndpoint, ShellEndpoint


def build_ssh_command(shell: ShellEndpoint, remote_command: str) -> list[str]:
    """Build the ssh argv that runs remote_command on the production host."""
    return [
        "ssh",
        "-o", "StrictHostKeyChecking=no",
        "-o", "BatchMode=yes",
        "-p", str(shell.port),
        "-i", shell.key_path,
        shell.destination,
        remote_command,
    ]


def with_password_from_stdin(argv: list[str]) -> str:
    """Wrap a remote argv so it picks MYSQL_PWD up from the first stdin line."""
    return f"IFS= read -r MYSQL_PWD && export MYSQL_PWD && exec {shlex.join(argv)}"


def password_input(endpoint: DatabaseEndpoint) -> str:
    """The stdin payload matching with_password_from_stdin()."""
    return endpoint.password + "\n"


def mysql_client_args(endpoint: DatabaseEndpoint) -> list[str]:
    """Connection flags shared by mysql and mysqldump (no password)."""
    return [
        "-h", endpoint.host,
        "-P", str(endpoint.port),
        "-u", endpoint.username,
    ]


def mysql_env(endpoint: DatabaseEndpoint) -> dict[str, str]:
    """Environment carrying the password for local mysql clients."""
    return {"MYSQL_PWD": endpoint.password}
