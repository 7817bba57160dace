"""Approximate schema size lookups.

The size is only a progress denominator. Any failure yields 0, which the
stages treat as "unknown" and fall back to stage-level progress.
"""

from typing import Optional

from dbpull.core.exceptions import DbPullError
from dbpull.core.executor import CommandExecutor
from dbpull.services.connections import DatabaseEndpoint, ShellEndpoint
from dbpull.services.ssh import (
    build_ssh_command,
    mysql_client_args,
    mysql_env,
    password_input,
    with_password_from_stdin,
)


# Bounded on its own so a slow catalog query cannot stall a pull
SIZE_QUERY_TIMEOUT = 60


def size_query(schema: str) -> str:
    """Sum of data and index bytes for every table in schema."""
    safe_schema = schema.replace("'", "''")
    return (
        "SELECT COALESCE(SUM(data_length + index_length), 0) "
        "FROM information_schema.tables "
        f"WHERE table_schema = '{safe_schema}'"
    )


class SizeEstimator:
    """Ask a MySQL server how large a schema is on disk."""

    def __init__(
        self,
        executor: CommandExecutor,
        timeout: float = SIZE_QUERY_TIMEOUT,
    ) -> None:
        self.executor = executor
        self.timeout = timeout

    def estimate_size_bytes(
        self,
        endpoint: DatabaseEndpoint,
        schema: Optional[str] = None,
        via_shell: Optional[ShellEndpoint] = None,
    ) -> int:
        """Return the approximate size of schema in bytes, or 0 if unknown.

        Args:
            endpoint: Server to query
            schema: Schema name (defaults to the endpoint's database)
            via_shell: Run the query on this host over SSH

        Returns:
            Size in bytes; 0 when the query fails or returns nothing
        """
        argv = ["mysql", *mysql_client_args(endpoint), "-N", "-e", size_query(schema or endpoint.database)]

        try:
            if via_shell is not None:
                result = self.executor.run(
                    build_ssh_command(via_shell, with_password_from_stdin(argv)),
                    description=f"Estimate size of remote schema {schema or endpoint.database}",
                    check=False,
                    timeout=self.timeout,
                    input=password_input(endpoint),
                )
            else:
                result = self.executor.run(
                    argv,
                    description=f"Estimate size of local schema {schema or endpoint.database}",
                    check=False,
                    timeout=self.timeout,
                    env=mysql_env(endpoint),
                )
        except DbPullError as e:
            self.executor.console.debug(f"Size estimate unavailable: {e}")
            return 0

        if not result.success:
            self.executor.console.debug(f"Size estimate query failed: {result.stderr.strip()}")
            return 0

        return parse_size(result.stdout)


def parse_size(output: str) -> int:
    """Read the first value of mysql -N output as an integer byte count."""
    lines = output.strip().splitlines()
    if not lines:
        return 0
    try:
        return max(0, int(float(lines[0].strip())))
    except ValueError:
        return 0
