"""Checks for values that end up on an ssh or mysql command line.

Each check returns the value unchanged or raises ValidationError.
"""

import ipaddress
import re
from typing import Optional

from dbpull.core.exceptions import ValidationError


HOSTNAME_PATTERN = re.compile(r"^[A-Za-z0-9]([A-Za-z0-9.\-_:]*[A-Za-z0-9])?$")

# Characters the shell would interpret inside a key path
SHELL_METACHARACTERS = {
    "$": "variable expansion",
    "`": "command substitution",
    "|": "pipe",
    ";": "command separator",
    "&": "background or AND",
    "\n": "newline",
    "\r": "carriage return",
    "\x00": "null byte",
}


def validate_port(value: int) -> int:
    """TCP port between 1 and 65535."""
    if value < 1 or value > 65535:
        raise ValidationError(
            f"Invalid port number: {value}",
            hint="Use a port between 1 and 65535",
        )
    return value


def validate_hostname(value: str) -> str:
    """Plain hostname or IPv4/IPv6 address; no options, spaces or shell syntax."""
    try:
        ipaddress.ip_address(value)
    except ValueError:
        if not HOSTNAME_PATTERN.match(value):
            raise ValidationError(
                f"Invalid host: {value}",
                hint="Use a plain hostname or IP address",
            ) from None
    return value


def validate_timeout(value: int) -> int:
    """Timeout in seconds. Zero means unlimited."""
    if value < 0:
        raise ValidationError(
            f"Invalid timeout: {value}",
            hint="Use a number of seconds, or 0 for no timeout",
        )
    return value


def validate_path(value: str, must_be_absolute: bool = False) -> str:
    """File path free of shell metacharacters.

    Raises:
        ValidationError: On a metacharacter, or a relative path when
            must_be_absolute is set
    """
    for char, meaning in SHELL_METACHARACTERS.items():
        if char in value:
            raise ValidationError(
                f"Path contains dangerous pattern: {char!r} ({meaning})",
                hint="Use a simple path without special characters",
            )

    if must_be_absolute and not value.startswith("/"):
        raise ValidationError(
            f"Path must be absolute: {value}",
            hint=f"Use /{value}",
        )
    return value


class Validator:
    """Chainable checks on an optional string.

    Checks other than required() pass empty values through untouched.

    Example:
        host = Validator(ssh.host).required("Host is required").hostname().get()
    """

    def __init__(self, value: Optional[str]) -> None:
        self._value = value

    def required(self, message: str = "Value is required") -> "Validator":
        if not self._value:
            raise ValidationError(message)
        return self

    def hostname(self) -> "Validator":
        if self._value:
            validate_hostname(self._value)
        return self

    def path(self, must_be_absolute: bool = False) -> "Validator":
        if self._value:
            validate_path(self._value, must_be_absolute=must_be_absolute)
        return self

    def get(self) -> Optional[str]:
        return self._value
