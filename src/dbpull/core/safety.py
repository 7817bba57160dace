"""Safety framework for preventing dangerous pulls.

Provides:
- Production environment detection
- The production gate (refuse unless --force)
- An advisory lock so two pulls never replace the same database at once
"""

import fcntl
import os
from pathlib import Path
from typing import IO, Optional

from dbpull.core.exceptions import SafetyError


class ProductionDetector:
    """Detects if the local environment is flagged as production.

    Signals are the configured environment name and the ``APP_ENV`` and
    ``ENVIRONMENT`` variables. Hostnames and other frameworks' variables
    (``NODE_ENV``, ``RAILS_ENV``) are ignored.
    """

    PRODUCTION_NAMES = frozenset({"production", "prod", "prd", "live"})

    PRODUCTION_ENV_VARS = ("APP_ENV", "ENVIRONMENT")

    def __init__(self, environment: Optional[str] = None) -> None:
        self.environment = environment
        self._is_production: Optional[bool] = None
        self._detection_reasons: list[str] = []

    def is_production(self) -> bool:
        """Detect if this is a production environment."""
        if self._is_production is not None:
            return self._is_production

        self._detection_reasons = []

        if self.environment and self.environment.lower() in self.PRODUCTION_NAMES:
            self._detection_reasons.append(f"Configured environment is '{self.environment}'")

        for var in self.PRODUCTION_ENV_VARS:
            env_val = os.environ.get(var, "").lower()
            if env_val in self.PRODUCTION_NAMES:
                self._detection_reasons.append(f"Environment variable {var}={env_val}")

        self._is_production = len(self._detection_reasons) > 0
        return self._is_production

    def get_reasons(self) -> list[str]:
        """Return reasons why production was detected."""
        if self._is_production is None:
            self.is_production()
        return self._detection_reasons.copy()


def check_production_gate(detector: ProductionDetector, force: bool) -> None:
    """Refuse to replace a production database unless forced.

    Raises:
        SafetyError: If production is detected and force is False
    """
    if force or not detector.is_production():
        return

    raise SafetyError(
        "Refusing to run in production.",
        blocked_operation="pull",
        required_flags=["--force"],
        details=detector.get_reasons(),
    )


class PullLock:
    """Advisory, non-blocking lock around one pull.

    Usage:
        with PullLock(backup_dir / ".dbpull.lock"):
            pipeline.execute()
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._file: Optional[IO[str]] = None

    def acquire(self) -> None:
        """Take the lock.

        Raises:
            SafetyError: If another pull holds it
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        f = open(self.path, "a+")
        try:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            f.close()
            raise SafetyError(
                "Another pull is already running against this database.",
                blocked_operation="pull",
                hint=f"Wait for it to finish (lock file: {self.path})",
            )

        f.seek(0)
        f.truncate()
        f.write(str(os.getpid()))
        f.flush()
        self._file = f

    def release(self) -> None:
        """Release the lock if held."""
        if self._file is None:
            return
        fcntl.flock(self._file.fileno(), fcntl.LOCK_UN)
        self._file.close()
        self._file = None

    @property
    def held(self) -> bool:
        return self._file is not None

    def __enter__(self) -> "PullLock":
        self.acquire()
        return self

    def __exit__(self, *exc: object) -> None:
        self.release()
