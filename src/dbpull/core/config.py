"""Configuration management using Pydantic.

Provides:
- Typed configuration models with validation
- YAML file loading with defaults
- Environment variable overrides (the usual PRODUCTION_* / DB_* variables)
- Configuration initialization and display

Configuration is read once at the CLI boundary; the pipeline only ever
receives the immutable job context built from it.
"""

import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from dbpull.core.exceptions import ConfigurationError
from dbpull.core.validation import validate_port, validate_timeout


# Default configuration paths
DEFAULT_CONFIG_PATH = Path("dbpull.yaml")
DEFAULT_BACKUP_DIR = Path("storage/app/backups")
DEFAULT_AUDIT_LOG_PATH = Path.home() / ".dbpull" / "audit.log"

SUPPORTED_DRIVER = "mysql"


class SshConfig(BaseModel):
    """Shell access to the production host."""

    host: Optional[str] = None
    user: str = "forge"
    port: int = 22
    key_path: Optional[str] = None

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        return validate_port(v)


class RemoteDatabaseConfig(BaseModel):
    """Production database, as seen from the production host."""

    host: str = "127.0.0.1"
    port: int = 3306
    database: Optional[str] = None
    username: Optional[str] = "forge"
    password: Optional[str] = None

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        return validate_port(v)


class LocalDatabaseConfig(BaseModel):
    """Local database that gets replaced."""

    driver: str = SUPPORTED_DRIVER
    host: str = "127.0.0.1"
    port: int = 3306
    database: Optional[str] = None
    username: Optional[str] = "root"
    password: Optional[str] = ""

    @field_validator("port")
    @classmethod
    def validate_port(cls, v: int) -> int:
        return validate_port(v)


class PullConfig(BaseModel):
    """Root configuration model loaded from dbpull.yaml."""

    # Local environment name; "production" arms the safety gate
    environment: str = "local"

    # Seconds; 0 disables the timeout
    timeout: int = 600
    job_timeout: int = 3600

    backup_dir: Path = DEFAULT_BACKUP_DIR

    ssh: SshConfig = Field(default_factory=SshConfig)
    remote: RemoteDatabaseConfig = Field(default_factory=RemoteDatabaseConfig)
    local: LocalDatabaseConfig = Field(default_factory=LocalDatabaseConfig)

    @field_validator("timeout", "job_timeout")
    @classmethod
    def validate_timeout(cls, v: int) -> int:
        return validate_timeout(v)

    @classmethod
    def load(cls, path: Path) -> "PullConfig":
        """Load configuration from YAML file.

        Args:
            path: Path to configuration file

        Returns:
            Loaded configuration

        Raises:
            ConfigurationError: If file not found or invalid
        """
        if not path.exists():
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                hint="Create it with: dbpull config init",
            )

        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(
                f"Invalid YAML in configuration file: {path}",
                details=[str(e)],
            ) from e
        except PermissionError:
            raise ConfigurationError(
                f"Cannot read configuration file: {path}",
                hint="Check file permissions",
            )

        try:
            return cls(**data)
        except Exception as e:
            raise ConfigurationError(
                f"Invalid configuration: {path}",
                details=[str(e)],
            ) from e

    @classmethod
    def load_or_default(cls, path: Optional[Path] = None) -> "PullConfig":
        """Load configuration, falling back to defaults if file doesn't exist."""
        if path is None:
            path = DEFAULT_CONFIG_PATH

        if path.exists():
            return cls.load(path)
        return cls()

    def to_yaml(self, redact: bool = True) -> str:
        """Convert configuration to YAML string, hiding passwords by default."""
        data = self.model_dump(mode="json", exclude_none=True)
        if redact:
            for section in ("remote", "local"):
                if data.get(section, {}).get("password"):
                    data[section]["password"] = "***"
        return yaml.dump(data, default_flow_style=False, sort_keys=False)


class EnvironmentOverrides(BaseSettings):
    """Values taken from environment variables (or a .env file).

    Any variable that is set wins over the YAML file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    app_env: Optional[str] = Field(None, alias="APP_ENV")
    timeout: Optional[int] = Field(None, alias="DB_PULL_PRODUCTION_TIMEOUT")
    job_timeout: Optional[int] = Field(None, alias="DB_PULL_PRODUCTION_JOB_TIMEOUT")

    ssh_host: Optional[str] = Field(None, alias="PRODUCTION_SSH_HOST")
    ssh_user: Optional[str] = Field(None, alias="PRODUCTION_SSH_USER")
    ssh_port: Optional[int] = Field(None, alias="PRODUCTION_SSH_PORT")
    ssh_key_path: Optional[str] = Field(None, alias="PRODUCTION_SSH_KEY_PATH")

    remote_host: Optional[str] = Field(None, alias="PRODUCTION_DB_HOST")
    remote_port: Optional[int] = Field(None, alias="PRODUCTION_DB_PORT")
    remote_database: Optional[str] = Field(None, alias="PRODUCTION_DB_DATABASE")
    remote_username: Optional[str] = Field(None, alias="PRODUCTION_DB_USERNAME")
    remote_password: Optional[str] = Field(None, alias="PRODUCTION_DB_PASSWORD")

    local_driver: Optional[str] = Field(None, alias="DB_CONNECTION")
    local_host: Optional[str] = Field(None, alias="DB_HOST")
    local_port: Optional[int] = Field(None, alias="DB_PORT")
    local_database: Optional[str] = Field(None, alias="DB_DATABASE")
    local_username: Optional[str] = Field(None, alias="DB_USERNAME")
    local_password: Optional[str] = Field(None, alias="DB_PASSWORD")

    def apply(self, config: PullConfig) -> PullConfig:
        """Return a copy of config with every set variable applied."""
        sections = {
            "ssh": {
                "host": self.ssh_host,
                "user": self.ssh_user,
                "port": self.ssh_port,
                "key_path": self.ssh_key_path,
            },
            "remote": {
                "host": self.remote_host,
                "port": self.remote_port,
                "database": self.remote_database,
                "username": self.remote_username,
                "password": self.remote_password,
            },
            "local": {
                "driver": self.local_driver,
                "host": self.local_host,
                "port": self.local_port,
                "database": self.local_database,
                "username": self.local_username,
                "password": self.local_password,
            },
        }

        data = config.model_dump()
        for section, values in sections.items():
            data[section].update({k: v for k, v in values.items() if v is not None})

        if self.app_env is not None:
            data["environment"] = self.app_env
        if self.timeout is not None:
            data["timeout"] = self.timeout
        if self.job_timeout is not None:
            data["job_timeout"] = self.job_timeout

        try:
            return PullConfig(**data)
        except Exception as e:
            raise ConfigurationError(
                "Invalid configuration from environment variables",
                details=[str(e)],
            ) from e


class AppConfig:
    """Application configuration combining config file and environment.

    This is the read-only structure handed to the invocation surface at job
    start.
    """

    def __init__(
        self,
        config_path: Optional[Path] = None,
        config: Optional[PullConfig] = None,
        use_environment: bool = True,
    ) -> None:
        """Initialize application configuration.

        Args:
            config_path: Path to config file (uses default if None)
            config: Pre-loaded config (skips file loading if provided)
            use_environment: Apply environment variable overrides
        """
        self.config_path = config_path or DEFAULT_CONFIG_PATH
        loaded = config or PullConfig.load_or_default(self.config_path)
        if use_environment:
            loaded = EnvironmentOverrides().apply(loaded)
        self._config = loaded

    @property
    def config(self) -> PullConfig:
        """Get the pull configuration."""
        return self._config

    @property
    def ssh(self) -> SshConfig:
        """Shortcut to SSH config."""
        return self._config.ssh

    @property
    def remote(self) -> RemoteDatabaseConfig:
        """Shortcut to remote database config."""
        return self._config.remote

    @property
    def local(self) -> LocalDatabaseConfig:
        """Shortcut to local database config."""
        return self._config.local

    @property
    def timeout(self) -> int:
        """Per-process timeout for interactive pulls (0 = unlimited)."""
        return self._config.timeout

    @property
    def job_timeout(self) -> int:
        """Per-process timeout for background pulls (0 = unlimited)."""
        return self._config.job_timeout

    @property
    def backup_dir(self) -> Path:
        """Directory that receives local safety backups."""
        return self._config.backup_dir

    @property
    def is_production(self) -> bool:
        """Check if the local environment is flagged as production."""
        return self._config.environment.lower() == "production"


def get_example_config() -> str:
    """Generate example configuration file content."""
    return """# dbpull configuration
# Secrets may also come from environment variables (PRODUCTION_DB_PASSWORD, DB_PASSWORD)

environment: local  # "production" refuses to run without --force

timeout: 600        # seconds per process for interactive pulls, 0 = no limit
job_timeout: 3600   # seconds per process for background pulls, 0 = no limit

backup_dir: storage/app/backups

# Shell access to the production server (PRODUCTION_SSH_*)
ssh:
  host: prod.example.com
  user: forge
  port: 22
  key_path: ~/.ssh/id_ed25519

# Production database, as reached from the production server (PRODUCTION_DB_*)
remote:
  host: 127.0.0.1
  port: 3306
  database: production_db
  username: forge
  # password: set PRODUCTION_DB_PASSWORD instead

# Local database that gets replaced (DB_*)
local:
  driver: mysql
  host: 127.0.0.1
  port: 3306
  database: local_db
  username: root
  password: ""
"""


def init_config(path: Path, force: bool = False) -> None:
    """Initialize a new configuration file.

    Args:
        path: Path to create config file
        force: Overwrite if exists

    Raises:
        ConfigurationError: If file exists and force is False
    """
    if path.exists() and not force:
        raise ConfigurationError(
            f"Configuration file already exists: {path}",
            hint="Use --force to overwrite",
        )

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(get_example_config())

    # May hold passwords
    os.chmod(path, 0o600)
