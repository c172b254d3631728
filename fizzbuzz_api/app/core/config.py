"""
Simple configuration management.

The ``Settings`` dataclass reads configuration directly from
environment variables.  Defaults are provided for all fields.  The
command line launcher (``run.py``) overrides individual fields with
``dataclasses.replace`` so flags always win over the environment.
"""

import os
from dataclasses import dataclass
from pathlib import Path


def _bool_env(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


def default_database_path() -> str:
    """Return ``<user config dir>/fizzbuzz/data.db``.

    The user configuration directory is ``$XDG_CONFIG_HOME`` when set,
    ``~/.config`` otherwise.
    """
    config_home = os.getenv("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return str(Path(config_home) / "fizzbuzz" / "data.db")


# Special values of ``database_url``.  ``off`` keeps hit counts in a
# process-local dictionary; ``:memory:`` opens a volatile SQLite database.
DATABASE_OFF = "off"
DATABASE_MEMORY = ":memory:"


@dataclass
class Settings:
    """Application settings loaded from environment variables."""

    project_name: str = os.getenv("PROJECT_NAME", "FizzBuzz API")
    api_version: str = os.getenv("API_VERSION", "5.0.0")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_file: str = os.getenv("LOG_FILE", "")

    # Path to the SQLite database file, or one of ``DATABASE_OFF`` and
    # ``DATABASE_MEMORY``.  Relative paths are resolved against the
    # current working directory.
    database_url: str = os.getenv("DATABASE_URL", default_database_path())

    host: str = os.getenv("HOST", "127.0.0.1")
    port: int = int(os.getenv("PORT", "8080"))

    # Log one line per HTTP request on the ``fizzbuzz_api.access`` logger.
    http_logging: bool = _bool_env("HTTP_LOGGING", "true")

    # How long SQLite retries internally on a locked database before
    # reporting an error, in milliseconds.
    busy_timeout_ms: int = int(os.getenv("BUSY_TIMEOUT_MS", "5000"))

    # Number of increments between two write-ahead log checkpoints.
    checkpoint_interval: int = int(os.getenv("CHECKPOINT_INTERVAL", "1000"))

    # Deadlines, in seconds, given to statistics calls and to streaming
    # a FizzBuzz response body.
    request_timeout: float = float(os.getenv("REQUEST_TIMEOUT", "5.0"))
    write_timeout: float = float(os.getenv("WRITE_TIMEOUT", "10.0"))


# Instantiate settings once so other modules can import it without
# repeatedly reading environment variables.  Because the dataclass
# computes values at class definition time, environment variables should
# be set before importing this module.
settings = Settings()
