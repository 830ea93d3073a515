"""
Configuration
=============

Process configuration read once from the environment at startup.

Uses CODETAINER_DATA_DIR environment variable if set (for Docker),
otherwise data lives in ~/.codetainer/
"""

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

# Default one-shot exec timeout in seconds
DEFAULT_EXEC_TIMEOUT = 10.0

# Default Docker API client timeout in seconds
DEFAULT_DOCKER_TIMEOUT = 60

# Shell started for interactive sessions
DEFAULT_SHELL = ("/bin/sh",)

# Directory inside every codetainer holding helper utilities
CONTAINER_UTILS_PATH = "/codetainer/utils"


def get_config_dir(environ: Mapping[str, str] | None = None) -> Path:
    """
    Get the config directory.

    Uses CODETAINER_DATA_DIR environment variable if set (for Docker),
    otherwise defaults to ~/.codetainer/

    Returns:
        Path to config directory (created if it doesn't exist)
    """
    environ = os.environ if environ is None else environ
    data_dir = environ.get("CODETAINER_DATA_DIR")
    if data_dir:
        config_dir = Path(data_dir) / "codetainer"
    else:
        config_dir = Path.home() / ".codetainer"
    config_dir.mkdir(parents=True, exist_ok=True)
    return config_dir


def _parse_bool(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def _parse_origins(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(origin.strip() for origin in value.split(",") if origin.strip())


@dataclass(frozen=True)
class Config:
    """Immutable application configuration."""

    database_url: str
    docker_base_url: str | None = None
    docker_timeout: int = DEFAULT_DOCKER_TIMEOUT
    exec_timeout: float = DEFAULT_EXEC_TIMEOUT
    shell: tuple[str, ...] = DEFAULT_SHELL
    # Host directory bind mounted at CONTAINER_UTILS_PATH in new codetainers
    utils_dir: Path | None = None
    files_command: str = f"{CONTAINER_UTILS_PATH}/files"
    allow_external_access: bool = False
    cors_origins: tuple[str, ...] = field(default_factory=tuple)
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 3000

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Config":
        """Build the configuration from environment variables."""
        environ = os.environ if environ is None else environ

        database_url = environ.get("CODETAINER_DATABASE_URL")
        if not database_url:
            db_path = get_config_dir(environ) / "codetainer.db"
            database_url = f"sqlite:///{db_path.as_posix()}"

        shell = environ.get("CODETAINER_SHELL")
        utils_dir = environ.get("CODETAINER_UTILS_DIR")

        return cls(
            database_url=database_url,
            docker_base_url=environ.get("DOCKER_HOST") or None,
            docker_timeout=int(environ.get("CODETAINER_DOCKER_TIMEOUT", DEFAULT_DOCKER_TIMEOUT)),
            exec_timeout=float(environ.get("CODETAINER_EXEC_TIMEOUT", DEFAULT_EXEC_TIMEOUT)),
            shell=tuple(shlex.split(shell)) if shell else DEFAULT_SHELL,
            utils_dir=Path(utils_dir) if utils_dir else None,
            allow_external_access=_parse_bool(environ.get("ALLOW_EXTERNAL_ACCESS")),
            cors_origins=_parse_origins(environ.get("CORS_ORIGINS")),
            log_level=environ.get("CODETAINER_LOG_LEVEL", "INFO").upper(),
            host=environ.get("CODETAINER_HOST", "127.0.0.1"),
            port=int(environ.get("CODETAINER_PORT", 3000)),
        )
