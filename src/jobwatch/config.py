"""Configuration management for the jobwatch client.

This module handles loading and validating configuration from the config file
and environment variables.
"""

import json
import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple


# Default configuration values
DEFAULT_API_PREFIX = "/v1"
DEFAULT_TIMEOUT = 30.0
DEFAULT_LOG_LEVEL = "info"
DEFAULT_SESSION_DIR = Path.home() / ".jobwatch"
DEFAULT_CONFIG_PATH = DEFAULT_SESSION_DIR / "config.json"
VALID_LOG_LEVELS = ["debug", "info", "warning", "error"]
MIN_TIMEOUT = 1
MAX_TIMEOUT = 300

logger = logging.getLogger(__name__)


def _parse_bool(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in ("1", "true", "yes", "on"):
        return True
    if normalized in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


# Environment variable -> (config field, converter)
ENV_OVERRIDES: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    "JOBWATCH_SERVER_URL": ("server_url", str),
    "JOBWATCH_API_PREFIX": ("api_prefix", str),
    "JOBWATCH_TIMEOUT": ("timeout", float),
    "JOBWATCH_RETRY_DELAY": ("retry_delay", float),
    "JOBWATCH_POLL_INTERVAL": ("poll_interval", float),
    "JOBWATCH_RECONNECT_DELAY": ("reconnect_delay", float),
    "JOBWATCH_STREAM_READ_TIMEOUT": ("stream_read_timeout", float),
    "JOBWATCH_MAX_RECONNECT_ATTEMPTS": ("max_reconnect_attempts", int),
    "JOBWATCH_CACHE_TTL": ("cache_ttl", float),
    "JOBWATCH_REFRESH_MARGIN": ("refresh_margin", int),
    "JOBWATCH_ENABLE_PUSH": ("enable_push", _parse_bool),
    "JOBWATCH_ENABLE_CACHE": ("enable_cache", _parse_bool),
    "JOBWATCH_LOG_LEVEL": ("log_level", str),
    "JOBWATCH_SESSION_DIR": ("session_dir", str),
    "JOBWATCH_MAX_ROWS": ("max_rows", int),
}


@dataclass
class ClientConfig:
    """Configuration for the jobwatch client.

    Args:
        server_url: Base URL of the job service (must use HTTPS)
        api_prefix: Path prefix of the versioned API (default: /v1)
        timeout: Request timeout in seconds (1-300, default: 30)
        retry_delay: Delay before the single retry of one-shot calls
        poll_interval: Seconds between polling ticks
        reconnect_delay: Seconds before reopening a failed event stream
        stream_read_timeout: Seconds an event stream may stay silent before it
            counts as a push failure
        max_reconnect_attempts: Stream reconnects before falling back to polling
        cache_ttl: Seconds a cached job snapshot stays valid
        refresh_margin: Renew the credential this many seconds before expiry
        enable_push: Use the event stream (poll only when False)
        enable_cache: Use the job status cache
        log_level: Logging level (debug/info/warning/error, default: info)
        session_dir: Directory holding the encrypted session
        max_rows: Row limit announced to users before submitting a file
    """

    server_url: str
    api_prefix: str = DEFAULT_API_PREFIX
    timeout: float = DEFAULT_TIMEOUT
    retry_delay: float = 1.0
    poll_interval: float = 2.0
    reconnect_delay: float = 5.0
    stream_read_timeout: float = 300.0
    max_reconnect_attempts: int = 3
    cache_ttl: float = 30.0
    refresh_margin: int = 300
    enable_push: bool = True
    enable_cache: bool = True
    log_level: str = DEFAULT_LOG_LEVEL
    session_dir: Path = DEFAULT_SESSION_DIR
    max_rows: int = 2000

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.server_url:
            raise ValueError("server_url cannot be empty")

        # Allow localhost/127.0.0.1 for testing, but require HTTPS for all other URLs
        is_localhost = (
            "://localhost" in self.server_url or "://127.0.0.1" in self.server_url
        )
        if not self.server_url.startswith("https://") and not is_localhost:
            raise ValueError(
                "server_url must use HTTPS for security. "
                f"Got: {self.server_url[:20]}..."
            )

        if self.timeout < MIN_TIMEOUT or self.timeout > MAX_TIMEOUT:
            raise ValueError(
                f"timeout must be between {MIN_TIMEOUT} and {MAX_TIMEOUT} seconds. "
                f"Got: {self.timeout}"
            )

        for name in ("retry_delay", "reconnect_delay"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be non-negative")
        for name in ("poll_interval", "cache_ttl", "stream_read_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")
        if self.max_reconnect_attempts < 0:
            raise ValueError("max_reconnect_attempts must be non-negative")
        if self.refresh_margin < 0:
            raise ValueError("refresh_margin must be non-negative")
        if self.max_rows <= 0:
            raise ValueError("max_rows must be positive")

        if self.log_level not in VALID_LOG_LEVELS:
            raise ValueError(
                f"log_level must be one of {VALID_LOG_LEVELS}. "
                f"Got: {self.log_level}"
            )

        self.server_url = self.server_url.rstrip("/")
        self.session_dir = Path(self.session_dir).expanduser()


def _read_config_file(path: Path) -> Dict[str, Any]:
    file_perms = os.stat(path).st_mode & 0o777
    if file_perms != 0o600:
        logger.warning(
            f"Configuration file {path} has insecure permissions {oct(file_perms)}. "
            f"Recommend setting to 0600: chmod 0600 {path}"
        )

    with open(path) as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"Configuration file {path} must contain a JSON object")
    return data


def load_config(
    config_path: Optional[str] = None, use_env: bool = True
) -> ClientConfig:
    """Load configuration from file and/or environment variables.

    The default config file is optional; an explicitly given one must exist.

    Args:
        config_path: Path to config JSON file (default: ~/.jobwatch/config.json)
        use_env: Whether to use JOBWATCH_* environment variables (override file)

    Returns:
        ClientConfig instance

    Raises:
        FileNotFoundError: If an explicit config file is not found
        json.JSONDecodeError: If the config file contains invalid JSON
        ValueError: If required fields are missing or invalid
    """
    config_data: Dict[str, Any] = {}

    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    path = path.expanduser()
    if path.exists():
        config_data = _read_config_file(path)
    elif config_path is not None:
        raise FileNotFoundError(f"Config file not found: {path}")

    known = {f.name for f in fields(ClientConfig)}
    unknown = sorted(set(config_data) - known)
    if unknown:
        logger.warning(f"Ignoring unknown configuration keys: {', '.join(unknown)}")
        config_data = {k: v for k, v in config_data.items() if k in known}

    if use_env:
        for env_name, (field_name, convert) in ENV_OVERRIDES.items():
            if env_name in os.environ:
                try:
                    config_data[field_name] = convert(os.environ[env_name])
                except ValueError as e:
                    raise ValueError(f"Invalid value for {env_name}: {e}") from e

    if "server_url" not in config_data:
        raise ValueError(
            "Missing required field: server_url\n"
            "  Fix: Set JOBWATCH_SERVER_URL environment variable\n"
            f"  Or: Add 'server_url' to {DEFAULT_CONFIG_PATH}"
        )

    return ClientConfig(**config_data)
