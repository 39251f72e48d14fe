"""Configuration utilities for SyncBridge CLI.

Reads and writes ~/.syncbridge/config.json and builds the typed
configurations the commands need.
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

from syncbridge.core.config import BackendConfig, EngineConfig

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_config_dir() -> Path:
    """Get the configuration directory for SyncBridge.

    Returns:
        Path to ~/.syncbridge or equivalent.
    """
    return Path.home() / ".syncbridge"


def get_config_file() -> Path:
    """Location of config.json."""
    return get_config_dir() / "config.json"


def get_state_db() -> Path:
    """Get the path to the local state database."""
    return get_config_dir() / "state.db"


def load_config() -> dict[str, Any]:
    """Read config.json, or an empty dict when it does not exist."""
    path = get_config_file()
    if not path.exists():
        return {}
    return dict(json.loads(path.read_text()))


def save_config(config: dict[str, Any]) -> None:
    """Write config.json, creating the directory if needed."""
    path = get_config_file()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config, indent=2))


def get_backend_config(config: dict[str, Any] | None = None) -> BackendConfig | None:
    """Build the backend configuration.

    Returns:
        BackendConfig, or None if no server is configured.
    """
    config = load_config() if config is None else config
    if not config.get("server_url"):
        return None
    return BackendConfig(
        server_url=config["server_url"],
        token=config.get("auth_token", ""),
        device_id=config.get("device_id", ""),
        verify_ssl=config.get("verify_ssl", True),
    )


def get_engine_config(config: dict[str, Any] | None = None) -> EngineConfig:
    """Build the engine configuration from the "engine" section."""
    config = load_config() if config is None else config
    return EngineConfig.from_dict(config.get("engine", {}))


def setup_logging(log_path: Path | None = None, verbose: bool = False) -> None:
    """Send syncbridge logs to stdout, and to ``log_path`` when given."""
    formatter = logging.Formatter(LOG_FORMAT)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_path is not None:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    package_logger = logging.getLogger("syncbridge")
    package_logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in handlers:
        handler.setFormatter(formatter)
        package_logger.addHandler(handler)
