"""Shared configuration classes for syncbridge.

This module defines the backend connection settings and the engine
tunables, used by both the engine and the CLI.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any

# Overflow policies of the dedup cache (see syncbridge.sync.dedup)
DEDUP_POLICIES = ("fifo", "clear")


@dataclass
class BackendConfig:
    """Configuration for connecting to a SyncBridge backend.

    Used by both the HTTP backend (HTTPBackend) and the WebSocket wake-up
    listener (CommandWakeListener) to ensure consistent connection settings.

    Attributes:
        server_url: Base URL of the server (e.g., "https://sync.example.com").
        token: Authentication token of the device session.
        device_id: Identifier of this device.
        timeout: Request/connection timeout in seconds.
        verify_ssl: Whether to verify SSL certificates (default True).
    """

    server_url: str
    token: str = ""
    device_id: str = ""
    timeout: float = 30.0
    verify_ssl: bool = True

    def __post_init__(self) -> None:
        """Normalize server URL."""
        self.server_url = self.server_url.rstrip("/")

    @property
    def ws_url(self) -> str:
        """Get WebSocket URL of the command notification stream."""
        url = self.server_url
        if url.startswith("https://"):
            url = "wss://" + url[8:]
        elif url.startswith("http://"):
            url = "ws://" + url[7:]
        return f"{url}/ws/devices/{self.device_id or 'default'}"

    @property
    def is_secure(self) -> bool:
        """Check if using HTTPS/WSS."""
        return self.server_url.startswith("https://")


@dataclass
class EngineConfig:
    """Tunables of the synchronization engine.

    Delays and intervals are in seconds, the staleness window is in
    milliseconds (it is compared with command timestamps).
    """

    staleness_window_ms: int = 10_000
    command_poll_interval: float = 2.0
    debounce_window: float = 1.0
    state_recheck_interval: float = 5.0
    scheduled_rescan_interval: float = 10.0
    max_retries: int = 3
    retry_backoff: float = 300.0
    mirror_capacity: int = 20
    dedup_capacity: int = 100
    dedup_policy: str = "fifo"

    def __post_init__(self) -> None:
        policy = getattr(self.dedup_policy, "value", self.dedup_policy)
        self.dedup_policy = str(policy).lower()
        if self.dedup_policy not in DEDUP_POLICIES:
            raise ValueError(f"dedup_policy must be one of {DEDUP_POLICIES}")
        for f in fields(self):
            if f.name == "dedup_policy":
                continue
            value = getattr(self, f.name)
            if value <= 0:
                raise ValueError(f"{f.name} must be positive, got {value!r}")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EngineConfig:
        """Create from a configuration dictionary; unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}
