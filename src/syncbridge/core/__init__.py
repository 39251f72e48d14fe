"""Core module - Shared configuration."""

from syncbridge.core.config import DEDUP_POLICIES, BackendConfig, EngineConfig

__all__ = [
    "DEDUP_POLICIES",
    "BackendConfig",
    "EngineConfig",
]
