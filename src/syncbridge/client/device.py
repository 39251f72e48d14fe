"""Simulated device.

This module provides:
- SimulatedDevice: in-memory device whose state follows the commands it
  receives, used by ``syncbridge run`` on hosts without the real device
  control primitives

It exposes one actuator per namespace (dnd, media, hotspot, scheduled) and
a state reader per feature.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Mapping
from dataclasses import replace
from typing import Any

from syncbridge.features import (
    DND_NAMESPACE,
    HOTSPOT_NAMESPACE,
    MEDIA_NAMESPACE,
    DndState,
    HotspotState,
    MediaState,
)
from syncbridge.sync.engine import SCHEDULED_NAMESPACE
from syncbridge.sync.types import ActuatorError

logger = logging.getLogger(__name__)

# DND action -> (enabled, mode)
_DND_ACTIONS = {
    "enable": (True, "priority"),
    "priority": (True, "priority"),
    "alarms": (True, "alarms_only"),
    "silence": (True, "total_silence"),
    "disable": (False, "off"),
}


class _Actuator:
    """Actuator bound to one namespace of the device."""

    def __init__(self, execute: Callable[[str, Mapping[str, Any]], None]) -> None:
        self._execute = execute

    def execute(self, action: str, args: Mapping[str, Any]) -> None:
        self._execute(action, args)


class SimulatedDevice:
    """In-memory device.

    Usage:
        device = SimulatedDevice()
        engine.register_feature(dnd_feature(device.actuator("dnd"), device.read_dnd))
    """

    def __init__(self, max_volume: int = 15) -> None:
        self._lock = threading.Lock()
        self._dnd = DndState()
        self._media = MediaState(max_volume=max_volume)
        self._hotspot = HotspotState()
        self.sent_messages: list[dict[str, Any]] = []

    def actuator(self, namespace: str) -> _Actuator:
        """Get the actuator of a namespace.

        Raises:
            ValueError: If the namespace is not simulated.
        """
        executors = {
            DND_NAMESPACE: self._execute_dnd,
            MEDIA_NAMESPACE: self._execute_media,
            HOTSPOT_NAMESPACE: self._execute_hotspot,
            SCHEDULED_NAMESPACE: self._execute_scheduled,
        }
        if namespace not in executors:
            raise ValueError(f"Unknown namespace {namespace!r}")
        return _Actuator(executors[namespace])

    def read_dnd(self) -> DndState:
        with self._lock:
            return self._dnd

    def read_media(self) -> MediaState:
        with self._lock:
            return self._media

    def read_hotspot(self) -> HotspotState:
        with self._lock:
            return self._hotspot

    def _execute_dnd(self, action: str, args: Mapping[str, Any]) -> None:
        with self._lock:
            if action == "toggle":
                enabled, mode = _DND_ACTIONS["disable" if self._dnd.enabled else "enable"]
            elif action in _DND_ACTIONS:
                enabled, mode = _DND_ACTIONS[action]
            else:
                raise ActuatorError(f"Unsupported DND action {action!r}")
            self._dnd = replace(self._dnd, enabled=enabled, mode=mode)
        logger.info("DND %s -> enabled=%s mode=%s", action, enabled, mode)

    def _execute_media(self, action: str, args: Mapping[str, Any]) -> None:
        with self._lock:
            media = self._media
            if action == "play":
                media = replace(media, is_playing=True)
            elif action in ("pause", "stop"):
                media = replace(media, is_playing=False)
            elif action == "play_pause":
                media = replace(media, is_playing=not media.is_playing)
            elif action == "volume_up":
                media = replace(media, volume=min(media.volume + 1, media.max_volume))
            elif action == "volume_down":
                media = replace(media, volume=max(media.volume - 1, 0))
            elif action == "volume_mute":
                media = replace(media, volume=0)
            elif action == "set_volume":
                level = int(args.get("volume", media.volume))
                media = replace(media, volume=min(max(level, 0), media.max_volume))
            elif action not in ("next", "previous"):
                raise ActuatorError(f"Unsupported media action {action!r}")
            self._media = media
        logger.info("Media %s -> playing=%s volume=%d", action, media.is_playing, media.volume)

    def _execute_hotspot(self, action: str, args: Mapping[str, Any]) -> None:
        with self._lock:
            if action == "enable":
                enabled = True
            elif action == "disable":
                enabled = False
            elif action == "toggle":
                enabled = not self._hotspot.enabled
            elif action == "open_settings":
                logger.info("Hotspot settings requested")
                return
            else:
                raise ActuatorError(f"Unsupported hotspot action {action!r}")
            self._hotspot = replace(self._hotspot, enabled=enabled)
        logger.info("Hotspot %s -> enabled=%s", action, enabled)

    def _execute_scheduled(self, action: str, args: Mapping[str, Any]) -> None:
        if action != "send_message":
            raise ActuatorError(f"Unsupported scheduled action {action!r}")
        if not args.get("recipientNumber") or not args.get("message"):
            raise ActuatorError("Message needs a recipient and a body")
        with self._lock:
            self.sent_messages.append(dict(args))
        logger.info("Sent scheduled message to %s", args["recipientNumber"])
