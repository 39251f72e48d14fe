"""Built-in synchronized features.

This module declares the namespaces, command tables and state records of
the features the mobile endpoint exposes to its companion:

    | Namespace | Actions                                               |
    |-----------|-------------------------------------------------------|
    | dnd       | enable, disable, toggle, priority, alarms, silence    |
    | media     | play, pause, play_pause, next, previous, stop,        |
    |           | volume_up, volume_down, volume_mute, set_volume       |
    | hotspot   | enable, disable, toggle, open_settings                |

Every handler forwards to the feature's actuator as
``actuator.execute(action, args)``. ``toggle`` is not idempotent by itself;
the engine's command journal keeps a re-delivered toggle from running twice.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from syncbridge.sync.engine import Feature
from syncbridge.sync.types import ActuatorError, CommandHandler, StateSnapshot

if TYPE_CHECKING:
    from syncbridge.client.backend import Actuator

DND_NAMESPACE = "dnd"
MEDIA_NAMESPACE = "media"
HOTSPOT_NAMESPACE = "hotspot"

DND_ACTIONS = ("enable", "disable", "toggle", "priority", "alarms", "silence")
MEDIA_ACTIONS = (
    "play",
    "pause",
    "play_pause",
    "next",
    "previous",
    "stop",
    "volume_up",
    "volume_down",
    "volume_mute",
    "set_volume",
)
HOTSPOT_ACTIONS = ("enable", "disable", "toggle", "open_settings")

# DND filter modes reported in snapshots
DND_MODES = ("off", "priority", "alarms_only", "total_silence", "unknown")


def _forward(actuator: Actuator, action: str) -> CommandHandler:
    def handler(args: Mapping[str, Any]) -> None:
        actuator.execute(action, args)

    return handler


def _set_volume(actuator: Actuator) -> CommandHandler:
    def handler(args: Mapping[str, Any]) -> None:
        volume = args.get("volume")
        try:
            level = int(volume)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            raise ActuatorError(f"set_volume needs an integer volume, got {volume!r}") from None
        actuator.execute("set_volume", {**args, "volume": level})

    return handler


def handler_table(actuator: Actuator, actions: Iterable[str]) -> dict[str, CommandHandler]:
    """Build a handler table forwarding every action to an actuator."""
    table: dict[str, CommandHandler] = {}
    for action in actions:
        if action == "set_volume":
            table[action] = _set_volume(actuator)
        else:
            table[action] = _forward(actuator, action)
    return table


# =============================================================================
# State records
# =============================================================================


@dataclass(frozen=True)
class DndState:
    """Do-Not-Disturb state."""

    enabled: bool = False
    mode: str = "off"
    has_permission: bool = True

    def to_snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            DND_NAMESPACE,
            {
                "enabled": self.enabled,
                "mode": self.mode,
                "hasPermission": self.has_permission,
            },
        )


@dataclass(frozen=True)
class MediaState:
    """Media session state.

    Text fields are empty strings when nothing is playing, as the remote
    peer expects.
    """

    is_playing: bool = False
    title: str = ""
    artist: str = ""
    album: str = ""
    app_name: str = ""
    package_name: str = ""
    volume: int = 0
    max_volume: int = 15
    has_permission: bool = True

    def to_snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            MEDIA_NAMESPACE,
            {
                "isPlaying": self.is_playing,
                "title": self.title or "",
                "artist": self.artist or "",
                "album": self.album or "",
                "appName": self.app_name or "",
                "packageName": self.package_name or "",
                "volume": self.volume,
                "maxVolume": self.max_volume,
                "hasPermission": self.has_permission,
            },
        )


@dataclass(frozen=True)
class HotspotState:
    """Mobile hotspot state."""

    enabled: bool = False
    has_permission: bool = True
    ssid: str = ""
    connected_devices: int = 0

    def to_snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            HOTSPOT_NAMESPACE,
            {
                "enabled": self.enabled,
                "hasPermission": self.has_permission,
                "ssid": self.ssid,
                "connectedDevices": self.connected_devices,
            },
        )


# =============================================================================
# Feature factories
# =============================================================================


def _feature(
    namespace: str,
    actions: Iterable[str],
    actuator: Actuator,
    read_state: Callable[[], Any] | None,
    should_publish: Callable[[], bool] | None,
) -> Feature:
    provider = None
    if read_state is not None:

        def provider() -> StateSnapshot:
            return read_state().to_snapshot()

    return Feature(
        namespace=namespace,
        handlers=handler_table(actuator, actions),
        snapshot_provider=provider,
        should_publish=should_publish,
    )


def dnd_feature(
    actuator: Actuator,
    read_state: Callable[[], DndState] | None = None,
    should_publish: Callable[[], bool] | None = None,
) -> Feature:
    """Build the Do-Not-Disturb feature."""
    return _feature(DND_NAMESPACE, DND_ACTIONS, actuator, read_state, should_publish)


def media_feature(
    actuator: Actuator,
    read_state: Callable[[], MediaState] | None = None,
    should_publish: Callable[[], bool] | None = None,
) -> Feature:
    """Build the media control feature."""
    return _feature(MEDIA_NAMESPACE, MEDIA_ACTIONS, actuator, read_state, should_publish)


def hotspot_feature(
    actuator: Actuator,
    read_state: Callable[[], HotspotState] | None = None,
    should_publish: Callable[[], bool] | None = None,
) -> Feature:
    """Build the hotspot control feature."""
    return _feature(
        HOTSPOT_NAMESPACE, HOTSPOT_ACTIONS, actuator, read_state, should_publish
    )
