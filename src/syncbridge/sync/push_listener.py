"""WebSocket wake-up listener for command channels.

This module provides:
- CommandWakeListener: WebSocket client that receives "commands available"
  hints and wakes the matching command channel

Architecture:
    Server ─push─► CommandWakeListener ─► wake(namespace) ─► CommandChannel.poll_once
                          │
                   (on every connect: wake every channel)

Hints only shorten the wait before the next poll. Commands are still
fetched and acknowledged by the channel, so a lost hint costs at most one
poll interval.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import ssl
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import websockets
from websockets.exceptions import WebSocketException

if TYPE_CHECKING:
    from syncbridge.core.config import BackendConfig

logger = logging.getLogger(__name__)

# wake(namespace); None wakes every channel
WakeCallback = Callable[[str | None], None]

COMMANDS_AVAILABLE = "commands_available"


class CommandWakeListener:
    """WebSocket listener for command notifications.

    Supported message types:
    - commands_available: {"type": "commands_available", "namespace": "media"}
      (without a namespace every channel is woken)

    Usage:
        listener = CommandWakeListener(config, engine.wake)
        listener.start()
        # ...
        listener.stop()
    """

    def __init__(
        self,
        config: BackendConfig,
        wake: WakeCallback,
        reconnect_delay: float = 5.0,
    ) -> None:
        """Initialize the listener.

        Args:
            config: Backend configuration with URL, token and device id.
            wake: Called with the namespace to poll (None for all).
            reconnect_delay: Seconds between connection attempts.
        """
        self._config = config
        self._wake = wake
        self._reconnect_delay = reconnect_delay

        self._running = False
        self._connected = False
        self._thread: threading.Thread | None = None
        # Owned by the listener thread
        self._loop: asyncio.AbstractEventLoop | None = None
        self._shutdown: asyncio.Event | None = None

    @property
    def connected(self) -> bool:
        """Check if a connection is open."""
        return self._connected

    @property
    def ws_url(self) -> str:
        return self._config.ws_url

    def start(self) -> None:
        """Start listening in a background thread."""
        if self._thread and self._thread.is_alive():
            logger.warning("Wake listener already running")
            return

        self._running = True
        self._thread = threading.Thread(
            target=lambda: asyncio.run(self._serve()),
            name="CommandWakeListener",
            daemon=True,
        )
        self._thread.start()
        logger.info("Wake listener started for %s", self.ws_url)

    def stop(self, timeout: float = 5.0) -> None:
        """Close the connection and wait for the thread to end."""
        self._running = False

        loop, shutdown = self._loop, self._shutdown
        if loop is not None and shutdown is not None:
            # The loop may already be closing
            with contextlib.suppress(RuntimeError):
                loop.call_soon_threadsafe(shutdown.set)

        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.info("Wake listener stopped")

    async def _serve(self) -> None:
        """Connect, listen, and reconnect until stopped."""
        self._loop = asyncio.get_running_loop()
        shutdown = self._shutdown = asyncio.Event()
        try:
            while self._running:
                try:
                    await self._session(shutdown)
                except (WebSocketException, OSError) as e:
                    logger.debug("Wake listener connection failed: %s", e)
                except Exception:
                    logger.warning("Wake listener error", exc_info=True)
                finally:
                    self._connected = False

                if not self._running:
                    break
                logger.info("Wake listener reconnecting in %.0fs", self._reconnect_delay)
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(shutdown.wait(), self._reconnect_delay)
        finally:
            self._loop = None
            self._shutdown = None

    async def _session(self, shutdown: asyncio.Event) -> None:
        """Run one connection until it drops or the listener stops."""
        ws = await websockets.connect(self.ws_url, **self._connect_options())
        self._connected = True
        try:
            logger.info("Wake listener connected")
            # Hints sent while disconnected are lost
            self._emit_wake(None)

            stopping = asyncio.ensure_future(shutdown.wait())
            try:
                while self._running:
                    receiving = asyncio.ensure_future(ws.recv())
                    await asyncio.wait(
                        {receiving, stopping},
                        return_when=asyncio.FIRST_COMPLETED,
                    )
                    if stopping.done():
                        receiving.cancel()
                        break
                    message = receiving.result()
                    if isinstance(message, bytes):
                        message = message.decode("utf-8")
                    self._handle_message(message)
            finally:
                stopping.cancel()
        finally:
            with contextlib.suppress(WebSocketException, OSError):
                await ws.close()

    def _connect_options(self) -> dict[str, Any]:
        options: dict[str, Any] = {"open_timeout": 10, "close_timeout": 5}
        if self.ws_url.startswith("wss://"):
            context = ssl.create_default_context()
            if not self._config.verify_ssl:
                context.check_hostname = False
                context.verify_mode = ssl.CERT_NONE
            options["ssl"] = context
        if self._config.token:
            options["additional_headers"] = {"Authorization": f"Bearer {self._config.token}"}
        return options

    def _handle_message(self, message: str) -> None:
        """Wake the channel named by a server message."""
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            logger.warning("Invalid wake message: %s", message[:100])
            return

        if not isinstance(data, dict) or data.get("type") != COMMANDS_AVAILABLE:
            logger.debug("Ignoring wake message: %s", message[:100])
            return

        namespace = data.get("namespace") or None
        logger.debug("Commands available for %s", namespace or "every channel")
        self._emit_wake(namespace)

    def _emit_wake(self, namespace: str | None) -> None:
        try:
            self._wake(namespace)
        except Exception:
            logger.exception("Failed to wake command channel %s", namespace)
