"""HTTP backend for the SyncBridge server API.

This module provides:
- HTTPBackend: Backend implementation over the server's REST API
- Command, state, scheduled item and mirror operations

Endpoints:
    GET  /api/{namespace}/commands                 pending commands
    PUT  /api/{namespace}/commands/{id}/processed  acknowledgment
    POST /api/{namespace}/status                   state snapshot
    GET  /api/scheduled-messages?status=...        scheduled items
    POST /api/scheduled-messages                   new scheduled item
    PUT  /api/scheduled-messages/{id}/status       status report
    GET|POST /api/notifications/mirror             mirrored records
    DELETE /api/notifications/mirror/{id}          mirrored record removal
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from syncbridge.core.config import BackendConfig
from syncbridge.sync.types import (
    AuthenticationRequired,
    BackendError,
    Command,
    MirroredRecord,
    ScheduledItem,
    ScheduledStatus,
    StateSnapshot,
    TransientNetworkError,
    now_ms,
)

logger = logging.getLogger(__name__)

# Record fields that are not part of a mirrored record's payload
_MIRROR_META_KEYS = {"id", "sourceKey", "timestamp"}


class HTTPBackend:
    """HTTP backend for the SyncBridge server API."""

    def __init__(
        self,
        config: BackendConfig,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the backend.

        Args:
            config: Server URL, token and timeouts.
            transport: Optional httpx transport (used by tests).
        """
        self._config = config
        headers = {}
        if config.token:
            headers["Authorization"] = f"Bearer {config.token}"
        if config.device_id:
            headers["X-Device-Id"] = config.device_id
        self._client = httpx.Client(
            base_url=config.server_url,
            timeout=config.timeout,
            headers=headers,
            verify=config.verify_ssl,
            transport=transport,
        )

    @property
    def config(self) -> BackendConfig:
        return self._config

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> HTTPBackend:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()

    def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping transport failures to TransientNetworkError."""
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.RequestError as e:
            raise TransientNetworkError(f"{method} {url} failed: {e}") from e
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code == 401:
            raise AuthenticationRequired("Invalid or expired token")
        if response.status_code >= 500:
            raise TransientNetworkError(
                f"Server error {response.status_code}: {self._error_detail(response)}"
            )
        if response.status_code >= 400:
            raise BackendError(self._error_detail(response), response.status_code)
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        """Decode a JSON object body, raising BackendError on anything else."""
        try:
            data = response.json()
        except ValueError as e:
            raise BackendError(
                f"Invalid JSON response from {response.request.url.path}", response.status_code
            ) from e
        if not isinstance(data, dict):
            raise BackendError(
                f"Unexpected response from {response.request.url.path}", response.status_code
            )
        return data

    @staticmethod
    def _entries(data: dict[str, Any], key: str) -> list[Any]:
        entries = data.get(key) or []
        if not isinstance(entries, list):
            raise BackendError(f"Expected a list of {key}")
        return entries

    @staticmethod
    def _error_detail(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError:
            return response.text or "Unknown error"
        if isinstance(data, dict):
            return str(data.get("error") or data.get("detail") or "Unknown error")
        return "Unknown error"

    # === Health check ===

    def health_check(self) -> bool:
        """Check if the server is healthy.

        Returns:
            True if server is healthy.
        """
        try:
            response = self._client.get("/health")
            return response.status_code == 200
        except httpx.RequestError:
            return False

    def is_authenticated(self) -> bool:
        """Check whether a session token is configured."""
        return bool(self._config.token)

    # === Commands ===

    def fetch_pending_commands(self, namespace: str) -> list[Command]:
        """Get pending commands of a feature, oldest first.

        Args:
            namespace: Feature namespace.

        Returns:
            List of commands.
        """
        response = self._request("GET", f"/api/{namespace}/commands")
        commands = []
        for entry in self._entries(self._json(response), "commands"):
            try:
                commands.append(Command.from_dict(entry))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning("Dropping malformed %s command %r: %s", namespace, entry, e)
                self._discard_command(namespace, entry)
        # The server returns the newest first
        commands.sort(key=lambda c: c.created_at)
        return commands

    def acknowledge_command(self, namespace: str, command_id: str) -> None:
        """Mark a command processed.

        Args:
            namespace: Feature namespace.
            command_id: Command identifier.
        """
        self._request("PUT", f"/api/{namespace}/commands/{command_id}/processed")

    def _discard_command(self, namespace: str, entry: Any) -> None:
        """Acknowledge a command that cannot be parsed, when it has an id."""
        command_id = entry.get("id") if isinstance(entry, dict) else None
        if command_id is None:
            return
        try:
            self.acknowledge_command(namespace, str(command_id))
        except (AuthenticationRequired, TransientNetworkError, BackendError) as e:
            logger.warning("Failed to acknowledge malformed command %s: %s", command_id, e)

    def push_state(self, namespace: str, snapshot: StateSnapshot) -> None:
        """Publish a feature's state.

        Args:
            namespace: Feature namespace.
            snapshot: Snapshot to publish.
        """
        payload = snapshot.to_dict()
        payload.setdefault("timestamp", now_ms())
        self._request("POST", f"/api/{namespace}/status", json=payload)

    # === Scheduled items ===

    def fetch_scheduled_items(self, status: ScheduledStatus) -> list[ScheduledItem]:
        """Get scheduled items with a given status.

        Args:
            status: Status filter.

        Returns:
            List of items, earliest first.
        """
        response = self._request(
            "GET",
            "/api/scheduled-messages",
            params={"status": ScheduledStatus(status).value},
        )
        items = []
        for entry in self._entries(self._json(response), "messages"):
            try:
                items.append(ScheduledItem.from_dict(entry))
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning("Skipping malformed scheduled item %r: %s", entry, e)
        return items

    def create_scheduled_item(self, payload: dict[str, Any], execute_at: int) -> str:
        """Create a scheduled item.

        Args:
            payload: Item payload (recipientNumber, message, simSlot...).
            execute_at: When to execute, in epoch milliseconds.

        Returns:
            Identifier assigned by the server.
        """
        body = {**payload, "scheduledTime": execute_at}
        response = self._request("POST", "/api/scheduled-messages", json=body)
        data = self._json(response)
        if data.get("id") is None:
            raise BackendError("Server did not return an id", response.status_code)
        return str(data["id"])

    def update_scheduled_item_status(
        self,
        item_id: str,
        status: ScheduledStatus,
        error: str | None = None,
    ) -> None:
        """Report a scheduled item's status.

        Args:
            item_id: Item identifier.
            status: New status.
            error: Failure message, for failed items.
        """
        status = ScheduledStatus(status)
        now = now_ms()
        body: dict[str, Any] = {"status": status.value, "updatedAt": now}
        if status == ScheduledStatus.SENT:
            body["sentAt"] = now
        if error:
            body["errorMessage"] = error
        self._request("PUT", f"/api/scheduled-messages/{item_id}/status", json=body)

    # === Mirror ===

    def mirror_write(self, record: MirroredRecord) -> None:
        """Store a mirrored record."""
        body = {
            **record.payload,
            "id": record.id,
            "sourceKey": record.source_key,
            "timestamp": record.first_seen_at,
        }
        self._request("POST", "/api/notifications/mirror", json=body)

    def mirror_delete(self, record_id: str) -> None:
        """Delete a mirrored record."""
        self._request("DELETE", f"/api/notifications/mirror/{record_id}")

    def mirror_list(self) -> list[MirroredRecord]:
        """List mirrored records, oldest first."""
        response = self._request(
            "GET", "/api/notifications/mirror", params={"limit": 100}
        )
        records = []
        for n in self._entries(self._json(response), "notifications"):
            try:
                records.append(
                    MirroredRecord(
                        id=str(n["id"]),
                        source_key=str(n.get("sourceKey", "")),
                        payload={k: v for k, v in n.items() if k not in _MIRROR_META_KEYS},
                        first_seen_at=int(n.get("timestamp") or 0),
                    )
                )
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning("Skipping malformed mirrored record %r: %s", n, e)
        records.sort(key=lambda r: r.first_seen_at)
        return records
