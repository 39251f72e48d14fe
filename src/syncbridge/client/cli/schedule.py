"""Scheduled message commands for SyncBridge CLI.

Commands:
- schedule: Create a scheduled message on the server
- cancel: Cancel a scheduled message
"""

from __future__ import annotations

import sys
from datetime import datetime
from typing import TYPE_CHECKING

import click

from syncbridge.client.cli.config import get_backend_config

if TYPE_CHECKING:
    from syncbridge.client.api import HTTPBackend


def _require_backend() -> HTTPBackend:
    from syncbridge.client.api import HTTPBackend

    backend_config = get_backend_config()
    if backend_config is None:
        click.echo("Error: No server configured. Run 'syncbridge configure' first.", err=True)
        sys.exit(1)
    return HTTPBackend(backend_config)


@click.command()
@click.argument("recipient")
@click.argument("message")
@click.option("--at", "at_time", default=None, help="Local date and time (ISO format).")
@click.option("--in", "delay", type=float, default=None, help="Seconds from now.")
@click.option("--sim-slot", type=int, default=None, help="SIM slot to send from.")
def schedule(
    recipient: str,
    message: str,
    at_time: str | None,
    delay: float | None,
    sim_slot: int | None,
) -> None:
    """Schedule MESSAGE to be sent to RECIPIENT."""
    from syncbridge.sync.types import SyncError, now_ms

    if (at_time is None) == (delay is None):
        click.echo("Error: Give exactly one of --at or --in.", err=True)
        sys.exit(1)

    if at_time is not None:
        try:
            execute_at = int(datetime.fromisoformat(at_time).timestamp() * 1000)
        except ValueError:
            click.echo(f"Error: Invalid date '{at_time}'", err=True)
            sys.exit(1)
    else:
        execute_at = now_ms() + int(delay * 1000)  # type: ignore[operator]

    payload: dict[str, object] = {"recipientNumber": recipient, "message": message}
    if sim_slot is not None:
        payload["simSlot"] = sim_slot

    with _require_backend() as backend:
        try:
            item_id = backend.create_scheduled_item(payload, execute_at)
        except SyncError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)

    when = datetime.fromtimestamp(execute_at / 1000).isoformat(timespec="seconds")
    click.echo(f"Scheduled {item_id} for {when}")


@click.command()
@click.argument("item_id")
def cancel(item_id: str) -> None:
    """Cancel the scheduled message ITEM_ID."""
    from syncbridge.sync.types import ScheduledStatus, SyncError

    with _require_backend() as backend:
        try:
            backend.update_scheduled_item_status(item_id, ScheduledStatus.CANCELLED)
        except SyncError as e:
            click.echo(f"Error: {e}", err=True)
            sys.exit(1)
    click.echo(f"Cancelled {item_id}")
