"""Status command for SyncBridge CLI.

Commands:
- status: Show server health, pending scheduled messages and diagnostics
"""

from __future__ import annotations

import sys
from datetime import datetime

import click

from syncbridge.client.cli.config import get_backend_config, get_state_db


def _format_time(ms: int) -> str:
    if not ms:
        return "never"
    return datetime.fromtimestamp(ms / 1000).isoformat(timespec="seconds")


@click.command()
@click.option("--name", default="initial-sync", show_default=True, help="Bulk operation name.")
def status(name: str) -> None:
    """Show the connection status and the last bulk operation."""
    from syncbridge.client.api import HTTPBackend
    from syncbridge.client.state import LocalState
    from syncbridge.sync.progress import DiagnosticsStore
    from syncbridge.sync.types import ScheduledStatus, SyncError

    backend_config = get_backend_config()
    if backend_config is None:
        click.echo("Error: No server configured. Run 'syncbridge configure' first.", err=True)
        sys.exit(1)

    click.echo(f"Server:    {backend_config.server_url}")
    click.echo(f"Device:    {backend_config.device_id or '-'}")

    with HTTPBackend(backend_config) as backend:
        healthy = backend.health_check()
        click.echo(f"Health:    {'ok' if healthy else 'unreachable'}")
        if healthy:
            try:
                pending = backend.fetch_scheduled_items(ScheduledStatus.PENDING)
                click.echo(f"Scheduled: {len(pending)} pending")
            except SyncError as e:
                click.echo(f"Scheduled: unavailable ({e})")

    state_db = get_state_db()
    if not state_db.exists():
        return

    state = LocalState(state_db)
    try:
        diagnostics = DiagnosticsStore(state).read(name)
    finally:
        state.close()

    click.echo(f"Last {name}:")
    click.echo(f"  started:  {_format_time(diagnostics.last_start)}")
    click.echo(f"  ended:    {_format_time(diagnostics.last_end)}")
    click.echo(f"  progress: {diagnostics.last_done}/{diagnostics.last_total}")
    click.echo(f"  status:   {diagnostics.last_status or '-'}")
    if diagnostics.last_error:
        click.echo(f"  error:    {diagnostics.last_error}")
