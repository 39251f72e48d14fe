"""Run command for SyncBridge CLI.

Commands:
- run: Start the sync engine against the configured server
"""

from __future__ import annotations

import sys
import threading
from pathlib import Path

import click

from syncbridge.client.cli.config import (
    get_backend_config,
    get_config_dir,
    get_engine_config,
    get_state_db,
    setup_logging,
)

FEATURES = ("dnd", "media", "hotspot")


@click.command()
@click.option(
    "--feature",
    "features",
    multiple=True,
    type=click.Choice(FEATURES),
    help="Feature to synchronize (repeatable, default: all).",
)
@click.option("--no-scheduled", is_flag=True, help="Do not deliver scheduled messages.")
@click.option(
    "--listen/--no-listen",
    default=True,
    help="Listen for command notifications over WebSocket.",
)
@click.option(
    "--log-file", type=click.Path(path_type=Path), default=None, help="Also log to this file."
)
@click.option("--verbose", "-v", is_flag=True, help="Log debug messages.")
def run(
    features: tuple[str, ...],
    no_scheduled: bool,
    listen: bool,
    log_file: Path | None,
    verbose: bool,
) -> None:
    """Run the sync engine until interrupted.

    Device operations go to a simulated device whose state follows the
    commands it receives.
    """
    from syncbridge.client.api import HTTPBackend
    from syncbridge.client.device import SimulatedDevice
    from syncbridge.client.state import LocalState
    from syncbridge.features import dnd_feature, hotspot_feature, media_feature
    from syncbridge.sync import (
        SCHEDULED_NAMESPACE,
        CommandWakeListener,
        DiagnosticsStore,
        SyncEngine,
    )

    backend_config = get_backend_config()
    if backend_config is None:
        click.echo("Error: No server configured. Run 'syncbridge configure' first.", err=True)
        sys.exit(1)

    setup_logging(log_file, verbose)

    get_config_dir().mkdir(parents=True, exist_ok=True)
    state = LocalState(get_state_db())
    backend = HTTPBackend(backend_config)
    device = SimulatedDevice()

    engine = SyncEngine(
        backend,
        get_engine_config(),
        journal=state,
        actuator=device.actuator(SCHEDULED_NAMESPACE),
        diagnostics=DiagnosticsStore(state),
    )

    factories = {
        "dnd": (dnd_feature, device.read_dnd),
        "media": (media_feature, device.read_media),
        "hotspot": (hotspot_feature, device.read_hotspot),
    }
    selected = list(features or FEATURES)
    for namespace in selected:
        factory, reader = factories[namespace]
        engine.register_feature(factory(device.actuator(namespace), reader))

    engine.add_progress_observer(lambda done, total, message: click.echo(f"  {message}"))

    namespaces = selected if no_scheduled else [*selected, SCHEDULED_NAMESPACE]
    click.echo(f"Starting {', '.join(namespaces)} against {backend_config.server_url}")
    result = engine.run_bulk("initial-sync", namespaces, engine.start)
    if result.status == "failed":
        click.echo(f"Error: {result.error}", err=True)
        engine.shutdown()
        backend.close()
        state.close()
        sys.exit(1)

    listener = CommandWakeListener(backend_config, engine.wake) if listen else None
    if listener:
        listener.start()

    stop_event = threading.Event()
    click.echo("Running. Press Ctrl+C to stop.")
    try:
        while not stop_event.wait(1.0):
            pass
    except KeyboardInterrupt:
        click.echo("\nStopping...")
    finally:
        if listener:
            listener.stop()
        engine.shutdown()
        backend.close()
        state.close()
    click.echo("Stopped.")
