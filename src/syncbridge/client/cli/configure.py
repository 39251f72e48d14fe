"""Backend configuration command for SyncBridge CLI.

Commands:
- configure: Store the server URL, token and device id
"""

from __future__ import annotations

import sys

import click

from syncbridge.client.cli.config import load_config, save_config


@click.command()
@click.option(
    "--server",
    required=True,
    help="Server URL (e.g., https://sync.example.com).",
)
@click.option("--token", required=True, help="Session token of this device.")
@click.option("--device-id", default=None, help="Device identifier (default: hostname).")
@click.option("--insecure", is_flag=True, help="Do not verify SSL certificates.")
@click.option(
    "--set",
    "engine_options",
    multiple=True,
    metavar="KEY=VALUE",
    help="Engine option, e.g. --set command_poll_interval=1.5 (repeatable).",
)
def configure(
    server: str,
    token: str,
    device_id: str | None,
    insecure: bool,
    engine_options: tuple[str, ...],
) -> None:
    """Configure the connection to a SyncBridge server."""
    import socket

    from syncbridge.core.config import EngineConfig

    config = load_config()
    engine = dict(config.get("engine", {}))
    for option in engine_options:
        key, sep, value = option.partition("=")
        if not sep:
            click.echo(f"Error: Invalid engine option '{option}' (expected KEY=VALUE)", err=True)
            sys.exit(1)
        engine[key.strip()] = _parse_value(value.strip())

    try:
        EngineConfig.from_dict(engine)
    except (TypeError, ValueError) as e:
        click.echo(f"Error: Invalid engine configuration: {e}", err=True)
        sys.exit(1)

    config.update(
        {
            "server_url": server.rstrip("/"),
            "auth_token": token,
            "device_id": device_id or socket.gethostname(),
            "verify_ssl": not insecure,
            "engine": engine,
        }
    )
    save_config(config)
    click.echo(f"Configured server {config['server_url']} for device {config['device_id']}")


def _parse_value(value: str) -> int | float | str:
    for cast in (int, float):
        try:
            return cast(value)
        except ValueError:
            continue
    return value
