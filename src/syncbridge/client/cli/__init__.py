"""Command-line interface for SyncBridge.

This module provides the main CLI entry point and assembles all commands.

Commands:
- configure: Store the server URL, token and device id
- run: Run the sync engine until interrupted
- schedule: Create a scheduled message on the server
- cancel: Cancel a scheduled message
- status: Show server health and diagnostics
"""

from __future__ import annotations

import click

from syncbridge.client.cli.config import (
    get_backend_config,
    get_config_dir,
    get_config_file,
    get_engine_config,
    load_config,
    save_config,
    setup_logging,
)
from syncbridge.client.cli.configure import configure
from syncbridge.client.cli.run import run
from syncbridge.client.cli.schedule import cancel, schedule
from syncbridge.client.cli.status import status


@click.group()
@click.version_option(package_name="syncbridge")
def cli() -> None:
    """SyncBridge - command and state sync between a device and its companion."""


# Setup
cli.add_command(configure)

# Engine
cli.add_command(run)
cli.add_command(status)

# Scheduled messages
cli.add_command(schedule)
cli.add_command(cancel)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_backend_config",
    "get_config_dir",
    "get_config_file",
    "get_engine_config",
    "load_config",
    "save_config",
    "setup_logging",
]
