"""Staleness filter shared by every command channel.

A command older than the staleness window is discarded without being
executed. Every feature uses the same window so their behaviour never
drifts apart.
"""

from __future__ import annotations

# Maximum command age, in milliseconds
DEFAULT_STALENESS_WINDOW_MS = 10_000


def is_actionable(
    created_at: int,
    now: int,
    window: int = DEFAULT_STALENESS_WINDOW_MS,
) -> bool:
    """Check whether a command is still recent enough to execute.

    Args:
        created_at: Command creation time (epoch ms).
        now: Reference time (epoch ms).
        window: Maximum accepted age (ms).

    Returns:
        True iff ``now - created_at <= window``.
    """
    return now - created_at <= window
