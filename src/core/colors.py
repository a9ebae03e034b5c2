"""Preset display colors for time slots.

A user always gets the same default color: the palette is indexed by
`user_id mod len(PRESET_COLORS)`.
"""

from __future__ import annotations

PRESET_COLORS: tuple[str, ...] = (
    "#FF5733",  # coral
    "#33FF57",  # light green
    "#3357FF",  # royal blue
    "#FF33F5",  # pink
    "#F5FF33",  # yellow
    "#33FFF5",  # cyan
    "#FF8333",  # orange
    "#8333FF",  # purple
    "#33A0FF",  # light blue
    "#FF3333",  # red
)


def color_for_user(user_id: int) -> str:
    """Return the default color for a user id."""
    return PRESET_COLORS[user_id % len(PRESET_COLORS)]
