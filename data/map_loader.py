"""
Reference waypoint table loader.

The table is the simulator's highway map: one whitespace-separated row per
centreline waypoint, ``x y s dx dy``, where ``(dx, dy)`` is the unit normal
pointing away from the centreline towards the driving lanes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Union

import numpy as np

logger = logging.getLogger(__name__)

DEFAULT_MAX_S = 6945.554  # track length of the stock simulator highway


class MapLoadError(RuntimeError):
    """The waypoint table is missing or unusable. Fatal at startup."""


@dataclass(frozen=True)
class WaypointTable:
    """Immutable centreline waypoints indexed by arc-length."""
    x: np.ndarray
    y: np.ndarray
    s: np.ndarray
    dx: np.ndarray
    dy: np.ndarray
    max_s: float

    def __len__(self) -> int:
        return int(self.x.shape[0])

    @classmethod
    def from_rows(cls, rows: np.ndarray, max_s: float) -> "WaypointTable":
        """Build and validate a table from an ``[N, 5]`` array."""
        rows = np.asarray(rows, dtype=float)
        if rows.ndim != 2 or rows.shape[1] < 5:
            raise MapLoadError(f"Waypoint table needs 5 columns (x y s dx dy), got shape {rows.shape}")
        if rows.shape[0] < 2:
            raise MapLoadError(f"Waypoint table needs at least 2 rows, got {rows.shape[0]}")
        if not np.all(np.isfinite(rows[:, :5])):
            raise MapLoadError("Waypoint table contains non-finite values")
        if np.any(np.diff(rows[:, 2]) <= 0.0):
            raise MapLoadError("Waypoint arc-length column must be strictly increasing")
        if max_s <= rows[-1, 2]:
            raise MapLoadError(f"max_s={max_s} must exceed the last waypoint s={rows[-1, 2]}")

        return cls(
            x=rows[:, 0].copy(),
            y=rows[:, 1].copy(),
            s=rows[:, 2].copy(),
            dx=rows[:, 3].copy(),
            dy=rows[:, 4].copy(),
            max_s=float(max_s),
        )


def load_waypoint_table(path: Union[str, Path], max_s: float = DEFAULT_MAX_S) -> WaypointTable:
    """Load the highway map file.

    Raises:
        MapLoadError: file missing, unparsable, empty or inconsistent.
    """
    path = Path(path)
    if not path.exists():
        raise MapLoadError(f"Waypoint table not found: {path} (tools/generate_track.py writes a synthetic one)")

    try:
        rows = np.loadtxt(path, dtype=float, ndmin=2)
    except ValueError as e:
        raise MapLoadError(f"Could not parse waypoint table {path}: {e}") from e

    if rows.size == 0:
        raise MapLoadError(f"Waypoint table is empty: {path}")

    table = WaypointTable.from_rows(rows, max_s)
    logger.info(f"Loaded {len(table)} waypoints from {path} (max_s={table.max_s:.3f})")
    return table
