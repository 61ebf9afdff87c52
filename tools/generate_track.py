"""
Generate a synthetic stadium-shaped highway map.

Writes the simulator's waypoint format (one ``x y s dx dy`` row per waypoint)
so the planner and the offline simulator can run without the stock map.
Travel is counter-clockwise; lanes lie to the right of the centreline, on the
outside of the loop.
"""

import argparse
import math
import sys
from pathlib import Path
from typing import Tuple

import numpy as np

sys.path.insert(0, str(Path(__file__).parent.parent))

from data.map_loader import WaypointTable


def _centreline_pose(u: float, straight_length: float, radius: float) -> Tuple[float, float, float]:
    """Point and heading at arc-length ``u`` along the stadium centreline."""
    half_turn = math.pi * radius
    if u < straight_length:
        return u, 0.0, 0.0
    u -= straight_length
    if u < half_turn:
        theta = -math.pi / 2.0 + u / radius
        return straight_length + radius * math.cos(theta), radius + radius * math.sin(theta), theta + math.pi / 2.0
    u -= half_turn
    if u < straight_length:
        return straight_length - u, 2.0 * radius, math.pi
    u -= straight_length
    theta = math.pi / 2.0 + u / radius
    return radius * math.cos(theta), radius + radius * math.sin(theta), theta + math.pi / 2.0


def build_stadium_track(straight_length: float = 1000.0, radius: float = 100.0,
                        spacing: float = 30.0) -> Tuple[np.ndarray, float]:
    """
    Sample a stadium loop.

    Args:
        straight_length: Length of each straight (m)
        radius: Radius of the two half-circle ends (m)
        spacing: Arc-length between waypoints (m)

    Returns:
        Tuple of (rows [N, 5] as x, y, s, dx, dy; max_s). ``s`` is the
        cumulative polyline length, and ``max_s`` includes the closing segment.
    """
    if straight_length <= 0.0 or radius <= 0.0 or spacing <= 0.0:
        raise ValueError("straight_length, radius and spacing must be positive")

    loop_length = 2.0 * straight_length + 2.0 * math.pi * radius
    # Closing segment is at most ``spacing`` long
    count = int(math.ceil(loop_length / spacing))
    if (count - 1) * spacing >= loop_length - 1e-9:
        count -= 1
    if count < 3:
        raise ValueError(f"spacing {spacing} too coarse for a {loop_length:.1f} m loop")

    poses = [_centreline_pose(k * spacing, straight_length, radius) for k in range(count)]
    xs = np.array([p[0] for p in poses])
    ys = np.array([p[1] for p in poses])
    headings = np.array([p[2] for p in poses])

    seg = np.hypot(np.diff(xs), np.diff(ys))
    s = np.concatenate([[0.0], np.cumsum(seg)])
    closing = math.hypot(xs[0] - xs[-1], ys[0] - ys[-1])
    max_s = float(s[-1] + closing)

    # Unit normal to the right of travel
    dx = np.sin(headings)
    dy = -np.cos(headings)

    rows = np.column_stack([xs, ys, s, dx, dy])
    return rows, max_s


def build_stadium_table(straight_length: float = 1000.0, radius: float = 100.0,
                        spacing: float = 30.0) -> WaypointTable:
    rows, max_s = build_stadium_track(straight_length, radius, spacing)
    return WaypointTable.from_rows(rows, max_s)


def write_track_csv(path: str, rows: np.ndarray) -> Path:
    """Write rows in the simulator's whitespace-separated map format."""
    out = Path(path)
    out.parent.mkdir(parents=True, exist_ok=True)
    np.savetxt(out, rows, fmt="%.6f", delimiter=" ")
    return out


def main():
    parser = argparse.ArgumentParser(description="Generate a stadium-shaped waypoint table")
    parser.add_argument("--output", type=str, default="data/highway_map.csv",
                        help="Output map file")
    parser.add_argument("--straight", type=float, default=1000.0, help="Straight length (m)")
    parser.add_argument("--radius", type=float, default=100.0, help="End radius (m)")
    parser.add_argument("--spacing", type=float, default=30.0, help="Waypoint spacing (m)")
    args = parser.parse_args()

    rows, max_s = build_stadium_track(args.straight, args.radius, args.spacing)
    out = write_track_csv(args.output, rows)
    print(f"Wrote {len(rows)} waypoints to {out}")
    print(f"max_s = {max_s:.3f} (set map.max_s in config/planner_config.yaml)")


if __name__ == "__main__":
    main()
