from __future__ import annotations

import math
from typing import Optional, Sequence, Tuple

import numpy as np


NUM_LANES = 3
LANE_WIDTH = 4.0  # m
TICK_SECONDS = 0.02  # one waypoint is consumed per tick
DEFAULT_SPEED_UNIT_CONVERSION = 2.24  # mph per m/s


def lane_center_d(lane: int, lane_width: float = LANE_WIDTH) -> float:
    """Lateral offset of a lane centre (lane 0 is next to the centreline)."""
    return lane_width / 2.0 + lane_width * lane


def lane_for_d(d: float, lane_width: float = LANE_WIDTH, num_lanes: int = NUM_LANES) -> Optional[int]:
    """Return the lane index whose half-width band contains ``d``, or None if off-road."""
    for lane in range(num_lanes):
        center = lane_center_d(lane, lane_width)
        if center - lane_width / 2.0 < d < center + lane_width / 2.0:
            return lane
    return None


def is_valid_lane(lane: int, num_lanes: int = NUM_LANES) -> bool:
    return 0 <= lane < num_lanes


def wrap_s(s: float, max_s: float) -> float:
    """Normalize an arc-length into ``[0, max_s)``."""
    if max_s <= 0.0:
        return float(s)
    wrapped = math.fmod(float(s), max_s)
    if wrapped < 0.0:
        wrapped += max_s
    # fmod can return max_s itself for values a hair below a multiple of max_s
    if wrapped >= max_s:
        wrapped = 0.0
    return wrapped


def signed_s_gap(target_s: float, reference_s: float, max_s: Optional[float] = None) -> float:
    """Signed longitudinal distance from ``reference_s`` to ``target_s``.

    Positive means the target is ahead. With ``max_s`` the shortest distance
    around the loop is returned, so a car just past the seam reads as ahead.
    """
    gap = float(target_s) - float(reference_s)
    if max_s is None or max_s <= 0.0:
        return gap
    gap = math.fmod(gap, max_s)
    if gap > max_s / 2.0:
        gap -= max_s
    elif gap < -max_s / 2.0:
        gap += max_s
    return gap


def implied_speeds(
    xs: Sequence[float],
    ys: Sequence[float],
    tick_seconds: float = TICK_SECONDS,
    unit_conversion: float = DEFAULT_SPEED_UNIT_CONVERSION,
) -> np.ndarray:
    """Per-segment speed implied by consecutive waypoints, in reference-speed units."""
    x_arr = np.asarray(xs, dtype=float)
    y_arr = np.asarray(ys, dtype=float)
    if len(x_arr) < 2:
        return np.zeros(0)
    seg = np.hypot(np.diff(x_arr), np.diff(y_arr))
    return unit_conversion * seg / tick_seconds


def path_heading(xs: Sequence[float], ys: Sequence[float]) -> Optional[float]:
    """Heading (radians) of the last segment of a path, or None when shorter than 2 points."""
    if len(xs) < 2:
        return None
    return math.atan2(ys[-1] - ys[-2], xs[-1] - xs[-2])


def extend_path(
    xs: Sequence[float],
    ys: Sequence[float],
    target_count: int,
    origin: Tuple[float, float, float],
    speed_mps: float,
    tick_seconds: float = TICK_SECONDS,
) -> Tuple[list, list]:
    """Pad a path to ``target_count`` points by constant-velocity extrapolation.

    The existing points are kept verbatim. With two or more points the last
    segment's heading and spacing are continued; otherwise the path starts
    from ``origin`` (x, y, yaw) advancing at ``speed_mps``. Used as the
    fail-safe plan when a cycle cannot produce a fresh trajectory.
    """
    out_x = [float(v) for v in xs[:target_count]]
    out_y = [float(v) for v in ys[:target_count]]

    if len(out_x) >= 2:
        step_x = out_x[-1] - out_x[-2]
        step_y = out_y[-1] - out_y[-2]
    else:
        x0, y0, yaw = origin
        step = max(0.0, float(speed_mps)) * tick_seconds
        step_x = step * math.cos(yaw)
        step_y = step * math.sin(yaw)
        if not out_x:
            out_x.append(float(x0))
            out_y.append(float(y0))

    while len(out_x) < target_count:
        out_x.append(out_x[-1] + step_x)
        out_y.append(out_y[-1] + step_y)
    return out_x, out_y
