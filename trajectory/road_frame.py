"""
Road-relative (Frenet) coordinates over a piecewise-linear centreline.

``s`` is arc-length along the centreline, wrapping at ``max_s``; ``d`` is the
lateral offset, positive on the side the table's ``(dx, dy)`` normals point to
(the driving lanes).
"""

from __future__ import annotations

import math
from typing import Tuple

import numpy as np

from data.map_loader import WaypointTable
from trajectory.utils import wrap_s


class RoadFrame:
    """Global <-> Frenet converter for a circular waypoint table."""

    def __init__(self, x, y, s, dx, dy, max_s: float):
        """
        Args:
            x, y: Centreline waypoint coordinates
            s: Arc-length of each waypoint (strictly increasing, starting at or after 0)
            dx, dy: Unit lateral normal at each waypoint
            max_s: Track length; ``s`` wraps to 0 here
        """
        self._x = np.asarray(x, dtype=float)
        self._y = np.asarray(y, dtype=float)
        self._s = np.asarray(s, dtype=float)
        self._dx = np.asarray(dx, dtype=float)
        self._dy = np.asarray(dy, dtype=float)
        self.max_s = float(max_s)

        if len(self._x) < 2:
            raise ValueError("RoadFrame needs at least 2 waypoints")

    @classmethod
    def from_table(cls, table: WaypointTable) -> "RoadFrame":
        return cls(table.x, table.y, table.s, table.dx, table.dy, table.max_s)

    def __len__(self) -> int:
        return int(self._x.shape[0])

    def wrap_s(self, s: float) -> float:
        return wrap_s(s, self.max_s)

    def closest_waypoint(self, x: float, y: float) -> int:
        dist_sq = (self._x - x) ** 2 + (self._y - y) ** 2
        return int(np.argmin(dist_sq))

    def next_waypoint(self, x: float, y: float, heading: float) -> int:
        """Index of the waypoint that closes the segment the point is on.

        The closest waypoint is used unless it lies more than 45 degrees off
        ``heading``, i.e. behind the vehicle, in which case the following one is.
        """
        closest = self.closest_waypoint(x, y)
        bearing = math.atan2(self._y[closest] - y, self._x[closest] - x)
        angle = abs(heading - bearing) % (2.0 * math.pi)
        angle = min(2.0 * math.pi - angle, angle)
        if angle > math.pi / 4.0:
            closest = (closest + 1) % len(self)
        return closest

    def to_frenet(self, x: float, y: float, heading: float) -> Tuple[float, float]:
        """Convert a global point to ``(s, d)``.

        Args:
            x: Global X coordinate
            y: Global Y coordinate
            heading: Direction of travel at the point (radians)

        Returns:
            Tuple of (s, d), ``s`` in ``[0, max_s)``
        """
        next_wp = self.next_waypoint(x, y, heading)
        prev_wp = next_wp - 1 if next_wp > 0 else len(self) - 1

        n_x = self._x[next_wp] - self._x[prev_wp]
        n_y = self._y[next_wp] - self._y[prev_wp]
        x_x = x - self._x[prev_wp]
        x_y = y - self._y[prev_wp]

        seg_len_sq = n_x * n_x + n_y * n_y
        proj_norm = (x_x * n_x + x_y * n_y) / seg_len_sq if seg_len_sq > 0.0 else 0.0
        proj_x = proj_norm * n_x
        proj_y = proj_norm * n_y

        d = math.hypot(x_x - proj_x, x_y - proj_y)

        # Residual pointing against the outward normal means the point is on
        # the far side of the centreline.
        normal_x = self._dx[prev_wp]
        normal_y = self._dy[prev_wp]
        if normal_x == 0.0 and normal_y == 0.0:
            seg_heading = math.atan2(n_y, n_x)
            normal_x = math.cos(seg_heading - math.pi / 2.0)
            normal_y = math.sin(seg_heading - math.pi / 2.0)
        if (x_x - proj_x) * normal_x + (x_y - proj_y) * normal_y < 0.0:
            d = -d

        s = self._s[prev_wp] + proj_norm * math.sqrt(seg_len_sq)
        return self.wrap_s(s), d

    def to_cartesian(self, s: float, d: float) -> Tuple[float, float]:
        """Convert ``(s, d)`` to a global point.

        ``s`` outside ``[0, max_s)`` is wrapped first, so the segment search
        always lands on a valid index.
        """
        s = self.wrap_s(s)

        prev_wp = int(np.searchsorted(self._s, s, side="right")) - 1
        if prev_wp < 0:
            # Before the first waypoint: on the closing segment of the loop.
            prev_wp = len(self) - 1
            seg_s = s + self.max_s - self._s[prev_wp]
        else:
            seg_s = s - self._s[prev_wp]
        next_wp = (prev_wp + 1) % len(self)

        heading = math.atan2(
            self._y[next_wp] - self._y[prev_wp],
            self._x[next_wp] - self._x[prev_wp],
        )
        seg_x = self._x[prev_wp] + seg_s * math.cos(heading)
        seg_y = self._y[prev_wp] + seg_s * math.sin(heading)

        perp_heading = heading - math.pi / 2.0
        return seg_x + d * math.cos(perp_heading), seg_y + d * math.sin(perp_heading)

    def heading_at(self, s: float) -> float:
        """Heading (radians) of the centreline segment containing ``s``."""
        s = self.wrap_s(s)
        prev_wp = int(np.searchsorted(self._s, s, side="right")) - 1
        if prev_wp < 0:
            prev_wp = len(self) - 1
        next_wp = (prev_wp + 1) % len(self)
        return math.atan2(
            self._y[next_wp] - self._y[prev_wp],
            self._x[next_wp] - self._x[prev_wp],
        )
