"""
Trajectory generation module.
Fits a spline through sparse lane anchors and resamples it at the reference speed.
"""

import math
import logging
from dataclasses import dataclass
from typing import List, Sequence, Tuple

import numpy as np
from scipy.interpolate import CubicSpline

from data.formats.data_format import EgoState
from trajectory.road_frame import RoadFrame
from trajectory.utils import (
    DEFAULT_SPEED_UNIT_CONVERSION,
    LANE_WIDTH,
    TICK_SECONDS,
    lane_center_d,
)

logger = logging.getLogger(__name__)

MIN_ANCHOR_SPACING = 1e-3  # m, local-frame x separation required between spline knots


class TrajectoryGenerationError(RuntimeError):
    """No usable spline could be fitted for this cycle."""


@dataclass
class Trajectory:
    """Fixed-length waypoint sequence at one point per tick."""
    x: List[float]
    y: List[float]
    reused_points: int  # leading points copied from the previous tail
    lane: int
    reference_speed: float

    def __len__(self) -> int:
        return len(self.x)


@dataclass
class ReferencePose:
    """Origin of the local frame the spline is fitted in."""
    x: float
    y: float
    yaw: float


class SplineTrajectoryGenerator:
    """
    Spline trajectory generator.

    Seeds the curve tangentially at the end of the unconsumed tail (or at the
    ego pose), adds far anchors at a lane centre, fits a natural cubic spline
    in the tail-end frame and samples it so each tick covers the distance the
    reference speed implies.
    """

    def __init__(self, road_frame: RoadFrame, target_points: int = 50,
                 tick_seconds: float = TICK_SECONDS,
                 speed_unit_conversion: float = DEFAULT_SPEED_UNIT_CONVERSION,
                 lane_width: float = LANE_WIDTH):
        """
        Initialize trajectory generator.

        Args:
            road_frame: Frenet converter for the track
            target_points: Number of waypoints emitted every cycle
            tick_seconds: Time the vehicle spends per waypoint
            speed_unit_conversion: Reference-speed units per m/s (mph: 2.24)
            lane_width: Lane width in meters
        """
        if target_points < 1:
            raise ValueError(f"target_points must be positive, got {target_points}")
        self.road_frame = road_frame
        self.target_points = int(target_points)
        self.tick_seconds = float(tick_seconds)
        self.speed_unit_conversion = float(speed_unit_conversion)
        self.lane_width = float(lane_width)

    def _seed_anchors(self, ego: EgoState, tail_x: Sequence[float],
                      tail_y: Sequence[float]) -> Tuple[ReferencePose, List[float], List[float]]:
        """Two points fixing the start position and heading of the new curve."""
        if len(tail_x) < 2:
            ref = ReferencePose(ego.x, ego.y, ego.yaw)
            prev_x = ego.x - math.cos(ego.yaw)
            prev_y = ego.y - math.sin(ego.yaw)
            return ref, [prev_x, ego.x], [prev_y, ego.y]

        ref_x, ref_y = tail_x[-1], tail_y[-1]
        prev_x, prev_y = tail_x[-2], tail_y[-2]
        ref = ReferencePose(ref_x, ref_y, math.atan2(ref_y - prev_y, ref_x - prev_x))
        return ref, [prev_x, ref_x], [prev_y, ref_y]

    def _to_local(self, ref: ReferencePose, xs: np.ndarray, ys: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        shift_x = xs - ref.x
        shift_y = ys - ref.y
        cos_yaw = math.cos(-ref.yaw)
        sin_yaw = math.sin(-ref.yaw)
        return shift_x * cos_yaw - shift_y * sin_yaw, shift_x * sin_yaw + shift_y * cos_yaw

    def _to_global(self, ref: ReferencePose, xs: np.ndarray, ys: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
        cos_yaw = math.cos(ref.yaw)
        sin_yaw = math.sin(ref.yaw)
        return xs * cos_yaw - ys * sin_yaw + ref.x, xs * sin_yaw + ys * cos_yaw + ref.y

    def fit_spline(self, local_x: np.ndarray, local_y: np.ndarray) -> CubicSpline:
        """Fit a natural cubic spline, dropping anchors that do not advance in x."""
        keep_x = [float(local_x[0])]
        keep_y = [float(local_y[0])]
        for x, y in zip(local_x[1:], local_y[1:]):
            if x > keep_x[-1] + MIN_ANCHOR_SPACING:
                keep_x.append(float(x))
                keep_y.append(float(y))

        dropped = len(local_x) - len(keep_x)
        if dropped:
            logger.debug(f"[TRAJECTORY] Dropped {dropped} anchor(s) not ahead of the previous one")
        if len(keep_x) < 3:
            raise TrajectoryGenerationError(
                f"Only {len(keep_x)} usable spline anchors (need 3): local x={np.round(local_x, 3).tolist()}"
            )
        return CubicSpline(np.array(keep_x), np.array(keep_y), bc_type="natural")

    def generate(self, lane: int, reference_speed: float, ego: EgoState,
                 previous_path_x: Sequence[float], previous_path_y: Sequence[float],
                 anchor_offsets: Sequence[float], horizon: float) -> Trajectory:
        """
        Build the next fixed-length waypoint list.

        Args:
            lane: Target lane index
            reference_speed: Speed to realise on the new points (reference units)
            ego: Current ego state
            previous_path_x, previous_path_y: Unconsumed tail of the last plan
            anchor_offsets: Arc-length offsets ahead of ``ego.s`` for the far anchors
            horizon: Local-frame x distance used to size the per-tick step

        Returns:
            Trajectory whose first ``len(tail)`` points are the tail, unchanged

        Raises:
            TrajectoryGenerationError: anchors are too degenerate to fit
        """
        tail_x = list(previous_path_x[:self.target_points])
        tail_y = list(previous_path_y[:self.target_points])

        ref, anchor_x, anchor_y = self._seed_anchors(ego, tail_x, tail_y)

        target_d = lane_center_d(lane, self.lane_width)
        for offset in anchor_offsets:
            wx, wy = self.road_frame.to_cartesian(self.road_frame.wrap_s(ego.s + offset), target_d)
            anchor_x.append(wx)
            anchor_y.append(wy)

        local_x, local_y = self._to_local(ref, np.array(anchor_x), np.array(anchor_y))
        spline = self.fit_spline(local_x, local_y)

        next_x = tail_x
        next_y = tail_y
        needed = self.target_points - len(tail_x)
        if needed > 0:
            speed = max(0.0, float(reference_speed))
            target_x = float(horizon)
            target_y = float(spline(target_x))
            target_dist = math.hypot(target_x, target_y)

            step = 0.0
            if target_dist > 0.0:
                # x advance whose chord along the horizon line matches one tick at speed
                step = target_x * (self.tick_seconds * speed / self.speed_unit_conversion) / target_dist

            sample_x = step * np.arange(1, needed + 1, dtype=float)
            sample_y = spline(sample_x)
            global_x, global_y = self._to_global(ref, sample_x, sample_y)
            next_x = next_x + global_x.tolist()
            next_y = next_y + global_y.tolist()

        return Trajectory(
            x=next_x,
            y=next_y,
            reused_points=len(tail_x),
            lane=lane,
            reference_speed=float(reference_speed),
        )
