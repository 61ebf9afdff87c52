"""
Proximity detection from the sensor-fusion snapshot.

Each tracked vehicle is projected forward by the time the ego vehicle still
needs to drive its queued path, then judged against the ego's projected
arc-length in its own lane or one of the adjacent lanes.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Optional

from data.formats.data_format import EgoState, SituationalFlags, TrackedVehicle
from trajectory.utils import (
    DEFAULT_SPEED_UNIT_CONVERSION,
    LANE_WIDTH,
    NUM_LANES,
    TICK_SECONDS,
    is_valid_lane,
    lane_center_d,
    signed_s_gap,
)

logger = logging.getLogger(__name__)


@dataclass
class ProximityConfig:
    """Configuration for the proximity detector."""

    safety_gap: float = 28.0  # m
    emergency_speed_delta: float = 6.7  # m/s (about 15 mph)

    # Adjacent-lane merge checks
    rear_clearance: float = 2.0  # m behind the ego that must be free
    slow_front_extension: float = 4.0  # extra look-ahead for slow vehicles
    slow_speed_ratio: float = 0.8
    fast_rear_clearance: float = 6.0  # m behind the ego checked for fast vehicles
    fast_speed_ratio: float = 1.2

    tick_seconds: float = TICK_SECONDS
    lane_width: float = LANE_WIDTH
    num_lanes: int = NUM_LANES
    speed_unit_conversion: float = DEFAULT_SPEED_UNIT_CONVERSION
    max_s: Optional[float] = None  # enables wrap-aware gaps when set


@dataclass
class VehicleAssessment:
    """How one vehicle constrains the ego vehicle."""
    ahead: bool = False
    emergency: bool = False
    blocks_merge: bool = False


def lane_offset_of(d: float, lane: int, lane_width: float = LANE_WIDTH,
                   num_lanes: int = NUM_LANES) -> Optional[int]:
    """Offset (-1, 0, +1) of the lane containing ``d`` relative to ``lane``.

    Adjacent lanes are only considered when they exist. Returns None for
    vehicles farther away or off the road.
    """
    for offset in (0, -1, 1):
        candidate = lane + offset
        if not is_valid_lane(candidate, num_lanes):
            continue
        center = lane_center_d(candidate, lane_width)
        if center - lane_width / 2.0 < d < center + lane_width / 2.0:
            return offset
    return None


def classify_vehicle(gap: float, vehicle_speed: float, ego_speed: float, lane_offset: int,
                     config: ProximityConfig) -> VehicleAssessment:
    """
    Judge one vehicle at a projected longitudinal ``gap`` (positive ahead).

    Args:
        gap: Projected vehicle s minus projected ego s (m)
        vehicle_speed: Vehicle speed (m/s)
        ego_speed: Ego speed (m/s)
        lane_offset: 0 for the ego lane, -1/+1 for the left/right neighbour
        config: Detector thresholds

    Returns:
        VehicleAssessment; ``ahead``/``emergency`` only for the ego lane,
        ``blocks_merge`` only for adjacent lanes
    """
    safety_gap = config.safety_gap

    if lane_offset == 0:
        if 0.0 < gap < safety_gap:
            return VehicleAssessment(ahead=True)
        if abs(gap) < safety_gap / 2.0 and abs(vehicle_speed - ego_speed) > config.emergency_speed_delta:
            return VehicleAssessment(emergency=True)
        return VehicleAssessment()

    if lane_offset not in (-1, 1):
        raise ValueError(f"lane_offset must be -1, 0 or +1, got {lane_offset}")

    alongside = gap < safety_gap and -gap < config.rear_clearance
    slow_ahead = (
        gap < safety_gap + config.slow_front_extension
        and -gap < config.rear_clearance
        and vehicle_speed < config.slow_speed_ratio * ego_speed
    )
    fast_behind = (
        gap < safety_gap
        and -gap < config.fast_rear_clearance
        and vehicle_speed > config.fast_speed_ratio * ego_speed
    )
    return VehicleAssessment(blocks_merge=alongside or slow_ahead or fast_behind)


class ProximityDetector:
    """Builds the per-cycle situational flags. Holds no state between cycles."""

    def __init__(self, config: ProximityConfig):
        self.config = config

    def projected_ego_s(self, ego: EgoState, prev_size: int, end_path_s: Optional[float]) -> float:
        if prev_size > 0 and end_path_s is not None:
            return float(end_path_s)
        return float(ego.s)

    def detect(self, ego: EgoState, prev_size: int, end_path_s: Optional[float],
               vehicles: Iterable[TrackedVehicle], lane: int) -> SituationalFlags:
        """
        Compute situational flags for the current lane.

        Args:
            ego: Ego state (speed in reference units)
            prev_size: Number of unconsumed tail points
            end_path_s: Arc-length at the end of the tail
            vehicles: Sensor-fusion snapshot
            lane: Current lane index

        Returns:
            SituationalFlags; ``obstructor_speed`` is the last same-lane vehicle flagged ahead
        """
        cfg = self.config
        ego_s = self.projected_ego_s(ego, prev_size, end_path_s)
        ego_speed = ego.speed / cfg.speed_unit_conversion
        lookahead_time = prev_size * cfg.tick_seconds

        flags = SituationalFlags()
        for vehicle in vehicles:
            offset = lane_offset_of(vehicle.d, lane, cfg.lane_width, cfg.num_lanes)
            if offset is None:
                continue

            speed = vehicle.speed
            vehicle_s = vehicle.s + lookahead_time * speed
            gap = signed_s_gap(vehicle_s, ego_s, cfg.max_s)
            assessment = classify_vehicle(gap, speed, ego_speed, offset, cfg)

            if offset == 0:
                if assessment.ahead:
                    flags.ahead = True
                    flags.obstructor_speed = speed
                elif assessment.emergency:
                    flags.emergency = True
            elif offset < 0:
                flags.left_blocked = flags.left_blocked or assessment.blocks_merge
            else:
                flags.right_blocked = flags.right_blocked or assessment.blocks_merge

        if flags.emergency:
            logger.info(f"[PROXIMITY] Emergency: fast closing vehicle within {cfg.safety_gap / 2.0:.1f} m in lane {lane}")
        return flags


def build_proximity_detector(proximity_cfg: dict, max_s: Optional[float] = None,
                             tick_seconds: float = TICK_SECONDS,
                             speed_unit_conversion: float = DEFAULT_SPEED_UNIT_CONVERSION,
                             lane_width: float = LANE_WIDTH,
                             num_lanes: int = NUM_LANES) -> ProximityDetector:
    """Build a ProximityDetector from the ``proximity`` config section."""
    wrap_gaps = bool(proximity_cfg.get("wrap_aware_gaps", True))
    config = ProximityConfig(
        safety_gap=float(proximity_cfg.get("safety_gap", 28.0)),
        emergency_speed_delta=float(proximity_cfg.get("emergency_speed_delta", 6.7)),
        rear_clearance=float(proximity_cfg.get("rear_clearance", 2.0)),
        slow_front_extension=float(proximity_cfg.get("slow_front_extension", 4.0)),
        slow_speed_ratio=float(proximity_cfg.get("slow_speed_ratio", 0.8)),
        fast_rear_clearance=float(proximity_cfg.get("fast_rear_clearance", 6.0)),
        fast_speed_ratio=float(proximity_cfg.get("fast_speed_ratio", 1.2)),
        tick_seconds=float(tick_seconds),
        lane_width=float(lane_width),
        num_lanes=int(num_lanes),
        speed_unit_conversion=float(speed_unit_conversion),
        max_s=max_s if wrap_gaps else None,
    )
    return ProximityDetector(config)
