"""
Motion planning pipeline: one telemetry message in, one waypoint list out.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from control.speed_governor import VelocityGovernor, build_velocity_governor
from data.formats.data_format import (
    EgoState,
    PlanOutput,
    SituationalFlags,
    Telemetry,
    TelemetryError,
    parse_telemetry,
)
from perception.proximity import ProximityDetector, build_proximity_detector
from .behavior import BehaviorSelector, build_behavior_selector
from .models.trajectory_planner import SplineTrajectoryGenerator, TrajectoryGenerationError
from .road_frame import RoadFrame
from .utils import (
    DEFAULT_SPEED_UNIT_CONVERSION,
    LANE_WIDTH,
    NUM_LANES,
    TICK_SECONDS,
    extend_path,
    is_valid_lane,
    path_heading,
)

logger = logging.getLogger(__name__)


@dataclass
class MotionPlannerConfig:
    """Final-trajectory settings and initial state."""
    target_points: int = 50
    anchor_offsets: Sequence[float] = (55.0, 90.0, 135.0)
    horizon: float = 45.0
    initial_lane: int = 1
    initial_reference_speed: float = 0.0
    speed_unit_conversion: float = DEFAULT_SPEED_UNIT_CONVERSION
    num_lanes: int = NUM_LANES


class MotionPlanner:
    """
    Planner instance owning the reference speed and lane index.

    Per cycle: proximity detection, behavior selection (only when something is
    ahead), velocity governor, final trajectory. State changes are committed
    only when the final trajectory is built; a failed cycle re-sends the
    previous tail, extended to the target length.
    """

    def __init__(self, config: MotionPlannerConfig, road_frame: RoadFrame,
                 detector: ProximityDetector, selector: BehaviorSelector,
                 governor: VelocityGovernor, generator: SplineTrajectoryGenerator):
        if not is_valid_lane(config.initial_lane, config.num_lanes):
            raise ValueError(f"initial_lane {config.initial_lane} outside [0, {config.num_lanes - 1}]")
        self.config = config
        self.road_frame = road_frame
        self.detector = detector
        self.selector = selector
        self.governor = governor
        self.generator = generator

        self.reference_speed = 0.0
        self.lane = config.initial_lane
        self.last_plan: Optional[PlanOutput] = None
        self.cycle_count = 0
        self.fallback_count = 0
        self.reset()

    def reset(self) -> None:
        """Back to the initial lane and reference speed."""
        self.reference_speed = self.governor.clamp(float(self.config.initial_reference_speed))
        self.lane = self.config.initial_lane
        self.last_plan = None
        self.cycle_count = 0
        self.fallback_count = 0

    def _tail(self, telemetry: Telemetry) -> Tuple[List[float], List[float]]:
        limit = self.config.target_points
        return telemetry.previous_path_x[:limit], telemetry.previous_path_y[:limit]

    def _end_path_s(self, telemetry: Telemetry, tail_x: List[float], tail_y: List[float]) -> Optional[float]:
        """Arc-length at the end of the tail; derived from the tail itself if not reported."""
        if not tail_x:
            return None
        if telemetry.end_path_s is not None:
            return telemetry.end_path_s
        heading = path_heading(tail_x, tail_y)
        if heading is None:
            heading = telemetry.ego.yaw
        end_s, _ = self.road_frame.to_frenet(tail_x[-1], tail_y[-1], heading)
        return end_s

    def plan(self, telemetry: Telemetry) -> PlanOutput:
        """Run one planning cycle. Never returns fewer than ``target_points`` waypoints."""
        self.cycle_count += 1
        ego = telemetry.ego
        tail_x, tail_y = self._tail(telemetry)
        flags = SituationalFlags()

        try:
            end_path_s = self._end_path_s(telemetry, tail_x, tail_y)
            flags = self.detector.detect(ego, len(tail_x), end_path_s, telemetry.vehicles, self.lane)
            decision = self.selector.select(flags, self.lane, self.reference_speed, ego, tail_x, tail_y)
            governed = self.governor.step(self.reference_speed, self.lane, flags, decision.option)
            trajectory = self.generator.generate(
                governed.lane,
                governed.reference_speed,
                ego,
                tail_x,
                tail_y,
                self.config.anchor_offsets,
                self.config.horizon,
            )
        except TrajectoryGenerationError as e:
            return self._fallback(ego, tail_x, tail_y, flags, f"trajectory: {e}")

        self.reference_speed = governed.reference_speed
        self.lane = governed.lane

        plan = PlanOutput(
            next_x=trajectory.x,
            next_y=trajectory.y,
            reference_speed=self.reference_speed,
            lane=self.lane,
            flags=flags,
            behavior=decision.option.value,
            costs=decision.costs_dict(),
            governor_rule=governed.rule,
        )
        self.last_plan = plan
        logger.debug(
            f"[PLANNER] cycle={self.cycle_count} prev_size={len(tail_x)} lane={self.lane} "
            f"ref={self.reference_speed:.2f} rule={governed.rule} flags={flags.to_dict()}"
        )
        return plan

    def plan_payload(self, payload: Dict[str, Any]) -> PlanOutput:
        """Parse a raw telemetry body and plan.

        Raises:
            TelemetryError: the payload is unusable and there is no earlier plan to fall back on
        """
        try:
            telemetry = parse_telemetry(payload)
        except TelemetryError as e:
            tail = _salvage_tail(payload, self.config.target_points)
            if tail is not None:
                self.cycle_count += 1
                return self._fallback(None, tail[0], tail[1], SituationalFlags(), f"telemetry: {e}")
            if self.last_plan is not None:
                self.cycle_count += 1
                return self._fallback(
                    None, self.last_plan.next_x, self.last_plan.next_y, SituationalFlags(), f"telemetry: {e}"
                )
            raise
        return self.plan(telemetry)

    def _fallback(self, ego: Optional[EgoState], tail_x: Sequence[float], tail_y: Sequence[float],
                  flags: SituationalFlags, reason: str) -> PlanOutput:
        """Keep moving on the last known-good path."""
        self.fallback_count += 1
        if ego is not None:
            origin = (ego.x, ego.y, ego.yaw)
            speed_mps = ego.speed / self.config.speed_unit_conversion
        else:
            origin = (tail_x[0], tail_y[0], 0.0) if len(tail_x) > 0 else (0.0, 0.0, 0.0)
            speed_mps = 0.0
        next_x, next_y = extend_path(
            tail_x, tail_y, self.config.target_points, origin, speed_mps, self.generator.tick_seconds
        )
        logger.warning(
            f"[PLANNER] Fallback on cycle {self.cycle_count} ({reason}); re-sending "
            f"{min(len(tail_x), self.config.target_points)} tail points extended to {len(next_x)}"
        )
        plan = PlanOutput(
            next_x=next_x,
            next_y=next_y,
            reference_speed=self.reference_speed,
            lane=self.lane,
            flags=flags,
            behavior=None,
            costs=None,
            governor_rule="none",
            fallback=True,
            fallback_reason=reason,
        )
        self.last_plan = plan
        return plan


def _salvage_tail(payload: Any, limit: int) -> Optional[Tuple[List[float], List[float]]]:
    """Previous path from a payload that failed validation, if it is itself intact."""
    if not isinstance(payload, dict):
        return None
    try:
        xs = [float(v) for v in payload.get("previous_path_x") or []]
        ys = [float(v) for v in payload.get("previous_path_y") or []]
    except (TypeError, ValueError):
        return None
    if not xs or len(xs) != len(ys):
        return None
    if not all(math.isfinite(v) for v in xs + ys):
        return None
    return xs[:limit], ys[:limit]


def build_motion_planner(config: Dict[str, Any], road_frame: RoadFrame) -> MotionPlanner:
    """Build the full planner from the loaded YAML config."""
    trajectory_cfg = config.get("trajectory", {}) or {}
    tick_seconds = float(trajectory_cfg.get("tick_seconds", TICK_SECONDS))
    conversion = float(trajectory_cfg.get("speed_unit_conversion", DEFAULT_SPEED_UNIT_CONVERSION))
    lane_width = float(trajectory_cfg.get("lane_width", LANE_WIDTH))
    num_lanes = int(trajectory_cfg.get("num_lanes", NUM_LANES))

    generator = SplineTrajectoryGenerator(
        road_frame,
        target_points=int(trajectory_cfg.get("target_points", 50)),
        tick_seconds=tick_seconds,
        speed_unit_conversion=conversion,
        lane_width=lane_width,
    )
    selector = build_behavior_selector(
        config.get("behavior", {}) or {}, generator, tick_seconds, conversion, num_lanes
    )
    detector = build_proximity_detector(
        config.get("proximity", {}) or {}, road_frame.max_s, tick_seconds, conversion, lane_width, num_lanes
    )
    governor = build_velocity_governor(config.get("governor", {}) or {}, conversion, num_lanes)

    planner_config = MotionPlannerConfig(
        target_points=generator.target_points,
        anchor_offsets=tuple(float(v) for v in trajectory_cfg.get("anchor_offsets", [55.0, 90.0, 135.0])),
        horizon=float(trajectory_cfg.get("horizon", 45.0)),
        initial_lane=int(trajectory_cfg.get("initial_lane", 1)),
        initial_reference_speed=float(trajectory_cfg.get("initial_reference_speed", 0.0)),
        speed_unit_conversion=conversion,
        num_lanes=num_lanes,
    )
    return MotionPlanner(planner_config, road_frame, detector, selector, governor, generator)
