"""
Cost-based lane behavior selection.

When something is ahead in the current lane, every drivable option is
simulated with the trajectory generator and scored on the implied speed at the
end of its candidate path.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

from data.formats.data_format import EgoState, SituationalFlags
from trajectory.models.trajectory_planner import SplineTrajectoryGenerator
from trajectory.utils import (
    DEFAULT_SPEED_UNIT_CONVERSION,
    NUM_LANES,
    TICK_SECONDS,
    implied_speeds,
    is_valid_lane,
)

logger = logging.getLogger(__name__)


class BehaviorOption(Enum):
    """Lane behavior options."""
    KEEP_LANE = "KL"
    CHANGE_LEFT = "LCL"
    CHANGE_RIGHT = "LCR"

    @property
    def lane_offset(self) -> int:
        if self is BehaviorOption.KEEP_LANE:
            return 0
        if self is BehaviorOption.CHANGE_LEFT:
            return -1
        if self is BehaviorOption.CHANGE_RIGHT:
            return 1
        raise ValueError(f"Unhandled behavior option: {self!r}")

    def target_lane(self, lane: int) -> int:
        return lane + self.lane_offset


def admissible_options(lane: int, num_lanes: int = NUM_LANES) -> List[BehaviorOption]:
    """Options whose target lane exists. KEEP_LANE is always first."""
    if not is_valid_lane(lane, num_lanes):
        raise ValueError(f"Lane index {lane} outside [0, {num_lanes - 1}]")
    return [opt for opt in BehaviorOption if is_valid_lane(opt.target_lane(lane), num_lanes)]


def is_target_blocked(option: BehaviorOption, flags: SituationalFlags) -> bool:
    if option is BehaviorOption.KEEP_LANE:
        return False
    if option is BehaviorOption.CHANGE_LEFT:
        return flags.left_blocked
    if option is BehaviorOption.CHANGE_RIGHT:
        return flags.right_blocked
    raise ValueError(f"Unhandled behavior option: {option!r}")


def drivable_options(lane: int, flags: SituationalFlags, num_lanes: int = NUM_LANES) -> List[BehaviorOption]:
    """Admissible options minus lane changes into a lane flagged blocked."""
    return [opt for opt in admissible_options(lane, num_lanes) if not is_target_blocked(opt, flags)]


@dataclass
class OptionCost:
    velocity: float
    acceleration: float

    def to_dict(self) -> Dict[str, float]:
        return {"velocity": self.velocity, "acceleration": self.acceleration}


@dataclass
class BehaviorDecision:
    """Selected option and the costs behind it (empty when nothing was evaluated)."""
    option: BehaviorOption
    costs: Dict[BehaviorOption, OptionCost] = field(default_factory=dict)
    evaluated: bool = False

    def costs_dict(self) -> Optional[Dict[str, Dict[str, float]]]:
        if not self.evaluated:
            return None
        return {opt.value: cost.to_dict() for opt, cost in self.costs.items()}


@dataclass
class BehaviorSelectorConfig:
    """Configuration for the behavior selector."""
    anchor_offsets: Sequence[float] = (25.0, 50.0, 75.0)
    horizon: float = 25.0
    accel_cost_threshold: float = 1e-8
    skip_blocked_options: bool = True
    num_lanes: int = NUM_LANES


class BehaviorSelector:
    """Scores candidate lanes and picks the next behavior."""

    def __init__(self, config: BehaviorSelectorConfig, generator: SplineTrajectoryGenerator,
                 tick_seconds: float = TICK_SECONDS,
                 speed_unit_conversion: float = DEFAULT_SPEED_UNIT_CONVERSION):
        self.config = config
        self.generator = generator
        self.tick_seconds = float(tick_seconds)
        self.speed_unit_conversion = float(speed_unit_conversion)

    def candidate_options(self, lane: int, flags: SituationalFlags) -> List[BehaviorOption]:
        if self.config.skip_blocked_options:
            return drivable_options(lane, flags, self.config.num_lanes)
        return admissible_options(lane, self.config.num_lanes)

    def score(self, xs: Sequence[float], ys: Sequence[float], reference_speed: float) -> OptionCost:
        """Velocity and acceleration cost of a candidate path.

        Velocity cost is the squared gap between the last segment's implied
        speed and the reference speed; acceleration cost is the squared change
        between the last segment and the one two segments earlier.
        """
        speeds = implied_speeds(xs, ys, self.tick_seconds, self.speed_unit_conversion)
        if len(speeds) == 0:
            return OptionCost(velocity=float(reference_speed) ** 2, acceleration=0.0)

        velocity = (float(speeds[-1]) - float(reference_speed)) ** 2
        acceleration = 0.0
        if len(speeds) >= 3:
            acceleration = (float(speeds[-1]) - float(speeds[-3])) ** 2
        return OptionCost(velocity=velocity, acceleration=acceleration)

    def evaluate(self, options: Sequence[BehaviorOption], lane: int, reference_speed: float,
                 ego: EgoState, previous_path_x: Sequence[float],
                 previous_path_y: Sequence[float]) -> Dict[BehaviorOption, OptionCost]:
        costs: Dict[BehaviorOption, OptionCost] = {}
        for option in options:
            candidate = self.generator.generate(
                option.target_lane(lane),
                reference_speed,
                ego,
                previous_path_x,
                previous_path_y,
                self.config.anchor_offsets,
                self.config.horizon,
            )
            costs[option] = self.score(candidate.x, candidate.y, reference_speed)
        return costs

    def choose(self, costs: Dict[BehaviorOption, OptionCost]) -> BehaviorOption:
        """Comfort first: least acceleration cost if any option needs noticeable
        speed change, otherwise the option with the largest velocity cost."""
        options = list(costs.keys())
        min_accel = min(costs[opt].acceleration for opt in options)
        if min_accel > self.config.accel_cost_threshold:
            return min(options, key=lambda opt: costs[opt].acceleration)
        return max(options, key=lambda opt: costs[opt].velocity)

    def select(self, flags: SituationalFlags, lane: int, reference_speed: float, ego: EgoState,
               previous_path_x: Sequence[float], previous_path_y: Sequence[float]) -> BehaviorDecision:
        """
        Pick the behavior for this cycle.

        Returns KEEP_LANE without evaluating anything when the lane ahead is clear.

        Raises:
            TrajectoryGenerationError: a candidate path could not be fitted
        """
        if not flags.ahead:
            return BehaviorDecision(option=BehaviorOption.KEEP_LANE)

        options = self.candidate_options(lane, flags)
        costs = self.evaluate(options, lane, reference_speed, ego, previous_path_x, previous_path_y)
        option = self.choose(costs)

        summary = {opt.value: (round(c.velocity, 4), round(c.acceleration, 6)) for opt, c in costs.items()}
        logger.debug(f"[BEHAVIOR] lane={lane} ref={reference_speed:.2f} costs={summary} -> {option.value}")
        return BehaviorDecision(option=option, costs=costs, evaluated=True)


def build_behavior_selector(behavior_cfg: dict, generator: SplineTrajectoryGenerator,
                            tick_seconds: float = TICK_SECONDS,
                            speed_unit_conversion: float = DEFAULT_SPEED_UNIT_CONVERSION,
                            num_lanes: int = NUM_LANES) -> BehaviorSelector:
    """Build a BehaviorSelector from the ``behavior`` config section."""
    config = BehaviorSelectorConfig(
        anchor_offsets=tuple(float(v) for v in behavior_cfg.get("anchor_offsets", [25.0, 50.0, 75.0])),
        horizon=float(behavior_cfg.get("horizon", 25.0)),
        accel_cost_threshold=float(behavior_cfg.get("accel_cost_threshold", 1e-8)),
        skip_blocked_options=bool(behavior_cfg.get("skip_blocked_options", True)),
        num_lanes=int(num_lanes),
    )
    return BehaviorSelector(config, generator, tick_seconds, speed_unit_conversion)
