"""
Velocity governor: nudges the reference speed and lane index toward the chosen
behavior, one comfort increment per cycle.

Rules, first match wins:
  1. Lane ahead clear and below the limit: accelerate (harder on emergency)
  2. Obstruction and emergency: brake with the emergency increment
  3. Keep lane behind an obstruction: track the vehicle ahead
  4. Lane change into a clear lane: commit the lane, hold speed
  5. Lane change into a blocked lane: track the vehicle ahead while waiting
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from data.formats.data_format import SituationalFlags
from trajectory.behavior import BehaviorOption, is_target_blocked
from trajectory.utils import DEFAULT_SPEED_UNIT_CONVERSION, NUM_LANES, is_valid_lane

logger = logging.getLogger(__name__)


@dataclass
class VelocityGovernorConfig:
    """Configuration for the velocity governor."""

    speed_limit: float = 49.5  # reference units (mph)
    accel_increment: float = 0.294  # per cycle, about 5 m/s^2 at the 20 ms tick
    emergency_factor: float = 1.8
    follow_speed_ratio: float = 0.9
    speed_unit_conversion: float = DEFAULT_SPEED_UNIT_CONVERSION
    num_lanes: int = NUM_LANES


@dataclass
class GovernorDecision:
    """Output from the velocity governor."""

    reference_speed: float
    lane: int
    rule: str  # "accelerate", "cruise", "emergency_brake", "follow", "lane_change", "follow_blocked"
    lane_changed: bool = False


class VelocityGovernor:
    """Per-cycle decision table over reference speed and lane index."""

    def __init__(self, config: VelocityGovernorConfig) -> None:
        self.config = config

    def clamp(self, speed: float) -> float:
        return min(max(speed, 0.0), self.config.speed_limit)

    def _track(self, reference_speed: float, flags: SituationalFlags) -> float:
        """One increment toward the vehicle ahead: brake when it is well below reference speed."""
        obstructor = flags.obstructor_speed * self.config.speed_unit_conversion
        if obstructor < self.config.follow_speed_ratio * reference_speed:
            return reference_speed - self.config.accel_increment
        return reference_speed + self.config.accel_increment

    def step(self, reference_speed: float, lane: int, flags: SituationalFlags,
             option: BehaviorOption) -> GovernorDecision:
        """Apply the first matching rule.

        Args:
            reference_speed: Current reference speed (reference units)
            lane: Current lane index
            flags: This cycle's situational flags
            option: Behavior chosen for this cycle

        Returns:
            GovernorDecision with the clamped reference speed and lane

        Raises:
            ValueError: option is not a BehaviorOption or targets a lane that does not exist
        """
        cfg = self.config
        if not isinstance(option, BehaviorOption):
            raise ValueError(f"Unknown behavior option: {option!r}")
        target_lane = option.target_lane(lane)
        if not is_valid_lane(target_lane, cfg.num_lanes):
            raise ValueError(f"{option.value} from lane {lane} leaves the road")

        speed = float(reference_speed)
        new_lane = lane
        rule = "cruise"

        if not flags.ahead:
            if speed < cfg.speed_limit:
                factor = cfg.emergency_factor if flags.emergency else 1.0
                speed += factor * cfg.accel_increment
                rule = "accelerate"
        elif flags.emergency:
            speed -= cfg.emergency_factor * cfg.accel_increment
            rule = "emergency_brake"
            logger.info(f"[GOVERNOR] Emergency brake: ref {reference_speed:.2f} -> {self.clamp(speed):.2f}")
        elif option is BehaviorOption.KEEP_LANE:
            speed = self._track(speed, flags)
            rule = "follow"
        elif option in (BehaviorOption.CHANGE_LEFT, BehaviorOption.CHANGE_RIGHT):
            if is_target_blocked(option, flags):
                speed = self._track(speed, flags)
                rule = "follow_blocked"
            else:
                new_lane = target_lane
                rule = "lane_change"
                logger.info(f"[GOVERNOR] Lane change {option.value}: {lane} -> {new_lane} at ref {speed:.2f}")
        else:
            raise ValueError(f"Unhandled behavior option: {option!r}")

        return GovernorDecision(
            reference_speed=self.clamp(speed),
            lane=new_lane,
            rule=rule,
            lane_changed=new_lane != lane,
        )


def build_velocity_governor(governor_cfg: dict,
                            speed_unit_conversion: float = DEFAULT_SPEED_UNIT_CONVERSION,
                            num_lanes: int = NUM_LANES) -> VelocityGovernor:
    """Build a VelocityGovernor from the ``governor`` config section."""
    config = VelocityGovernorConfig(
        speed_limit=float(governor_cfg.get("speed_limit", 49.5)),
        accel_increment=float(governor_cfg.get("accel_increment", 0.294)),
        emergency_factor=float(governor_cfg.get("emergency_factor", 1.8)),
        follow_speed_ratio=float(governor_cfg.get("follow_speed_ratio", 0.9)),
        speed_unit_conversion=float(speed_unit_conversion),
        num_lanes=int(num_lanes),
    )
    if config.speed_limit <= 0.0:
        raise ValueError(f"governor.speed_limit must be positive, got {config.speed_limit}")
    return VelocityGovernor(config)
