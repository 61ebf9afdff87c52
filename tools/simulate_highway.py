"""
Offline closed-loop highway simulation.

Drives the planner with simulator-shaped telemetry: the ego vehicle follows
each emitted plan for a few ticks, scripted traffic keeps lane at constant
speed, and the unconsumed plan is fed back as the previous path.
"""

import argparse
import math
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np

sys.path.insert(0, str(Path(__file__).parent.parent))

from data.formats.data_format import PlanOutput
from trajectory.inference import MotionPlanner, build_motion_planner
from trajectory.road_frame import RoadFrame
from trajectory.utils import DEFAULT_SPEED_UNIT_CONVERSION, TICK_SECONDS, lane_center_d, signed_s_gap


@dataclass
class TrafficCar:
    """Scripted vehicle holding lane ``lane`` at ``speed`` m/s."""
    id: int
    s: float
    lane: int
    speed: float


@dataclass
class SimulationResult:
    """Per-cycle traces of a closed-loop run."""
    ego_speed: List[float] = field(default_factory=list)  # mph, implied by consumed points
    reference_speed: List[float] = field(default_factory=list)
    lane: List[int] = field(default_factory=list)
    ego_s: List[float] = field(default_factory=list)
    ego_d: List[float] = field(default_factory=list)
    plan_lengths: List[int] = field(default_factory=list)
    fallbacks: int = 0
    collisions: int = 0
    lane_changes: int = 0

    def summary(self) -> dict:
        return {
            "cycles": len(self.reference_speed),
            "max_ego_speed": max(self.ego_speed) if self.ego_speed else 0.0,
            "final_reference_speed": self.reference_speed[-1] if self.reference_speed else 0.0,
            "final_lane": self.lane[-1] if self.lane else None,
            "lane_changes": self.lane_changes,
            "fallbacks": self.fallbacks,
            "collisions": self.collisions,
        }


class HighwaySimulator:
    """Minimal stand-in for the simulator's telemetry loop."""

    def __init__(self, planner: MotionPlanner, road_frame: RoadFrame,
                 traffic: Optional[Sequence[TrafficCar]] = None,
                 ego_s: float = 100.0, ego_lane: int = 1,
                 ticks_per_cycle: int = 3,
                 tick_seconds: float = TICK_SECONDS,
                 speed_unit_conversion: float = DEFAULT_SPEED_UNIT_CONVERSION,
                 collision_radius: float = 3.0):
        """
        Args:
            planner: Planner under test
            road_frame: Track the planner was built on
            traffic: Scripted vehicles
            ego_s: Starting arc-length of the ego vehicle
            ego_lane: Starting lane of the ego vehicle
            ticks_per_cycle: Plan points the ego consumes between telemetry messages
            collision_radius: Centre distance counted as a collision (m)
        """
        if ticks_per_cycle < 1:
            raise ValueError("ticks_per_cycle must be at least 1")
        self.planner = planner
        self.road_frame = road_frame
        self.traffic = list(traffic or [])
        self.ticks_per_cycle = int(ticks_per_cycle)
        self.tick_seconds = float(tick_seconds)
        self.speed_unit_conversion = float(speed_unit_conversion)
        self.collision_radius = float(collision_radius)

        d = lane_center_d(ego_lane)
        self.ego_s = road_frame.wrap_s(ego_s)
        self.ego_d = d
        self.ego_x, self.ego_y = road_frame.to_cartesian(self.ego_s, d)
        self.ego_yaw = road_frame.heading_at(self.ego_s)
        self.ego_speed = 0.0  # mph

        self.previous_path_x: List[float] = []
        self.previous_path_y: List[float] = []
        self.end_path_s: Optional[float] = None
        self.end_path_d: Optional[float] = None

    def _traffic_xy(self, car: TrafficCar):
        return self.road_frame.to_cartesian(car.s, lane_center_d(car.lane))

    def telemetry_payload(self) -> dict:
        """Telemetry body in simulator units."""
        sensor_fusion = []
        for car in self.traffic:
            x, y = self._traffic_xy(car)
            heading = self.road_frame.heading_at(car.s)
            sensor_fusion.append([
                car.id, x, y,
                car.speed * math.cos(heading), car.speed * math.sin(heading),
                car.s, lane_center_d(car.lane),
            ])
        return {
            "x": self.ego_x,
            "y": self.ego_y,
            "yaw": math.degrees(self.ego_yaw),
            "speed": self.ego_speed,
            "s": self.ego_s,
            "d": self.ego_d,
            "previous_path_x": list(self.previous_path_x),
            "previous_path_y": list(self.previous_path_y),
            "end_path_s": self.end_path_s if self.previous_path_x else 0.0,
            "end_path_d": self.end_path_d if self.previous_path_x else 0.0,
            "sensor_fusion": sensor_fusion,
        }

    def _advance_ego(self, plan: PlanOutput) -> None:
        consumed = min(self.ticks_per_cycle, len(plan.next_x))
        prev_x, prev_y = self.ego_x, self.ego_y
        if consumed >= 2:
            prev_x, prev_y = plan.next_x[consumed - 2], plan.next_y[consumed - 2]
        new_x, new_y = plan.next_x[consumed - 1], plan.next_y[consumed - 1]

        step = math.hypot(new_x - prev_x, new_y - prev_y)
        if step > 1e-9:
            self.ego_yaw = math.atan2(new_y - prev_y, new_x - prev_x)
        self.ego_speed = step / self.tick_seconds * self.speed_unit_conversion
        self.ego_x, self.ego_y = new_x, new_y
        self.ego_s, self.ego_d = self.road_frame.to_frenet(new_x, new_y, self.ego_yaw)

        self.previous_path_x = list(plan.next_x[consumed:])
        self.previous_path_y = list(plan.next_y[consumed:])
        if len(self.previous_path_x) >= 2:
            tail_yaw = math.atan2(
                self.previous_path_y[-1] - self.previous_path_y[-2],
                self.previous_path_x[-1] - self.previous_path_x[-2],
            )
            self.end_path_s, self.end_path_d = self.road_frame.to_frenet(
                self.previous_path_x[-1], self.previous_path_y[-1], tail_yaw
            )
        elif self.previous_path_x:
            self.end_path_s, self.end_path_d = self.road_frame.to_frenet(
                self.previous_path_x[-1], self.previous_path_y[-1], self.ego_yaw
            )
        else:
            self.end_path_s, self.end_path_d = None, None

    def _advance_traffic(self) -> None:
        dt = self.ticks_per_cycle * self.tick_seconds
        for car in self.traffic:
            car.s = self.road_frame.wrap_s(car.s + car.speed * dt)

    def _count_collisions(self) -> int:
        hits = 0
        for car in self.traffic:
            if abs(signed_s_gap(car.s, self.ego_s, self.road_frame.max_s)) > 20.0:
                continue
            x, y = self._traffic_xy(car)
            if math.hypot(x - self.ego_x, y - self.ego_y) < self.collision_radius:
                hits += 1
        return hits

    def step(self) -> PlanOutput:
        """One telemetry -> plan -> motion round trip."""
        plan = self.planner.plan_payload(self.telemetry_payload())
        self._advance_ego(plan)
        self._advance_traffic()
        return plan

    def run(self, cycles: int) -> SimulationResult:
        result = SimulationResult()
        last_lane = self.planner.lane
        for _ in range(cycles):
            plan = self.step()
            result.plan_lengths.append(len(plan.next_x))
            result.reference_speed.append(plan.reference_speed)
            result.lane.append(plan.lane)
            result.ego_speed.append(self.ego_speed)
            result.ego_s.append(self.ego_s)
            result.ego_d.append(self.ego_d)
            if plan.fallback:
                result.fallbacks += 1
            if plan.lane != last_lane:
                result.lane_changes += 1
                last_lane = plan.lane
            result.collisions += self._count_collisions()
        return result


def default_traffic() -> List[TrafficCar]:
    """A slow car ahead in the middle lane and one cruising in the right lane."""
    return [
        TrafficCar(id=0, s=160.0, lane=1, speed=12.0),
        TrafficCar(id=1, s=60.0, lane=2, speed=20.0),
    ]


def main():
    from planner_stack import load_config
    from tools.generate_track import build_stadium_table

    parser = argparse.ArgumentParser(description="Closed-loop highway planner simulation")
    parser.add_argument("--config", type=str, default=None, help="Planner config YAML")
    parser.add_argument("--cycles", type=int, default=1500, help="Planning cycles to simulate")
    parser.add_argument("--ticks-per-cycle", type=int, default=3, help="Plan points consumed per cycle")
    parser.add_argument("--no-traffic", action="store_true", help="Run on an empty road")
    parser.add_argument("--plot", type=str, default=None, help="Save a speed/lane plot to this path")
    args = parser.parse_args()

    config = load_config(args.config)
    table = build_stadium_table()
    road_frame = RoadFrame.from_table(table)
    planner = build_motion_planner(config, road_frame)

    sim = HighwaySimulator(
        planner,
        road_frame,
        traffic=[] if args.no_traffic else default_traffic(),
        ticks_per_cycle=args.ticks_per_cycle,
    )
    result = sim.run(args.cycles)

    for key, value in result.summary().items():
        print(f"{key:>22}: {value}")

    if args.plot:
        import matplotlib
        matplotlib.use("Agg")
        import matplotlib.pyplot as plt

        t = np.arange(len(result.reference_speed)) * args.ticks_per_cycle * TICK_SECONDS
        fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(12, 8), sharex=True)
        ax1.plot(t, result.reference_speed, label="reference")
        ax1.plot(t, result.ego_speed, label="ego", alpha=0.7)
        ax1.set_ylabel("speed (mph)")
        ax1.legend()
        ax1.grid(True, alpha=0.3)
        ax2.step(t, result.lane, where="post")
        ax2.set_ylabel("lane")
        ax2.set_xlabel("time (s)")
        ax2.grid(True, alpha=0.3)
        plt.tight_layout()
        plt.savefig(args.plot, dpi=150)
        plt.close()
        print(f"Saved plot to {args.plot}")


if __name__ == "__main__":
    main()
