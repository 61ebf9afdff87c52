"""
Shared fixtures: a stadium-shaped track whose bottom straight runs along the
x axis (s == x for 0 <= s <= 990, lanes at y == -d).
"""

import math

import pytest

from data.formats.data_format import EgoState, Telemetry, TrackedVehicle
from tools.generate_track import build_stadium_table, write_track_csv, build_stadium_track
from trajectory.inference import build_motion_planner
from trajectory.road_frame import RoadFrame
from trajectory.utils import lane_center_d

STRAIGHT_LENGTH = 1000.0
RADIUS = 100.0
SPACING = 30.0


@pytest.fixture(scope="session")
def stadium_table():
    return build_stadium_table(STRAIGHT_LENGTH, RADIUS, SPACING)


@pytest.fixture
def road_frame(stadium_table):
    return RoadFrame.from_table(stadium_table)


@pytest.fixture
def map_file(tmp_path):
    """Stadium track written in the simulator's map format; yields (path, max_s)."""
    rows, max_s = build_stadium_track(STRAIGHT_LENGTH, RADIUS, SPACING)
    path = write_track_csv(str(tmp_path / "highway_map.csv"), rows)
    return path, max_s


@pytest.fixture
def make_ego():
    """Ego on the bottom straight, heading +x, at a lane centre."""
    def _make(s: float = 200.0, lane: int = 1, speed: float = 0.0) -> EgoState:
        d = lane_center_d(lane)
        return EgoState(x=s, y=-d, yaw=0.0, speed=speed, s=s, d=d)
    return _make


@pytest.fixture
def make_vehicle():
    """Tracked vehicle on the bottom straight moving +x at ``speed`` m/s."""
    def _make(vid: int, s: float, lane: int, speed: float) -> TrackedVehicle:
        d = lane_center_d(lane)
        return TrackedVehicle(id=vid, x=s, y=-d, vx=speed, vy=0.0, s=s, d=d)
    return _make


@pytest.fixture
def make_payload():
    """Simulator telemetry body (yaw degrees, speed mph) for an ego on the straight."""
    def _make(ego: EgoState, vehicles=(), previous_path_x=(), previous_path_y=(),
              end_path_s=None, end_path_d=None) -> dict:
        return {
            "x": ego.x,
            "y": ego.y,
            "yaw": math.degrees(ego.yaw),
            "speed": ego.speed,
            "s": ego.s,
            "d": ego.d,
            "previous_path_x": list(previous_path_x),
            "previous_path_y": list(previous_path_y),
            "end_path_s": end_path_s,
            "end_path_d": end_path_d,
            "sensor_fusion": [[v.id, v.x, v.y, v.vx, v.vy, v.s, v.d] for v in vehicles],
        }
    return _make


@pytest.fixture
def planner(road_frame):
    return build_motion_planner({}, road_frame)


def telemetry_for(ego: EgoState, vehicles=(), tail_x=(), tail_y=(), end_path_s=None) -> Telemetry:
    return Telemetry(
        ego=ego,
        previous_path_x=list(tail_x),
        previous_path_y=list(tail_y),
        end_path_s=end_path_s,
        vehicles=list(vehicles),
    )


@pytest.fixture
def make_telemetry():
    return telemetry_for
