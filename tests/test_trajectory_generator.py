"""
Unit tests for trajectory/models/trajectory_planner.py.

Covers fixed output length, verbatim tail reuse, per-tick spacing at the
reference speed, lane targeting, the anchor guard and the track seam.
"""

import math

import numpy as np
import pytest

from data.formats.data_format import EgoState
from trajectory.models.trajectory_planner import SplineTrajectoryGenerator, TrajectoryGenerationError
from trajectory.utils import implied_speeds

FINAL_OFFSETS = (55.0, 90.0, 135.0)
FINAL_HORIZON = 45.0


def _generator(road_frame, target_points: int = 50) -> SplineTrajectoryGenerator:
    return SplineTrajectoryGenerator(road_frame, target_points=target_points)


class TestOutputLength:
    @pytest.mark.parametrize("prev_size", [0, 1, 2, 3, 25, 49, 50])
    def test_always_target_length(self, road_frame, make_ego, prev_size):
        gen = _generator(road_frame)
        ego = make_ego(s=200.0, speed=30.0)
        seed = gen.generate(1, 30.0, ego, [], [], FINAL_OFFSETS, FINAL_HORIZON)
        tail_x = seed.x[:prev_size]
        tail_y = seed.y[:prev_size]

        out = gen.generate(1, 30.0, ego, tail_x, tail_y, FINAL_OFFSETS, FINAL_HORIZON)

        assert len(out.x) == 50
        assert len(out.y) == 50
        assert out.reused_points == prev_size

    def test_tail_longer_than_target_is_truncated(self, road_frame, make_ego):
        gen = _generator(road_frame)
        tail_x = [200.0 + 0.3 * i for i in range(60)]
        tail_y = [-6.0] * 60
        out = gen.generate(1, 30.0, make_ego(s=200.0), tail_x, tail_y, FINAL_OFFSETS, FINAL_HORIZON)
        assert out.x == tail_x[:50]
        assert out.y == tail_y[:50]

    def test_custom_target_length(self, road_frame, make_ego):
        gen = _generator(road_frame, target_points=80)
        out = gen.generate(1, 30.0, make_ego(), [], [], FINAL_OFFSETS, FINAL_HORIZON)
        assert len(out) == 80

    def test_rejects_non_positive_target(self, road_frame):
        with pytest.raises(ValueError):
            SplineTrajectoryGenerator(road_frame, target_points=0)


class TestTailContinuity:
    def test_tail_copied_verbatim(self, road_frame, make_ego):
        """The first prev_size points are the tail, bit for bit."""
        gen = _generator(road_frame)
        ego = make_ego(s=200.0, speed=35.0)
        first = gen.generate(0, 35.0, ego, [], [], FINAL_OFFSETS, FINAL_HORIZON)
        tail_x = first.x[7:]
        tail_y = first.y[7:]

        out = gen.generate(1, 40.0, ego, tail_x, tail_y, FINAL_OFFSETS, FINAL_HORIZON)

        assert out.x[:len(tail_x)] == tail_x
        assert out.y[:len(tail_y)] == tail_y

    def test_new_points_continue_tail_heading(self, road_frame, make_ego):
        gen = _generator(road_frame)
        ego = make_ego(s=200.0, speed=40.0)
        tail_x = [200.0 + 0.4 * i for i in range(1, 31)]
        tail_y = [-6.0] * 30
        out = gen.generate(1, 40.0, ego, tail_x, tail_y, FINAL_OFFSETS, FINAL_HORIZON)

        seam_heading = math.atan2(out.y[30] - out.y[29], out.x[30] - out.x[29])
        assert seam_heading == pytest.approx(0.0, abs=1e-6)
        assert out.x[30] > out.x[29]


class TestSpeedSampling:
    def test_spacing_matches_reference_speed_on_straight(self, road_frame, make_ego):
        """Keep-lane on a straight: every tick covers ref * 0.02 / 2.24 meters."""
        gen = _generator(road_frame)
        out = gen.generate(1, 44.8, make_ego(s=200.0, speed=44.8), [], [], FINAL_OFFSETS, FINAL_HORIZON)

        spacing = np.hypot(np.diff(out.x), np.diff(out.y))
        assert spacing == pytest.approx(np.full(49, 0.4), abs=1e-9)
        assert implied_speeds(out.x, out.y) == pytest.approx(np.full(49, 44.8), abs=1e-6)
        assert out.y == pytest.approx([-6.0] * 50, abs=1e-9)

    def test_first_point_one_step_ahead_of_ego(self, road_frame, make_ego):
        gen = _generator(road_frame)
        out = gen.generate(1, 22.4, make_ego(s=300.0), [], [], FINAL_OFFSETS, FINAL_HORIZON)
        assert out.x[0] == pytest.approx(300.2, abs=1e-9)

    def test_zero_reference_speed_holds_position(self, road_frame, make_ego):
        gen = _generator(road_frame)
        out = gen.generate(1, 0.0, make_ego(s=200.0), [], [], FINAL_OFFSETS, FINAL_HORIZON)
        assert len(out) == 50
        assert out.x == pytest.approx([200.0] * 50, abs=1e-9)
        assert out.y == pytest.approx([-6.0] * 50, abs=1e-9)

    def test_negative_reference_speed_treated_as_zero(self, road_frame, make_ego):
        gen = _generator(road_frame)
        out = gen.generate(1, -5.0, make_ego(s=200.0), [], [], FINAL_OFFSETS, FINAL_HORIZON)
        assert out.x == pytest.approx([200.0] * 50, abs=1e-9)


class TestLaneTargeting:
    @pytest.mark.parametrize("lane,target_y", [(0, -2.0), (2, -10.0)])
    def test_candidate_heads_toward_target_lane(self, road_frame, make_ego, lane, target_y):
        gen = _generator(road_frame)
        out = gen.generate(lane, 44.8, make_ego(s=200.0, speed=44.8), [], [], (25.0, 50.0, 75.0), 25.0)
        moved = out.y[-1] - (-6.0)
        assert moved * (target_y + 6.0) > 0.0
        assert abs(moved) <= 4.0 + 1e-6

    def test_keep_lane_candidate_stays_on_lane_centre(self, road_frame, make_ego):
        gen = _generator(road_frame)
        out = gen.generate(1, 44.8, make_ego(s=200.0, speed=44.8), [], [], (25.0, 50.0, 75.0), 25.0)
        assert out.y == pytest.approx([-6.0] * 50, abs=1e-9)

    def test_lane_change_stays_between_lanes(self, road_frame, make_ego):
        gen = _generator(road_frame)
        out = gen.generate(0, 44.8, make_ego(s=200.0, speed=44.8), [], [], FINAL_OFFSETS, FINAL_HORIZON)
        ys = np.array(out.y)
        assert np.all(np.diff(ys) >= -1e-9)  # moving monotonically toward lane 0 (y = -2)
        assert ys[-1] > -6.0
        assert ys.max() <= -2.0 + 1e-6


class TestDegenerateAnchors:
    def test_coincident_anchors_raise(self, road_frame, make_ego):
        gen = _generator(road_frame)
        with pytest.raises(TrajectoryGenerationError):
            gen.generate(1, 30.0, make_ego(s=200.0), [], [], (0.0, 0.0, 0.0), FINAL_HORIZON)

    def test_anchor_behind_tail_end_is_dropped(self, road_frame, make_ego):
        """An anchor the tail already passed is skipped, the rest still fit."""
        gen = _generator(road_frame)
        tail_x = [200.0 + 0.5 * i for i in range(1, 41)]  # ends at s = 220
        tail_y = [-6.0] * 40
        out = gen.generate(1, 44.8, make_ego(s=200.0), tail_x, tail_y, (10.0, 50.0, 75.0, 100.0), 25.0)
        assert len(out) == 50
        assert out.x[40] > out.x[39]


class TestSeam:
    def test_generates_across_track_seam(self, road_frame):
        """Scenario D at generator level: ego just before max_s."""
        gen = _generator(road_frame)
        s = road_frame.max_s - 0.001
        x, y = road_frame.to_cartesian(s, 6.0)
        ego = EgoState(x=x, y=y, yaw=road_frame.heading_at(s), speed=20.0, s=s, d=6.0)
        out = gen.generate(1, 20.0, ego, [], [], FINAL_OFFSETS, FINAL_HORIZON)
        assert len(out) == 50
        assert all(math.isfinite(v) for v in out.x + out.y)
        assert math.hypot(out.x[-1] - x, out.y[-1] - y) < 10.0
