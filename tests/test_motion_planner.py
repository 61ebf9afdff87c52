"""
Planner-level tests for trajectory/inference.py.

Encodes the highway scenarios end to end (detector, selector, governor and
generator wired together by build_motion_planner) plus the fail-safe path.
"""

import math

import pytest

from data.formats.data_format import EgoState, TelemetryError
from trajectory.inference import MotionPlanner, build_motion_planner

TARGET = 50


def _tail_of(plan, prev_size):
    """Unconsumed suffix of a plan after the vehicle drove through the rest."""
    start = len(plan.next_x) - prev_size
    return plan.next_x[start:], plan.next_y[start:]


# --- Scenarios ---

class TestScenarioA:
    """Empty road, ego at rest in lane 1."""

    def test_reference_speed_ramps_to_limit(self, planner, make_ego, make_telemetry):
        ego = make_ego(s=200.0, lane=1, speed=0.0)
        speeds = []
        for _ in range(200):
            plan = planner.plan(make_telemetry(ego))
            assert not plan.flags.ahead
            assert not plan.flags.left_blocked
            assert not plan.flags.right_blocked
            assert not plan.flags.emergency
            assert plan.lane == 1
            assert len(plan.next_x) == TARGET
            speeds.append(plan.reference_speed)

        for before, after in zip(speeds, speeds[1:]):
            assert after >= before
            if before < 49.5:
                assert after > before
        assert speeds[0] == pytest.approx(0.294)
        assert speeds[-1] == pytest.approx(49.5)
        assert max(speeds) <= 49.5

    def test_no_behavior_evaluation_on_clear_road(self, planner, make_ego, make_telemetry):
        plan = planner.plan(make_telemetry(make_ego()))
        assert plan.behavior == "KL"
        assert plan.costs is None
        assert plan.governor_rule == "accelerate"


class TestScenarioB:
    """Vehicle 10 m ahead in lane 1 at the ego's speed, neighbours occupied."""

    def test_keep_lane_costed_and_governor_decelerates(self, planner, make_ego, make_vehicle, make_telemetry):
        planner.reference_speed = 45.0
        ego = make_ego(s=200.0, lane=1, speed=35.0)
        same_speed = 35.0 / 2.24
        vehicles = [
            make_vehicle(1, 210.0, 1, same_speed),
            make_vehicle(2, 200.0, 0, same_speed),
            make_vehicle(3, 200.0, 2, same_speed),
        ]

        plan = planner.plan(make_telemetry(ego, vehicles))

        assert plan.flags.ahead
        assert plan.flags.obstructor_speed == pytest.approx(same_speed)
        assert plan.behavior == "KL"
        assert list(plan.costs) == ["KL"]
        assert plan.costs["KL"]["velocity"] >= 0.0
        assert plan.costs["KL"]["acceleration"] >= 0.0
        assert plan.governor_rule == "follow"
        assert plan.reference_speed == pytest.approx(45.0 - 0.294)
        assert plan.lane == 1

    def test_keeps_slowing_while_obstructed(self, planner, make_ego, make_vehicle, make_telemetry):
        planner.reference_speed = 45.0
        ego = make_ego(s=200.0, lane=1, speed=35.0)
        vehicles = [make_vehicle(1, 210.0, 1, 35.0 / 2.24),
                    make_vehicle(2, 200.0, 0, 15.0), make_vehicle(3, 200.0, 2, 15.0)]
        speeds = [planner.plan(make_telemetry(ego, vehicles)).reference_speed for _ in range(5)]
        assert speeds == sorted(speeds, reverse=True)
        assert speeds[-1] == pytest.approx(45.0 - 5 * 0.294)


class TestScenarioC:
    """Obstruction in lane 1, lane 0 clear, lane 2 blocked by a fast car from behind."""

    def _vehicles(self, make_vehicle):
        return [
            make_vehicle(1, 215.0, 1, 15.0),
            make_vehicle(2, 196.0, 2, 25.0),
        ]

    def test_changes_left(self, planner, make_ego, make_vehicle, make_telemetry):
        planner.reference_speed = 40.0
        ego = make_ego(s=200.0, lane=1, speed=40.0)

        plan = planner.plan(make_telemetry(ego, self._vehicles(make_vehicle)))

        assert plan.flags.ahead
        assert plan.flags.right_blocked
        assert not plan.flags.left_blocked
        assert set(plan.costs) == {"KL", "LCL"}
        assert plan.behavior == "LCL"
        assert plan.governor_rule == "lane_change"
        assert plan.lane == 0
        assert planner.lane == 0
        assert plan.reference_speed == pytest.approx(40.0)

    def test_new_lane_holds_on_next_cycle(self, planner, make_ego, make_vehicle, make_telemetry):
        planner.reference_speed = 40.0
        ego = make_ego(s=200.0, lane=1, speed=40.0)
        first = planner.plan(make_telemetry(ego, self._vehicles(make_vehicle)))
        tail_x, tail_y = _tail_of(first, 47)

        second = planner.plan(make_telemetry(ego, self._vehicles(make_vehicle), tail_x, tail_y))

        assert second.lane == 0
        assert not second.flags.ahead
        assert second.governor_rule == "accelerate"
        assert second.next_x[:47] == tail_x


class TestScenarioD:
    def test_plans_across_seam(self, planner, road_frame, make_payload):
        s = road_frame.max_s - 0.001
        x, y = road_frame.to_cartesian(s, 6.0)
        ego = EgoState(x=x, y=y, yaw=road_frame.heading_at(s), speed=20.0, s=s, d=6.0)
        planner.reference_speed = 20.0
        plan = planner.plan_payload(make_payload(ego))
        assert not plan.fallback
        assert len(plan.next_x) == TARGET


# --- Output length and continuity ---

class TestContinuity:
    @pytest.mark.parametrize("prev_size", [0, 1, 2, 25, 49, 50])
    def test_fixed_length_and_identity_copy(self, planner, make_ego, make_telemetry, prev_size):
        ego = make_ego(s=200.0, speed=30.0)
        planner.reference_speed = 30.0
        first = planner.plan(make_telemetry(ego))
        tail_x, tail_y = _tail_of(first, prev_size)

        plan = planner.plan(make_telemetry(ego, (), tail_x, tail_y))

        assert len(plan.next_x) == TARGET
        assert len(plan.next_y) == TARGET
        assert plan.next_x[:prev_size] == tail_x
        assert plan.next_y[:prev_size] == tail_y

    def test_longer_tail_is_cut_to_target(self, planner, make_ego, make_telemetry):
        tail_x = [200.0 + 0.3 * i for i in range(1, 71)]
        plan = planner.plan(make_telemetry(make_ego(), (), tail_x, [-6.0] * 70))
        assert len(plan.next_x) == TARGET
        assert plan.next_x == tail_x[:TARGET]

    def test_end_path_s_derived_from_tail(self, planner, make_ego, make_vehicle, make_telemetry):
        """Without end_path_s the tail end (s = 220) is the projected ego position."""
        ego = make_ego(s=200.0, speed=40.0)
        planner.reference_speed = 40.0
        tail_x = [200.5 + 0.5 * i for i in range(40)]
        tail_y = [-6.0] * 40
        stopped = make_vehicle(1, 235.0, 1, 0.0)

        plan = planner.plan(make_telemetry(ego, [stopped], tail_x, tail_y, end_path_s=None))

        assert plan.flags.ahead
        assert plan.costs is not None

    def test_reported_end_path_s_is_used(self, planner, make_ego, make_vehicle, make_telemetry):
        ego = make_ego(s=200.0, speed=40.0)
        tail_x = [200.5 + 0.5 * i for i in range(40)]
        stopped = make_vehicle(1, 235.0, 1, 0.0)
        plan = planner.plan(make_telemetry(ego, [stopped], tail_x, [-6.0] * 40, end_path_s=205.0))
        assert not plan.flags.ahead


# --- Fail-safe ---

class TestFallback:
    def test_degenerate_anchors_fall_back(self, road_frame, make_ego, make_telemetry):
        planner = build_motion_planner({"trajectory": {"anchor_offsets": [0.0, 0.0, 0.0]}}, road_frame)
        plan = planner.plan(make_telemetry(make_ego(s=200.0, speed=0.0)))

        assert plan.fallback
        assert "trajectory" in plan.fallback_reason
        assert len(plan.next_x) == TARGET
        assert planner.reference_speed == 0.0
        assert planner.fallback_count == 1
        assert plan.governor_rule == "none"

    def test_fallback_keeps_tail_and_extends(self, road_frame, make_ego, make_telemetry):
        planner = build_motion_planner({"trajectory": {"anchor_offsets": [0.0, 0.0, 0.0]}}, road_frame)
        tail_x = [200.0 + 0.4 * i for i in range(1, 21)]
        tail_y = [-6.0] * 20

        plan = planner.plan(make_telemetry(make_ego(s=200.0, speed=40.0), (), tail_x, tail_y))

        assert plan.fallback
        assert plan.next_x[:20] == tail_x
        assert len(plan.next_x) == TARGET
        assert plan.next_x[-1] == pytest.approx(200.0 + 0.4 * 50)
        assert plan.next_y == pytest.approx([-6.0] * TARGET)

    def test_state_unchanged_by_failed_cycle(self, road_frame, make_ego, make_telemetry):
        planner = build_motion_planner({"trajectory": {"anchor_offsets": [0.0, 0.0, 0.0]}}, road_frame)
        planner.reference_speed = 30.0
        planner.lane = 2
        planner.plan(make_telemetry(make_ego(s=200.0, lane=2, speed=30.0)))
        assert planner.reference_speed == 30.0
        assert planner.lane == 2

    def test_malformed_payload_salvages_tail(self, planner, make_ego, make_payload):
        tail_x = [200.0 + 0.4 * i for i in range(1, 11)]
        payload = make_payload(make_ego(), (), tail_x, [-6.0] * 10)
        payload["s"] = "not-a-number"

        plan = planner.plan_payload(payload)

        assert plan.fallback
        assert "telemetry" in plan.fallback_reason
        assert plan.next_x[:10] == tail_x
        assert len(plan.next_x) == TARGET

    def test_malformed_payload_resends_last_plan(self, planner, make_ego, make_payload):
        good = planner.plan_payload(make_payload(make_ego(speed=20.0)))
        plan = planner.plan_payload({"x": None})
        assert plan.fallback
        assert plan.next_x == good.next_x

    def test_nan_tail_is_never_resent(self, planner, make_ego, make_payload):
        good = planner.plan_payload(make_payload(make_ego(speed=20.0)))
        tail_x = [200.4, math.nan, 201.2]
        plan = planner.plan_payload(make_payload(make_ego(speed=20.0), (), tail_x, [-6.0] * 3))
        assert plan.fallback
        assert plan.next_x == good.next_x
        assert all(math.isfinite(v) for v in plan.next_x + plan.next_y)

    def test_malformed_payload_without_history_raises(self, planner):
        with pytest.raises(TelemetryError):
            planner.plan_payload({"x": 1.0})

    def test_non_dict_payload_raises(self, planner):
        with pytest.raises(TelemetryError):
            planner.plan_payload(["telemetry"])


# --- Planner instance ---

class TestPlannerInstance:
    def test_instances_are_independent(self, road_frame, make_ego, make_telemetry):
        a = build_motion_planner({}, road_frame)
        b = build_motion_planner({}, road_frame)
        for _ in range(10):
            a.plan(make_telemetry(make_ego()))
        assert a.reference_speed == pytest.approx(10 * 0.294)
        assert b.reference_speed == 0.0
        assert b.cycle_count == 0

    def test_reset(self, planner, make_ego, make_telemetry):
        planner.plan(make_telemetry(make_ego()))
        planner.reset()
        assert planner.reference_speed == 0.0
        assert planner.lane == 1
        assert planner.last_plan is None
        assert planner.cycle_count == 0

    def test_initial_state_from_config(self, road_frame):
        planner = build_motion_planner(
            {"trajectory": {"initial_lane": 2, "initial_reference_speed": 20.0}}, road_frame
        )
        assert planner.lane == 2
        assert planner.reference_speed == 20.0

    def test_invalid_initial_lane(self, road_frame):
        with pytest.raises(ValueError):
            build_motion_planner({"trajectory": {"initial_lane": 3}}, road_frame)

    def test_is_motion_planner(self, planner):
        assert isinstance(planner, MotionPlanner)

    def test_plan_serializes(self, planner, make_ego, make_telemetry):
        out = planner.plan(make_telemetry(make_ego())).to_dict()
        assert set(out) >= {"next_x", "next_y", "reference_speed", "lane", "flags", "fallback"}
        assert len(out["next_x"]) == TARGET
