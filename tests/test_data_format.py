"""
Tests for the telemetry/plan data model in data/formats/data_format.py.
"""

import json
import math

import pytest

from data.formats.data_format import (
    PlanOutput,
    SituationalFlags,
    TelemetryError,
    TrackedVehicle,
    parse_telemetry,
)


def _payload(**overrides):
    payload = {
        "x": 909.48,
        "y": 1128.67,
        "yaw": 90.0,
        "speed": 12.5,
        "s": 124.83,
        "d": 6.16,
        "previous_path_x": [909.5, 909.6],
        "previous_path_y": [1128.7, 1128.8],
        "end_path_s": 125.0,
        "end_path_d": 6.0,
        "sensor_fusion": [[0, 775.8, 1421.6, 0.0, 0.0, 6721.8, -277.6],
                          [1, 775.8, 1425.2, 10.0, 0.5, 6719.2, -280.1]],
    }
    payload.update(overrides)
    return payload


class TestParseTelemetry:
    def test_full_payload(self):
        telemetry = parse_telemetry(_payload())
        assert telemetry.ego.x == pytest.approx(909.48)
        assert telemetry.ego.yaw == pytest.approx(math.pi / 2.0)
        assert telemetry.ego.speed == pytest.approx(12.5)
        assert telemetry.prev_size == 2
        assert telemetry.end_path_s == pytest.approx(125.0)
        assert len(telemetry.vehicles) == 2
        assert telemetry.vehicles[1].id == 1
        assert telemetry.vehicles[1].vx == pytest.approx(10.0)

    def test_first_cycle_payload(self):
        """The simulator sends empty tails and zero end-path values on the first message."""
        telemetry = parse_telemetry(_payload(previous_path_x=[], previous_path_y=[],
                                             end_path_s=0, end_path_d=0, sensor_fusion=[]))
        assert telemetry.prev_size == 0
        assert telemetry.vehicles == []

    def test_optional_fields_may_be_missing(self):
        payload = _payload()
        for key in ("previous_path_x", "previous_path_y", "end_path_s", "end_path_d", "sensor_fusion"):
            del payload[key]
        telemetry = parse_telemetry(payload)
        assert telemetry.prev_size == 0
        assert telemetry.end_path_s is None

    def test_numeric_strings_accepted(self):
        telemetry = parse_telemetry(_payload(x="909.48", speed="12.5"))
        assert telemetry.ego.x == pytest.approx(909.48)

    @pytest.mark.parametrize("key", ["x", "y", "yaw", "speed", "s", "d"])
    def test_missing_ego_field(self, key):
        payload = _payload()
        del payload[key]
        with pytest.raises(TelemetryError, match=key):
            parse_telemetry(payload)

    def test_non_numeric_field(self):
        with pytest.raises(TelemetryError):
            parse_telemetry(_payload(speed="fast"))

    def test_non_finite_field(self):
        with pytest.raises(TelemetryError):
            parse_telemetry(_payload(s=float("nan")))

    @pytest.mark.parametrize("bad", [float("nan"), float("inf")])
    def test_non_finite_tail(self, bad):
        with pytest.raises(TelemetryError, match="previous_path_x"):
            parse_telemetry(_payload(previous_path_x=[909.5, bad]))

    def test_mismatched_tail(self):
        with pytest.raises(TelemetryError):
            parse_telemetry(_payload(previous_path_y=[1.0]))

    def test_short_sensor_row(self):
        with pytest.raises(TelemetryError):
            parse_telemetry(_payload(sensor_fusion=[[0, 1.0, 2.0]]))

    def test_non_numeric_sensor_row(self):
        with pytest.raises(TelemetryError):
            parse_telemetry(_payload(sensor_fusion=[[0, 1.0, 2.0, "x", 0.0, 1.0, 2.0]]))

    def test_not_a_dict(self):
        with pytest.raises(TelemetryError):
            parse_telemetry(None)

    def test_telemetry_error_is_value_error(self):
        assert issubclass(TelemetryError, ValueError)


class TestModels:
    def test_vehicle_speed_magnitude(self):
        vehicle = TrackedVehicle(id=3, x=0.0, y=0.0, vx=3.0, vy=-4.0, s=0.0, d=6.0)
        assert vehicle.speed == pytest.approx(5.0)

    def test_flags_default_clear(self):
        flags = SituationalFlags()
        assert flags.to_dict() == {
            "ahead": False,
            "left_blocked": False,
            "right_blocked": False,
            "emergency": False,
            "obstructor_speed": 0.0,
        }

    def test_plan_control_message(self):
        plan = PlanOutput(next_x=[1.0, 2.0], next_y=[3.0, 4.0], reference_speed=10.0, lane=1)
        assert plan.to_control_message() == {"next_x": [1.0, 2.0], "next_y": [3.0, 4.0]}

    def test_plan_dict_is_json_serializable(self):
        plan = PlanOutput(
            next_x=[1.0], next_y=[2.0], reference_speed=30.0, lane=0,
            flags=SituationalFlags(ahead=True, obstructor_speed=12.0),
            behavior="LCL", costs={"KL": {"velocity": 0.0, "acceleration": 0.0}},
            governor_rule="lane_change",
        )
        decoded = json.loads(json.dumps(plan.to_dict()))
        assert decoded["behavior"] == "LCL"
        assert decoded["flags"]["ahead"] is True
        assert decoded["fallback"] is False
        assert decoded["fallback_reason"] is None
