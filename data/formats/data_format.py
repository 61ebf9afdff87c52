"""
Data format definitions for planner telemetry, plans and recordings.
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List
import math


class TelemetryError(ValueError):
    """Telemetry payload is malformed; the cycle falls back to the previous tail."""


@dataclass
class EgoState:
    """Ego vehicle pose and speed."""
    x: float
    y: float
    yaw: float  # radians
    speed: float  # reference-speed units (mph, as reported by the simulator)
    s: float
    d: float


@dataclass
class TrackedVehicle:
    """One sensor-fusion entry; valid for the current cycle only."""
    id: int
    x: float
    y: float
    vx: float  # m/s
    vy: float  # m/s
    s: float
    d: float

    @property
    def speed(self) -> float:
        """Speed magnitude in m/s."""
        return math.hypot(self.vx, self.vy)


@dataclass
class Telemetry:
    """Everything the planner consumes in one cycle."""
    ego: EgoState
    previous_path_x: List[float]
    previous_path_y: List[float]
    end_path_s: Optional[float] = None
    end_path_d: Optional[float] = None
    vehicles: List[TrackedVehicle] = field(default_factory=list)

    @property
    def prev_size(self) -> int:
        return len(self.previous_path_x)


@dataclass
class SituationalFlags:
    """Proximity flags, recomputed from scratch every cycle."""
    ahead: bool = False
    left_blocked: bool = False
    right_blocked: bool = False
    emergency: bool = False
    obstructor_speed: float = 0.0  # m/s, speed of the last same-lane vehicle flagged ahead

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ahead": self.ahead,
            "left_blocked": self.left_blocked,
            "right_blocked": self.right_blocked,
            "emergency": self.emergency,
            "obstructor_speed": self.obstructor_speed,
        }


@dataclass
class PlanOutput:
    """Planner output for one cycle plus diagnostics."""
    next_x: List[float]
    next_y: List[float]
    reference_speed: float
    lane: int
    flags: SituationalFlags = field(default_factory=SituationalFlags)
    behavior: Optional[str] = None  # BehaviorOption value chosen this cycle, None if not evaluated
    costs: Optional[Dict[str, Dict[str, float]]] = None  # option -> {"velocity": .., "acceleration": ..}
    governor_rule: str = "none"
    fallback: bool = False
    fallback_reason: Optional[str] = None

    def to_control_message(self) -> Dict[str, List[float]]:
        """Body of the simulator's ``control`` event."""
        return {"next_x": list(self.next_x), "next_y": list(self.next_y)}

    def to_dict(self) -> Dict[str, Any]:
        """Control message plus diagnostics, JSON-serializable."""
        out: Dict[str, Any] = self.to_control_message()
        out.update({
            "reference_speed": self.reference_speed,
            "lane": self.lane,
            "flags": self.flags.to_dict(),
            "behavior": self.behavior,
            "costs": self.costs,
            "governor_rule": self.governor_rule,
            "fallback": self.fallback,
            "fallback_reason": self.fallback_reason,
        })
        return out


@dataclass
class CycleRecord:
    """Complete recorded planning cycle."""
    timestamp: float
    cycle_id: int
    ego: EgoState
    prev_size: int
    num_vehicles: int
    plan: PlanOutput
    metadata: Optional[Dict[str, Any]] = None


def _as_float(payload: Dict[str, Any], key: str) -> float:
    if key not in payload:
        raise TelemetryError(f"Telemetry missing '{key}'")
    try:
        value = float(payload[key])
    except (TypeError, ValueError) as e:
        raise TelemetryError(f"Telemetry field '{key}' is not numeric: {payload[key]!r}") from e
    if not math.isfinite(value):
        raise TelemetryError(f"Telemetry field '{key}' is not finite: {value}")
    return value


def _as_float_list(payload: Dict[str, Any], key: str) -> List[float]:
    raw = payload.get(key) or []
    try:
        values = [float(v) for v in raw]
    except (TypeError, ValueError) as e:
        raise TelemetryError(f"Telemetry field '{key}' is not a list of numbers") from e
    if not all(math.isfinite(v) for v in values):
        raise TelemetryError(f"Telemetry field '{key}' has non-finite values")
    return values


def parse_telemetry(payload: Dict[str, Any]) -> Telemetry:
    """Build a Telemetry from the simulator's ``telemetry`` event body.

    The simulator reports ``yaw`` in degrees and ``speed`` in mph; yaw is
    converted to radians here. Sensor fusion rows are ``[id, x, y, vx, vy, s, d]``.

    Raises:
        TelemetryError: a required field is missing or malformed.
    """
    if not isinstance(payload, dict):
        raise TelemetryError(f"Telemetry payload must be an object, got {type(payload).__name__}")

    ego = EgoState(
        x=_as_float(payload, "x"),
        y=_as_float(payload, "y"),
        yaw=math.radians(_as_float(payload, "yaw")),
        speed=_as_float(payload, "speed"),
        s=_as_float(payload, "s"),
        d=_as_float(payload, "d"),
    )

    previous_path_x = _as_float_list(payload, "previous_path_x")
    previous_path_y = _as_float_list(payload, "previous_path_y")
    if len(previous_path_x) != len(previous_path_y):
        raise TelemetryError(
            f"Previous path length mismatch: {len(previous_path_x)} x vs {len(previous_path_y)} y"
        )

    end_path_s = None
    end_path_d = None
    if payload.get("end_path_s") is not None:
        end_path_s = _as_float(payload, "end_path_s")
    if payload.get("end_path_d") is not None:
        end_path_d = _as_float(payload, "end_path_d")

    vehicles: List[TrackedVehicle] = []
    for row in payload.get("sensor_fusion") or []:
        if not isinstance(row, (list, tuple)) or len(row) < 7:
            raise TelemetryError(f"Sensor fusion entry must have 7 fields, got {row!r}")
        try:
            vehicles.append(
                TrackedVehicle(
                    id=int(row[0]),
                    x=float(row[1]),
                    y=float(row[2]),
                    vx=float(row[3]),
                    vy=float(row[4]),
                    s=float(row[5]),
                    d=float(row[6]),
                )
            )
        except (TypeError, ValueError) as e:
            raise TelemetryError(f"Sensor fusion entry is not numeric: {row!r}") from e

    return Telemetry(
        ego=ego,
        previous_path_x=previous_path_x,
        previous_path_y=previous_path_y,
        end_path_s=end_path_s,
        end_path_d=end_path_d,
        vehicles=vehicles,
    )
