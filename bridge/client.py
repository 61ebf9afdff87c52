"""
Python client helper for the planner bridge.
Lets tools drive the planner over HTTP with simulator-shaped telemetry.
"""

import requests
from typing import Dict, List, Optional, Sequence

from data.formats.data_format import EgoState, TrackedVehicle
import math


class PlannerBridgeClient:
    """Client for communicating with the planner bridge server."""

    def __init__(self, base_url: str = "http://localhost:4567", timeout: float = 0.5):
        """
        Initialize planner bridge client.

        Args:
            base_url: Base URL of the bridge server
            timeout: Per-request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()

    def _build_telemetry_payload(
        self,
        ego: EgoState,
        previous_path_x: Sequence[float] = (),
        previous_path_y: Sequence[float] = (),
        end_path_s: Optional[float] = None,
        end_path_d: Optional[float] = None,
        vehicles: Sequence[TrackedVehicle] = (),
    ) -> dict:
        """Telemetry body in simulator units (yaw degrees, speed mph)."""
        return {
            "x": float(ego.x),
            "y": float(ego.y),
            "yaw": math.degrees(ego.yaw),
            "speed": float(ego.speed),
            "s": float(ego.s),
            "d": float(ego.d),
            "previous_path_x": [float(v) for v in previous_path_x],
            "previous_path_y": [float(v) for v in previous_path_y],
            "end_path_s": None if end_path_s is None else float(end_path_s),
            "end_path_d": None if end_path_d is None else float(end_path_d),
            "sensor_fusion": [
                [v.id, v.x, v.y, v.vx, v.vy, v.s, v.d] for v in vehicles
            ],
        }

    def post_telemetry(
        self,
        ego: EgoState,
        previous_path_x: Sequence[float] = (),
        previous_path_y: Sequence[float] = (),
        end_path_s: Optional[float] = None,
        end_path_d: Optional[float] = None,
        vehicles: Sequence[TrackedVehicle] = (),
    ) -> Optional[Dict]:
        """
        Run one planning cycle on the server.

        Returns:
            Plan dictionary or None if the request failed
        """
        payload = self._build_telemetry_payload(
            ego, previous_path_x, previous_path_y, end_path_s, end_path_d, vehicles
        )
        try:
            response = self.session.post(
                f"{self.base_url}/api/telemetry", json=payload, timeout=self.timeout
            )
            response.raise_for_status()
            return response.json()
        except requests.RequestException:
            return None

    def get_latest_plan(self) -> Optional[Dict]:
        """
        Get the most recent plan.

        Returns:
            Plan dictionary or None if not available
        """
        try:
            response = self.session.get(f"{self.base_url}/api/plan/latest", timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException:
            # 404 until the first cycle has run
            return None

    def get_next_waypoints(self) -> Optional[Dict[str, List[float]]]:
        """``next_x``/``next_y`` of the latest plan, or None."""
        plan = self.get_latest_plan()
        if plan is None:
            return None
        return {"next_x": plan["next_x"], "next_y": plan["next_y"]}

    def health_check(self) -> bool:
        """
        Check if bridge server is healthy.

        Returns:
            True if server is healthy, False otherwise
        """
        try:
            response = self.session.get(f"{self.base_url}/api/health", timeout=1.0)
            return response.status_code == 200 and response.json().get("status") == "healthy"
        except requests.RequestException:
            return False

    def close(self) -> None:
        self.session.close()
