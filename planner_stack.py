"""
Main highway planner integration script.
Loads the map and configuration, wires the planner to the simulator bridge.
"""

import math
import time
import sys
from pathlib import Path
import logging
from typing import Any, Dict, Optional
import yaml

# Add paths
sys.path.insert(0, str(Path(__file__).parent))

from data.formats.data_format import CycleRecord, EgoState, TelemetryError, parse_telemetry
from data.map_loader import DEFAULT_MAX_S, load_waypoint_table
from data.recorder import DataRecorder
from trajectory.inference import MotionPlanner, build_motion_planner
from trajectory.road_frame import RoadFrame

# Configure logging
# Ensure tmp/logs directory exists
log_dir = Path(__file__).parent / 'tmp' / 'logs'
log_dir.mkdir(parents=True, exist_ok=True)
log_file = log_dir / 'planner_stack.log'

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(str(log_file))
    ]
)
logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config" / "planner_config.yaml"
DEFAULT_MAP_PATH = "data/highway_map.csv"


def load_config(config_path: Optional[str] = None) -> dict:
    """Load configuration from YAML file or use defaults."""
    if config_path is None:
        config_path = DEFAULT_CONFIG_PATH
    else:
        config_path = Path(config_path)

    if config_path.exists():
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from {config_path}")
        return config
    else:
        logger.warning(f"Config file not found at {config_path}, using defaults")
        return {}


def _resolve_path(path: str) -> Path:
    """Relative paths are tried against the working directory, then the repo root."""
    candidate = Path(path)
    if candidate.is_absolute() or candidate.exists():
        return candidate
    return Path(__file__).parent / candidate


class PlannerStack:
    """Highway planner process: map, planner instance, optional recorder."""

    def __init__(self, config_path: Optional[str] = None,
                 map_path: Optional[str] = None,
                 record_data: Optional[bool] = None,
                 recording_dir: Optional[str] = None,
                 config: Optional[Dict[str, Any]] = None):
        """
        Initialize planner stack.

        Args:
            config_path: YAML config (default: config/planner_config.yaml)
            map_path: Waypoint table, overrides ``map.path``
            record_data: Overrides ``recording.enabled``
            recording_dir: Overrides ``recording.output_dir``
            config: Already-loaded config dict; skips reading ``config_path``

        Raises:
            MapLoadError: the waypoint table cannot be loaded
        """
        if config is None:
            config = load_config(config_path)
        self.config = config
        map_cfg = config.get('map', {}) or {}
        recording_cfg = config.get('recording', {}) or {}
        trajectory_cfg = config.get('trajectory', {}) or {}

        # Map
        self.map_path = _resolve_path(map_path or map_cfg.get('path', DEFAULT_MAP_PATH))
        table = load_waypoint_table(self.map_path, float(map_cfg.get('max_s', DEFAULT_MAX_S)))
        self.road_frame = RoadFrame.from_table(table)

        # Planner
        self.planner: MotionPlanner = build_motion_planner(config, self.road_frame)

        # Recording
        if record_data is None:
            record_data = bool(recording_cfg.get('enabled', False))
        self.recorder: Optional[DataRecorder] = None
        if record_data:
            self.recorder = DataRecorder(
                recording_dir or recording_cfg.get('output_dir', 'data/recordings'),
                recording_name=recording_cfg.get('name'),
                target_points=self.planner.config.target_points,
                flush_every=int(recording_cfg.get('flush_every', 100)),
                metadata={
                    "map_path": str(self.map_path),
                    "max_s": self.road_frame.max_s,
                    "speed_limit": self.planner.governor.config.speed_limit,
                    "speed_unit_conversion": float(
                        trajectory_cfg.get('speed_unit_conversion', self.planner.config.speed_unit_conversion)
                    ),
                },
            )
            logger.info(f"Recording cycles to {self.recorder.output_file}")

        self.cycle_id = 0
        logger.info(
            f"Planner stack ready: {len(self.road_frame)} waypoints, lane {self.planner.lane}, "
            f"speed limit {self.planner.governor.config.speed_limit}"
        )

    def process_telemetry(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Plan one cycle from a raw telemetry body.

        Returns:
            Plan dictionary (``next_x``/``next_y`` plus diagnostics)

        Raises:
            TelemetryError: payload unusable and nothing to fall back on
        """
        self.cycle_id += 1
        try:
            telemetry = parse_telemetry(payload)
        except TelemetryError:
            telemetry = None

        if telemetry is not None:
            plan = self.planner.plan(telemetry)
        else:
            plan = self.planner.plan_payload(payload)

        if self.recorder is not None:
            if telemetry is not None:
                ego = telemetry.ego
                prev_size = telemetry.prev_size
                num_vehicles = len(telemetry.vehicles)
            else:
                ego = EgoState(math.nan, math.nan, math.nan, math.nan, math.nan, math.nan)
                prev_size = 0
                num_vehicles = 0
            self.recorder.record_cycle(
                CycleRecord(
                    timestamp=time.time(),
                    cycle_id=self.cycle_id,
                    ego=ego,
                    prev_size=prev_size,
                    num_vehicles=num_vehicles,
                    plan=plan,
                )
            )

        return plan.to_dict()

    def run(self, host: Optional[str] = None, port: Optional[int] = None):
        """Serve the simulator until interrupted."""
        from bridge import server

        bridge_cfg = self.config.get('bridge', {}) or {}
        host = host or bridge_cfg.get('host', '0.0.0.0')
        port = int(port or bridge_cfg.get('port', 4567))

        server.configure(self)
        try:
            server.run_server(host, port)
        finally:
            server.configure(None)
            self.stop()

    def stop(self):
        """Stop planner stack."""
        if self.recorder:
            logger.info(f"Closing data recorder: {self.recorder.output_file}")
            self.recorder.close()
            self.recorder = None

        logger.info(
            f"Planner stack stopped (processed {self.cycle_id} cycles, "
            f"{self.planner.fallback_count} fallbacks)"
        )


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(description='Run the highway motion planner')
    parser.add_argument('--config', type=str, default=None,
                       help='Path to configuration YAML file (default: config/planner_config.yaml)')
    parser.add_argument('--map', type=str, default=None,
                       help='Waypoint table (x y s dx dy rows); overrides map.path')
    parser.add_argument('--host', type=str, default=None,
                       help='Bind address (default: bridge.host)')
    parser.add_argument('--port', type=int, default=None,
                       help='Simulator port (default: bridge.port, 4567)')
    parser.add_argument('--record', dest='record', action='store_true', default=None,
                       help='Record every cycle to HDF5')
    parser.add_argument('--no-record', dest='record', action='store_false',
                       help='Disable data recording')
    parser.add_argument('--recording_dir', type=str, default=None,
                       help='Directory for recordings')
    parser.add_argument('--log-level', type=str, default=None,
                       help='Root log level (default: logging.level)')

    args = parser.parse_args()

    config = load_config(args.config)
    log_level = args.log_level or (config.get('logging', {}) or {}).get('level', 'INFO')
    logging.getLogger().setLevel(str(log_level).upper())

    planner_stack = PlannerStack(
        map_path=args.map,
        record_data=args.record,
        recording_dir=args.recording_dir,
        config=config,
    )
    planner_stack.run(host=args.host, port=args.port)


if __name__ == "__main__":
    main()
