"""
Data replay utility for planner recordings.
Reads cycles back from HDF5 for analysis and regression checks.
"""

import json
import h5py
import numpy as np
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from .recorder import EGO_COLUMNS, FLAG_COLUMNS


class DataReplay:
    """Replay recorded planning cycles."""

    def __init__(self, recording_file: str):
        """
        Initialize data replay.

        Args:
            recording_file: Path to HDF5 recording file
        """
        self.recording_file = Path(recording_file)
        if not self.recording_file.exists():
            raise FileNotFoundError(f"Recording file not found: {recording_file}")

        self.h5_file = h5py.File(self.recording_file, 'r')
        self._load_metadata()

    def _load_metadata(self):
        """Load recording metadata."""
        if "metadata" in self.h5_file.attrs:
            self.metadata = json.loads(self.h5_file.attrs["metadata"])
        else:
            self.metadata = {}

    def __len__(self) -> int:
        if "cycles/timestamps" not in self.h5_file:
            return 0
        return int(self.h5_file["cycles/timestamps"].shape[0])

    def _strings(self, name: str) -> List[str]:
        return list(self.h5_file[name].asstr()[...])

    def get_cycles(self) -> Iterator[dict]:
        """
        Get recorded cycles iterator.

        Yields:
            Dictionary with ego state, flags, decisions and the emitted plan
        """
        count = len(self)
        if count == 0:
            return

        timestamps = self.h5_file["cycles/timestamps"][...]
        cycle_ids = self.h5_file["cycles/cycle_ids"][...]
        prev_sizes = self.h5_file["cycles/prev_size"][...]
        num_vehicles = self.h5_file["cycles/num_vehicles"][...]
        ego_state = self.h5_file["ego/state"][...]
        next_x = self.h5_file["plan/next_x"]
        next_y = self.h5_file["plan/next_y"]
        reference_speed = self.h5_file["plan/reference_speed"][...]
        lanes = self.h5_file["plan/lane"][...]
        fallback = self.h5_file["plan/fallback"][...]
        flags = self.h5_file["plan/flags"][...]
        behaviors = self._strings("plan/behavior")
        rules = self._strings("plan/governor_rule")
        costs = self._strings("plan/costs")
        reasons = self._strings("plan/fallback_reason")

        for i in range(count):
            yield {
                "timestamp": float(timestamps[i]),
                "cycle_id": int(cycle_ids[i]),
                "prev_size": int(prev_sizes[i]),
                "num_vehicles": int(num_vehicles[i]),
                "ego": dict(zip(EGO_COLUMNS, (float(v) for v in ego_state[i]))),
                "next_x": np.asarray(next_x[i]),
                "next_y": np.asarray(next_y[i]),
                "reference_speed": float(reference_speed[i]),
                "lane": int(lanes[i]),
                "fallback": bool(fallback[i]),
                "flags": {
                    col: (bool(flags[i][j]) if col != "obstructor_speed" else float(flags[i][j]))
                    for j, col in enumerate(FLAG_COLUMNS)
                },
                "behavior": behaviors[i] or None,
                "governor_rule": rules[i],
                "costs": json.loads(costs[i]) if costs[i] else None,
                "fallback_reason": reasons[i] or None,
            }

    def get_series(self, name: str) -> Optional[np.ndarray]:
        """Whole numeric dataset by HDF5 path (e.g. ``plan/reference_speed``), or None."""
        if name not in self.h5_file:
            return None
        return self.h5_file[name][...]

    def get_speed_profile(self) -> Dict[str, np.ndarray]:
        """Timestamps, reference speed, ego speed and lane per cycle."""
        if len(self) == 0:
            empty = np.zeros(0)
            return {"timestamps": empty, "reference_speed": empty, "ego_speed": empty, "lane": empty}
        ego_state = self.h5_file["ego/state"][...]
        return {
            "timestamps": self.h5_file["cycles/timestamps"][...],
            "reference_speed": self.h5_file["plan/reference_speed"][...],
            "ego_speed": ego_state[:, EGO_COLUMNS.index("speed")],
            "lane": self.h5_file["plan/lane"][...].astype(int),
        }

    def close(self):
        """Close recording file."""
        self.h5_file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
