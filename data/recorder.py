"""
Data recorder for the highway planner.
Records per-cycle ego state, situational flags, decisions and emitted plans.
"""

import h5py
import numpy as np
import json
import time
import threading
import queue
import logging
from pathlib import Path
from typing import Optional, Dict, Any, List
from datetime import datetime

from .formats.data_format import CycleRecord

logger = logging.getLogger(__name__)

CYCLE_GAP_WARN_SECONDS = 0.2

FLAG_COLUMNS = ["ahead", "left_blocked", "right_blocked", "emergency", "obstructor_speed"]
EGO_COLUMNS = ["x", "y", "yaw", "speed", "s", "d"]


class DataRecorder:
    """Records planning cycles to HDF5 format."""

    def __init__(self, output_dir: str, recording_name: Optional[str] = None,
                 target_points: int = 50, flush_every: int = 100,
                 metadata: Optional[Dict[str, Any]] = None):
        """
        Initialize data recorder.

        Args:
            output_dir: Directory to save recordings
            recording_name: Name for this recording (default: timestamp)
            target_points: Waypoints per plan (fixed row width of the plan datasets)
            flush_every: Cycles buffered before a background flush
            metadata: Extra run information stored as a JSON attribute
        """
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

        if recording_name is None:
            recording_name = f"recording_{datetime.now().strftime('%Y%m%d_%H%M%S')}"

        self.recording_name = recording_name
        self.output_file = self.output_dir / f"{recording_name}.h5"
        self.target_points = int(target_points)
        self.flush_every = max(1, int(flush_every))

        self.h5_file = h5py.File(self.output_file, 'w')
        self._create_datasets()

        self.cycle_buffer: List[CycleRecord] = []
        self.cycle_buffer_lock = threading.Lock()
        self.flush_queue: "queue.Queue[List[CycleRecord]]" = queue.Queue()
        self.flush_stop_event = threading.Event()
        self.cycle_count = 0
        self.truncated_plans = 0
        self.last_record_wall_time: Optional[float] = None
        self.closed = False

        self.metadata: Dict[str, Any] = {
            "recording_name": recording_name,
            "recording_start_time": datetime.now().isoformat(),
            "target_points": self.target_points,
        }
        if metadata:
            self.metadata.update(metadata)

        self.flush_thread = threading.Thread(target=self._flush_worker, daemon=True)
        self.flush_thread.start()

    def _create_datasets(self):
        """Create extensible HDF5 datasets."""
        max_shape = (None,)
        string_dtype = h5py.string_dtype(encoding="utf-8")

        self.h5_file.create_dataset("cycles/timestamps", shape=(0,), maxshape=max_shape, dtype=np.float64)
        self.h5_file.create_dataset("cycles/cycle_ids", shape=(0,), maxshape=max_shape, dtype=np.int64)
        self.h5_file.create_dataset("cycles/prev_size", shape=(0,), maxshape=max_shape, dtype=np.int32)
        self.h5_file.create_dataset("cycles/num_vehicles", shape=(0,), maxshape=max_shape, dtype=np.int32)

        self.h5_file.create_dataset(
            "ego/state",
            shape=(0, len(EGO_COLUMNS)),
            maxshape=(None, len(EGO_COLUMNS)),
            dtype=np.float64
        )
        self.h5_file["ego/state"].attrs["columns"] = json.dumps(EGO_COLUMNS)

        self.h5_file.create_dataset(
            "plan/next_x",
            shape=(0, self.target_points),
            maxshape=(None, self.target_points),
            dtype=np.float64,
            compression="gzip",
            compression_opts=4,
            chunks=(64, self.target_points)
        )
        self.h5_file.create_dataset(
            "plan/next_y",
            shape=(0, self.target_points),
            maxshape=(None, self.target_points),
            dtype=np.float64,
            compression="gzip",
            compression_opts=4,
            chunks=(64, self.target_points)
        )
        self.h5_file.create_dataset("plan/reference_speed", shape=(0,), maxshape=max_shape, dtype=np.float64)
        self.h5_file.create_dataset("plan/lane", shape=(0,), maxshape=max_shape, dtype=np.int8)
        self.h5_file.create_dataset("plan/fallback", shape=(0,), maxshape=max_shape, dtype=np.bool_)
        self.h5_file.create_dataset(
            "plan/flags",
            shape=(0, len(FLAG_COLUMNS)),
            maxshape=(None, len(FLAG_COLUMNS)),
            dtype=np.float64
        )
        self.h5_file["plan/flags"].attrs["columns"] = json.dumps(FLAG_COLUMNS)
        self.h5_file.create_dataset("plan/behavior", shape=(0,), maxshape=max_shape, dtype=string_dtype)
        self.h5_file.create_dataset("plan/governor_rule", shape=(0,), maxshape=max_shape, dtype=string_dtype)
        self.h5_file.create_dataset("plan/costs", shape=(0,), maxshape=max_shape, dtype=string_dtype)
        self.h5_file.create_dataset("plan/fallback_reason", shape=(0,), maxshape=max_shape, dtype=string_dtype)

    def record_cycle(self, record: CycleRecord):
        """
        Record one planning cycle.

        Args:
            record: CycleRecord with the telemetry summary and the plan
        """
        if self.closed:
            raise RuntimeError(f"Recorder {self.recording_name} is closed")

        now = time.time()
        if self.last_record_wall_time is not None:
            gap = now - self.last_record_wall_time
            if gap > CYCLE_GAP_WARN_SECONDS:
                logger.warning(f"[RECORDER_ARRIVAL_GAP] gap={gap:.3f}s cycle_id={record.cycle_id}")
        self.last_record_wall_time = now

        with self.cycle_buffer_lock:
            self.cycle_buffer.append(record)
            self.cycle_count += 1

            if len(self.cycle_buffer) >= self.flush_every:
                records = self.cycle_buffer
                self.cycle_buffer = []
                self.flush_queue.put(records)

    def flush(self):
        """Hand buffered cycles to the flush worker."""
        with self.cycle_buffer_lock:
            if not self.cycle_buffer:
                return
            records = self.cycle_buffer
            self.cycle_buffer = []
        self.flush_queue.put(records)

    def _flush_worker(self):
        while not self.flush_stop_event.is_set() or not self.flush_queue.empty():
            try:
                records = self.flush_queue.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self._write_cycles(records)
            except Exception as e:
                logger.error(f"[RECORDER] Failed to write {len(records)} cycles: {e}", exc_info=True)
            finally:
                self.flush_queue.task_done()

    def _fit_plan(self, values: List[float]) -> np.ndarray:
        """Plan row at exactly ``target_points`` columns (NaN padded)."""
        row = np.full(self.target_points, np.nan, dtype=np.float64)
        count = min(len(values), self.target_points)
        row[:count] = values[:count]
        return row

    @staticmethod
    def _append(dataset, values) -> None:
        if isinstance(values, list):
            # vlen string datasets take object arrays, not numpy unicode
            values = np.array(values, dtype=object)
        current = dataset.shape[0]
        dataset.resize(current + len(values), axis=0)
        dataset[current:] = values

    def _write_cycles(self, records: List[CycleRecord]):
        """Write a batch of cycles to HDF5."""
        if not records:
            return

        timestamps = np.array([r.timestamp for r in records], dtype=np.float64)
        cycle_ids = np.array([r.cycle_id for r in records], dtype=np.int64)
        prev_sizes = np.array([r.prev_size for r in records], dtype=np.int32)
        num_vehicles = np.array([r.num_vehicles for r in records], dtype=np.int32)
        ego_state = np.array(
            [[r.ego.x, r.ego.y, r.ego.yaw, r.ego.speed, r.ego.s, r.ego.d] for r in records],
            dtype=np.float64
        )

        self.truncated_plans += sum(len(r.plan.next_x) != self.target_points for r in records)
        next_x = np.stack([self._fit_plan(r.plan.next_x) for r in records])
        next_y = np.stack([self._fit_plan(r.plan.next_y) for r in records])
        reference_speed = np.array([r.plan.reference_speed for r in records], dtype=np.float64)
        lanes = np.array([r.plan.lane for r in records], dtype=np.int8)
        fallback = np.array([r.plan.fallback for r in records], dtype=np.bool_)
        flags = np.array(
            [[float(r.plan.flags.to_dict()[col]) for col in FLAG_COLUMNS] for r in records],
            dtype=np.float64
        )
        behaviors = [r.plan.behavior or "" for r in records]
        rules = [r.plan.governor_rule for r in records]
        costs = [json.dumps(r.plan.costs) if r.plan.costs is not None else "" for r in records]
        reasons = [r.plan.fallback_reason or "" for r in records]

        self._append(self.h5_file["cycles/timestamps"], timestamps)
        self._append(self.h5_file["cycles/cycle_ids"], cycle_ids)
        self._append(self.h5_file["cycles/prev_size"], prev_sizes)
        self._append(self.h5_file["cycles/num_vehicles"], num_vehicles)
        self._append(self.h5_file["ego/state"], ego_state)
        self._append(self.h5_file["plan/next_x"], next_x)
        self._append(self.h5_file["plan/next_y"], next_y)
        self._append(self.h5_file["plan/reference_speed"], reference_speed)
        self._append(self.h5_file["plan/lane"], lanes)
        self._append(self.h5_file["plan/fallback"], fallback)
        self._append(self.h5_file["plan/flags"], flags)
        self._append(self.h5_file["plan/behavior"], behaviors)
        self._append(self.h5_file["plan/governor_rule"], rules)
        self._append(self.h5_file["plan/costs"], costs)
        self._append(self.h5_file["plan/fallback_reason"], reasons)

        self.h5_file.flush()

    def close(self):
        """Close the recording file."""
        if self.closed:
            return
        self.closed = True
        try:
            self.flush()
            self.flush_stop_event.set()
            self.flush_thread.join(timeout=5.0)
        except Exception as e:
            logger.error(f"Error during final flush: {e}", exc_info=True)

        self.metadata["recording_end_time"] = datetime.now().isoformat()
        self.metadata["total_cycles"] = self.cycle_count
        self.metadata["truncated_plans"] = self.truncated_plans

        try:
            self.h5_file.attrs["metadata"] = json.dumps(self.metadata, indent=2)
        except (TypeError, ValueError) as e:
            logger.warning(f"Failed to save metadata: {e}")

        self.h5_file.close()
        logger.info(f"Recording saved to: {self.output_file} ({self.cycle_count} cycles)")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
