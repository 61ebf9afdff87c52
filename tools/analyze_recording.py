"""
Summarize a planner recording.

Reports the speed profile, lane changes, governor rule usage and fallback
cycles of an HDF5 recording written by DataRecorder, and optionally plots it.
"""

import argparse
import sys
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np

sys.path.insert(0, str(Path(__file__).parent.parent))

from data.replay import DataReplay
from trajectory.utils import DEFAULT_SPEED_UNIT_CONVERSION, TICK_SECONDS, implied_speeds


def summarize_recording(recording_file: str) -> Dict[str, Any]:
    """
    Compute summary statistics for one recording.

    Returns:
        Dictionary with cycle count, speed statistics, lane changes, rule and
        behavior histograms, fallback count and the largest per-tick speed
        change inside any emitted plan (reference units per tick).
    """
    with DataReplay(recording_file) as replay:
        conversion = float(replay.metadata.get("speed_unit_conversion", DEFAULT_SPEED_UNIT_CONVERSION))
        rules: Counter = Counter()
        behaviors: Counter = Counter()
        reference_speed = []
        lanes = []
        fallbacks = 0
        max_plan_speed = 0.0
        max_speed_step = 0.0

        for cycle in replay.get_cycles():
            rules[cycle["governor_rule"]] += 1
            if cycle["behavior"] is not None:
                behaviors[cycle["behavior"]] += 1
            reference_speed.append(cycle["reference_speed"])
            lanes.append(cycle["lane"])
            if cycle["fallback"]:
                fallbacks += 1

            xs = cycle["next_x"]
            ys = cycle["next_y"]
            valid = np.isfinite(xs) & np.isfinite(ys)
            speeds = implied_speeds(xs[valid], ys[valid], TICK_SECONDS, conversion)
            if len(speeds):
                max_plan_speed = max(max_plan_speed, float(np.max(speeds)))
            if len(speeds) >= 2:
                max_speed_step = max(max_speed_step, float(np.max(np.abs(np.diff(speeds)))))

        ref = np.asarray(reference_speed, dtype=float)
        lane_arr = np.asarray(lanes, dtype=int)
        lane_changes = int(np.count_nonzero(np.diff(lane_arr))) if len(lane_arr) > 1 else 0

        return {
            "recording": str(recording_file),
            "cycles": len(ref),
            "mean_reference_speed": float(np.mean(ref)) if len(ref) else 0.0,
            "max_reference_speed": float(np.max(ref)) if len(ref) else 0.0,
            "max_plan_speed": max_plan_speed,
            "max_speed_step": max_speed_step,
            "lane_changes": lane_changes,
            "fallbacks": fallbacks,
            "governor_rules": dict(rules),
            "behaviors": dict(behaviors),
        }


def plot_recording(recording_file: str, output_path: Optional[str] = None) -> Path:
    """Plot reference/ego speed and lane over cycles to a PNG."""
    import matplotlib
    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    with DataReplay(recording_file) as replay:
        profile = replay.get_speed_profile()

    if output_path is None:
        output_path = str(Path(recording_file).with_suffix(".png"))
    cycles = np.arange(len(profile["reference_speed"]))

    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(12, 8), sharex=True)
    ax1.plot(cycles, profile["reference_speed"], label="reference")
    ax1.plot(cycles, profile["ego_speed"], label="ego", alpha=0.7)
    ax1.set_ylabel("speed (mph)")
    ax1.legend()
    ax1.grid(True, alpha=0.3)
    ax2.step(cycles, profile["lane"], where="post")
    ax2.set_ylabel("lane")
    ax2.set_xlabel("cycle")
    ax2.grid(True, alpha=0.3)
    plt.tight_layout()
    plt.savefig(output_path, dpi=150)
    plt.close(fig)
    return Path(output_path)


def main():
    parser = argparse.ArgumentParser(description="Summarize a planner recording")
    parser.add_argument("recording", nargs="?", default=None,
                        help="HDF5 recording (default: latest in data/recordings)")
    parser.add_argument("--plot", action="store_true", help="Also write a PNG next to the recording")
    args = parser.parse_args()

    recording = args.recording
    if recording is None:
        recordings = sorted(Path("data/recordings").glob("*.h5"),
                            key=lambda p: p.stat().st_mtime, reverse=True)
        if not recordings:
            print("No recordings found in data/recordings")
            sys.exit(1)
        recording = str(recordings[0])

    summary = summarize_recording(recording)
    print("=" * 70)
    print(f"RECORDING: {summary['recording']}")
    print("=" * 70)
    for key in ("cycles", "mean_reference_speed", "max_reference_speed", "max_plan_speed",
                "max_speed_step", "lane_changes", "fallbacks"):
        value = summary[key]
        print(f"  {key:>22}: {value:.3f}" if isinstance(value, float) else f"  {key:>22}: {value}")
    print(f"  {'governor_rules':>22}: {summary['governor_rules']}")
    print(f"  {'behaviors':>22}: {summary['behaviors']}")

    if args.plot:
        out = plot_recording(recording)
        print(f"Saved plot to {out}")


if __name__ == "__main__":
    main()
