from __future__ import annotations

import argparse
import json
import math
import random
from pathlib import Path
from typing import Sequence

ROOT = Path(__file__).resolve().parents[1]
DEFAULT_JSON = ROOT / "demo" / "demo_squat.json"

NUM_LANDMARKS = 33
# Seconds spent in each segment of one repetition.
REP_SEGMENTS = (
    ("standing", 1.0),
    ("descent", 1.0),
    ("bottom", 0.5),
    ("ascent", 1.0),
)

# Standing pose in normalised image coordinates (x, y); y grows downwards.
STANDING_POSE = {
    0: (0.50, 0.10),
    7: (0.47, 0.11),
    8: (0.53, 0.11),
    11: (0.44, 0.25),
    12: (0.56, 0.25),
    13: (0.42, 0.38),
    14: (0.58, 0.38),
    15: (0.42, 0.50),
    16: (0.58, 0.50),
    23: (0.46, 0.52),
    24: (0.54, 0.52),
    25: (0.46, 0.71),
    26: (0.54, 0.71),
    27: (0.46, 0.90),
    28: (0.54, 0.90),
    29: (0.45, 0.92),
    30: (0.55, 0.92),
    31: (0.47, 0.94),
    32: (0.53, 0.94),
}
FEET = {27, 28, 29, 30, 31, 32}
KNEES = {25, 26}


def _depth_curve(reps: int, fps: float) -> list[float]:
    """Squat depth in [0, 1] per frame: stand, lower, hold, rise, repeated."""
    depths: list[float] = []
    for _ in range(reps):
        for segment, seconds in REP_SEGMENTS:
            count = max(1, int(round(seconds * fps)))
            for i in range(count):
                t = i / count
                if segment == "standing":
                    depths.append(0.0)
                elif segment == "descent":
                    depths.append(0.5 - 0.5 * math.cos(math.pi * t))
                elif segment == "bottom":
                    depths.append(1.0)
                else:
                    depths.append(0.5 + 0.5 * math.cos(math.pi * t))
    depths.extend([0.0] * max(1, int(round(fps))))
    return depths


def _pose_at(depth: float, rng: random.Random, noise: float) -> list[list[float]]:
    drop = 0.18 * depth
    knee_shift = 0.06 * depth
    rows = [[0.5, 0.5, 0.0, 0.1, 0.1] for _ in range(NUM_LANDMARKS)]
    for index, (x, y) in STANDING_POSE.items():
        if index in FEET:
            px, py = x, y
        elif index in KNEES:
            px, py = x + knee_shift, y + drop * 0.35
        else:
            px, py = x - knee_shift * 0.5, y + drop
        rows[index] = [
            round(px + rng.gauss(0.0, noise), 5),
            round(py + rng.gauss(0.0, noise), 5),
            round(rng.gauss(0.0, noise), 5),
            round(rng.uniform(0.85, 0.99), 3),
            round(rng.uniform(0.9, 1.0), 3),
        ]
    return rows


def build_recording(reps: int = 3, fps: float = 30.0, seed: int = 42, noise: float = 0.001) -> dict[str, object]:
    """Synthetic squat recording in the JSON layout accepted by `phase-tracker`."""
    rng = random.Random(seed)
    frames = []
    for index, depth in enumerate(_depth_curve(reps, fps)):
        frames.append(
            {
                "frame_index": index,
                "timestamp_ms": round(index * 1000.0 / fps, 3),
                "landmarks": _pose_at(depth, rng, noise),
            }
        )
    return {"frame_rate": fps, "exercise": "squat", "frames": frames}


def _write_json(path: Path, recording: dict[str, object]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(recording) + "\n", encoding="utf-8")


def main(argv: Sequence[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Generate a synthetic squat landmark recording.")
    parser.add_argument("--reps", type=int, default=3, help="Number of squat repetitions.")
    parser.add_argument("--fps", type=float, default=30.0, help="Frame rate of the recording.")
    parser.add_argument("--seed", type=int, default=42, help="Random seed for reproducibility.")
    parser.add_argument("--noise", type=float, default=0.001, help="Gaussian jitter added to coordinates.")
    parser.add_argument("--json", type=Path, default=DEFAULT_JSON, help="Destination .json file.")
    args = parser.parse_args(argv)

    if args.reps < 1 or args.fps <= 0:
        parser.error("--reps must be >= 1 and --fps must be positive.")

    recording = build_recording(reps=args.reps, fps=args.fps, seed=args.seed, noise=args.noise)
    _write_json(args.json, recording)
    frame_count = len(recording["frames"])  # type: ignore[arg-type]
    print(f"Wrote {frame_count} frames ({args.reps} reps @ {args.fps:g} fps) to {args.json}")


if __name__ == "__main__":
    main()
