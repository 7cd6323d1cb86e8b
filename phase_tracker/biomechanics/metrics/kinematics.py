"""Velocity signals derived from landmark sequences.

All functions are pure: they take plain sequences and return new lists, so the
same helpers back both the position-velocity and angular-velocity detectors.
"""

from __future__ import annotations

import math
from typing import Any, Dict, List, Mapping, Sequence

import numpy as np

from phase_tracker.biomechanics.config import MIN_VISIBILITY_THRESHOLD
from phase_tracker.models import Landmark, frame_landmarks


def calculate_weighted_velocity(
    prev_landmarks: Sequence[Landmark],
    curr_landmarks: Sequence[Landmark],
    joint_weights: Mapping[int, float],
    *,
    visibility_threshold: float = MIN_VISIBILITY_THRESHOLD,
) -> float:
    """Weighted mean 3D displacement of the weighted joints between two frames.

    Joints missing from either frame or below the visibility threshold in
    either frame are skipped. Returns 0.0 when no joint qualifies.
    """
    total_distance = 0.0
    total_weight = 0.0
    for joint_index, weight in joint_weights.items():
        if joint_index >= len(prev_landmarks) or joint_index >= len(curr_landmarks):
            continue
        prev = prev_landmarks[joint_index]
        curr = curr_landmarks[joint_index]
        if prev.visibility < visibility_threshold or curr.visibility < visibility_threshold:
            continue
        distance = math.sqrt((curr.x - prev.x) ** 2 + (curr.y - prev.y) ** 2 + (curr.z - prev.z) ** 2)
        total_distance += distance * weight
        total_weight += weight
    return total_distance / total_weight if total_weight > 0 else 0.0


def calculate_velocity_profile(frames: Sequence[Any], joint_weights: Mapping[int, float]) -> List[float]:
    """Per-frame aggregate velocity, with a leading 0 for frame 0.

    Frames with no usable landmarks contribute a 0 sample. Sequences shorter
    than two frames have no profile.
    """
    landmarks_sequence = [frame_landmarks(frame) for frame in frames]
    if len(landmarks_sequence) < 2:
        return []
    profile = [0.0]
    for prev, curr in zip(landmarks_sequence, landmarks_sequence[1:]):
        if not prev or not curr:
            profile.append(0.0)
            continue
        profile.append(calculate_weighted_velocity(prev, curr, joint_weights))
    return profile


def smooth_moving_average(values: Sequence[float], window: int) -> List[float]:
    """Centred moving average; windows are clamped (not padded) at the edges.

    For index i the window covers [i - window//2, i + window//2] intersected
    with the sequence bounds.
    """
    if not values or window <= 1:
        return [float(v) for v in values]
    arr = np.asarray(values, dtype=float)
    n = arr.size
    half = window // 2
    return [float(np.mean(arr[max(0, i - half) : min(n, i + half + 1)])) for i in range(n)]


def find_local_minima(values: Sequence[float], threshold: float, min_separation: int) -> List[int]:
    """Interior indices that dip to or below both neighbours and under `threshold`.

    A candidate closer than `min_separation` frames to the previously accepted
    minimum is discarded; the earliest minimum in a cluster wins.
    """
    minima: List[int] = []
    if len(values) < 3:
        return minima
    for i in range(1, len(values) - 1):
        curr = values[i]
        if curr <= values[i - 1] and curr <= values[i + 1] and curr < threshold:
            if not minima or i - minima[-1] >= min_separation:
                minima.append(i)
    return minima


def compute_angular_velocities(angles: Sequence[float], frame_rate: float) -> List[float]:
    """Angular velocity in degrees/second, with a leading 0 for frame 0.

    Positive values mean the angle is opening (extension), negative closing
    (flexion).
    """
    if len(angles) < 2:
        return []
    arr = np.asarray(angles, dtype=float)
    deltas = np.diff(arr) * float(frame_rate)
    return [0.0] + deltas.tolist()


def velocity_statistics(values: Sequence[float], threshold: float) -> Dict[str, Any]:
    """Average, max, min, population variance and stationarity of a velocity slice."""
    if not values:
        return {"average": 0.0, "max": 0.0, "min": 0.0, "variance": 0.0, "is_stationary": True}
    arr = np.asarray(values, dtype=float)
    return {
        "average": float(np.mean(arr)),
        "max": float(np.max(arr)),
        "min": float(np.min(arr)),
        "variance": float(np.var(arr)),
        "is_stationary": bool(np.all(arr < threshold)),
    }


__all__ = [
    "calculate_weighted_velocity",
    "calculate_velocity_profile",
    "smooth_moving_average",
    "find_local_minima",
    "compute_angular_velocities",
    "velocity_statistics",
]
