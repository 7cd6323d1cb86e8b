"""Joint angle computations for pose-based movement analysis."""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from phase_tracker.biomechanics.config import JOINT_GROUPS, JOINT_TRIPLETS, MIN_VISIBILITY_THRESHOLD
from phase_tracker.models import NUM_LANDMARKS, Landmark, frame_landmarks

logger = logging.getLogger(__name__)

MIN_VECTOR_MAGNITUDE = 1e-4
# Assumed extended/standing pose until the first computable angle.
DEFAULT_SEQUENCE_ANGLE = 180.0


def _as_landmark(point: Any) -> Landmark:
    if isinstance(point, Landmark):
        return point
    return Landmark.from_row(point)


def _visible(*points: Landmark) -> bool:
    return all(p.visibility >= MIN_VISIBILITY_THRESHOLD for p in points)


def _angle_between(ba: np.ndarray, bc: np.ndarray) -> Optional[float]:
    norm_ba = float(np.linalg.norm(ba))
    norm_bc = float(np.linalg.norm(bc))
    if norm_ba < MIN_VECTOR_MAGNITUDE or norm_bc < MIN_VECTOR_MAGNITUDE:
        return None
    cosine = float(np.clip(np.dot(ba, bc) / (norm_ba * norm_bc), -1.0, 1.0))
    return float(np.degrees(np.arccos(cosine)))


def calculate_angle(a: Any, b: Any, c: Any) -> Optional[float]:
    """Compute the angle at `b` formed by points a-b-c (degrees, 0-180).

    Returns None when any point is below the visibility threshold or when
    `b` coincides with `a` or `c`.
    """
    a, b, c = _as_landmark(a), _as_landmark(b), _as_landmark(c)
    if not _visible(a, b, c):
        return None
    ba = np.array([a.x - b.x, a.y - b.y, a.z - b.z], dtype=float)
    bc = np.array([c.x - b.x, c.y - b.y, c.z - b.z], dtype=float)
    return _angle_between(ba, bc)


def calculate_angle_2d(a: Any, b: Any, c: Any) -> Optional[float]:
    """Same as `calculate_angle` using only x/y, for when depth is unreliable."""
    a, b, c = _as_landmark(a), _as_landmark(b), _as_landmark(c)
    if not _visible(a, b, c):
        return None
    ba = np.array([a.x - b.x, a.y - b.y], dtype=float)
    bc = np.array([c.x - b.x, c.y - b.y], dtype=float)
    return _angle_between(ba, bc)


def resolve_joint(joint: Any) -> Tuple[str, Tuple[int, int, int]]:
    """Look up a joint by name (case-insensitive), returning its landmark triplet."""
    name = str(joint).strip().upper()
    try:
        return name, JOINT_TRIPLETS[name]
    except KeyError:
        raise ValueError(f"Unknown joint {joint!r}; expected one of {', '.join(JOINT_TRIPLETS)}.") from None


def resolve_joints(joints: Optional[Iterable[Any]]) -> List[str]:
    """Expand joint names and group names ("lower_body", "all", ...) into joint names."""
    if joints is None:
        return list(JOINT_GROUPS["all"])
    names: List[str] = []
    for joint in joints:
        key = str(joint).strip()
        group = JOINT_GROUPS.get(key.lower())
        candidates = group if group is not None else (resolve_joint(key)[0],)
        for name in candidates:
            if name not in names:
                names.append(name)
    return names


def get_joint_angle(frame: Any, joint: Any, use_2d: bool = False) -> Optional[float]:
    """Angle for one joint in a 33-landmark frame, or None when unavailable."""
    _name, (idx_a, idx_b, idx_c) = resolve_joint(joint)
    landmarks = frame_landmarks(frame)
    if len(landmarks) < NUM_LANDMARKS:
        return None
    a, b, c = landmarks[idx_a], landmarks[idx_b], landmarks[idx_c]
    return calculate_angle_2d(a, b, c) if use_2d else calculate_angle(a, b, c)


def get_all_joint_angles(
    frame: Any, joints: Optional[Iterable[Any]] = None, use_2d: bool = False
) -> Dict[str, float]:
    """Angles for every requested joint that could be computed.

    Joints with unreliable tracking are left out rather than reported as 0.
    """
    landmarks = frame_landmarks(frame)
    angles: Dict[str, float] = {}
    for name in resolve_joints(joints):
        angle = get_joint_angle(landmarks, name, use_2d=use_2d)
        if angle is not None:
            angles[name] = angle
    return angles


def get_average_joint_angle(frame: Any, left_joint: Any, right_joint: Any, use_2d: bool = False) -> Optional[float]:
    """Mean of a bilateral joint pair, falling back to whichever side is available."""
    landmarks = frame_landmarks(frame)
    left = get_joint_angle(landmarks, left_joint, use_2d=use_2d)
    right = get_joint_angle(landmarks, right_joint, use_2d=use_2d)
    if left is not None and right is not None:
        return (left + right) / 2.0
    if left is not None:
        return left
    return right


def calculate_angle_sequence(frames: Sequence[Any], joint: Any, use_2d: bool = False) -> List[float]:
    """Dense per-frame angle series for one joint.

    Frames without a computable angle repeat the last valid value; before the
    first valid value the series holds 180 degrees. Output length always equals
    the input length.
    """
    name, _triplet = resolve_joint(joint)
    last_valid = DEFAULT_SEQUENCE_ANGLE
    valid_count = 0
    sequence: List[float] = []
    for frame in frames:
        angle = get_joint_angle(frame, name, use_2d=use_2d)
        if angle is not None:
            last_valid = angle
            valid_count += 1
        sequence.append(last_valid)

    if sequence and logger.isEnabledFor(logging.DEBUG):
        summary = angle_sequence_summary(sequence)
        logger.debug(
            "Angle sequence for %s: valid=%s missing=%s range=%.1f-%.1f (ROM %.1f)",
            name,
            valid_count,
            len(sequence) - valid_count,
            summary["min"],
            summary["max"],
            summary["range"],
        )
    return sequence


def angle_sequence_summary(sequence: Sequence[float]) -> Dict[str, float]:
    """Min, max and range of motion of an angle series (zeros when empty)."""
    if not sequence:
        return {"min": 0.0, "max": 0.0, "range": 0.0}
    arr = np.asarray(sequence, dtype=float)
    low = float(np.min(arr))
    high = float(np.max(arr))
    return {"min": low, "max": high, "range": high - low}


def compute_angle_dataframe(
    frames: Sequence[Any], joints: Optional[Iterable[Any]] = None, use_2d: bool = False
) -> pd.DataFrame:
    """Compute raw per-frame angles and return a long-form DataFrame.

    Output columns:
        frame, joint, angle_degrees, valid

    Missing angles are NaN with `valid=False` (no gap filling).
    """
    names = resolve_joints(joints)
    records: List[Mapping[str, object]] = []
    for position, frame in enumerate(frames):
        frame_idx = int(getattr(frame, "frame_index", position))
        landmarks = frame_landmarks(frame)
        for name in names:
            angle = get_joint_angle(landmarks, name, use_2d=use_2d)
            records.append(
                {
                    "frame": frame_idx,
                    "joint": name,
                    "angle_degrees": float("nan") if angle is None else float(angle),
                    "valid": angle is not None,
                }
            )

    df = pd.DataFrame.from_records(records, columns=["frame", "joint", "angle_degrees", "valid"])
    if df.empty:
        return df
    return df.sort_values(["frame", "joint"]).reset_index(drop=True)


__all__ = [
    "calculate_angle",
    "calculate_angle_2d",
    "resolve_joint",
    "resolve_joints",
    "get_joint_angle",
    "get_all_joint_angles",
    "get_average_joint_angle",
    "calculate_angle_sequence",
    "angle_sequence_summary",
    "compute_angle_dataframe",
]
