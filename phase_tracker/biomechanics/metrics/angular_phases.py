"""Phase detection from the angular velocity of a single joint.

An alternative to position-velocity detection: per-frame joint angles are
differentiated into degrees/second, smoothed, and each sample is classified as
hold, flexion (angle closing), extension (angle opening) or transition. Runs of
the same class become phases.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from phase_tracker.biomechanics.config import BIOMECHANICS_LOGGER as logger
from phase_tracker.biomechanics.config import JOINT_GROUPS, AngularPhaseConfig
from phase_tracker.biomechanics.metrics.angles import DEFAULT_SEQUENCE_ANGLE, calculate_angle_sequence
from phase_tracker.biomechanics.metrics.kinematics import compute_angular_velocities, smooth_moving_average
from phase_tracker.models import DetectedPhase, parse_frame_sequence

# Adjacent same-type phases separated by at most this many frames are merged.
MERGE_GAP_FRAMES = 5
MAX_FALLBACK_PHASES = 10


class VelocityPhaseType(str, Enum):
    HOLD = "Hold"
    FLEXION = "Flexion"
    EXTENSION = "Extension"
    TRANSITION = "Transition"

    @property
    def display_name(self) -> str:
        return self.value


@dataclass(frozen=True)
class DetectedVelocityPhase:
    type: VelocityPhaseType
    start_frame: int
    end_frame: int
    start_time_seconds: float
    end_time_seconds: float
    average_velocity: float
    peak_velocity: float
    start_angle: float
    end_angle: float
    angle_change: float

    @property
    def duration_frames(self) -> int:
        return self.end_frame - self.start_frame

    @property
    def duration_seconds(self) -> float:
        return self.end_time_seconds - self.start_time_seconds

    @property
    def confidence(self) -> float:
        """Longer phases with a decisive velocity score higher (0.4-0.95)."""
        duration_score = float(np.clip(self.duration_seconds / 0.5, 0.3, 1.0))
        if self.type is VelocityPhaseType.HOLD:
            velocity_score = 0.9 if abs(self.average_velocity) < 10.0 else 0.6
        elif self.type in (VelocityPhaseType.FLEXION, VelocityPhaseType.EXTENSION):
            velocity_score = 0.9 if abs(self.peak_velocity) > 60.0 else 0.7
        else:
            velocity_score = 0.6
        return float(np.clip(duration_score * 0.4 + velocity_score * 0.6, 0.4, 0.95))


@dataclass(frozen=True)
class PeakVelocityInfo:
    joint: str
    peak_flexion_velocity: float
    peak_extension_velocity: float
    peak_flexion_frame: int
    peak_extension_frame: int
    range_of_motion: float


@dataclass(frozen=True)
class AngularPhaseResult:
    phases: Tuple[DetectedVelocityPhase, ...]
    joint_angles: Mapping[str, List[float]]
    angular_velocities: Mapping[str, List[float]]
    peak_velocities: Mapping[str, PeakVelocityInfo]
    primary_joint: str
    total_frames: int
    frame_rate: float

    def to_detected_phases(self) -> List[DetectedPhase]:
        """Generic `DetectedPhase` list, e.g. for storing alongside position-velocity results."""
        return [
            DetectedPhase(
                name=f"{phase.type.display_name} {index + 1}",
                start_frame=phase.start_frame,
                end_frame=phase.end_frame,
                confidence=phase.confidence,
            )
            for index, phase in enumerate(self.phases)
        ]

    def smoothed_velocity(self) -> List[float]:
        return list(self.angular_velocities.get(self.primary_joint, []))

    def average_velocity(self) -> float:
        velocities = self.angular_velocities.get(self.primary_joint, [])
        if not velocities:
            return 0.0
        return float(np.mean(np.abs(velocities)))


def _empty_result(config: AngularPhaseConfig) -> AngularPhaseResult:
    return AngularPhaseResult(
        phases=(),
        joint_angles={},
        angular_velocities={},
        peak_velocities={},
        primary_joint=config.primary_joint,
        total_frames=0,
        frame_rate=config.frame_rate,
    )


def classify_velocity(velocity: float, config: AngularPhaseConfig) -> VelocityPhaseType:
    if abs(velocity) < config.hold_velocity_threshold:
        return VelocityPhaseType.HOLD
    if velocity < -config.rapid_velocity_threshold:
        return VelocityPhaseType.FLEXION
    if velocity > config.rapid_velocity_threshold:
        return VelocityPhaseType.EXTENSION
    return VelocityPhaseType.TRANSITION


def _angle_at(angles: Sequence[float], index: int) -> float:
    return float(angles[index]) if 0 <= index < len(angles) else DEFAULT_SEQUENCE_ANGLE


def _build_phase(
    phase_type: VelocityPhaseType,
    start: int,
    end: int,
    velocities: Sequence[float],
    angles: Sequence[float],
    frame_rate: float,
) -> DetectedVelocityPhase:
    window = np.asarray(velocities[start : end + 1], dtype=float)
    peak = float(np.min(window)) if phase_type is VelocityPhaseType.FLEXION else float(np.max(window))
    start_angle = _angle_at(angles, start)
    end_angle = _angle_at(angles, end)
    return DetectedVelocityPhase(
        type=phase_type,
        start_frame=start,
        end_frame=end,
        start_time_seconds=start / frame_rate,
        end_time_seconds=end / frame_rate,
        average_velocity=float(np.mean(window)),
        peak_velocity=peak,
        start_angle=start_angle,
        end_angle=end_angle,
        angle_change=end_angle - start_angle,
    )


def segment_by_velocity(
    velocities: Sequence[float], angles: Sequence[float], config: AngularPhaseConfig
) -> List[DetectedVelocityPhase]:
    """Split the series into maximal runs of samples that share a classification.

    A class change on the final sample does not open a new run; the final
    sample closes the current one so the last frame is always covered.
    """
    phases: List[DetectedVelocityPhase] = []
    if not velocities:
        return phases
    last = len(velocities) - 1
    run_type = classify_velocity(velocities[0], config)
    run_start = 0
    for i in range(1, last):
        sample_type = classify_velocity(velocities[i], config)
        if sample_type is not run_type:
            phases.append(_build_phase(run_type, run_start, i - 1, velocities, angles, config.frame_rate))
            run_type, run_start = sample_type, i
    phases.append(_build_phase(run_type, run_start, last, velocities, angles, config.frame_rate))
    return phases


def merge_adjacent_phases(phases: Sequence[DetectedVelocityPhase]) -> List[DetectedVelocityPhase]:
    """Join consecutive phases of the same type separated by a small gap."""
    if len(phases) <= 1:
        return list(phases)
    merged: List[DetectedVelocityPhase] = []
    current = phases[0]
    for nxt in phases[1:]:
        if nxt.type is current.type and nxt.start_frame <= current.end_frame + MERGE_GAP_FRAMES:
            if current.type is VelocityPhaseType.FLEXION:
                peak = min(current.peak_velocity, nxt.peak_velocity)
            else:
                peak = max(current.peak_velocity, nxt.peak_velocity)
            current = replace(
                current,
                end_frame=nxt.end_frame,
                end_time_seconds=nxt.end_time_seconds,
                average_velocity=(current.average_velocity + nxt.average_velocity) / 2.0,
                peak_velocity=peak,
                end_angle=nxt.end_angle,
                angle_change=nxt.end_angle - current.start_angle,
            )
        else:
            merged.append(current)
            current = nxt
    merged.append(current)
    return merged


def compute_peak_velocities(
    joint_angles: Mapping[str, Sequence[float]], angular_velocities: Mapping[str, Sequence[float]]
) -> Dict[str, PeakVelocityInfo]:
    peaks: Dict[str, PeakVelocityInfo] = {}
    for joint, angles in joint_angles.items():
        velocities = angular_velocities.get(joint)
        if not velocities:
            continue
        arr = np.asarray(velocities, dtype=float)
        peaks[joint] = PeakVelocityInfo(
            joint=joint,
            peak_flexion_velocity=float(np.min(arr)),
            peak_extension_velocity=float(np.max(arr)),
            peak_flexion_frame=int(np.argmin(arr)),
            peak_extension_frame=int(np.argmax(arr)),
            range_of_motion=float(np.max(angles) - np.min(angles)) if len(angles) else 0.0,
        )
    return peaks


def detect_angular_phases(frames: Sequence[Any], config: Optional[AngularPhaseConfig] = None) -> AngularPhaseResult:
    """Detect hold/flexion/extension/transition phases of `config.primary_joint`."""
    config = config or AngularPhaseConfig()
    pose_frames = parse_frame_sequence(list(frames), frame_rate=config.frame_rate)
    if not pose_frames:
        logger.warning("No frames provided; returning an empty angular phase result.")
        return _empty_result(config)
    usable = sum(1 for frame in pose_frames if len(frame))
    if usable == 0:
        logger.warning("None of the %s frames has usable landmarks.", len(pose_frames))
        return _empty_result(config)

    joint_angles = {
        joint: calculate_angle_sequence(pose_frames, joint, use_2d=config.use_2d) for joint in JOINT_GROUPS["all"]
    }
    raw_velocities = {
        joint: compute_angular_velocities(angles, config.frame_rate) for joint, angles in joint_angles.items()
    }
    primary_angles = joint_angles[config.primary_joint]
    primary_velocity = raw_velocities[config.primary_joint]
    if not primary_velocity:
        logger.warning("Not enough frames to differentiate %s angles.", config.primary_joint)
        return _empty_result(config)

    smoothed = smooth_moving_average(primary_velocity, config.smoothing_window)
    raw_phases = segment_by_velocity(smoothed, primary_angles, config)
    kept = [phase for phase in raw_phases if phase.duration_frames >= config.min_phase_frames]
    if not kept and raw_phases:
        logger.debug("All phases shorter than %s frames; keeping raw phases.", config.min_phase_frames)
        kept = [phase for phase in raw_phases if phase.duration_frames >= 1][:MAX_FALLBACK_PHASES]
    phases = merge_adjacent_phases(kept)
    logger.debug(
        "Angular phases for %s: raw=%s kept=%s final=%s",
        config.primary_joint,
        len(raw_phases),
        len(kept),
        len(phases),
    )

    return AngularPhaseResult(
        phases=tuple(phases),
        joint_angles=joint_angles,
        angular_velocities={
            joint: smooth_moving_average(velocities, config.smoothing_window)
            for joint, velocities in raw_velocities.items()
        },
        peak_velocities=compute_peak_velocities(joint_angles, raw_velocities),
        primary_joint=config.primary_joint,
        total_frames=len(pose_frames),
        frame_rate=config.frame_rate,
    )


_EXERCISE_LABELS: Mapping[str, Mapping[VelocityPhaseType, str]] = {
    "squat": {
        VelocityPhaseType.FLEXION: "Descent",
        VelocityPhaseType.EXTENSION: "Ascent",
        VelocityPhaseType.TRANSITION: "Transition",
    },
    "lunge": {
        VelocityPhaseType.HOLD: "Hold",
        VelocityPhaseType.FLEXION: "Lower",
        VelocityPhaseType.EXTENSION: "Push Up",
        VelocityPhaseType.TRANSITION: "Transition",
    },
}
_EXERCISE_ALIASES = {"bodyweight_squat": "squat"}
# Knee angle below which a squat hold counts as the bottom position.
SQUAT_BOTTOM_ANGLE = 120.0


def suggest_phase_names(phases: Sequence[DetectedVelocityPhase], exercise_type: str) -> List[str]:
    """Exercise-specific labels for angular phases, generic "<Type> <n>" otherwise."""
    key = exercise_type.strip().lower()
    key = _EXERCISE_ALIASES.get(key, key)
    labels = _EXERCISE_LABELS.get(key)
    if labels is None:
        return [f"{phase.type.display_name} {index + 1}" for index, phase in enumerate(phases)]
    names = []
    for phase in phases:
        if key == "squat" and phase.type is VelocityPhaseType.HOLD:
            names.append("Bottom Hold" if phase.end_angle < SQUAT_BOTTOM_ANGLE else "Standing")
        else:
            names.append(labels[phase.type])
    return names


__all__ = [
    "VelocityPhaseType",
    "DetectedVelocityPhase",
    "PeakVelocityInfo",
    "AngularPhaseResult",
    "classify_velocity",
    "segment_by_velocity",
    "merge_adjacent_phases",
    "compute_peak_velocities",
    "detect_angular_phases",
    "suggest_phase_names",
]
