"""Detect movement phases (preparation, eccentric, hold, concentric, ...) from pose sequences.

Pipeline:
1. Weighted joint-velocity profile between consecutive frames.
2. Centred moving-average smoothing.
3. Local minima below the velocity threshold, spaced by a minimum separation.
4. Phase boundaries between minima, dropping spans that are too short.
5. Optional merge of short boundaries into their successor.
6. Names and confidence scores from duration and velocity contrast.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd

from phase_tracker.biomechanics.config import BIOMECHANICS_LOGGER as logger
from phase_tracker.biomechanics.config import PhaseDetectionConfig
from phase_tracker.biomechanics.metrics.kinematics import (
    calculate_velocity_profile,
    find_local_minima,
    smooth_moving_average,
    velocity_statistics,
)
from phase_tracker.models import DetectedPhase, PoseFrame, parse_frame_sequence

SHORT_SEQUENCE_CONFIDENCE = 0.5
MIN_CONFIDENCE = 0.3
MAX_CONFIDENCE = 0.95
# Phases this long (in frames) get the full duration score.
FULL_DURATION_FRAMES = 60.0

Boundary = Tuple[int, int]


@dataclass(frozen=True)
class PhaseDetectionResult:
    phases: Tuple[DetectedPhase, ...]
    velocity_profile: Tuple[float, ...] = ()
    smoothed_velocity: Tuple[float, ...] = ()
    local_minima: Tuple[int, ...] = ()
    total_frames: int = 0
    average_velocity: float = 0.0
    max_velocity: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phases": [phase.to_dict() for phase in self.phases],
            "velocity_profile": list(self.velocity_profile),
            "smoothed_velocity": list(self.smoothed_velocity),
            "local_minima": list(self.local_minima),
            "total_frames": self.total_frames,
            "average_velocity": self.average_velocity,
            "max_velocity": self.max_velocity,
        }


@dataclass(frozen=True)
class PhaseVelocityAnalysis:
    average_velocity: float
    max_velocity: float
    min_velocity: float
    velocity_variance: float
    is_stationary: bool
    frame_count: int = field(default=0, compare=False)


def _short_sequence_result(total_frames: int, config: PhaseDetectionConfig) -> PhaseDetectionResult:
    phases: Tuple[DetectedPhase, ...] = ()
    if total_frames > 0:
        phases = (
            DetectedPhase(
                name=config.naming.generic(0),
                start_frame=0,
                end_frame=total_frames - 1,
                confidence=SHORT_SEQUENCE_CONFIDENCE,
            ),
        )
    return PhaseDetectionResult(phases=phases, total_frames=total_frames)


def detect_phases(frames: Sequence[Any], config: Optional[PhaseDetectionConfig] = None) -> PhaseDetectionResult:
    """Segment a pose sequence into named phases.

    Args:
        frames: time-ordered frames (`PoseFrame`, landmark rows, JSON strings or
            mappings with a `landmarks` entry). Corrupt frames count as frames
            without landmarks.
        config: detection parameters (defaults when omitted).

    Returns:
        PhaseDetectionResult with phases plus the diagnostic signals.
    """
    config = config or PhaseDetectionConfig()
    frames = list(frames)
    total_frames = len(frames)

    if total_frames < config.min_phase_frames * 2:
        logger.info(
            "Only %s frames (< %s); returning a single whole-sequence phase.",
            total_frames,
            config.min_phase_frames * 2,
        )
        return _short_sequence_result(total_frames, config)

    pose_frames = parse_frame_sequence(frames)
    velocity_profile = calculate_velocity_profile(pose_frames, config.primary_joint_weights)
    smoothed = smooth_moving_average(velocity_profile, config.smoothing_window)
    minima = find_local_minima(smoothed, config.velocity_threshold, config.min_phase_separation)
    boundaries = create_phase_boundaries(minima, total_frames, config)
    phases = generate_phases(boundaries, smoothed, config)
    logger.debug(
        "Phase detection: frames=%s minima=%s boundaries=%s phases=%s",
        total_frames,
        len(minima),
        len(boundaries),
        [phase.name for phase in phases],
    )

    return PhaseDetectionResult(
        phases=tuple(phases),
        velocity_profile=tuple(velocity_profile),
        smoothed_velocity=tuple(smoothed),
        local_minima=tuple(minima),
        total_frames=total_frames,
        average_velocity=float(np.mean(velocity_profile)) if velocity_profile else 0.0,
        max_velocity=float(np.max(velocity_profile)) if velocity_profile else 0.0,
    )


def create_phase_boundaries(
    local_minima: Sequence[int], total_frames: int, config: PhaseDetectionConfig
) -> List[Boundary]:
    """Turn velocity minima into inclusive `(start, end)` frame ranges."""
    whole = [(0, total_frames - 1)]
    if not local_minima:
        return whole

    min_frames = config.min_phase_frames
    boundaries: List[Boundary] = []
    first, last = local_minima[0], local_minima[-1]
    if first > min_frames:
        boundaries.append((0, first))
    for start, end in zip(local_minima, local_minima[1:]):
        if end - start >= min_frames:
            boundaries.append((start, end))
    if total_frames - last > min_frames:
        boundaries.append((last, total_frames - 1))

    if not boundaries:
        boundaries = whole
    if config.merge_short_phases:
        return merge_short_phases(boundaries, min_frames)
    return boundaries


def merge_short_phases(boundaries: Sequence[Boundary], min_frames: int) -> List[Boundary]:
    """Fold each boundary shorter than `min_frames` into the one that follows.

    Spans keep accumulating until they are long enough, so no frames are
    dropped; only the final run may remain short.
    """
    if len(boundaries) <= 1:
        return list(boundaries)
    merged: List[Boundary] = []
    current = boundaries[0]
    for nxt in boundaries[1:]:
        if current[1] - current[0] < min_frames:
            current = (current[0], nxt[1])
        else:
            merged.append(current)
            current = nxt
    merged.append(current)
    return merged


def phase_confidence(start: int, end: int, mean_velocity: float, max_velocity: float) -> float:
    """Score a phase from its length and how far its velocity sits below the peak."""
    duration_score = min(1.0, (end - start) / FULL_DURATION_FRAMES)
    velocity_score = 1.0 - mean_velocity / max_velocity if max_velocity > 0 else 0.5
    return float(np.clip(duration_score * 0.4 + velocity_score * 0.6, MIN_CONFIDENCE, MAX_CONFIDENCE))


def name_phase(
    index: int, count: int, mean_velocity: float, max_velocity: float, config: PhaseDetectionConfig
) -> str:
    naming = config.naming
    if index == 0:
        return naming.first_label
    if index == count - 1:
        return naming.last_label
    if mean_velocity < config.velocity_threshold:
        return naming.hold_label
    if mean_velocity > max_velocity * naming.fast_velocity_ratio:
        return naming.fast_labels[index % 2]
    return naming.fallback(index)


def generate_phases(
    boundaries: Sequence[Boundary], smoothed_velocity: Sequence[float], config: PhaseDetectionConfig
) -> List[DetectedPhase]:
    """Attach names and confidence scores to the final boundaries."""
    max_velocity = float(max(smoothed_velocity)) if smoothed_velocity else 1.0
    phases: List[DetectedPhase] = []
    for index, (start, end) in enumerate(boundaries):
        window = smoothed_velocity[start : end + 1] if end < len(smoothed_velocity) else []
        mean_velocity = float(np.mean(window)) if len(window) else 0.0
        phases.append(
            DetectedPhase(
                name=name_phase(index, len(boundaries), mean_velocity, max_velocity, config),
                start_frame=int(start),
                end_frame=int(end),
                confidence=phase_confidence(start, end, mean_velocity, max_velocity),
            )
        )
    return phases


def analyze_phase_velocity(
    frames: Sequence[Any],
    start_frame: int,
    end_frame: int,
    config: Optional[PhaseDetectionConfig] = None,
) -> PhaseVelocityAnalysis:
    """Velocity characteristics of the frames whose index lies in [start_frame, end_frame]."""
    config = config or PhaseDetectionConfig()
    pose_frames: List[PoseFrame] = parse_frame_sequence(frames)
    selected = [frame for frame in pose_frames if start_frame <= frame.frame_index <= end_frame]
    velocities = calculate_velocity_profile(selected, config.primary_joint_weights)
    stats = velocity_statistics(velocities, config.velocity_threshold)
    return PhaseVelocityAnalysis(
        average_velocity=stats["average"],
        max_velocity=stats["max"],
        min_velocity=stats["min"],
        velocity_variance=stats["variance"],
        is_stationary=stats["is_stationary"],
        frame_count=len(selected),
    )


def phase_result_to_dataframe(result: PhaseDetectionResult) -> pd.DataFrame:
    """Per-frame diagnostics: frame, velocity, smoothed_velocity, is_local_minimum, phase."""
    columns = ["frame", "velocity", "smoothed_velocity", "is_local_minimum", "phase"]
    n_frames = result.total_frames
    if n_frames == 0:
        return pd.DataFrame(columns=columns)

    velocity = np.full(n_frames, np.nan, dtype=float)
    smoothed = np.full(n_frames, np.nan, dtype=float)
    velocity[: len(result.velocity_profile)] = result.velocity_profile
    smoothed[: len(result.smoothed_velocity)] = result.smoothed_velocity
    minima = set(result.local_minima)

    # Shared boundary frames belong to the phase that starts there.
    labels: List[Optional[str]] = [None] * n_frames
    for phase in result.phases:
        for frame in range(max(0, phase.start_frame), min(n_frames, phase.end_frame + 1)):
            labels[frame] = phase.name

    return pd.DataFrame(
        {
            "frame": np.arange(n_frames, dtype=int),
            "velocity": velocity,
            "smoothed_velocity": smoothed,
            "is_local_minimum": [frame in minima for frame in range(n_frames)],
            "phase": labels,
        },
        columns=columns,
    )


def plot_phase_velocities(
    result: PhaseDetectionResult,
    *,
    velocity_threshold: Optional[float] = None,
    title: str = "Movement phase detection",
) -> plt.Figure:
    """Plot raw and smoothed velocity with minima and shaded phases for tuning."""
    fig, ax = plt.subplots()
    frames = np.arange(len(result.velocity_profile))
    if len(frames):
        ax.plot(frames, result.velocity_profile, label="velocity", alpha=0.5)
        ax.plot(frames, result.smoothed_velocity, label="smoothed", linewidth=2)
    if result.local_minima:
        minima = list(result.local_minima)
        ax.scatter(minima, [result.smoothed_velocity[i] for i in minima], color="tab:red", zorder=3, label="minima")
    if velocity_threshold is not None:
        ax.axhline(velocity_threshold, color="tab:gray", linestyle="--", alpha=0.7, label="threshold")

    colors = ("tab:green", "tab:orange")
    for index, phase in enumerate(result.phases):
        ax.axvspan(phase.start_frame, phase.end_frame, color=colors[index % 2], alpha=0.12)
        ax.text(
            (phase.start_frame + phase.end_frame) / 2.0,
            0.98,
            phase.name,
            transform=ax.get_xaxis_transform(),
            ha="center",
            va="top",
            fontsize=8,
        )

    ax.set_xlabel("Frame")
    ax.set_ylabel("Velocity (normalised units/frame)")
    ax.set_title(title)
    if ax.get_legend_handles_labels()[0]:
        ax.legend(loc="upper right")
    ax.grid(True, alpha=0.3)
    return fig


__all__ = [
    "PhaseDetectionResult",
    "PhaseVelocityAnalysis",
    "detect_phases",
    "create_phase_boundaries",
    "merge_short_phases",
    "phase_confidence",
    "name_phase",
    "generate_phases",
    "analyze_phase_velocity",
    "phase_result_to_dataframe",
    "plot_phase_velocities",
]
