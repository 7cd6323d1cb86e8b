"""Metrics computation package for movement-phase analyses.

Angle and kinematics helpers only need numpy; phase detection also imports
pandas and matplotlib, so everything is resolved lazily on first access.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "detect_phases",
    "analyze_phase_velocity",
    "plot_phase_velocities",
    "phase_result_to_dataframe",
    "PhaseDetectionResult",
    "PhaseVelocityAnalysis",
    "detect_angular_phases",
    "suggest_phase_names",
    "AngularPhaseResult",
    "DetectedVelocityPhase",
    "VelocityPhaseType",
    "calculate_angle",
    "calculate_angle_2d",
    "get_joint_angle",
    "get_all_joint_angles",
    "get_average_joint_angle",
    "calculate_angle_sequence",
    "compute_angle_dataframe",
    "calculate_weighted_velocity",
    "calculate_velocity_profile",
    "smooth_moving_average",
    "find_local_minima",
    "compute_angular_velocities",
]

_PHASE_EXPORTS = {
    "detect_phases",
    "analyze_phase_velocity",
    "plot_phase_velocities",
    "phase_result_to_dataframe",
    "PhaseDetectionResult",
    "PhaseVelocityAnalysis",
}
_ANGULAR_EXPORTS = {
    "detect_angular_phases",
    "suggest_phase_names",
    "AngularPhaseResult",
    "DetectedVelocityPhase",
    "VelocityPhaseType",
}
_ANGLE_EXPORTS = {
    "calculate_angle",
    "calculate_angle_2d",
    "get_joint_angle",
    "get_all_joint_angles",
    "get_average_joint_angle",
    "calculate_angle_sequence",
    "compute_angle_dataframe",
}
_KINEMATICS_EXPORTS = {
    "calculate_weighted_velocity",
    "calculate_velocity_profile",
    "smooth_moving_average",
    "find_local_minima",
    "compute_angular_velocities",
}


def __getattr__(name: str) -> Any:  # pragma: no cover - exercised indirectly
    if name in _PHASE_EXPORTS:
        from . import phase_detection as _phase_detection

        return getattr(_phase_detection, name)
    if name in _ANGULAR_EXPORTS:
        from . import angular_phases as _angular_phases

        return getattr(_angular_phases, name)
    if name in _ANGLE_EXPORTS:
        from . import angles as _angles

        return getattr(_angles, name)
    if name in _KINEMATICS_EXPORTS:
        from . import kinematics as _kinematics

        return getattr(_kinematics, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:  # pragma: no cover - trivial
    return sorted(set(list(globals()) + __all__))
