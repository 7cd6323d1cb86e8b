"""Biomechanics utilities for movement-phase analysis.

Submodules are imported lazily so that `import phase_tracker.biomechanics`
does not pull in pandas/matplotlib until a metric is actually requested.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "detect_phases",
    "analyze_phase_velocity",
    "detect_angular_phases",
    "plot_phase_velocities",
    "PhaseDetectionResult",
    "AngularPhaseResult",
    "BIOMECHANICS_LOGGER",
    "ConfigurationError",
    "PhaseDetectionConfig",
    "AngularPhaseConfig",
    "PhaseNamingPolicy",
    "TrackerConfig",
    "JOINT_TRIPLETS",
    "JOINT_GROUPS",
    "POSE_LANDMARKS",
    "config_from_env",
    "load_config_from_file",
    "validate_config_values",
    "print_config",
]

_CONFIG_EXPORTS = {
    "BIOMECHANICS_LOGGER",
    "ConfigurationError",
    "PhaseDetectionConfig",
    "AngularPhaseConfig",
    "PhaseNamingPolicy",
    "TrackerConfig",
    "JOINT_TRIPLETS",
    "JOINT_GROUPS",
    "POSE_LANDMARKS",
    "config_from_env",
    "load_config_from_file",
    "validate_config_values",
    "print_config",
}

_METRICS_EXPORTS = {
    "detect_phases",
    "analyze_phase_velocity",
    "detect_angular_phases",
    "plot_phase_velocities",
    "PhaseDetectionResult",
    "AngularPhaseResult",
}


def __getattr__(name: str) -> Any:  # pragma: no cover - exercised indirectly
    if name in _CONFIG_EXPORTS:
        from . import config as _config

        return getattr(_config, name)
    if name in _METRICS_EXPORTS:
        from . import metrics as _metrics

        return getattr(_metrics, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def __dir__() -> list[str]:  # pragma: no cover - trivial
    return sorted(set(list(globals()) + __all__))
