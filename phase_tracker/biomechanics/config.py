"""Configuration for movement-phase detection and joint-angle analysis.

Settings include:
- POSE_LANDMARKS: MediaPipe-style landmark indices (33 slots) by name.
- JOINT_TRIPLETS / JOINT_GROUPS: landmark triplets used for joint angles.
- MIN_VISIBILITY_THRESHOLD: minimum landmark visibility to trust a point.
- PhaseDetectionConfig: thresholds for the position-velocity phase detector.
- AngularPhaseConfig: thresholds for the angular-velocity phase detector.

Config objects are immutable and passed explicitly to every detection call.
Defaults can be overridden through environment variables or a TOML/JSON file.
"""

from __future__ import annotations

import json
import logging
import os
import warnings
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple

from phase_tracker.env import get_env, get_env_bool, get_env_float, get_env_int, parse_bool
from phase_tracker.models import NUM_LANDMARKS, ValidationError

try:  # Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - Python <3.11
    import tomli as tomllib  # type: ignore[no-redef]


def _configure_logger() -> logging.Logger:
    logger = logging.getLogger("phase_tracker.biomechanics")
    level_name = get_env("LOG_LEVEL") or os.getenv("LOG_LEVEL")
    if level_name:
        level = getattr(logging, level_name.upper(), logging.INFO)
        logger.setLevel(level)
    return logger


BIOMECHANICS_LOGGER = _configure_logger()
logger = BIOMECHANICS_LOGGER

MIN_VISIBILITY_THRESHOLD = 0.5

# https://developers.google.com/mediapipe/solutions/vision/pose_landmarker
POSE_LANDMARKS: Mapping[str, int] = MappingProxyType(
    {
        "NOSE": 0,
        "LEFT_EYE_INNER": 1,
        "LEFT_EYE": 2,
        "LEFT_EYE_OUTER": 3,
        "RIGHT_EYE_INNER": 4,
        "RIGHT_EYE": 5,
        "RIGHT_EYE_OUTER": 6,
        "LEFT_EAR": 7,
        "RIGHT_EAR": 8,
        "MOUTH_LEFT": 9,
        "MOUTH_RIGHT": 10,
        "LEFT_SHOULDER": 11,
        "RIGHT_SHOULDER": 12,
        "LEFT_ELBOW": 13,
        "RIGHT_ELBOW": 14,
        "LEFT_WRIST": 15,
        "RIGHT_WRIST": 16,
        "LEFT_PINKY": 17,
        "RIGHT_PINKY": 18,
        "LEFT_INDEX": 19,
        "RIGHT_INDEX": 20,
        "LEFT_THUMB": 21,
        "RIGHT_THUMB": 22,
        "LEFT_HIP": 23,
        "RIGHT_HIP": 24,
        "LEFT_KNEE": 25,
        "RIGHT_KNEE": 26,
        "LEFT_ANKLE": 27,
        "RIGHT_ANKLE": 28,
        "LEFT_HEEL": 29,
        "RIGHT_HEEL": 30,
        "LEFT_FOOT_INDEX": 31,
        "RIGHT_FOOT_INDEX": 32,
    }
)

_LM = POSE_LANDMARKS

# (point_a, vertex, point_c): the angle is measured at the vertex.
JOINT_TRIPLETS: Mapping[str, Tuple[int, int, int]] = MappingProxyType(
    {
        "LEFT_KNEE": (_LM["LEFT_HIP"], _LM["LEFT_KNEE"], _LM["LEFT_ANKLE"]),
        "RIGHT_KNEE": (_LM["RIGHT_HIP"], _LM["RIGHT_KNEE"], _LM["RIGHT_ANKLE"]),
        "LEFT_HIP": (_LM["LEFT_SHOULDER"], _LM["LEFT_HIP"], _LM["LEFT_KNEE"]),
        "RIGHT_HIP": (_LM["RIGHT_SHOULDER"], _LM["RIGHT_HIP"], _LM["RIGHT_KNEE"]),
        "LEFT_SHOULDER": (_LM["LEFT_HIP"], _LM["LEFT_SHOULDER"], _LM["LEFT_ELBOW"]),
        "RIGHT_SHOULDER": (_LM["RIGHT_HIP"], _LM["RIGHT_SHOULDER"], _LM["RIGHT_ELBOW"]),
        "LEFT_ELBOW": (_LM["LEFT_SHOULDER"], _LM["LEFT_ELBOW"], _LM["LEFT_WRIST"]),
        "RIGHT_ELBOW": (_LM["RIGHT_SHOULDER"], _LM["RIGHT_ELBOW"], _LM["RIGHT_WRIST"]),
        "LEFT_ANKLE": (_LM["LEFT_KNEE"], _LM["LEFT_ANKLE"], _LM["LEFT_FOOT_INDEX"]),
        "RIGHT_ANKLE": (_LM["RIGHT_KNEE"], _LM["RIGHT_ANKLE"], _LM["RIGHT_FOOT_INDEX"]),
    }
)

JOINT_DISPLAY_NAMES: Mapping[str, str] = MappingProxyType(
    {name: name.replace("_", " ").title() for name in JOINT_TRIPLETS}
)

JOINT_GROUPS: Mapping[str, Tuple[str, ...]] = MappingProxyType(
    {
        "lower_body": ("LEFT_KNEE", "RIGHT_KNEE", "LEFT_HIP", "RIGHT_HIP", "LEFT_ANKLE", "RIGHT_ANKLE"),
        "upper_body": ("LEFT_SHOULDER", "RIGHT_SHOULDER", "LEFT_ELBOW", "RIGHT_ELBOW"),
        "primary": ("RIGHT_KNEE", "LEFT_KNEE", "RIGHT_HIP", "LEFT_HIP"),
        "all": tuple(JOINT_TRIPLETS),
    }
)

# Higher weight = more influence on the aggregate velocity.
DEFAULT_PRIMARY_JOINT_WEIGHTS: Mapping[int, float] = MappingProxyType(
    {
        _LM["LEFT_SHOULDER"]: 1.0,
        _LM["RIGHT_SHOULDER"]: 1.0,
        _LM["LEFT_ELBOW"]: 0.8,
        _LM["RIGHT_ELBOW"]: 0.8,
        _LM["LEFT_WRIST"]: 1.2,
        _LM["RIGHT_WRIST"]: 1.2,
        _LM["LEFT_HIP"]: 1.0,
        _LM["RIGHT_HIP"]: 1.0,
        _LM["LEFT_KNEE"]: 0.8,
        _LM["RIGHT_KNEE"]: 0.8,
        _LM["LEFT_ANKLE"]: 0.6,
        _LM["RIGHT_ANKLE"]: 0.6,
    }
)


class ConfigurationError(ValidationError):
    """Raised when detection parameters would produce meaningless output."""


@dataclass(frozen=True)
class PhaseNamingPolicy:
    """Labels assigned to detected phases.

    The eccentric/concentric alternation is a heuristic about exercise
    structure; callers analysing other movements can swap the labels.
    """

    first_label: str = "Preparation"
    last_label: str = "Return"
    hold_label: str = "Hold"
    fast_labels: Tuple[str, str] = ("Eccentric", "Concentric")
    fast_velocity_ratio: float = 0.7
    fallback_labels: Tuple[str, ...] = (
        "Preparation",
        "Eccentric",
        "Transition",
        "Concentric",
        "Hold",
        "Return",
        "Recovery",
    )
    generic_template: str = "Phase {number}"

    def generic(self, index: int) -> str:
        return self.generic_template.format(number=index + 1)

    def fallback(self, index: int) -> str:
        if 0 <= index < len(self.fallback_labels):
            return self.fallback_labels[index]
        return self.generic(index)


def _freeze_weights(weights: Mapping[Any, Any]) -> Mapping[int, float]:
    frozen: Dict[int, float] = {}
    for key, value in weights.items():
        index = resolve_landmark_index(key)
        try:
            weight = float(value)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Weight for joint {key!r} must be numeric; received {value!r}.") from exc
        if weight < 0:
            raise ConfigurationError(f"Weight for joint {key!r} must be non-negative; received {weight}.")
        frozen[index] = weight
    return MappingProxyType(frozen)


def resolve_landmark_index(key: Any) -> int:
    """Map a landmark name (e.g. "left_wrist") or index to its slot number."""
    if isinstance(key, bool):
        raise ConfigurationError(f"Invalid landmark reference {key!r}.")
    if isinstance(key, int):
        index = key
    elif isinstance(key, str):
        text = key.strip()
        if text.lstrip("-").isdigit():
            index = int(text)
        elif text.upper() in POSE_LANDMARKS:
            index = POSE_LANDMARKS[text.upper()]
        else:
            raise ConfigurationError(f"Unknown landmark name {key!r}.")
    else:
        raise ConfigurationError(f"Invalid landmark reference {key!r}.")
    if not 0 <= index < NUM_LANDMARKS:
        raise ConfigurationError(f"Landmark index {index} is outside 0..{NUM_LANDMARKS - 1}.")
    return index


@dataclass(frozen=True)
class PhaseDetectionConfig:
    """Tunable parameters for velocity-based phase detection."""

    velocity_threshold: float = 0.015
    min_phase_frames: int = 10
    smoothing_window: int = 5
    min_phase_separation: int = 5
    merge_short_phases: bool = True
    primary_joint_weights: Mapping[int, float] = field(
        default_factory=lambda: DEFAULT_PRIMARY_JOINT_WEIGHTS, hash=False
    )
    naming: PhaseNamingPolicy = field(default_factory=PhaseNamingPolicy)

    def __post_init__(self) -> None:
        if self.smoothing_window < 1:
            raise ConfigurationError(f"smoothing_window must be >= 1; received {self.smoothing_window}.")
        if self.min_phase_frames < 1:
            raise ConfigurationError(f"min_phase_frames must be >= 1; received {self.min_phase_frames}.")
        if self.min_phase_separation < 0:
            raise ConfigurationError(f"min_phase_separation must be >= 0; received {self.min_phase_separation}.")
        if self.velocity_threshold < 0:
            raise ConfigurationError(f"velocity_threshold must be >= 0; received {self.velocity_threshold}.")
        object.__setattr__(self, "primary_joint_weights", _freeze_weights(self.primary_joint_weights))

    def with_overrides(self, **overrides: Any) -> "PhaseDetectionConfig":
        """Return a copy with the given non-None fields replaced."""
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes)


@dataclass(frozen=True)
class AngularPhaseConfig:
    """Tunable parameters for angular-velocity phase detection (degrees/second)."""

    hold_velocity_threshold: float = 15.0
    rapid_velocity_threshold: float = 40.0
    min_phase_duration_seconds: float = 0.05
    primary_joint: str = "RIGHT_KNEE"
    frame_rate: float = 30.0
    use_2d: bool = True
    smoothing_window: int = 5

    def __post_init__(self) -> None:
        joint = str(self.primary_joint).strip().upper()
        if joint not in JOINT_TRIPLETS:
            raise ConfigurationError(
                f"primary_joint must be one of {', '.join(JOINT_TRIPLETS)}; received {self.primary_joint!r}."
            )
        object.__setattr__(self, "primary_joint", joint)
        if self.frame_rate <= 0:
            raise ConfigurationError(f"frame_rate must be positive; received {self.frame_rate}.")
        if self.smoothing_window < 1:
            raise ConfigurationError(f"smoothing_window must be >= 1; received {self.smoothing_window}.")
        if self.hold_velocity_threshold < 0:
            raise ConfigurationError(
                f"hold_velocity_threshold must be >= 0; received {self.hold_velocity_threshold}."
            )
        if self.rapid_velocity_threshold < self.hold_velocity_threshold:
            raise ConfigurationError("rapid_velocity_threshold must not be below hold_velocity_threshold.")
        if self.min_phase_duration_seconds < 0:
            raise ConfigurationError(
                f"min_phase_duration_seconds must be >= 0; received {self.min_phase_duration_seconds}."
            )

    @property
    def min_phase_frames(self) -> int:
        return max(1, int(self.min_phase_duration_seconds * self.frame_rate))

    def with_overrides(self, **overrides: Any) -> "AngularPhaseConfig":
        changes = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **changes)


@dataclass(frozen=True)
class TrackerConfig:
    phase_detection: PhaseDetectionConfig = field(default_factory=PhaseDetectionConfig)
    angular_phases: AngularPhaseConfig = field(default_factory=AngularPhaseConfig)
    source: Optional[Path] = None


_PHASE_SCALARS = (
    "velocity_threshold",
    "min_phase_frames",
    "smoothing_window",
    "min_phase_separation",
    "merge_short_phases",
)


def _as_int(value: Any, key: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{key} must be an integer; received {value!r}.")
    if isinstance(value, float):
        if not value.is_integer():
            raise ConfigurationError(f"{key} must be a whole number; received {value!r}.")
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{key} must be an integer; received {value!r}.") from exc


def _as_bool(value: Any, key: str) -> bool:
    if isinstance(value, bool):
        return value
    parsed = parse_bool(value) if isinstance(value, str) else None
    if parsed is None:
        raise ConfigurationError(f"{key} must be true or false; received {value!r}.")
    return parsed


def _phase_values_from_env(base: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "velocity_threshold": get_env_float("VELOCITY_THRESHOLD", float(base["velocity_threshold"])),
        "min_phase_frames": get_env_int("MIN_PHASE_FRAMES", _as_int(base["min_phase_frames"], "min_phase_frames")),
        "smoothing_window": get_env_int("SMOOTHING_WINDOW", _as_int(base["smoothing_window"], "smoothing_window")),
        "min_phase_separation": get_env_int(
            "MIN_PHASE_SEPARATION", _as_int(base["min_phase_separation"], "min_phase_separation")
        ),
        "merge_short_phases": get_env_bool(
            "MERGE_SHORT_PHASES", _as_bool(base["merge_short_phases"], "merge_short_phases")
        ),
    }


def _angular_values_from_env(base: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        "hold_velocity_threshold": get_env_float("HOLD_VELOCITY_THRESHOLD", float(base["hold_velocity_threshold"])),
        "rapid_velocity_threshold": get_env_float(
            "RAPID_VELOCITY_THRESHOLD", float(base["rapid_velocity_threshold"])
        ),
        "min_phase_duration_seconds": get_env_float(
            "MIN_PHASE_DURATION_SECONDS", float(base["min_phase_duration_seconds"])
        ),
        "primary_joint": get_env("PRIMARY_JOINT", str(base["primary_joint"])),
        "frame_rate": get_env_float("FRAME_RATE", float(base["frame_rate"])),
        "use_2d": get_env_bool("USE_2D_ANGLES", _as_bool(base["use_2d"], "use_2d")),
        "smoothing_window": get_env_int(
            "ANGULAR_SMOOTHING_WINDOW", _as_int(base["smoothing_window"], "smoothing_window")
        ),
    }


def _scalar_defaults(cls: type) -> Dict[str, Any]:
    instance = cls()
    return {f.name: getattr(instance, f.name) for f in fields(cls)}


def config_from_env(base: Optional[PhaseDetectionConfig] = None) -> PhaseDetectionConfig:
    """Apply `PHASE_TRACKER_*` environment overrides to `base` (or the defaults)."""
    base = base or PhaseDetectionConfig()
    values = _phase_values_from_env({f.name: getattr(base, f.name) for f in fields(base)})
    return replace(base, **values)


def angular_config_from_env(base: Optional[AngularPhaseConfig] = None) -> AngularPhaseConfig:
    base = base or AngularPhaseConfig()
    values = _angular_values_from_env({f.name: getattr(base, f.name) for f in fields(base)})
    return replace(base, **values)


def _load_toml_file(path: Path) -> Dict[str, Any]:
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _section(body: Mapping[str, Any], name: str) -> Dict[str, Any]:
    value = body.get(name, {})
    return dict(value) if isinstance(value, Mapping) else {}


def _naming_from_mapping(raw: Mapping[str, Any]) -> PhaseNamingPolicy:
    base = PhaseNamingPolicy()
    if not raw:
        return base
    kwargs: Dict[str, Any] = {}
    for key in ("first_label", "last_label", "hold_label", "generic_template"):
        if key in raw:
            kwargs[key] = str(raw[key])
    if "fast_velocity_ratio" in raw:
        kwargs["fast_velocity_ratio"] = float(raw["fast_velocity_ratio"])
    if "fast_labels" in raw:
        labels = [str(label) for label in raw["fast_labels"]]
        if len(labels) != 2:
            raise ConfigurationError("naming.fast_labels must contain exactly two labels.")
        kwargs["fast_labels"] = (labels[0], labels[1])
    if "fallback_labels" in raw:
        kwargs["fallback_labels"] = tuple(str(label) for label in raw["fallback_labels"])
    return replace(base, **kwargs)


def load_config_from_file(config_path: Path) -> TrackerConfig:
    """Load detection config from TOML or JSON and apply env var overrides.

    Env vars take precedence over file values. Supports either a root-level
    mapping or `[phase_detection]` / `[angular_phases]` tables.
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config not found: {path}")
    if not path.is_file():
        raise ValueError(f"Expected a config file, but got a directory: {path}")

    suffix = path.suffix.lower()
    if suffix == ".toml":
        raw_config = _load_toml_file(path)
    elif suffix == ".json":
        with path.open("r", encoding="utf-8") as handle:
            raw_config = json.load(handle)
    else:
        raise ValueError(f"Unsupported config format for {path}; expected .toml or .json.")

    if not isinstance(raw_config, dict):
        raise ValueError("Invalid config structure; expected a mapping at the top level.")

    phase_body = _section(raw_config, "phase_detection") if "phase_detection" in raw_config else dict(raw_config)
    angular_body = _section(raw_config, "angular_phases")

    phase_defaults = _scalar_defaults(PhaseDetectionConfig)
    phase_base = {key: phase_body.get(key, phase_defaults[key]) for key in _PHASE_SCALARS}
    weights_raw = phase_body.get("joint_weights", phase_body.get("primary_joint_weights"))
    weights = weights_raw if isinstance(weights_raw, Mapping) else DEFAULT_PRIMARY_JOINT_WEIGHTS
    try:
        phase_config = PhaseDetectionConfig(
            primary_joint_weights=weights,
            naming=_naming_from_mapping(_section(phase_body, "naming")),
            **_phase_values_from_env(phase_base),
        )
        angular_defaults = _scalar_defaults(AngularPhaseConfig)
        angular_base = {key: angular_body.get(key, default) for key, default in angular_defaults.items()}
        angular_config = AngularPhaseConfig(**_angular_values_from_env(angular_base))
    except (TypeError, ValueError) as exc:
        if isinstance(exc, ConfigurationError):
            raise
        raise ConfigurationError(f"Invalid value in {path}: {exc}") from exc

    return TrackerConfig(phase_detection=phase_config, angular_phases=angular_config, source=path)


def validate_config_values(config: PhaseDetectionConfig) -> None:
    """Emit warnings for legal but suspicious detection settings."""
    checks = []
    if config.smoothing_window % 2 == 0:
        checks.append(
            f"smoothing_window={config.smoothing_window} is even; the centred window spans "
            f"{2 * (config.smoothing_window // 2) + 1} frames."
        )
    if config.velocity_threshold > 1.0:
        checks.append(
            f"velocity_threshold={config.velocity_threshold} exceeds the normalised coordinate range; "
            "every frame will look stationary."
        )
    if config.min_phase_separation > config.min_phase_frames:
        checks.append(
            f"min_phase_separation={config.min_phase_separation} is larger than "
            f"min_phase_frames={config.min_phase_frames}; short phases can never be detected."
        )
    if not config.primary_joint_weights or not any(config.primary_joint_weights.values()):
        checks.append("primary_joint_weights has no positive weight; the velocity profile will be flat.")
    for message in checks:
        warnings.warn(message, RuntimeWarning, stacklevel=2)
        logger.warning(message)


def print_config(config: Optional[TrackerConfig] = None) -> None:
    """Print configuration values for debugging purposes."""
    config = config or TrackerConfig()
    phase = config.phase_detection
    angular = config.angular_phases
    names = {index: name for name, index in POSE_LANDMARKS.items()}
    print("Movement phase detection configuration:")
    print(f"  Source: {config.source or 'defaults'}")
    print(f"  Velocity threshold: {phase.velocity_threshold}")
    print(f"  Min phase frames: {phase.min_phase_frames}")
    print(f"  Smoothing window: {phase.smoothing_window}")
    print(f"  Min phase separation: {phase.min_phase_separation}")
    print(f"  Merge short phases: {phase.merge_short_phases}")
    weights = ", ".join(f"{names.get(idx, idx)}={w}" for idx, w in sorted(phase.primary_joint_weights.items()))
    print(f"  Joint weights: {weights}")
    print(
        "  Angular thresholds (hold, rapid deg/s): "
        f"{angular.hold_velocity_threshold}, {angular.rapid_velocity_threshold}"
    )
    print(f"  Angular primary joint: {angular.primary_joint} @ {angular.frame_rate} fps (2D={angular.use_2d})")


__all__ = [
    "BIOMECHANICS_LOGGER",
    "MIN_VISIBILITY_THRESHOLD",
    "POSE_LANDMARKS",
    "JOINT_TRIPLETS",
    "JOINT_DISPLAY_NAMES",
    "JOINT_GROUPS",
    "DEFAULT_PRIMARY_JOINT_WEIGHTS",
    "ConfigurationError",
    "PhaseNamingPolicy",
    "PhaseDetectionConfig",
    "AngularPhaseConfig",
    "TrackerConfig",
    "resolve_landmark_index",
    "config_from_env",
    "angular_config_from_env",
    "load_config_from_file",
    "validate_config_values",
    "print_config",
]
