from __future__ import annotations

import json
from pathlib import Path

import pytest

from phase_tracker.biomechanics.config import (
    DEFAULT_PRIMARY_JOINT_WEIGHTS,
    AngularPhaseConfig,
    ConfigurationError,
    PhaseDetectionConfig,
    PhaseNamingPolicy,
    TrackerConfig,
    angular_config_from_env,
    config_from_env,
    load_config_from_file,
    print_config,
    resolve_landmark_index,
    validate_config_values,
)
from phase_tracker.models import ValidationError


def test_defaults() -> None:
    config = PhaseDetectionConfig()
    assert config.velocity_threshold == 0.015
    assert config.min_phase_frames == 10
    assert config.smoothing_window == 5
    assert config.min_phase_separation == 5
    assert config.merge_short_phases is True
    assert dict(config.primary_joint_weights) == dict(DEFAULT_PRIMARY_JOINT_WEIGHTS)
    assert config.primary_joint_weights[15] == 1.2
    assert config.primary_joint_weights[27] == 0.6


def test_weights_are_read_only_and_accept_names() -> None:
    config = PhaseDetectionConfig(primary_joint_weights={"left_wrist": 2, 24: 1.0})
    assert dict(config.primary_joint_weights) == {15: 2.0, 24: 1.0}
    with pytest.raises(TypeError):
        config.primary_joint_weights[15] = 3.0  # type: ignore[index]


@pytest.mark.parametrize(
    "kwargs",
    [
        {"smoothing_window": 0},
        {"smoothing_window": -3},
        {"min_phase_frames": 0},
        {"min_phase_separation": -1},
        {"velocity_threshold": -0.1},
        {"primary_joint_weights": {15: -1.0}},
        {"primary_joint_weights": {40: 1.0}},
        {"primary_joint_weights": {"left_tail": 1.0}},
    ],
)
def test_invalid_phase_config_is_rejected(kwargs) -> None:
    with pytest.raises(ConfigurationError):
        PhaseDetectionConfig(**kwargs)


@pytest.mark.parametrize(
    "kwargs",
    [
        {"frame_rate": 0.0},
        {"smoothing_window": 0},
        {"hold_velocity_threshold": -1.0},
        {"hold_velocity_threshold": 50.0, "rapid_velocity_threshold": 40.0},
        {"min_phase_duration_seconds": -0.1},
        {"primary_joint": "LEFT_WRIST"},
    ],
)
def test_invalid_angular_config_is_rejected(kwargs) -> None:
    with pytest.raises(ConfigurationError):
        AngularPhaseConfig(**kwargs)


def test_configuration_error_is_a_validation_error() -> None:
    assert issubclass(ConfigurationError, ValidationError)
    assert issubclass(ConfigurationError, ValueError)


def test_angular_config_normalises_joint_and_min_frames() -> None:
    config = AngularPhaseConfig(primary_joint=" left_hip ", frame_rate=60.0, min_phase_duration_seconds=0.1)
    assert config.primary_joint == "LEFT_HIP"
    assert config.min_phase_frames == 6
    assert AngularPhaseConfig(frame_rate=10.0).min_phase_frames == 1


def test_with_overrides_ignores_none() -> None:
    config = PhaseDetectionConfig().with_overrides(min_phase_frames=4, smoothing_window=None)
    assert config.min_phase_frames == 4
    assert config.smoothing_window == 5
    with pytest.raises(ConfigurationError):
        PhaseDetectionConfig().with_overrides(smoothing_window=0)


def test_resolve_landmark_index() -> None:
    assert resolve_landmark_index("RIGHT_KNEE") == 26
    assert resolve_landmark_index("nose") == 0
    assert resolve_landmark_index("12") == 12
    with pytest.raises(ConfigurationError):
        resolve_landmark_index(33)
    with pytest.raises(ConfigurationError):
        resolve_landmark_index(True)


def test_naming_policy_fallbacks() -> None:
    naming = PhaseNamingPolicy()
    assert naming.fallback(0) == "Preparation"
    assert naming.fallback(6) == "Recovery"
    assert naming.fallback(7) == "Phase 8"
    assert PhaseNamingPolicy(generic_template="Segment {number}").generic(2) == "Segment 3"


def test_config_from_env(monkeypatch) -> None:
    monkeypatch.setenv("PHASE_TRACKER_VELOCITY_THRESHOLD", "0.03")
    monkeypatch.setenv("PHASE_TRACKER_MIN_PHASE_FRAMES", "8")
    monkeypatch.setenv("PHASE_TRACKER_MERGE_SHORT_PHASES", "no")
    monkeypatch.setenv("PHASE_TRACKER_SMOOTHING_WINDOW", "not-a-number")
    config = config_from_env()
    assert config.velocity_threshold == 0.03
    assert config.min_phase_frames == 8
    assert config.merge_short_phases is False
    assert config.smoothing_window == 5


def test_legacy_env_prefix_is_still_read(monkeypatch) -> None:
    monkeypatch.setenv("MOVEMENT_TRACKER_MIN_PHASE_SEPARATION", "3")
    assert config_from_env().min_phase_separation == 3
    monkeypatch.setenv("PHASE_TRACKER_MIN_PHASE_SEPARATION", "4")
    assert config_from_env().min_phase_separation == 4


def test_angular_config_from_env(monkeypatch) -> None:
    monkeypatch.setenv("PHASE_TRACKER_PRIMARY_JOINT", "left_knee")
    monkeypatch.setenv("PHASE_TRACKER_FRAME_RATE", "60")
    monkeypatch.setenv("PHASE_TRACKER_USE_2D_ANGLES", "false")
    config = angular_config_from_env()
    assert config.primary_joint == "LEFT_KNEE"
    assert config.frame_rate == 60.0
    assert config.use_2d is False


def test_invalid_env_value_raises(monkeypatch) -> None:
    monkeypatch.setenv("PHASE_TRACKER_SMOOTHING_WINDOW", "0")
    with pytest.raises(ConfigurationError):
        config_from_env()


def test_load_config_from_toml(tmp_path: Path) -> None:
    path = tmp_path / "phases.toml"
    path.write_text(
        """
[phase_detection]
velocity_threshold = 0.02
min_phase_frames = 6
merge_short_phases = false

[phase_detection.joint_weights]
left_wrist = 2.0
RIGHT_HIP = 0.5

[phase_detection.naming]
first_label = "Setup"
fast_labels = ["Lower", "Raise"]

[angular_phases]
primary_joint = "left_elbow"
hold_velocity_threshold = 10.0
""",
        encoding="utf-8",
    )
    config = load_config_from_file(path)
    phase = config.phase_detection
    assert config.source == path
    assert phase.velocity_threshold == 0.02
    assert phase.min_phase_frames == 6
    assert phase.smoothing_window == 5
    assert phase.merge_short_phases is False
    assert dict(phase.primary_joint_weights) == {15: 2.0, 24: 0.5}
    assert phase.naming.first_label == "Setup"
    assert phase.naming.fast_labels == ("Lower", "Raise")
    assert phase.naming.last_label == "Return"
    assert config.angular_phases.primary_joint == "LEFT_ELBOW"
    assert config.angular_phases.hold_velocity_threshold == 10.0


def test_load_config_from_json_root_mapping(tmp_path: Path) -> None:
    path = tmp_path / "phases.json"
    path.write_text(json.dumps({"smoothing_window": 7, "min_phase_separation": 2}), encoding="utf-8")
    config = load_config_from_file(path)
    assert config.phase_detection.smoothing_window == 7
    assert config.phase_detection.min_phase_separation == 2
    assert config.angular_phases == AngularPhaseConfig()


def test_env_takes_precedence_over_file(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "phases.toml"
    path.write_text("[phase_detection]\nmin_phase_frames = 6\n", encoding="utf-8")
    monkeypatch.setenv("PHASE_TRACKER_MIN_PHASE_FRAMES", "12")
    assert load_config_from_file(path).phase_detection.min_phase_frames == 12


def test_load_config_errors(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_config_from_file(tmp_path / "missing.toml")
    with pytest.raises(ValueError, match="directory"):
        load_config_from_file(tmp_path)

    yaml_path = tmp_path / "phases.yaml"
    yaml_path.write_text("velocity_threshold: 0.1\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Unsupported"):
        load_config_from_file(yaml_path)

    list_path = tmp_path / "phases.json"
    list_path.write_text("[1, 2]", encoding="utf-8")
    with pytest.raises(ValueError, match="mapping"):
        load_config_from_file(list_path)

    bad_value = tmp_path / "bad.toml"
    bad_value.write_text('[phase_detection]\nmin_phase_frames = "many"\n', encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config_from_file(bad_value)

    bad_window = tmp_path / "window.toml"
    bad_window.write_text("[phase_detection]\nsmoothing_window = 0\n", encoding="utf-8")
    with pytest.raises(ConfigurationError, match="smoothing_window"):
        load_config_from_file(bad_window)


def test_file_values_are_parsed_strictly(tmp_path: Path) -> None:
    path = tmp_path / "phases.json"
    path.write_text(json.dumps({"merge_short_phases": "false", "min_phase_frames": 6.0}), encoding="utf-8")
    config = load_config_from_file(path)
    assert config.phase_detection.merge_short_phases is False
    assert config.phase_detection.min_phase_frames == 6

    toml_path = tmp_path / "phases.toml"
    toml_path.write_text('[angular_phases]\nuse_2d = "off"\nsmoothing_window = "3"\n', encoding="utf-8")
    angular = load_config_from_file(toml_path).angular_phases
    assert angular.use_2d is False
    assert angular.smoothing_window == 3


@pytest.mark.parametrize(
    "body",
    [
        {"min_phase_frames": 2.9},
        {"min_phase_frames": True},
        {"merge_short_phases": "maybe"},
        {"merge_short_phases": 1},
        {"angular_phases": {"use_2d": "sometimes"}},
    ],
)
def test_file_values_with_wrong_types_are_rejected(tmp_path: Path, body) -> None:
    path = tmp_path / "phases.json"
    path.write_text(json.dumps(body), encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_config_from_file(path)


def test_validate_config_values_warns_on_suspicious_settings() -> None:
    config = PhaseDetectionConfig(smoothing_window=4, velocity_threshold=2.0, min_phase_separation=12)
    with pytest.warns(RuntimeWarning) as record:
        validate_config_values(config)
    messages = [str(item.message) for item in record]
    assert any("even" in message for message in messages)
    assert any("velocity_threshold" in message for message in messages)
    assert any("min_phase_separation" in message for message in messages)


def test_validate_config_values_warns_on_zero_weights() -> None:
    with pytest.warns(RuntimeWarning, match="no positive weight"):
        validate_config_values(PhaseDetectionConfig(primary_joint_weights={}))


def test_print_config(capsys) -> None:
    print_config(TrackerConfig())
    out = capsys.readouterr().out
    assert "Velocity threshold: 0.015" in out
    assert "LEFT_WRIST=1.2" in out
    assert "RIGHT_KNEE" in out
