from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from phase_tracker.models import (
    DetectedPhase,
    Landmark,
    PoseFrame,
    ValidationError,
    coerce_frame,
    frame_landmarks,
    load_recording,
    parse_frame_sequence,
    parse_landmarks,
)


def _rows(n: int = 33, visibility: float = 0.9) -> list[list[float]]:
    return [[0.1 * (i % 10), 0.2, 0.0, visibility, 1.0] for i in range(n)]


def test_landmark_from_short_row_pads_with_zero() -> None:
    assert Landmark.from_row([0.4, 0.6]) == Landmark(0.4, 0.6, 0.0, 0.0, 0.0)
    assert Landmark.from_row([1, 2, 3, 0.5, 0.7, 99]) == Landmark(1.0, 2.0, 3.0, 0.5, 0.7)


def test_landmark_from_mapping_and_non_finite_values() -> None:
    landmark = Landmark.from_row({"x": 0.3, "y": float("nan"), "visibility": None})
    assert landmark == Landmark(0.3, 0.0, 0.0, 0.0, 0.0)
    assert Landmark.from_row([float("inf"), 0.5]).x == 0.0


@pytest.mark.parametrize("row", ["0.1,0.2", 3.5, [True, 0.2], ["a", 0.2]])
def test_landmark_rejects_garbage(row) -> None:
    with pytest.raises(ValidationError):
        Landmark.from_row(row)


def test_landmark_as_row() -> None:
    assert Landmark(0.1, 0.2, 0.3, 0.4, 0.5).as_row() == [0.1, 0.2, 0.3, 0.4, 0.5]


def test_parse_landmarks_accepts_json_and_nested_lists() -> None:
    rows = _rows(3)
    assert parse_landmarks(json.dumps(rows)) == parse_landmarks(rows)
    assert parse_landmarks(json.dumps(rows).encode("utf-8"))[0].visibility == 0.9
    assert len(parse_landmarks(rows)) == 3


HUGE_INT = 10**400
DEEPLY_NESTED = "[" * 100000 + "]" * 100000


@pytest.mark.parametrize(
    "payload",
    ["{broken", '{"x": 1}', None, "null", 42, [[0.1, "oops"]], [[HUGE_INT, 0.2]], f"[[{HUGE_INT}, 0.2]]", DEEPLY_NESTED],
)
def test_parse_landmarks_degrades_to_empty(payload) -> None:
    assert parse_landmarks(payload) == ()


def test_parse_landmarks_strict_raises() -> None:
    with pytest.raises(ValidationError):
        parse_landmarks("{broken", strict=True)
    with pytest.raises(ValidationError):
        parse_landmarks([[0.1, "oops"]], strict=True)
    with pytest.raises(ValidationError):
        parse_landmarks([[HUGE_INT, 0.2]], strict=True)
    with pytest.raises(ValidationError):
        parse_landmarks(DEEPLY_NESTED, strict=True)


def test_pose_frame_sequence_protocol_and_confidence() -> None:
    frame = PoseFrame(frame_index=3, timestamp_ms=100.0, landmarks=parse_landmarks(_rows(4, visibility=0.8)))
    assert len(frame) == 4
    assert frame[0].visibility == 0.8
    assert len(frame[1:3]) == 2
    assert [lm.visibility for lm in frame] == [0.8] * 4
    assert frame.overall_confidence == pytest.approx(0.8)
    assert frame.is_valid is True

    assert PoseFrame(frame_index=0, timestamp_ms=0.0).is_valid is False
    low = PoseFrame(frame_index=0, timestamp_ms=0.0, landmarks=parse_landmarks(_rows(4, visibility=0.5)))
    assert low.is_valid is False


def test_detected_phase_to_dict() -> None:
    phase = DetectedPhase(name="Hold", start_frame=4, end_frame=19, confidence=0.72)
    assert phase.duration_frames == 15
    assert phase.to_dict() == {"name": "Hold", "start_frame": 4, "end_frame": 19, "confidence": 0.72}


def test_coerce_frame_from_mapping_variants() -> None:
    frame = coerce_frame({"frameIndex": 7, "timestampMs": 233.3, "landmarksJson": json.dumps(_rows(2))}, 0)
    assert frame.frame_index == 7
    assert frame.timestamp_ms == pytest.approx(233.3)
    assert len(frame) == 2

    default_ts = coerce_frame({"landmarks": _rows(2)}, 5, frame_rate=50.0)
    assert default_ts.frame_index == 5
    assert default_ts.timestamp_ms == pytest.approx(100.0)

    existing = PoseFrame(frame_index=1, timestamp_ms=0.0)
    assert coerce_frame(existing, 9) is existing


def test_frame_landmarks_accepts_every_shape() -> None:
    rows = _rows(2)
    parsed = parse_landmarks(rows)
    assert frame_landmarks(rows) == parsed
    assert frame_landmarks(list(parsed)) == list(parsed)
    assert frame_landmarks({"landmarks": rows}) == parsed
    assert frame_landmarks(PoseFrame(0, 0.0, parsed)) == parsed
    assert frame_landmarks("garbage") == ()


def test_parse_frame_sequence_isolates_corrupt_frames(caplog) -> None:
    raw = [_rows(), "{corrupt", {"frame_index": 2, "landmarks": [[0.1, "bad"]]}, _rows()]
    with caplog.at_level(logging.WARNING, logger="phase_tracker.models"):
        frames = parse_frame_sequence(raw)
    assert [len(frame) for frame in frames] == [33, 0, 0, 33]
    assert [frame.frame_index for frame in frames] == [0, 1, 2, 3]
    assert frames[3].timestamp_ms == pytest.approx(100.0)
    assert "2 of 4 frames" in caplog.text


def test_parse_frame_sequence_survives_overflow_and_deep_nesting() -> None:
    raw = [
        _rows(),
        [[HUGE_INT, 0.2, 0.0, 0.9, 1.0]],
        {"frame_index": 2, "timestamp_ms": HUGE_INT, "landmarks": _rows()},
        DEEPLY_NESTED,
        {"frame_index": HUGE_INT, "landmarks": _rows()},
        _rows(),
    ]
    frames = parse_frame_sequence(raw)
    assert [len(frame) for frame in frames] == [33, 0, 33, 0, 0, 33]
    assert frames[2].timestamp_ms == pytest.approx(2 * 1000.0 / 30)
    assert frames[4].frame_index == HUGE_INT
    assert frames[5].timestamp_ms == pytest.approx(5 * 1000.0 / 30)


def test_load_recording_from_file(tmp_path: Path) -> None:
    path = tmp_path / "squat.json"
    path.write_text(json.dumps({"fps": 60, "frames": [_rows(), _rows()]}), encoding="utf-8")
    recording = load_recording(path)
    assert recording.total_frames == 2
    assert recording.frame_rate == 60.0
    assert recording.source == path
    assert recording.frames[1].timestamp_ms == pytest.approx(1000.0 / 60)


def test_load_recording_from_payloads() -> None:
    assert load_recording([_rows()]).frame_rate == 30.0
    nested = load_recording({"video_metadata": {"frame_rate": 25}, "frames": []})
    assert nested.frame_rate == 25.0
    assert nested.total_frames == 0


def test_load_recording_errors(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_recording(tmp_path / "missing.json")

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(ValidationError, match="not valid JSON"):
        load_recording(broken)

    with pytest.raises(ValidationError, match="frames"):
        load_recording({"frame_rate": 30})
    with pytest.raises(ValidationError):
        load_recording({"frames": "oops"})
