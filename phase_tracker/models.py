from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union, overload

NUM_LANDMARKS = 33
DEFAULT_FRAME_RATE = 30.0
MIN_FRAME_CONFIDENCE = 0.5

_FIELD_NAMES = ("x", "y", "z", "visibility", "presence")

LOGGER = logging.getLogger(__name__)

__all__ = [
    "NUM_LANDMARKS",
    "DEFAULT_FRAME_RATE",
    "Landmark",
    "PoseFrame",
    "DetectedPhase",
    "Recording",
    "ValidationError",
    "parse_landmarks",
    "coerce_frame",
    "frame_landmarks",
    "parse_frame_sequence",
    "load_recording",
]


class ValidationError(ValueError):
    """Raised when user-supplied data cannot be normalised safely."""


@dataclass(frozen=True)
class Landmark:
    """One tracked body point: normalised position plus two confidence scores."""

    x: float
    y: float
    z: float = 0.0
    visibility: float = 0.0
    presence: float = 0.0

    @classmethod
    def from_row(cls, row: Any) -> "Landmark":
        """Build a landmark from a compact `(x, y, z, visibility, presence)` row.

        Short rows are padded with 0; mapping rows are read by field name.
        """
        if isinstance(row, Landmark):
            return row
        if isinstance(row, Mapping):
            values = [row.get(name, 0.0) for name in _FIELD_NAMES]
        elif isinstance(row, (str, bytes)) or not isinstance(row, Iterable):
            raise ValidationError(f"Landmark row must be a list of numbers; received {row!r}.")
        else:
            values = list(row)[: len(_FIELD_NAMES)]
            values += [0.0] * (len(_FIELD_NAMES) - len(values))
        return cls(*(_coerce_field(value) for value in values))

    def as_row(self) -> List[float]:
        return [self.x, self.y, self.z, self.visibility, self.presence]


def _coerce_field(value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise ValidationError(f"Landmark field must be numeric; received {value!r}.")
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError) as exc:
        raise ValidationError(f"Landmark field must be numeric; received {value!r}.") from exc
    return number if math.isfinite(number) else 0.0


@dataclass(frozen=True)
class PoseFrame:
    """Landmarks sampled at one instant of a recording.

    Behaves like a read-only sequence of `Landmark` so it can be passed anywhere
    a landmark list is accepted.
    """

    frame_index: int
    timestamp_ms: float
    landmarks: Tuple[Landmark, ...] = field(default_factory=tuple)

    def __len__(self) -> int:
        return len(self.landmarks)

    @overload
    def __getitem__(self, index: int) -> Landmark: ...

    @overload
    def __getitem__(self, index: slice) -> Tuple[Landmark, ...]: ...

    def __getitem__(self, index):
        return self.landmarks[index]

    def __iter__(self) -> Iterator[Landmark]:
        return iter(self.landmarks)

    @property
    def overall_confidence(self) -> float:
        if not self.landmarks:
            return 0.0
        return sum(lm.visibility for lm in self.landmarks) / len(self.landmarks)

    @property
    def is_valid(self) -> bool:
        return bool(self.landmarks) and self.overall_confidence > MIN_FRAME_CONFIDENCE


@dataclass(frozen=True)
class DetectedPhase:
    """A named, confidence-scored frame range (inclusive bounds)."""

    name: str
    start_frame: int
    end_frame: int
    confidence: float

    @property
    def duration_frames(self) -> int:
        return self.end_frame - self.start_frame

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "start_frame": int(self.start_frame),
            "end_frame": int(self.end_frame),
            "confidence": float(self.confidence),
        }


@dataclass(frozen=True)
class Recording:
    frames: Tuple[PoseFrame, ...]
    frame_rate: float = DEFAULT_FRAME_RATE
    source: Optional[Path] = None

    @property
    def total_frames(self) -> int:
        return len(self.frames)


def _decode_payload(payload: Any) -> Any:
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8")
    if isinstance(payload, str):
        return json.loads(payload)
    return payload


def parse_landmarks(payload: Any, *, strict: bool = False) -> Tuple[Landmark, ...]:
    """Deserialise one frame of landmark rows.

    `payload` may be a JSON string, a nested list/array of rows, or an iterable
    of `Landmark` objects. A payload that cannot be decoded yields an empty
    tuple (the frame has no usable landmarks) unless `strict` is set, in which
    case `ValidationError` is raised.
    """
    try:
        decoded = _decode_payload(payload)
        if decoded is None or isinstance(decoded, (str, Mapping)) or not isinstance(decoded, Iterable):
            raise ValidationError(f"Landmark payload must be a list of rows; received {type(decoded).__name__}.")
        return tuple(Landmark.from_row(row) for row in decoded)
    except (ValidationError, ValueError, TypeError, OverflowError, RecursionError) as exc:
        if strict:
            if isinstance(exc, ValidationError):
                raise
            raise ValidationError(f"Could not parse landmarks: {exc}") from exc
        LOGGER.debug("Discarding unparseable landmark payload: %s", exc)
        return ()


def _frame_index(raw: Mapping[str, Any], default: int) -> int:
    for key in ("frame_index", "frameIndex", "frame_idx"):
        if key in raw:
            try:
                return int(raw[key])
            except (TypeError, ValueError, OverflowError):
                return default
    return default


def _timestamp_ms(raw: Mapping[str, Any], default: float) -> float:
    for key in ("timestamp_ms", "timestampMs"):
        if key in raw:
            try:
                value = float(raw[key])
            except (TypeError, ValueError, OverflowError):
                return default
            return value if math.isfinite(value) else default
    return default


def coerce_frame(raw: Any, position: int, *, frame_rate: float = DEFAULT_FRAME_RATE, strict: bool = False) -> PoseFrame:
    """Normalise one raw frame payload into a `PoseFrame`.

    Accepts an existing `PoseFrame`, a mapping with `landmarks` (or
    `landmarks_json`) plus optional `frame_index`/`timestamp_ms`, or bare
    landmark rows.
    """
    if isinstance(raw, PoseFrame):
        return raw
    default_ts = position * (1000.0 / frame_rate) if frame_rate > 0 else 0.0
    if isinstance(raw, Mapping):
        index = _frame_index(raw, position)
        body = raw.get("landmarks", raw.get("landmarks_json", raw.get("landmarksJson")))
        return PoseFrame(
            frame_index=index,
            timestamp_ms=_timestamp_ms(raw, index * (1000.0 / frame_rate) if frame_rate > 0 else 0.0),
            landmarks=parse_landmarks(body, strict=strict),
        )
    return PoseFrame(frame_index=position, timestamp_ms=default_ts, landmarks=parse_landmarks(raw, strict=strict))


def frame_landmarks(frame: Any) -> Sequence[Landmark]:
    """Return the landmarks of a frame given in any supported shape."""
    if isinstance(frame, PoseFrame):
        return frame.landmarks
    if isinstance(frame, (list, tuple)) and all(isinstance(lm, Landmark) for lm in frame):
        return frame
    if isinstance(frame, Mapping):
        return coerce_frame(frame, 0).landmarks
    return parse_landmarks(frame)


def parse_frame_sequence(frames: Iterable[Any], *, frame_rate: float = DEFAULT_FRAME_RATE) -> List[PoseFrame]:
    """Normalise a whole recording, isolating corrupt frames.

    A frame whose payload cannot be decoded becomes a frame with zero
    landmarks; the rest of the sequence is unaffected.
    """
    parsed: List[PoseFrame] = []
    failed = 0
    for position, raw in enumerate(frames):
        try:
            parsed.append(coerce_frame(raw, position, frame_rate=frame_rate, strict=True))
        except (ValidationError, OverflowError) as exc:
            failed += 1
            LOGGER.debug("Frame %s has no usable landmarks: %s", position, exc)
            index = _frame_index(raw, position) if isinstance(raw, Mapping) else position
            parsed.append(PoseFrame(frame_index=index, timestamp_ms=position * (1000.0 / frame_rate), landmarks=()))
    if failed:
        LOGGER.warning("%s of %s frames could not be parsed and were treated as empty.", failed, len(parsed))
    return parsed


def _extract_frame_rate(payload: Mapping[str, Any]) -> float:
    for key in ("frame_rate", "fps"):
        raw = payload.get(key)
        if raw is None:
            continue
        try:
            value = float(raw)
        except (TypeError, ValueError, OverflowError):
            continue
        if math.isfinite(value) and value > 0:
            return value
    meta = payload.get("video_metadata")
    if isinstance(meta, Mapping):
        return _extract_frame_rate(meta)
    return DEFAULT_FRAME_RATE


def load_recording(source: Union[str, Path, Mapping[str, Any], Sequence[Any]]) -> Recording:
    """Load a recording from a JSON file path or an already-decoded payload.

    The payload is either a list of frames or an object with a `frames` list
    and an optional `frame_rate`.
    """
    path: Optional[Path] = None
    payload: Any = source
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Recording not found: {path}")
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValidationError(f"{path} is not valid JSON: {exc}") from exc

    frame_rate = DEFAULT_FRAME_RATE
    if isinstance(payload, Mapping):
        frame_rate = _extract_frame_rate(payload)
        payload = payload.get("frames")
    if isinstance(payload, (str, bytes)) or not isinstance(payload, Sequence):
        raise ValidationError("Recording must be a list of frames or an object with a 'frames' list.")

    frames = parse_frame_sequence(payload, frame_rate=frame_rate)
    return Recording(frames=tuple(frames), frame_rate=frame_rate, source=path)
