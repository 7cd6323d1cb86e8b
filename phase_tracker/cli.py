from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, List, Mapping, Optional, Sequence

import typer

from . import __version__
from .biomechanics.config import (
    AngularPhaseConfig,
    TrackerConfig,
    angular_config_from_env,
    config_from_env,
    load_config_from_file,
    print_config,
    validate_config_values,
)
from .models import Recording, ValidationError, load_recording

app = typer.Typer(help="Detect movement phases and joint angles in pose-landmark recordings.")


def _fail(message: str, *, code: int = 1) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def _enable_verbose_logging() -> None:
    root = logging.getLogger("phase_tracker")
    root.setLevel(logging.DEBUG)
    logging.getLogger("phase_tracker.biomechanics").setLevel(logging.DEBUG)
    if not any(getattr(handler, "_phase_tracker_cli", False) for handler in root.handlers):
        handler = logging.StreamHandler()
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
        handler._phase_tracker_cli = True  # type: ignore[attr-defined]
        root.addHandler(handler)


def _load_recording(path: Path) -> Recording:
    try:
        return load_recording(path)
    except FileNotFoundError as exc:
        _fail(str(exc))
    except ValidationError as exc:
        _fail(f"Could not read recording: {exc}")
    raise AssertionError("unreachable")  # pragma: no cover


def _load_config(config_path: Optional[Path]) -> TrackerConfig:
    if config_path is None:
        try:
            return TrackerConfig(phase_detection=config_from_env(), angular_phases=angular_config_from_env())
        except ValueError as exc:
            _fail(f"Invalid configuration from environment: {exc}")
    try:
        return load_config_from_file(config_path)
    except FileNotFoundError as exc:
        _fail(str(exc))
    except ValueError as exc:
        _fail(f"Could not load config: {exc}")
    raise AssertionError("unreachable")  # pragma: no cover


def render_table(headers: Sequence[str], rows: Sequence[Mapping[str, str]]) -> str:
    """Render a fixed-width table; every row maps each header to a display string."""
    widths = {key: len(key) for key in headers}
    for row in rows:
        for key in headers:
            widths[key] = max(widths[key], len(row[key]))

    def _format_line(values: Mapping[str, str]) -> str:
        return "  ".join(values[key].rjust(widths[key]) for key in headers)

    header_line = "  ".join(key.upper().rjust(widths[key]) for key in headers)
    body = "\n".join(_format_line(row) for row in rows)
    return "\n".join(filter(None, [header_line, body]))


@app.command()
def detect(
    recording: Path = typer.Argument(..., help="Recording JSON (list of frames or object with 'frames')."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="TOML/JSON detection config."),
    velocity_threshold: Optional[float] = typer.Option(
        None,
        "--velocity-threshold",
        help="Smoothed velocity below which a dip counts as a phase boundary.",
    ),
    min_phase_frames: Optional[int] = typer.Option(None, "--min-phase-frames", help="Minimum phase length in frames."),
    smoothing_window: Optional[int] = typer.Option(None, "--smoothing-window", help="Moving-average window size."),
    min_phase_separation: Optional[int] = typer.Option(
        None,
        "--min-phase-separation",
        help="Minimum frames between accepted velocity minima.",
    ),
    no_merge: bool = typer.Option(False, "--no-merge", help="Keep short phases instead of merging them forward."),
    as_json: bool = typer.Option(False, "--json", help="Print the full result as JSON."),
    csv_path: Optional[Path] = typer.Option(None, "--csv", help="Write per-frame diagnostics to CSV."),
    plot_path: Optional[Path] = typer.Option(None, "--plot", help="Save a velocity/phase plot (PNG, PDF, ...)."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log pipeline details to stderr."),
) -> None:
    """
    Segment a recording into named phases from its joint-velocity profile.

    Examples:
        phase-tracker detect squat.json
        phase-tracker detect squat.json --min-phase-frames 8 --json
    """
    if verbose:
        _enable_verbose_logging()
    from .biomechanics.metrics.phase_detection import (
        detect_phases,
        phase_result_to_dataframe,
        plot_phase_velocities,
    )

    tracker_config = _load_config(config_path)
    try:
        config = tracker_config.phase_detection.with_overrides(
            velocity_threshold=velocity_threshold,
            min_phase_frames=min_phase_frames,
            smoothing_window=smoothing_window,
            min_phase_separation=min_phase_separation,
            merge_short_phases=False if no_merge else None,
        )
    except ValueError as exc:
        _fail(f"Invalid detection settings: {exc}")
    validate_config_values(config)

    data = _load_recording(recording)
    result = detect_phases(data.frames, config)

    if csv_path is not None:
        csv_path.parent.mkdir(parents=True, exist_ok=True)
        phase_result_to_dataframe(result).to_csv(csv_path, index=False)
    if plot_path is not None:
        import matplotlib.pyplot as plt

        plot_path.parent.mkdir(parents=True, exist_ok=True)
        fig = plot_phase_velocities(result, velocity_threshold=config.velocity_threshold, title=recording.name)
        fig.savefig(plot_path)
        plt.close(fig)

    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
    else:
        rows = [
            {
                "phase": phase.name,
                "start": str(phase.start_frame),
                "end": str(phase.end_frame),
                "frames": str(phase.duration_frames),
                "confidence": f"{phase.confidence:.2f}",
            }
            for phase in result.phases
        ]
        if rows:
            typer.echo(render_table(("phase", "start", "end", "frames", "confidence"), rows))
        else:
            typer.echo("No phases detected.")
        typer.echo(
            f"{result.total_frames} frames, {len(result.local_minima)} velocity minima, "
            f"avg velocity {result.average_velocity:.4f}, max {result.max_velocity:.4f}."
        )
    if csv_path is not None:
        typer.echo(f"Saved diagnostics to {csv_path}")
    if plot_path is not None:
        typer.echo(f"Saved plot to {plot_path}")


@app.command()
def angles(
    recording: Path = typer.Argument(..., help="Recording JSON."),
    joint: Optional[List[str]] = typer.Option(
        None,
        "--joint",
        "-j",
        help="Joint or group name (e.g. RIGHT_KNEE, lower_body). Repeatable; defaults to all joints.",
    ),
    use_2d: bool = typer.Option(False, "--2d", help="Ignore depth (z) when computing angles."),
    csv_path: Optional[Path] = typer.Option(None, "--csv", help="Write per-frame raw angles to CSV."),
) -> None:
    """
    Summarise joint angles over a recording.

    Example:
        phase-tracker angles squat.json --joint lower_body --2d
    """
    from .biomechanics.metrics.angles import (
        angle_sequence_summary,
        calculate_angle_sequence,
        compute_angle_dataframe,
        resolve_joints,
    )

    try:
        joints = resolve_joints(joint or None)
    except ValueError as exc:
        _fail(str(exc))
    data = _load_recording(recording)

    frame_angles = compute_angle_dataframe(data.frames, joints, use_2d=use_2d)
    valid_counts = frame_angles.groupby("joint")["valid"].sum() if not frame_angles.empty else {}
    rows = []
    for name in joints:
        summary = angle_sequence_summary(calculate_angle_sequence(data.frames, name, use_2d=use_2d))
        rows.append(
            {
                "joint": name,
                "valid": f"{int(valid_counts.get(name, 0))}/{data.total_frames}",
                "min": f"{summary['min']:.1f}",
                "max": f"{summary['max']:.1f}",
                "range": f"{summary['range']:.1f}",
            }
        )
    typer.echo(render_table(("joint", "valid", "min", "max", "range"), rows))

    if csv_path is not None:
        csv_path.parent.mkdir(parents=True, exist_ok=True)
        frame_angles.to_csv(csv_path, index=False)
        typer.echo(f"Saved angles to {csv_path}")


@app.command()
def analyze(
    recording: Path = typer.Argument(..., help="Recording JSON."),
    start: int = typer.Argument(..., help="First frame index (inclusive)."),
    end: int = typer.Argument(..., help="Last frame index (inclusive)."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="TOML/JSON detection config."),
) -> None:
    """
    Report velocity characteristics for a frame range.

    Example:
        phase-tracker analyze squat.json 30 55
    """
    from .biomechanics.metrics.phase_detection import analyze_phase_velocity

    if start > end:
        _fail(f"START ({start}) must not be after END ({end}).")
    config = _load_config(config_path).phase_detection
    data = _load_recording(recording)
    analysis = analyze_phase_velocity(data.frames, start, end, config)
    typer.echo(f"Frames {start}-{end}: {analysis.frame_count} frames analysed.")
    typer.echo(f"Average velocity: {analysis.average_velocity:.4f}")
    typer.echo(f"Max velocity: {analysis.max_velocity:.4f}")
    typer.echo(f"Min velocity: {analysis.min_velocity:.4f}")
    typer.echo(f"Variance: {analysis.velocity_variance:.6f}")
    typer.echo(f"Stationary: {'yes' if analysis.is_stationary else 'no'}")


def _angular_phase_rows(result: Any, names: Sequence[str]) -> List[dict[str, str]]:
    return [
        {
            "phase": name,
            "type": phase.type.display_name,
            "start": str(phase.start_frame),
            "end": str(phase.end_frame),
            "seconds": f"{phase.duration_seconds:.2f}",
            "avg_vel": f"{phase.average_velocity:.1f}",
            "peak_vel": f"{phase.peak_velocity:.1f}",
            "angle_change": f"{phase.angle_change:.1f}",
            "confidence": f"{phase.confidence:.2f}",
        }
        for name, phase in zip(names, result.phases)
    ]


@app.command()
def angular(
    recording: Path = typer.Argument(..., help="Recording JSON."),
    joint: Optional[str] = typer.Option(None, "--joint", "-j", help="Primary joint (default RIGHT_KNEE)."),
    frame_rate: Optional[float] = typer.Option(
        None,
        "--frame-rate",
        help="Frames per second (defaults to the configured rate, else the recording's frame_rate).",
    ),
    exercise: Optional[str] = typer.Option(None, "--exercise", help="Exercise type for phase labels (e.g. squat)."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="TOML/JSON detection config."),
    as_json: bool = typer.Option(False, "--json", help="Print phases as JSON."),
) -> None:
    """
    Detect hold/flexion/extension phases from a joint's angular velocity.

    Example:
        phase-tracker angular squat.json --joint LEFT_KNEE --exercise squat
    """
    from .biomechanics.metrics.angular_phases import detect_angular_phases, suggest_phase_names

    data = _load_recording(recording)
    try:
        configured = _load_config(config_path).angular_phases
        if frame_rate is None and configured.frame_rate == AngularPhaseConfig().frame_rate:
            frame_rate = data.frame_rate
        config = configured.with_overrides(primary_joint=joint, frame_rate=frame_rate)
    except ValueError as exc:
        _fail(f"Invalid angular settings: {exc}")

    result = detect_angular_phases(data.frames, config)
    if exercise:
        names = suggest_phase_names(result.phases, exercise)
    else:
        names = [phase.name for phase in result.to_detected_phases()]

    if as_json:
        payload = {
            "primary_joint": result.primary_joint,
            "frame_rate": result.frame_rate,
            "total_frames": result.total_frames,
            "average_velocity": result.average_velocity(),
            "phases": [
                {
                    "name": name,
                    "type": phase.type.value,
                    "start_frame": phase.start_frame,
                    "end_frame": phase.end_frame,
                    "duration_seconds": phase.duration_seconds,
                    "average_velocity": phase.average_velocity,
                    "peak_velocity": phase.peak_velocity,
                    "angle_change": phase.angle_change,
                    "confidence": phase.confidence,
                }
                for name, phase in zip(names, result.phases)
            ],
        }
        typer.echo(json.dumps(payload, indent=2))
        return

    if not result.phases:
        typer.echo("No angular phases detected.")
        return
    headers = ("phase", "type", "start", "end", "seconds", "avg_vel", "peak_vel", "angle_change", "confidence")
    typer.echo(render_table(headers, _angular_phase_rows(result, names)))
    peak = result.peak_velocities.get(result.primary_joint)
    if peak is not None:
        typer.echo(
            f"{result.primary_joint}: ROM {peak.range_of_motion:.1f} deg, "
            f"peak flexion {peak.peak_flexion_velocity:.1f} deg/s @ {peak.peak_flexion_frame}, "
            f"peak extension {peak.peak_extension_velocity:.1f} deg/s @ {peak.peak_extension_frame}."
        )


@app.command("info")
def info(
    show_config: bool = typer.Option(False, "--config", help="Print the effective detection config."),
    config_path: Optional[Path] = typer.Option(None, "--config-file", help="TOML/JSON config to display."),
) -> None:
    """
    Display available capabilities and optional config details.

    Example:
        phase-tracker info --config
    """
    typer.echo(f"phase-tracker {__version__}")
    typer.echo("Detectors: position-velocity phases (detect), angular-velocity phases (angular).")
    typer.echo("Metrics: joint angles (angles), frame-range velocity analysis (analyze).")
    if show_config or config_path is not None:
        print_config(_load_config(config_path))


def main() -> None:
    app()


if __name__ == "__main__":
    main()
