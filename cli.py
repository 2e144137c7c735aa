"""CLI: argument parsing, track arguments, and runtime validation."""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Optional, Sequence

from jobs import DEFAULT_CRF, DEFAULT_PRESET
from media import MIN_VIDEO_DURATION_SECONDS
from orchestrator import FailurePolicy
from planner import MAX_DIMENSION
from toolchain import DEFAULT_TRACE_ENDPOINT

# ── Constants ──────────────────────────────────────────────────────────────────

FAILURE_POLICIES = tuple(policy.value for policy in FailurePolicy)
SUPPORTED_PRESETS = (
    "ultrafast",
    "superfast",
    "veryfast",
    "faster",
    "fast",
    "medium",
    "slow",
    "slower",
    "veryslow",
)
OFFSET_SEPARATOR = "@"


# ── Functions ──────────────────────────────────────────────────────────────────


def parse_offset(value: str) -> float:
    """Parse an offset given as seconds (``72.5``) or ``MM:SS(.ff)`` (``1:12.5``)."""
    text = value.strip()
    try:
        if ":" in text:
            minutes, seconds = text.split(":", maxsplit=1)
            offset = int(minutes) * 60 + float(seconds)
        else:
            offset = float(text)
    except ValueError as exc:
        raise ValueError(f"Invalid offset: {value!r}") from exc

    if offset < 0:
        raise ValueError(f"Offset must be >= 0, got {value!r}")
    return offset


def parse_track_arg(value: str) -> tuple[Path, Optional[float]]:
    """Split ``song.mp3@1:05`` into a path and an optional start offset.

    Text after the last ``@`` is only treated as an offset when it parses as
    one, so file names containing ``@`` still work.
    """
    path_text, separator, offset_text = value.rpartition(OFFSET_SEPARATOR)
    if separator and path_text:
        try:
            return Path(path_text).expanduser(), parse_offset(offset_text)
        except ValueError:
            pass
    return Path(value).expanduser(), None


def resolve_output_dir(input_video: Path, output_arg: Optional[str]) -> Path:
    if output_arg:
        return Path(output_arg).expanduser().resolve()
    return (input_video.parent / f"{input_video.stem}_merged").resolve()


def validate_runtime_args(args: argparse.Namespace) -> None:
    if args.crf < 0 or args.crf > 51:
        raise ValueError("CRF must be between 0 and 51.")
    if args.max_dim <= 0:
        raise ValueError("Max dimension must be > 0.")
    if args.max_dim % 2:
        raise ValueError("Max dimension must be even for x264 output.")
    if args.min_video_duration < 0:
        raise ValueError("Minimum video duration must be >= 0.")
    if not args.audio:
        raise ValueError("At least one audio track is required.")
    if args.work_dir:
        work_dir = Path(args.work_dir).expanduser()
        if work_dir.exists() and not work_dir.is_dir():
            raise ValueError("Work directory path must be a directory, not a file.")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Render one vertical (9:16) video per audio track, trimmed to the "
            "base video's length"
        ),
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )

    parser.add_argument("input_video", type=str, help="Path to the base video")
    parser.add_argument(
        "audio",
        type=str,
        nargs="+",
        help="Audio track, optionally with a start offset: song.mp3@12.5 or song.mp3@1:05",
    )
    parser.add_argument(
        "-o",
        "--output-dir",
        type=str,
        default=None,
        help="Directory for rendered videos (default: <input>_merged/)",
    )
    parser.add_argument(
        "--preset",
        type=str,
        default=DEFAULT_PRESET,
        choices=SUPPORTED_PRESETS,
        help="x264 preset used when the video must be re-encoded",
    )
    parser.add_argument("--crf", type=int, default=DEFAULT_CRF, help="x264 CRF (0-51)")
    parser.add_argument(
        "--max-dim",
        type=int,
        default=MAX_DIMENSION,
        help="Output height ceiling; taller or landscape sources are scaled to it",
    )
    parser.add_argument(
        "--failure-policy",
        type=str,
        choices=FAILURE_POLICIES,
        default=FailurePolicy.OMIT.value,
        help="omit: skip failed tracks silently; report: list them and exit with status 2",
    )
    parser.add_argument(
        "--min-video-duration",
        type=float,
        default=MIN_VIDEO_DURATION_SECONDS,
        help="Reject base videos shorter than this many seconds",
    )
    parser.add_argument(
        "--work-dir",
        type=str,
        default=None,
        help="Directory for the engine's staging area (default: system temp)",
    )
    parser.add_argument("--ffmpeg-path", type=str, default=None, help="Custom ffmpeg binary")
    parser.add_argument("--ffprobe-path", type=str, default=None, help="Custom ffprobe binary")
    parser.add_argument(
        "--plan-only",
        action="store_true",
        help="Print the per-track job plan as JSON without rendering",
    )
    parser.add_argument(
        "--trace",
        nargs="?",
        const=DEFAULT_TRACE_ENDPOINT,
        default=None,
        metavar="ENDPOINT",
        help="Export OpenTelemetry spans to an OTLP/HTTP endpoint",
    )

    return parser.parse_args(argv)
