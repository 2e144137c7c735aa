"""Job building: per-track render jobs and the exact ffmpeg argument list for each."""

from __future__ import annotations

from dataclasses import dataclass
from fractions import Fraction
from typing import Sequence

from media import AudioCandidate, BaseMedia
from planner import MAX_DIMENSION, TARGET_ASPECT, FilterDirective, plan_filter

BASE_STAGED_NAME = "input_video.mp4"

DEFAULT_VIDEO_CODEC = "h264"
DEFAULT_PRESET = "ultrafast"
DEFAULT_CRF = 28
DEFAULT_AUDIO_CODEC = "aac"


@dataclass(frozen=True)
class EncodeProfile:
    """Encoder settings used for every re-encoded job; speed over fidelity."""

    video_codec: str = DEFAULT_VIDEO_CODEC
    preset: str = DEFAULT_PRESET
    crf: int = DEFAULT_CRF
    audio_codec: str = DEFAULT_AUDIO_CODEC


@dataclass(frozen=True)
class RenderJob:
    index: int
    track: AudioCandidate
    start_offset: float
    directive: FilterDirective
    base_name: str
    audio_name: str
    output_name: str


def get_codec_flags(codec: str, preset: str, crf: int) -> list[str]:
    """Return ffmpeg codec flags for the requested encoder."""
    if codec == "h264":
        return ["-c:v", "libx264", "-preset", preset, "-crf", str(crf)]
    if codec == "h265":
        return ["-c:v", "libx265", "-preset", preset, "-crf", str(crf)]
    raise ValueError(f"Unsupported codec: {codec}")


def format_seconds(value: float) -> str:
    """Format seconds as a plain decimal string ffmpeg accepts (``12.5``, ``60``)."""
    text = f"{float(value):.6f}".rstrip("0").rstrip(".")
    return text if text not in ("", "-0") else "0"


def staged_audio_name(index: int, suffix: str) -> str:
    return f"audio_{index}{suffix}"


def staged_output_name(index: int) -> str:
    return f"output_{index}.mp4"


def plan_jobs(
    base: BaseMedia,
    tracks: Sequence[AudioCandidate],
    *,
    max_dim: int = MAX_DIMENSION,
    target_aspect: Fraction = TARGET_ASPECT,
) -> list[RenderJob]:
    """Derive one job per track, in input order, sharing one filter decision."""
    directive = plan_filter(base.width, base.height, target_aspect, max_dim)
    return [
        RenderJob(
            index=index,
            track=track,
            start_offset=track.start_offset,
            directive=directive,
            base_name=BASE_STAGED_NAME,
            audio_name=staged_audio_name(index, track.suffix),
            output_name=staged_output_name(index),
        )
        for index, track in enumerate(tracks)
    ]


def build_job_args(
    job: RenderJob,
    base_duration: float,
    profile: EncodeProfile = EncodeProfile(),
) -> list[str]:
    """Build the engine argument list for one job.

    The seek applies to the audio input only. Audio is always re-encoded so
    the cut at the seek point is sample accurate.
    """
    args = [
        "-i", job.base_name,
        "-ss", format_seconds(job.start_offset),
        "-i", job.audio_name,
        "-t", format_seconds(base_duration),
        "-map", "0:v",
        "-map", "1:a",
    ]

    video_filter = job.directive.to_filter()
    if video_filter is not None:
        args.extend(["-vf", video_filter])
        args.extend(get_codec_flags(profile.video_codec, profile.preset, profile.crf))
    else:
        args.extend(["-c:v", "copy"])

    args.extend(["-c:a", profile.audio_codec])
    args.append(job.output_name)
    return args
