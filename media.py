"""Media descriptors, ffprobe probing, and the editing session that holds them."""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Union

from toolchain import run_subprocess

if TYPE_CHECKING:
    from orchestrator import RenderResult

MIN_VIDEO_DURATION_SECONDS = 60.0
DEFAULT_AUDIO_SUFFIX = ".mp3"

ByteSource = Union[Path, bytes]


def read_source(source: ByteSource) -> bytes:
    if isinstance(source, bytes):
        return source
    return Path(source).read_bytes()


def new_track_id() -> str:
    return uuid.uuid4().hex[:9]


@dataclass(frozen=True)
class MediaInfo:
    width: int
    height: int
    duration_seconds: float
    has_video: bool
    has_audio: bool


@dataclass(frozen=True)
class BaseMedia:
    source: ByteSource
    duration: float
    width: int
    height: int

    def __post_init__(self) -> None:
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Video dimensions must be positive, got {self.width}x{self.height}.")
        if self.duration <= 0:
            raise ValueError(f"Video duration must be > 0, got {self.duration}.")


@dataclass
class AudioCandidate:
    id: str
    source: ByteSource
    name: str
    duration: float
    start_offset: float = 0.0

    @property
    def suffix(self) -> str:
        if isinstance(self.source, bytes):
            return DEFAULT_AUDIO_SUFFIX
        return Path(self.source).suffix or DEFAULT_AUDIO_SUFFIX

    def max_offset(self, video_duration: float) -> float:
        return max(0.0, self.duration - video_duration)

    def window_fits(self, video_duration: float) -> bool:
        # Same bound as max_offset so an offset at the top of the range still fits.
        if self.duration < video_duration:
            return False
        return 0 <= self.start_offset <= self.max_offset(video_duration)


def parse_duration(value: object) -> float:
    try:
        return max(float(value), 0.0)
    except (TypeError, ValueError):
        return 0.0


def probe_media(ffprobe_bin: str, path: Path) -> MediaInfo:
    """Read stream metadata with ffprobe."""
    cmd = [
        ffprobe_bin,
        "-v",
        "error",
        "-print_format",
        "json",
        "-show_streams",
        "-show_format",
        str(path),
    ]
    result = run_subprocess(cmd, capture_output=True)

    try:
        payload = json.loads(result.stdout)
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"Failed to parse ffprobe output: {exc}") from exc

    video_stream = None
    audio_stream = None
    for stream in payload.get("streams", []):
        stream_type = stream.get("codec_type")
        # Cover art shows up as a single-frame video stream in audio files.
        if stream.get("disposition", {}).get("attached_pic"):
            continue
        if stream_type == "video" and video_stream is None:
            video_stream = stream
        elif stream_type == "audio" and audio_stream is None:
            audio_stream = stream

    duration = parse_duration(payload.get("format", {}).get("duration"))
    if duration == 0.0:
        primary = video_stream or audio_stream or {}
        duration = parse_duration(primary.get("duration"))

    return MediaInfo(
        width=int(video_stream.get("width", 0)) if video_stream else 0,
        height=int(video_stream.get("height", 0)) if video_stream else 0,
        duration_seconds=duration,
        has_video=video_stream is not None,
        has_audio=audio_stream is not None,
    )


def load_base_media(ffprobe_bin: str, path: Path) -> BaseMedia:
    info = probe_media(ffprobe_bin, path)
    if not info.has_video:
        raise ValueError(f"No video stream found in {path.name}.")
    return BaseMedia(
        source=path,
        duration=info.duration_seconds,
        width=info.width,
        height=info.height,
    )


def load_audio_candidate(ffprobe_bin: str, path: Path) -> AudioCandidate:
    info = probe_media(ffprobe_bin, path)
    if not info.has_audio:
        raise ValueError(f"No audio stream found in {path.name}.")
    return AudioCandidate(
        id=new_track_id(),
        source=path,
        name=path.name,
        duration=info.duration_seconds,
    )


@dataclass
class MergeSession:
    """One base video plus the audio tracks configured against it.

    Tracks are validated on entry so every track held here can cover the
    whole video. Offsets change only through ``update_track_offset`` and not
    while ``rendering`` is set.
    """

    base: BaseMedia
    min_video_duration: float = MIN_VIDEO_DURATION_SECONDS
    tracks: list[AudioCandidate] = field(default_factory=list)
    results: list[RenderResult] = field(default_factory=list)
    rendering: bool = False

    def __post_init__(self) -> None:
        if self.base.duration < self.min_video_duration:
            raise ValueError(
                f"Video must be at least {self.min_video_duration:.0f}s long; "
                f"this one is {int(self.base.duration)}s."
            )

    def _ensure_idle(self) -> None:
        if self.rendering:
            raise RuntimeError("Tracks cannot change while a render is in progress.")

    def get_track(self, track_id: str) -> AudioCandidate:
        for track in self.tracks:
            if track.id == track_id:
                return track
        raise KeyError(f"Unknown audio track: {track_id}")

    def add_track(self, track: AudioCandidate) -> AudioCandidate:
        self._ensure_idle()
        if track.duration < self.base.duration:
            raise ValueError(
                f'Audio "{track.name}" is too short ({int(track.duration)}s). '
                f"It must be longer than the video ({int(self.base.duration)}s)."
            )
        if any(existing.id == track.id for existing in self.tracks):
            raise ValueError(f"Duplicate audio track id: {track.id}")
        self.tracks.append(track)
        return track

    def update_track_offset(self, track_id: str, offset: float) -> AudioCandidate:
        self._ensure_idle()
        track = self.get_track(track_id)
        limit = track.max_offset(self.base.duration)
        if offset < 0 or offset > limit:
            raise ValueError(
                f'Start offset {offset:.2f}s for "{track.name}" is outside 0..{limit:.2f}s.'
            )
        track.start_offset = float(offset)
        return track

    def remove_track(self, track_id: str) -> None:
        self._ensure_idle()
        track = self.get_track(track_id)
        self.tracks.remove(track)

    def reset(self) -> None:
        """Drop all tracks and rendered results."""
        self._ensure_idle()
        self.tracks.clear()
        self.results.clear()
