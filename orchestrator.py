"""Render orchestration: drives one engine through a serial sequence of per-track jobs."""

from __future__ import annotations

import contextlib
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from fractions import Fraction
from pathlib import Path
from typing import Callable, Iterator, Optional, Sequence

from engine import EngineError, TranscodeEngine
from jobs import BASE_STAGED_NAME, EncodeProfile, RenderJob, build_job_args, plan_jobs
from media import AudioCandidate, BaseMedia, read_source
from planner import MAX_DIMENSION, TARGET_ASPECT
from toolchain import _traced, progress_write

ProgressCallback = Callable[[int, int], None]


class RunState(str, Enum):
    IDLE = "idle"
    STAGING_BASE = "staging_base"
    STAGING_AUDIO = "staging_audio"
    EXECUTING = "executing"
    READING_OUTPUT = "reading_output"
    CLEANING_UP = "cleaning_up"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


class FailurePolicy(str, Enum):
    OMIT = "omit"
    REPORT = "report"


class RenderError(RuntimeError):
    """Base class for failures raised while rendering."""


class EngineUnavailableError(RenderError):
    pass


class StagingError(RenderError):
    pass


class ExecutionError(RenderError):
    pass


class ReadError(RenderError):
    pass


class CleanupError(RenderError):
    pass


class OrchestratorBusyError(RuntimeError):
    pass


@dataclass(frozen=True)
class RenderResult:
    track_id: str
    track_name: str
    data: bytes = field(repr=False)
    video_duration: float
    audio_start_time: float
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def suggested_filename(self) -> str:
        stem = Path(self.track_name).stem or self.track_id
        slug = re.sub(r"\s+", "-", stem)
        return f"merged-{slug}.mp4"

    def write_to(self, directory: Path, filename: Optional[str] = None) -> Path:
        target = directory / (filename or self.suggested_filename())
        target.write_bytes(self.data)
        return target


@dataclass(frozen=True)
class TrackFailure:
    index: int
    track_id: str
    track_name: str
    error: RenderError


@dataclass
class RenderReport:
    state: RunState
    total: int
    attempted: int = 0
    results: list[RenderResult] = field(default_factory=list)
    failures: list[TrackFailure] = field(default_factory=list)
    cause: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.state is RunState.DONE and len(self.results) == self.total


class RenderOrchestrator:
    """Owns an engine and renders one output per audio track against a base video.

    Jobs run strictly one at a time in track order. A failed job is skipped
    and the run continues; only an unavailable engine or a base video that
    cannot be staged fails the whole run. Staged files are released on every
    exit path.
    """

    def __init__(
        self,
        engine: TranscodeEngine,
        *,
        profile: EncodeProfile = EncodeProfile(),
        failure_policy: FailurePolicy = FailurePolicy.OMIT,
        max_dim: int = MAX_DIMENSION,
        target_aspect: Fraction = TARGET_ASPECT,
    ) -> None:
        self.engine = engine
        self.profile = profile
        self.failure_policy = failure_policy
        self.max_dim = max_dim
        self.target_aspect = target_aspect
        self.state = RunState.IDLE
        self.progress = 0
        self._engine_loaded = False
        self._busy = threading.Lock()

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    def _set_state(self, state: RunState) -> None:
        self.state = state

    def _ensure_engine(self) -> None:
        if self._engine_loaded:
            return
        self.engine.load()
        self._engine_loaded = True

    def _release(self, name: str) -> None:
        try:
            self.engine.unstage(name)
        except (EngineError, OSError) as exc:
            error = CleanupError(f"Could not remove staged {name}: {exc}")
            progress_write(f"Warning: {error}")

    @contextlib.contextmanager
    def _staging_scope(self, names: Sequence[str], release_state: RunState) -> Iterator[None]:
        try:
            yield
        finally:
            self._set_state(release_state)
            for name in names:
                self._release(name)

    @_traced
    def run_job(self, job: RenderJob, base_duration: float) -> RenderResult:
        """Render one job against the already staged base video."""
        with self._staging_scope([job.audio_name, job.output_name], RunState.CLEANING_UP):
            self._set_state(RunState.STAGING_AUDIO)
            try:
                self.engine.stage(job.audio_name, read_source(job.track.source))
            except (EngineError, OSError) as exc:
                raise StagingError(f"Could not stage audio {job.track.name}: {exc}") from exc

            self._set_state(RunState.EXECUTING)
            args = build_job_args(job, base_duration, self.profile)
            try:
                self.engine.execute(args)
            except EngineError as exc:
                raise ExecutionError(f"Render failed for {job.track.name}: {exc}") from exc

            self._set_state(RunState.READING_OUTPUT)
            try:
                data = self.engine.read_staged(job.output_name)
            except (EngineError, OSError) as exc:
                raise ReadError(f"Could not read output for {job.track.name}: {exc}") from exc
            if not data:
                raise ReadError(f"Output for {job.track.name} is empty.")

            return RenderResult(
                track_id=job.track.id,
                track_name=job.track.name,
                data=data,
                video_duration=base_duration,
                audio_start_time=job.start_offset,
            )

    @_traced
    def run(
        self,
        base: Optional[BaseMedia],
        tracks: Sequence[AudioCandidate],
        on_progress: Optional[ProgressCallback] = None,
    ) -> RenderReport:
        if base is None or not tracks:
            raise ValueError("A base video and at least one audio track are required.")
        for track in tracks:
            if not track.window_fits(base.duration):
                raise ValueError(
                    f'Start offset {track.start_offset}s for "{track.name}" leaves less than '
                    f"{base.duration}s of audio."
                )
        if not self._busy.acquire(blocking=False):
            raise OrchestratorBusyError("A render is already in progress.")
        try:
            return self._run(base, list(tracks), on_progress)
        except BaseException:
            self._set_state(RunState.FAILED)
            raise
        finally:
            self._busy.release()

    def _run(
        self,
        base: BaseMedia,
        tracks: list[AudioCandidate],
        on_progress: Optional[ProgressCallback],
    ) -> RenderReport:
        self.progress = 0
        total = len(tracks)
        self._set_state(RunState.STAGING_BASE)
        try:
            self._ensure_engine()
        except EngineError as exc:
            return self._failed(total, EngineUnavailableError(f"Engine unavailable: {exc}"))

        jobs = plan_jobs(base, tracks, max_dim=self.max_dim, target_aspect=self.target_aspect)
        report = RenderReport(state=RunState.DONE, total=total)
        fatal: Optional[RenderError] = None

        with self._staging_scope([BASE_STAGED_NAME], RunState.FINALIZING):
            try:
                self.engine.stage(BASE_STAGED_NAME, read_source(base.source))
            except (EngineError, OSError) as exc:
                fatal = EngineUnavailableError(f"Could not stage base video: {exc}")
            else:
                for job in jobs:
                    try:
                        report.results.append(self.run_job(job, base.duration))
                    except RenderError as exc:
                        progress_write(
                            f"Warning: track {job.index + 1}/{total} ({job.track.name}) skipped: {exc}"
                        )
                        if self.failure_policy is FailurePolicy.REPORT:
                            report.failures.append(
                                TrackFailure(job.index, job.track.id, job.track.name, exc)
                            )
                    self.progress += 1
                    if on_progress is not None:
                        on_progress(self.progress, total)

        if fatal is not None:
            return self._failed(total, fatal)

        report.attempted = self.progress
        self._set_state(RunState.DONE)
        return report

    def _failed(self, total: int, error: RenderError) -> RenderReport:
        self._set_state(RunState.FAILED)
        return RenderReport(state=RunState.FAILED, total=total, cause=str(error))

    def dispose(self) -> None:
        """Release the engine; a later run loads it again."""
        if self.busy:
            raise OrchestratorBusyError("Cannot dispose the engine during a render.")
        self.engine.dispose()
        self._engine_loaded = False
        self._set_state(RunState.IDLE)
