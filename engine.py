"""Engine adapter: the staged-file transcoding boundary and its ffmpeg implementation."""

from __future__ import annotations

import shutil
import subprocess
import tempfile
import threading
from pathlib import Path
from typing import Optional, Protocol, Sequence

from toolchain import run_subprocess

ENGINE_GLOBAL_FLAGS = ["-hide_banner", "-loglevel", "warning", "-nostdin", "-y"]
STDERR_TAIL_LINES = 12


class EngineError(RuntimeError):
    """Raised by an engine adapter when a staging or execution call fails."""


class TranscodeEngine(Protocol):
    def load(self) -> None: ...

    def stage(self, name: str, data: bytes) -> None: ...

    def execute(self, args: Sequence[str]) -> None: ...

    def read_staged(self, name: str) -> bytes: ...

    def unstage(self, name: str) -> None: ...

    def dispose(self) -> None: ...


def _stderr_tail(stderr: Optional[str]) -> str:
    if not stderr:
        return ""
    lines = [line for line in stderr.strip().splitlines() if line.strip()]
    return "\n".join(lines[-STDERR_TAIL_LINES:])


class FfmpegEngine:
    """Runs ffmpeg against a private, flat staging directory.

    Not re-entrant: a second ``execute`` while one is outstanding raises
    ``EngineError``.
    """

    def __init__(self, ffmpeg_bin: str, work_dir: Optional[Path] = None) -> None:
        self.ffmpeg_bin = ffmpeg_bin
        self.work_dir = work_dir
        self.staging_dir: Optional[Path] = None
        self._executing = threading.Lock()

    @property
    def loaded(self) -> bool:
        return self.staging_dir is not None

    def load(self) -> None:
        if self.loaded:
            return
        try:
            run_subprocess([self.ffmpeg_bin, "-version"], capture_output=True)
        except (OSError, subprocess.CalledProcessError) as exc:
            raise EngineError(f"Unable to start ffmpeg at {self.ffmpeg_bin}: {exc}") from exc

        try:
            if self.work_dir is not None:
                self.work_dir.mkdir(parents=True, exist_ok=True)
                staging = tempfile.mkdtemp(prefix="staging_", dir=self.work_dir)
            else:
                staging = tempfile.mkdtemp(prefix="av_merge_staging_")
        except OSError as exc:
            raise EngineError(f"Unable to create staging area: {exc}") from exc
        self.staging_dir = Path(staging)

    def _path_for(self, name: str) -> Path:
        if self.staging_dir is None:
            raise EngineError("Engine is not loaded.")
        if not name or Path(name).name != name or name in (".", ".."):
            raise EngineError(f"Staged names must be flat file names, got {name!r}.")
        return self.staging_dir / name

    def stage(self, name: str, data: bytes) -> None:
        path = self._path_for(name)
        try:
            path.write_bytes(data)
        except OSError as exc:
            raise EngineError(f"Failed to stage {name}: {exc}") from exc

    def execute(self, args: Sequence[str]) -> None:
        if self.staging_dir is None:
            raise EngineError("Engine is not loaded.")
        if not self._executing.acquire(blocking=False):
            raise EngineError("Engine is already executing a job.")
        try:
            cmd = [self.ffmpeg_bin, *ENGINE_GLOBAL_FLAGS, *args]
            result = run_subprocess(cmd, check=False, capture_output=True, cwd=self.staging_dir)
        except (OSError, ValueError) as exc:
            raise EngineError(f"Failed to run ffmpeg: {exc}") from exc
        finally:
            self._executing.release()

        if result.returncode != 0:
            detail = _stderr_tail(result.stderr)
            message = f"ffmpeg exited with status {result.returncode}"
            raise EngineError(f"{message}:\n{detail}" if detail else message)

    def read_staged(self, name: str) -> bytes:
        path = self._path_for(name)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise EngineError(f"Failed to read {name}: {exc}") from exc

    def unstage(self, name: str) -> None:
        path = self._path_for(name)
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise EngineError(f"Failed to remove {name}: {exc}") from exc

    def dispose(self) -> None:
        if self.staging_dir is None:
            return
        shutil.rmtree(self.staging_dir, ignore_errors=True)
        self.staging_dir = None

    def __enter__(self) -> FfmpegEngine:
        self.load()
        return self

    def __exit__(self, *exc_info) -> None:
        self.dispose()
