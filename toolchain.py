"""Toolchain: ffmpeg binary resolution, subprocess wrapper, progress output and tracing."""

from __future__ import annotations

import functools
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from tqdm import tqdm

DEFAULT_TRACE_ENDPOINT = "http://localhost:4318/v1/traces"

_tracing_initialized = False


@dataclass(frozen=True)
class Toolchain:
    ffmpeg: str
    ffprobe: str


def progress_write(message: str) -> None:
    """Write a progress message without breaking an active tqdm bar."""
    tqdm.write(message)


def run_subprocess(
    cmd: Sequence[str],
    *,
    check: bool = True,
    capture_output: bool = False,
    timeout: Optional[float] = None,
    cwd: Optional[Path] = None,
) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [str(part) for part in cmd],
        check=check,
        capture_output=capture_output,
        text=True,
        errors="replace",
        timeout=timeout,
        cwd=str(cwd) if cwd is not None else None,
    )


def init_tracing(endpoint: str = DEFAULT_TRACE_ENDPOINT) -> None:
    """Configure the OpenTelemetry tracer provider to export spans over OTLP/HTTP."""
    global _tracing_initialized
    if _tracing_initialized:
        return

    resource = Resource.create({"service.name": "audio-video-merger"})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(provider)
    _tracing_initialized = True


def _traced(func):
    """Decorator that wraps a function call in a tracing span.

    Without ``init_tracing()`` the global provider is the no-op one, so spans
    cost nothing.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        tracer = trace.get_tracer(func.__module__)
        with tracer.start_as_current_span(func.__qualname__):
            return func(*args, **kwargs)

    return wrapper


def resolve_binary(name: str, custom_path: Optional[str]) -> str:
    """Resolve a binary from an explicit path or from PATH."""
    if custom_path:
        candidate = Path(custom_path).expanduser().resolve()
        if not candidate.is_file():
            raise FileNotFoundError(f"{name} binary not found at: {candidate}")
        return str(candidate)

    found = shutil.which(name)
    if not found:
        raise FileNotFoundError(
            f"Missing required dependency: {name}. "
            "Install with Homebrew (macOS) or your system package manager."
        )
    return found


def resolve_toolchain(
    ffmpeg_path: Optional[str] = None,
    ffprobe_path: Optional[str] = None,
) -> Toolchain:
    """Resolve runtime binaries and raise clear dependency errors."""
    missing = []
    resolved: dict[str, str] = {}
    for name, custom in (("ffmpeg", ffmpeg_path), ("ffprobe", ffprobe_path)):
        try:
            resolved[name] = resolve_binary(name, custom)
        except FileNotFoundError:
            if custom:
                raise
            missing.append(name)

    if missing:
        raise FileNotFoundError(
            f"Missing required dependency: {', '.join(missing)}. "
            "Install with Homebrew (macOS) or your system package manager."
        )

    return Toolchain(ffmpeg=resolved["ffmpeg"], ffprobe=resolved["ffprobe"])
