#!/usr/bin/env python3
"""
Audio/video merger.

Renders one vertical video per audio track: the base video's picture with a
window of each track, cut to the video's length.
"""

from __future__ import annotations

import argparse
import json
import subprocess
import sys
import time
from collections import Counter
from pathlib import Path
from typing import Optional, Sequence

from opentelemetry import trace
from tqdm import tqdm

from cli import parse_args, parse_track_arg, resolve_output_dir, validate_runtime_args
from engine import FfmpegEngine
from jobs import EncodeProfile, build_job_args, plan_jobs
from media import MergeSession, load_audio_candidate, load_base_media
from orchestrator import FailurePolicy, RenderOrchestrator, RenderReport, RenderResult, RunState
from toolchain import Toolchain, init_tracing, progress_write, resolve_toolchain


def format_time(seconds: float) -> str:
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = seconds % 60
    if hours:
        return f"{hours}h {minutes}m {secs:.1f}s"
    if minutes:
        return f"{minutes}m {secs:.1f}s"
    return f"{secs:.1f}s"


def build_session(args: argparse.Namespace, toolchain: Toolchain) -> MergeSession:
    """Probe the inputs and collect every usable track, warning about the rest."""
    input_video = Path(args.input_video).expanduser().resolve()
    if not input_video.is_file():
        raise FileNotFoundError(f"Input video not found: {input_video}")

    base = load_base_media(toolchain.ffprobe, input_video)
    session = MergeSession(base=base, min_video_duration=args.min_video_duration)

    for raw in args.audio:
        audio_path, offset = parse_track_arg(raw)
        if not audio_path.is_file():
            progress_write(f"Warning: Audio file not found, skipping: {audio_path}")
            continue
        try:
            track = session.add_track(load_audio_candidate(toolchain.ffprobe, audio_path))
        except (ValueError, RuntimeError, subprocess.CalledProcessError) as exc:
            progress_write(f"Warning: Skipping {audio_path.name}: {exc}")
            continue
        if offset is None:
            continue
        try:
            session.update_track_offset(track.id, offset)
        except ValueError as exc:
            progress_write(f"Warning: {exc} Skipping.")
            session.remove_track(track.id)

    if not session.tracks:
        raise ValueError("No usable audio tracks. Each must be longer than the video.")
    return session


def build_profile(args: argparse.Namespace) -> EncodeProfile:
    return EncodeProfile(preset=args.preset, crf=args.crf)


def serialize_plan(session: MergeSession, args: argparse.Namespace) -> dict[str, object]:
    profile = build_profile(args)
    jobs = plan_jobs(session.base, session.tracks, max_dim=args.max_dim)
    return {
        "video": {
            "path": str(session.base.source),
            "width": session.base.width,
            "height": session.base.height,
            "duration_seconds": session.base.duration,
        },
        "directive": {
            "kind": jobs[0].directive.kind.value,
            "filter": jobs[0].directive.to_filter(),
        },
        "jobs": [
            {
                "index": job.index,
                "track_id": job.track.id,
                "track": job.track.name,
                "start_offset": job.start_offset,
                "args": build_job_args(job, session.base.duration, profile),
            }
            for job in jobs
        ],
    }


def run_plan_only(args: argparse.Namespace) -> int:
    """Print the job plan as clean JSON without touching the engine."""
    validate_runtime_args(args)
    toolchain = resolve_toolchain(args.ffmpeg_path, args.ffprobe_path)
    session = build_session(args, toolchain)
    print(json.dumps(serialize_plan(session, args), indent=2))
    return 0


def output_filenames(results: list[RenderResult]) -> list[str]:
    """Suggested file names, with the track id appended where two would collide."""
    counts = Counter(result.suggested_filename() for result in results)
    names = []
    for result in results:
        name = result.suggested_filename()
        if counts[name] > 1:
            name = f"{Path(name).stem}-{result.track_id}.mp4"
        names.append(name)
    return names


def print_report(report: RenderReport, written: list[Path], elapsed: float) -> None:
    print("=" * 60)
    print("Complete!")
    print(f"Rendered: {len(report.results)} of {report.total}")
    print(f"Total time: {format_time(elapsed)}")
    for path in written:
        size_mb = path.stat().st_size / (1024 * 1024)
        print(f"  {path} ({size_mb:.1f} MB)")
    for failure in report.failures:
        print(
            f"  FAILED {failure.index + 1}: {failure.track_name} "
            f"({type(failure.error).__name__}: {failure.error})"
        )
    print("=" * 60 + "\n")


def run_pipeline(args: argparse.Namespace) -> int:
    validate_runtime_args(args)
    toolchain = resolve_toolchain(args.ffmpeg_path, args.ffprobe_path)
    session = build_session(args, toolchain)
    input_video = Path(args.input_video).expanduser().resolve()
    output_dir = resolve_output_dir(input_video, args.output_dir)
    work_dir = Path(args.work_dir).expanduser().resolve() if args.work_dir else None

    print("\n" + "=" * 60)
    print("Audio/Video Merger")
    print("=" * 60)
    print(f"Input:  {input_video}")
    print(f"  Resolution: {session.base.width}x{session.base.height}")
    print(f"  Duration:   {session.base.duration:.1f}s")
    print(f"Tracks: {len(session.tracks)}")
    for track in session.tracks:
        print(f"  {track.name} @ {track.start_offset:.2f}s")
    print(f"Output: {output_dir}")
    print(f"Encode: {args.preset}, crf {args.crf}, max {args.max_dim}px")
    print(f"Failure policy: {args.failure_policy}")
    print("=" * 60 + "\n")

    engine = FfmpegEngine(toolchain.ffmpeg, work_dir=work_dir)
    orchestrator = RenderOrchestrator(
        engine,
        profile=build_profile(args),
        failure_policy=FailurePolicy(args.failure_policy),
        max_dim=args.max_dim,
    )

    total_start = time.time()
    session.rendering = True
    try:
        with tqdm(total=len(session.tracks), desc="Rendering", unit="video") as bar:
            def on_progress(attempted: int, _total: int) -> None:
                bar.update(attempted - bar.n)

            report = orchestrator.run(session.base, session.tracks, on_progress=on_progress)
    finally:
        session.rendering = False
        orchestrator.dispose()

    if report.state is RunState.FAILED:
        print(f"Error: {report.cause}", file=sys.stderr)
        print("The video may be too heavy for the engine. Check the input and try again.", file=sys.stderr)
        return 1

    session.results = list(report.results)
    output_dir.mkdir(parents=True, exist_ok=True)
    written = [
        result.write_to(output_dir, name)
        for result, name in zip(session.results, output_filenames(session.results))
    ]
    print_report(report, written, time.time() - total_start)
    if report.failures:
        return 2
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    raw_argv = list(argv) if argv is not None else sys.argv[1:]
    args = parse_args(raw_argv)
    if args.trace:
        init_tracing(args.trace)
    # The root span opens after init_tracing so it reaches the configured provider.
    try:
        with trace.get_tracer(__name__).start_as_current_span("main"):
            if args.plan_only:
                return run_plan_only(args)
            return run_pipeline(args)
    except KeyboardInterrupt:
        print("Interrupted by user.", file=sys.stderr)
        return 130
    except Exception as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
