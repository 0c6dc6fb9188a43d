"""Command line entry point for the dog-first AI content factory."""

from __future__ import annotations

import argparse
import json
import logging
import os
import signal
import socket
import threading
import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from types import FrameType
from typing import Any, Sequence

from pydantic import ValidationError

from content_factory.config import AppConfig, ConfigError, load_config
from content_factory.logging_utils import configure_logging
from content_factory.models import ContentFactoryPayload, parse_hashtags
from content_factory.pipeline import MOCK_MODE_HINT, BatchItem, ContentFactoryPipeline, run_batch

LOGGER = logging.getLogger(__name__)

DEFAULT_PROMPT = (
    "An energetic golden retriever puppy sprinting through a sunlit dog park, bounding over obstacles "
    "and chasing a bright red frisbee in cinematic slow motion."
)
DEFAULT_TITLE = "Ultimate Dog Park Dash"
DEFAULT_DESCRIPTION = (
    "Watch this adorable pup tear up the dog park! Like, share, and subscribe for more tail-wagging shorts."
)
DEFAULT_HASHTAGS = "#dogshorts #dogsoftiktok #doglover"


@dataclass(frozen=True, slots=True)
class RunContext:
    """Captures immutable metadata for a single CLI invocation."""

    trace_id: str
    instance_id: str
    wall_clock_ns: int

    @property
    def started_at_iso(self) -> str:
        """Return the ISO8601 timestamp (UTC) for when the run began."""
        seconds = self.wall_clock_ns / 1_000_000_000
        return datetime.fromtimestamp(seconds, tz=timezone.utc).isoformat().replace("+00:00", "Z")


def _build_run_context() -> RunContext:
    trace_id = os.getenv("CONTENT_FACTORY_TRACE_ID") or uuid.uuid4().hex
    instance_id = os.getenv("CONTENT_FACTORY_INSTANCE_ID") or socket.gethostname()
    return RunContext(trace_id=trace_id, instance_id=instance_id, wall_clock_ns=time.time_ns())


def _log_event(level: int, event: str, context: RunContext, **fields: Any) -> None:
    """Emit structured JSON logs with consistent tracing metadata."""
    payload: dict[str, Any] = {
        "event": event,
        "trace_id": context.trace_id,
        "instance_id": context.instance_id,
        "started_at": context.started_at_iso,
        **fields,
    }
    LOGGER.log(level, json.dumps(payload, default=str, separators=(",", ":")))


def _emit_metric(name: str, value: float, unit: str, context: RunContext, **labels: Any) -> None:
    """Record lightweight metrics via structured logs for downstream scraping."""
    _log_event(logging.INFO, "metric", context, metric_name=name, value=value, unit=unit, **labels)


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Generate a Veo video and optionally publish it to YouTube.")
    p.add_argument("--payload", type=Path, help="JSON request file; overrides the individual flags")
    p.add_argument("--prompt", default=DEFAULT_PROMPT)
    p.add_argument("--title", default=DEFAULT_TITLE, help="Batch runs append #1, #2, ...")
    p.add_argument("--description", default=DEFAULT_DESCRIPTION)
    p.add_argument("--hashtags", default=DEFAULT_HASHTAGS, help="Comma or space separated; # is stripped")
    p.add_argument("--aspect-ratio", default="9:16", choices=["9:16", "16:9", "1:1"])
    p.add_argument("--duration", type=int, default=15, help="Seconds, 3-120")
    p.add_argument("--negative-prompt")
    p.add_argument("--style-preset")
    p.add_argument("--audio-prompt")
    p.add_argument("--visibility", choices=["public", "private", "unlisted"])
    p.add_argument("--publish-at", help="ISO-8601 timestamp for a scheduled publish")
    p.add_argument("--upload", action="store_true", help="Upload the finished video to YouTube")
    p.add_argument("--keep-local-file", action="store_true")
    p.add_argument("--batch", type=int, default=1, help="Number of sequential runs (1-10)")
    p.add_argument("--env-file", type=Path)
    p.add_argument("--json", action="store_true", help="Print results as JSON instead of an activity log")
    p.add_argument("--verbose", action="store_true")
    return p.parse_args(argv)


def _build_payload(args: argparse.Namespace) -> ContentFactoryPayload:
    if args.payload is not None:
        return ContentFactoryPayload.model_validate_json(args.payload.read_text(encoding="utf-8"))
    return ContentFactoryPayload.model_validate(
        {
            "prompt": args.prompt,
            "aspectRatio": args.aspect_ratio,
            "durationSeconds": args.duration,
            "negativePrompt": args.negative_prompt,
            "stylePreset": args.style_preset,
            "audioPrompt": args.audio_prompt,
            "title": args.title.strip(),
            "description": args.description,
            "tags": parse_hashtags(args.hashtags),
            "visibility": args.visibility,
            "publishAt": args.publish_at,
            "uploadToYoutube": args.upload,
            "keepLocalFile": args.keep_local_file,
        }
    )


def _activity_lines(item: BatchItem, total: int, upload_requested: bool) -> list[str]:
    """Render one batch item the way the web activity log does."""
    label = f"Batch {item.index}/{total}" if total > 1 else "Run"
    if item.error is not None:
        return [f"[error] {label}: {item.error.message}"]

    result = item.result
    lines = [f"[success] {label}: Video generation completed (job {result.video.job_id})."]
    youtube = result.youtube
    if result.video.is_mock and upload_requested and youtube is not None and youtube.status == "skipped":
        lines.append(f"[info] {MOCK_MODE_HINT}")
    if youtube is None:
        return lines
    if youtube.status == "uploaded":
        lines.append(f"[success] {label}: Uploaded to YouTube (visibility: {youtube.visibility}) {youtube.url}")
    elif youtube.status == "failed":
        lines.append(f"[error] {label}: YouTube upload failed: {youtube.cause}")
    else:
        lines.append(f"[info] {label}: YouTube upload skipped: {youtube.reason}")
    return lines


def _item_payload(item: BatchItem) -> dict[str, Any]:
    if item.error is not None:
        return {"index": item.index, "title": item.title, **item.error.to_payload()}
    return {"index": item.index, "title": item.title, **item.result.to_payload()}


def main(argv: Sequence[str] | None = None) -> int:
    """Bootstrap configuration, run the batch, and report each run."""
    args = _parse_args(argv)
    context = _build_run_context()

    try:
        config = load_config(args.env_file)
    except ConfigError as exc:
        print(f"[error] {exc}")
        return 2
    configure_logging(config, verbose=args.verbose)

    try:
        payload = _build_payload(args)
    except OSError as exc:
        print(json.dumps({"ok": False, "error": f"Cannot read payload file: {exc}"}))
        return 2
    except ValidationError as exc:
        print(json.dumps({"ok": False, "error": "Validation failed.", "details": exc.errors(include_url=False)}, default=str))
        return 2

    cancel_event = threading.Event()

    def _handle_signal(signum: int, frame: FrameType | None) -> None:
        _log_event(logging.WARNING, "factory.signal_received", context, signal=signum)
        cancel_event.set()

    previous_handler = None
    if threading.current_thread() is threading.main_thread():
        previous_handler = signal.signal(signal.SIGTERM, _handle_signal)

    try:
        return _run(args, config, payload, context, cancel_event)
    finally:
        if previous_handler is not None:
            signal.signal(signal.SIGTERM, previous_handler)


def _run(
    args: argparse.Namespace,
    config: AppConfig,
    payload: ContentFactoryPayload,
    context: RunContext,
    cancel_event: threading.Event,
) -> int:
    total = min(max(args.batch, 1), 10)
    pipeline = ContentFactoryPipeline(config)
    _log_event(logging.INFO, "factory.batch_start", context, runs=total, mock=config.uses_mock_generation)

    def _report(item: BatchItem) -> None:
        if args.json:
            return
        for line in _activity_lines(item, total, payload.upload_to_youtube):
            print(line)

    start_ns = time.perf_counter_ns()
    try:
        items = run_batch(pipeline, payload, total, cancel_event=cancel_event, on_item=_report)
    except KeyboardInterrupt:
        cancel_event.set()
        _log_event(logging.WARNING, "factory.interrupted", context, signal="SIGINT")
        return 130

    runtime_ms = (time.perf_counter_ns() - start_ns) / 1_000_000
    failures = sum(1 for item in items if not item.ok)
    _emit_metric("batch_duration_ms", runtime_ms, "milliseconds", context, runs=len(items), failures=failures)

    if args.json:
        print(json.dumps([_item_payload(item) for item in items], indent=2, default=str))
    return 1 if failures else 0


if __name__ == "__main__":
    raise SystemExit(main())
