"""Content factory orchestration: generate a video, then optionally publish it."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from pydantic import ValidationError

from .config import AppConfig
from .errors import ContentFactoryError, GenerationFailed, ValidationFailed
from .logging_utils import log_event
from .models import (
    ASPECT_RATIOS,
    ContentFactoryRequest,
    FailedOutcome,
    GenerationRequest,
    GenerationResult,
    PipelineResult,
    PublishRequest,
    SkippedOutcome,
    SkipReason,
    UploadedOutcome,
    UploadOutcome,
    clamp_duration,
    normalize_tags,
)
from .services.generation import GenerationClient
from .services.mock import MockProvider
from .services.upload import UploadClient

logger = logging.getLogger(__name__)

MAX_BATCH_SIZE = 10
MOCK_MODE_HINT = (
    "Pipeline is running in mock mode. Provide VEO credentials to enable real video output and YouTube uploads."
)


class Generator(Protocol):
    def generate(self, req: GenerationRequest, *, cancel_event: threading.Event | None = None) -> GenerationResult:
        ...


class Uploader(Protocol):
    def upload(self, asset: GenerationResult, publish: PublishRequest) -> UploadedOutcome:
        ...


def _skipped(reason: SkipReason) -> SkippedOutcome:
    log_event(logger, logging.INFO, "pipeline.upload_skipped", reason=reason)
    return SkippedOutcome(reason=reason)


class ContentFactoryPipeline:
    """Sequence one generation job and its optional YouTube upload.

    Mock versus live mode is derived from the injected :class:`AppConfig`
    once per run and applies to both legs. Live clients are built eagerly
    when their credentials are configured; either can be replaced by
    passing ``generator`` or ``uploader``.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        generator: Generator | None = None,
        uploader: Uploader | None = None,
        mock: MockProvider | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.config = config
        self._mock = mock or MockProvider()
        self._generator = generator
        if self._generator is None and config.has_generation_credentials:
            self._generator = GenerationClient(config)
        self._uploader = uploader
        if self._uploader is None and config.has_youtube_credentials:
            self._uploader = UploadClient(config)
        self._clock = clock

    def run(self, request: ContentFactoryRequest, *, cancel_event: threading.Event | None = None) -> PipelineResult:
        """Execute one run; raises a classified error if generation does not succeed."""
        started = self._clock()
        generation_request, publish_request = self._normalize(request)
        mock_mode = self.config.uses_mock_generation or self._generator is None
        generator: Generator = self._mock if mock_mode else self._generator

        log_event(
            logger,
            logging.INFO,
            "pipeline.run_started",
            mode="mock" if mock_mode else "live",
            aspect_ratio=generation_request.aspect_ratio,
            duration_seconds=generation_request.duration_seconds,
            upload_requested=request.upload_to_youtube,
        )

        try:
            video = generator.generate(generation_request, cancel_event=cancel_event)
        except ContentFactoryError as exc:
            log_event(logger, logging.ERROR, "pipeline.generation_failed", category=exc.category, error=exc.message)
            raise
        except Exception as exc:
            logger.exception("Unexpected generation error")
            raise GenerationFailed(f"Unexpected generation error: {exc}") from exc
        log_event(logger, logging.INFO, "pipeline.generation_completed", job_id=video.job_id, mock=video.is_mock)

        youtube = self._publish(request, video, publish_request, mock_mode, cancel_event)

        duration_ms = round((self._clock() - started) * 1000, 2)
        log_event(
            logger,
            logging.INFO,
            "pipeline.run_completed",
            job_id=video.job_id,
            youtube=youtube.status if youtube else None,
            duration_ms=duration_ms,
        )
        return PipelineResult(video=video, youtube=youtube, duration_ms=duration_ms)

    # ------------------------------------------------------------------ #
    # Steps
    # ------------------------------------------------------------------ #

    def _normalize(self, request: ContentFactoryRequest) -> tuple[GenerationRequest, PublishRequest]:
        if request.aspect_ratio not in ASPECT_RATIOS:
            raise ValidationFailed(
                f"Unsupported aspect ratio {request.aspect_ratio!r}.",
                detail={"allowed": list(ASPECT_RATIOS)},
            )
        duration = clamp_duration(request.duration_seconds)
        if duration != request.duration_seconds:
            logger.warning("Clamped duration %ss to %ss", request.duration_seconds, duration)

        try:
            generation_request = GenerationRequest(
                prompt=request.prompt.strip(),
                aspect_ratio=request.aspect_ratio,
                duration_seconds=duration,
                negative_prompt=request.negative_prompt,
                style_preset=request.style_preset,
                audio_prompt=request.audio_prompt,
                keep_local_file=request.keep_local_file,
            )
            publish_request = PublishRequest(
                title=request.title.strip(),
                description=request.description.strip(),
                tags=normalize_tags(request.tags),
                visibility=request.visibility or self.config.youtube_default_visibility,
                publish_at=request.publish_at,
                category_id=self.config.youtube_category_id,
            )
        except ValidationError as exc:
            raise ValidationFailed("Request failed validation.", detail=exc.errors(include_url=False)) from exc
        return generation_request, publish_request

    def _publish(
        self,
        request: ContentFactoryRequest,
        video: GenerationResult,
        publish: PublishRequest,
        mock_mode: bool,
        cancel_event: threading.Event | None,
    ) -> UploadOutcome:
        if not request.upload_to_youtube:
            return _skipped("not requested")
        if video.status != "completed":
            return _skipped("generation incomplete")
        if cancel_event is not None and cancel_event.is_set():
            return _skipped("cancelled")

        uploader: Optional[Uploader] = self._uploader
        if mock_mode:
            if not self.config.mock_simulate_upload:
                logger.info(MOCK_MODE_HINT)
                return _skipped("mock mode")
            uploader = self._mock
        elif uploader is None:
            return _skipped("missing credentials")

        try:
            return uploader.upload(video, publish)
        except ContentFactoryError as exc:
            log_event(logger, logging.ERROR, "pipeline.upload_failed", category=exc.category, error=exc.message)
            return FailedOutcome(cause=exc.message, error_type=exc.category, detail=exc.detail)
        except Exception as exc:
            logger.exception("Unexpected upload error for job %s", video.job_id)
            return FailedOutcome(cause=str(exc) or type(exc).__name__, error_type=type(exc).__name__)


@dataclass(frozen=True, slots=True)
class BatchItem:
    """Outcome of one run inside a sequential batch."""

    index: int
    title: str
    result: PipelineResult | None = None
    error: ContentFactoryError | None = None

    @property
    def ok(self) -> bool:
        return self.result is not None


def run_batch(
    pipeline: ContentFactoryPipeline,
    request: ContentFactoryRequest,
    count: int,
    *,
    cancel_event: threading.Event | None = None,
    on_item: Callable[[BatchItem], None] | None = None,
) -> list[BatchItem]:
    """Run ``count`` independent pipeline runs strictly one after another.

    ``count`` is clamped to ``[1, MAX_BATCH_SIZE]``. When more than one run is
    requested each title gets a ``#n`` suffix. A failed run is recorded and
    the batch moves on.
    """
    total = min(max(int(count), 1), MAX_BATCH_SIZE)
    items: list[BatchItem] = []
    for index in range(1, total + 1):
        if cancel_event is not None and cancel_event.is_set():
            log_event(logger, logging.WARNING, "batch.cancelled", completed=len(items), total=total)
            break
        title = f"{request.title.strip()} #{index}" if total > 1 else request.title.strip()
        run_request = request.model_copy(update={"title": title})
        try:
            result = pipeline.run(run_request, cancel_event=cancel_event)
        except ContentFactoryError as exc:
            item = BatchItem(index=index, title=title, error=exc)
        else:
            item = BatchItem(index=index, title=title, result=result)
        items.append(item)
        if on_item is not None:
            on_item(item)
    return items
