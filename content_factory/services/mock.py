"""Deterministic, network-free stand-ins for the generation and upload providers."""

from __future__ import annotations

import hashlib
import itertools
import logging
import threading

from ..errors import RunCancelled
from ..models import GenerationRequest, GenerationResult, PublishRequest, UploadedOutcome
from .upload import build_video_body

logger = logging.getLogger(__name__)

MOCK_ASSET_URL = "https://storage.googleapis.com/gtv-videos-bucket/sample/ForBiggerFun.mp4"


def _digest(*parts: object) -> str:
    joined = "|".join("" if part is None else str(part) for part in parts)
    return hashlib.sha1(joined.encode("utf-8")).hexdigest()[:12]


class MockProvider:
    """Produces structurally valid results so the pipeline runs without credentials.

    Identifiers derive from the request content plus a per-instance sequence,
    so two fresh providers fed the same requests yield the same ids while
    repeated submissions within one provider stay unique.
    """

    def __init__(self) -> None:
        self._sequence = itertools.count(1)
        self._lock = threading.Lock()

    def _next(self) -> int:
        with self._lock:
            return next(self._sequence)

    def generate(self, req: GenerationRequest, *, cancel_event: threading.Event | None = None) -> GenerationResult:
        if cancel_event is not None and cancel_event.is_set():
            raise RunCancelled("Generation cancelled before submission.")
        seq = self._next()
        digest = _digest(req.prompt, req.aspect_ratio, req.duration_seconds, req.style_preset, req.negative_prompt)
        job_id = f"mock-{digest}-{seq}"
        logger.info("Mock generation produced job %s", job_id)
        return GenerationResult(
            job_id=job_id,
            asset_location=MOCK_ASSET_URL,
            metadata={
                "mock": True,
                "provider": "mock",
                "aspect_ratio": req.aspect_ratio,
                "duration_seconds": req.duration_seconds,
                "prompt": req.provider_prompt(),
                "mime_type": "video/mp4",
            },
            status="completed",
        )

    def upload(self, asset: GenerationResult, publish: PublishRequest) -> UploadedOutcome:
        video_id = f"mock-{_digest(asset.job_id, publish.title)}"
        status = build_video_body(publish)["status"]
        logger.info("Mock upload produced video %s", video_id)
        return UploadedOutcome(
            video_id=video_id,
            visibility=status["privacyStatus"],
            publish_at=publish.publish_at if "publishAt" in status else None,
            url=f"https://youtu.be/{video_id}",
            mock=True,
        )
