"""Veo video generation client: submit, poll, and resolve a long-running job."""

from __future__ import annotations

import base64
import logging
import threading
import time
from typing import Any, Callable

import requests
from tenacity import Retrying, RetryCallState, retry_if_exception_type, stop_after_attempt, wait_exponential
from tenacity.stop import stop_base

from ..config import AppConfig
from ..errors import ConfigurationMissing, GenerationFailed, GenerationTimeout, RunCancelled
from ..logging_utils import log_event
from ..models import GenerationRequest, GenerationResult
from ..utils.secrets import redact, secret_value

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleeper = Callable[[float], None]

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})
VIDEO_SUFFIX = ".mp4"


class _TransientProviderError(Exception):
    """Status or download call failed in a way worth one more attempt."""

    def __init__(self, message: str, detail: Any | None = None) -> None:
        super().__init__(message)
        self.detail = detail


class _StopAtDeadline(stop_base):
    """Stop retrying once the next backoff would run past the poll deadline."""

    def __init__(self, deadline: float, clock: Clock, backoff: Callable[[RetryCallState], float]) -> None:
        self.deadline = deadline
        self.clock = clock
        self.backoff = backoff
        self.triggered = False

    def __call__(self, retry_state: RetryCallState) -> bool:
        if self.deadline - self.clock() <= self.backoff(retry_state):
            self.triggered = True
        return self.triggered


class GenerationClient:
    """Drive one Veo ``predictLongRunning`` job to a downloadable asset.

    Two addressing modes are supported. With only an API key the Gemini API
    endpoints are used; when a Google Cloud project id is configured the
    Vertex AI publisher model endpoints are used instead and the key is sent
    as a bearer token.

    ``poll_timeout_seconds`` is a hard ceiling: poll waits, retry backoff and
    per-request timeouts are all cut to the time left before the deadline.
    Waits return early when the run's cancel event is set. ``clock`` and
    ``sleep`` are injectable so the poll loop can be driven by a fake clock
    in tests; an injected ``sleep`` replaces the cancel-aware wait.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        session: requests.Session | None = None,
        clock: Clock = time.monotonic,
        sleep: Sleeper | None = None,
        status_attempts: int = 3,
    ) -> None:
        api_key = secret_value(config.veo_api_key)
        if not api_key:
            raise ConfigurationMissing("VEO_API_KEY is not configured; Veo generation is unavailable.")
        self.config = config
        self._api_key = api_key
        self._session = session or requests.Session()
        self._clock = clock
        self._sleep = sleep
        self._status_attempts = max(1, status_attempts)

    # ------------------------------------------------------------------ #
    # Endpoints
    # ------------------------------------------------------------------ #

    @property
    def uses_vertex(self) -> bool:
        return bool(self.config.veo_project_id)

    def _model_url(self) -> str:
        if self.uses_vertex:
            location = self.config.veo_location
            return (
                f"https://{location}-aiplatform.googleapis.com/v1/projects/{self.config.veo_project_id}"
                f"/locations/{location}/publishers/google/models/{self.config.veo_model}"
            )
        return f"{self.config.veo_api_url}/models/{self.config.veo_model}"

    def _headers(self) -> dict[str, str]:
        if self.uses_vertex:
            return {"Authorization": f"Bearer {self._api_key}"}
        return {"x-goog-api-key": self._api_key}

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def generate(self, req: GenerationRequest, *, cancel_event: threading.Event | None = None) -> GenerationResult:
        """Submit ``req`` and block until the job completes, fails, or times out."""
        _raise_if_cancelled(cancel_event, "before submission")
        operation = self._submit(req)
        name = operation.get("name")
        if not name:
            raise GenerationFailed("Veo did not return an operation name.", detail=operation)
        log_event(logger, logging.INFO, "generation.submitted", operation=name, model=self.config.veo_model)

        polls = 0
        if not operation.get("done"):
            operation, polls = self._wait_for(name, cancel_event)
        return self._resolve(req, name, operation, polls)

    # ------------------------------------------------------------------ #
    # Submission and polling
    # ------------------------------------------------------------------ #

    def _submit(self, req: GenerationRequest) -> dict[str, Any]:
        parameters: dict[str, Any] = {
            "aspectRatio": req.aspect_ratio,
            "durationSeconds": req.duration_seconds,
            "sampleCount": 1,
        }
        if req.negative_prompt:
            parameters["negativePrompt"] = req.negative_prompt
        body = {"instances": [{"prompt": req.provider_prompt()}], "parameters": parameters}

        url = f"{self._model_url()}:predictLongRunning"
        try:
            response = self._session.post(
                url,
                json=body,
                headers=self._headers(),
                timeout=self.config.request_timeout_seconds,
            )
        except requests.RequestException as exc:
            raise GenerationFailed(f"Veo request failed: {self._redact(str(exc))}") from exc

        if response.status_code >= 400:
            raise GenerationFailed(
                f"Veo rejected the generation request (HTTP {response.status_code}).",
                detail=_error_detail(response),
            )
        return _json_body(response)

    def _wait_for(self, name: str, cancel_event: threading.Event | None) -> tuple[dict[str, Any], int]:
        """Poll with capped exponential backoff until done or the budget elapses."""
        deadline = self._clock() + self.config.poll_timeout_seconds
        interval = self.config.poll_interval_seconds
        polls = 0
        while True:
            _raise_if_cancelled(cancel_event, "while polling")
            remaining = self._remaining(deadline, name, polls)
            self._pause(min(interval, remaining), cancel_event)
            _raise_if_cancelled(cancel_event, "while polling")
            self._remaining(deadline, name, polls)

            operation = self._fetch_operation(name, deadline, cancel_event)
            polls += 1
            if operation.get("done"):
                return operation, polls
            logger.debug("Veo job %s still running after %d polls", name, polls)
            interval = min(interval * 2, self.config.poll_max_interval_seconds)

    def _remaining(self, deadline: float, name: str, polls: int | None = None) -> float:
        """Seconds left before ``deadline``; raises GenerationTimeout once it has passed."""
        remaining = deadline - self._clock()
        if remaining <= 0:
            detail: dict[str, Any] = {"operation": name}
            if polls is not None:
                detail["polls"] = polls
            raise GenerationTimeout(
                f"Veo job {name} did not finish within {self.config.poll_timeout_seconds:g}s.",
                detail=detail,
            )
        return remaining

    def _pause(self, seconds: float, cancel_event: threading.Event | None) -> None:
        if self._sleep is not None:
            self._sleep(seconds)
        elif cancel_event is not None:
            cancel_event.wait(seconds)
        else:
            time.sleep(seconds)

    def _fetch_operation(self, name: str, deadline: float, cancel_event: threading.Event | None) -> dict[str, Any]:
        return self._with_transient_retry(
            self._fetch_operation_once,
            name,
            deadline,
            cancel_event,
            deadline=deadline,
            cancel_event=cancel_event,
        )

    def _fetch_operation_once(self, name: str, deadline: float, cancel_event: threading.Event | None) -> dict[str, Any]:
        _raise_if_cancelled(cancel_event, "while polling")
        timeout = min(self.config.request_timeout_seconds, self._remaining(deadline, name))
        try:
            if self.uses_vertex:
                response = self._session.post(
                    f"{self._model_url()}:fetchPredictOperation",
                    json={"operationName": name},
                    headers=self._headers(),
                    timeout=timeout,
                )
            else:
                response = self._session.get(
                    f"{self.config.veo_api_url}/{name}",
                    headers=self._headers(),
                    timeout=timeout,
                )
        except requests.RequestException as exc:
            raise _TransientProviderError(f"Veo status request failed: {self._redact(str(exc))}") from exc

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise _TransientProviderError(
                f"Veo status endpoint returned HTTP {response.status_code}.",
                detail=_error_detail(response),
            )
        if response.status_code >= 400:
            raise GenerationFailed(
                f"Veo status lookup failed (HTTP {response.status_code}).",
                detail=_error_detail(response),
            )
        return _json_body(response)

    def _with_transient_retry(
        self,
        func: Callable[..., Any],
        *args: Any,
        deadline: float | None = None,
        cancel_event: threading.Event | None = None,
    ) -> Any:
        backoff = wait_exponential(multiplier=1, max=10)
        stop = stop_after_attempt(self._status_attempts)
        out_of_time = None
        if deadline is not None:
            out_of_time = _StopAtDeadline(deadline, self._clock, backoff)
            stop = stop | out_of_time
        retryer = Retrying(
            stop=stop,
            wait=backoff,
            retry=retry_if_exception_type(_TransientProviderError),
            sleep=lambda seconds: self._pause(seconds, cancel_event),
            reraise=True,
        )
        try:
            return retryer(func, *args)
        except _TransientProviderError as exc:
            if out_of_time is not None and out_of_time.triggered:
                raise GenerationTimeout(
                    f"Veo time budget ran out while retrying: {exc}",
                    detail={"last_error": exc.detail},
                ) from exc
            raise GenerationFailed(str(exc), detail=exc.detail) from exc

    # ------------------------------------------------------------------ #
    # Result resolution
    # ------------------------------------------------------------------ #

    def _resolve(self, req: GenerationRequest, name: str, operation: dict[str, Any], polls: int) -> GenerationResult:
        error = operation.get("error")
        if error:
            message = error.get("message", "unknown error") if isinstance(error, dict) else str(error)
            raise GenerationFailed(f"Veo reported failure: {message}", detail=error)

        response = operation.get("response") or {}
        samples = _extract_samples(response)
        if not samples:
            raise GenerationFailed(
                "Veo finished without returning a video.",
                detail={"operation": name, "filtered_reasons": _filtered_reasons(response)},
            )

        sample = samples[0]
        job_id = name.rsplit("/", 1)[-1]
        content: bytes | None = None
        location = sample.get("gcsUri") or sample.get("uri") or f"veo://{name}"

        if sample.get("bytesBase64Encoded"):
            content = base64.b64decode(sample["bytesBase64Encoded"])
        elif sample.get("uri"):
            content = self._with_transient_retry(self._download_once, sample["uri"])

        metadata: dict[str, Any] = {
            "mock": False,
            "provider": "vertex-veo" if self.uses_vertex else "gemini-veo",
            "model": self.config.veo_model,
            "operation": name,
            "aspect_ratio": req.aspect_ratio,
            "duration_seconds": req.duration_seconds,
            "mime_type": sample.get("mimeType", "video/mp4"),
            "polls": polls,
        }
        if sample.get("uri") or sample.get("gcsUri"):
            metadata["source_uri"] = sample.get("uri") or sample.get("gcsUri")

        if content is not None and req.keep_local_file:
            destination = self.config.output_dir / f"{job_id}{VIDEO_SUFFIX}"
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(content)
            metadata["local_path"] = str(destination)
            location = str(destination)
            logger.info("Saved Veo output to %s", destination)

        log_event(logger, logging.INFO, "generation.completed", operation=name, polls=polls, bytes=len(content or b""))
        return GenerationResult(
            job_id=job_id,
            asset_location=location,
            metadata=metadata,
            status="completed",
            asset_bytes=content,
        )

    def _download_once(self, uri: str) -> bytes:
        try:
            response = self._session.get(
                uri,
                headers=self._headers(),
                timeout=self.config.request_timeout_seconds,
                allow_redirects=True,
            )
        except requests.RequestException as exc:
            raise _TransientProviderError(f"Veo asset download failed: {self._redact(str(exc))}") from exc
        if response.status_code in RETRYABLE_STATUS_CODES:
            raise _TransientProviderError(f"Veo asset download returned HTTP {response.status_code}.")
        if response.status_code >= 400:
            raise GenerationFailed(
                f"Veo asset download failed (HTTP {response.status_code}).",
                detail=_error_detail(response),
            )
        return response.content

    def _redact(self, text: str) -> str:
        return redact(text, self._api_key)


def _raise_if_cancelled(cancel_event: threading.Event | None, stage: str) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise RunCancelled(f"Generation cancelled {stage}.")


def _extract_samples(response: dict[str, Any]) -> list[dict[str, Any]]:
    """Normalize Gemini API and Vertex AI response shapes into a list of samples."""
    gemini = response.get("generateVideoResponse") or {}
    samples: list[dict[str, Any]] = []
    for item in gemini.get("generatedSamples") or []:
        video = item.get("video") or {}
        if video:
            samples.append(video)
    for video in response.get("videos") or []:
        if video:
            samples.append(video)
    return samples


def _filtered_reasons(response: dict[str, Any]) -> list[str]:
    gemini = response.get("generateVideoResponse") or {}
    return list(response.get("raiMediaFilteredReasons") or gemini.get("raiMediaFilteredReasons") or [])


def _json_body(response: requests.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise GenerationFailed("Veo returned a non-JSON response.", detail=response.text[:500]) from exc
    if not isinstance(payload, dict):
        raise GenerationFailed("Veo returned an unexpected payload.", detail=payload)
    return payload


def _error_detail(response: requests.Response) -> Any:
    try:
        payload = response.json()
    except ValueError:
        return response.text[:500]
    if isinstance(payload, dict) and "error" in payload:
        return payload["error"]
    return payload
