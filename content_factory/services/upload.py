"""YouTube upload client built on the YouTube Data API."""

from __future__ import annotations

import io
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload, MediaIoBaseUpload
from httplib2 import HttpLib2Error

from ..config import AppConfig
from ..errors import AuthFailed, ConfigurationMissing, UploadFailed, ValidationFailed
from ..logging_utils import log_event
from ..models import GenerationResult, PublishRequest, UploadedOutcome
from ..utils.secrets import secret_value

logger = logging.getLogger(__name__)

YOUTUBE_UPLOAD_SCOPE = "https://www.googleapis.com/auth/youtube.upload"
UPLOAD_CHUNK_SIZE = 8 * 1024 * 1024
MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 5000

ServiceFactory = Callable[[Credentials], Any]


def _build_service(credentials: Credentials) -> Any:
    return build("youtube", "v3", credentials=credentials, cache_discovery=False)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def build_video_body(publish: PublishRequest, *, now: datetime | None = None) -> dict[str, Any]:
    """Translate a publish request into a ``videos.insert`` resource body.

    A future ``publish_at`` creates the video as private with a scheduled
    publish time; YouTube flips it to public once the schedule elapses. A
    schedule that is already in the past is ignored and the requested
    visibility applies immediately.
    """
    status: dict[str, Any] = {
        "privacyStatus": publish.visibility,
        "selfDeclaredMadeForKids": False,
    }
    current = now or _utc_now()
    if publish.publish_at is not None and publish.publish_at > current:
        status["privacyStatus"] = "private"
        status["publishAt"] = publish.publish_at.isoformat().replace("+00:00", "Z")
    elif publish.publish_at is not None:
        logger.warning("publish_at %s is in the past; publishing immediately.", publish.publish_at.isoformat())

    return {
        "snippet": {
            "title": publish.title[:MAX_TITLE_LENGTH],
            "description": publish.description[:MAX_DESCRIPTION_LENGTH],
            "tags": list(publish.tags),
            "categoryId": publish.category_id,
        },
        "status": status,
    }


class UploadClient:
    """Upload handler that wraps the YouTube Data API.

    The OAuth credentials are cached for the lifetime of the client and may
    be shared across sequential runs. Refresh is serialized behind a lock so
    concurrent callers never race two token exchanges.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        service_factory: ServiceFactory | None = None,
        request_factory: Callable[[], Any] = GoogleRequest,
        now: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.config = config
        self._credentials = self._build_credentials()
        self._service_factory = service_factory or _build_service
        self._request_factory = request_factory
        self._now = now
        self._lock = threading.Lock()

    def _build_credentials(self) -> Credentials:
        client_id = secret_value(self.config.youtube_client_id)
        client_secret = secret_value(self.config.youtube_client_secret)
        refresh_token = secret_value(self.config.youtube_refresh_token)
        if not all([client_id, client_secret, refresh_token]):
            raise ConfigurationMissing("YouTube OAuth credentials incomplete; uploads disabled.")
        return Credentials(
            token=secret_value(self.config.youtube_access_token),
            refresh_token=refresh_token,
            token_uri=self.config.youtube_token_uri,
            client_id=client_id,
            client_secret=client_secret,
            scopes=[YOUTUBE_UPLOAD_SCOPE],
        )

    def access_credentials(self) -> Credentials:
        """Return credentials holding an unexpired access token, refreshing if needed."""
        with self._lock:
            if not self._credentials.valid:
                logger.debug("YouTube access token absent or expired; refreshing.")
                try:
                    self._credentials.refresh(self._request_factory())
                except (RefreshError, TransportError) as exc:
                    raise AuthFailed("YouTube token refresh was rejected.", detail=str(exc)) from exc
                log_event(logger, logging.INFO, "upload.token_refreshed", expiry=self._credentials.expiry)
            return self._credentials

    def upload(self, asset: GenerationResult, publish: PublishRequest) -> UploadedOutcome:
        """Upload ``asset`` once with ``publish`` metadata; failures are classified, not retried."""
        media = self._media_for(asset)
        body = build_video_body(publish, now=self._now())
        credentials = self.access_credentials()
        service = self._service_factory(credentials)

        try:
            request = service.videos().insert(part="snippet,status", body=body, media_body=media)
            response = request.execute()
        except HttpError as exc:
            raise _classify_http_error(exc) from exc
        except RefreshError as exc:
            raise AuthFailed("YouTube rejected the access token during upload.", detail=str(exc)) from exc
        except (HttpLib2Error, TransportError, OSError) as exc:
            raise UploadFailed(f"YouTube upload interrupted: {exc}") from exc

        video_id = (response or {}).get("id")
        if not video_id:
            raise UploadFailed("YouTube accepted the upload but returned no video id.", detail=response)

        visibility = body["status"]["privacyStatus"]
        log_event(
            logger,
            logging.INFO,
            "upload.completed",
            video_id=video_id,
            visibility=visibility,
            publish_at=body["status"].get("publishAt"),
        )
        return UploadedOutcome(
            video_id=video_id,
            visibility=visibility,
            publish_at=publish.publish_at if "publishAt" in body["status"] else None,
            url=f"https://youtu.be/{video_id}",
        )

    @staticmethod
    def _media_for(asset: GenerationResult) -> MediaFileUpload | MediaIoBaseUpload:
        mimetype = asset.metadata.get("mime_type", "video/mp4")
        if asset.local_path and Path(asset.local_path).exists():
            return MediaFileUpload(asset.local_path, mimetype=mimetype, chunksize=UPLOAD_CHUNK_SIZE, resumable=True)
        if asset.asset_bytes:
            return MediaIoBaseUpload(
                io.BytesIO(asset.asset_bytes),
                mimetype=mimetype,
                chunksize=UPLOAD_CHUNK_SIZE,
                resumable=True,
            )
        raise ValidationFailed(
            f"Generated asset {asset.job_id} has no uploadable payload.",
            detail={"asset_location": asset.asset_location},
        )


def _classify_http_error(exc: HttpError) -> AuthFailed | ValidationFailed | UploadFailed:
    status = getattr(exc.resp, "status", None)
    detail = _http_error_detail(exc)
    if status in (401, 403):
        return AuthFailed(f"YouTube denied the upload (HTTP {status}).", detail=detail)
    if status == 400:
        return ValidationFailed("YouTube rejected the video metadata (HTTP 400).", detail=detail)
    return UploadFailed(f"YouTube upload failed (HTTP {status}).", detail=detail)


def _http_error_detail(exc: HttpError) -> Any:
    content = exc.content.decode("utf-8", errors="replace") if isinstance(exc.content, bytes) else exc.content
    try:
        payload = json.loads(content)
    except (TypeError, ValueError):
        return content
    return payload.get("error", payload) if isinstance(payload, dict) else payload
