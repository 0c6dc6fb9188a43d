"""Tests for the YouTube UploadClient."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import httplib2
import pytest
from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaFileUpload, MediaIoBaseUpload

from content_factory.errors import AuthFailed, ConfigurationMissing, UploadFailed, ValidationFailed
from content_factory.models import GenerationResult, PublishRequest
from content_factory.services.upload import UploadClient, build_video_body

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def _fake_refresh(self, request):
    self.token = "fresh-token"
    self.expiry = None


@pytest.fixture
def upload_config(make_config, youtube_credentials):
    return make_config(**youtube_credentials)


@pytest.fixture
def service():
    svc = MagicMock()
    svc.videos.return_value.insert.return_value.execute.return_value = {"id": "yt123"}
    return svc


@pytest.fixture
def asset():
    return GenerationResult(job_id="op1", asset_location="https://x/op1.mp4", metadata={"mock": False}, asset_bytes=b"video")


def _publish(**overrides) -> PublishRequest:
    values = {
        "title": "Beagle vs Bubbles",
        "description": "A beagle meets a bubble machine.",
        "tags": ["#beagle", "Shorts"],
        "visibility": "public",
    }
    values.update(overrides)
    return PublishRequest(**values)


def _client(config, service) -> UploadClient:
    return UploadClient(config, service_factory=lambda credentials: service, request_factory=MagicMock, now=lambda: NOW)


class TestBuildVideoBody:
    """Tests for the videos.insert resource body."""

    def test_immediate_publish_maps_visibility(self):
        body = build_video_body(_publish(visibility="unlisted"), now=NOW)
        assert body["status"] == {"privacyStatus": "unlisted", "selfDeclaredMadeForKids": False}
        assert body["snippet"]["tags"] == ["beagle", "Shorts"]
        assert body["snippet"]["categoryId"] == "15"

    def test_future_schedule_overrides_visibility(self):
        """A scheduled video stays private until publishAt, whatever the requested visibility."""
        body = build_video_body(_publish(visibility="public", publish_at="2026-02-01T09:30:00+01:00"), now=NOW)
        assert body["status"]["privacyStatus"] == "private"
        assert body["status"]["publishAt"] == "2026-02-01T08:30:00Z"

    def test_past_schedule_publishes_immediately(self):
        body = build_video_body(_publish(visibility="public", publish_at="2025-06-01T00:00:00Z"), now=NOW)
        assert body["status"]["privacyStatus"] == "public"
        assert "publishAt" not in body["status"]

    def test_long_title_is_truncated(self):
        body = build_video_body(_publish(title="x" * 150), now=NOW)
        assert len(body["snippet"]["title"]) == 100


class TestUpload:
    """Tests for UploadClient.upload."""

    def test_refreshes_token_then_uploads(self, upload_config, service, asset):
        """With no cached access token the refresh runs before the insert call."""
        with patch.object(Credentials, "refresh", autospec=True, side_effect=_fake_refresh) as refresh:
            outcome = _client(upload_config, service).upload(asset, _publish())

        refresh.assert_called_once()
        assert outcome.status == "uploaded"
        assert outcome.video_id == "yt123"
        assert outcome.visibility == "public"
        assert outcome.url == "https://youtu.be/yt123"
        kwargs = service.videos.return_value.insert.call_args.kwargs
        assert kwargs["part"] == "snippet,status"
        assert kwargs["body"]["snippet"]["title"] == "Beagle vs Bubbles"
        assert isinstance(kwargs["media_body"], MediaIoBaseUpload)

    def test_cached_token_is_reused(self, make_config, youtube_credentials, service, asset):
        config = make_config(youtube_access_token="cached", **youtube_credentials)
        with patch.object(Credentials, "refresh", autospec=True) as refresh:
            client = _client(config, service)
            client.upload(asset, _publish())
            client.upload(asset, _publish())

        refresh.assert_not_called()

    def test_local_file_is_preferred(self, upload_config, service, tmp_path):
        video = tmp_path / "op1.mp4"
        video.write_bytes(b"local")
        asset = GenerationResult(job_id="op1", asset_location=str(video), metadata={"local_path": str(video)})

        with patch.object(Credentials, "refresh", autospec=True, side_effect=_fake_refresh):
            _client(upload_config, service).upload(asset, _publish())

        assert isinstance(service.videos.return_value.insert.call_args.kwargs["media_body"], MediaFileUpload)

    def test_scheduled_outcome_reports_private(self, upload_config, service, asset):
        with patch.object(Credentials, "refresh", autospec=True, side_effect=_fake_refresh):
            outcome = _client(upload_config, service).upload(asset, _publish(publish_at="2026-03-01T00:00:00Z"))

        assert outcome.visibility == "private"
        assert outcome.publish_at == datetime(2026, 3, 1, tzinfo=timezone.utc)
        body = service.videos.return_value.insert.call_args.kwargs["body"]
        assert body["status"]["publishAt"] == "2026-03-01T00:00:00Z"

    def test_asset_without_payload_is_rejected_before_upload(self, upload_config, service):
        asset = GenerationResult(job_id="op1", asset_location="gs://bucket/op1.mp4")

        with pytest.raises(ValidationFailed):
            _client(upload_config, service).upload(asset, _publish())

        service.videos.assert_not_called()


class TestFailureClassification:
    """Tests mapping provider failures to the error taxonomy."""

    def test_refresh_rejected_is_auth_failed(self, upload_config, service, asset):
        with patch.object(Credentials, "refresh", autospec=True, side_effect=RefreshError("invalid_grant")):
            with pytest.raises(AuthFailed):
                _client(upload_config, service).upload(asset, _publish())

        service.videos.assert_not_called()

    @pytest.mark.parametrize(
        ("status", "expected"),
        [(401, AuthFailed), (403, AuthFailed), (400, ValidationFailed), (500, UploadFailed), (503, UploadFailed)],
    )
    def test_http_errors(self, upload_config, service, asset, status, expected):
        content = b'{"error": {"code": %d, "message": "nope", "errors": [{"reason": "quotaExceeded"}]}}' % status
        service.videos.return_value.insert.return_value.execute.side_effect = HttpError(
            httplib2.Response({"status": status}), content
        )

        with patch.object(Credentials, "refresh", autospec=True, side_effect=_fake_refresh):
            with pytest.raises(expected) as exc_info:
                _client(upload_config, service).upload(asset, _publish())

        assert exc_info.value.detail["message"] == "nope"
        assert service.videos.return_value.insert.return_value.execute.call_count == 1

    def test_network_error_is_upload_failed(self, upload_config, service, asset):
        service.videos.return_value.insert.return_value.execute.side_effect = ConnectionResetError("reset")

        with patch.object(Credentials, "refresh", autospec=True, side_effect=_fake_refresh):
            with pytest.raises(UploadFailed):
                _client(upload_config, service).upload(asset, _publish())

    def test_missing_video_id_is_upload_failed(self, upload_config, service, asset):
        service.videos.return_value.insert.return_value.execute.return_value = {}

        with patch.object(Credentials, "refresh", autospec=True, side_effect=_fake_refresh):
            with pytest.raises(UploadFailed):
                _client(upload_config, service).upload(asset, _publish())


class TestCredentials:
    """Tests for credential construction and refresh serialization."""

    def test_incomplete_credentials_raise(self, make_config):
        with pytest.raises(ConfigurationMissing):
            UploadClient(make_config(youtube_client_id="id"))

    def test_concurrent_callers_refresh_once(self, upload_config, service):
        """Parallel token requests share one refresh and the resulting token."""
        calls = []

        def _slow_refresh(self, request):
            calls.append(1)
            self.token = f"token-{len(calls)}"
            self.expiry = None

        client = _client(upload_config, service)
        tokens: list[str] = []
        with patch.object(Credentials, "refresh", autospec=True, side_effect=_slow_refresh):
            threads = [threading.Thread(target=lambda: tokens.append(client.access_credentials().token)) for _ in range(5)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        assert len(calls) == 1
        assert tokens == ["token-1"] * 5
