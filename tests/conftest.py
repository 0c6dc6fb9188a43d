"""Shared test fixtures for the content factory."""

from __future__ import annotations

from typing import Any, Callable

import pytest

from content_factory.config import AppConfig
from content_factory.models import ContentFactoryRequest

_ENV_VARS = (
    "APP_ENVIRONMENT",
    "APP_ENV",
    "APP_LOG_PATH",
    "LOG_PATH",
    "APP_OUTPUT_DIR",
    "VIDEO_OUT_DIR",
    "MOCK_PIPELINE",
    "APP_MOCK_PIPELINE",
    "MOCK_SIMULATE_UPLOAD",
    "VEO_API_KEY",
    "GEMINI_API_KEY",
    "VEO_API_URL",
    "VEO_MODEL",
    "VEO_PROJECT_ID",
    "GOOGLE_CLOUD_PROJECT",
    "VEO_LOCATION",
    "VEO_REGION",
    "VEO_POLL_INTERVAL",
    "VEO_POLL_MAX_INTERVAL",
    "VEO_POLL_TIMEOUT",
    "VEO_REQUEST_TIMEOUT",
    "YOUTUBE_CLIENT_ID",
    "YOUTUBE_CLIENT_SECRET",
    "YOUTUBE_REFRESH_TOKEN",
    "YOUTUBE_ACCESS_TOKEN",
    "YOUTUBE_TOKEN_URI",
    "YOUTUBE_DEFAULT_VISIBILITY",
    "YOUTUBE_CATEGORY_ID",
)


@pytest.fixture(autouse=True)
def _isolate_environment(tmp_path, monkeypatch):
    """Keep the developer's real credentials and .env out of every test."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def youtube_credentials() -> dict[str, str]:
    return {
        "youtube_client_id": "client-id",
        "youtube_client_secret": "client-secret",
        "youtube_refresh_token": "refresh-token",
    }


@pytest.fixture
def make_config(tmp_path) -> Callable[..., AppConfig]:
    """Build an AppConfig rooted in the test's temp directory."""

    def _make(**overrides: Any) -> AppConfig:
        values: dict[str, Any] = {
            "log_path": tmp_path / "logs" / "test.log",
            "output_dir": tmp_path / "videos",
            "poll_interval_seconds": 1.0,
            "poll_max_interval_seconds": 4.0,
            "poll_timeout_seconds": 30.0,
        }
        values.update(overrides)
        return AppConfig(_env_file=None, **values)

    return _make


@pytest.fixture
def make_request() -> Callable[..., ContentFactoryRequest]:
    """Build a valid core request with overridable fields."""

    def _make(**overrides: Any) -> ContentFactoryRequest:
        values: dict[str, Any] = {
            "prompt": "A corgi surfing a small wave at sunset",
            "title": "Corgi Surf Session",
            "description": "A corgi catches the best wave of the summer.",
            "tags": ["#dog", "dog", "Shorts"],
        }
        values.update(overrides)
        return ContentFactoryRequest(**values)

    return _make


class FakeClock:
    """Monotonic clock whose time only advances through ``sleep``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
