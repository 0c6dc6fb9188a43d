"""Structured logging for pipeline runs: JSON file output, readable console, masked secrets."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler
from typing import Any, Iterable

from pydantic import SecretStr

from .config import AppConfig
from .utils.secrets import redact, secret_value

CONSOLE_FORMAT = "%(asctime)s | %(levelname)s | %(mode)s | %(name)s | %(message)s"
QUIET_LOGGERS = {
    "googleapiclient.discovery_cache": logging.ERROR,
    "googleapiclient.http": logging.WARNING,
    "urllib3": logging.WARNING,
}

_RESERVED = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "environment", "event", "mode"}


def _extra_fields(record: logging.LogRecord) -> dict[str, Any]:
    return {key: value for key, value in vars(record).items() if key not in _RESERVED}


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra=`` fields are promoted to top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": getattr(record, "event", record.funcName),
            "environment": getattr(record, "environment", "unknown"),
            "mode": getattr(record, "mode", "unknown"),
            "message": record.getMessage(),
        }
        payload.update(_extra_fields(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class ContextFilter(logging.Filter):
    """Stamps the deployment environment and pipeline mode onto each record."""

    def __init__(self, environment: str, mode: str) -> None:
        super().__init__()
        self._environment = environment
        self._mode = mode

    def filter(self, record: logging.LogRecord) -> bool:
        record.environment = self._environment
        record.mode = self._mode
        record.event = getattr(record, "event", record.funcName)
        return True


class RedactingFilter(logging.Filter):
    """Masks provider credentials that leak into messages or arguments."""

    def __init__(self, secrets: Iterable[SecretStr | str | None]) -> None:
        super().__init__()
        self._secrets = [value for value in (secret_value(secret) for secret in secrets) if value]

    def filter(self, record: logging.LogRecord) -> bool:
        if self._secrets:
            record.msg = redact(record.getMessage(), *self._secrets)
            record.args = None
        return True


def _config_secrets(config: AppConfig) -> list[SecretStr | None]:
    return [
        config.veo_api_key,
        config.youtube_client_secret,
        config.youtube_refresh_token,
        config.youtube_access_token,
    ]


def _console_handler(filters: list[logging.Filter]) -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    for item in filters:
        handler.addFilter(item)
    return handler


def _file_handler(config: AppConfig, filters: list[logging.Filter]) -> logging.Handler:
    config.log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        filename=str(config.log_path),
        when="midnight",
        backupCount=14,
        utc=True,
        encoding="utf-8",
    )
    handler.setFormatter(JsonFormatter())
    for item in filters:
        handler.addFilter(item)
    return handler


def configure_logging(config: AppConfig, *, verbose: bool = False) -> None:
    """Replace root handlers with a console stream and a daily-rotated JSON file."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if verbose or config.environment == "development" else logging.INFO)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    filters: list[logging.Filter] = [
        RedactingFilter(_config_secrets(config)),
        ContextFilter(config.environment, "mock" if config.uses_mock_generation else "live"),
    ]
    root.addHandler(_console_handler(filters))
    root.addHandler(_file_handler(config, filters))

    for name, level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    """Emit a compact JSON event line; the event name is also attached to the record."""
    payload = {"event": event, **fields}
    logger.log(level, json.dumps(payload, default=str, separators=(",", ":")), extra={"event": event})
