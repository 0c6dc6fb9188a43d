"""Classified failures raised by the pipeline and its provider clients."""

from __future__ import annotations

from typing import Any


class ContentFactoryError(RuntimeError):
    """Base class for every classified pipeline failure."""

    category = "ContentFactoryError"

    def __init__(self, message: str, *, detail: Any | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail

    def to_payload(self) -> dict[str, Any]:
        """Render the outbound error shape consumed by the caller."""
        payload: dict[str, Any] = {"ok": False, "error": self.message, "category": self.category}
        if self.detail is not None:
            payload["details"] = self.detail
        return payload


class ValidationFailed(ContentFactoryError):
    """Bad input reached the core despite boundary validation."""

    category = "ValidationFailed"


class GenerationFailed(ContentFactoryError):
    """The generation provider rejected or errored the job."""

    category = "GenerationFailed"


class GenerationTimeout(GenerationFailed):
    """The polling budget elapsed before the job reached a terminal state."""

    category = "GenerationTimeout"


class AuthFailed(ContentFactoryError):
    """Token acquisition, refresh, quota or permission failure on the upload provider."""

    category = "AuthFailed"


class UploadFailed(ContentFactoryError):
    """Transient or provider-side upload error; the caller may retry the upload leg."""

    category = "UploadFailed"


class ConfigurationMissing(ContentFactoryError):
    """A required credential is absent and no fallback applies."""

    category = "ConfigurationMissing"


class RunCancelled(ContentFactoryError):
    """The caller abandoned the run; observed at the next suspension point."""

    category = "RunCancelled"


__all__ = [
    "AuthFailed",
    "ConfigurationMissing",
    "ContentFactoryError",
    "GenerationFailed",
    "GenerationTimeout",
    "RunCancelled",
    "UploadFailed",
    "ValidationFailed",
]
