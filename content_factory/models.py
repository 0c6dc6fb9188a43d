"""Request, result, and outcome models shared by the pipeline and its providers."""

from __future__ import annotations

import re
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Annotated, Any, Iterable, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_serializer, field_validator
from pydantic.alias_generators import to_camel

AspectRatio = Literal["9:16", "16:9", "1:1"]
Visibility = Literal["public", "private", "unlisted"]
SkipReason = Literal["not requested", "mock mode", "missing credentials", "generation incomplete", "cancelled"]

ASPECT_RATIOS: tuple[str, ...] = ("9:16", "16:9", "1:1")
MIN_DURATION_SECONDS = 3
MAX_DURATION_SECONDS = 120
DEFAULT_DURATION_SECONDS = 15
DEFAULT_ASPECT_RATIO: AspectRatio = "9:16"

_HASHTAG_SPLIT = re.compile(r"[,\s]+")


def clamp_duration(value: int | float | str) -> int:
    """Clamp a requested duration into the provider's supported window."""
    seconds = int(float(value))
    return min(max(seconds, MIN_DURATION_SECONDS), MAX_DURATION_SECONDS)


def normalize_tags(tags: Iterable[str] | None) -> list[str]:
    """Strip whitespace and leading ``#`` and drop duplicates, keeping first-seen order."""
    if not tags:
        return []
    cleaned = (tag.strip().lstrip("#").strip() for tag in tags)
    return [tag for tag in dict.fromkeys(cleaned) if tag]


def parse_hashtags(raw: str | None) -> list[str]:
    """Split a comma or whitespace separated hashtag string into YouTube tags."""
    if not raw:
        return []
    return normalize_tags(_HASHTAG_SPLIT.split(raw))


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class _CamelModel(BaseModel):
    """Accept and emit the camelCase keys used by the web client."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _FrozenCamelModel(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# --------------------------------------------------------------------------- #
# Inbound
# --------------------------------------------------------------------------- #


class ContentFactoryRequest(_CamelModel):
    """A single content run as handed to the pipeline core.

    Duration is deliberately unbounded here; the pipeline clamps it before
    dispatch. Use :class:`ContentFactoryPayload` for strict boundary checks.
    """

    prompt: str = Field(min_length=1)
    aspect_ratio: str = DEFAULT_ASPECT_RATIO
    duration_seconds: int = DEFAULT_DURATION_SECONDS
    negative_prompt: Optional[str] = None
    style_preset: Optional[str] = None
    audio_prompt: Optional[str] = None
    title: str = Field(min_length=3)
    description: str = Field(min_length=10)
    tags: list[str] = Field(default_factory=list)
    publish_at: Optional[datetime] = None
    visibility: Optional[Visibility] = None
    upload_to_youtube: bool = False
    keep_local_file: bool = False

    @field_validator("negative_prompt", "style_preset", "audio_prompt", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("publish_at", mode="before")
    @classmethod
    def _blank_publish_at(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class ContentFactoryPayload(ContentFactoryRequest):
    """Boundary schema for raw JSON payloads (mirrors the web form contract)."""

    prompt: str = Field(min_length=5)
    aspect_ratio: AspectRatio = DEFAULT_ASPECT_RATIO
    duration_seconds: int = Field(DEFAULT_DURATION_SECONDS, ge=MIN_DURATION_SECONDS, le=MAX_DURATION_SECONDS)
    tags: list[Annotated[str, StringConstraints(min_length=1)]] = Field(default_factory=list)


# --------------------------------------------------------------------------- #
# Generation
# --------------------------------------------------------------------------- #


class GenerationRequest(_FrozenCamelModel):
    """Normalized generation parameters submitted to the video provider."""

    prompt: str = Field(min_length=1)
    aspect_ratio: AspectRatio = DEFAULT_ASPECT_RATIO
    duration_seconds: int = Field(DEFAULT_DURATION_SECONDS, ge=MIN_DURATION_SECONDS, le=MAX_DURATION_SECONDS)
    negative_prompt: Optional[str] = None
    style_preset: Optional[str] = None
    audio_prompt: Optional[str] = None
    keep_local_file: bool = False

    def provider_prompt(self) -> str:
        """Fold the style and audio hints into the text prompt."""
        parts = [self.prompt.strip()]
        if self.style_preset:
            parts.append(f"Style: {self.style_preset.strip()}.")
        if self.audio_prompt:
            parts.append(f"Audio: {self.audio_prompt.strip()}.")
        return " ".join(parts)


class GenerationResult(_FrozenCamelModel):
    """Asset descriptor produced by a completed (or failed) generation job.

    ``metadata`` is copied into a read-only mapping so a returned result
    cannot be changed by its callers.
    """

    job_id: str
    asset_location: str
    metadata: Mapping[str, Any] = Field(default_factory=dict, validate_default=True)
    status: Literal["completed", "failed"] = "completed"
    asset_bytes: Optional[bytes] = Field(default=None, exclude=True, repr=False)

    @field_validator("metadata", mode="after")
    @classmethod
    def _freeze_metadata(cls, value: Mapping[str, Any]) -> Mapping[str, Any]:
        return MappingProxyType(dict(value))

    @field_serializer("metadata")
    def _serialize_metadata(self, value: Mapping[str, Any]) -> dict[str, Any]:
        return dict(value)

    @property
    def is_mock(self) -> bool:
        return bool(self.metadata.get("mock"))

    @property
    def local_path(self) -> Optional[str]:
        return self.metadata.get("local_path")


# --------------------------------------------------------------------------- #
# Publishing
# --------------------------------------------------------------------------- #


class PublishRequest(_FrozenCamelModel):
    """Metadata applied to the uploaded video."""

    title: str = Field(min_length=3)
    description: str = Field(min_length=10)
    tags: list[str] = Field(default_factory=list)
    visibility: Visibility = "unlisted"
    publish_at: Optional[datetime] = None
    category_id: str = "15"

    @field_validator("tags", mode="after")
    @classmethod
    def _normalize_tags(cls, value: list[str]) -> list[str]:
        return normalize_tags(value)

    @field_validator("publish_at", mode="after")
    @classmethod
    def _publish_at_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @property
    def is_scheduled(self) -> bool:
        return self.publish_at is not None


class UploadedOutcome(_FrozenCamelModel):
    status: Literal["uploaded"] = "uploaded"
    video_id: str
    visibility: Visibility
    publish_at: Optional[datetime] = None
    url: str
    mock: bool = False


class SkippedOutcome(_FrozenCamelModel):
    status: Literal["skipped"] = "skipped"
    reason: SkipReason


class FailedOutcome(_FrozenCamelModel):
    status: Literal["failed"] = "failed"
    cause: str
    error_type: str
    detail: Any = None


UploadOutcome = Annotated[
    Union[UploadedOutcome, SkippedOutcome, FailedOutcome],
    Field(discriminator="status"),
]


class PipelineResult(_FrozenCamelModel):
    """The single aggregated object returned by one pipeline run."""

    video: GenerationResult
    youtube: Optional[UploadOutcome] = None
    duration_ms: float

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the caller using the web client's camelCase keys."""
        return {"ok": True, "result": self.model_dump(mode="json", by_alias=True)}


__all__ = [
    "ASPECT_RATIOS",
    "AspectRatio",
    "ContentFactoryPayload",
    "ContentFactoryRequest",
    "FailedOutcome",
    "GenerationRequest",
    "GenerationResult",
    "PipelineResult",
    "PublishRequest",
    "SkipReason",
    "SkippedOutcome",
    "UploadOutcome",
    "UploadedOutcome",
    "Visibility",
    "clamp_duration",
    "normalize_tags",
    "parse_hashtags",
]
