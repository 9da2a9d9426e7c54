"""Pipeline, step and run data models."""

from __future__ import annotations

import enum
from dataclasses import dataclass, fields
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

StepKind = Literal["clean", "summarise", "translate", "tone", "chunk", "queue"]
STEP_KINDS: tuple[str, ...] = ("clean", "summarise", "translate", "tone", "chunk", "queue")

VoicePreference = Literal["history", "default", "custom"]
SourceType = Literal["import", "url", "manual"]

DEFAULT_MAX_SEGMENT_CHARACTERS = 1600


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class WireModel(BaseModel):
    """Base model speaking camelCase JSON while exposing snake_case attributes."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    def to_wire(self) -> Dict[str, Any]:
        """Serialize to the JSON shape used on the API and in storage."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ----------------------------------------------------------------------
# Step options, one model per kind


class CleanOptions(WireModel):
    preserve_quotes: Optional[bool] = None
    normalise_whitespace: bool = True
    strip_bullets: bool = False


class SummariseOptions(WireModel):
    bullet_count: int = Field(default=3, ge=1)
    include_keywords: bool = False
    style: Literal["bullets", "paragraph"] = "bullets"


class TranslateOptions(WireModel):
    target_language: str = Field(min_length=1)
    keep_original: bool = False


class ToneOptions(WireModel):
    tone: Literal["neutral", "friendly", "formal", "dramatic"]
    audience_hint: Optional[str] = None


class ChunkOptions(WireModel):
    strategy: Literal["paragraph", "sentence"] = "paragraph"
    max_characters: int = Field(default=DEFAULT_MAX_SEGMENT_CHARACTERS, gt=0)
    join_short_segments: bool = False


class QueueOptions(WireModel):
    provider: str = Field(min_length=1)
    voice_preference: VoicePreference
    voice_id: Optional[str] = None
    segment_delay_ms: Optional[int] = Field(default=None, ge=0)


# ----------------------------------------------------------------------
# Steps


class _StepBase(WireModel):
    id: str = Field(min_length=1)
    label: Optional[str] = None


class CleanStep(_StepBase):
    kind: Literal["clean"] = "clean"
    options: CleanOptions


class SummariseStep(_StepBase):
    kind: Literal["summarise"] = "summarise"
    options: SummariseOptions


class TranslateStep(_StepBase):
    kind: Literal["translate"] = "translate"
    options: TranslateOptions


class ToneStep(_StepBase):
    kind: Literal["tone"] = "tone"
    options: ToneOptions


class ChunkStep(_StepBase):
    kind: Literal["chunk"] = "chunk"
    options: ChunkOptions


class QueueStep(_StepBase):
    kind: Literal["queue"] = "queue"
    options: QueueOptions


Step = Annotated[
    Union[CleanStep, SummariseStep, TranslateStep, ToneStep, ChunkStep, QueueStep],
    Field(discriminator="kind"),
]


# ----------------------------------------------------------------------
# Pipelines


class ScheduleConfig(WireModel):
    """Informational trigger metadata for an external scheduler."""

    cron: str = Field(min_length=1)
    description: Optional[str] = None


class SourceConfig(WireModel):
    """Fallback content origin used when a webhook supplies nothing."""

    kind: Literal["url"] = "url"
    value: str = Field(min_length=1)


class PipelineDefinition(WireModel):
    """A named, persisted, ordered workflow of steps."""

    id: str
    name: str = Field(min_length=1)
    description: Optional[str] = None
    steps: List[Step] = Field(min_length=1)
    created_at: str
    updated_at: str
    webhook_secret: str
    schedule: Optional[ScheduleConfig] = None
    default_source: Optional[SourceConfig] = None
    last_run_at: Optional[str] = None


class PipelineListItem(WireModel):
    """Summary row returned by ``list``; never carries steps or the secret."""

    id: str
    name: str
    description: Optional[str] = None
    schedule: Optional[ScheduleConfig] = None
    last_run_at: Optional[str] = None


class PipelineCreate(WireModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    steps: List[Step] = Field(min_length=1)
    schedule: Optional[ScheduleConfig] = None
    default_source: Optional[SourceConfig] = None


class _Unset(enum.Enum):
    UNSET = "UNSET"

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset.UNSET
"""Marker for a patch field that was not supplied and must stay unchanged."""


def is_set(value: Any) -> bool:
    return value is not UNSET


@dataclass(frozen=True)
class PipelineUpdate:
    """Partial update with three states per field.

    ``UNSET`` leaves the stored value alone, ``None`` clears it (where the
    field is clearable) and any other value replaces it.
    """

    name: Union[str, _Unset] = UNSET
    description: Union[str, None, _Unset] = UNSET
    steps: Union[List[Step], _Unset] = UNSET
    schedule: Union[ScheduleConfig, None, _Unset] = UNSET
    default_source: Union[SourceConfig, None, _Unset] = UNSET
    rotate_secret: Union[bool, _Unset] = UNSET

    def is_empty(self) -> bool:
        """``True`` when no recognised field was supplied."""
        return not any(is_set(getattr(self, f.name)) for f in fields(self))


# ----------------------------------------------------------------------
# Runs


class RunSource(WireModel):
    type: SourceType
    identifier: Optional[str] = None


class RunInput(WireModel):
    """Validated input of a single execution. Never persisted."""

    pipeline_id: str
    content: Optional[str] = None
    title: Optional[str] = None
    summary: Optional[str] = None
    source: Optional[RunSource] = None


class QueueSpec(WireModel):
    """Routing instructions for the downstream speech queue."""

    provider: str
    voice_preference: VoicePreference
    voice_id: Optional[str] = None
    segment_delay_ms: Optional[int] = None


class Artifact(WireModel):
    """Output of one successful execution."""

    pipeline_id: str
    started_at: str
    completed_at: str
    content: str
    summary: Optional[str] = None
    title: Optional[str] = None
    segments: List[str] = Field(default_factory=list)
    queue: Optional[QueueSpec] = None
    warnings: List[str] = Field(default_factory=list)
