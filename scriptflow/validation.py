"""Normalisation and validation of raw request payloads.

Every function here takes decoded JSON (``Any``) and either returns a typed
model or raises :class:`~scriptflow.errors.ValidationError`. Nothing
downstream of this module ever sees an unvalidated body.
"""

from __future__ import annotations

import copy
import uuid
from typing import Any, Dict, List, Optional

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError
from .models import (
    STEP_KINDS,
    PipelineCreate,
    PipelineDefinition,
    PipelineUpdate,
    RunInput,
    RunSource,
    ScheduleConfig,
    SourceConfig,
    Step,
)

_STEP_ADAPTER: TypeAdapter = TypeAdapter(Step)
_SOURCE_TYPES = {"import", "url", "manual"}


def _describe(exc: PydanticValidationError, prefix: str) -> str:
    first = exc.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    field = f"{prefix}.{location}" if location else prefix
    return f"{field}: {first.get('msg', 'invalid value')}"


def ensure_object(value: Any) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise ValidationError("Invalid payload")
    return value


def ensure_string(value: Any, field: str) -> str:
    """Return ``value`` trimmed, rejecting anything but a non-blank string."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be a non-empty string")
    return value.strip()


def ensure_optional_string(value: Any, field: str = "value") -> Optional[str]:
    """Trim an optional string; blank or missing becomes ``None``."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    trimmed = value.strip()
    return trimmed or None


def ensure_schedule(value: Any) -> Optional[ScheduleConfig]:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError("Schedule must be an object")
    return ScheduleConfig(
        cron=ensure_string(value.get("cron"), "schedule.cron"),
        description=ensure_optional_string(
            value.get("description"), "schedule.description"
        ),
    )


def ensure_default_source(value: Any) -> Optional[SourceConfig]:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError("defaultSource must be an object")
    if value.get("kind") != "url":
        raise ValidationError("defaultSource.kind must be 'url'")
    return SourceConfig(
        kind="url", value=ensure_string(value.get("value"), "defaultSource.value")
    )


def ensure_step(step: Any, index: int = 0) -> Step:
    """Validate one step; its options are deep-copied away from the caller."""
    if not isinstance(step, dict):
        raise ValidationError("Invalid pipeline step")

    step_id = step.get("id")
    if step_id is None:
        step_id = str(uuid.uuid4())
    step_id = ensure_string(step_id, f"steps[{index}].id")

    kind = step.get("kind")
    if kind not in STEP_KINDS:
        raise ValidationError(f"Unsupported pipeline step kind: {kind}")

    options = step.get("options")
    if not isinstance(options, dict):
        raise ValidationError("Pipeline step options must be provided")

    candidate = {
        "id": step_id,
        "kind": kind,
        "label": ensure_optional_string(step.get("label"), f"steps[{index}].label"),
        "options": copy.deepcopy(options),
    }
    try:
        return _STEP_ADAPTER.validate_python(candidate)
    except PydanticValidationError as exc:
        raise ValidationError(_describe(exc, f"steps[{index}]")) from exc


def ensure_steps(value: Any) -> List[Step]:
    if not isinstance(value, list) or not value:
        raise ValidationError("At least one pipeline step is required")
    return [ensure_step(step, index) for index, step in enumerate(value)]


def parse_create_payload(body: Any) -> PipelineCreate:
    payload = ensure_object(body)
    name = ensure_string(payload.get("name"), "name")
    return PipelineCreate(
        name=name,
        description=ensure_optional_string(payload.get("description"), "description"),
        steps=ensure_steps(payload.get("steps")),
        schedule=ensure_schedule(payload.get("schedule")),
        default_source=ensure_default_source(payload.get("defaultSource")),
    )


def parse_update_payload(body: Any) -> PipelineUpdate:
    """Build a tri-state patch from a PATCH body.

    Keys that are absent stay ``UNSET``. ``null`` clears ``description``,
    ``schedule`` and ``defaultSource``.
    """
    payload = ensure_object(body)
    changes: Dict[str, Any] = {}

    if "name" in payload:
        changes["name"] = ensure_string(payload["name"], "name")
    if "description" in payload:
        changes["description"] = ensure_optional_string(
            payload["description"], "description"
        )
    if "steps" in payload:
        if not isinstance(payload["steps"], list):
            raise ValidationError("steps must be an array")
        if not payload["steps"]:
            raise ValidationError("Pipeline must contain at least one step")
        changes["steps"] = ensure_steps(payload["steps"])
    if "schedule" in payload:
        changes["schedule"] = ensure_schedule(payload["schedule"])
    if "defaultSource" in payload:
        changes["default_source"] = ensure_default_source(payload["defaultSource"])
    if "rotateSecret" in payload:
        if not isinstance(payload["rotateSecret"], bool):
            raise ValidationError("rotateSecret must be a boolean")
        changes["rotate_secret"] = payload["rotateSecret"]

    return PipelineUpdate(**changes)


def ensure_run_source(value: Any) -> Optional[RunSource]:
    """Validate a run source, collapsing ``url``/``id`` into ``identifier``."""
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationError("source must be an object")
    source_type = value.get("type")
    if source_type not in _SOURCE_TYPES:
        raise ValidationError("source.type is invalid")

    identifier = ensure_optional_string(value.get("identifier"), "source.identifier")
    if source_type == "url":
        direct_url = value.get("url")
        candidate = direct_url if isinstance(direct_url, str) else identifier
        identifier = ensure_string(candidate, "source.url")
    elif identifier is None and isinstance(value.get("id"), str):
        identifier = value["id"].strip() or None

    return RunSource(type=source_type, identifier=identifier)


def _has_text(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def parse_run_payload(body: Any, pipeline_id: str) -> RunInput:
    payload = ensure_object(body)
    content = payload.get("content")
    if content is not None and not isinstance(content, str):
        raise ValidationError("content must be a string")
    source = ensure_run_source(payload.get("source"))
    normalized_content = content.strip() if _has_text(content) else None

    if normalized_content is None and source is None:
        raise ValidationError("Provide content or a valid source")

    return RunInput(
        pipeline_id=pipeline_id,
        content=normalized_content,
        title=ensure_optional_string(payload.get("title"), "title"),
        summary=ensure_optional_string(payload.get("summary"), "summary"),
        source=source,
    )


def apply_default_source(body: Any, pipeline: PipelineDefinition) -> Any:
    """Fill in the pipeline's default source when the body names no content.

    Runs before :func:`parse_run_payload`; the body is returned unchanged when
    it is not an object, so validation still rejects it.
    """
    if not isinstance(body, dict) or pipeline.default_source is None:
        return body
    if _has_text(body.get("content")) or body.get("source") is not None:
        return body
    merged = dict(body)
    merged["source"] = {"type": "url", "url": pipeline.default_source.value}
    return merged


__all__ = [
    "ensure_object",
    "ensure_string",
    "ensure_optional_string",
    "ensure_step",
    "ensure_steps",
    "ensure_run_source",
    "parse_create_payload",
    "parse_update_payload",
    "parse_run_payload",
    "apply_default_source",
]
