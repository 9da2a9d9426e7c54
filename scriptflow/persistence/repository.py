"""Repository abstraction for pipeline definitions."""

from __future__ import annotations

import secrets
from typing import Protocol

from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from ..models import (
    PipelineCreate,
    PipelineDefinition,
    PipelineListItem,
    PipelineUpdate,
    is_set,
    utc_now_iso,
)


class PipelineRepository(Protocol):
    """Protocol for pipeline persistence backends.

    Every method returns copies; callers never share mutable state with the
    stored definition.
    """

    kind: str

    async def list(self) -> list[PipelineListItem]:
        """Return summaries of all pipelines, sorted by name."""

    async def get(self, pipeline_id: str) -> PipelineDefinition | None:
        """Retrieve a pipeline by id."""

    async def find_by_webhook_secret(self, secret: str) -> PipelineDefinition | None:
        """Retrieve the pipeline whose webhook secret equals ``secret``."""

    async def create(self, data: PipelineCreate) -> PipelineDefinition:
        """Persist a new pipeline with a fresh id and webhook secret."""

    async def update(self, pipeline_id: str, patch: PipelineUpdate) -> PipelineDefinition:
        """Apply ``patch``. Raises ``PipelineNotFoundError`` when missing."""

    async def delete(self, pipeline_id: str) -> None:
        """Remove a pipeline. Deleting a missing id is a no-op."""

    async def record_run(self, pipeline_id: str, completed_at: str) -> None:
        """Set ``last_run_at``. Missing pipelines are ignored."""


def new_secret() -> str:
    """Random webhook secret, safe for use in a URL path."""
    return secrets.token_urlsafe(32)


def new_definition(pipeline_id: str, data: PipelineCreate) -> PipelineDefinition:
    now = utc_now_iso()
    return PipelineDefinition(
        id=pipeline_id,
        name=data.name.strip(),
        description=data.description.strip() if data.description else None,
        steps=[step.model_copy(deep=True) for step in data.steps],
        created_at=now,
        updated_at=now,
        webhook_secret=new_secret(),
        schedule=data.schedule,
        default_source=data.default_source,
    )


def apply_update(pipeline: PipelineDefinition, patch: PipelineUpdate) -> PipelineDefinition:
    """Return a new definition with ``patch`` applied.

    Rotating the secret replaces it outright; the previous value stops
    verifying immediately.
    """
    if is_set(patch.steps) and not patch.steps:
        raise ValidationError("Pipeline must contain at least one step")

    data = pipeline.model_dump()
    data["updated_at"] = utc_now_iso()
    if is_set(patch.name):
        data["name"] = patch.name
    if is_set(patch.description):
        data["description"] = patch.description
    if is_set(patch.steps):
        data["steps"] = [step.model_dump() for step in patch.steps]
    if is_set(patch.schedule):
        data["schedule"] = patch.schedule.model_dump() if patch.schedule else None
    if is_set(patch.default_source):
        data["default_source"] = (
            patch.default_source.model_dump() if patch.default_source else None
        )
    if patch.rotate_secret is True:
        data["webhook_secret"] = new_secret()

    try:
        return PipelineDefinition.model_validate(data)
    except PydanticValidationError as exc:
        first = exc.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(f"{location}: {first.get('msg', 'invalid value')}") from exc


def to_list_item(pipeline: PipelineDefinition) -> PipelineListItem:
    return PipelineListItem(
        id=pipeline.id,
        name=pipeline.name,
        description=pipeline.description,
        schedule=pipeline.schedule.model_copy() if pipeline.schedule else None,
        last_run_at=pipeline.last_run_at,
    )


def sort_items(items: list[PipelineListItem]) -> list[PipelineListItem]:
    return sorted(items, key=lambda item: (item.name.casefold(), item.id))
