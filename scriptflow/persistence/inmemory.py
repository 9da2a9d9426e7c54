"""In-memory implementation of the pipeline repository."""

from __future__ import annotations

import uuid
from typing import Dict

from ..errors import PipelineNotFoundError
from ..models import (
    PipelineCreate,
    PipelineDefinition,
    PipelineListItem,
    PipelineUpdate,
    utc_now_iso,
)
from .repository import (
    PipelineRepository,
    apply_update,
    new_definition,
    sort_items,
    to_list_item,
)


class InMemoryPipelineRepository(PipelineRepository):
    """Store pipelines in local memory.

    Useful for tests or when no durable store is configured. Data is not
    persisted across process restarts.
    """

    kind = "in-memory"

    def __init__(self) -> None:
        self._pipelines: Dict[str, PipelineDefinition] = {}

    # ------------------------------------------------------------------
    async def list(self) -> list[PipelineListItem]:
        return sort_items([to_list_item(p) for p in self._pipelines.values()])

    async def get(self, pipeline_id: str) -> PipelineDefinition | None:
        pipeline = self._pipelines.get(pipeline_id)
        return pipeline.model_copy(deep=True) if pipeline else None

    async def find_by_webhook_secret(self, secret: str) -> PipelineDefinition | None:
        for pipeline in self._pipelines.values():
            if pipeline.webhook_secret == secret:
                return pipeline.model_copy(deep=True)
        return None

    async def create(self, data: PipelineCreate) -> PipelineDefinition:
        pipeline = new_definition(str(uuid.uuid4()), data)
        self._pipelines[pipeline.id] = pipeline
        return pipeline.model_copy(deep=True)

    async def update(self, pipeline_id: str, patch: PipelineUpdate) -> PipelineDefinition:
        existing = self._pipelines.get(pipeline_id)
        if existing is None:
            raise PipelineNotFoundError()
        updated = apply_update(existing, patch)
        self._pipelines[pipeline_id] = updated
        return updated.model_copy(deep=True)

    async def delete(self, pipeline_id: str) -> None:
        self._pipelines.pop(pipeline_id, None)

    async def record_run(self, pipeline_id: str, completed_at: str) -> None:
        existing = self._pipelines.get(pipeline_id)
        if existing is None:
            return
        self._pipelines[pipeline_id] = existing.model_copy(
            update={"last_run_at": completed_at, "updated_at": utc_now_iso()}
        )
