"""JSON file implementation of the pipeline repository."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from ..errors import PipelineNotFoundError, RepositoryDataError
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

logger = logging.getLogger(__name__)


class JsonFilePipelineRepository(PipelineRepository):
    """Persist pipelines in a single JSON document.

    Each mutation reads the whole file, modifies it and rewrites it through a
    temporary file. Writes within one process are serialised by a lock; the
    store is not safe to share between processes.
    """

    kind = "json-file"

    def __init__(self, file_path: str | Path):
        self.file_path = Path(file_path)
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # File helpers
    def _read(self) -> list[PipelineDefinition]:
        try:
            raw = self.file_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        try:
            data: Any = json.loads(raw) if raw.strip() else {}
        except json.JSONDecodeError as exc:
            raise RepositoryDataError(f"Corrupt pipeline file {self.file_path}: {exc}") from exc
        if not isinstance(data, dict) or not isinstance(data.get("pipelines"), list):
            logger.warning(f"Ignoring unexpected layout in {self.file_path}")
            return []
        try:
            return [PipelineDefinition.model_validate(item) for item in data["pipelines"]]
        except PydanticValidationError as exc:
            raise RepositoryDataError(f"Invalid pipeline in {self.file_path}: {exc}") from exc

    def _write(self, pipelines: list[PipelineDefinition]) -> None:
        self.file_path.parent.mkdir(parents=True, exist_ok=True)
        document = {"pipelines": [p.to_wire() for p in pipelines]}
        tmp_path = self.file_path.with_name(f".{self.file_path.name}.tmp")
        tmp_path.write_text(json.dumps(document, indent=2), encoding="utf-8")
        os.replace(tmp_path, self.file_path)

    async def _load(self) -> list[PipelineDefinition]:
        return await asyncio.to_thread(self._read)

    async def _persist(self, pipelines: list[PipelineDefinition]) -> None:
        await asyncio.to_thread(self._write, pipelines)

    # ------------------------------------------------------------------
    # Repository API
    async def list(self) -> list[PipelineListItem]:
        pipelines = await self._load()
        return sort_items([to_list_item(p) for p in pipelines])

    async def get(self, pipeline_id: str) -> PipelineDefinition | None:
        pipelines = await self._load()
        return next((p for p in pipelines if p.id == pipeline_id), None)

    async def find_by_webhook_secret(self, secret: str) -> PipelineDefinition | None:
        pipelines = await self._load()
        return next((p for p in pipelines if p.webhook_secret == secret), None)

    async def create(self, data: PipelineCreate) -> PipelineDefinition:
        async with self._lock:
            pipelines = await self._load()
            pipeline = new_definition(str(uuid.uuid4()), data)
            pipelines.append(pipeline)
            await self._persist(pipelines)
        return pipeline.model_copy(deep=True)

    async def update(self, pipeline_id: str, patch: PipelineUpdate) -> PipelineDefinition:
        async with self._lock:
            pipelines = await self._load()
            for index, pipeline in enumerate(pipelines):
                if pipeline.id == pipeline_id:
                    break
            else:
                raise PipelineNotFoundError()
            pipelines[index] = apply_update(pipeline, patch)
            await self._persist(pipelines)
        return pipelines[index].model_copy(deep=True)

    async def delete(self, pipeline_id: str) -> None:
        async with self._lock:
            pipelines = await self._load()
            remaining = [p for p in pipelines if p.id != pipeline_id]
            if len(remaining) != len(pipelines):
                await self._persist(remaining)

    async def record_run(self, pipeline_id: str, completed_at: str) -> None:
        async with self._lock:
            pipelines = await self._load()
            for index, pipeline in enumerate(pipelines):
                if pipeline.id == pipeline_id:
                    pipelines[index] = pipeline.model_copy(
                        update={"last_run_at": completed_at, "updated_at": utc_now_iso()}
                    )
                    await self._persist(pipelines)
                    return
