"""PostgreSQL implementation of the pipeline repository."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import asyncpg
from pydantic import ValidationError as PydanticValidationError

from ..errors import PipelineNotFoundError, RepositoryDataError, StorageTransportError
from ..models import (
    PipelineCreate,
    PipelineDefinition,
    PipelineListItem,
    PipelineUpdate,
    utc_now_iso,
)
from .repository import PipelineRepository, apply_update, new_definition, sort_items

logger = logging.getLogger(__name__)

# Failures meaning "the server could not be reached or dropped us". Anything
# else (SQL errors, bad rows) is not a transport failure.
TRANSPORT_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.ConnectionDoesNotExistError,
    asyncpg.exceptions.CannotConnectNowError,
    asyncpg.exceptions.TooManyConnectionsError,
)

_COLUMNS = (
    "id, name, description, steps, created_at, updated_at, webhook_secret, "
    "schedule, default_source, last_run_at"
)


def _json_or_none(value: Any) -> str | None:
    return json.dumps(value) if value is not None else None


def _decode(value: Any) -> Any:
    return json.loads(value) if isinstance(value, str) else value


class PostgresPipelineRepository(PipelineRepository):
    """Persist pipelines in PostgreSQL.

    This is the authoritative, multi-instance store. Connection-level
    failures are re-raised as :class:`StorageTransportError` so callers can
    fall back to a local tier.
    """

    kind = "postgres"

    def __init__(self, dsn: str, connect_timeout: float = 5.0):
        self._dsn = dsn
        self._connect_timeout = connect_timeout
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn, timeout=self._connect_timeout)
        if not self._initialized:
            try:
                await self._ensure_schema(conn)
            except Exception:
                conn.terminate()
                raise
            self._initialized = True
        return conn

    @asynccontextmanager
    async def _connection(self, operation: str) -> AsyncIterator[asyncpg.Connection]:
        try:
            conn = await self._connect()
        except TRANSPORT_ERRORS as exc:
            raise StorageTransportError(
                f"Postgres {operation} failed: {type(exc).__name__}"
            ) from exc
        try:
            yield conn
        except TRANSPORT_ERRORS as exc:
            raise StorageTransportError(
                f"Postgres {operation} failed: {type(exc).__name__}"
            ) from exc
        finally:
            try:
                await conn.close()
            except TRANSPORT_ERRORS:
                logger.debug("Ignoring error while closing postgres connection")

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS pipelines (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                description TEXT,
                steps JSONB NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                webhook_secret TEXT NOT NULL UNIQUE,
                schedule JSONB,
                default_source JSONB,
                last_run_at TEXT
            )
            """
        )

    # ------------------------------------------------------------------
    def _row_to_pipeline(self, row: Any) -> PipelineDefinition:
        try:
            return PipelineDefinition.model_validate(
                {
                    "id": row["id"],
                    "name": row["name"],
                    "description": row["description"],
                    "steps": _decode(row["steps"]),
                    "created_at": row["created_at"],
                    "updated_at": row["updated_at"],
                    "webhook_secret": row["webhook_secret"],
                    "schedule": _decode(row["schedule"]),
                    "default_source": _decode(row["default_source"]),
                    "last_run_at": row["last_run_at"],
                }
            )
        except (PydanticValidationError, json.JSONDecodeError) as exc:
            raise RepositoryDataError(f"Invalid pipeline row {row['id']}: {exc}") from exc

    async def _save(self, conn: asyncpg.Connection, pipeline: PipelineDefinition) -> None:
        wire = pipeline.to_wire()
        await conn.execute(
            f"""
            INSERT INTO pipelines ({_COLUMNS})
            VALUES ($1, $2, $3, $4::jsonb, $5, $6, $7, $8::jsonb, $9::jsonb, $10)
            ON CONFLICT (id) DO UPDATE SET
                name = EXCLUDED.name,
                description = EXCLUDED.description,
                steps = EXCLUDED.steps,
                updated_at = EXCLUDED.updated_at,
                webhook_secret = EXCLUDED.webhook_secret,
                schedule = EXCLUDED.schedule,
                default_source = EXCLUDED.default_source,
                last_run_at = EXCLUDED.last_run_at
            """,
            pipeline.id,
            pipeline.name,
            pipeline.description,
            json.dumps(wire["steps"]),
            pipeline.created_at,
            pipeline.updated_at,
            pipeline.webhook_secret,
            _json_or_none(wire.get("schedule")),
            _json_or_none(wire.get("defaultSource")),
            pipeline.last_run_at,
        )

    # ------------------------------------------------------------------
    async def list(self) -> list[PipelineListItem]:
        async with self._connection("list") as conn:
            rows = await conn.fetch(
                "SELECT id, name, description, schedule, last_run_at FROM pipelines"
            )
        items: list[PipelineListItem] = []
        for row in rows:
            try:
                items.append(
                    PipelineListItem.model_validate(
                        {
                            "id": row["id"],
                            "name": row["name"],
                            "description": row["description"],
                            "schedule": _decode(row["schedule"]),
                            "last_run_at": row["last_run_at"],
                        }
                    )
                )
            except (PydanticValidationError, json.JSONDecodeError) as exc:
                raise RepositoryDataError(f"Invalid pipeline row {row['id']}: {exc}") from exc
        return sort_items(items)

    async def get(self, pipeline_id: str) -> PipelineDefinition | None:
        async with self._connection("get") as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM pipelines WHERE id = $1", pipeline_id
            )
        return self._row_to_pipeline(row) if row else None

    async def find_by_webhook_secret(self, secret: str) -> PipelineDefinition | None:
        async with self._connection("find_by_webhook_secret") as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM pipelines WHERE webhook_secret = $1", secret
            )
        return self._row_to_pipeline(row) if row else None

    async def create(self, data: PipelineCreate) -> PipelineDefinition:
        pipeline = new_definition(str(uuid.uuid4()), data)
        async with self._connection("create") as conn:
            await self._save(conn, pipeline)
        return pipeline

    async def update(self, pipeline_id: str, patch: PipelineUpdate) -> PipelineDefinition:
        async with self._connection("update") as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    f"SELECT {_COLUMNS} FROM pipelines WHERE id = $1 FOR UPDATE",
                    pipeline_id,
                )
                if row is None:
                    raise PipelineNotFoundError()
                updated = apply_update(self._row_to_pipeline(row), patch)
                await self._save(conn, updated)
        return updated

    async def delete(self, pipeline_id: str) -> None:
        async with self._connection("delete") as conn:
            await conn.execute("DELETE FROM pipelines WHERE id = $1", pipeline_id)

    async def record_run(self, pipeline_id: str, completed_at: str) -> None:
        async with self._connection("record_run") as conn:
            await conn.execute(
                "UPDATE pipelines SET last_run_at = $1, updated_at = $2 WHERE id = $3",
                completed_at,
                utc_now_iso(),
                pipeline_id,
            )
