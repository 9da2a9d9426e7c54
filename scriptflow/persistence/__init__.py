"""Persistence layer for scriptflow pipelines."""

from __future__ import annotations

import logging
from typing import Optional

from ..config import ScriptflowConfig, load_config
from .fallback import BackendTier, FallbackResolver, is_transport_failure
from .inmemory import InMemoryPipelineRepository
from .jsonfile import JsonFilePipelineRepository
from .postgres import PostgresPipelineRepository
from .repository import PipelineRepository

logger = logging.getLogger(__name__)

PipelineResolver = FallbackResolver[PipelineRepository]

_resolver_instance: PipelineResolver | None = None


def _is_postgres_url(url: str) -> bool:
    return url.startswith("postgres://") or url.startswith("postgresql://")


def build_pipeline_resolver(config: Optional[ScriptflowConfig] = None) -> PipelineResolver:
    """Build the postgres → JSON file → in-memory cascade from ``config``.

    A tier is only attempted when it is configured; reachability is not
    checked here. Runtime failures demote through :meth:`FallbackResolver.call`.
    """

    config = config or load_config()
    storage = config.storage

    def postgres() -> Optional[PipelineRepository]:
        url = storage.database_url
        if not url:
            return None
        if not _is_postgres_url(url):
            raise ValueError(f"Unsupported database backend: {url.split(':', 1)[0]}")
        return PostgresPipelineRepository(url, connect_timeout=storage.connect_timeout)

    def json_file() -> Optional[PipelineRepository]:
        if not storage.data_path:
            return None
        return JsonFilePipelineRepository(storage.data_path)

    return FallbackResolver(
        [
            BackendTier("postgres", postgres),
            BackendTier("json-file", json_file),
            BackendTier("in-memory", InMemoryPipelineRepository),
        ],
        name="pipeline",
    )


def get_resolver(config: Optional[ScriptflowConfig] = None) -> PipelineResolver:
    """Return the process-wide pipeline resolver, building it on first use."""

    global _resolver_instance
    if _resolver_instance is not None and config is None:
        return _resolver_instance
    _resolver_instance = build_pipeline_resolver(config)
    return _resolver_instance


def reset_resolver() -> None:
    """Drop the process-wide resolver. Intended for tests."""

    global _resolver_instance
    _resolver_instance = None


__all__ = [
    "BackendTier",
    "FallbackResolver",
    "PipelineResolver",
    "PipelineRepository",
    "InMemoryPipelineRepository",
    "JsonFilePipelineRepository",
    "PostgresPipelineRepository",
    "build_pipeline_resolver",
    "get_resolver",
    "reset_resolver",
    "is_transport_failure",
]
