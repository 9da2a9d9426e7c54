"""Tests for sticky backend demotion."""

import asyncio

import pytest

from scriptflow.config import ScriptflowConfig, StorageConfig
from scriptflow.errors import RepositoryDataError, StorageTransportError
from scriptflow.persistence import (
    BackendTier,
    FallbackResolver,
    InMemoryPipelineRepository,
    JsonFilePipelineRepository,
    build_pipeline_resolver,
)


class UnreachableRepository(InMemoryPipelineRepository):
    """Primary tier whose every call fails at the transport level."""

    kind = "postgres"

    def __init__(self) -> None:
        super().__init__()
        self.calls = 0

    async def list(self):
        self.calls += 1
        await asyncio.sleep(0)
        raise StorageTransportError("connection refused")

    async def get(self, pipeline_id):
        self.calls += 1
        raise StorageTransportError("connection refused")


class CorruptRepository(InMemoryPipelineRepository):
    kind = "postgres"

    async def list(self):
        raise RepositoryDataError("bad row")


def _resolver(primary, fallback=None):
    fallback = fallback or InMemoryPipelineRepository()
    return FallbackResolver(
        [
            BackendTier("postgres", lambda: primary),
            BackendTier("in-memory", lambda: fallback),
        ],
        name="pipeline",
    )


def test_kind_is_unknown_before_first_use():
    resolver = _resolver(InMemoryPipelineRepository())
    assert resolver.kind is None
    resolver.current()
    assert resolver.kind == "postgres"


def test_unconfigured_and_failing_tiers_are_skipped():
    def broken():
        raise ValueError("bad url")

    fallback = InMemoryPipelineRepository()
    resolver = FallbackResolver(
        [
            BackendTier("postgres", broken),
            BackendTier("json-file", lambda: None),
            BackendTier("in-memory", lambda: fallback),
        ]
    )
    assert resolver.current() is fallback
    assert resolver.kind == "in-memory"


@pytest.mark.asyncio
async def test_transport_failure_demotes_and_retries():
    primary = UnreachableRepository()
    resolver = _resolver(primary)

    assert await resolver.call("list", lambda repo: repo.list()) == []
    assert resolver.kind == "in-memory"
    assert resolver.demotions == 1

    # the failed primary is never attempted again
    await resolver.call("get", lambda repo: repo.get("x"))
    assert primary.calls == 1


@pytest.mark.asyncio
async def test_concurrent_failures_demote_exactly_once():
    primary = UnreachableRepository()
    resolver = _resolver(primary)
    resolver.current()

    results = await asyncio.gather(
        *[resolver.call("list", lambda repo: repo.list()) for _ in range(20)]
    )

    assert results == [[]] * 20
    assert resolver.demotions == 1
    assert resolver.kind == "in-memory"
    assert primary.calls == 20


@pytest.mark.asyncio
async def test_domain_errors_do_not_demote():
    resolver = _resolver(CorruptRepository())
    with pytest.raises(RepositoryDataError):
        await resolver.call("list", lambda repo: repo.list())
    assert resolver.kind == "postgres"
    assert resolver.demotions == 0


@pytest.mark.asyncio
async def test_last_tier_failure_propagates():
    failing = UnreachableRepository()
    resolver = FallbackResolver([BackendTier("postgres", lambda: failing)])
    with pytest.raises(StorageTransportError):
        await resolver.call("list", lambda repo: repo.list())
    assert resolver.demotions == 0


def test_demote_with_stale_instance_returns_current():
    primary = UnreachableRepository()
    resolver = _resolver(primary)
    replacement = resolver.demote(resolver.current())
    assert resolver.demote(primary) is replacement
    assert resolver.demotions == 1


def test_reset_reselects_primary():
    primary = UnreachableRepository()
    resolver = _resolver(primary)
    resolver.demote(resolver.current())
    resolver.reset()
    assert resolver.current() is primary
    assert resolver.demotions == 0


def test_build_resolver_prefers_json_file_without_database(tmp_path):
    config = ScriptflowConfig(storage=StorageConfig(data_path=str(tmp_path / "p.json")))
    resolver = build_pipeline_resolver(config)
    assert isinstance(resolver.current(), JsonFilePipelineRepository)
    assert resolver.kind == "json-file"


def test_build_resolver_skips_unsupported_database_url():
    config = ScriptflowConfig(storage=StorageConfig(database_url="mysql://localhost/db"))
    resolver = build_pipeline_resolver(config)
    assert isinstance(resolver.current(), InMemoryPipelineRepository)
