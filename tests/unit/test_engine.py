"""Tests for the step execution engine."""

import pytest

from scriptflow.errors import (
    ContentResolutionError,
    EngineUnavailableError,
    StepExecutionError,
)
from scriptflow.execute import (
    SUMMARY_SKIPPED_WARNING,
    TONE_UNAVAILABLE_WARNING,
    TRANSLATE_UNAVAILABLE_WARNING,
    PipelineEngine,
)
from scriptflow.models import RunInput, RunSource
from scriptflow.persistence.repository import new_definition
from scriptflow.sources import SourceFetchError


def _pipeline(make_create, steps=None, **overrides):
    if steps is not None:
        overrides["steps"] = steps
    return new_definition("p1", make_create(**overrides))


class ExplodingTransformer:
    async def summarise(self, text, options):
        raise RuntimeError("quota exceeded")

    async def translate(self, text, options):
        raise RuntimeError("quota exceeded")

    async def adjust_tone(self, text, options):
        raise RuntimeError("quota exceeded")


@pytest.mark.asyncio
async def test_clean_chunk_queue_run(make_create):
    pipeline = _pipeline(make_create)
    content = "   " + "a" * 3000 + "   "

    artifact = await PipelineEngine().run(pipeline, RunInput(pipeline_id="p1", content=content))

    assert artifact.pipeline_id == "p1"
    assert len(artifact.segments) >= 2
    assert all(len(segment) <= 1600 for segment in artifact.segments)
    assert artifact.queue is not None
    assert artifact.to_wire()["queue"] == {"provider": "acme", "voicePreference": "default"}
    assert artifact.warnings == []
    assert artifact.started_at <= artifact.completed_at


@pytest.mark.asyncio
async def test_segments_default_to_paragraphs_without_chunk_step(make_create):
    pipeline = _pipeline(make_create, steps=[{"kind": "clean", "options": {}}])
    artifact = await PipelineEngine().run(
        pipeline, RunInput(pipeline_id="p1", content="First.\n\n\n\nSecond.")
    )
    assert artifact.content == "First.\n\nSecond."
    assert artifact.segments == ["First.", "Second."]
    assert artifact.queue is None


@pytest.mark.asyncio
async def test_llm_steps_without_transformer_add_warnings(make_create):
    pipeline = _pipeline(
        make_create,
        steps=[
            {"kind": "summarise", "options": {}},
            {"kind": "translate", "options": {"targetLanguage": "fr"}},
            {"kind": "tone", "options": {"tone": "friendly"}},
        ],
    )
    artifact = await PipelineEngine().run(
        pipeline, RunInput(pipeline_id="p1", content="Unchanged text.")
    )
    assert artifact.content == "Unchanged text."
    assert artifact.summary is None
    assert artifact.warnings == [
        SUMMARY_SKIPPED_WARNING,
        TRANSLATE_UNAVAILABLE_WARNING,
        TONE_UNAVAILABLE_WARNING,
    ]


@pytest.mark.asyncio
async def test_llm_steps_apply_transformer(make_create, echo_transformer):
    pipeline = _pipeline(
        make_create,
        steps=[
            {"kind": "translate", "options": {"targetLanguage": "fr"}},
            {"kind": "tone", "options": {"tone": "formal"}},
            {"kind": "summarise", "options": {"bulletCount": 2}},
        ],
    )
    artifact = await PipelineEngine(transformer=echo_transformer).run(
        pipeline, RunInput(pipeline_id="p1", content="Hello.")
    )
    assert artifact.content == "(formal) [fr] Hello."
    assert artifact.summary == f"summary of {len(artifact.content)} chars"
    assert artifact.warnings == []


@pytest.mark.asyncio
async def test_summarise_failure_is_a_warning(make_create):
    pipeline = _pipeline(make_create, steps=[{"kind": "summarise", "options": {}}])
    artifact = await PipelineEngine(transformer=ExplodingTransformer()).run(
        pipeline, RunInput(pipeline_id="p1", content="Text.")
    )
    assert artifact.warnings == [SUMMARY_SKIPPED_WARNING]


@pytest.mark.asyncio
async def test_failing_step_aborts_run(make_create):
    pipeline = _pipeline(
        make_create,
        steps=[
            {"kind": "clean", "options": {}},
            {"kind": "translate", "options": {"targetLanguage": "de"}},
            {"kind": "queue", "options": {"provider": "acme", "voicePreference": "history"}},
        ],
    )
    with pytest.raises(StepExecutionError) as exc_info:
        await PipelineEngine(transformer=ExplodingTransformer()).run(
            pipeline, RunInput(pipeline_id="p1", content="Text.")
        )
    assert exc_info.value.index == 1
    assert exc_info.value.kind == "translate"
    assert exc_info.value.public_message == "Pipeline execution failed"


@pytest.mark.asyncio
async def test_disabled_engine_is_unavailable(make_create):
    with pytest.raises(EngineUnavailableError):
        await PipelineEngine(enabled=False).run(
            _pipeline(make_create), RunInput(pipeline_id="p1", content="Text.")
        )


@pytest.mark.asyncio
async def test_url_source_is_fetched(make_create, fetcher):
    pipeline = _pipeline(make_create, steps=[{"kind": "clean", "options": {}}])
    run_input = RunInput(
        pipeline_id="p1",
        source=RunSource(type="url", identifier="https://example.com/post"),
    )
    artifact = await PipelineEngine(fetcher=fetcher).run(pipeline, run_input)

    assert fetcher.urls == ["https://example.com/post"]
    assert artifact.title == "Fetched"
    assert artifact.segments == ["Fetched paragraph one.", "Fetched paragraph two."]


@pytest.mark.asyncio
async def test_default_source_used_when_input_is_empty(make_create, fetcher):
    pipeline = _pipeline(
        make_create,
        steps=[{"kind": "clean", "options": {}}],
        defaultSource={"kind": "url", "value": "https://example.com/feed"},
    )
    await PipelineEngine(fetcher=fetcher).run(pipeline, RunInput(pipeline_id="p1"))
    assert fetcher.urls == ["https://example.com/feed"]


@pytest.mark.asyncio
async def test_fetch_failure_is_content_resolution_error(make_create):
    async def failing_fetcher(url):
        raise SourceFetchError("timeout")

    pipeline = _pipeline(make_create)
    run_input = RunInput(
        pipeline_id="p1", source=RunSource(type="url", identifier="https://example.com")
    )
    with pytest.raises(ContentResolutionError):
        await PipelineEngine(fetcher=failing_fetcher).run(pipeline, run_input)


@pytest.mark.asyncio
async def test_manual_source_without_content_has_nothing_to_process(make_create):
    pipeline = _pipeline(make_create)
    with pytest.raises(ContentResolutionError):
        await PipelineEngine().run(
            pipeline, RunInput(pipeline_id="p1", source=RunSource(type="manual"))
        )
