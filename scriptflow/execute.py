"""Step execution engine for scriptflow pipelines."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from .errors import (
    ContentResolutionError,
    EngineUnavailableError,
    ScriptflowError,
    StepExecutionError,
)
from .models import (
    Artifact,
    ChunkStep,
    CleanStep,
    PipelineDefinition,
    QueueSpec,
    QueueStep,
    RunInput,
    RunSource,
    Step,
    SummariseStep,
    ToneStep,
    TranslateStep,
    utc_now_iso,
)
from .sources import ReadableContent, SourceFetchError, fetch_readable_content
from .text import chunk_text, normalise_whitespace, split_into_paragraphs, strip_bullet_markers
from .transformers import TextTransformer, TransformerUnavailableError, UnconfiguredTransformer

logger = logging.getLogger(__name__)

ContentFetcher = Callable[[str], Awaitable[ReadableContent]]

SUMMARY_SKIPPED_WARNING = (
    "Summarisation skipped (text transformer unavailable or request failed)."
)
TRANSLATE_UNAVAILABLE_WARNING = (
    "Translation unavailable because the text transformer is not configured."
)
TONE_UNAVAILABLE_WARNING = (
    "Tone adjustment unavailable because the text transformer is not configured."
)


@dataclass
class RunState:
    """Working representation threaded through the steps of one run."""

    content: str
    title: Optional[str] = None
    summary: Optional[str] = None
    segments: List[str] = field(default_factory=list)
    queue: Optional[QueueSpec] = None
    warnings: List[str] = field(default_factory=list)


class PipelineEngine:
    """Runs a pipeline's steps in order against one input.

    The engine holds no per-run state and persists nothing; callers record
    the run through the repository once :meth:`run` returns.
    """

    def __init__(
        self,
        transformer: Optional[TextTransformer] = None,
        fetcher: Optional[ContentFetcher] = None,
        enabled: bool = True,
    ) -> None:
        self._transformer = transformer or UnconfiguredTransformer()
        self._fetcher = fetcher or fetch_readable_content
        self.enabled = enabled
        self._handlers: Dict[str, Callable[[Step, RunState], Awaitable[None]]] = {
            "clean": self._apply_clean,
            "summarise": self._apply_summarise,
            "translate": self._apply_translate,
            "tone": self._apply_tone,
            "chunk": self._apply_chunk,
            "queue": self._apply_queue,
        }

    async def run(self, pipeline: PipelineDefinition, run_input: RunInput) -> Artifact:
        """Execute every step of ``pipeline`` and return the artifact.

        Raises:
            EngineUnavailableError: If the engine is disabled.
            ContentResolutionError: If no content could be resolved.
            StepExecutionError: If a step fails; remaining steps are skipped.
        """
        if not self.enabled:
            raise EngineUnavailableError()

        started_at = utc_now_iso()
        state = await self._resolve_initial_content(pipeline, run_input)
        logger.info(
            f"Running pipeline={pipeline.id} with {len(pipeline.steps)} steps"
        )

        for index, step in enumerate(pipeline.steps):
            logger.debug(f"Applying step {index} ({step.kind}) for pipeline={pipeline.id}")
            try:
                await self._handlers[step.kind](step, state)
            except ScriptflowError:
                raise
            except Exception as exc:
                logger.error(
                    f"Step {index} ({step.kind}) failed for pipeline={pipeline.id}: {exc}"
                )
                raise StepExecutionError(index, step.kind, exc) from exc

        segments = self._ensure_segments(state)
        completed_at = utc_now_iso()
        logger.info(
            f"Pipeline={pipeline.id} completed with {len(segments)} segments "
            f"and {len(state.warnings)} warnings"
        )
        return Artifact(
            pipeline_id=pipeline.id,
            started_at=started_at,
            completed_at=completed_at,
            content=state.content,
            summary=state.summary,
            title=state.title,
            segments=segments,
            queue=state.queue,
            warnings=state.warnings,
        )

    # ------------------------------------------------------------------
    async def _resolve_initial_content(
        self, pipeline: PipelineDefinition, run_input: RunInput
    ) -> RunState:
        content = run_input.content.strip() if run_input.content else None
        title = run_input.title
        source = run_input.source
        if source is None and pipeline.default_source is not None:
            source = RunSource(type="url", identifier=pipeline.default_source.value)

        if not content and source is not None and source.type == "url" and source.identifier:
            try:
                fetched = await self._fetcher(source.identifier)
            except SourceFetchError as exc:
                logger.warning(f"Source fetch failed for pipeline={pipeline.id}: {exc}")
                raise ContentResolutionError("Unable to fetch content from source URL") from exc
            content = fetched.content.strip()
            title = title or fetched.title

        if not content:
            raise ContentResolutionError("No content available to process")
        return RunState(content=content, title=title, summary=run_input.summary)

    def _ensure_segments(self, state: RunState) -> List[str]:
        if state.segments:
            return list(state.segments)
        paragraphs = split_into_paragraphs(state.content)
        return paragraphs or [state.content.strip()]

    # ------------------------------------------------------------------
    async def _apply_clean(self, step: CleanStep, state: RunState) -> None:
        content = state.content
        if step.options.normalise_whitespace:
            content = normalise_whitespace(content)
        if step.options.strip_bullets:
            content = strip_bullet_markers(content)
        state.content = content

    async def _apply_summarise(self, step: SummariseStep, state: RunState) -> None:
        try:
            summary = await self._transformer.summarise(state.content, step.options)
        except TransformerUnavailableError:
            summary = None
        except Exception as exc:
            logger.warning(f"Summarisation failed, continuing without summary: {exc}")
            summary = None
        if not summary:
            state.warnings.append(SUMMARY_SKIPPED_WARNING)
            return
        state.summary = summary

    async def _apply_translate(self, step: TranslateStep, state: RunState) -> None:
        try:
            state.content = await self._transformer.translate(state.content, step.options)
        except TransformerUnavailableError:
            state.warnings.append(TRANSLATE_UNAVAILABLE_WARNING)

    async def _apply_tone(self, step: ToneStep, state: RunState) -> None:
        try:
            state.content = await self._transformer.adjust_tone(state.content, step.options)
        except TransformerUnavailableError:
            state.warnings.append(TONE_UNAVAILABLE_WARNING)

    async def _apply_chunk(self, step: ChunkStep, state: RunState) -> None:
        state.segments = chunk_text(
            state.content,
            strategy=step.options.strategy,
            max_characters=step.options.max_characters,
            join_short_segments=step.options.join_short_segments,
        )

    async def _apply_queue(self, step: QueueStep, state: RunState) -> None:
        options = step.options
        state.queue = QueueSpec(
            provider=options.provider,
            voice_preference=options.voice_preference,
            voice_id=options.voice_id,
            segment_delay_ms=options.segment_delay_ms,
        )
