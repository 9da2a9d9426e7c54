"""Pluggable text-transformation backends for the LLM-backed steps."""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol

from pydantic_ai import Agent

from .config import LLMConfig
from .models import SummariseOptions, ToneOptions, TranslateOptions

logger = logging.getLogger(__name__)

SUMMARY_INPUT_LIMIT = 6000


class TransformerUnavailableError(RuntimeError):
    """The backend is not configured (for example, no API key)."""


class TextTransformer(Protocol):
    """Backend used by the ``summarise``, ``translate`` and ``tone`` steps."""

    async def summarise(self, text: str, options: SummariseOptions) -> Optional[str]:
        """Return a summary, or ``None`` when nothing usable came back."""

    async def translate(self, text: str, options: TranslateOptions) -> str:
        """Return ``text`` translated to ``options.target_language``."""

    async def adjust_tone(self, text: str, options: ToneOptions) -> str:
        """Return ``text`` rewritten in ``options.tone``."""


class UnconfiguredTransformer:
    """Stand-in used when no LLM credentials are available."""

    async def summarise(self, text: str, options: SummariseOptions) -> Optional[str]:
        raise TransformerUnavailableError("Text transformer is not configured")

    async def translate(self, text: str, options: TranslateOptions) -> str:
        raise TransformerUnavailableError("Text transformer is not configured")

    async def adjust_tone(self, text: str, options: ToneOptions) -> str:
        raise TransformerUnavailableError("Text transformer is not configured")


class LLMTextTransformer:
    """Runs each transformation as a single-turn pydantic-ai agent call."""

    def __init__(self, config: LLMConfig) -> None:
        self._config = config
        self._model: Any = None

    @property
    def available(self) -> bool:
        return bool(self._config.api_key)

    def _get_model(self) -> Any:
        if not self.available:
            raise TransformerUnavailableError("LLM API key is not configured")
        if self._model is None:
            from pydantic_ai.models.openai import OpenAIChatModel
            from pydantic_ai.providers.openai import OpenAIProvider

            provider = OpenAIProvider(
                api_key=self._config.api_key, base_url=self._config.base_url
            )
            self._model = OpenAIChatModel(self._config.model, provider=provider)
        return self._model

    async def _complete(
        self,
        system_prompt: str,
        text: str,
        max_tokens: int,
        temperature: float = 0.3,
    ) -> Optional[str]:
        agent = Agent(self._get_model(), system_prompt=system_prompt)
        result = await agent.run(
            text,
            model_settings={"max_tokens": max_tokens, "temperature": temperature},
        )
        output = result.output
        if not isinstance(output, str) or not output.strip():
            return None
        return output.strip()

    async def summarise(self, text: str, options: SummariseOptions) -> Optional[str]:
        if options.style == "paragraph":
            style_instruction = "Return a single concise paragraph."
        else:
            style_instruction = f"Respond with {options.bullet_count} bullet points."
        keyword_instruction = (
            " Append a short list of 3 keywords in bold at the end."
            if options.include_keywords
            else ""
        )
        return await self._complete(
            f"Summarise the provided text. {style_instruction}{keyword_instruction}",
            text[:SUMMARY_INPUT_LIMIT],
            max_tokens=220 if options.style == "paragraph" else 180,
        )

    async def translate(self, text: str, options: TranslateOptions) -> str:
        result = await self._complete(
            f"Translate the incoming text to {options.target_language}. "
            "Preserve names and numbers.",
            text,
            max_tokens=max(64, min(2000, round(len(text) * 1.2))),
        )
        if not result:
            raise ValueError("No translation returned")
        if options.keep_original:
            return f"{result}\n\n---\n\n{text}"
        return result

    async def adjust_tone(self, text: str, options: ToneOptions) -> str:
        audience = (
            f" The intended audience is: {options.audience_hint}."
            if options.audience_hint
            else ""
        )
        result = await self._complete(
            f"Rewrite the input text with a {options.tone} tone. Keep meaning intact.{audience}",
            text,
            max_tokens=max(64, min(2000, round(len(text) * 1.1))),
            temperature=0.5,
        )
        if not result:
            raise ValueError("No tone-adjusted text returned")
        return result


def build_transformer(config: LLMConfig) -> TextTransformer:
    if not config.api_key:
        logger.info("No LLM API key configured; LLM-backed steps will be skipped")
        return UnconfiguredTransformer()
    return LLMTextTransformer(config)
