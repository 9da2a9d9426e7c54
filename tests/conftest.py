"""Shared fixtures for scriptflow tests."""

import pytest

from scriptflow.sources import ReadableContent
from scriptflow.validation import parse_create_payload


def _sample_payload(**overrides):
    payload = {
        "name": "Morning digest",
        "description": "Daily news read aloud",
        "steps": [
            {"id": "clean-1", "kind": "clean", "options": {"normaliseWhitespace": True}},
            {"id": "chunk-1", "kind": "chunk", "options": {"maxCharacters": 1600}},
            {
                "id": "queue-1",
                "kind": "queue",
                "options": {"provider": "acme", "voicePreference": "default"},
            },
        ],
    }
    payload.update(overrides)
    return payload


class RecordingFetcher:
    """Fake URL fetcher remembering which URLs were requested."""

    def __init__(self, content="Fetched paragraph one.\n\nFetched paragraph two."):
        self.urls = []
        self.content = content

    async def __call__(self, url):
        self.urls.append(url)
        return ReadableContent(title="Fetched", content=self.content)


class EchoTransformer:
    """Transformer answering deterministically without a network."""

    async def summarise(self, text, options):
        return f"summary of {len(text)} chars"

    async def translate(self, text, options):
        return f"[{options.target_language}] {text}"

    async def adjust_tone(self, text, options):
        return f"({options.tone}) {text}"


@pytest.fixture
def make_payload():
    """Factory for a valid create body; keyword overrides replace top-level keys."""
    return _sample_payload


@pytest.fixture
def make_create():
    return lambda **overrides: parse_create_payload(_sample_payload(**overrides))


@pytest.fixture
def fetcher():
    return RecordingFetcher()


@pytest.fixture
def echo_transformer():
    return EchoTransformer()
