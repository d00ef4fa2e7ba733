"""Shared fakes for the bolted store tests."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import pytest

from bolted_store import BoltedVectorStore, StoreConfig


class FakeTextGenerator:
    """Deterministic text generator that echoes the content block of the prompt."""

    def __init__(self, prefix: str = "description of") -> None:
        self.prefix = prefix
        self.prompts: list[str] = []

    async def generate_text(self, prompt: str) -> str:
        self.prompts.append(prompt)
        body = prompt.split("```", 2)[1] if "```" in prompt else prompt
        return f"{self.prefix} {body.strip()}"


class FailingTextGenerator:
    async def generate_text(self, prompt: str) -> str:
        raise RuntimeError("model unavailable")


@dataclass
class _FakeResponse:
    text: str | None


class _FakeModels:
    def __init__(self, text: str | None) -> None:
        self.text = text
        self.calls: list[dict[str, str]] = []

    async def generate_content(self, *, model: str, contents: str) -> _FakeResponse:
        self.calls.append({"model": model, "contents": contents})
        return _FakeResponse(text=self.text)


class _FakeAio:
    def __init__(self, models: _FakeModels) -> None:
        self.models = models


class FakeGenAIClient:
    """Stands in for ``google.genai.Client`` with only the async models surface."""

    def __init__(self, text: str | None = "a generated description") -> None:
        self.models = _FakeModels(text)
        self.aio = _FakeAio(self.models)


@pytest.fixture()
def text_generator() -> FakeTextGenerator:
    return FakeTextGenerator()


@pytest.fixture()
def small_config(tmp_path: Path) -> StoreConfig:
    return StoreConfig(
        dimension=64,
        index_type="flat",
        chunk_store_root=str(tmp_path / "chunks"),
        max_chunk_size=100,
        max_active_chunks=4,
        num_partitions=4,
    )


@pytest.fixture()
def store(small_config: StoreConfig, text_generator: FakeTextGenerator):
    vector_store = BoltedVectorStore(small_config, text_generator=text_generator)
    yield vector_store
    vector_store.close()
