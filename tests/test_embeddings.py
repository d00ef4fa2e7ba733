"""Tests for bolted embedding generation and the Gemini text generator."""

from __future__ import annotations

import asyncio

import numpy as np
import pytest

from bolted_store.embeddings import (
    BoltedEmbeddingGenerator,
    fuse,
    structural_features,
    structural_vector,
    text_to_vector,
)
from bolted_store.errors import DimensionMismatch, ExternalGenerationFailure
from bolted_store.generation import GeminiTextGenerator, build_description_prompt
from bolted_store.models import content_digest
from bolted_store.vectors import cosine_similarity, l2_norm

from conftest import FailingTextGenerator, FakeGenAIClient, FakeTextGenerator


MARKDOWN = "# Quarterly report\n\n- revenue grew\n- costs fell\n\nSee https://example.com"


# ---------------------------------------------------------------------------
# Structural and semantic vectors
# ---------------------------------------------------------------------------


def test_structural_vector_is_deterministic_and_normalized() -> None:
    first = structural_vector(MARKDOWN, "markdown", 64)
    second = structural_vector(MARKDOWN, "markdown", 64)

    assert np.array_equal(first, second)
    assert 0.999 <= l2_norm(first) <= 1.001


def test_structural_features_see_formatting() -> None:
    plain = structural_features("revenue grew and costs fell", "text")
    marked = structural_features(MARKDOWN, "text")

    assert plain != marked
    assert len(plain) == len(marked)


def test_structural_vector_of_empty_content_is_not_zero() -> None:
    assert l2_norm(structural_vector("", "text", 16)) == pytest.approx(1.0, abs=1e-3)


def test_text_to_vector_groups_similar_text() -> None:
    a = text_to_vector("the invoice total is due in march", 128)
    b = text_to_vector("invoice total due in march", 128)
    c = text_to_vector("kernel scheduler preemption latency", 128)

    assert cosine_similarity(a, b) > cosine_similarity(a, c)


def test_text_to_vector_of_empty_text_is_zero() -> None:
    assert not text_to_vector("", 16).any()


def test_fuse_rejects_mismatched_components() -> None:
    with pytest.raises(DimensionMismatch):
        fuse(np.ones(8, dtype=np.float32), np.ones(6, dtype=np.float32), 0.3, 0.7)


def test_generator_rejects_invalid_weights() -> None:
    with pytest.raises(ValueError):
        BoltedEmbeddingGenerator(16, structural_weight=0.0, semantic_weight=0.0)
    with pytest.raises(ValueError):
        BoltedEmbeddingGenerator(16, structural_weight=-1.0, semantic_weight=1.0)


# ---------------------------------------------------------------------------
# BoltedEmbeddingGenerator
# ---------------------------------------------------------------------------


def test_generate_fuses_normalized_components() -> None:
    fake = FakeTextGenerator()
    generator = BoltedEmbeddingGenerator(32, text_generator=fake)

    embedding = asyncio.run(generator.generate(MARKDOWN, "markdown", identifier="report"))

    assert embedding.identifier == "report"
    assert embedding.dimension == 32
    assert embedding.content_type == "markdown"
    assert embedding.content_hash == content_digest(MARKDOWN)
    assert 0.999 <= l2_norm(embedding.vector) <= 1.001
    expected = fuse(
        embedding.structural_component.vector,
        embedding.semantic_component.vector,
        0.3,
        0.7,
    )
    assert np.allclose(embedding.vector, expected, atol=1e-6)
    assert len(fake.prompts) == 1
    assert "Quarterly report" in fake.prompts[0]


def test_generate_is_deterministic_with_a_deterministic_generator() -> None:
    generator = BoltedEmbeddingGenerator(32, text_generator=FakeTextGenerator())

    first = asyncio.run(generator.generate("same text"))
    second = asyncio.run(generator.generate("same text"))

    assert first == second
    assert first.identifier.startswith("text:")


def test_generate_honours_weight_overrides() -> None:
    generator = BoltedEmbeddingGenerator(32, text_generator=FakeTextGenerator())

    structural_only = asyncio.run(
        generator.generate(MARKDOWN, "markdown", structural_weight=1.0, semantic_weight=0.0)
    )

    assert np.allclose(
        structural_only.vector, structural_only.structural_component.vector, atol=1e-6
    )


def test_generate_requires_a_text_generator() -> None:
    generator = BoltedEmbeddingGenerator(16)

    with pytest.raises(ValueError, match="text generator"):
        asyncio.run(generator.generate("hello"))


def test_generator_failure_is_wrapped() -> None:
    generator = BoltedEmbeddingGenerator(16, text_generator=FailingTextGenerator())

    with pytest.raises(ExternalGenerationFailure, match="model unavailable"):
        asyncio.run(generator.generate("hello"))


def test_generator_timeout_becomes_generation_failure() -> None:
    class SlowTextGenerator:
        async def generate_text(self, prompt: str) -> str:
            await asyncio.sleep(5)
            return "too late"

    generator = BoltedEmbeddingGenerator(
        16, text_generator=SlowTextGenerator(), generation_timeout=0.05
    )

    with pytest.raises(ExternalGenerationFailure, match="timed out"):
        asyncio.run(generator.generate("hello"))


def test_description_prompt_is_truncated() -> None:
    prompt = build_description_prompt("x" * 100, "text", max_chars=10)

    assert "x" * 10 + "\n[...]" in prompt
    assert "x" * 11 not in prompt


# ---------------------------------------------------------------------------
# GeminiTextGenerator
# ---------------------------------------------------------------------------


def test_gemini_generator_uses_injected_client() -> None:
    client = FakeGenAIClient(text="an invoice from march")
    generator = GeminiTextGenerator(client=client, model="test-model")

    text = asyncio.run(generator.generate_text("describe this"))

    assert text == "an invoice from march"
    assert client.models.calls == [{"model": "test-model", "contents": "describe this"}]


def test_gemini_generator_rejects_empty_response() -> None:
    generator = GeminiTextGenerator(client=FakeGenAIClient(text=""))

    with pytest.raises(ExternalGenerationFailure, match="empty"):
        asyncio.run(generator.generate_text("describe this"))


def test_gemini_generator_requires_api_key(monkeypatch) -> None:
    monkeypatch.delenv("GOOGLE_API_KEY", raising=False)

    with pytest.raises(ValueError, match="GOOGLE_API_KEY"):
        GeminiTextGenerator()


def test_gemini_generator_model_from_env(monkeypatch) -> None:
    monkeypatch.setenv("BOLTED_STORE_GENERATION_MODEL", "gemini-test")

    generator = GeminiTextGenerator(client=FakeGenAIClient())

    assert generator.model == "gemini-test"
