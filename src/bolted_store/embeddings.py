"""
Bolted embedding generation.

A bolted embedding fuses two independently computed views of the same content:

- a *structural* vector, a pure function of the text's shape (length profile,
  token-class histogram, formatting markers);
- a *semantic* vector, obtained by asking the text generator to describe the
  content and hashing that description into the vector space.

The two are combined as ``normalize(w_s * structural + w_m * semantic)``.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import math
import re
from collections import Counter
from typing import Any

import numpy as np

from .config import StoreConfig
from .errors import ExternalGenerationFailure
from .generation import TextGenerator, build_description_prompt
from .models import BoltedEmbedding, Embedding, content_digest
from .vectors import normalize, weighted_sum

logger = logging.getLogger(__name__)

_WORD_RE = re.compile(r"\w+", re.UNICODE)
_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s", re.MULTILINE)
_BULLET_RE = re.compile(r"^\s*[-*+]\s+", re.MULTILINE)
_NUMBERED_RE = re.compile(r"^\s*\d+[.)]\s+", re.MULTILINE)
_FENCE_RE = re.compile(r"^\s*(```|~~~)", re.MULTILINE)
_TABLE_RE = re.compile(r"^\s*\|.*\|\s*$", re.MULTILINE)
_QUOTE_RE = re.compile(r"^\s*>", re.MULTILINE)
_URL_RE = re.compile(r"https?://\S+")
_EMPHASIS_RE = re.compile(r"(\*\*|__)[^*_\n]+\1|(?<![*\w])\*[^*\n]+\*(?!\*)")

_CONTENT_TYPE_SLOTS = 8


def _log_scale(count: float, ceiling: float) -> float:
    return min(math.log1p(count) / math.log1p(ceiling), 1.0)


def _ratio(part: int, whole: int) -> float:
    return part / whole if whole else 0.0


def structural_features(content: str, content_type: str = "text") -> list[float]:
    """Deterministic shape features of *content*; no external calls."""
    n_chars = len(content)
    lines = content.splitlines()
    n_lines = max(len(lines), 1 if content else 0)
    words = _WORD_RE.findall(content)
    paragraphs = [p for p in re.split(r"\n\s*\n", content) if p.strip()]

    alpha = sum(1 for ch in content if ch.isalpha())
    digits = sum(1 for ch in content if ch.isdigit())
    spaces = sum(1 for ch in content if ch.isspace())
    upper = sum(1 for ch in content if ch.isupper())
    non_ascii = sum(1 for ch in content if ord(ch) > 127)
    punct = n_chars - alpha - digits - spaces

    mean_word = sum(len(w) for w in words) / len(words) if words else 0.0
    mean_line = n_chars / n_lines if n_lines else 0.0

    features = [
        1.0,  # bias keeps the structural view non-zero for empty input
        _log_scale(n_chars, 100_000),
        _log_scale(len(words), 20_000),
        _log_scale(n_lines, 5_000),
        _log_scale(len(paragraphs), 1_000),
        min(mean_word / 12.0, 1.0),
        min(mean_line / 160.0, 1.0),
        _ratio(alpha, n_chars),
        _ratio(digits, n_chars),
        _ratio(punct, n_chars),
        _ratio(spaces, n_chars),
        _ratio(upper, max(alpha, 1)),
        _ratio(non_ascii, n_chars),
        _ratio(len(_HEADING_RE.findall(content)), n_lines),
        _ratio(len(_BULLET_RE.findall(content)), n_lines),
        _ratio(len(_NUMBERED_RE.findall(content)), n_lines),
        min(len(_FENCE_RE.findall(content)) / 10.0, 1.0),
        _ratio(len(_TABLE_RE.findall(content)), n_lines),
        _ratio(len(_QUOTE_RE.findall(content)), n_lines),
        min(len(_URL_RE.findall(content)) / 20.0, 1.0),
        min(len(_EMPHASIS_RE.findall(content)) / 20.0, 1.0),
    ]

    type_slot = int.from_bytes(
        hashlib.blake2b(content_type.lower().encode("utf-8"), digest_size=4).digest(), "big"
    ) % _CONTENT_TYPE_SLOTS
    features.extend(1.0 if slot == type_slot else 0.0 for slot in range(_CONTENT_TYPE_SLOTS))
    return features


def structural_vector(content: str, content_type: str, dimension: int) -> np.ndarray:
    """Fold the structural features into *dimension* slots and normalize."""
    vector = np.zeros(dimension, dtype=np.float64)
    for index, value in enumerate(structural_features(content, content_type)):
        vector[index % dimension] += value
    return normalize(vector.astype(np.float32))


def _hashed_slot(feature: str, dimension: int) -> tuple[int, float]:
    value = int.from_bytes(
        hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest(), "big"
    )
    sign = -1.0 if value >> 63 else 1.0
    return value % dimension, sign


def text_to_vector(text: str, dimension: int) -> np.ndarray:
    """
    Deterministic text -> vector mapping via signed feature hashing.

    Word unigrams (weight 1.0), bigrams (0.5) and character trigrams (0.25)
    with sublinear term frequency. Empty text maps to the zero vector.
    """
    words = [w.lower() for w in _WORD_RE.findall(text)]
    counts: Counter[tuple[str, float]] = Counter()
    for word in words:
        counts[(f"w:{word}", 1.0)] += 1
        padded = f"#{word}#"
        for i in range(len(padded) - 2):
            counts[(f"c:{padded[i : i + 3]}", 0.25)] += 1
    for first, second in zip(words, words[1:]):
        counts[(f"b:{first} {second}", 0.5)] += 1

    vector = np.zeros(dimension, dtype=np.float64)
    for (feature, weight), count in counts.items():
        slot, sign = _hashed_slot(feature, dimension)
        vector[slot] += sign * weight * (1.0 + math.log(count))
    return normalize(vector.astype(np.float32))


def fuse(
    structural: np.ndarray,
    semantic: np.ndarray,
    structural_weight: float,
    semantic_weight: float,
) -> np.ndarray:
    """Weighted, normalized fusion. Raises DimensionMismatch on length mismatch."""
    return weighted_sum(structural, semantic, structural_weight, semantic_weight)


def validate_weights(structural_weight: float, semantic_weight: float) -> None:
    if structural_weight < 0 or semantic_weight < 0:
        raise ValueError("Emphasis weights must be non-negative")
    if structural_weight + semantic_weight <= 0:
        raise ValueError("At least one emphasis weight must be positive")


class BoltedEmbeddingGenerator:
    """Produce BoltedEmbeddings from raw text."""

    def __init__(
        self,
        dimension: int,
        *,
        text_generator: TextGenerator | None = None,
        structural_weight: float = 0.3,
        semantic_weight: float = 0.7,
        generation_timeout: float | None = 60.0,
        max_prompt_chars: int = 6000,
    ) -> None:
        validate_weights(structural_weight, semantic_weight)
        self.dimension = dimension
        self.text_generator = text_generator
        self.structural_weight = structural_weight
        self.semantic_weight = semantic_weight
        self.generation_timeout = generation_timeout
        self.max_prompt_chars = max_prompt_chars

    @classmethod
    def from_config(
        cls, config: StoreConfig, text_generator: TextGenerator | None = None
    ) -> "BoltedEmbeddingGenerator":
        return cls(
            config.dimension,
            text_generator=text_generator,
            structural_weight=config.structural_weight,
            semantic_weight=config.semantic_weight,
            generation_timeout=config.generation_timeout,
            max_prompt_chars=config.max_prompt_chars,
        )

    def structural_embedding(
        self, content: str, content_type: str, *, identifier: str, content_hash: str
    ) -> Embedding:
        return Embedding(
            identifier=identifier,
            vector=structural_vector(content, content_type, self.dimension),
            content_type=content_type,
            content_hash=content_hash,
        )

    async def describe(self, content: str, content_type: str, text_generator: TextGenerator) -> str:
        """Ask the text generator for a natural-language description of *content*."""
        prompt = build_description_prompt(content, content_type, self.max_prompt_chars)
        try:
            if self.generation_timeout is None:
                return await text_generator.generate_text(prompt)
            return await asyncio.wait_for(
                text_generator.generate_text(prompt), timeout=self.generation_timeout
            )
        except ExternalGenerationFailure:
            raise
        except asyncio.TimeoutError as exc:
            raise ExternalGenerationFailure(
                f"Text generation timed out after {self.generation_timeout}s"
            ) from exc
        except Exception as exc:
            raise ExternalGenerationFailure(f"Text generation failed: {exc}") from exc

    async def semantic_embedding(
        self,
        content: str,
        content_type: str,
        *,
        identifier: str,
        content_hash: str,
        text_generator: TextGenerator,
    ) -> Embedding:
        description = await self.describe(content, content_type, text_generator)
        return Embedding(
            identifier=identifier,
            vector=text_to_vector(description, self.dimension),
            content_type=content_type,
            content_hash=content_hash,
        )

    async def generate(
        self,
        content: str,
        content_type: str = "text",
        structural_weight: float | None = None,
        semantic_weight: float | None = None,
        text_generator: TextGenerator | None = None,
        *,
        identifier: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> BoltedEmbedding:
        """Build the structural and semantic views of *content* and fuse them."""
        w_s = self.structural_weight if structural_weight is None else structural_weight
        w_m = self.semantic_weight if semantic_weight is None else semantic_weight
        validate_weights(w_s, w_m)
        generator = text_generator or self.text_generator
        if generator is None:
            raise ValueError("A text generator is required for the semantic component")

        digest = content_digest(content)
        ident = identifier or f"{content_type}:{digest[:24]}"
        structural = self.structural_embedding(
            content, content_type, identifier=ident, content_hash=digest
        )
        semantic = await self.semantic_embedding(
            content,
            content_type,
            identifier=ident,
            content_hash=digest,
            text_generator=generator,
        )
        combined = fuse(structural.vector, semantic.vector, w_s, w_m)
        logger.debug("Generated bolted embedding %s (dimension=%d)", ident, self.dimension)
        return BoltedEmbedding(
            identifier=ident,
            vector=combined,
            structural_component=structural,
            semantic_component=semantic,
            metadata={str(k): str(v) for k, v in (metadata or {}).items()},
        )
