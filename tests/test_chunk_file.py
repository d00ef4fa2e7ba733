"""Tests for the binary chunk file format and IndexChunk."""

from __future__ import annotations

import asyncio
from pathlib import Path

import numpy as np
import pytest

from bolted_store.embeddings import BoltedEmbeddingGenerator
from bolted_store.models import BoltedEmbedding
from bolted_store.storage import ChunkFormatError, IndexChunk, decode_chunk, encode_chunk
from bolted_store.storage.chunk_file import MAGIC, chunk_path, read_chunk_file, write_chunk_file

from conftest import FakeTextGenerator


def _entries(dimension: int = 8) -> list[BoltedEmbedding]:
    generator = BoltedEmbeddingGenerator(dimension, text_generator=FakeTextGenerator())
    return [
        asyncio.run(
            generator.generate(
                text,
                content_type,
                identifier=identifier,
                metadata={"lang": "en", "name": identifier},
            )
        )
        for identifier, text, content_type in [
            ("readme", "# Title\n\n- one\n- two", "markdown"),
            ("notes", "plain notes about the roadmap", "text"),
            ("ünïcode", "naïve café résumé", "text"),
        ]
    ]


def test_encode_decode_is_byte_identical() -> None:
    entries = _entries()
    data = encode_chunk("hnsw", 8, entries)

    decoded = decode_chunk(data)

    assert data.startswith(MAGIC)
    assert decoded.backend_type == "hnsw"
    assert decoded.dimension == 8
    assert decoded.entries == entries
    assert encode_chunk(decoded.backend_type, decoded.dimension, decoded.entries) == data


def test_empty_chunk_round_trips() -> None:
    data = encode_chunk("flat", 4, [])

    decoded = decode_chunk(data)

    assert decoded.entries == []
    assert encode_chunk("flat", 4, decoded.entries) == data


@pytest.mark.parametrize(
    "mutate",
    [
        lambda data: b"XXXX" + data[4:],
        lambda data: data[:-3],
        lambda data: data + b"\x00",
        lambda data: data[:4] + b"\x09\x00" + data[6:],
    ],
)
def test_decode_rejects_corrupt_data(mutate) -> None:
    data = encode_chunk("flat", 8, _entries())

    with pytest.raises(ChunkFormatError):
        decode_chunk(mutate(data))


def test_write_chunk_file_is_atomic_and_leaves_no_temp_files(tmp_path: Path) -> None:
    path = chunk_path(tmp_path / "chunks", "part-0001")

    write_chunk_file(path, b"first")
    write_chunk_file(path, b"second")

    assert read_chunk_file(path) == b"second"
    assert [p.name for p in path.parent.iterdir()] == ["part-0001.chunk"]


def test_index_chunk_round_trips_through_bytes() -> None:
    chunk = IndexChunk("part-0000", dimension=8, backend_type="flat", max_capacity=10)
    for entry in _entries():
        assert chunk.upsert(entry)
    assert chunk.dirty

    decoded = decode_chunk(chunk.to_bytes())
    restored = IndexChunk.from_entries(
        "part-0000",
        decoded.entries,
        dimension=8,
        backend_type=decoded.backend_type,
        max_capacity=10,
    )

    assert not restored.dirty
    assert len(restored) == 3
    assert restored.to_bytes() == chunk.to_bytes()
    query = restored.get("notes").vector
    assert restored.search(query, 1)[0].identifier == "notes"


def test_index_chunk_upsert_of_unchanged_content_is_a_no_op() -> None:
    entry = _entries()[0]
    chunk = IndexChunk.from_entries(
        "c", [entry], dimension=8, backend_type="flat", max_capacity=10
    )

    assert chunk.upsert(entry) is False
    assert not chunk.dirty
    assert chunk.upsert(entry.with_metadata({"lang": "de"})) is True
    assert chunk.dirty
    assert chunk.get(entry.identifier).metadata["lang"] == "de"


def test_index_chunk_emphasis_rescores_components() -> None:
    chunk = IndexChunk("c", dimension=4, backend_type="hnsw", max_capacity=10)
    structural_hit = BoltedEmbedding.from_vector("s", np.array([1.0, 0.0, 0.0, 0.0]))
    other = BoltedEmbedding.from_vector("o", np.array([0.0, 1.0, 0.0, 0.0]))
    chunk.upsert(structural_hit)
    chunk.upsert(other)

    results = chunk.search(np.array([1.0, 0.0, 0.0, 0.0]), 2, emphasis_weights=(1.0, 0.0))

    assert [hit.identifier for hit in results] == ["s", "o"]
    assert results[0].similarity == pytest.approx(1.0)
