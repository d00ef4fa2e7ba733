"""
Binary chunk file codec.

Layout (little-endian)::

    magic    b"BVSC"
    version  u16
    backend  u8 length + ASCII tag ("flat", "hnsw", "hybrid")
    dim      u32
    count    u32
    count x entry:
        identifier, content_type, content_hash   (u32 length + UTF-8 each)
        combined, structural, semantic vectors   (dim x float32 each)
        metadata count u32, then key/value strings (u32 length + UTF-8)

Entries are written in insertion order and metadata in mapping order, so
``encode(decode(data)) == data``.
"""

from __future__ import annotations

import os
import struct
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import numpy as np

from ..models import BoltedEmbedding, Embedding

MAGIC = b"BVSC"
FORMAT_VERSION = 1
CHUNK_SUFFIX = ".chunk"

_U8 = struct.Struct("<B")
_U16 = struct.Struct("<H")
_U32 = struct.Struct("<I")
_FLOAT = np.dtype("<f4")


class ChunkFormatError(ValueError):
    """Raised when chunk bytes cannot be decoded."""


@dataclass(frozen=True)
class DecodedChunk:
    backend_type: str
    dimension: int
    entries: list[BoltedEmbedding]


def chunk_path(root: str | Path, chunk_id: str) -> Path:
    return Path(root) / f"{chunk_id}{CHUNK_SUFFIX}"


def _pack_str(out: bytearray, value: str) -> None:
    raw = value.encode("utf-8")
    out += _U32.pack(len(raw))
    out += raw


def _pack_vector(out: bytearray, vector: np.ndarray, dimension: int) -> None:
    if vector.shape[0] != dimension:
        raise ChunkFormatError(
            f"Vector length {vector.shape[0]} does not match chunk dimension {dimension}"
        )
    out += np.asarray(vector, dtype=_FLOAT).tobytes()


def encode_chunk(
    backend_type: str, dimension: int, entries: Iterable[BoltedEmbedding]
) -> bytes:
    items = list(entries)
    tag = backend_type.encode("ascii")
    out = bytearray(MAGIC)
    out += _U16.pack(FORMAT_VERSION)
    out += _U8.pack(len(tag))
    out += tag
    out += _U32.pack(dimension)
    out += _U32.pack(len(items))
    for entry in items:
        _pack_str(out, entry.identifier)
        _pack_str(out, entry.content_type)
        _pack_str(out, entry.content_hash)
        _pack_vector(out, entry.vector, dimension)
        _pack_vector(out, entry.structural_component.vector, dimension)
        _pack_vector(out, entry.semantic_component.vector, dimension)
        out += _U32.pack(len(entry.metadata))
        for key, value in entry.metadata.items():
            _pack_str(out, key)
            _pack_str(out, value)
    return bytes(out)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._offset = 0

    def take(self, size: int) -> bytes:
        end = self._offset + size
        if end > len(self._data):
            raise ChunkFormatError("Unexpected end of chunk data")
        chunk = self._data[self._offset : end]
        self._offset = end
        return chunk

    def unpack(self, fmt: struct.Struct) -> int:
        return int(fmt.unpack(self.take(fmt.size))[0])

    def string(self) -> str:
        length = self.unpack(_U32)
        try:
            return self.take(length).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise ChunkFormatError(f"Invalid UTF-8 in chunk data: {exc}") from exc

    def vector(self, dimension: int) -> np.ndarray:
        raw = self.take(dimension * _FLOAT.itemsize)
        return np.frombuffer(raw, dtype=_FLOAT).astype(np.float32)

    @property
    def exhausted(self) -> bool:
        return self._offset == len(self._data)


def decode_chunk(data: bytes) -> DecodedChunk:
    reader = _Reader(data)
    if reader.take(len(MAGIC)) != MAGIC:
        raise ChunkFormatError("Bad magic header")
    version = reader.unpack(_U16)
    if version != FORMAT_VERSION:
        raise ChunkFormatError(f"Unsupported chunk format version {version}")
    tag_length = reader.unpack(_U8)
    try:
        backend_type = reader.take(tag_length).decode("ascii")
    except UnicodeDecodeError as exc:
        raise ChunkFormatError("Backend tag is not ASCII") from exc
    dimension = reader.unpack(_U32)
    count = reader.unpack(_U32)

    entries: list[BoltedEmbedding] = []
    for _ in range(count):
        identifier = reader.string()
        content_type = reader.string()
        content_hash = reader.string()
        combined = reader.vector(dimension)
        structural = reader.vector(dimension)
        semantic = reader.vector(dimension)
        metadata: dict[str, str] = {}
        for _ in range(reader.unpack(_U32)):
            key = reader.string()
            metadata[key] = reader.string()
        entries.append(
            BoltedEmbedding(
                identifier=identifier,
                vector=combined,
                structural_component=Embedding(
                    identifier=identifier,
                    vector=structural,
                    content_type=content_type,
                    content_hash=content_hash,
                ),
                semantic_component=Embedding(
                    identifier=identifier,
                    vector=semantic,
                    content_type=content_type,
                    content_hash=content_hash,
                ),
                metadata=metadata,
            )
        )
    if not reader.exhausted:
        raise ChunkFormatError("Trailing bytes after last entry")
    return DecodedChunk(backend_type=backend_type, dimension=dimension, entries=entries)


def write_chunk_file(path: Path, payload: bytes) -> None:
    """Write *payload* atomically: temp file in the same directory, then rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(payload)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise


def read_chunk_file(path: Path) -> bytes:
    return path.read_bytes()
