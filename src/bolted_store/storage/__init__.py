"""Chunked persistence and residency management for the vector store."""

from .chunk import IndexChunk
from .chunk_file import (
    CHUNK_SUFFIX,
    ChunkFormatError,
    DecodedChunk,
    chunk_path,
    decode_chunk,
    encode_chunk,
)
from .manager import ChunkManager
from .memory import MemoryMonitor

__all__ = [
    "CHUNK_SUFFIX",
    "ChunkFormatError",
    "DecodedChunk",
    "chunk_path",
    "decode_chunk",
    "encode_chunk",
    "IndexChunk",
    "ChunkManager",
    "MemoryMonitor",
]
