"""
Chunk manager: routes embeddings to chunks, pages chunks in and out of memory
under an LRU policy, and fans searches out across chunks.

Per-chunk lifecycle::

    Unloaded -> Loading -> Resident(clean) <-> Resident(dirty) -> Saving -> Unloaded

Locking:

- ``_registry`` guards bookkeeping only (resident map, LRU order, pins, known
  chunk ids, memory figures). Disk I/O and vector work never run under it.
- each chunk's ``lock`` serializes operations on that chunk's state.
- a per-chunk-id load lock ensures a chunk file is deserialized once.
- a per-partition route lock serializes inserts into one overflow chain.
"""

from __future__ import annotations

import hashlib
import logging
import re
import threading
import time
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, wait
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any, Iterator, Sequence

import numpy as np

from ..config import StoreConfig, resolve_chunk_root
from ..errors import (
    BoltedStoreError,
    ChunkLoadError,
    ChunkPersistenceError,
    DimensionMismatch,
    EntityNotFound,
)
from ..index import SearchParams
from ..models import BoltedEmbedding, SearchResponse, SearchResult
from ..search.ranker import merge_results
from ..vectors import as_vector
from .chunk import IndexChunk
from .chunk_file import (
    CHUNK_SUFFIX,
    ChunkFormatError,
    chunk_path,
    decode_chunk,
    read_chunk_file,
    write_chunk_file,
)
from .memory import MemoryMonitor

logger = logging.getLogger(__name__)

_SAFE_KEY_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.\-]{0,79}$")
OVERFLOW_SEPARATOR = "~"


class ChunkManager:
    """Process-wide owner of resident IndexChunks."""

    def __init__(self, config: StoreConfig, *, chunk_root: str | Path | None = None) -> None:
        self.config = config
        self.root = Path(
            resolve_chunk_root(str(chunk_root) if chunk_root is not None else config.chunk_store_root)
        )
        self.monitor = MemoryMonitor(config.memory_target)

        self._registry = threading.Lock()
        self._resident: OrderedDict[str, IndexChunk] = OrderedDict()
        self._evicting: set[str] = set()
        self._load_locks: dict[str, threading.Lock] = {}
        self._route_locks: dict[str, threading.Lock] = {}
        self._persisted: set[str] = self._scan_persisted()
        self._known: set[str] = set(self._persisted)
        self._closed = False
        logger.info(
            "Chunk manager ready at %s with %d persisted chunks", self.root, len(self._persisted)
        )

    def __enter__(self) -> "ChunkManager":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # -- routing -----------------------------------------------------------

    def partition_chunk_id(self, partition_key: str) -> str:
        """Chunk id for an explicit partition key; unsafe keys are hashed."""
        if _SAFE_KEY_RE.match(partition_key):
            return partition_key
        digest = hashlib.sha1(partition_key.encode("utf-8")).hexdigest()[:16]
        return f"key-{digest}"

    def route(self, identifier: str, partition_key: str | None = None) -> str:
        """Base chunk id owning *identifier*."""
        if partition_key is not None:
            return self.partition_chunk_id(partition_key)
        digest = hashlib.sha1(identifier.encode("utf-8")).hexdigest()
        return f"part-{int(digest[:8], 16) % self.config.num_partitions:04d}"

    def _chain(self, base: str) -> list[str]:
        """Known chunk ids for *base*: the base chunk then its overflow chunks."""
        prefix = base + OVERFLOW_SEPARATOR
        with self._registry:
            known = list(self._known)
        overflow: list[tuple[int, str]] = []
        for chunk_id in known:
            suffix = chunk_id[len(prefix) :] if chunk_id.startswith(prefix) else ""
            if suffix.isdigit():
                overflow.append((int(suffix), chunk_id))
        chain = [base] if base in known else []
        chain.extend(chunk_id for _, chunk_id in sorted(overflow))
        return chain

    # -- residency ---------------------------------------------------------

    def ensure_loaded(self, chunk_id: str, *, pin: bool = False) -> IndexChunk:
        """
        Return the resident chunk, loading it from disk or creating it empty.

        A chunk that was persisted earlier must load successfully; a missing or
        corrupt file raises ChunkLoadError instead of yielding an empty chunk.
        """
        with self._registry:
            chunk = self._claim_resident(chunk_id, pin)
            if chunk is not None:
                return chunk
            load_lock = self._load_locks.setdefault(chunk_id, threading.Lock())

        with load_lock:
            with self._registry:
                chunk = self._claim_resident(chunk_id, pin)
                if chunk is not None:
                    return chunk
                expect_file = chunk_id in self._persisted

            chunk = self._load_chunk(chunk_id) if expect_file else self._new_chunk(chunk_id)

            with self._registry:
                self._resident[chunk_id] = chunk
                self._known.add(chunk_id)
                if pin:
                    chunk.pins += 1
                self.monitor.recompute(self._resident.values())
        return chunk

    def _claim_resident(self, chunk_id: str, pin: bool) -> IndexChunk | None:
        # Caller holds the registry lock.
        chunk = self._resident.get(chunk_id)
        if chunk is None:
            return None
        self._resident.move_to_end(chunk_id)
        if pin:
            chunk.pins += 1
        return chunk

    def _unpin(self, chunk: IndexChunk) -> None:
        with self._registry:
            chunk.pins -= 1
            self.monitor.recompute(self._resident.values())

    @contextmanager
    def _use_chunk(self, chunk_id: str) -> Iterator[IndexChunk]:
        chunk = self.ensure_loaded(chunk_id, pin=True)
        try:
            with chunk.lock:
                yield chunk
        finally:
            self._unpin(chunk)

    def _new_chunk(self, chunk_id: str) -> IndexChunk:
        logger.debug("Creating chunk %s", chunk_id)
        return IndexChunk(chunk_id, backend_type=self.config.index_type, **self._chunk_kwargs())

    def _chunk_kwargs(self) -> dict[str, Any]:
        return {
            "dimension": self.config.dimension,
            "max_capacity": self.config.max_chunk_size,
            "metric": self.config.metric,
            "m": self.config.m,
            "ef_construction": self.config.ef_construction,
            "ef_search": self.config.ef_search,
        }

    def _load_chunk(self, chunk_id: str) -> IndexChunk:
        path = chunk_path(self.root, chunk_id)
        try:
            payload = read_chunk_file(path)
        except FileNotFoundError as exc:
            raise ChunkLoadError(chunk_id, f"chunk file missing: {path}") from exc
        except OSError as exc:
            raise ChunkLoadError(chunk_id, str(exc)) from exc
        try:
            decoded = decode_chunk(payload)
        except ChunkFormatError as exc:
            raise ChunkLoadError(chunk_id, f"corrupt chunk file {path}: {exc}") from exc
        if decoded.dimension != self.config.dimension:
            raise ChunkLoadError(
                chunk_id,
                f"dimension {decoded.dimension} does not match configured {self.config.dimension}",
            )

        chunk = IndexChunk.from_entries(
            chunk_id,
            decoded.entries,
            backend_type=decoded.backend_type,
            **self._chunk_kwargs(),
        )
        logger.info("Loaded chunk %s (%d entries)", chunk_id, len(chunk))
        return chunk

    def _save_chunk(self, chunk: IndexChunk) -> None:
        # Caller holds chunk.lock.
        path = chunk_path(self.root, chunk.chunk_id)
        try:
            write_chunk_file(path, chunk.to_bytes())
        except (OSError, ChunkFormatError) as exc:
            raise ChunkPersistenceError(chunk.chunk_id, str(exc)) from exc
        chunk.dirty = False
        with self._registry:
            self._persisted.add(chunk.chunk_id)
        logger.debug("Saved chunk %s to %s", chunk.chunk_id, path)

    def _scan_persisted(self) -> set[str]:
        return {
            path.name[: -len(CHUNK_SUFFIX)]
            for path in self.root.glob(f"*{CHUNK_SUFFIX}")
            if path.is_file() and not path.name.startswith(".")
        }

    # -- eviction ----------------------------------------------------------

    def _pick_victim(self) -> IndexChunk | None:
        # Caller holds the registry lock.
        self.monitor.recompute(self._resident.values())
        over_count = len(self._resident) > self.config.max_active_chunks
        if not (over_count or self.monitor.over_budget) or not self._resident:
            return None
        chunk_id, chunk = next(iter(self._resident.items()))
        # Strict LRU: if the oldest chunk is busy, wait rather than skip ahead.
        if chunk.pins > 0 or chunk_id in self._evicting:
            return None
        self._evicting.add(chunk_id)
        return chunk

    def manage_memory(self) -> list[str]:
        """Evict least-recently-used chunks until within budget. Returns evicted ids."""
        evicted: list[str] = []
        while True:
            with self._registry:
                victim = self._pick_victim()
            if victim is None:
                return evicted
            chunk_id = victim.chunk_id
            try:
                with victim.lock:
                    if victim.dirty:
                        self._save_chunk(victim)
            except ChunkPersistenceError:
                logger.error("Keeping chunk %s resident: flush on eviction failed", chunk_id)
                with self._registry:
                    self._evicting.discard(chunk_id)
                raise

            with self._registry:
                self._evicting.discard(chunk_id)
                if victim.pins > 0 or victim.dirty or self._resident.get(chunk_id) is not victim:
                    # Reclaimed by another operation while saving.
                    continue
                del self._resident[chunk_id]
                if chunk_id not in self._persisted:
                    self._known.discard(chunk_id)
                self.monitor.recompute(self._resident.values())
            evicted.append(chunk_id)
            logger.info(
                "Evicted chunk %s (resident=%d, usage=%d/%d bytes)",
                chunk_id,
                len(self._resident),
                self.monitor.usage,
                self.monitor.target,
            )

    # -- operations --------------------------------------------------------

    def insert(
        self,
        embedding: BoltedEmbedding,
        metadata: dict[str, Any] | None = None,
        partition_key: str | None = None,
    ) -> str:
        """Store *embedding* in its owning chunk and return that chunk's id."""
        self._check_open()
        if embedding.dimension != self.config.dimension:
            raise DimensionMismatch(self.config.dimension, embedding.dimension)
        stored = embedding.with_metadata(metadata) if metadata else embedding
        base = self.route(stored.identifier, partition_key)

        with self._registry:
            route_lock = self._route_locks.setdefault(base, threading.Lock())
        with route_lock:
            owner = self._place(stored, base)
        self.manage_memory()
        return owner

    def _place(self, embedding: BoltedEmbedding, base: str) -> str:
        chain = self._chain(base)
        first_open: str | None = None
        for chunk_id in chain:
            with self._use_chunk(chunk_id) as chunk:
                if embedding.identifier in chunk:
                    chunk.upsert(embedding)
                    return chunk_id
                if first_open is None and not chunk.is_full:
                    first_open = chunk_id

        if first_open is None:
            first_open = base if not chain else f"{base}{OVERFLOW_SEPARATOR}{len(chain)}"
            if chain:
                logger.info("Chunk chain %s is full; opening %s", base, first_open)
        with self._use_chunk(first_open) as chunk:
            chunk.upsert(embedding)
        return first_open

    def get(self, identifier: str, partition_key: str | None = None) -> BoltedEmbedding:
        """Return the stored embedding for *identifier* or raise EntityNotFound."""
        self._check_open()
        found: BoltedEmbedding | None = None
        for chunk_id in self._chain(self.route(identifier, partition_key)):
            with self._use_chunk(chunk_id) as chunk:
                if identifier in chunk:
                    found = chunk.get(identifier)
                    break
        self.manage_memory()
        if found is None:
            raise EntityNotFound(identifier)
        return replace(found, metadata=dict(found.metadata))

    def remove(self, identifier: str, partition_key: str | None = None) -> BoltedEmbedding:
        """Delete *identifier* from its chunk; the chunk file is rewritten on flush."""
        self._check_open()
        base = self.route(identifier, partition_key)
        with self._registry:
            route_lock = self._route_locks.setdefault(base, threading.Lock())
        with route_lock:
            for chunk_id in self._chain(base):
                with self._use_chunk(chunk_id) as chunk:
                    if identifier in chunk:
                        removed = chunk.remove(identifier)
                        break
            else:
                raise EntityNotFound(identifier)
        self.manage_memory()
        return removed

    def candidate_chunks(self, partitions: Sequence[str] | None = None) -> list[str]:
        """Chunk ids a search must visit: hinted partitions, or every known chunk."""
        if partitions:
            ordered: list[str] = []
            for key in partitions:
                for chunk_id in self._chain(self.partition_chunk_id(key)):
                    if chunk_id not in ordered:
                        ordered.append(chunk_id)
            return ordered
        with self._registry:
            return sorted(self._known)

    def search(
        self,
        query: np.ndarray,
        *,
        max_results: int | None = None,
        similarity_threshold: float | None = None,
        params: SearchParams | None = None,
        emphasis_weights: tuple[float, float] | None = None,
        partitions: Sequence[str] | None = None,
        timeout: float | None = None,
    ) -> SearchResponse:
        """
        Search candidate chunks in parallel and merge their results.

        Results below ``similarity_threshold`` are dropped before truncation to
        ``max_results``. With a ``timeout``, chunks not started before the
        deadline are skipped and reported in ``chunks_skipped``; a chunk search
        already running is allowed to finish in the background.
        """
        self._check_open()
        k = max_results or self.config.max_results
        threshold = (
            self.config.similarity_threshold
            if similarity_threshold is None
            else similarity_threshold
        )
        q = as_vector(query, self.config.dimension)
        candidates = self.candidate_chunks(partitions)
        if not candidates:
            return SearchResponse(results=[])

        deadline = None if timeout is None else time.monotonic() + timeout
        pool = ThreadPoolExecutor(
            max_workers=min(self.config.search_workers, len(candidates)),
            thread_name_prefix="chunk-search",
        )
        try:
            futures = {
                pool.submit(
                    self._search_chunk, chunk_id, q, k, params, emphasis_weights, deadline
                ): chunk_id
                for chunk_id in candidates
            }
            remaining = None if deadline is None else max(deadline - time.monotonic(), 0.0)
            done, _ = wait(futures, timeout=remaining)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        result_sets: list[list[SearchResult]] = []
        searched: list[str] = []
        skipped: list[str] = []
        for future, chunk_id in futures.items():
            hits = future.result() if future in done else None
            if hits is None:
                skipped.append(chunk_id)
                continue
            searched.append(chunk_id)
            result_sets.append(hits)

        if skipped:
            logger.warning(
                "Search deadline reached; skipped %d of %d chunks", len(skipped), len(candidates)
            )
        self.manage_memory()
        return SearchResponse(
            results=merge_results(result_sets, limit=k, threshold=threshold),
            chunks_searched=sorted(searched),
            chunks_skipped=sorted(skipped),
        )

    def _search_chunk(
        self,
        chunk_id: str,
        query: np.ndarray,
        k: int,
        params: SearchParams | None,
        emphasis_weights: tuple[float, float] | None,
        deadline: float | None,
    ) -> list[SearchResult] | None:
        if deadline is not None and time.monotonic() >= deadline:
            return None
        with self._use_chunk(chunk_id) as chunk:
            hits = chunk.search(query, k, params, emphasis_weights)
        # A search may page in chunks that have to leave again right away.
        self.manage_memory()
        return [replace(hit, chunk_id=chunk_id) for hit in hits]

    # -- persistence -------------------------------------------------------

    def flush_all(self) -> int:
        """Save every dirty resident chunk. Returns the number of chunks written."""
        with self._registry:
            resident = list(self._resident.values())
            for chunk in resident:
                chunk.pins += 1
        saved = 0
        failures: list[BoltedStoreError] = []
        try:
            for chunk in resident:
                with chunk.lock:
                    if not chunk.dirty:
                        continue
                    try:
                        self._save_chunk(chunk)
                    except ChunkPersistenceError as exc:
                        logger.error("%s", exc)
                        failures.append(exc)
                        continue
                    saved += 1
        finally:
            with self._registry:
                for chunk in resident:
                    chunk.pins -= 1
        if failures:
            raise failures[0]
        logger.info("Flushed %d dirty chunks", saved)
        return saved

    def stats(self) -> dict[str, Any]:
        with self._registry:
            self.monitor.recompute(self._resident.values())
            return {
                "chunk_store_root": str(self.root),
                "index_type": self.config.index_type,
                "dimension": self.config.dimension,
                "resident_chunks": list(self._resident.keys()),
                "known_chunks": len(self._known),
                "persisted_chunks": len(self._persisted),
                "dirty_chunks": sorted(cid for cid, c in self._resident.items() if c.dirty),
                "resident_entries": sum(len(c) for c in self._resident.values()),
                "max_active_chunks": self.config.max_active_chunks,
                **self.monitor.snapshot(),
            }

    def resident_chunk_ids(self) -> list[str]:
        """Resident chunk ids, least recently used first."""
        with self._registry:
            return list(self._resident.keys())

    def close(self) -> None:
        if self._closed:
            return
        self.flush_all()
        self._closed = True

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Chunk manager is closed")
