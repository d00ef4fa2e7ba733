"""
Configuration for the bolted vector store.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, model_validator

from .index.base import IndexType
from .vectors import Metric


DEFAULT_CHUNK_ROOT = "~/.bolted_store/chunks"
ENV_CHUNK_ROOT = "BOLTED_STORE_CHUNK_ROOT"
ENV_PREFIX = "BOLTED_STORE_"


def resolve_chunk_root(override_path: str | None = None) -> str:
    """
    Resolve the chunk directory from an explicit override, env var, or default.

    Precedence:
    1) explicit override_path
    2) BOLTED_STORE_CHUNK_ROOT
    3) default path
    """
    raw_path = override_path or os.getenv(ENV_CHUNK_ROOT) or DEFAULT_CHUNK_ROOT
    resolved = Path(raw_path).expanduser().resolve()
    resolved.mkdir(parents=True, exist_ok=True)
    return str(resolved)


class StoreConfig(BaseModel):
    """Recognized store options. Unknown keys are rejected."""

    model_config = {"extra": "forbid"}

    dimension: int = Field(default=384, gt=0, description="Vector length")
    index_type: IndexType = Field(default="hnsw")
    metric: Metric = Field(default="cosine")
    max_chunk_size: int = Field(default=10_000, gt=0, description="Entries per chunk")
    max_active_chunks: int = Field(default=8, gt=0)
    memory_target: int = Field(
        default=512 * 1024 * 1024, gt=0, description="Advisory memory budget in bytes"
    )
    ef_construction: int = Field(default=200, gt=0)
    m: int = Field(default=16, ge=2)
    ef_search: int = Field(default=64, gt=0)
    similarity_threshold: float = Field(default=0.0)
    max_results: int = Field(default=10, gt=0)
    structural_weight: float = Field(default=0.3, ge=0.0)
    semantic_weight: float = Field(default=0.7, ge=0.0)
    chunk_store_root: str = Field(default=DEFAULT_CHUNK_ROOT)
    num_partitions: int = Field(default=16, gt=0)
    search_workers: int = Field(default=4, gt=0)
    search_timeout: float | None = Field(default=None, gt=0.0)
    generation_timeout: float | None = Field(default=60.0, gt=0.0)
    max_prompt_chars: int = Field(default=6000, gt=0)
    generation_model: str = Field(default="gemini-2.0-flash")

    @model_validator(mode="after")
    def _check_weights(self) -> "StoreConfig":
        if self.structural_weight + self.semantic_weight <= 0.0:
            raise ValueError("structural_weight and semantic_weight must not both be 0")
        return self

    @classmethod
    def from_env(cls, **overrides: Any) -> "StoreConfig":
        """
        Build a config from ``BOLTED_STORE_<OPTION>`` environment variables.

        Explicit keyword overrides win over the environment.
        """
        values: dict[str, Any] = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw
        env_root = os.getenv(ENV_CHUNK_ROOT)
        if env_root:
            values["chunk_store_root"] = env_root
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls.model_validate(values)

    def resolved_chunk_root(self) -> Path:
        return Path(resolve_chunk_root(self.chunk_store_root))
