"""Tests for search emphasis, the coordinator and result merging."""

from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest

from bolted_store.config import StoreConfig
from bolted_store.models import BoltedEmbedding, Embedding, SearchResult
from bolted_store.search import SearchCoordinator, SearchEmphasis, merge_results
from bolted_store.storage import ChunkManager


def _component(identifier: str, values) -> Embedding:
    return Embedding(identifier=identifier, vector=np.asarray(values, dtype=np.float32))


def _bolted(identifier: str, structural, semantic, **metadata) -> BoltedEmbedding:
    s = _component(identifier, structural)
    m = _component(identifier, semantic)
    combined = s.vector * 0.5 + m.vector * 0.5
    return BoltedEmbedding(
        identifier=identifier,
        vector=combined / np.linalg.norm(combined),
        structural_component=s,
        semantic_component=m,
        metadata=metadata,
    )


@pytest.fixture()
def coordinator(tmp_path: Path) -> SearchCoordinator:
    config = StoreConfig(
        dimension=4,
        index_type="hybrid",
        chunk_store_root=str(tmp_path / "chunks"),
        num_partitions=2,
    )
    manager = ChunkManager(config)
    # "shape" matches the query structurally, "meaning" semantically.
    manager.insert(_bolted("shape", [1, 0, 0, 0], [0, 0, 1, 0], kind="table"))
    manager.insert(_bolted("meaning", [0, 1, 0, 0], [0, 0, 0, 1], kind="prose"))
    return SearchCoordinator(manager)


def _query() -> BoltedEmbedding:
    return _bolted("query", [1, 0, 0, 0], [0, 0, 0, 1])


def test_emphasis_weights() -> None:
    assert SearchEmphasis.balanced().weights() is None
    assert SearchEmphasis.structural().weights() == (1.0, 0.0)
    assert SearchEmphasis.semantic().weights() == (0.0, 1.0)
    assert SearchEmphasis.custom(2, 1).weights() == (2.0, 1.0)
    with pytest.raises(ValueError):
        SearchEmphasis.custom(0, 0)


@pytest.mark.parametrize(
    ("text", "kind"),
    [("balanced", "balanced"), ("Structural", "structural"), ("semantic", "semantic")],
)
def test_emphasis_parse(text: str, kind: str) -> None:
    assert SearchEmphasis.parse(text).kind == kind


def test_emphasis_parse_custom_and_errors() -> None:
    assert SearchEmphasis.parse("custom:0.2,0.8") == SearchEmphasis.custom(0.2, 0.8)
    with pytest.raises(ValueError):
        SearchEmphasis.parse("custom:1")
    with pytest.raises(ValueError):
        SearchEmphasis.parse("loud")


def test_structural_emphasis_prefers_structural_match(coordinator: SearchCoordinator) -> None:
    response = coordinator.search(_query(), SearchEmphasis.structural(), max_results=2)

    assert [hit.identifier for hit in response.results] == ["shape", "meaning"]
    assert response.results[0].similarity == pytest.approx(1.0)


def test_semantic_emphasis_prefers_semantic_match(coordinator: SearchCoordinator) -> None:
    response = coordinator.search(_query(), SearchEmphasis.semantic(), max_results=2)

    assert [hit.identifier for hit in response.results] == ["meaning", "shape"]
    assert response.results[0].similarity == pytest.approx(1.0)


def test_balanced_emphasis_scores_both_views_equally(coordinator: SearchCoordinator) -> None:
    response = coordinator.search(_query(), max_results=2)

    similarities = [hit.similarity for hit in response.results]
    assert similarities[0] == pytest.approx(0.5)
    assert similarities[1] == pytest.approx(0.5)
    # Ties are ordered by identifier.
    assert [hit.identifier for hit in response.results] == ["meaning", "shape"]


def test_custom_emphasis_reweights_both_sides(coordinator: SearchCoordinator) -> None:
    response = coordinator.search(_query(), SearchEmphasis.custom(0.9, 0.1), max_results=1)

    assert [hit.identifier for hit in response.results] == ["shape"]


def test_filters_and_raw_vector_queries(coordinator: SearchCoordinator) -> None:
    response = coordinator.search(
        np.array([1, 0, 1, 0], dtype=np.float32), filters="kind=prose", max_results=5
    )

    assert [hit.identifier for hit in response.results] == ["meaning"]
    assert response.results[0].metadata == {"kind": "prose"}


def test_similarity_threshold_drops_weak_matches(coordinator: SearchCoordinator) -> None:
    response = coordinator.search(
        _query(), SearchEmphasis.structural(), similarity_threshold=0.5, max_results=5
    )

    assert [hit.identifier for hit in response.results] == ["shape"]


def test_merge_results_keeps_best_score_and_ranks() -> None:
    merged = merge_results(
        [
            [SearchResult("a", 0.4), SearchResult("b", 0.9)],
            [SearchResult("a", 0.7), SearchResult("c", 0.9)],
        ],
        limit=3,
        threshold=0.5,
    )

    assert [(hit.identifier, hit.similarity) for hit in merged] == [
        ("b", 0.9),
        ("c", 0.9),
        ("a", 0.7),
    ]
