"""CLI tests for the insert, search, stats and flush commands."""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

import bolted_store.main as main_module
from bolted_store import BoltedVectorStore, StoreConfig

from conftest import FakeTextGenerator


@pytest.fixture()
def chunk_root(tmp_path: Path) -> Path:
    return tmp_path / "chunks"


@pytest.fixture()
def patched_store(monkeypatch, chunk_root: Path) -> dict[str, object]:
    created: dict[str, object] = {"count": 0}
    generator = FakeTextGenerator()

    def fake_build_store(root: str | None = None) -> BoltedVectorStore:
        created["count"] = int(created["count"]) + 1
        created["root"] = root
        config = StoreConfig(
            dimension=64, index_type="flat", chunk_store_root=str(chunk_root)
        )
        return BoltedVectorStore(config, text_generator=generator, chunk_root=root)

    monkeypatch.setattr(main_module, "build_store", fake_build_store)
    created["generator"] = generator
    return created


def _write_docs(tmp_path: Path) -> list[Path]:
    docs = tmp_path / "docs"
    docs.mkdir()
    agreement = docs / "agreement.md"
    agreement.write_text("# Agreement\n\nPurchase price is $45,000,000.")
    report = docs / "report.txt"
    report.write_text("Risk register and litigation exposure summary.")
    return [agreement, report]


def test_insert_command_stores_and_flushes(tmp_path: Path, chunk_root: Path, patched_store) -> None:
    paths = _write_docs(tmp_path)
    runner = CliRunner()

    result = runner.invoke(
        main_module.app,
        ["insert", *[str(p) for p in paths], "--chunk-root", str(chunk_root)],
    )

    assert result.exit_code == 0, result.output
    assert "Inserted 2 document(s)." in result.output
    assert patched_store["root"] == str(chunk_root)
    assert list(chunk_root.glob("*.chunk"))

    config = StoreConfig(dimension=64, index_type="flat", chunk_store_root=str(chunk_root))
    with BoltedVectorStore(config) as store:
        stored = store.get(str(paths[0]))
    assert stored.content_type == "markdown"
    assert stored.metadata["name"] == "agreement.md"


def test_insert_command_uses_partition_and_content_type(
    tmp_path: Path, chunk_root: Path, patched_store
) -> None:
    paths = _write_docs(tmp_path)
    runner = CliRunner()

    result = runner.invoke(
        main_module.app,
        [
            "insert",
            str(paths[1]),
            "--partition",
            "legal",
            "--content-type",
            "report",
            "--chunk-root",
            str(chunk_root),
        ],
    )

    assert result.exit_code == 0, result.output
    assert (chunk_root / "legal.chunk").exists()


def test_search_command_prints_results(tmp_path: Path, chunk_root: Path, patched_store) -> None:
    paths = _write_docs(tmp_path)
    runner = CliRunner()
    runner.invoke(main_module.app, ["insert", *[str(p) for p in paths]])

    result = runner.invoke(
        main_module.app,
        ["search", "purchase price", "--emphasis", "semantic", "--max-results", "1"],
    )

    assert result.exit_code == 0, result.output
    assert "Similarity" in result.output
    assert "1" in result.output


def test_search_command_rejects_unknown_emphasis(patched_store) -> None:
    runner = CliRunner()

    result = runner.invoke(main_module.app, ["search", "anything", "--emphasis", "loud"])

    assert result.exit_code == 1
    assert "Unknown search emphasis" in result.output


def test_search_command_reports_bad_filters(
    tmp_path: Path, chunk_root: Path, patched_store
) -> None:
    runner = CliRunner()
    runner.invoke(main_module.app, ["insert", *[str(p) for p in _write_docs(tmp_path)]])

    result = runner.invoke(main_module.app, ["search", "anything", "--filters", "size>big"])

    assert result.exit_code == 1
    assert "Error" in result.output


def test_stats_and_flush_commands(chunk_root: Path, monkeypatch) -> None:
    monkeypatch.setenv("BOLTED_STORE_DIMENSION", "64")
    runner = CliRunner()

    stats = runner.invoke(main_module.app, ["stats", "--chunk-root", str(chunk_root)])
    flush = runner.invoke(main_module.app, ["flush", "--chunk-root", str(chunk_root)])

    assert stats.exit_code == 0, stats.output
    assert '"dimension": 64' in stats.output
    assert flush.exit_code == 0, flush.output
    assert "Flushed 0 chunk(s)." in flush.output
