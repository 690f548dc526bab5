"""Tests for the semantic search workflows."""

from __future__ import annotations

from pathlib import Path

import pytest

from conftest import BagOfWordsEmbedder, DummyMarkItDown
from semantic_index.config import IndexSettings
from semantic_index.data import LanceIndexStore
from semantic_index.middleware import DocumentConverter, FileFormat
from semantic_index.services.indexing import IndexingCoordinator
from semantic_index.services.search import (
    IndexUnavailableError,
    QueryEngine,
    SearchHit,
    collapse_overlapping,
)


def _hit(path: str, start: int, end: int, score: float, indexed_at: float = 1.0) -> SearchHit:
    return SearchHit(
        path=path,
        start_line=start,
        end_line=end,
        score=score,
        chunk_id=f"{path}:{start}",
        sequence=start,
        text="text",
        file_format=FileFormat.NATIVE_TEXT,
        indexed_at=indexed_at,
    )


def _indexed(tmp_path: Path, files: dict[str, str | bytes], *, converter=None, settings=None):
    folder = tmp_path.resolve() / "docs"
    folder.mkdir()
    for name, content in files.items():
        if isinstance(content, bytes):
            (folder / name).write_bytes(content)
        else:
            (folder / name).write_text(content, encoding="utf-8")
    settings = settings or IndexSettings(max_workers=2)
    embedder = BagOfWordsEmbedder()
    store = LanceIndexStore(tmp_path / "index")
    coordinator = IndexingCoordinator(
        store,
        converter=converter or DocumentConverter(markitdown_converter=DummyMarkItDown()),
        embedding_client=embedder,
        settings=settings,
    )
    coordinator.run_pass(folder)
    coordinator.close()
    engine = QueryEngine(store, embedding_client=embedder, settings=settings)
    return folder, engine


def test_search_before_first_pass_is_unavailable(tmp_path: Path) -> None:
    engine = QueryEngine(LanceIndexStore(tmp_path / "index"), embedding_client=BagOfWordsEmbedder())
    with pytest.raises(IndexUnavailableError):
        engine.search("anything")


def test_revenue_scenario_returns_both_documents(tmp_path: Path) -> None:
    converter = DocumentConverter(
        markitdown_converter=DummyMarkItDown({"report.pdf": "Q3 revenue increased by 12%"})
    )
    folder, engine = _indexed(
        tmp_path,
        {"notes.txt": "Q3 revenue grew 12% year over year", "report.pdf": b"%PDF-1.4"},
        converter=converter,
    )

    hits = engine.search("revenue growth", limit=2)

    assert {hit.path for hit in hits} == {str(folder / "notes.txt"), str(folder / "report.pdf")}
    assert hits[0].score >= hits[1].score
    for hit in hits:
        assert hit.start_line == hit.end_line == 1
        assert hit.text


def test_every_file_is_retrievable_by_its_own_content(tmp_path: Path) -> None:
    contents = {
        "garden.md": "Tomatoes need full sun and regular watering in summer.",
        "car.txt": "Replace the brake pads and check the tire pressure monthly.",
        "recipe.txt": "Whisk eggs with flour and sugar before baking the cake.",
    }
    folder, engine = _indexed(tmp_path, contents)

    for name, text in contents.items():
        hits = engine.search(text, limit=3)
        assert hits[0].path == str(folder / name)
        assert hits[0].score == pytest.approx(1.0, abs=1e-5)


def test_failed_files_are_excluded_from_results(tmp_path: Path) -> None:
    converter = DocumentConverter(backend="markitdown-cli", cli_binary="semantic-index-missing-cli")
    folder, engine = _indexed(
        tmp_path,
        {"scan.pdf": b"%PDF-1.4 quarterly revenue", "notes.md": "quarterly revenue notes"},
        converter=converter,
    )

    hits = engine.search("quarterly revenue")

    assert [hit.path for hit in hits] == [str(folder / "notes.md")]
    assert engine.store.get_file(folder / "scan.pdf").failure_reason == "tool_unavailable"


def test_results_below_relevance_floor_are_dropped(tmp_path: Path) -> None:
    _, engine = _indexed(tmp_path, {"notes.txt": "apples and oranges"})
    assert engine.search("quantum chromodynamics") == []


def test_overlapping_chunks_collapse_to_best_region(tmp_path: Path) -> None:
    lines = "\n".join(f"budget line {index} budget" for index in range(1, 41))
    settings = IndexSettings(max_workers=1, chunk_max_chars=200, chunk_overlap_chars=60)
    folder, engine = _indexed(tmp_path, {"budget.txt": lines}, settings=settings)
    assert len(engine.store.chunks_for_path(folder / "budget.txt")) > 2

    hits = engine.search("budget", limit=10)

    assert len(hits) == 1
    assert hits[0].path == str(folder / "budget.txt")


def test_search_many_merges_queries(tmp_path: Path) -> None:
    folder, engine = _indexed(
        tmp_path,
        {"cats.txt": "cats purr and nap", "dogs.txt": "dogs bark and fetch"},
    )

    hits = engine.search_many(["cats purr", "dogs bark"], limit=5)

    assert {hit.path for hit in hits} == {str(folder / "cats.txt"), str(folder / "dogs.txt")}
    with pytest.raises(ValueError):
        engine.search_many(["   "])


def test_resolve_limit_applies_default_and_cap(tmp_path: Path) -> None:
    engine = QueryEngine(LanceIndexStore(tmp_path / "index"), embedding_client=BagOfWordsEmbedder())
    assert engine.resolve_limit(None) == 5
    assert engine.resolve_limit(7) == 7
    assert engine.resolve_limit(10_000) == 50
    with pytest.raises(ValueError):
        engine.resolve_limit(0)


def test_collapse_overlapping_keeps_highest_scoring_region_member() -> None:
    hits = [
        _hit("a.txt", 1, 10, 0.5),
        _hit("a.txt", 8, 20, 0.9),
        _hit("a.txt", 21, 30, 0.4),
        _hit("a.txt", 40, 50, 0.3),
        _hit("b.txt", 1, 10, 0.6),
    ]

    collapsed = collapse_overlapping(hits)

    assert [(hit.path, hit.start_line, hit.score) for hit in collapsed] == [
        ("a.txt", 8, 0.9),
        ("b.txt", 1, 0.6),
        ("a.txt", 40, 0.3),
    ]


def test_collapse_overlapping_breaks_ties_by_recency() -> None:
    older = _hit("a.txt", 1, 5, 0.7, indexed_at=1.0)
    newer = _hit("b.txt", 1, 5, 0.7, indexed_at=2.0)
    assert collapse_overlapping([older, newer]) == [newer, older]
