"""Tests for the Lance-backed index store."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from semantic_index.data import (
    Chunk,
    ConversionStatus,
    FileRecord,
    LanceIndexStore,
    SCHEMA_VERSION,
    StoreInconsistencyError,
)
from semantic_index.foundation.lance import write_meta
from semantic_index.middleware import FileFormat


def _chunks(*texts: str) -> list[Chunk]:
    chunks = []
    offset = 0
    for sequence, text in enumerate(texts):
        chunks.append(
            Chunk(
                sequence=sequence,
                start_offset=offset,
                end_offset=offset + len(text),
                start_line=sequence + 1,
                end_line=sequence + 1,
                text=text,
                digest=f"digest-{sequence}",
            )
        )
        offset += len(text) + 1
    return chunks


def _record(path: Path, content_hash: str = "h1", indexed_at: float = 100.0, **kwargs) -> FileRecord:
    return FileRecord(
        path=str(path),
        content_hash=content_hash,
        file_format=kwargs.pop("file_format", FileFormat.NATIVE_TEXT),
        status=kwargs.pop("status", ConversionStatus.NOT_NEEDED),
        indexed_at=indexed_at,
        **kwargs,
    )


def test_upsert_and_query_round_trip(tmp_path: Path) -> None:
    store = LanceIndexStore(tmp_path / "index")
    source = tmp_path / "notes.txt"
    stored = store.upsert_file(_record(source), _chunks("alpha", "beta"), [[1.0, 0.0], [0.0, 1.0]])

    assert stored.chunk_count == 2
    assert store.dimensions == 2
    assert store.paths() == [str(source.resolve())]

    results = store.query([0.0, 1.0], k=5)
    assert [item.chunk.text for item in results] == ["beta", "alpha"]
    assert results[0].score == pytest.approx(1.0)
    assert results[1].score == pytest.approx(0.0)


def test_upsert_replaces_all_chunks_for_a_path(tmp_path: Path) -> None:
    store = LanceIndexStore(tmp_path / "index")
    source = tmp_path / "notes.txt"
    store.upsert_file(_record(source, "h1"), _chunks("one", "two", "three"), [[1.0, 0.0]] * 3)
    before = {chunk.chunk_id for chunk in store.chunks_for_path(source)}

    store.upsert_file(_record(source, "h2"), _chunks("fresh"), [[0.0, 1.0]])

    chunks = store.chunks_for_path(source)
    assert [chunk.text for chunk in chunks] == ["fresh"]
    assert not before & {chunk.chunk_id for chunk in chunks}
    assert store.stats().chunk_count == 1
    assert store.get_file(source).content_hash == "h2"


def test_remove_file_cascades_to_chunks(tmp_path: Path) -> None:
    store = LanceIndexStore(tmp_path / "index")
    keep = tmp_path / "keep.txt"
    gone = tmp_path / "gone.txt"
    store.upsert_file(_record(keep), _chunks("keep"), [[1.0, 0.0]])
    store.upsert_file(_record(gone), _chunks("gone"), [[1.0, 0.0]])
    revision = store.revision

    assert store.remove_file(gone) is True
    assert store.remove_file(gone) is False
    assert store.revision == revision + 1
    assert store.get_file(gone) is None
    assert [item.chunk.path for item in store.query([1.0, 0.0], 10)] == [str(keep.resolve())]
    with pytest.raises(KeyError):
        store.chunks_for_path(gone)

    reopened = LanceIndexStore(tmp_path / "index")
    assert reopened.paths() == [str(keep.resolve())]


def test_query_breaks_ties_by_recency_then_path(tmp_path: Path) -> None:
    store = LanceIndexStore(tmp_path / "index")
    older = tmp_path / "a.txt"
    newer = tmp_path / "b.txt"
    same = tmp_path / "c.txt"
    store.upsert_file(_record(older, indexed_at=100.0), _chunks("x"), [[1.0, 0.0]])
    store.upsert_file(_record(newer, indexed_at=200.0), _chunks("x"), [[1.0, 0.0]])
    store.upsert_file(_record(same, indexed_at=100.0), _chunks("x"), [[1.0, 0.0]])

    paths = [Path(item.chunk.path).name for item in store.query([1.0, 0.0], 3)]
    assert paths == ["b.txt", "a.txt", "c.txt"]
    assert len(store.query([1.0, 0.0], 2)) == 2
    assert store.query([1.0, 0.0], 0) == []


def test_failed_records_are_kept_without_chunks(tmp_path: Path) -> None:
    store = LanceIndexStore(tmp_path / "index")
    scan = tmp_path / "scan.pdf"
    record = _record(
        scan,
        file_format=FileFormat.CONVERTIBLE_BINARY,
        status=ConversionStatus.FAILED,
        failure_reason="tool_unavailable",
    )
    store.upsert_file(record, [], [])

    assert store.get_file(scan).failed
    assert store.stats().failed_count == 1
    assert store.chunks_for_path(scan) == []
    with pytest.raises(ValueError):
        store.upsert_file(record, _chunks("x"), [[1.0]])


def test_store_persists_across_reopen(tmp_path: Path) -> None:
    root = tmp_path / "index"
    source = tmp_path / "notes.txt"
    store = LanceIndexStore(root)
    assert not store.is_built
    store.upsert_file(_record(source), _chunks("alpha", "beta"), [[1.0, 0.0], [0.0, 1.0]])
    store.mark_pass_complete(at=123.0)

    reopened = LanceIndexStore(root)
    assert reopened.is_built
    assert reopened.dimensions == 2
    stats = reopened.stats()
    assert (stats.file_count, stats.chunk_count, stats.last_pass_at) == (1, 2, 123.0)
    assert stats.schema_version == SCHEMA_VERSION
    assert [chunk.text for chunk in reopened.chunks_for_path(source)] == ["alpha", "beta"]
    assert reopened.query([1.0, 0.0], 1)[0].chunk.text == "alpha"


def test_partially_written_file_is_dropped_on_reopen(tmp_path: Path) -> None:
    root = tmp_path / "index"
    source = tmp_path / "notes.txt"
    store = LanceIndexStore(root)
    store.upsert_file(_record(source), _chunks("alpha", "beta"), [[1.0, 0.0], [0.0, 1.0]])
    store._chunks_table.delete(where="sequence = 1")

    reopened = LanceIndexStore(root)
    assert reopened.get_file(source) is None


def test_schema_version_mismatch_rebuilds(tmp_path: Path) -> None:
    root = tmp_path / "index"
    store = LanceIndexStore(root)
    store.upsert_file(_record(tmp_path / "notes.txt"), _chunks("alpha"), [[1.0, 0.0]])
    store.mark_pass_complete()
    write_meta(store._meta_table, {"schema_version": str(SCHEMA_VERSION + 1)})

    rebuilt = LanceIndexStore(root)
    assert rebuilt.paths() == []
    assert not rebuilt.is_built
    assert rebuilt.stats().chunk_count == 0


def test_requested_dimension_change_rebuilds(tmp_path: Path) -> None:
    root = tmp_path / "index"
    store = LanceIndexStore(root)
    store.upsert_file(_record(tmp_path / "notes.txt"), _chunks("alpha"), [[1.0, 0.0]])

    rebuilt = LanceIndexStore(root, dimensions=3)
    assert rebuilt.paths() == []
    assert rebuilt.dimensions == 3


def test_dimension_mismatch_is_an_inconsistency(tmp_path: Path) -> None:
    store = LanceIndexStore(tmp_path / "index")
    store.upsert_file(_record(tmp_path / "a.txt"), _chunks("alpha"), [[1.0, 0.0]])

    with pytest.raises(StoreInconsistencyError):
        store.upsert_file(_record(tmp_path / "b.txt"), _chunks("beta"), [[1.0, 0.0, 0.0]])
    with pytest.raises(StoreInconsistencyError):
        store.upsert_file(
            _record(tmp_path / "c.txt"), _chunks("x", "y"), [[1.0, 0.0], [1.0]]
        )
    with pytest.raises(StoreInconsistencyError):
        store.query([1.0, 0.0, 0.0], 1)
    assert store.paths() == [str((tmp_path / "a.txt").resolve())]


def test_mismatched_vector_count_is_rejected(tmp_path: Path) -> None:
    store = LanceIndexStore(tmp_path / "index")
    with pytest.raises(ValueError):
        store.upsert_file(_record(tmp_path / "a.txt"), _chunks("a", "b"), [[1.0, 0.0]])


def test_queries_never_see_a_half_replaced_file(tmp_path: Path) -> None:
    store = LanceIndexStore(tmp_path / "index")
    source = tmp_path / "notes.txt"
    versions = [
        (_chunks("v1 a", "v1 b"), [[1.0, 0.0]] * 2),
        (_chunks("v2 a", "v2 b", "v2 c"), [[1.0, 0.1]] * 3),
    ]
    store.upsert_file(_record(source, "h0"), *versions[0])
    stop = threading.Event()
    observed: list[tuple[set[int], int]] = []
    errors: list[BaseException] = []

    def reader() -> None:
        try:
            while not stop.is_set():
                hits = store.query([1.0, 0.0], 10)
                observed.append(({item.chunk.generation for item in hits}, len(hits)))
        except BaseException as exc:  # pragma: no cover - surfaced below.
            errors.append(exc)

    thread = threading.Thread(target=reader)
    thread.start()
    try:
        for round_number in range(1, 9):
            chunks, vectors = versions[round_number % 2]
            store.upsert_file(_record(source, f"h{round_number}"), chunks, vectors)
    finally:
        stop.set()
        thread.join(timeout=10)

    assert not errors
    assert observed
    for generations, count in observed:
        assert len(generations) == 1
        assert count in (2, 3)
