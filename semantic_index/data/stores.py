"""Lance-backed index store for file records and chunk embeddings."""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

import numpy as np

from semantic_index.foundation.lance import (
    CHUNKS_SCHEMA,
    FILES_SCHEMA,
    META_SCHEMA,
    connect,
    cosine_similarities,
    delete_rows_for_path,
    drop_tables,
    open_or_create_table,
    read_meta,
    read_rows,
    replace_rows_for_path,
    write_meta,
)

from .models import Chunk, FileRecord, IndexStats, ScoredChunk, StoredChunk

logger = logging.getLogger(__name__)

__all__ = ["LanceIndexStore", "SCHEMA_VERSION", "StoreInconsistencyError"]

SCHEMA_VERSION = 1

FILES_TABLE = "files"
CHUNKS_TABLE = "chunks"
META_TABLE = "meta"


class StoreInconsistencyError(RuntimeError):
    """Raised when persisted data cannot be trusted (schema or dimension mismatch)."""


@dataclass(frozen=True, slots=True)
class _FileEntry:
    record: FileRecord
    chunks: tuple[StoredChunk, ...]
    matrix: np.ndarray


@dataclass(slots=True)
class _Snapshot:
    """Immutable view of the index; replaced wholesale on every mutation."""

    files: dict[str, _FileEntry]
    _flat: tuple[list[StoredChunk], np.ndarray] | None = field(default=None, repr=False)

    def flattened(self, dimensions: int) -> tuple[list[StoredChunk], np.ndarray]:
        if self._flat is None:
            chunks: list[StoredChunk] = []
            blocks: list[np.ndarray] = []
            for entry in self.files.values():
                if entry.chunks:
                    chunks.extend(entry.chunks)
                    blocks.append(entry.matrix)
            matrix = (
                np.vstack(blocks)
                if blocks
                else np.zeros((0, max(dimensions, 0)), dtype="float32")
            )
            self._flat = (chunks, matrix)
        return self._flat


def chunk_identity(path: str, content_hash: str, sequence: int) -> str:
    key = f"{path}\0{content_hash}\0{sequence}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]


class LanceIndexStore:
    """Persists ``FileRecord`` rows and chunk vectors in Lance tables.

    Writers serialize on a lock and publish a new in-memory snapshot once the
    Lance tables reflect the change; readers only ever dereference the
    current snapshot, so a query sees either all of a file's old chunks or all
    of its new ones.
    """

    def __init__(self, root: Path | str, *, dimensions: int = 0) -> None:
        self.root = Path(root).expanduser().resolve()
        self._db = connect(self.root)
        self._write_lock = threading.RLock()
        self._revision = 0
        self._meta_table = open_or_create_table(self._db, META_TABLE, META_SCHEMA)
        meta = read_meta(self._meta_table)

        stored_version = meta.get("schema_version")
        stored_dims = int(meta.get("dimensions") or 0)
        if stored_version is not None and stored_version != str(SCHEMA_VERSION):
            logger.warning(
                "Index at %s uses schema %s (expected %s); rebuilding",
                self.root,
                stored_version,
                SCHEMA_VERSION,
            )
            meta = self._reset()
            stored_dims = 0
        elif dimensions and stored_dims and dimensions != stored_dims:
            logger.warning(
                "Index at %s stores %d-dimensional vectors but %d were requested; rebuilding",
                self.root,
                stored_dims,
                dimensions,
            )
            meta = self._reset()
            stored_dims = 0

        self._files_table = open_or_create_table(self._db, FILES_TABLE, FILES_SCHEMA)
        self._chunks_table = open_or_create_table(self._db, CHUNKS_TABLE, CHUNKS_SCHEMA)
        self._dimensions = stored_dims or dimensions
        self._last_pass_at = float(meta["last_pass_at"]) if meta.get("last_pass_at") else None
        write_meta(
            self._meta_table,
            {"schema_version": str(SCHEMA_VERSION), "dimensions": str(self._dimensions)},
        )

        try:
            self._snapshot, self._next_generation = self._load_snapshot()
        except StoreInconsistencyError as exc:
            logger.warning("Discarding inconsistent index at %s: %s", self.root, exc)
            self._reset()
            self._files_table = open_or_create_table(self._db, FILES_TABLE, FILES_SCHEMA)
            self._chunks_table = open_or_create_table(self._db, CHUNKS_TABLE, CHUNKS_SCHEMA)
            self._dimensions = dimensions
            self._last_pass_at = None
            write_meta(
                self._meta_table,
                {"schema_version": str(SCHEMA_VERSION), "dimensions": str(self._dimensions)},
            )
            self._snapshot, self._next_generation = _Snapshot({}), 1

    @staticmethod
    def _normalize_path(source_path: Path | str) -> str:
        return str(Path(source_path).expanduser().resolve())

    @property
    def dimensions(self) -> int:
        return self._dimensions

    @property
    def revision(self) -> int:
        """Number of mutations applied since this store was opened."""
        return self._revision

    @property
    def is_built(self) -> bool:
        return self._last_pass_at is not None

    def get_file(self, source_path: Path | str) -> FileRecord | None:
        entry = self._snapshot.files.get(self._normalize_path(source_path))
        return entry.record if entry is not None else None

    def records(self) -> dict[str, FileRecord]:
        return {path: entry.record for path, entry in self._snapshot.files.items()}

    def paths(self) -> list[str]:
        return sorted(self._snapshot.files)

    def chunks_for_path(self, source_path: Path | str) -> list[StoredChunk]:
        entry = self._snapshot.files.get(self._normalize_path(source_path))
        if entry is None:
            raise KeyError(f"No such path in index: {source_path}")
        return list(entry.chunks)

    def upsert_file(
        self,
        record: FileRecord,
        chunks: Sequence[Chunk],
        vectors: Sequence[Sequence[float]],
    ) -> FileRecord:
        """Replace everything stored for ``record.path`` in one step."""

        if len(chunks) != len(vectors):
            raise ValueError(
                f"Got {len(chunks)} chunks but {len(vectors)} vectors for {record.path}"
            )
        if record.failed and chunks:
            raise ValueError("Failed file records cannot carry chunks.")
        path = self._normalize_path(record.path)
        if chunks:
            try:
                matrix = np.asarray(vectors, dtype="float32")
            except ValueError as exc:
                raise StoreInconsistencyError(
                    f"Vectors for {path} do not share one dimensionality."
                ) from exc
            if matrix.ndim != 2:
                raise StoreInconsistencyError(
                    f"Vectors for {path} do not share one dimensionality."
                )
        else:
            matrix = np.zeros((0, self._dimensions), dtype="float32")

        with self._write_lock:
            if chunks:
                self._check_dimensions(int(matrix.shape[1]), path)
            generation = self._next_generation
            self._next_generation += 1
            indexed_at = record.indexed_at or time.time()
            stored = FileRecord(
                path=path,
                content_hash=record.content_hash,
                file_format=record.file_format,
                status=record.status,
                indexed_at=indexed_at,
                size_bytes=record.size_bytes,
                chunk_count=len(chunks),
                failure_reason=record.failure_reason,
                generation=generation,
            )
            stored_chunks = tuple(
                StoredChunk(
                    chunk_id=chunk_identity(path, record.content_hash, chunk.sequence),
                    path=path,
                    generation=generation,
                    sequence=chunk.sequence,
                    start_offset=chunk.start_offset,
                    end_offset=chunk.end_offset,
                    start_line=chunk.start_line,
                    end_line=chunk.end_line,
                    text=chunk.text,
                    digest=chunk.digest,
                    indexed_at=indexed_at,
                )
                for chunk in chunks
            )
            rows = [
                {
                    "chunk_id": item.chunk_id,
                    "path": path,
                    "generation": generation,
                    "sequence": item.sequence,
                    "start_offset": item.start_offset,
                    "end_offset": item.end_offset,
                    "start_line": item.start_line,
                    "end_line": item.end_line,
                    "text": item.text,
                    "digest": item.digest,
                    "indexed_at": indexed_at,
                    "vector": matrix[index].tolist(),
                }
                for index, item in enumerate(stored_chunks)
            ]
            # The record goes first: on restart a record whose generation has
            # fewer chunk rows than chunk_count is discarded and re-indexed.
            delete_rows_for_path(self._files_table, path)
            self._files_table.add([stored.to_row()])
            replace_rows_for_path(self._chunks_table, path, rows, generation=generation)

            files = dict(self._snapshot.files)
            files[path] = _FileEntry(record=stored, chunks=stored_chunks, matrix=matrix)
            self._snapshot = _Snapshot(files)
            self._revision += 1
        logger.debug("Stored %d chunks for %s (generation %d)", len(chunks), path, generation)
        return stored

    def remove_file(self, source_path: Path | str) -> bool:
        """Delete the record and every chunk for ``source_path``."""

        path = self._normalize_path(source_path)
        with self._write_lock:
            if path not in self._snapshot.files:
                return False
            delete_rows_for_path(self._chunks_table, path)
            delete_rows_for_path(self._files_table, path)
            files = dict(self._snapshot.files)
            del files[path]
            self._snapshot = _Snapshot(files)
            self._revision += 1
        logger.debug("Removed %s from index", path)
        return True

    def query(self, vector: Sequence[float], k: int) -> list[ScoredChunk]:
        """Return up to ``k`` chunks by descending cosine similarity.

        Ties go to the most recently indexed chunk, then path and sequence.
        """

        if k <= 0:
            return []
        snapshot = self._snapshot
        chunks, matrix = snapshot.flattened(self._dimensions)
        if not chunks:
            return []
        query = np.asarray(vector, dtype="float32")
        if query.ndim != 1 or query.shape[0] != matrix.shape[1]:
            raise StoreInconsistencyError(
                f"Query vector has {query.shape[-1] if query.ndim else 0} dimensions, "
                f"index stores {matrix.shape[1]}."
            )
        scores = cosine_similarities(matrix, query)
        order = sorted(
            range(len(chunks)),
            key=lambda idx: (
                -float(scores[idx]),
                -chunks[idx].indexed_at,
                chunks[idx].path,
                chunks[idx].sequence,
            ),
        )
        return [ScoredChunk(chunk=chunks[idx], score=float(scores[idx])) for idx in order[:k]]

    def mark_pass_complete(self, at: float | None = None) -> None:
        with self._write_lock:
            self._last_pass_at = at if at is not None else time.time()
            write_meta(self._meta_table, {"last_pass_at": repr(self._last_pass_at)})

    def stats(self) -> IndexStats:
        snapshot = self._snapshot
        return IndexStats(
            file_count=len(snapshot.files),
            chunk_count=sum(len(entry.chunks) for entry in snapshot.files.values()),
            failed_count=sum(1 for entry in snapshot.files.values() if entry.record.failed),
            schema_version=SCHEMA_VERSION,
            dimensions=self._dimensions,
            last_pass_at=self._last_pass_at,
        )

    def _check_dimensions(self, dimensions: int, path: str) -> None:
        if not self._dimensions:
            self._dimensions = dimensions
            write_meta(self._meta_table, {"dimensions": str(dimensions)})
            return
        if dimensions != self._dimensions:
            raise StoreInconsistencyError(
                f"Embedding for {path} has {dimensions} dimensions, "
                f"index stores {self._dimensions}."
            )

    def _reset(self) -> dict[str, str]:
        drop_tables(self._db, [FILES_TABLE, CHUNKS_TABLE])
        self._meta_table.delete(where="key IS NOT NULL")
        return {}

    def _load_snapshot(self) -> tuple[_Snapshot, int]:
        records = [FileRecord.from_row(row) for row in read_rows(self._files_table)]
        chunk_rows = read_rows(self._chunks_table)
        max_generation = max(
            [record.generation for record in records]
            + [int(row["generation"]) for row in chunk_rows]
            + [0]
        )
        by_key: dict[tuple[str, int], list[dict]] = {}
        for row in chunk_rows:
            by_key.setdefault((str(row["path"]), int(row["generation"])), []).append(row)

        files: dict[str, _FileEntry] = {}
        dropped = 0
        for record in records:
            rows = sorted(
                by_key.get((record.path, record.generation), []),
                key=lambda row: int(row["sequence"]),
            )
            if len(rows) != record.chunk_count:
                dropped += 1
                continue
            vectors = [list(row["vector"]) for row in rows]
            for vector in vectors:
                if len(vector) != self._dimensions:
                    raise StoreInconsistencyError(
                        f"{record.path} holds {len(vector)}-dimensional vectors, "
                        f"index stores {self._dimensions}."
                    )
            matrix = (
                np.asarray(vectors, dtype="float32")
                if vectors
                else np.zeros((0, self._dimensions), dtype="float32")
            )
            files[record.path] = _FileEntry(
                record=record,
                chunks=tuple(StoredChunk.from_row(row) for row in rows),
                matrix=matrix,
            )
        if dropped:
            logger.warning("Dropped %d partially written file(s) from %s", dropped, self.root)
        logger.info("Loaded %d file record(s) from %s", len(files), self.root)
        return _Snapshot(files), max_generation + 1
