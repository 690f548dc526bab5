"""Low-level helpers for connecting to Lance tables."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

import lancedb
import numpy as np
import pyarrow as pa

LanceTable = Any

FILES_SCHEMA = pa.schema(
    [
        pa.field("path", pa.string()),
        pa.field("content_hash", pa.string()),
        pa.field("indexed_at", pa.float64()),
        pa.field("file_format", pa.string()),
        pa.field("status", pa.string()),
        pa.field("failure_reason", pa.string()),
        pa.field("chunk_count", pa.int64()),
        pa.field("size_bytes", pa.int64()),
        pa.field("generation", pa.int64()),
    ]
)

CHUNKS_SCHEMA = pa.schema(
    [
        pa.field("chunk_id", pa.string()),
        pa.field("path", pa.string()),
        pa.field("generation", pa.int64()),
        pa.field("sequence", pa.int64()),
        pa.field("start_offset", pa.int64()),
        pa.field("end_offset", pa.int64()),
        pa.field("start_line", pa.int64()),
        pa.field("end_line", pa.int64()),
        pa.field("text", pa.string()),
        pa.field("digest", pa.string()),
        pa.field("indexed_at", pa.float64()),
        pa.field("vector", pa.list_(pa.float32())),
    ]
)

META_SCHEMA = pa.schema(
    [
        pa.field("key", pa.string()),
        pa.field("value", pa.string()),
    ]
)


def connect(root: Path | str):
    path = Path(root).expanduser().resolve()
    path.mkdir(parents=True, exist_ok=True)
    return lancedb.connect(str(path))


def open_or_create_table(db, table_name: str, schema: pa.Schema) -> LanceTable:
    """Return ``table_name``, creating it with ``schema`` when missing.

    A table whose columns differ from ``schema`` is dropped and recreated
    empty; callers treat that as a rebuild.
    """

    if table_name in db.table_names():
        table = db.open_table(table_name)
        if list(table.schema.names) == [field.name for field in schema]:
            return table
        db.drop_table(table_name)
    return db.create_table(table_name, schema=schema)


def drop_tables(db, table_names: Iterable[str]) -> None:
    existing = set(db.table_names())
    for name in table_names:
        if name in existing:
            db.drop_table(name)


def read_rows(table: LanceTable) -> list[dict[str, Any]]:
    arrow_table = table.to_arrow()
    if not arrow_table.num_rows:
        return []
    return arrow_table.to_pylist()


def sql_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def delete_rows_for_path(table: LanceTable, path: str) -> None:
    """Remove every row whose ``path`` column equals ``path``."""

    table.delete(where=f"path = {sql_literal(path)}")


def replace_rows_for_path(
    table: LanceTable,
    path: str,
    rows: list[dict[str, Any]],
    *,
    generation: int,
) -> None:
    """Write ``rows`` for ``path`` then drop rows from older generations.

    New rows land before old ones are deleted, so an interrupted write leaves
    two generations on disk rather than none; readers keep the newest.
    """

    if rows:
        table.add(rows)
    table.delete(where=f"path = {sql_literal(path)} AND generation <> {int(generation)}")


def read_meta(table: LanceTable) -> dict[str, str]:
    return {str(row["key"]): str(row["value"]) for row in read_rows(table)}


def write_meta(table: LanceTable, values: dict[str, str]) -> None:
    """Insert or replace the given metadata keys."""

    for key in values:
        table.delete(where=f"key = {sql_literal(key)}")
    if values:
        table.add([{"key": key, "value": value} for key, value in values.items()])


def cosine_similarities(matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
    """Return the cosine similarity between ``vector`` and every row of ``matrix``.

    Rows (or a query) with zero norm score 0.0.
    """

    if vector.ndim != 1:
        raise ValueError("Query vector must be one-dimensional.")
    if not matrix.size:
        return np.zeros(matrix.shape[0], dtype="float32")
    row_norms = np.linalg.norm(matrix, axis=1)
    query_norm = float(np.linalg.norm(vector))
    denom = row_norms * query_norm
    dots = matrix @ vector
    with np.errstate(divide="ignore", invalid="ignore"):
        scores = np.where(denom > 0, dots / np.where(denom > 0, denom, 1.0), 0.0)
    return scores.astype("float32")
