"""Records persisted in, and returned from, the index store."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any

from semantic_index.middleware.routing import FileFormat

__all__ = [
    "Chunk",
    "ConversionStatus",
    "FileRecord",
    "IndexStats",
    "ScoredChunk",
    "StoredChunk",
]


class ConversionStatus(str, enum.Enum):
    NOT_NEEDED = "not_needed"
    CONVERTED = "converted"
    FAILED = "failed"


@dataclass(slots=True)
class FileRecord:
    """Indexing state for one source file, keyed by its absolute path."""

    path: str
    content_hash: str
    file_format: FileFormat
    status: ConversionStatus
    indexed_at: float
    size_bytes: int = 0
    chunk_count: int = 0
    failure_reason: str | None = None
    generation: int = 0

    @property
    def failed(self) -> bool:
        return self.status is ConversionStatus.FAILED

    def to_row(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "content_hash": self.content_hash,
            "indexed_at": float(self.indexed_at),
            "file_format": self.file_format.value,
            "status": self.status.value,
            "failure_reason": self.failure_reason,
            "chunk_count": int(self.chunk_count),
            "size_bytes": int(self.size_bytes),
            "generation": int(self.generation),
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "FileRecord":
        return cls(
            path=str(row["path"]),
            content_hash=str(row["content_hash"]),
            file_format=FileFormat(row["file_format"]),
            status=ConversionStatus(row["status"]),
            indexed_at=float(row["indexed_at"]),
            size_bytes=int(row.get("size_bytes") or 0),
            chunk_count=int(row.get("chunk_count") or 0),
            failure_reason=row.get("failure_reason"),
            generation=int(row.get("generation") or 0),
        )


@dataclass(frozen=True, slots=True)
class Chunk:
    """A span of normalized text produced by the chunker.

    ``start_offset``/``end_offset`` index characters of the normalized text;
    ``start_line``/``end_line`` are 1-based and inclusive.
    """

    sequence: int
    start_offset: int
    end_offset: int
    start_line: int
    end_line: int
    text: str
    digest: str


@dataclass(frozen=True, slots=True)
class StoredChunk:
    """A chunk as persisted for one generation of a file."""

    chunk_id: str
    path: str
    generation: int
    sequence: int
    start_offset: int
    end_offset: int
    start_line: int
    end_line: int
    text: str
    digest: str
    indexed_at: float

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "StoredChunk":
        return cls(
            chunk_id=str(row["chunk_id"]),
            path=str(row["path"]),
            generation=int(row["generation"]),
            sequence=int(row["sequence"]),
            start_offset=int(row["start_offset"]),
            end_offset=int(row["end_offset"]),
            start_line=int(row["start_line"]),
            end_line=int(row["end_line"]),
            text=str(row.get("text") or ""),
            digest=str(row.get("digest") or ""),
            indexed_at=float(row["indexed_at"]),
        )


@dataclass(frozen=True, slots=True)
class ScoredChunk:
    chunk: StoredChunk
    score: float


@dataclass(frozen=True, slots=True)
class IndexStats:
    file_count: int
    chunk_count: int
    failed_count: int
    schema_version: int
    dimensions: int
    last_pass_at: float | None
