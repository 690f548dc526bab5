"""Data access layer for Lance-backed storage."""

from .models import (
    Chunk,
    ConversionStatus,
    FileRecord,
    IndexStats,
    ScoredChunk,
    StoredChunk,
)
from .stores import SCHEMA_VERSION, LanceIndexStore, StoreInconsistencyError

__all__ = [
    "Chunk",
    "ConversionStatus",
    "FileRecord",
    "IndexStats",
    "LanceIndexStore",
    "SCHEMA_VERSION",
    "ScoredChunk",
    "StoreInconsistencyError",
    "StoredChunk",
]
