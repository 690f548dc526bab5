"""Business logic for semantic search over the chunk index."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

from semantic_index.config import IndexSettings
from semantic_index.data import LanceIndexStore, ScoredChunk
from semantic_index.middleware import FileFormat, OllamaEmbeddingClient

logger = logging.getLogger(__name__)

__all__ = ["IndexUnavailableError", "QueryEngine", "SearchHit"]


class IndexUnavailableError(RuntimeError):
    """Raised when a search runs before any indexing pass has completed."""


@dataclass(slots=True)
class SearchHit:
    """Normalized view over a ranked chunk."""

    path: str
    start_line: int
    end_line: int
    score: float
    chunk_id: str
    sequence: int
    text: str
    file_format: FileFormat
    indexed_at: float


class QueryEngine:
    """Embeds queries, ranks chunks and collapses overlapping hits per file."""

    def __init__(
        self,
        store: LanceIndexStore,
        *,
        embedding_client: Any | None = None,
        settings: IndexSettings | None = None,
    ) -> None:
        self.settings = settings or IndexSettings()
        self.store = store
        self.embedding_client = embedding_client or OllamaEmbeddingClient(
            model=self.settings.embedding_model,
            endpoint=self.settings.embedding_endpoint,
            timeout=self.settings.query_timeout,
            batch_size=self.settings.embedding_batch_size,
            dimensions=self.settings.embedding_dimensions,
        )

    def resolve_limit(self, limit: int | None) -> int:
        if limit is None:
            return self.settings.default_limit
        if limit < 1:
            raise ValueError("limit must be a positive integer.")
        return min(limit, self.settings.max_limit)

    def search(self, query: str, limit: int | None = None) -> list[SearchHit]:
        """Return up to ``limit`` hits ranked by similarity to ``query``."""
        return self.search_many([query], limit)

    def search_many(self, queries: Sequence[str], limit: int | None = None) -> list[SearchHit]:
        """Search several phrasings at once and merge their rankings.

        A chunk matched by more than one query keeps its best score.
        """

        cleaned = [query.strip() for query in queries if query and query.strip()]
        if not cleaned:
            raise ValueError("Query must contain text.")
        top_k = self.resolve_limit(limit)
        if not self.store.is_built:
            raise IndexUnavailableError("No semantic index has been built yet.")

        vectors = self.embedding_client.embed_batch(cleaned)
        depth = top_k * max(1, self.settings.oversample_factor)
        best: dict[str, ScoredChunk] = {}
        for vector in vectors:
            for scored in self.store.query(vector, depth):
                current = best.get(scored.chunk.chunk_id)
                if current is None or scored.score > current.score:
                    best[scored.chunk.chunk_id] = scored

        hits = [
            hit
            for hit in self._to_hits(best.values())
            if hit.score >= self.settings.min_score
        ]
        merged = collapse_overlapping(hits)
        logger.debug(
            "Query %r: %d candidates, %d after collapsing", cleaned[0], len(hits), len(merged)
        )
        return merged[:top_k]

    def _to_hits(self, scored_chunks: Iterable[ScoredChunk]) -> list[SearchHit]:
        hits: list[SearchHit] = []
        for scored in scored_chunks:
            chunk = scored.chunk
            record = self.store.get_file(chunk.path)
            if record is None or record.failed:
                continue
            hits.append(
                SearchHit(
                    path=chunk.path,
                    start_line=chunk.start_line,
                    end_line=chunk.end_line,
                    score=max(-1.0, min(1.0, scored.score)),
                    chunk_id=chunk.chunk_id,
                    sequence=chunk.sequence,
                    text=chunk.text,
                    file_format=record.file_format,
                    indexed_at=chunk.indexed_at,
                )
            )
        return hits


def _rank_key(hit: SearchHit) -> tuple[float, float, str, int]:
    return (-hit.score, -hit.indexed_at, hit.path, hit.start_line)


def collapse_overlapping(hits: Iterable[SearchHit]) -> list[SearchHit]:
    """Keep the best hit per contiguous run of overlapping/adjacent chunks in a file."""

    by_path: dict[str, list[SearchHit]] = {}
    for hit in hits:
        by_path.setdefault(hit.path, []).append(hit)

    kept: list[SearchHit] = []
    for path_hits in by_path.values():
        path_hits.sort(key=lambda item: (item.start_line, item.end_line))
        region_best = path_hits[0]
        region_end = path_hits[0].end_line
        for hit in path_hits[1:]:
            if hit.start_line <= region_end + 1:
                region_end = max(region_end, hit.end_line)
                if _rank_key(hit) < _rank_key(region_best):
                    region_best = hit
                continue
            kept.append(region_best)
            region_best = hit
            region_end = hit.end_line
        kept.append(region_best)

    kept.sort(key=_rank_key)
    return kept
