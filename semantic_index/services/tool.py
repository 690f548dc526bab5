"""The ``semantic_search`` tool exposed to the assistant.

Every call returns a response dictionary; failures are reported through its
``status`` and ``summary`` rather than raised::

    {
        "results": [{"path", "start_line", "end_line", "excerpt", "score"}, ...],
        "summary": "Found 2 relevant document(s) for query: \"revenue\"",
        "status": "ok",
        "content": "<markdown rendering for the model>",
    }
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Mapping

from semantic_index.config import IndexSettings
from semantic_index.data import LanceIndexStore, StoreInconsistencyError
from semantic_index.foundation.deadline import FutureTimeout, call_with_deadline
from semantic_index.middleware import DocumentConverter, EmbeddingError

from .indexing import IndexingStatus, resolve_index_folder
from .materialize import MaterializedResult, ResultMaterializer
from .search import IndexUnavailableError, QueryEngine

logger = logging.getLogger(__name__)

__all__ = [
    "INPUT_SCHEMA",
    "SemanticSearchTool",
    "TOOL_DESCRIPTION",
    "TOOL_NAME",
    "open_search_tool",
]

TOOL_NAME = "semantic_search"
TOOL_DESCRIPTION = (
    "Search through all indexed documents in the project using semantic similarity. "
    "Use this when you need to find relevant information that might be scattered "
    "across multiple documents."
)
DEFAULT_LIMIT = 5
INPUT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "query": {
            "type": "string",
            "description": "The search query to find relevant documents",
        },
        "limit": {
            "type": ["integer", "null"],
            "description": "Maximum number of results to return",
            "default": DEFAULT_LIMIT,
            "minimum": 1,
        },
    },
    "required": ["query"],
}

STATUS_OK = "ok"
STATUS_NO_RESULTS = "no_results"
STATUS_INDEX_UNAVAILABLE = "index_unavailable"
STATUS_INDEX_INCONSISTENT = "index_inconsistent"
STATUS_TIMEOUT = "timeout"
STATUS_INVALID_REQUEST = "invalid_request"
STATUS_ERROR = "error"


class _InvalidRequest(ValueError):
    pass


class SemanticSearchTool:
    """Read-only orchestration of ``QueryEngine`` and ``ResultMaterializer``.

    Each search runs on a worker thread and is abandoned after ``timeout``
    seconds. ``status_provider`` (usually ``BackgroundIndexer.status``) lets
    the summary warn that a pass is still running.
    """

    name = TOOL_NAME
    description = TOOL_DESCRIPTION
    input_schema = INPUT_SCHEMA

    def __init__(
        self,
        engine: QueryEngine,
        materializer: ResultMaterializer | None = None,
        *,
        timeout: float = 15.0,
        status_provider: Callable[[], IndexingStatus] | None = None,
    ) -> None:
        self.engine = engine
        self.materializer = materializer or ResultMaterializer()
        self.timeout = timeout
        self.status_provider = status_provider

    def ui_text(self, payload: Any) -> str:
        if isinstance(payload, Mapping) and isinstance(payload.get("query"), str):
            return f'Search documents for: "{payload["query"]}"'
        return "Search documents"

    def __call__(self, query: str, limit: int | None = None) -> dict[str, Any]:
        return self.search(query, limit)

    def run(self, payload: Any) -> dict[str, Any]:
        """Run a request shaped like ``INPUT_SCHEMA``."""
        if not isinstance(payload, Mapping):
            return self._response(STATUS_INVALID_REQUEST, "Request must be an object.")
        return self.search(payload.get("query"), payload.get("limit", DEFAULT_LIMIT))

    def search(self, query: Any, limit: Any = None) -> dict[str, Any]:
        try:
            query, limit = _validate(query, limit)
        except _InvalidRequest as exc:
            return self._response(STATUS_INVALID_REQUEST, f"Invalid search request: {exc}")

        logger.info("Semantic search for %r (limit: %s)", query, limit)
        try:
            results = call_with_deadline(
                self._search, query, limit, timeout=self.timeout, name="semantic-search"
            )
        except FutureTimeout:
            logger.warning("Semantic search for %r timed out after %.1fs", query, self.timeout)
            return self._response(
                STATUS_TIMEOUT,
                f'Search timed out after {self.timeout:g}s for query: "{query}"',
            )
        except IndexUnavailableError:
            return self._response(
                STATUS_INDEX_UNAVAILABLE,
                "No semantic index found for this project. Please ensure documents are indexed.",
            )
        except StoreInconsistencyError as exc:
            logger.error("Semantic index is inconsistent: %s", exc)
            return self._response(
                STATUS_INDEX_INCONSISTENT,
                "The semantic index is inconsistent and must be rebuilt before searching.",
            )
        except EmbeddingError as exc:
            logger.warning("Embedding the query %r failed: %s", query, exc)
            return self._response(STATUS_ERROR, "Failed to perform semantic search.")
        except Exception:
            logger.exception("Semantic search for %r failed", query)
            return self._response(STATUS_ERROR, "Failed to perform semantic search.")

        logger.info("Found %d search result(s) for %r", len(results), query)
        if not results:
            return self._response(
                STATUS_NO_RESULTS, f'No relevant documents found for query: "{query}"'
            )
        summary = f'Found {len(results)} relevant document(s) for query: "{query}"'
        return self._response(STATUS_OK, summary, results)

    def _search(self, query: str, limit: int) -> list[MaterializedResult]:
        hits = self.engine.search(query, limit)
        return self.materializer.materialize_all(hits)

    def _response(
        self,
        status: str,
        summary: str,
        results: list[MaterializedResult] | None = None,
    ) -> dict[str, Any]:
        note = self._indexing_note()
        if note:
            summary = f"{summary} {note}"
        rows = [
            {
                "path": result.path,
                "start_line": result.start_line,
                "end_line": result.end_line,
                "excerpt": result.excerpt,
                "score": round(float(result.score), 6),
            }
            for result in results or []
        ]
        if rows:
            body = "\n".join(
                f"**{row['path']}** (lines {row['start_line']}-{row['end_line']}):\n"
                f"{row['excerpt']}\n"
                for row in rows
            )
            content = f"{summary}:\n\n{body}"
        else:
            content = summary
        return {"results": rows, "summary": summary, "status": status, "content": content}

    def _indexing_note(self) -> str:
        if self.status_provider is None:
            return ""
        try:
            status = self.status_provider()
        except Exception as exc:  # pragma: no cover - status is advisory only.
            logger.debug("Indexing status unavailable: %s", exc)
            return ""
        if not status.scanning:
            return ""
        return (
            f"(Indexing in progress, {status.remaining} file(s) remaining; "
            "results may be incomplete.)"
        )


def _validate(query: Any, limit: Any) -> tuple[str, int]:
    if not isinstance(query, str) or not query.strip():
        raise _InvalidRequest("query must be a non-empty string")
    if limit is None:
        limit = DEFAULT_LIMIT
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise _InvalidRequest("limit must be an integer")
    if limit < 1:
        raise _InvalidRequest("limit must be a positive integer")
    return query.strip(), limit


def open_search_tool(
    folder: Path | str,
    *,
    index_root: Path | str | None = None,
    settings: IndexSettings | None = None,
    store: LanceIndexStore | None = None,
    embedding_client: Any | None = None,
    converter: Any | None = None,
    status_provider: Callable[[], IndexingStatus] | None = None,
) -> SemanticSearchTool:
    """Wire a ``SemanticSearchTool`` over the index built for ``folder``.

    Pass the coordinator's ``store`` to search an index being maintained in
    the same process.
    """

    settings = settings or IndexSettings()
    if store is None:
        store = LanceIndexStore(
            resolve_index_folder(folder, index_root, relative_root=settings.index_root),
            dimensions=settings.embedding_dimensions,
        )
    engine = QueryEngine(store, embedding_client=embedding_client, settings=settings)
    if converter is None:
        converter = DocumentConverter(
            backend=settings.converter_backend,
            timeout=settings.conversion_timeout,
        )
    return SemanticSearchTool(
        engine,
        ResultMaterializer(converter),
        timeout=settings.query_timeout,
        status_provider=status_provider,
    )
