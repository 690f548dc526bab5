"""Core package for semantic-index: format-aware indexing and semantic search."""

from .config import IndexSettings
from .data.stores import LanceIndexStore, StoreInconsistencyError
from .middleware.conversion import ConversionError, DocumentConverter, ToolUnavailableError
from .middleware.embeddings import EmbeddingError, OllamaEmbeddingClient
from .middleware.routing import ConversionRouter, FileFormat, classify
from .services.chunking import TextChunker
from .services.indexing import (
    DEFAULT_INDEX_ROOT,
    BackgroundIndexer,
    IndexingCoordinator,
    IndexingReport,
    build_semantic_index,
    list_files,
)
from .services.materialize import ResultMaterializer
from .services.search import IndexUnavailableError, QueryEngine, SearchHit
from .services.tool import SemanticSearchTool, open_search_tool

__all__ = [
    "BackgroundIndexer",
    "ConversionError",
    "ConversionRouter",
    "DEFAULT_INDEX_ROOT",
    "DocumentConverter",
    "EmbeddingError",
    "FileFormat",
    "IndexSettings",
    "IndexUnavailableError",
    "IndexingCoordinator",
    "IndexingReport",
    "LanceIndexStore",
    "OllamaEmbeddingClient",
    "QueryEngine",
    "ResultMaterializer",
    "SearchHit",
    "SemanticSearchTool",
    "StoreInconsistencyError",
    "TextChunker",
    "ToolUnavailableError",
    "build_semantic_index",
    "classify",
    "list_files",
    "open_search_tool",
]
