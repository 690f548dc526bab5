"""Business logic layer for indexing and search workflows."""

from .chunking import TextChunker
from .indexing import (
    DEFAULT_INDEX_ROOT,
    BackgroundIndexer,
    FileState,
    IndexingCoordinator,
    IndexingReport,
    IndexingStatus,
    build_semantic_index,
    list_files,
    resolve_index_folder,
)
from .materialize import MaterializedResult, ResultMaterializer
from .search import IndexUnavailableError, QueryEngine, SearchHit
from .tool import SemanticSearchTool, open_search_tool

__all__ = [
    "BackgroundIndexer",
    "DEFAULT_INDEX_ROOT",
    "FileState",
    "IndexUnavailableError",
    "IndexingCoordinator",
    "IndexingReport",
    "IndexingStatus",
    "MaterializedResult",
    "QueryEngine",
    "ResultMaterializer",
    "SearchHit",
    "SemanticSearchTool",
    "TextChunker",
    "build_semantic_index",
    "list_files",
    "open_search_tool",
    "resolve_index_folder",
]
