"""Low-level helpers that interact with external libraries (Lance, Ollama, converters)."""

from .conversion import (
    ConversionPlan,
    build_conversion_plan,
    convert_with_docling,
    convert_with_markitdown,
    convert_with_markitdown_cli,
    extract_markdown_from_docling,
    extract_markdown_from_markitdown,
)
from .lance import (
    CHUNKS_SCHEMA,
    FILES_SCHEMA,
    META_SCHEMA,
    connect,
    cosine_similarities,
    delete_rows_for_path,
    open_or_create_table,
    read_meta,
    read_rows,
    replace_rows_for_path,
    write_meta,
)
from .deadline import call_with_deadline
from .remote_embeddings import request_embedding_vectors

__all__ = [
    "CHUNKS_SCHEMA",
    "ConversionPlan",
    "FILES_SCHEMA",
    "META_SCHEMA",
    "build_conversion_plan",
    "call_with_deadline",
    "connect",
    "convert_with_docling",
    "convert_with_markitdown",
    "convert_with_markitdown_cli",
    "cosine_similarities",
    "delete_rows_for_path",
    "extract_markdown_from_docling",
    "extract_markdown_from_markitdown",
    "open_or_create_table",
    "read_meta",
    "read_rows",
    "replace_rows_for_path",
    "request_embedding_vectors",
    "write_meta",
]
