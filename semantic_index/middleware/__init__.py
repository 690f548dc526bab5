"""Middleware clients that talk to external systems."""

from .conversion import (
    ConversionError,
    ConversionTimeoutError,
    CorruptInputError,
    DocumentConverter,
    ToolUnavailableError,
    UnsupportedSubFormatError,
)
from .embeddings import EmbeddingError, OllamaEmbeddingClient
from .routing import ConversionRouter, FileFormat, FileSignals, classify, gather_file_signals

__all__ = [
    "ConversionError",
    "ConversionRouter",
    "ConversionTimeoutError",
    "CorruptInputError",
    "DocumentConverter",
    "EmbeddingError",
    "FileFormat",
    "FileSignals",
    "OllamaEmbeddingClient",
    "ToolUnavailableError",
    "UnsupportedSubFormatError",
    "classify",
    "gather_file_signals",
]
