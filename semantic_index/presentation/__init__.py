"""Presentation helpers for the CLI surfaces."""

from .index_cli import print_index_results, run_indexing_cli, watch_folder
from .search_cli import (
    build_search_tool,
    print_index_stats,
    print_search_response,
    resolve_index_location,
)

__all__ = [
    "build_search_tool",
    "print_index_results",
    "print_index_stats",
    "print_search_response",
    "resolve_index_location",
    "run_indexing_cli",
    "watch_folder",
]
