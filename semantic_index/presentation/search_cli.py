"""Helpers for the CLI that runs semantic searches against a built index."""
from __future__ import annotations

from pathlib import Path
from typing import Any

from semantic_index.config import IndexSettings
from semantic_index.data import LanceIndexStore
from semantic_index.services.indexing import resolve_index_folder
from semantic_index.services.tool import SemanticSearchTool, open_search_tool

__all__ = [
    "build_search_tool",
    "print_index_stats",
    "print_search_response",
    "resolve_index_location",
]


def resolve_index_location(
    source_folder: Path, index_root: Path | None, *, settings: IndexSettings | None = None
) -> Path:
    settings = settings or IndexSettings()
    folder = resolve_index_folder(source_folder, index_root, relative_root=settings.index_root)
    if not folder.exists():
        raise FileNotFoundError(
            f"No Lance datasets were found at {folder}. "
            "Run 'python main.py --folder <folder>' to build the index first.",
        )
    return folder


def build_search_tool(
    source_folder: Path,
    index_root: Path | None = None,
    *,
    settings: IndexSettings | None = None,
) -> SemanticSearchTool:
    settings = settings or IndexSettings.from_env()
    resolve_index_location(source_folder, index_root, settings=settings)
    return open_search_tool(source_folder, index_root=index_root, settings=settings)


def print_index_stats(tool: SemanticSearchTool) -> None:
    store: LanceIndexStore = tool.engine.store
    stats = store.stats()
    print(
        f"Index: {stats.file_count} file(s), {stats.chunk_count} chunk(s), "
        f"{stats.failed_count} failed, {stats.dimensions}-dim vectors."
    )


def print_search_response(response: dict[str, Any], *, show_excerpts: bool = True) -> None:
    print(response["summary"])
    results = response.get("results") or []
    if not results:
        return
    for result in results:
        print(
            f"- {result['path']} (lines {result['start_line']}-{result['end_line']}) "
            f"| score={result['score']:.3f}"
        )
        if show_excerpts:
            for line in result["excerpt"].splitlines():
                print(f"    {line}")
