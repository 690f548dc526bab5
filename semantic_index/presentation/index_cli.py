"""CLI helpers for kicking off the indexing pipeline."""

from __future__ import annotations

import time
from pathlib import Path

from semantic_index.config import IndexSettings
from semantic_index.data import LanceIndexStore
from semantic_index.services.indexing import (
    BackgroundIndexer,
    IndexingCoordinator,
    IndexingReport,
    build_semantic_index,
    resolve_index_folder,
)

__all__ = ["run_indexing_cli", "print_index_results", "watch_folder"]


def run_indexing_cli(
    folder: Path | str = "./my_folder",
    *,
    settings: IndexSettings | None = None,
    **kwargs,
) -> IndexingReport:
    """Run one indexing pass over ``folder`` and return its report."""
    settings = settings or IndexSettings.from_env()
    return build_semantic_index(folder, settings=settings, **kwargs)


def watch_folder(
    folder: Path | str,
    *,
    index_root: Path | str | None = None,
    settings: IndexSettings | None = None,
) -> None:
    """Keep the index for ``folder`` fresh until interrupted."""
    settings = settings or IndexSettings.from_env()
    store = LanceIndexStore(
        resolve_index_folder(folder, index_root, relative_root=settings.index_root),
        dimensions=settings.embedding_dimensions,
    )
    coordinator = IndexingCoordinator(store, settings=settings)
    indexer = BackgroundIndexer(coordinator, folder, interval=settings.refresh_interval)
    indexer.start()
    seen = 0
    try:
        while True:
            if indexer.wait_for_pass(seen + 1, timeout=1.0):
                seen = indexer.pass_count
                if indexer.last_report is not None and indexer.last_report.mutations:
                    print_index_results(indexer.last_report)
            time.sleep(0.1)
    except KeyboardInterrupt:  # pragma: no cover - interactive exit.
        print("Stopping background indexer.")
    finally:
        indexer.stop()
        coordinator.close()


def print_index_results(report: IndexingReport) -> None:
    """Render CLI-friendly output for an indexing pass."""
    if not report.mutations and not report.unchanged:
        print("No indexable files were found.")
        return
    print(
        f"Indexed {len(report.indexed)} file(s), {len(report.unchanged)} unchanged, "
        f"{len(report.failed)} failed, {len(report.removed)} removed "
        f"in {report.duration:.1f}s."
    )
    for path in report.indexed:
        print(f"+ {path}")
    for path in report.removed:
        print(f"- {path}")
    for path, reason in sorted(report.failed.items()):
        print(f"! {path} ({reason})")
    for path in report.unreadable:
        print(f"? {path} (unreadable)")
