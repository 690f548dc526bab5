"""CLI entry point for building the semantic index."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path

from semantic_index.presentation.index_cli import (
    print_index_results,
    run_indexing_cli,
    watch_folder,
)


def main() -> None:
    """Index the given folder once, or keep it indexed with ``--watch``."""
    parser = argparse.ArgumentParser(
        description="Build or refresh the semantic index for a folder.",
    )
    parser.add_argument(
        "--folder",
        default="my_folder",
        help="Folder whose documents should be indexed (default: %(default)s).",
    )
    parser.add_argument(
        "--index-root",
        default=None,
        help="Override the '.semantic_index/lance' root if needed.",
    )
    parser.add_argument(
        "--watch",
        action="store_true",
        help="Keep re-indexing in the background until interrupted.",
    )
    parser.add_argument(
        "--no-progress",
        action="store_true",
        help="Disable the progress bar.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    folder = Path(args.folder)
    index_root = Path(args.index_root) if args.index_root else None

    if args.watch:
        watch_folder(folder, index_root=index_root)
        return

    try:
        report = run_indexing_cli(
            folder, index_root=index_root, show_progress=not args.no_progress
        )
    except Exception as exc:  # pragma: no cover - CLI guardrail.
        print(f"Failed to build semantic index: {exc}")
        return

    print_index_results(report)


if __name__ == "__main__":
    main()
