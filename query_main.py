"""CLI that runs semantic searches against an index built by ``main.py``."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from semantic_index.presentation.search_cli import (
    build_search_tool,
    print_index_stats,
    print_search_response,
)


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Search documents indexed by semantic-index.",
    )
    parser.add_argument("query", help="Natural-language search query.")
    parser.add_argument(
        "--folder",
        default="my_folder",
        help="Source folder that was previously indexed (default: %(default)s).",
    )
    parser.add_argument(
        "--index-root",
        default=None,
        help="Override path to the '.semantic_index/lance' root if needed.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=5,
        help="Number of results to return (default: %(default)s).",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the raw tool response as JSON.",
    )
    parser.add_argument(
        "--no-excerpts",
        action="store_true",
        help="Only print paths, line ranges and scores.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    folder = Path(args.folder)
    index_root = Path(args.index_root) if args.index_root else None
    try:
        tool = build_search_tool(folder, index_root)
    except (FileNotFoundError, ValueError) as exc:
        print(f"Cannot search {folder}: {exc}")
        raise SystemExit(1) from exc

    response = tool.search(args.query, args.limit)
    if args.json:
        print(json.dumps(response, indent=2))
        return
    print_index_stats(tool)
    print()
    print_search_response(response, show_excerpts=not args.no_excerpts)


if __name__ == "__main__":
    main()
