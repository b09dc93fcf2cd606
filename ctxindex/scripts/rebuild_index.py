#!/usr/bin/env python3
#
# Copyright (c) 2025 Dave Tofflemire, SigilDERG Project
# Licensed under the GNU Affero General Public License v3.0 (AGPLv3).
# Commercial licenses are available. Contact: davetmire85@gmail.com

"""
Rebuild the chunk index for the configured workspace roots.

This script:
1. Clears the existing chunk store and its snapshot
2. Runs a full scan over every workspace root
3. Flushes the snapshot and prints a summary
4. Optionally runs a query against the fresh index
"""

import argparse
import logging
from pathlib import Path

from ctxindex.config import configure_logging, load_config
from ctxindex.workspace import WorkspaceSession

logger = logging.getLogger(__name__)


def rebuild(session: WorkspaceSession, max_files: int | None = None) -> dict:
    """Clear and fully re-index ``session``'s workspace."""
    logger.info("Clearing %s existing chunks", session.store.count())
    session.indexer.clear()
    result = session.indexer.start_full_scan(max_files=max_files)
    session.store.flush()
    return result.to_dict()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Rebuild the ctxindex chunk index")
    parser.add_argument("--config", type=Path, help="Path to a ctxindex JSON config file")
    parser.add_argument("--root", action="append", type=Path,
                        help="Workspace root (repeatable); overrides workspace.roots")
    parser.add_argument("--max-files", type=int, default=None)
    parser.add_argument("--query", help="Search the rebuilt index and print the hits")
    parser.add_argument("--threshold", type=float, default=0.2)
    args = parser.parse_args(argv)

    cfg = load_config(args.config)
    if args.root:
        cfg.config_data.setdefault("workspace", {})["roots"] = [str(r) for r in args.root]
    configure_logging(cfg)

    session = WorkspaceSession(cfg)
    try:
        stats = rebuild(session, args.max_files)
        print("=" * 80)
        print("REBUILD COMPLETE")
        print("=" * 80)
        for key, value in stats.items():
            print(f"  {key}: {value}")

        if args.query:
            print()
            results = session.search(args.query, threshold=args.threshold)
            if not results:
                print(f"No results for {args.query!r}")
            for result in results:
                chunk = result.chunk
                print(
                    f"{result.score:.2f}  {chunk.file_path}:"
                    f"{chunk.metadata.get('start_line', '?')}  "
                    f"{chunk.chunk_type.value} {chunk.metadata.get('name', '')}"
                )
        return 1 if stats["cancelled"] else 0
    finally:
        session.close()


if __name__ == "__main__":
    raise SystemExit(main())
