#!/usr/bin/env python3
"""CLI: Ingest a GitHub repository into the file tree and chunk stores."""

from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

# Ensure the package is importable when running as a script
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from repolens import config
from repolens.github import GitHubClient, GitHubError
from repolens.indexer.ingest import IngestOptions, plan_ingest, run_delta_update, run_ingest
from repolens.storage.sqlite_store import SqliteStore


def _parse_repo(value: str) -> tuple[str, str]:
    owner, sep, repo = value.partition("/")
    if not sep or not owner or not repo or "/" in repo:
        raise argparse.ArgumentTypeError(f"expected OWNER/REPO, got {value!r}")
    return owner, repo


def _print_progress(event: dict) -> None:
    if event.get("step") == "index":
        counts = event["counts"]
        print(
            f"  {event['current']}/{event['total']} files"
            f" ({counts['skipped']} skipped, {counts['chunks']} chunks)"
        )
    elif event.get("step") == "tree":
        print(f"  Tree: {event['nodes']} nodes, {event['total']} files to index")


def main() -> None:
    parser = argparse.ArgumentParser(description="Ingest a GitHub repository")
    parser.add_argument("repository", type=_parse_repo, help="Repository as OWNER/REPO")
    parser.add_argument("--branch", default="main", help="Branch to ingest (default: main)")
    parser.add_argument(
        "--root-path",
        default=None,
        help="Only ingest files under this directory (e.g. packages/core)",
    )
    parser.add_argument(
        "--exclude",
        action="append",
        default=[],
        metavar="PATTERN",
        help="Extra exclude pattern; may be repeated",
    )
    parser.add_argument(
        "--delta",
        nargs=2,
        metavar=("BEFORE", "AFTER"),
        default=None,
        help="Apply only the changes between two commits",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the files that would be indexed without fetching or storing anything",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
    )

    owner, repo = args.repository
    options = IngestOptions(
        owner=owner,
        repo=repo,
        branch=args.branch,
        root_path=args.root_path,
        exclude_globs=args.exclude,
    )
    source = GitHubClient()

    # ── Dry run: report what would happen, then exit ──
    if args.dry_run:
        try:
            commit, files = plan_ingest(source, options)
        except GitHubError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        print(f"Repository: {options.repo_key}@{args.branch} ({commit[:7]})")
        if args.root_path:
            print(f"Root path: {args.root_path}")
        print(f"Files to index: {len(files)}")
        for entry in files:
            print(f"  {entry.path} ({entry.size} bytes)")
        return

    if not config.GEMINI_API_KEY:
        print("Error: ingestion requires GEMINI_API_KEY in .env", file=sys.stderr)
        sys.exit(1)

    from repolens.embeddings import GeminiProvider
    from repolens.storage.chunk_store import ChunkStore

    store = SqliteStore(config.SQLITE_PATH)
    store.init_db()
    chunk_store = ChunkStore(
        config.LANCEDB_PATH,
        GeminiProvider(),
        dims=config.EMBEDDING_DIMS,
        table_name=config.CHUNKS_TABLE,
    )
    start = time.time()

    try:
        if args.delta:
            before, after = args.delta
            print(f"Delta update {options.repo_key}: {before[:7]}..{after[:7]}")
            result = run_delta_update(
                store, source, chunk_store, owner, repo, before, after, branch=args.branch
            )
            print(f"  Files processed: {result['files_processed']}")
            print(f"  Files skipped: {result['files_skipped']}")
            print(f"  Chunks added: {result['chunks_added']}")
        else:
            print(f"Ingesting {options.repo_key}@{args.branch}")
            result = run_ingest(store, source, chunk_store, options, on_progress=_print_progress)
            counts = result["counts"]
            print(f"\nIngestion complete at {result['commit'][:7]}:")
            print(f"  Files: {counts['files']} ({counts['skipped']} skipped)")
            print(f"  Chunks: {counts['chunks']}")
    except GitHubError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        store.close()
        source.close()

    print(f"\nDone in {time.time() - start:.1f}s")
    print(f"  Database: {config.SQLITE_PATH}")
    print(f"  LanceDB: {config.LANCEDB_PATH} (table: {config.CHUNKS_TABLE})")


if __name__ == "__main__":
    main()
