"""Ingestion orchestrator: crawl a repository, build its tree, chunk and store files.

Full runs replace the repository's tree wholesale and re-chunk every kept file
in fixed-size batches. Delta runs apply a commit comparison: removed files lose
their chunks and tree nodes, added/modified files are re-chunked and patched
into the tree. Both accept an optional ``on_progress`` callback and return a
summary dict.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone

from repolens import config
from repolens.github import RepositorySource, TreeEntry
from repolens.indexer.chunker import chunk_by_language
from repolens.indexer.file_tree import FileTree, build_tree
from repolens.indexer.filters import ExcludeMatcher, build_exclude_matcher, is_binary_file
from repolens.indexer.languages import detect_language
from repolens.storage.chunk_store import ChunkStore, make_chunk_id
from repolens.storage.sqlite_store import SqliteStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[dict], None]

# Change statuses from a commit comparison that need the new content indexed
_INDEX_STATUSES = ("added", "modified", "changed", "renamed", "copied")


@dataclass
class IngestOptions:
    owner: str
    repo: str
    branch: str = "main"
    root_path: str | None = None
    exclude_globs: list[str] = field(default_factory=list)

    @property
    def repo_key(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass
class FileResult:
    path: str
    chunks: int = 0
    size: int = 0
    blob_sha: str | None = None
    error: str | None = None
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None and not self.skipped


def _emit(on_progress: ProgressCallback | None, event: dict) -> None:
    if on_progress:
        on_progress(event)


def _under_root(path: str, root_path: str | None) -> bool:
    if not root_path:
        return True
    root = root_path.strip("/")
    return not root or path == root or path.startswith(root + "/")


def select_files(
    entries: list[TreeEntry],
    matcher: ExcludeMatcher,
    root_path: str | None = None,
    include_binary: bool = False,
) -> list[TreeEntry]:
    """Blobs that survive root scoping, exclude patterns and (unless asked) binary detection."""
    kept = []
    for entry in entries:
        if not _under_root(entry.path, root_path):
            continue
        if matcher.matches(entry.path):
            continue
        if not include_binary and is_binary_file(entry.path, entry.size):
            continue
        kept.append(entry)
    return kept


def plan_ingest(
    source: RepositorySource, options: IngestOptions, include_binary: bool = False
) -> tuple[str, list[TreeEntry]]:
    """Resolve the branch head and list the files a full run would process."""
    commit = source.resolve_commit(options.owner, options.repo, options.branch)
    entries = source.get_tree(options.owner, options.repo, commit)

    gitignore = None
    try:
        gitignore = source.get_gitignore(options.owner, options.repo, commit)
    except Exception as e:
        logger.warning("Could not read .gitignore for %s: %s", options.repo_key, e)

    matcher = build_exclude_matcher(gitignore, options.exclude_globs)
    files = select_files(entries, matcher, options.root_path, include_binary)
    logger.info(
        "%s@%s: %d blobs, %d kept after filtering",
        options.repo_key, commit[:7], len(entries), len(files),
    )
    return commit, files


def index_file(
    source: RepositorySource,
    chunk_store: ChunkStore,
    owner: str,
    repo: str,
    branch: str,
    path: str,
    ref: str,
    ingested_at: str | None = None,
) -> FileResult:
    """Fetch one file, chunk it and replace its chunks in the store."""
    repo_key = f"{owner}/{repo}"
    fetched = source.get_file_content(owner, repo, path, ref)
    language = detect_language(path)
    chunks = [
        c for c in chunk_by_language(
            fetched.content,
            language,
            target_size=config.CHUNK_TARGET_SIZE,
            max_size=config.CHUNK_MAX_SIZE,
            overlap=config.CHUNK_OVERLAP,
        )
        if c.text.strip()
    ]
    ingested_at = ingested_at or datetime.now(timezone.utc).isoformat()

    ids = [
        make_chunk_id(owner, repo, branch, path, c.start_line, c.end_line, fetched.sha)
        for c in chunks
    ]
    metadatas = [
        {
            "repo": repo_key,
            "branch": branch,
            "path": path,
            "language": language,
            "blob_sha": fetched.sha,
            "start_line": c.start_line,
            "end_line": c.end_line,
            "symbol_name": c.symbol_name or "",
            "symbol_kind": c.symbol_kind or "",
            "ingested_at": ingested_at,
        }
        for c in chunks
    ]

    chunk_store.delete(repo_key, path)
    chunk_store.upsert(ids, [c.text for c in chunks], metadatas)
    logger.debug("Indexed %s: %d chunk(s)", path, len(chunks))
    return FileResult(path=path, chunks=len(chunks), size=fetched.size, blob_sha=fetched.sha)


def _safe_index_file(*args, **kwargs) -> FileResult:
    """Per-file worker: failures are recorded, not raised."""
    path = kwargs["path"]
    try:
        return index_file(*args, **kwargs)
    except Exception as e:
        logger.warning("Skipping %s: %s", path, e)
        return FileResult(path=path, error=str(e))


def run_ingest(
    store: SqliteStore,
    source: RepositorySource,
    chunk_store: ChunkStore,
    options: IngestOptions,
    on_progress: ProgressCallback | None = None,
    concurrency: int = config.INGEST_CONCURRENCY,
) -> dict:
    """Full ingestion of one branch.

    Returns {"repo", "commit", "counts": {"files", "skipped", "chunks"},
    "duration_secs"}.
    """
    repo_key = options.repo_key
    repo_id = store.upsert_repository(options.owner, options.repo, options.branch)
    store.set_indexing_status(repo_id, "indexing")
    logger.info("Ingesting %s (branch %s)", repo_key, options.branch)
    t0 = time.perf_counter()

    try:
        # Binaries count as skipped files; they are never fetched or added to the tree
        commit, files = plan_ingest(source, options, include_binary=True)
        binary = {f.path for f in files if is_binary_file(f.path, f.size)}

        tree = build_tree(
            repo_key,
            [(f.path, f.size, f.sha) for f in files if f.path not in binary],
            root_name=options.repo,
        )
        store.replace_tree(repo_id, tree.nodes())
        _emit(on_progress, {"step": "tree", "nodes": len(tree), "total": len(files)})

        counts = {"files": 0, "skipped": 0, "chunks": 0}
        ingested_at = datetime.now(timezone.utc).isoformat()
        total = len(files)

        for start in range(0, total, concurrency):
            batch = files[start:start + concurrency]
            with ThreadPoolExecutor(max_workers=concurrency) as pool:
                futures = [
                    None if entry.path in binary else pool.submit(
                        _safe_index_file,
                        source,
                        chunk_store,
                        options.owner,
                        options.repo,
                        options.branch,
                        path=entry.path,
                        ref=commit,
                        ingested_at=ingested_at,
                    )
                    for entry in batch
                ]
                results = [
                    FileResult(path=entry.path, skipped=True) if fut is None else fut.result()
                    for entry, fut in zip(batch, futures)
                ]

            indexed: dict[str, int] = {}
            for result in results:
                if not result.ok:
                    counts["skipped"] += 1
                    continue
                counts["chunks"] += result.chunks
                if result.chunks > 0:
                    indexed[result.path] = result.chunks
            counts["files"] = start + len(batch)
            store.mark_files_indexed(repo_id, indexed)

            _emit(on_progress, {
                "step": "index",
                "current": counts["files"],
                "total": total,
                "counts": dict(counts),
            })

        store.set_indexing_status(repo_id, "done", commit_sha=commit)
    except Exception as e:
        logger.exception("Ingestion of %s failed", repo_key)
        store.set_indexing_status(repo_id, "error", error=str(e))
        raise

    elapsed = time.perf_counter() - t0
    logger.info(
        "Ingested %s: %d files, %d skipped, %d chunks (%.1fs)",
        repo_key, counts["files"], counts["skipped"], counts["chunks"], elapsed,
    )
    return {
        "repo": repo_key,
        "commit": commit,
        "counts": counts,
        "duration_secs": round(elapsed, 2),
    }


def run_delta_update(
    store: SqliteStore,
    source: RepositorySource,
    chunk_store: ChunkStore,
    owner: str,
    repo: str,
    before: str,
    after: str,
    branch: str = "main",
    on_progress: ProgressCallback | None = None,
) -> dict:
    """Apply the changes between two commits to the chunk store and tree.

    Returns {"files_processed", "files_skipped", "chunks_added"}.
    """
    repo_key = f"{owner}/{repo}"
    repo_id = store.upsert_repository(owner, repo, branch)
    changes = source.compare_commits(owner, repo, before, after)
    logger.info("Delta update %s %s..%s: %d change(s)", repo_key, before[:7], after[:7], len(changes))

    matcher = build_exclude_matcher()
    tree = FileTree.from_nodes(repo_key, store.get_tree_nodes(repo_id))
    removed_paths: list[str] = []
    processed = skipped = chunks_added = 0
    ingested_at = datetime.now(timezone.utc).isoformat()

    for i, change in enumerate(changes, 1):
        path = change.filename
        _emit(on_progress, {"step": "delta", "current": i, "total": len(changes), "file": path})

        if change.status == "removed":
            chunk_store.delete(repo_key, path)
            removed_paths.extend(tree.remove_file(path))
            processed += 1
            continue

        if change.status == "renamed" and change.previous_filename:
            chunk_store.delete(repo_key, change.previous_filename)
            removed_paths.extend(tree.remove_file(change.previous_filename))

        if change.status not in _INDEX_STATUSES or matcher.matches(path) or is_binary_file(path):
            skipped += 1
            continue

        result = _safe_index_file(
            source, chunk_store, owner, repo, branch,
            path=path, ref=after, ingested_at=ingested_at,
        )
        if not result.ok:
            skipped += 1
            continue

        processed += 1
        chunks_added += result.chunks
        tree.add_file(path, result.size, result.blob_sha)
        tree.mark_indexed(path, result.chunks)

    tree.recompute()
    store.delete_tree_nodes(repo_id, removed_paths)
    store.save_tree_nodes(repo_id, tree.nodes())
    store.update_repository(repo_id, indexed_commit_sha=after)

    return {
        "files_processed": processed,
        "files_skipped": skipped,
        "chunks_added": chunks_added,
    }
