"""Content-addressable chunk storage backed by LanceDB."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path

import lancedb
import pyarrow as pa
import pyarrow.compute as pc

from repolens.embeddings import EmbeddingProvider

logger = logging.getLogger(__name__)


def make_chunk_id(
    owner: str, repo: str, branch: str, path: str, start_line: int, end_line: int, blob_sha: str
) -> str:
    """Deterministic chunk identity: same repo, branch, path, range and blob → same id."""
    return f"gh:{owner}/{repo}:{branch}:{path}#L{start_line}-{end_line}:{blob_sha}"


def _quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


@dataclass
class SearchResult:
    id: str
    repo: str
    path: str
    start_line: int
    end_line: int
    symbol_name: str | None
    text: str
    score: float


class ChunkStore:
    """LanceDB table of embedded chunks keyed by content-addressed id.

    Writes are serialized with a lock so per-file workers can share one store.
    """

    def __init__(
        self,
        db_path: Path,
        embedder: EmbeddingProvider,
        dims: int = 768,
        table_name: str = "chunks",
    ) -> None:
        self._db_path = db_path
        self._embedder = embedder
        self._dims = dims
        self._table_name = table_name
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = lancedb.connect(str(db_path))
        self._table: lancedb.table.Table | None = None
        self._lock = threading.Lock()

    def _schema(self) -> pa.Schema:
        return pa.schema(
            [
                pa.field("vector", pa.list_(pa.float32(), self._dims)),
                pa.field("id", pa.utf8()),
                pa.field("repo", pa.utf8()),
                pa.field("branch", pa.utf8()),
                pa.field("path", pa.utf8()),
                pa.field("language", pa.utf8()),
                pa.field("blob_sha", pa.utf8()),
                pa.field("start_line", pa.int64()),
                pa.field("end_line", pa.int64()),
                pa.field("symbol_name", pa.utf8()),
                pa.field("symbol_kind", pa.utf8()),
                pa.field("ingested_at", pa.utf8()),
                pa.field("text", pa.utf8()),
            ]
        )

    def init_table(self) -> None:
        """Create the chunks table if it doesn't exist, or open it."""
        existing = self._db.list_tables().tables
        if self._table_name in existing:
            self._table = self._db.open_table(self._table_name)
        else:
            self._table = self._db.create_table(self._table_name, schema=self._schema())

    def _get_table(self) -> lancedb.table.Table:
        if self._table is None:
            self.init_table()
        return self._table  # type: ignore[return-value]

    def upsert(self, ids: list[str], texts: list[str], metadatas: list[dict]) -> int:
        """Embed and write chunks; rows with an existing id are overwritten."""
        if not ids:
            return 0
        vectors = self._embedder.embed(texts)

        rows = [
            {
                "vector": vec,
                "id": cid,
                "repo": meta.get("repo", ""),
                "branch": meta.get("branch", ""),
                "path": meta.get("path", ""),
                "language": meta.get("language", ""),
                "blob_sha": meta.get("blob_sha", ""),
                "start_line": int(meta.get("start_line", 0)),
                "end_line": int(meta.get("end_line", 0)),
                "symbol_name": meta.get("symbol_name") or "",
                "symbol_kind": meta.get("symbol_kind") or "",
                "ingested_at": meta.get("ingested_at", ""),
                "text": text,
            }
            for vec, cid, text, meta in zip(vectors, ids, texts, metadatas)
        ]
        with self._lock:
            (
                self._get_table()
                .merge_insert("id")
                .when_matched_update_all()
                .when_not_matched_insert_all()
                .execute(pa.Table.from_pylist(rows, schema=self._schema()))
            )
        logger.debug("Upserted %d chunk(s)", len(rows))
        return len(rows)

    def delete(self, repo: str, path: str) -> None:
        """Remove every chunk of one file."""
        with self._lock:
            self._get_table().delete(f"repo = {_quote(repo)} AND path = {_quote(path)}")

    def delete_repo(self, repo: str) -> None:
        with self._lock:
            self._get_table().delete(f"repo = {_quote(repo)}")

    def get_ids(self, repo: str, path: str | None = None) -> list[str]:
        """Sorted chunk ids for a repository, optionally one file."""
        table = self._get_table().to_arrow()
        mask = pc.equal(table["repo"], repo)
        if path is not None:
            mask = pc.and_(mask, pc.equal(table["path"], path))
        return sorted(table.filter(mask)["id"].to_pylist())

    def count(self) -> int:
        """Return the number of rows in the table."""
        return self._get_table().count_rows()

    def search(
        self, query_vector: list[float], limit: int = 10, repo: str | None = None
    ) -> list[SearchResult]:
        """Nearest chunks by cosine distance (lowest distance first)."""
        query = self._get_table().search(query_vector).distance_type("cosine")
        if repo is not None:
            query = query.where(f"repo = {_quote(repo)}", prefilter=True)
        results = query.limit(limit).to_list()
        return [
            SearchResult(
                id=r["id"],
                repo=r["repo"],
                path=r["path"],
                start_line=int(r["start_line"]),
                end_line=int(r["end_line"]),
                symbol_name=r["symbol_name"] or None,
                text=r["text"],
                score=float(r["_distance"]),
            )
            for r in results
        ]
