"""SQLite storage for repositories, file tree nodes and diagram presets."""

from __future__ import annotations

import json
import sqlite3
import uuid
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path

from repolens.indexer.file_tree import TreeNode

INDEXING_STATUSES = ("idle", "indexing", "done", "error")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqliteStore:
    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

    def init_db(self) -> None:
        """Create all tables and indexes."""
        cur = self._conn.cursor()
        cur.executescript(
            """
            CREATE TABLE IF NOT EXISTS repositories (
                id INTEGER PRIMARY KEY,
                owner_repo TEXT NOT NULL UNIQUE,
                owner TEXT NOT NULL,
                repo TEXT NOT NULL,
                default_branch TEXT NOT NULL DEFAULT 'main',
                indexing_status TEXT NOT NULL DEFAULT 'idle',
                indexing_error TEXT,
                last_indexed_at TEXT,
                indexed_commit_sha TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_repositories_owner_repo ON repositories(owner_repo);

            CREATE TABLE IF NOT EXISTS tree_nodes (
                id TEXT PRIMARY KEY,
                repo_id INTEGER NOT NULL,
                path TEXT NOT NULL,
                name TEXT NOT NULL,
                kind TEXT NOT NULL,
                parent_path TEXT,
                depth INTEGER NOT NULL,
                size INTEGER NOT NULL DEFAULT 0,
                cumulative_size INTEGER NOT NULL DEFAULT 0,
                file_count INTEGER NOT NULL DEFAULT 0,
                language TEXT,
                extension TEXT,
                blob_sha TEXT,
                chunk_count INTEGER NOT NULL DEFAULT 0,
                has_chunks INTEGER NOT NULL DEFAULT 0,
                UNIQUE(repo_id, path),
                FOREIGN KEY (repo_id) REFERENCES repositories(id) ON DELETE CASCADE
            );
            CREATE INDEX IF NOT EXISTS idx_tree_nodes_repo ON tree_nodes(repo_id);
            CREATE INDEX IF NOT EXISTS idx_tree_nodes_parent ON tree_nodes(repo_id, parent_path);

            CREATE TABLE IF NOT EXISTS diagram_presets (
                id TEXT PRIMARY KEY,
                repo_id INTEGER NOT NULL,
                name TEXT NOT NULL,
                description TEXT,
                diagram_type TEXT NOT NULL DEFAULT 'file_tree',
                config TEXT NOT NULL DEFAULT '{}',
                is_default INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                UNIQUE(repo_id, name),
                FOREIGN KEY (repo_id) REFERENCES repositories(id) ON DELETE CASCADE
            );
            CREATE INDEX IF NOT EXISTS idx_diagram_presets_repo ON diagram_presets(repo_id);
            """
        )
        self._conn.commit()

        # ── Migrations ──
        # Pattern: check if column exists, ALTER if missing.
        self._migrate_add_column("diagram_presets", "updated_at", "TEXT")

    def _migrate_add_column(self, table: str, column: str, col_type: str) -> None:
        """Add a column to a table if it doesn't exist."""
        cur = self._conn.execute(f"PRAGMA table_info({table})")
        columns = {row[1] for row in cur.fetchall()}
        if column not in columns:
            self._conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}")
            self._conn.commit()

    # ── Repository operations ──

    def upsert_repository(self, owner: str, repo: str, default_branch: str = "main") -> int:
        """Insert the repository if missing and return its id."""
        now = _now()
        owner_repo = f"{owner}/{repo}"
        self._conn.execute(
            """INSERT INTO repositories
               (owner_repo, owner, repo, default_branch, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?)
               ON CONFLICT(owner_repo) DO UPDATE SET
                   default_branch = excluded.default_branch,
                   updated_at = excluded.updated_at""",
            (owner_repo, owner, repo, default_branch, now, now),
        )
        self._conn.commit()
        row = self._conn.execute(
            "SELECT id FROM repositories WHERE owner_repo = ?", (owner_repo,)
        ).fetchone()
        return row["id"]

    def get_repository(self, owner_repo: str) -> dict | None:
        """Get a repository by its ``owner/name`` key."""
        cur = self._conn.execute(
            "SELECT * FROM repositories WHERE owner_repo = ?", (owner_repo,)
        )
        row = cur.fetchone()
        return dict(row) if row else None

    def get_repository_by_id(self, repo_id: int) -> dict | None:
        cur = self._conn.execute("SELECT * FROM repositories WHERE id = ?", (repo_id,))
        row = cur.fetchone()
        return dict(row) if row else None

    def list_repositories(self) -> list[dict]:
        """List all repositories ordered by key."""
        cur = self._conn.execute("SELECT * FROM repositories ORDER BY owner_repo")
        return [dict(row) for row in cur.fetchall()]

    def update_repository(self, repo_id: int, **kwargs: str | int | None) -> None:
        """Update repository fields. Pass column=value keyword arguments."""
        if not kwargs:
            return
        kwargs["updated_at"] = _now()
        set_clause = ", ".join(f"{k} = ?" for k in kwargs)
        values = list(kwargs.values()) + [repo_id]
        self._conn.execute(
            f"UPDATE repositories SET {set_clause} WHERE id = ?", values  # noqa: S608
        )
        self._conn.commit()

    def set_indexing_status(
        self,
        repo_id: int,
        status: str,
        error: str | None = None,
        commit_sha: str | None = None,
    ) -> None:
        """Move a repository to ``status``; ``done`` also stamps last_indexed_at."""
        if status not in INDEXING_STATUSES:
            raise ValueError(f"Unknown indexing status {status!r}")
        fields: dict[str, str | None] = {"indexing_status": status, "indexing_error": error}
        if status == "done":
            fields["last_indexed_at"] = _now()
        if commit_sha is not None:
            fields["indexed_commit_sha"] = commit_sha
        self.update_repository(repo_id, **fields)

    def delete_repository(self, repo_id: int) -> None:
        self._conn.execute("DELETE FROM repositories WHERE id = ?", (repo_id,))
        self._conn.commit()

    # ── Tree node operations ──

    def replace_tree(self, repo_id: int, nodes: Iterable[TreeNode]) -> int:
        """Replace the repository's whole tree in one transaction."""
        rows = [self._node_row(repo_id, n) for n in nodes]
        with self._conn:
            self._conn.execute("DELETE FROM tree_nodes WHERE repo_id = ?", (repo_id,))
            self._conn.executemany(self._UPSERT_NODE_SQL, rows)
        return len(rows)

    def save_tree_nodes(self, repo_id: int, nodes: Iterable[TreeNode]) -> None:
        """Insert or update individual nodes."""
        rows = [self._node_row(repo_id, n) for n in nodes]
        with self._conn:
            self._conn.executemany(self._UPSERT_NODE_SQL, rows)

    def delete_tree_nodes(self, repo_id: int, paths: Iterable[str]) -> int:
        paths = list(paths)
        if not paths:
            return 0
        with self._conn:
            cur = self._conn.executemany(
                "DELETE FROM tree_nodes WHERE repo_id = ? AND path = ?",
                [(repo_id, p) for p in paths],
            )
        return cur.rowcount

    def get_tree_nodes(self, repo_id: int) -> list[TreeNode]:
        """All nodes of a repository, parents before children."""
        repo = self.get_repository_by_id(repo_id)
        if repo is None:
            return []
        cur = self._conn.execute(
            "SELECT * FROM tree_nodes WHERE repo_id = ? ORDER BY depth, path", (repo_id,)
        )
        return [self._row_to_node(repo["owner_repo"], row) for row in cur.fetchall()]

    def mark_files_indexed(self, repo_id: int, counts: dict[str, int]) -> None:
        """Record chunk counts for indexed files (``path -> chunk_count``)."""
        if not counts:
            return
        with self._conn:
            self._conn.executemany(
                """UPDATE tree_nodes SET chunk_count = ?, has_chunks = ?
                   WHERE repo_id = ? AND path = ?""",
                [(n, 1 if n > 0 else 0, repo_id, path) for path, n in counts.items()],
            )

    def count_tree_nodes(self, repo_id: int, kind: str | None = None) -> int:
        if kind is None:
            cur = self._conn.execute(
                "SELECT COUNT(*) FROM tree_nodes WHERE repo_id = ?", (repo_id,)
            )
        else:
            cur = self._conn.execute(
                "SELECT COUNT(*) FROM tree_nodes WHERE repo_id = ? AND kind = ?",
                (repo_id, kind),
            )
        return cur.fetchone()[0]

    _UPSERT_NODE_SQL = """
        INSERT INTO tree_nodes
            (id, repo_id, path, name, kind, parent_path, depth, size,
             cumulative_size, file_count, language, extension, blob_sha,
             chunk_count, has_chunks)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            name = excluded.name,
            kind = excluded.kind,
            parent_path = excluded.parent_path,
            depth = excluded.depth,
            size = excluded.size,
            cumulative_size = excluded.cumulative_size,
            file_count = excluded.file_count,
            language = excluded.language,
            extension = excluded.extension,
            blob_sha = excluded.blob_sha,
            chunk_count = excluded.chunk_count,
            has_chunks = excluded.has_chunks
    """

    @staticmethod
    def _node_row(repo_id: int, n: TreeNode) -> tuple:
        return (
            n.id, repo_id, n.path, n.name, n.kind, n.parent_path, n.depth, n.size,
            n.cumulative_size, n.file_count, n.language, n.extension, n.blob_sha,
            n.chunk_count, 1 if n.has_chunks else 0,
        )

    @staticmethod
    def _row_to_node(owner_repo: str, row: sqlite3.Row) -> TreeNode:
        return TreeNode(
            repo=owner_repo,
            path=row["path"],
            name=row["name"],
            kind=row["kind"],
            parent_path=row["parent_path"],
            depth=row["depth"],
            size=row["size"],
            cumulative_size=row["cumulative_size"],
            file_count=row["file_count"],
            language=row["language"],
            extension=row["extension"],
            blob_sha=row["blob_sha"],
            chunk_count=row["chunk_count"],
            has_chunks=bool(row["has_chunks"]),
        )

    # ── Diagram presets ──

    def save_preset(
        self,
        repo_id: int,
        name: str,
        config: dict,
        diagram_type: str = "file_tree",
        description: str | None = None,
        is_default: bool = False,
    ) -> dict:
        """Create or overwrite the preset called ``name`` for a repository."""
        now = _now()
        self._conn.execute(
            """INSERT INTO diagram_presets
               (id, repo_id, name, description, diagram_type, config, is_default,
                created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(repo_id, name) DO UPDATE SET
                   description = excluded.description,
                   diagram_type = excluded.diagram_type,
                   config = excluded.config,
                   is_default = excluded.is_default,
                   updated_at = excluded.updated_at""",
            (
                str(uuid.uuid4()), repo_id, name, description, diagram_type,
                json.dumps(config), 1 if is_default else 0, now, now,
            ),
        )
        self._conn.commit()
        cur = self._conn.execute(
            "SELECT * FROM diagram_presets WHERE repo_id = ? AND name = ?", (repo_id, name)
        )
        return self._preset_dict(cur.fetchone())

    def get_preset(self, preset_id: str) -> dict | None:
        cur = self._conn.execute("SELECT * FROM diagram_presets WHERE id = ?", (preset_id,))
        row = cur.fetchone()
        return self._preset_dict(row) if row else None

    def list_presets(self, repo_id: int) -> list[dict]:
        """Presets for a repository, the default first and then newest first."""
        cur = self._conn.execute(
            """SELECT * FROM diagram_presets WHERE repo_id = ?
               ORDER BY is_default DESC, created_at DESC""",
            (repo_id,),
        )
        return [self._preset_dict(row) for row in cur.fetchall()]

    def get_default_preset(self, repo_id: int, diagram_type: str = "file_tree") -> dict | None:
        cur = self._conn.execute(
            """SELECT * FROM diagram_presets
               WHERE repo_id = ? AND diagram_type = ? AND is_default = 1
               ORDER BY created_at LIMIT 1""",
            (repo_id, diagram_type),
        )
        row = cur.fetchone()
        return self._preset_dict(row) if row else None

    def update_preset_config(self, preset_id: str, config: dict) -> dict | None:
        self._conn.execute(
            "UPDATE diagram_presets SET config = ?, updated_at = ? WHERE id = ?",
            (json.dumps(config), _now(), preset_id),
        )
        self._conn.commit()
        return self.get_preset(preset_id)

    @staticmethod
    def _preset_dict(row: sqlite3.Row) -> dict:
        d = dict(row)
        d["config"] = json.loads(d["config"]) if d.get("config") else {}
        d["is_default"] = bool(d["is_default"])
        return d

    def close(self) -> None:
        self._conn.close()
