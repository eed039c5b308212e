"""File tree model: synthesized directories, file nodes and cumulative metrics.

Every repository tree has a single root directory with path ``/`` at depth 0.
Other paths are repository-relative (``src/a.ts``) and a node's depth is its
number of path segments, so ``depth(child) == depth(parent) + 1``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import asdict, dataclass

from repolens.indexer.languages import detect_language, file_extension

ROOT_PATH = "/"


def node_id(repo: str, path: str) -> str:
    """Stable identity of a tree node: ``owner/name:path``."""
    return f"{repo}:{path}"


def parent_of(path: str) -> str | None:
    if path == ROOT_PATH:
        return None
    if "/" not in path:
        return ROOT_PATH
    return path.rsplit("/", 1)[0]


def depth_of(path: str) -> int:
    if path == ROOT_PATH:
        return 0
    return path.count("/") + 1


@dataclass
class TreeNode:
    repo: str
    path: str
    name: str
    kind: str  # "file" | "directory"
    parent_path: str | None
    depth: int
    size: int = 0
    cumulative_size: int = 0
    file_count: int = 0
    language: str | None = None
    extension: str | None = None
    blob_sha: str | None = None
    chunk_count: int = 0
    has_chunks: bool = False

    @property
    def id(self) -> str:
        return node_id(self.repo, self.path)

    @property
    def parent_id(self) -> str | None:
        if self.parent_path is None:
            return None
        return node_id(self.repo, self.parent_path)

    @property
    def is_dir(self) -> bool:
        return self.kind == "directory"

    def to_dict(self) -> dict:
        d = asdict(self)
        d["id"] = self.id
        d["parent_id"] = self.parent_id
        return d


class FileTree:
    """Mutable set of TreeNodes for one repository, keyed by path."""

    def __init__(self, repo: str, root_name: str | None = None) -> None:
        self.repo = repo
        self._nodes: dict[str, TreeNode] = {}
        self._nodes[ROOT_PATH] = TreeNode(
            repo=repo,
            path=ROOT_PATH,
            name=root_name or repo.rsplit("/", 1)[-1],
            kind="directory",
            parent_path=None,
            depth=0,
        )

    @classmethod
    def from_nodes(cls, repo: str, nodes: Iterable[TreeNode]) -> FileTree:
        tree = cls(repo)
        for node in nodes:
            tree._nodes[node.path] = node
        return tree

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, path: str) -> bool:
        return path in self._nodes

    def get(self, path: str) -> TreeNode | None:
        return self._nodes.get(path)

    @property
    def root(self) -> TreeNode:
        return self._nodes[ROOT_PATH]

    def nodes(self) -> list[TreeNode]:
        """All nodes, parents before children."""
        return sorted(self._nodes.values(), key=lambda n: (n.depth, n.path))

    def add_file(self, path: str, size: int, blob_sha: str | None = None) -> TreeNode:
        """Insert or replace a file node, creating missing ancestor directories."""
        self._ensure_dir(parent_of(path))
        name = path.rsplit("/", 1)[-1]
        existing = self._nodes.get(path)
        node = TreeNode(
            repo=self.repo,
            path=path,
            name=name,
            kind="file",
            parent_path=parent_of(path),
            depth=depth_of(path),
            size=size,
            cumulative_size=size,
            file_count=1,
            language=detect_language(path),
            extension=file_extension(name),
            blob_sha=blob_sha,
        )
        if existing is not None and existing.blob_sha == blob_sha:
            node.chunk_count = existing.chunk_count
            node.has_chunks = existing.has_chunks
        self._nodes[path] = node
        return node

    def remove_file(self, path: str) -> list[str]:
        """Drop a file and any ancestor directories left empty.

        Returns the removed paths. The root is never removed.
        """
        if path not in self._nodes or path == ROOT_PATH:
            return []
        removed = [path]
        del self._nodes[path]
        parent = parent_of(path)
        while parent is not None and parent != ROOT_PATH:
            if any(n.parent_path == parent for n in self._nodes.values()):
                break
            del self._nodes[parent]
            removed.append(parent)
            parent = parent_of(parent)
        return removed

    def mark_indexed(self, path: str, chunk_count: int) -> None:
        node = self._nodes.get(path)
        if node is not None:
            node.chunk_count = chunk_count
            node.has_chunks = chunk_count > 0

    def recompute(self) -> None:
        compute_cumulative_metrics(self._nodes.values())

    def _ensure_dir(self, path: str | None) -> None:
        while path is not None and path not in self._nodes:
            self._nodes[path] = TreeNode(
                repo=self.repo,
                path=path,
                name=path.rsplit("/", 1)[-1],
                kind="directory",
                parent_path=parent_of(path),
                depth=depth_of(path),
            )
            path = parent_of(path)


def build_tree(
    repo: str,
    files: Iterable[tuple[str, int, str | None]],
    root_name: str | None = None,
) -> FileTree:
    """Build a tree from ``(path, size, blob_sha)`` entries.

    Directories are synthesized from file paths only, so a directory with no
    kept files never appears.
    """
    tree = FileTree(repo, root_name=root_name)
    for path, size, sha in files:
        tree.add_file(path, size, sha)
    tree.recompute()
    return tree


def compute_cumulative_metrics(nodes: Iterable[TreeNode]) -> None:
    """Fill ``cumulative_size``/``file_count`` bottom-up in one pass.

    Nodes are visited in descending depth; running totals are keyed by node id
    and each node adds its total into its parent's.
    """
    nodes = list(nodes)
    by_id = {n.id: n for n in nodes}
    sizes: dict[str, int] = {}
    counts: dict[str, int] = {}
    for n in nodes:
        sizes[n.id] = 0 if n.is_dir else n.size
        counts[n.id] = 0 if n.is_dir else 1

    for n in sorted(nodes, key=lambda n: n.depth, reverse=True):
        n.cumulative_size = sizes[n.id]
        n.file_count = counts[n.id]
        parent_id = n.parent_id
        if parent_id is not None and parent_id in by_id:
            sizes[parent_id] += sizes[n.id]
            counts[parent_id] += counts[n.id]
