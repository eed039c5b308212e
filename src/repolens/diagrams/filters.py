"""Post-layout filters and diagram statistics."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Any

from repolens.diagrams.layout import DiagramNode, Layout


def glob_to_regex(pattern: str) -> re.Pattern[str]:
    """Translate a restricted glob into an anchored regex.

    ``**/`` matches any (possibly empty) directory prefix, ``**`` any
    sequence, ``*`` any sequence without ``/`` and ``?`` one non-``/``
    character. Everything else is literal.
    """
    out = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        elif pattern[i] == "?":
            out.append("[^/]")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("^" + "".join(out) + "$")


class PathMatcher:
    """Any-of glob matcher. Patterns without ``/`` match the base name."""

    def __init__(self, patterns: list[str]) -> None:
        self._full: list[re.Pattern[str]] = []
        self._base: list[re.Pattern[str]] = []
        for p in patterns:
            p = p.strip().lstrip("/")
            if not p:
                continue
            (self._full if "/" in p else self._base).append(glob_to_regex(p))

    def __bool__(self) -> bool:
        return bool(self._full or self._base)

    def matches(self, path: str) -> bool:
        path = path.lstrip("/")
        if not path:
            return False
        if any(r.match(path) for r in self._full):
            return True
        base = path.rsplit("/", 1)[-1]
        return any(r.match(base) for r in self._base)


@dataclass
class DiagramFilters:
    path_patterns: list[str] = field(default_factory=list)
    exclude_paths: list[str] = field(default_factory=list)
    languages: list[str] = field(default_factory=list)
    max_depth: int | None = None

    def is_empty(self) -> bool:
        return not (self.path_patterns or self.exclude_paths or self.languages) and self.max_depth is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "pathPatterns": list(self.path_patterns),
            "excludePaths": list(self.exclude_paths),
            "languages": list(self.languages),
            "maxDepth": self.max_depth,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> DiagramFilters:
        data = data or {}
        return cls(
            path_patterns=list(data.get("pathPatterns") or []),
            exclude_paths=list(data.get("excludePaths") or []),
            languages=list(data.get("languages") or []),
            max_depth=data.get("maxDepth"),
        )


def _node_path(node: DiagramNode) -> str:
    return str(node.data.get("path") or "")


def apply_filters(layout: Layout, filters: DiagramFilters | None) -> Layout:
    """Drop nodes failing any predicate, then edges with a missing endpoint.

    Include, exclude, language and depth predicates are applied in sequence,
    so a node removed by one is never re-admitted by a later one. Nodes whose
    parent was filtered out lose their parent reference.
    """
    if filters is None or filters.is_empty():
        return layout

    nodes = list(layout.nodes)

    include = PathMatcher(filters.path_patterns)
    if include:
        nodes = [n for n in nodes if include.matches(_node_path(n))]

    exclude = PathMatcher(filters.exclude_paths)
    if exclude:
        nodes = [n for n in nodes if not exclude.matches(_node_path(n))]

    if filters.languages:
        wanted = {lang.lower() for lang in filters.languages}
        nodes = [
            n for n in nodes
            if n.data.get("language") and str(n.data["language"]).lower() in wanted
        ]

    if filters.max_depth is not None:
        nodes = [
            n for n in nodes
            if n.data.get("depth") is None or n.data["depth"] <= filters.max_depth
        ]

    ids = {n.id for n in nodes}
    nodes = [
        replace(n, parent_node=None) if n.parent_node is not None and n.parent_node not in ids else n
        for n in nodes
    ]
    edges = [e for e in layout.edges if e.source in ids and e.target in ids]
    return Layout(nodes=nodes, edges=edges)


def compute_stats(layout: Layout) -> dict[str, int]:
    """Counts over a (filtered) layout; ``totalSize`` sums own sizes only."""
    return {
        "nodeCount": len(layout.nodes),
        "edgeCount": len(layout.edges),
        "fileCount": sum(1 for n in layout.nodes if n.type == "file"),
        "directoryCount": sum(1 for n in layout.nodes if n.type == "directory"),
        "totalSize": sum(int(n.data.get("size") or 0) for n in layout.nodes),
    }
