"""Diagram layout engine: positioned nodes and edges for trees and entity graphs.

File trees are laid out either as layers by depth (``hierarchical``) or as a
nested row-based treemap (``treemap``). Caller-supplied entity/relationship
graphs support ``layered``, ``force_directed`` (a grid) and ``hierarchical``.
All layouts are deterministic.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

from repolens.indexer.file_tree import TreeNode

logger = logging.getLogger(__name__)

DIAGRAM_TYPES = (
    "file_tree",
    "network_requests",
    "architecture",
    "dependency_graph",
    "data_flow",
    "component_hierarchy",
)
LAYOUT_TYPES = ("hierarchical", "force_directed", "layered", "treemap")
FILE_TREE_LAYOUTS = ("hierarchical", "treemap")
CONCEPTUAL_LAYOUTS = ("hierarchical", "force_directed", "layered")

ENTITY_KINDS = (
    "api", "service", "component", "data", "file", "external",
    "database", "middleware", "layer", "function", "module",
)
RELATIONSHIP_TYPES = (
    "calls", "imports", "uses", "transforms", "sends",
    "receives", "depends_on", "implements", "contains", "belongs_to",
)

NODE_WIDTH = 180
NODE_HEIGHT = 40
H_SPACING = 220
V_SPACING = 120

TREEMAP_WIDTH = 2000
TREEMAP_HEIGHT = 1500
TREEMAP_MAX_DEPTH = 10
TREEMAP_MIN_AREA = 100
TREEMAP_MIN_SIDE = 50

_COLORS = {
    "typescript": "#3178c6",
    "javascript": "#f7df1e",
    "python": "#3776ab",
    "rust": "#ce422b",
    "go": "#00add8",
    "java": "#b07219",
    "directory": "#e0e0e0",
}
DEFAULT_COLOR = "#cccccc"


def color_for_node(language: str | None, kind: str | None = None) -> str:
    """Colour by language first, then by node kind."""
    if language and language in _COLORS:
        return _COLORS[language]
    if kind and kind in _COLORS:
        return _COLORS[kind]
    return DEFAULT_COLOR


# ── Data types ──


@dataclass
class DiagramNode:
    id: str
    type: str
    position: dict[str, float]
    data: dict[str, Any]
    style: dict[str, Any] | None = None
    parent_node: str | None = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "position": dict(self.position),
            "data": dict(self.data),
        }
        if self.style is not None:
            d["style"] = dict(self.style)
        if self.parent_node is not None:
            d["parentNode"] = self.parent_node
            d["extent"] = "parent"
        return d


@dataclass
class DiagramEdge:
    id: str
    source: str
    target: str
    label: str | None = None
    type: str | None = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"id": self.id, "source": self.source, "target": self.target}
        if self.label is not None:
            d["label"] = self.label
        if self.type is not None:
            d["type"] = self.type
        return d


@dataclass
class DiagramEntity:
    id: str
    label: str
    kind: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class DiagramRelationship:
    id: str
    source: str
    target: str
    type: str
    label: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class Layout:
    nodes: list[DiagramNode] = field(default_factory=list)
    edges: list[DiagramEdge] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }


def tree_node_data(node: TreeNode) -> dict[str, Any]:
    return {
        "label": node.name,
        "path": node.path,
        "depth": node.depth,
        "size": node.size,
        "cumulativeSize": node.cumulative_size,
        "fileCount": node.file_count,
        "language": node.language,
        "extension": node.extension,
        "hasChunks": node.has_chunks,
        "chunkCount": node.chunk_count,
    }


# ── File tree layouts ──


def layout_hierarchical_tree(nodes: list[TreeNode], max_depth: int | None = None) -> Layout:
    """One row per depth, siblings left to right by path, parent → child edges."""
    kept = [n for n in nodes if max_depth is None or n.depth <= max_depth]
    by_depth: dict[int, list[TreeNode]] = defaultdict(list)
    for n in kept:
        by_depth[n.depth].append(n)

    layout = Layout()
    for depth in sorted(by_depth):
        for i, n in enumerate(sorted(by_depth[depth], key=lambda n: n.path)):
            layout.nodes.append(DiagramNode(
                id=n.id,
                type=n.kind,
                position={"x": float(i * H_SPACING), "y": float(depth * V_SPACING)},
                data=tree_node_data(n),
                style={
                    "width": NODE_WIDTH,
                    "height": NODE_HEIGHT,
                    "backgroundColor": color_for_node(n.language, n.kind),
                },
            ))

    ids = {n.id for n in kept}
    for n in sorted(kept, key=lambda n: (n.depth, n.path)):
        if n.parent_id is not None and n.parent_id in ids:
            layout.edges.append(DiagramEdge(
                id=f"e:{n.parent_id}->{n.id}",
                source=n.parent_id,
                target=n.id,
                type="contains",
            ))
    return layout


@dataclass
class Rect:
    x: float
    y: float
    width: float
    height: float


def squarify(sizes: list[int], width: float, height: float) -> list[Rect]:
    """Partition a ``width`` x ``height`` box among siblings by size.

    Row-based approximation of a squarified treemap: each child gets an area
    proportional to ``max(size, 1)`` with sides of at least
    ``min(width / n, height / n, 50)``, packed left to right and wrapped into
    new rows. Positions are relative to the box.
    """
    n = len(sizes)
    if n == 0:
        return []
    weights = [max(s or 0, 1) for s in sizes]
    total = sum(weights)
    min_side = min(width / n, height / n, TREEMAP_MIN_SIDE)

    if total == n:
        item_height = height / n
        return [
            Rect(0.0, i * item_height, max(width, min_side), max(item_height, min_side))
            for i in range(n)
        ]

    rects = []
    x = y = row_height = 0.0
    for weight in weights:
        area = weight / total * width * height
        w = max(math.sqrt(area * (width / height)), min_side)
        h = max(area / w, min_side)
        if x + w > width and x > 0:
            x = 0.0
            y += row_height
            row_height = 0.0
        rects.append(Rect(x, y, w, h))
        row_height = max(row_height, h)
        x += w
        if x >= width:
            x = 0.0
            y += row_height
            row_height = 0.0
    return rects


def layout_treemap(
    nodes: list[TreeNode],
    max_depth: int = TREEMAP_MAX_DEPTH,
    min_area: float = TREEMAP_MIN_AREA,
    width: float = TREEMAP_WIDTH,
    height: float = TREEMAP_HEIGHT,
) -> Layout:
    """Nested treemap; children are positioned relative to their parent.

    Nodes deeper than ``max_depth`` or smaller than ``min_area`` are not
    rendered, nor is anything beneath them.
    """
    children: dict[str, list[TreeNode]] = defaultdict(list)
    ids = {n.id for n in nodes}
    roots = []
    for n in sorted(nodes, key=lambda n: n.path):
        if n.parent_id is None or n.parent_id not in ids:
            roots.append(n)
        else:
            children[n.parent_id].append(n)

    layout = Layout()
    skipped = 0

    def place(node: TreeNode, rect: Rect, depth: int, parent: str | None) -> None:
        nonlocal skipped
        if depth > max_depth or rect.width * rect.height < min_area:
            skipped += 1
            return
        layout.nodes.append(DiagramNode(
            id=node.id,
            type=node.kind,
            position={"x": rect.x, "y": rect.y},
            data=tree_node_data(node),
            style={
                "width": rect.width,
                "height": rect.height,
                "backgroundColor": color_for_node(node.language, node.kind),
            },
            parent_node=parent,
        ))
        kids = children.get(node.id, [])
        if node.is_dir and kids:
            rects = squarify([k.cumulative_size for k in kids], rect.width, rect.height)
            for kid, kid_rect in zip(kids, rects):
                place(kid, kid_rect, depth + 1, node.id)

    if roots:
        cols = math.ceil(math.sqrt(len(roots)))
        cell_w = width / cols
        cell_h = height / cols
        for i, root in enumerate(roots):
            col, row = i % cols, i // cols
            place(root, Rect(col * cell_w, row * cell_h, cell_w, cell_h), 0, None)

    logger.debug("Treemap: %d nodes rendered, %d pruned", len(layout.nodes), skipped)
    return layout


def layout_file_tree(
    nodes: list[TreeNode], layout_type: str = "hierarchical", max_depth: int | None = None
) -> Layout:
    if layout_type == "treemap":
        return layout_treemap(nodes, max_depth=TREEMAP_MAX_DEPTH if max_depth is None else max_depth)
    if layout_type == "hierarchical":
        return layout_hierarchical_tree(nodes, max_depth=max_depth)
    raise ValueError(
        f"Unknown file tree layout {layout_type!r}. Available: {', '.join(FILE_TREE_LAYOUTS)}"
    )


# ── Conceptual layouts ──


def _entity_node(entity: DiagramEntity, x: float, y: float) -> DiagramNode:
    data = {"label": entity.label, "kind": entity.kind, **entity.metadata}
    return DiagramNode(
        id=entity.id,
        type=entity.kind,
        position={"x": float(x), "y": float(y)},
        data=data,
        style={
            "width": NODE_WIDTH,
            "height": NODE_HEIGHT,
            "backgroundColor": color_for_node(entity.metadata.get("language"), entity.kind),
        },
    )


def _relationship_edges(
    entities: list[DiagramEntity], relationships: list[DiagramRelationship]
) -> list[DiagramEdge]:
    ids = {e.id for e in entities}
    return [
        DiagramEdge(id=r.id, source=r.source, target=r.target, label=r.label, type=r.type)
        for r in relationships
        if r.source in ids and r.target in ids
    ]


def layout_layered(
    entities: list[DiagramEntity], relationships: list[DiagramRelationship]
) -> Layout:
    """One row per ``metadata["layer"]``, in order of first appearance."""
    layers: dict[str, list[DiagramEntity]] = {}
    for e in entities:
        layers.setdefault(str(e.metadata.get("layer") or "default"), []).append(e)

    nodes = []
    for row, members in enumerate(layers.values()):
        for col, e in enumerate(members):
            nodes.append(_entity_node(e, col * H_SPACING, row * V_SPACING))
    return Layout(nodes=nodes, edges=_relationship_edges(entities, relationships))


def layout_grid(
    entities: list[DiagramEntity], relationships: list[DiagramRelationship]
) -> Layout:
    """Square grid in input order; stands in for a force-directed layout."""
    cols = max(1, math.ceil(math.sqrt(len(entities))))
    nodes = [
        _entity_node(e, (i % cols) * H_SPACING, (i // cols) * V_SPACING)
        for i, e in enumerate(entities)
    ]
    return Layout(nodes=nodes, edges=_relationship_edges(entities, relationships))


def layout_hierarchical_graph(
    entities: list[DiagramEntity], relationships: list[DiagramRelationship]
) -> Layout:
    """Tidy tree from entities with no incoming edge.

    Leaves take successive columns and a parent is centred over its children.
    Entities not reachable from any root (e.g. inside a cycle) go on a row
    below the deepest level.
    """
    by_id = {e.id: e for e in entities}
    edges = _relationship_edges(entities, relationships)
    targets = {e.target for e in edges}
    outgoing: dict[str, list[str]] = defaultdict(list)
    for e in edges:
        outgoing[e.source].append(e.target)

    roots = [e.id for e in entities if e.id not in targets]
    positions: dict[str, tuple[float, float]] = {}
    next_col = 0

    # Iterative post-order walk: a frame is (entity id, depth, pending kids, placed child xs)
    stack: list[tuple[str, int, Iterator[str], list[float]]] = []

    def push(entity_id: str, depth: int) -> None:
        kids = [k for k in outgoing[entity_id] if k not in positions]
        # Claim the slot on entry so cycles terminate
        positions[entity_id] = (0.0, float(depth * V_SPACING))
        stack.append((entity_id, depth, iter(kids), []))

    for root in roots:
        if root in positions:
            continue
        push(root, 0)
        while stack:
            entity_id, depth, kids, child_xs = stack[-1]
            child = next((k for k in kids if k not in positions), None)
            if child is not None:
                push(child, depth + 1)
                continue
            stack.pop()
            if child_xs:
                x = sum(child_xs) / len(child_xs)
            else:
                x = float(next_col * H_SPACING)
                next_col += 1
            positions[entity_id] = (x, float(depth * V_SPACING))
            if stack:
                stack[-1][3].append(x)

    unreachable = [e.id for e in entities if e.id not in positions]
    if unreachable:
        fallback_y = max((y for _, y in positions.values()), default=-V_SPACING) + V_SPACING
        for i, entity_id in enumerate(unreachable):
            positions[entity_id] = (float(i * H_SPACING), fallback_y)

    nodes = [_entity_node(by_id[eid], *positions[eid]) for eid in (e.id for e in entities)]
    return Layout(nodes=nodes, edges=edges)


_CONCEPTUAL = {
    "layered": layout_layered,
    "force_directed": layout_grid,
    "hierarchical": layout_hierarchical_graph,
}


def layout_conceptual(
    entities: list[DiagramEntity],
    relationships: list[DiagramRelationship],
    layout_type: str = "hierarchical",
) -> Layout:
    fn = _CONCEPTUAL.get(layout_type)
    if fn is None:
        raise ValueError(
            f"Unknown conceptual layout {layout_type!r}. Available: {', '.join(CONCEPTUAL_LAYOUTS)}"
        )
    return fn(entities, relationships)
