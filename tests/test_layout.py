"""Tests for the diagram layout engine."""

import pytest

from repolens.diagrams.layout import (
    H_SPACING,
    TREEMAP_HEIGHT,
    TREEMAP_WIDTH,
    V_SPACING,
    DiagramEntity,
    DiagramRelationship,
    color_for_node,
    layout_conceptual,
    layout_file_tree,
    layout_hierarchical_tree,
    layout_treemap,
    squarify,
)
from repolens.indexer.file_tree import build_tree

REPO = "acme/widgets"


def _nodes():
    return build_tree(
        REPO,
        [
            ("src/a.ts", 100, "sha-a"),
            ("src/b.ts", 200, "sha-b"),
            ("src/lib/deep/c.py", 400, "sha-c"),
            ("README.md", 50, "sha-r"),
        ],
    ).nodes()


def _by_path(layout):
    return {n.data["path"]: n for n in layout.nodes}


class TestColors:
    def test_language_first(self):
        assert color_for_node("typescript", "file") == "#3178c6"

    def test_directory(self):
        assert color_for_node(None, "directory") == "#e0e0e0"

    def test_default(self):
        assert color_for_node("cobol", "file") == "#cccccc"


class TestHierarchicalTree:
    def test_rows_by_depth(self):
        layout = layout_hierarchical_tree(_nodes())
        for node in layout.nodes:
            assert node.position["y"] == node.data["depth"] * V_SPACING

    def test_siblings_ordered_by_path(self):
        nodes = _by_path(layout_hierarchical_tree(_nodes()))
        # depth 1: README.md, src
        assert nodes["README.md"].position["x"] == 0
        assert nodes["src"].position["x"] == H_SPACING

    def test_edges_parent_to_child(self):
        layout = layout_hierarchical_tree(_nodes())
        edge = next(e for e in layout.edges if e.target == f"{REPO}:src/a.ts")
        assert edge.source == f"{REPO}:src"
        assert edge.type == "contains"
        # one edge per non-root node
        assert len(layout.edges) == len(layout.nodes) - 1

    def test_max_depth_prunes(self):
        layout = layout_hierarchical_tree(_nodes(), max_depth=1)
        assert {n.data["path"] for n in layout.nodes} == {"/", "README.md", "src"}
        assert len(layout.edges) == 2

    def test_node_dict(self):
        d = layout_hierarchical_tree(_nodes()).nodes[0].to_dict()
        assert d["id"] == f"{REPO}:/"
        assert d["type"] == "directory"
        assert d["data"]["fileCount"] == 4
        assert "parentNode" not in d


class TestSquarify:
    def test_empty(self):
        assert squarify([], 100, 100) == []

    def test_one_rect_per_size(self):
        rects = squarify([400, 100, 100], 300, 200)
        assert len(rects) == 3
        assert rects[0].width * rects[0].height > rects[1].width * rects[1].height

    def test_minimum_side(self):
        rects = squarify([10_000, 1], 1000, 1000)
        assert rects[1].width >= 50
        assert rects[1].height >= 50

    def test_equal_minimum_sizes_stack_vertically(self):
        rects = squarify([0, 0, 0, 0], 400, 400)
        assert [r.y for r in rects] == [0, 100, 200, 300]
        assert all(r.x == 0 for r in rects)

    def test_wraps_rows(self):
        rects = squarify([100] * 9, 300, 300)
        assert all(r.x + r.width <= 300 + 1e-6 or r.x == 0 for r in rects)
        assert max(r.y for r in rects) > 0


class TestTreemap:
    def test_no_edges_and_parent_links(self):
        layout = layout_treemap(_nodes())
        assert layout.edges == []
        nodes = _by_path(layout)
        assert nodes["/"].parent_node is None
        assert nodes["src"].parent_node == f"{REPO}:/"
        assert nodes["src/a.ts"].parent_node == f"{REPO}:src"
        assert nodes["src"].to_dict()["extent"] == "parent"

    def test_root_fills_canvas(self):
        root = _by_path(layout_treemap(_nodes()))["/"]
        assert root.position == {"x": 0, "y": 0}
        assert root.style["width"] == TREEMAP_WIDTH
        assert root.style["height"] == TREEMAP_HEIGHT

    def test_children_positions_relative_to_parent(self):
        nodes = _by_path(layout_treemap(_nodes()))
        src = nodes["src"]
        for path in ("src/a.ts", "src/b.ts", "src/lib"):
            child = nodes[path]
            assert 0 <= child.position["x"] < src.style["width"]
            assert 0 <= child.position["y"] < src.style["height"]

    def test_max_depth_prunes_subtree(self):
        paths = set(_by_path(layout_treemap(_nodes(), max_depth=2)))
        assert "src/lib" in paths
        assert "src/lib/deep" not in paths
        assert "src/lib/deep/c.py" not in paths

    def test_min_area_prunes(self):
        paths = set(_by_path(layout_treemap(_nodes(), min_area=10**9)))
        assert paths == set()

    def test_empty(self):
        assert layout_treemap([]).nodes == []


class TestLayoutFileTree:
    def test_dispatch(self):
        assert layout_file_tree(_nodes(), "treemap").edges == []
        assert layout_file_tree(_nodes(), "hierarchical").edges

    def test_unknown_layout(self):
        with pytest.raises(ValueError, match="Unknown file tree layout"):
            layout_file_tree(_nodes(), "radial")


def _graph():
    entities = [
        DiagramEntity("web", "Web", "component", {"layer": "ui"}),
        DiagramEntity("api", "API", "api", {"layer": "backend"}),
        DiagramEntity("svc", "Service", "service", {"layer": "backend"}),
        DiagramEntity("db", "DB", "database", {"layer": "data"}),
    ]
    relationships = [
        DiagramRelationship("r1", "web", "api", "calls", "fetch"),
        DiagramRelationship("r2", "api", "svc", "calls"),
        DiagramRelationship("r3", "svc", "db", "uses"),
        DiagramRelationship("r4", "svc", "ghost", "uses"),
    ]
    return entities, relationships


class TestConceptual:
    def test_layered_rows(self):
        layout = layout_conceptual(*_graph(), layout_type="layered")
        pos = {n.id: n.position for n in layout.nodes}
        assert pos["web"]["y"] == 0
        assert pos["api"]["y"] == pos["svc"]["y"] == V_SPACING
        assert pos["svc"]["x"] == H_SPACING
        assert pos["db"]["y"] == 2 * V_SPACING

    def test_edges_to_unknown_entities_dropped(self):
        layout = layout_conceptual(*_graph(), layout_type="layered")
        assert {e.id for e in layout.edges} == {"r1", "r2", "r3"}
        r1 = next(e for e in layout.edges if e.id == "r1")
        assert r1.to_dict() == {"id": "r1", "source": "web", "target": "api", "label": "fetch", "type": "calls"}

    def test_grid(self):
        layout = layout_conceptual(*_graph(), layout_type="force_directed")
        pos = [n.position for n in layout.nodes]
        assert pos[0] == {"x": 0.0, "y": 0.0}
        assert pos[1] == {"x": float(H_SPACING), "y": 0.0}
        assert pos[2] == {"x": 0.0, "y": float(V_SPACING)}

    def test_hierarchical_chain(self):
        layout = layout_conceptual(*_graph(), layout_type="hierarchical")
        pos = {n.id: n.position for n in layout.nodes}
        assert [pos[k]["y"] for k in ("web", "api", "svc", "db")] == [0, 120, 240, 360]
        # single chain: everything centred over the one leaf
        assert len({pos[k]["x"] for k in pos}) == 1

    def test_hierarchical_parent_centred(self):
        entities = [
            DiagramEntity("root", "Root", "module"),
            DiagramEntity("a", "A", "module"),
            DiagramEntity("b", "B", "module"),
        ]
        relationships = [
            DiagramRelationship("1", "root", "a", "contains"),
            DiagramRelationship("2", "root", "b", "contains"),
        ]
        pos = {n.id: n.position for n in layout_conceptual(entities, relationships).nodes}
        assert pos["a"]["x"] == 0
        assert pos["b"]["x"] == H_SPACING
        assert pos["root"]["x"] == H_SPACING / 2

    def test_hierarchical_long_chain(self):
        n = 2000
        entities = [DiagramEntity(f"e{i}", f"E{i}", "module") for i in range(n)]
        relationships = [
            DiagramRelationship(f"r{i}", f"e{i}", f"e{i + 1}", "calls") for i in range(n - 1)
        ]
        layout = layout_conceptual(entities, relationships, "hierarchical")
        pos = {node.id: node.position for node in layout.nodes}
        assert len(pos) == n
        assert pos["e0"]["y"] == 0
        assert pos[f"e{n - 1}"]["y"] == (n - 1) * V_SPACING
        assert {p["x"] for p in pos.values()} == {0.0}

    def test_hierarchical_cycle_fallback_row(self):
        entities = [
            DiagramEntity("solo", "Solo", "module"),
            DiagramEntity("x", "X", "module"),
            DiagramEntity("y", "Y", "module"),
        ]
        relationships = [
            DiagramRelationship("1", "x", "y", "depends_on"),
            DiagramRelationship("2", "y", "x", "depends_on"),
        ]
        layout = layout_conceptual(entities, relationships, "hierarchical")
        pos = {n.id: n.position for n in layout.nodes}
        assert pos["solo"]["y"] == 0
        assert pos["x"]["y"] == pos["y"]["y"] == V_SPACING
        assert len(layout.nodes) == 3

    def test_entity_metadata_in_data(self):
        layout = layout_conceptual(*_graph(), layout_type="force_directed")
        web = next(n for n in layout.nodes if n.id == "web")
        assert web.data == {"label": "Web", "kind": "component", "layer": "ui"}
        assert web.type == "component"

    def test_unknown_layout(self):
        with pytest.raises(ValueError, match="Unknown conceptual layout"):
            layout_conceptual(*_graph(), layout_type="treemap")
