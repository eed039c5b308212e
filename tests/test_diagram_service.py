"""Tests for diagram generation, presets and tree summaries."""

import pytest

from repolens.diagrams import service
from repolens.diagrams.filters import DiagramFilters
from repolens.indexer.file_tree import build_tree

FILES = [
    ("src/a.ts", 100, "sha-a"),
    ("src/b.py", 200, "sha-b"),
    ("src/components/Button.tsx", 300, "sha-c"),
    ("test/a.test.ts", 40, "sha-t"),
    ("README.md", 50, "sha-r"),
]


@pytest.fixture
def repo_id(store):
    rid = store.upsert_repository("acme", "widgets")
    store.replace_tree(rid, build_tree("acme/widgets", FILES).nodes())
    store.set_indexing_status(rid, "done", commit_sha="abc")
    return rid


def _paths(diagram):
    return {n["data"]["path"] for n in diagram["nodes"]}


class TestFileTreeDiagram:
    def test_unknown_repo(self, store):
        with pytest.raises(service.RepositoryNotFoundError):
            service.generate_file_tree_diagram(store, "nobody/nothing")

    def test_hierarchical_with_stats(self, store, repo_id):
        diagram = service.generate_file_tree_diagram(store, "acme/widgets", "hierarchical")
        assert diagram["stats"]["nodeCount"] == 9
        assert diagram["stats"]["fileCount"] == 5
        assert len(diagram["edges"]) == 8

    def test_filters_applied(self, store, repo_id):
        diagram = service.generate_file_tree_diagram(
            store, "acme/widgets", "hierarchical", DiagramFilters(languages=["python"])
        )
        assert _paths(diagram) == {"src/b.py"}

    def test_unknown_layout(self, store, repo_id):
        with pytest.raises(ValueError):
            service.generate_file_tree_diagram(store, "acme/widgets", "radial")


class TestTreeDiagram:
    def test_creates_default_preset_once(self, store, repo_id):
        first = service.get_tree_diagram(store, "acme/widgets")
        second = service.get_tree_diagram(store, "acme/widgets")
        assert first["diagram_id"] == second["diagram_id"]
        presets = store.list_presets(repo_id)
        assert len(presets) == 1
        assert presets[0]["name"] == service.DEFAULT_PRESET_NAME
        assert presets[0]["is_default"] is True

    def test_treemap_by_default(self, store, repo_id):
        diagram = service.get_tree_diagram(store, "acme/widgets")
        assert diagram["edges"] == []
        src = next(n for n in diagram["nodes"] if n["data"]["path"] == "src")
        assert src["parentNode"] == "acme/widgets:/"

    def test_max_depth(self, store, repo_id):
        diagram = service.get_tree_diagram(store, "acme/widgets", max_depth=1, layout_type="hierarchical")
        assert _paths(diagram) == {"/", "src", "test", "README.md"}


class TestCreateDiagram:
    def test_default_name_and_description(self, store, repo_id):
        result = service.create_diagram(
            store, "acme", "widgets", DiagramFilters(languages=["typescript"], exclude_paths=["test/**"])
        )
        assert result["name"] == "typescript Diagram"
        assert result["description"] == "File tree showing typescript files excluding test/**"
        assert _paths(result) == {"src/a.ts"}

        preset = store.get_preset(result["diagram_id"])
        assert preset["diagram_type"] == "file_tree"
        assert preset["config"]["layoutType"] == "hierarchical"
        assert preset["config"]["filters"]["maxDepth"] == service.DEFAULT_MAX_DEPTH
        assert preset["config"]["stats"] == result["stats"]

    def test_unfiltered_name(self, store, repo_id):
        result = service.create_diagram(store, "acme", "widgets")
        assert result["name"] == "widgets File Tree"
        assert result["description"] == "Complete file tree for widgets"

    def test_explicit_name(self, store, repo_id):
        result = service.create_diagram(store, "acme", "widgets", name="Mine", layout_type="treemap")
        assert result["name"] == "Mine"
        assert store.get_preset(result["diagram_id"])["config"]["layoutType"] == "treemap"

    def test_unknown_repo(self, store):
        with pytest.raises(service.RepositoryNotFoundError):
            service.create_diagram(store, "nobody", "nothing")


class TestUpdateFilters:
    def _preset_id(self, store):
        return service.create_diagram(
            store, "acme", "widgets", DiagramFilters(languages=["typescript"]), name="View"
        )["diagram_id"]

    def test_additive(self, store, repo_id):
        preset_id = self._preset_id(store)
        result = service.update_diagram_filters(
            store, preset_id, {"languages": ["python"]}, additive=True
        )
        assert result["filters"]["languages"] == ["typescript", "python"]
        assert _paths(result) == {"src/a.ts", "src/b.py", "test/a.test.ts"}

    def test_replace_keeps_unspecified_fields(self, store, repo_id):
        preset_id = self._preset_id(store)
        result = service.update_diagram_filters(
            store, preset_id, {"path_patterns": ["test/**"], "languages": None}
        )
        assert result["filters"]["languages"] == ["typescript"]
        assert result["filters"]["pathPatterns"] == ["test/**"]
        assert _paths(result) == {"test/a.test.ts"}

    def test_replace_overrides_given_field(self, store, repo_id):
        preset_id = self._preset_id(store)
        result = service.update_diagram_filters(store, preset_id, {"languages": ["python"]})
        assert result["filters"]["languages"] == ["python"]

    def test_persisted(self, store, repo_id):
        preset_id = self._preset_id(store)
        service.update_diagram_filters(store, preset_id, {"max_depth": 1})
        config = store.get_preset(preset_id)["config"]
        assert config["filters"]["maxDepth"] == 1
        assert config["filters"]["languages"] == ["typescript"]

    def test_unknown_preset(self, store, repo_id):
        with pytest.raises(service.PresetNotFoundError):
            service.update_diagram_filters(store, "missing", {})

    def test_conceptual_preset_rejected(self, store, repo_id):
        preset = store.save_preset(repo_id, "Arch", {"entities": []}, diagram_type="architecture")
        with pytest.raises(ValueError):
            service.update_diagram_filters(store, preset["id"], {"languages": ["python"]})


class TestConceptualDiagram:
    def test_parse_defaults(self):
        entities = service.parse_entities([{"id": "a"}])
        assert entities[0].label == "a"
        assert entities[0].kind == "module"
        rels = service.parse_relationships([{"source": "a", "target": "b"}])
        assert rels[0].id == "a->b"
        assert rels[0].type == "uses"

    def test_generate(self):
        entities = service.parse_entities([
            {"id": "api", "label": "API", "kind": "api"},
            {"id": "db", "label": "DB", "kind": "database"},
        ])
        rels = service.parse_relationships([{"id": "r", "source": "api", "target": "db", "type": "uses"}])
        diagram = service.generate_conceptual_diagram(entities, rels, "layered")
        assert diagram["stats"]["nodeCount"] == 2
        assert diagram["stats"]["edgeCount"] == 1

    def test_render_conceptual_preset(self, store, repo_id):
        preset = store.save_preset(
            repo_id,
            "Arch",
            {
                "entities": [
                    {"id": "api", "label": "API", "kind": "api"},
                    {"id": "db", "label": "DB", "kind": "database"},
                ],
                "relationships": [{"id": "r", "source": "api", "target": "db", "type": "uses"}],
                "layoutType": "hierarchical",
            },
            diagram_type="architecture",
        )
        diagram = service.render_preset(store, preset["id"])
        pos = {n["id"]: n["position"] for n in diagram["nodes"]}
        assert pos["api"]["y"] == 0
        assert pos["db"]["y"] == 120
        assert diagram["preset"]["name"] == "Arch"


class TestRenderPreset:
    def test_file_tree_preset_matches_created(self, store, repo_id):
        created = service.create_diagram(store, "acme", "widgets", DiagramFilters(languages=["python"]))
        rendered = service.render_preset(store, created["diagram_id"])
        assert rendered["nodes"] == created["nodes"]
        assert rendered["stats"] == created["stats"]

    def test_unknown(self, store):
        with pytest.raises(service.PresetNotFoundError):
            service.render_preset(store, "missing")


class TestSummarizeTree:
    def test_summary(self, store, repo_id):
        result = service.summarize_tree(store, "acme/widgets")
        summary = result["summary"]
        assert summary["totalFiles"] == 5
        assert summary["totalDirectories"] == 3
        assert summary["totalSize"] == 690
        assert summary["maxDepth"] == 3
        assert summary["languages"] == {"typescript": 2, "python": 1, "tsx": 1, "markdown": 1}
        assert summary["largestFolder"] == "src"
        assert "Largest folder: src" in result["answer"]
        assert result["answer"].startswith("In the acme/widgets repository:")

    def test_filtered(self, store, repo_id):
        result = service.summarize_tree(
            store, "acme/widgets", DiagramFilters(path_patterns=["test/**"])
        )
        assert result["summary"]["totalFiles"] == 1
        assert result["summary"]["largestFolder"] is None
        assert "(filtered to test/**)" in result["answer"]

    def test_language_filter(self, store, repo_id):
        result = service.summarize_tree(store, "acme/widgets", DiagramFilters(languages=["python"]))
        assert result["summary"]["totalFiles"] == 1
        assert result["summary"]["languages"] == {"python": 1}

    def test_empty_tree(self, store):
        store.upsert_repository("acme", "empty")
        summary = service.summarize_tree(store, "acme/empty")["summary"]
        assert summary["totalFiles"] == 0
        assert summary["maxDepth"] == 0
        assert summary["largestFolder"] is None
