"""Tests for SqliteStore: repositories, tree nodes and diagram presets."""

import pytest

from repolens.indexer.file_tree import build_tree


def _tree(repo="acme/widgets"):
    return build_tree(
        repo,
        [("src/a.ts", 100, "sha-a"), ("src/b.ts", 200, "sha-b"), ("README.md", 50, "sha-r")],
    )


class TestRepositories:
    def test_upsert_is_idempotent(self, store):
        first = store.upsert_repository("acme", "widgets")
        second = store.upsert_repository("acme", "widgets", default_branch="develop")
        assert first == second
        repo = store.get_repository("acme/widgets")
        assert repo["owner"] == "acme"
        assert repo["repo"] == "widgets"
        assert repo["default_branch"] == "develop"
        assert repo["indexing_status"] == "idle"

    def test_get_missing(self, store):
        assert store.get_repository("nobody/nothing") is None
        assert store.get_repository_by_id(999) is None

    def test_list_sorted(self, store):
        store.upsert_repository("zeta", "z")
        store.upsert_repository("acme", "a")
        assert [r["owner_repo"] for r in store.list_repositories()] == ["acme/a", "zeta/z"]

    def test_set_indexing_status_done(self, store):
        repo_id = store.upsert_repository("acme", "widgets")
        store.set_indexing_status(repo_id, "indexing")
        assert store.get_repository_by_id(repo_id)["last_indexed_at"] is None

        store.set_indexing_status(repo_id, "done", commit_sha="abc123")
        repo = store.get_repository_by_id(repo_id)
        assert repo["indexing_status"] == "done"
        assert repo["indexed_commit_sha"] == "abc123"
        assert repo["last_indexed_at"] is not None
        assert repo["indexing_error"] is None

    def test_set_indexing_status_error(self, store):
        repo_id = store.upsert_repository("acme", "widgets")
        store.set_indexing_status(repo_id, "error", error="boom")
        repo = store.get_repository_by_id(repo_id)
        assert repo["indexing_status"] == "error"
        assert repo["indexing_error"] == "boom"

    def test_unknown_status_rejected(self, store):
        repo_id = store.upsert_repository("acme", "widgets")
        with pytest.raises(ValueError):
            store.set_indexing_status(repo_id, "paused")

    def test_delete_cascades(self, store):
        repo_id = store.upsert_repository("acme", "widgets")
        store.replace_tree(repo_id, _tree().nodes())
        store.save_preset(repo_id, "View", {"layoutType": "treemap"})
        store.delete_repository(repo_id)
        assert store.get_repository("acme/widgets") is None
        assert store.count_tree_nodes(repo_id) == 0
        assert store.list_presets(repo_id) == []


class TestTreeNodes:
    def test_replace_and_read_back(self, store):
        repo_id = store.upsert_repository("acme", "widgets")
        tree = _tree()
        assert store.replace_tree(repo_id, tree.nodes()) == len(tree)

        nodes = store.get_tree_nodes(repo_id)
        assert [n.path for n in nodes] == [n.path for n in tree.nodes()]
        src = next(n for n in nodes if n.path == "src")
        assert src.cumulative_size == 300
        assert src.file_count == 2
        assert src.repo == "acme/widgets"

    def test_replace_drops_stale_nodes(self, store):
        repo_id = store.upsert_repository("acme", "widgets")
        store.replace_tree(repo_id, _tree().nodes())
        smaller = build_tree("acme/widgets", [("README.md", 50, "sha-r")])
        store.replace_tree(repo_id, smaller.nodes())
        assert {n.path for n in store.get_tree_nodes(repo_id)} == {"/", "README.md"}

    def test_counts_by_kind(self, store):
        repo_id = store.upsert_repository("acme", "widgets")
        store.replace_tree(repo_id, _tree().nodes())
        assert store.count_tree_nodes(repo_id, kind="file") == 3
        assert store.count_tree_nodes(repo_id, kind="directory") == 2
        assert store.count_tree_nodes(repo_id) == 5

    def test_mark_files_indexed(self, store):
        repo_id = store.upsert_repository("acme", "widgets")
        store.replace_tree(repo_id, _tree().nodes())
        store.mark_files_indexed(repo_id, {"src/a.ts": 3, "src/b.ts": 0})
        nodes = {n.path: n for n in store.get_tree_nodes(repo_id)}
        assert nodes["src/a.ts"].chunk_count == 3
        assert nodes["src/a.ts"].has_chunks is True
        assert nodes["src/b.ts"].has_chunks is False

    def test_save_and_delete_nodes(self, store):
        repo_id = store.upsert_repository("acme", "widgets")
        tree = _tree()
        store.replace_tree(repo_id, tree.nodes())

        tree.add_file("src/c.ts", 10, "sha-c")
        tree.recompute()
        store.save_tree_nodes(repo_id, tree.nodes())
        assert store.delete_tree_nodes(repo_id, ["README.md"]) == 1

        nodes = {n.path: n for n in store.get_tree_nodes(repo_id)}
        assert "src/c.ts" in nodes
        assert "README.md" not in nodes
        assert nodes["src"].cumulative_size == 310

    def test_delete_nothing(self, store):
        repo_id = store.upsert_repository("acme", "widgets")
        assert store.delete_tree_nodes(repo_id, []) == 0

    def test_trees_isolated_per_repo(self, store):
        a = store.upsert_repository("acme", "widgets")
        b = store.upsert_repository("acme", "gadgets")
        store.replace_tree(a, _tree("acme/widgets").nodes())
        store.replace_tree(b, _tree("acme/gadgets").nodes())
        assert store.count_tree_nodes(a) == 5
        assert all(n.repo == "acme/gadgets" for n in store.get_tree_nodes(b))


class TestPresets:
    def test_save_and_get(self, store):
        repo_id = store.upsert_repository("acme", "widgets")
        preset = store.save_preset(
            repo_id, "TS only", {"filters": {"languages": ["typescript"]}}, description="ts"
        )
        assert preset["name"] == "TS only"
        assert preset["config"] == {"filters": {"languages": ["typescript"]}}
        assert preset["is_default"] is False
        assert store.get_preset(preset["id"]) == preset

    def test_same_name_overwrites(self, store):
        repo_id = store.upsert_repository("acme", "widgets")
        first = store.save_preset(repo_id, "View", {"layoutType": "treemap"})
        second = store.save_preset(repo_id, "View", {"layoutType": "hierarchical"})
        assert first["id"] == second["id"]
        assert second["config"]["layoutType"] == "hierarchical"
        assert len(store.list_presets(repo_id)) == 1

    def test_default_listed_first(self, store):
        repo_id = store.upsert_repository("acme", "widgets")
        store.save_preset(repo_id, "A", {})
        store.save_preset(repo_id, "Default View", {}, is_default=True)
        store.save_preset(repo_id, "B", {})
        presets = store.list_presets(repo_id)
        assert presets[0]["name"] == "Default View"
        assert {p["name"] for p in presets} == {"A", "B", "Default View"}

    def test_get_default_preset(self, store):
        repo_id = store.upsert_repository("acme", "widgets")
        assert store.get_default_preset(repo_id) is None
        store.save_preset(repo_id, "Default View", {}, is_default=True)
        assert store.get_default_preset(repo_id)["name"] == "Default View"
        assert store.get_default_preset(repo_id, diagram_type="architecture") is None

    def test_update_config(self, store):
        repo_id = store.upsert_repository("acme", "widgets")
        preset = store.save_preset(repo_id, "View", {"layoutType": "treemap"})
        updated = store.update_preset_config(preset["id"], {"layoutType": "hierarchical"})
        assert updated["config"] == {"layoutType": "hierarchical"}
        assert updated["updated_at"] is not None

    def test_get_missing_preset(self, store):
        assert store.get_preset("no-such-id") is None
