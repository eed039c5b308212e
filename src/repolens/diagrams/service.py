"""Diagram generation on top of the stored tree, plus preset management."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import replace
from typing import Any

from repolens.diagrams.filters import DiagramFilters, PathMatcher, apply_filters, compute_stats
from repolens.diagrams.layout import (
    DiagramEntity,
    DiagramRelationship,
    layout_conceptual,
    layout_file_tree,
)
from repolens.indexer.file_tree import ROOT_PATH
from repolens.storage.sqlite_store import SqliteStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 7
DEFAULT_TREE_DEPTH = 10
DEFAULT_PRESET_NAME = "Default View"


class RepositoryNotFoundError(LookupError):
    """The repository has never been ingested."""


class PresetNotFoundError(LookupError):
    """No diagram preset with the given id."""


def _require_repo(store: SqliteStore, owner_repo: str) -> dict:
    repo = store.get_repository(owner_repo)
    if repo is None:
        raise RepositoryNotFoundError(f"Repository {owner_repo} not found")
    return repo


def _require_preset(store: SqliteStore, preset_id: str) -> dict:
    preset = store.get_preset(preset_id)
    if preset is None:
        raise PresetNotFoundError(f"Diagram preset with ID {preset_id} not found")
    return preset


# ── File tree diagrams ──


def generate_file_tree_diagram(
    store: SqliteStore,
    owner_repo: str,
    layout_type: str = "hierarchical",
    filters: DiagramFilters | None = None,
) -> dict:
    """Lay out the stored tree, then filter it. Returns nodes, edges and stats."""
    repo = _require_repo(store, owner_repo)
    nodes = store.get_tree_nodes(repo["id"])
    max_depth = filters.max_depth if filters else None
    layout = apply_filters(layout_file_tree(nodes, layout_type, max_depth=max_depth), filters)
    return {**layout.to_dict(), "stats": compute_stats(layout)}


def get_or_create_default_preset(store: SqliteStore, repo_id: int) -> dict:
    preset = store.get_default_preset(repo_id)
    if preset is not None:
        return preset
    logger.info("Creating default preset for repo_id=%d", repo_id)
    return store.save_preset(
        repo_id,
        DEFAULT_PRESET_NAME,
        config={"filters": DiagramFilters().to_dict(), "layoutType": "treemap"},
        diagram_type="file_tree",
        description="Complete file tree",
        is_default=True,
    )


def get_tree_diagram(
    store: SqliteStore,
    owner_repo: str,
    max_depth: int = DEFAULT_TREE_DEPTH,
    layout_type: str = "treemap",
) -> dict:
    """Whole-tree diagram for first display, tied to the default preset."""
    repo = _require_repo(store, owner_repo)
    diagram = generate_file_tree_diagram(
        store, owner_repo, layout_type, DiagramFilters(max_depth=max_depth)
    )
    diagram["diagram_id"] = get_or_create_default_preset(store, repo["id"])["id"]
    return diagram


def default_diagram_name(repo: str, filters: DiagramFilters) -> str:
    parts = []
    if filters.languages:
        parts.append(", ".join(filters.languages))
    if filters.path_patterns:
        parts.append(", ".join(filters.path_patterns))
    if parts:
        return f"{' - '.join(parts)} Diagram"
    return f"{repo} File Tree"


def default_diagram_description(repo: str, filters: DiagramFilters) -> str:
    parts = []
    if filters.languages:
        parts.append(f"{', '.join(filters.languages)} files")
    if filters.path_patterns:
        parts.append(f"in {', '.join(filters.path_patterns)}")
    if filters.exclude_paths:
        parts.append(f"excluding {', '.join(filters.exclude_paths)}")
    if parts:
        return f"File tree showing {' '.join(parts)}"
    return f"Complete file tree for {repo}"


def create_diagram(
    store: SqliteStore,
    owner: str,
    repo: str,
    filters: DiagramFilters | None = None,
    layout_type: str = "hierarchical",
    name: str | None = None,
    description: str | None = None,
) -> dict:
    """Generate a filtered file tree diagram and save it as a preset."""
    owner_repo = f"{owner}/{repo}"
    repo_record = _require_repo(store, owner_repo)
    filters = filters or DiagramFilters()
    if filters.max_depth is None:
        filters = replace(filters, max_depth=DEFAULT_MAX_DEPTH)
    name = name or default_diagram_name(repo, filters)
    description = description or default_diagram_description(repo, filters)

    diagram = generate_file_tree_diagram(store, owner_repo, layout_type, filters)
    preset = store.save_preset(
        repo_record["id"],
        name,
        config={"filters": filters.to_dict(), "layoutType": layout_type, "stats": diagram["stats"]},
        diagram_type="file_tree",
        description=description,
    )
    return {"diagram_id": preset["id"], "name": name, "description": description, **diagram}


def _merge_filters(
    current: DiagramFilters,
    changes: dict[str, Any],
    additive: bool,
) -> DiagramFilters:
    """Combine stored filters with an update.

    Additive mode appends list filters; otherwise each given field replaces
    the stored one and missing fields keep their stored value.
    """
    def _merge(key: str, stored: list[str]) -> list[str]:
        value = changes.get(key)
        if value is None:
            return list(stored)
        return list(stored) + list(value) if additive else list(value)

    max_depth = changes.get("max_depth")
    if max_depth is None:
        max_depth = current.max_depth if current.max_depth is not None else DEFAULT_MAX_DEPTH
    return DiagramFilters(
        path_patterns=_merge("path_patterns", current.path_patterns),
        exclude_paths=_merge("exclude_paths", current.exclude_paths),
        languages=_merge("languages", current.languages),
        max_depth=max_depth,
    )


def update_diagram_filters(
    store: SqliteStore,
    preset_id: str,
    changes: dict[str, Any],
    additive: bool = False,
) -> dict:
    """Apply filter changes to a saved file tree preset and regenerate it.

    ``changes`` may hold ``path_patterns``, ``exclude_paths``, ``languages``
    and ``max_depth``; absent or None keys are left alone.
    """
    preset = _require_preset(store, preset_id)
    if preset["diagram_type"] != "file_tree":
        raise ValueError(f"Preset {preset_id} is a {preset['diagram_type']} diagram, not a file tree")
    repo = store.get_repository_by_id(preset["repo_id"])
    if repo is None:
        raise RepositoryNotFoundError(f"Repository for preset {preset_id} not found")

    config = dict(preset["config"])
    filters = _merge_filters(DiagramFilters.from_dict(config.get("filters")), changes, additive)
    layout_type = config.get("layoutType") or "hierarchical"

    diagram = generate_file_tree_diagram(store, repo["owner_repo"], layout_type, filters)
    config.update({"filters": filters.to_dict(), "layoutType": layout_type, "stats": diagram["stats"]})
    store.update_preset_config(preset_id, config)
    return {
        "diagram_id": preset_id,
        "name": preset["name"],
        "filters": filters.to_dict(),
        **diagram,
    }


# ── Conceptual diagrams ──


def parse_entities(raw: list[dict]) -> list[DiagramEntity]:
    return [
        DiagramEntity(
            id=str(e["id"]),
            label=str(e.get("label") or e["id"]),
            kind=str(e.get("kind") or "module"),
            metadata=dict(e.get("metadata") or {}),
        )
        for e in raw
    ]


def parse_relationships(raw: list[dict]) -> list[DiagramRelationship]:
    return [
        DiagramRelationship(
            id=str(r.get("id") or f"{r['source']}->{r['target']}"),
            source=str(r["source"]),
            target=str(r["target"]),
            type=str(r.get("type") or "uses"),
            label=r.get("label"),
            metadata=dict(r.get("metadata") or {}),
        )
        for r in raw
    ]


def generate_conceptual_diagram(
    entities: list[DiagramEntity],
    relationships: list[DiagramRelationship],
    layout_type: str = "hierarchical",
    filters: DiagramFilters | None = None,
) -> dict:
    layout = apply_filters(layout_conceptual(entities, relationships, layout_type), filters)
    return {**layout.to_dict(), "stats": compute_stats(layout)}


# ── Presets ──


def render_preset(store: SqliteStore, preset_id: str) -> dict:
    """Regenerate a saved diagram from its stored configuration."""
    preset = _require_preset(store, preset_id)
    config = preset["config"]
    filters = DiagramFilters.from_dict(config.get("filters"))

    if preset["diagram_type"] == "file_tree":
        repo = store.get_repository_by_id(preset["repo_id"])
        if repo is None:
            raise RepositoryNotFoundError(f"Repository for preset {preset_id} not found")
        diagram = generate_file_tree_diagram(
            store, repo["owner_repo"], config.get("layoutType") or "hierarchical", filters
        )
    else:
        diagram = generate_conceptual_diagram(
            parse_entities(config.get("entities") or []),
            parse_relationships(config.get("relationships") or []),
            config.get("layoutType") or "hierarchical",
            filters,
        )
    return {"diagram_id": preset["id"], "preset": preset, **diagram}


# ── Tree summary ──


def summarize_tree(
    store: SqliteStore, owner_repo: str, filters: DiagramFilters | None = None
) -> dict:
    """Counts, languages and largest folder over the (filtered) stored tree."""
    repo = _require_repo(store, owner_repo)
    filters = filters or DiagramFilters()
    nodes = [n for n in store.get_tree_nodes(repo["id"]) if n.path != ROOT_PATH]

    include = PathMatcher(filters.path_patterns)
    if include:
        nodes = [n for n in nodes if include.matches(n.path)]
    if filters.max_depth is not None:
        nodes = [n for n in nodes if n.depth <= filters.max_depth]
    dirs = [n for n in nodes if n.is_dir]
    files = [n for n in nodes if not n.is_dir]
    if filters.languages:
        wanted = {lang.lower() for lang in filters.languages}
        files = [f for f in files if f.language and f.language.lower() in wanted]

    languages = Counter(f.language for f in files if f.language)
    largest = max(dirs, key=lambda d: (d.file_count, d.cumulative_size), default=None)
    summary = {
        "totalFiles": len(files),
        "totalDirectories": len(dirs),
        "totalSize": sum(f.size for f in files),
        "maxDepth": max((n.depth for n in files + dirs), default=0),
        "languages": dict(languages.most_common()),
        "largestFolder": largest.path if largest else None,
    }

    lines = [f"In the {owner_repo} repository"
             + (f" (filtered to {', '.join(filters.path_patterns)})" if filters.path_patterns else "")
             + ":"]
    lines.append(f"- Total files: {summary['totalFiles']}")
    lines.append(f"- Total directories: {summary['totalDirectories']}")
    lines.append(f"- Total size: {summary['totalSize'] / 1024:.2f} KB")
    lines.append(f"- Maximum depth: {summary['maxDepth']}")
    if languages:
        lines.append("- Languages: " + ", ".join(f"{lang} ({n} files)" for lang, n in languages.most_common()))
    if largest:
        lines.append(f"- Largest folder: {largest.path}")
    return {"summary": summary, "answer": "\n".join(lines)}
