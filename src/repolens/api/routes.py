"""API router: health, ingestion jobs, SSE, webhook, repositories, diagrams, presets."""

from __future__ import annotations

import json
import logging
import queue
import uuid
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field, field_validator

from repolens import config
from repolens.api.job_manager import TERMINAL_STATES, JobConflictError, JobManager
from repolens.diagrams import service
from repolens.diagrams.filters import DiagramFilters
from repolens.diagrams.layout import (
    CONCEPTUAL_LAYOUTS,
    DIAGRAM_TYPES,
    ENTITY_KINDS,
    FILE_TREE_LAYOUTS,
    RELATIONSHIP_TYPES,
)

logger = logging.getLogger(__name__)

router = APIRouter()
_job_manager = JobManager()


# ── Lazy-initialized stores ──


def _get_sqlite_store():
    from repolens.storage.sqlite_store import SqliteStore
    if not config.SQLITE_PATH.exists():
        return None
    store = SqliteStore(config.SQLITE_PATH)
    store.init_db()
    return store


def _open_sqlite_store():
    """Store for background jobs; creates the database on first use."""
    from repolens.storage.sqlite_store import SqliteStore
    store = SqliteStore(config.SQLITE_PATH)
    store.init_db()
    return store


def _get_chunk_store():
    from repolens.embeddings import GeminiProvider
    from repolens.storage.chunk_store import ChunkStore
    return ChunkStore(
        config.LANCEDB_PATH,
        GeminiProvider(),
        dims=config.EMBEDDING_DIMS,
        table_name=config.CHUNKS_TABLE,
    )


def _get_source():
    from repolens.github import GitHubClient
    return GitHubClient()


def _require_store():
    store = _get_sqlite_store()
    if not store:
        raise HTTPException(status_code=503, detail="SQLite store not available")
    return store


def _make_progress_callback(job_id: str):
    """Create a progress callback bound to a job ID."""
    def callback(event: dict):
        _job_manager.push_progress(job_id, event)
    return callback


# ── Health ──


@router.get("/health")
def health():
    return {"status": "ok"}


# ── Ingestion ──


class IngestRequest(BaseModel):
    owner: str = Field(min_length=1)
    repo: str = Field(min_length=1)
    branch: str = Field(default="main", min_length=1)
    root_path: str | None = None
    exclude_globs: list[str] = Field(default_factory=list)


@router.post("/github/ingest")
def start_ingest(req: IngestRequest):
    """Start a full ingestion in the background and return its job id."""
    from repolens.indexer.ingest import IngestOptions, run_ingest

    options = IngestOptions(
        owner=req.owner,
        repo=req.repo,
        branch=req.branch,
        root_path=req.root_path,
        exclude_globs=list(req.exclude_globs),
    )
    job_id = str(uuid.uuid4())

    def _run():
        store = _open_sqlite_store()
        source = _get_source()
        try:
            return run_ingest(
                store, source, _get_chunk_store(), options,
                on_progress=_make_progress_callback(job_id),
                concurrency=config.INGEST_CONCURRENCY,
            )
        finally:
            source.close()
            store.close()

    try:
        _job_manager.submit(options.repo_key, _run, kind="ingest", job_id=job_id)
    except JobConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    logger.info("POST /github/ingest %s@%s job=%s", options.repo_key, req.branch, job_id)
    return {"job_id": job_id, "status": "queued"}


def _job_view(job: dict) -> dict:
    # progress_events can be large; the stream endpoint replays them
    return {k: v for k, v in job.items() if k != "progress_events"}


@router.get("/github/ingest/{job_id}")
def get_ingest_job(job_id: str):
    job = _job_manager.get_status(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Unknown job")
    return _job_view(job)


@router.get("/github/ingest")
def list_ingest_jobs():
    return [_job_view(j) for j in _job_manager.list_jobs()]


# ── SSE streaming ──


@router.get("/github/ingest/{job_id}/stream")
def stream_ingest_job(job_id: str):
    """SSE stream of progress events for a job."""
    sub_queue = _job_manager.subscribe(job_id)
    # Snapshot after subscribing: a job that finishes in between is seen as terminal here
    job = _job_manager.get_status(job_id)
    if sub_queue is None or job is None:
        raise HTTPException(status_code=404, detail="Unknown job")

    def event_generator():
        # First, replay any existing progress events
        for evt in job.get("progress_events", []):
            yield f"data: {json.dumps({'type': 'progress', **evt})}\n\n"

        # If the job already finished, send the final event
        if job["status"] in TERMINAL_STATES:
            if job["status"] == "done":
                yield f"data: {json.dumps({'type': 'done', 'result': job.get('result')})}\n\n"
            else:
                yield f"data: {json.dumps({'type': 'error', 'error': job.get('error', '')})}\n\n"
            return

        while True:
            try:
                event = sub_queue.get(timeout=30)
                yield f"data: {json.dumps(event)}\n\n"
                if event.get("type") in ("done", "error"):
                    break
            except queue.Empty:
                yield ": keepalive\n\n"

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


# ── Webhook ──


def _is_null_sha(sha: str) -> bool:
    return set(sha) == {"0"}


@router.post("/github/webhook")
def github_webhook(payload: dict[str, Any]):
    """Push events on branches trigger a delta update; everything else is acknowledged."""
    from repolens.indexer.ingest import run_delta_update

    ref = payload.get("ref") or ""
    before = payload.get("before") or ""
    after = payload.get("after") or ""
    repository = payload.get("repository") or {}
    name = repository.get("name")
    owner_info = repository.get("owner") or {}
    owner = owner_info.get("login") or owner_info.get("name")

    if not (ref and before and after and name and owner):
        return {"status": "ignored", "reason": "incomplete push payload"}
    if not ref.startswith("refs/heads/"):
        return {"status": "ignored", "reason": f"not a branch push: {ref}"}
    if _is_null_sha(before) or _is_null_sha(after):
        return {"status": "ignored", "reason": "branch created or deleted"}

    branch = ref[len("refs/heads/"):]
    repo_key = f"{owner}/{name}"
    job_id = str(uuid.uuid4())

    def _run():
        store = _open_sqlite_store()
        source = _get_source()
        try:
            result = run_delta_update(
                store, source, _get_chunk_store(), owner, name, before, after,
                branch=branch, on_progress=_make_progress_callback(job_id),
            )
        finally:
            source.close()
            store.close()
        return {
            **result,
            "counts": {
                "files": result["files_processed"] + result["files_skipped"],
                "skipped": result["files_skipped"],
                "chunks": result["chunks_added"],
            },
        }

    try:
        _job_manager.submit(repo_key, _run, kind="delta", job_id=job_id)
    except JobConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    logger.info("Webhook push %s %s..%s job=%s", repo_key, before[:7], after[:7], job_id)
    return {"status": "accepted", "job_id": job_id}


# ── Repositories ──


@router.get("/repos")
def list_repos():
    """List all ingested repositories."""
    store = _get_sqlite_store()
    if not store:
        return []
    return store.list_repositories()


@router.get("/repos/{owner}/{repo}")
def get_repo(owner: str, repo: str):
    store = _require_store()
    record = store.get_repository(f"{owner}/{repo}")
    if not record:
        raise HTTPException(status_code=404, detail="Repository not found")
    record["tree"] = {
        "files": store.count_tree_nodes(record["id"], kind="file"),
        "directories": store.count_tree_nodes(record["id"], kind="directory"),
    }
    active = _job_manager.active_job(record["owner_repo"])
    record["active_job"] = _job_view(active) if active else None
    return record


# ── Diagrams ──


class FiltersModel(BaseModel):
    path_patterns: list[str] | None = None
    exclude_paths: list[str] | None = None
    languages: list[str] | None = None
    max_depth: int | None = Field(default=None, ge=0)

    def to_filters(self) -> DiagramFilters:
        return DiagramFilters(
            path_patterns=self.path_patterns or [],
            exclude_paths=self.exclude_paths or [],
            languages=self.languages or [],
            max_depth=self.max_depth,
        )


class CreateDiagramRequest(BaseModel):
    owner: str = Field(min_length=1)
    repo: str = Field(min_length=1)
    name: str | None = None
    description: str | None = None
    layout_type: str = "hierarchical"
    filters: FiltersModel = Field(default_factory=FiltersModel)

    @field_validator("layout_type")
    @classmethod
    def _check_layout(cls, v: str) -> str:
        if v not in FILE_TREE_LAYOUTS:
            raise ValueError(f"layout_type must be one of {', '.join(FILE_TREE_LAYOUTS)}")
        return v


class EntityModel(BaseModel):
    id: str = Field(min_length=1)
    label: str
    kind: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("kind")
    @classmethod
    def _check_kind(cls, v: str) -> str:
        if v not in ENTITY_KINDS:
            raise ValueError(f"kind must be one of {', '.join(ENTITY_KINDS)}")
        return v


class RelationshipModel(BaseModel):
    id: str = Field(min_length=1)
    source: str
    target: str
    type: str
    label: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("type")
    @classmethod
    def _check_type(cls, v: str) -> str:
        if v not in RELATIONSHIP_TYPES:
            raise ValueError(f"type must be one of {', '.join(RELATIONSHIP_TYPES)}")
        return v


class ConceptualDiagramRequest(BaseModel):
    entities: list[EntityModel]
    relationships: list[RelationshipModel] = Field(default_factory=list)
    diagram_type: str = "architecture"
    layout_type: str = "hierarchical"
    filters: FiltersModel = Field(default_factory=FiltersModel)
    # Set owner, repo and name to save the diagram as a preset
    owner: str | None = None
    repo: str | None = None
    name: str | None = None
    description: str | None = None

    @field_validator("diagram_type")
    @classmethod
    def _check_diagram_type(cls, v: str) -> str:
        if v not in DIAGRAM_TYPES or v == "file_tree":
            raise ValueError("diagram_type must be a conceptual diagram type")
        return v

    @field_validator("layout_type")
    @classmethod
    def _check_layout(cls, v: str) -> str:
        if v not in CONCEPTUAL_LAYOUTS:
            raise ValueError(f"layout_type must be one of {', '.join(CONCEPTUAL_LAYOUTS)}")
        return v


@router.get("/diagrams/tree")
def get_tree(
    owner: str = Query(..., min_length=1),
    repo: str = Query(..., min_length=1),
    max_depth: int = Query(service.DEFAULT_TREE_DEPTH, ge=0),
    layout: str = Query("treemap"),
):
    """Whole-repository file tree diagram."""
    store = _require_store()
    try:
        return service.get_tree_diagram(store, f"{owner}/{repo}", max_depth=max_depth, layout_type=layout)
    except service.RepositoryNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/diagrams/summary")
def get_tree_summary(
    owner: str = Query(..., min_length=1),
    repo: str = Query(..., min_length=1),
    path_patterns: list[str] | None = Query(None),
    languages: list[str] | None = Query(None),
    max_depth: int | None = Query(None, ge=0),
):
    store = _require_store()
    filters = DiagramFilters(
        path_patterns=path_patterns or [], languages=languages or [], max_depth=max_depth
    )
    try:
        return service.summarize_tree(store, f"{owner}/{repo}", filters)
    except service.RepositoryNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/diagrams")
def create_diagram(req: CreateDiagramRequest):
    """Filtered file tree diagram, saved as a preset."""
    store = _require_store()
    try:
        return service.create_diagram(
            store, req.owner, req.repo,
            filters=req.filters.to_filters(),
            layout_type=req.layout_type,
            name=req.name,
            description=req.description,
        )
    except service.RepositoryNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/diagrams/conceptual")
def create_conceptual_diagram(req: ConceptualDiagramRequest):
    """Lay out caller-supplied entities and relationships."""
    entities = service.parse_entities([e.model_dump() for e in req.entities])
    relationships = service.parse_relationships([r.model_dump() for r in req.relationships])
    diagram = service.generate_conceptual_diagram(
        entities, relationships, req.layout_type, req.filters.to_filters()
    )

    if req.owner and req.repo and req.name:
        store = _require_store()
        record = store.get_repository(f"{req.owner}/{req.repo}")
        if not record:
            raise HTTPException(status_code=404, detail="Repository not found")
        preset = store.save_preset(
            record["id"],
            req.name,
            config={
                "entities": [e.model_dump() for e in req.entities],
                "relationships": [r.model_dump() for r in req.relationships],
                "layoutType": req.layout_type,
                "filters": req.filters.to_filters().to_dict(),
                "stats": diagram["stats"],
            },
            diagram_type=req.diagram_type,
            description=req.description,
        )
        diagram["diagram_id"] = preset["id"]
    return diagram


# ── Presets ──


class SavePresetRequest(BaseModel):
    owner: str = Field(min_length=1)
    repo: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str | None = None
    diagram_type: str = "file_tree"
    config: dict[str, Any] = Field(default_factory=dict)
    is_default: bool = False

    @field_validator("diagram_type")
    @classmethod
    def _check_diagram_type(cls, v: str) -> str:
        if v not in DIAGRAM_TYPES:
            raise ValueError(f"diagram_type must be one of {', '.join(DIAGRAM_TYPES)}")
        return v


class UpdateFiltersRequest(BaseModel):
    filters: FiltersModel
    additive: bool = False


@router.get("/diagrams/presets")
def list_presets(owner: str = Query(..., min_length=1), repo: str = Query(..., min_length=1)):
    store = _require_store()
    record = store.get_repository(f"{owner}/{repo}")
    if not record:
        raise HTTPException(status_code=404, detail="Repository not found")
    return {"presets": store.list_presets(record["id"])}


@router.post("/diagrams/presets")
def save_preset(req: SavePresetRequest):
    store = _require_store()
    record = store.get_repository(f"{req.owner}/{req.repo}")
    if not record:
        raise HTTPException(status_code=404, detail="Repository not found")
    preset = store.save_preset(
        record["id"],
        req.name,
        config=req.config,
        diagram_type=req.diagram_type,
        description=req.description,
        is_default=req.is_default,
    )
    return {"preset": preset}


@router.get("/diagrams/presets/{preset_id}")
def get_preset(preset_id: str):
    """Regenerate a saved diagram."""
    store = _require_store()
    try:
        return service.render_preset(store, preset_id)
    except (service.PresetNotFoundError, service.RepositoryNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.patch("/diagrams/presets/{preset_id}/filters")
def update_preset_filters(preset_id: str, req: UpdateFiltersRequest):
    store = _require_store()
    try:
        return service.update_diagram_filters(
            store, preset_id, req.filters.model_dump(), additive=req.additive
        )
    except (service.PresetNotFoundError, service.RepositoryNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
