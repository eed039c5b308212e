"""Background job manager for ingestion and delta-update runs."""

from __future__ import annotations

import logging
import queue
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Callable

from repolens import config

logger = logging.getLogger(__name__)

ACTIVE_STATES = ("queued", "running")
TERMINAL_STATES = ("done", "error")


class JobConflictError(RuntimeError):
    """Raised when a repository already has an active job."""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobManager:
    """Runs jobs on a thread pool and streams their progress.

    Each job moves queued → running → done | error and never leaves a terminal
    state. Only one active job is allowed per repository. At most
    ``history_limit`` jobs are remembered; when the map is full the oldest
    finished jobs are evicted first.
    """

    def __init__(self, max_workers: int = 4, history_limit: int | None = None) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers)
        self._history_limit = history_limit or config.JOB_HISTORY_LIMIT
        # Insertion-ordered, so iteration is oldest first
        self._jobs: dict[str, dict[str, Any]] = {}
        self._subscribers: dict[str, list[queue.Queue]] = {}
        self._lock = threading.Lock()

    def submit(
        self, repo: str, fn: Callable, kind: str = "ingest", job_id: str | None = None,
        **kwargs,
    ) -> str:
        """Queue ``fn(**kwargs)`` as a job for ``repo`` and return its id.

        Raises:
            JobConflictError: If the repository already has a queued or
                running job.
        """
        with self._lock:
            for j in self._jobs.values():
                if j["repo"] == repo and j["status"] in ACTIVE_STATES:
                    raise JobConflictError(
                        f"A {j['kind']} job is already active for {repo} ({j['id']})"
                    )

            if job_id is None:
                job_id = str(uuid.uuid4())
            self._jobs[job_id] = {
                "id": job_id,
                "repo": repo,
                "kind": kind,
                "status": "queued",
                "counts": {"files": 0, "skipped": 0, "chunks": 0},
                "progress_events": [],
                "result": None,
                "error": None,
                "created_at": _now(),
                "finished_at": None,
            }
            self._subscribers[job_id] = []
            self._evict_locked()

        def _run():
            self._set_status(job_id, "running")
            try:
                result = fn(**kwargs)
            except Exception as e:
                logger.exception("Job %s (%s %s) failed", job_id, kind, repo)
                self._finish(job_id, "error", error=str(e))
                self._broadcast(job_id, {"type": "error", "error": str(e)})
                return
            self._finish(job_id, "done", result=result)
            self._broadcast(job_id, {"type": "done", "result": result})

        self._executor.submit(_run)
        return job_id

    def _set_status(self, job_id: str, status: str) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job["status"] in TERMINAL_STATES:
                return
            job["status"] = status
        self._broadcast(job_id, {"type": "status", "status": status})

    def _finish(self, job_id: str, status: str, result: Any = None, error: str | None = None) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job["status"] in TERMINAL_STATES:
                return
            job["status"] = status
            job["result"] = result
            job["error"] = error
            job["finished_at"] = _now()
            if isinstance(result, dict) and isinstance(result.get("counts"), dict):
                job["counts"] = dict(result["counts"])

    def _evict_locked(self) -> None:
        """Drop the oldest finished jobs until the map fits. Caller holds the lock."""
        overflow = len(self._jobs) - self._history_limit
        if overflow <= 0:
            return
        for job_id in [jid for jid, j in self._jobs.items() if j["status"] in TERMINAL_STATES]:
            if overflow <= 0:
                break
            del self._jobs[job_id]
            self._subscribers.pop(job_id, None)
            overflow -= 1

    def get_status(self, job_id: str) -> dict | None:
        """Get job status and metadata."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            snapshot = dict(job)
            snapshot["progress_events"] = list(job["progress_events"])
            return snapshot

    def list_jobs(self) -> list[dict]:
        with self._lock:
            return [dict(j) for j in self._jobs.values()]

    def active_job(self, repo: str) -> dict | None:
        with self._lock:
            for j in self._jobs.values():
                if j["repo"] == repo and j["status"] in ACTIVE_STATES:
                    return dict(j)
        return None

    def subscribe(self, job_id: str) -> queue.Queue | None:
        """Subscribe to progress events for a job.

        Returns a Queue that receives event dicts, or None if the job doesn't
        exist.
        """
        with self._lock:
            if job_id not in self._jobs:
                return None
            q: queue.Queue = queue.Queue()
            self._subscribers[job_id].append(q)
            return q

    def push_progress(self, job_id: str, event: dict) -> None:
        """Record a progress event; events carrying ``counts`` update the job."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job:
                job["progress_events"].append(event)
                if isinstance(event.get("counts"), dict):
                    job["counts"] = dict(event["counts"])
        self._broadcast(job_id, {"type": "progress", **event})

    def _broadcast(self, job_id: str, event: dict) -> None:
        """Send an event to all subscribers of a job."""
        with self._lock:
            subs = list(self._subscribers.get(job_id, []))
        for q in subs:
            q.put_nowait(event)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
