"""GitHub REST client used as the repository source for ingestion."""

from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from repolens import config

logger = logging.getLogger(__name__)


class GitHubError(Exception):
    """Raised when a GitHub API call fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass
class TreeEntry:
    path: str
    size: int
    sha: str


@dataclass
class FileContent:
    path: str
    content: str
    sha: str
    size: int


@dataclass
class FileChange:
    filename: str
    status: str  # added | removed | modified | renamed | ...
    sha: str | None = None
    previous_filename: str | None = None


class RepositorySource(Protocol):
    """What the ingestion orchestrator needs from a source-control host."""

    def resolve_commit(self, owner: str, repo: str, branch: str) -> str:
        ...

    def get_tree(self, owner: str, repo: str, sha: str) -> list[TreeEntry]:
        ...

    def get_file_content(self, owner: str, repo: str, path: str, ref: str) -> FileContent:
        ...

    def compare_commits(self, owner: str, repo: str, base: str, head: str) -> list[FileChange]:
        ...

    def get_gitignore(self, owner: str, repo: str, ref: str) -> str | None:
        ...


class GitHubClient:
    """Thin httpx wrapper around the endpoints ingestion uses."""

    def __init__(
        self,
        token: str | None = None,
        base_url: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "repolens",
        }
        token = token if token is not None else config.GITHUB_TOKEN
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=base_url or config.GITHUB_API_URL,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> GitHubClient:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def _get(self, url: str, params: dict[str, Any] | None = None) -> Any:
        """GET a JSON document. Raises GitHubError on failure."""
        try:
            response = self._client.get(url, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            message = e.response.text[:200]
            raise GitHubError(
                f"GET {url} failed ({e.response.status_code}): {message}",
                status_code=e.response.status_code,
            ) from e
        except httpx.RequestError as e:
            raise GitHubError(f"GET {url} failed: {e}") from e
        return response.json()

    def resolve_commit(self, owner: str, repo: str, branch: str) -> str:
        """Return the commit sha at the head of ``branch``."""
        data = self._get(f"/repos/{owner}/{repo}/commits/{branch}")
        return data["sha"]

    def get_tree(self, owner: str, repo: str, sha: str) -> list[TreeEntry]:
        """All blobs in the recursive tree of a commit."""
        data = self._get(f"/repos/{owner}/{repo}/git/trees/{sha}", params={"recursive": "1"})
        if data.get("truncated"):
            logger.warning("Tree for %s/%s@%s was truncated by GitHub", owner, repo, sha[:7])
        return [
            TreeEntry(path=item["path"], size=int(item.get("size") or 0), sha=item["sha"])
            for item in data.get("tree", [])
            if item.get("type") == "blob"
        ]

    def get_file_content(self, owner: str, repo: str, path: str, ref: str) -> FileContent:
        data = self._get(f"/repos/{owner}/{repo}/contents/{path}", params={"ref": ref})
        if isinstance(data, list) or data.get("type") != "file":
            raise GitHubError(f"{path} is not a file")
        raw = base64.b64decode(data.get("content") or "")
        return FileContent(
            path=path,
            content=raw.decode("utf-8", errors="replace"),
            sha=data["sha"],
            size=int(data.get("size") or len(raw)),
        )

    def compare_commits(self, owner: str, repo: str, base: str, head: str) -> list[FileChange]:
        data = self._get(f"/repos/{owner}/{repo}/compare/{base}...{head}")
        return [
            FileChange(
                filename=f["filename"],
                status=f["status"],
                sha=f.get("sha"),
                previous_filename=f.get("previous_filename"),
            )
            for f in data.get("files", [])
        ]

    def get_gitignore(self, owner: str, repo: str, ref: str) -> str | None:
        """Contents of the root .gitignore, or None if there is none."""
        try:
            return self.get_file_content(owner, repo, ".gitignore", ref).content
        except GitHubError as e:
            if e.status_code == 404:
                return None
            raise
