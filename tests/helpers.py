"""Shared test helpers: fake repository source, fake embedder, sample files."""

import hashlib

from repolens.github import FileChange, FileContent, GitHubError, TreeEntry

FAKE_DIMS = 8


def blob_sha(content: str) -> str:
    return hashlib.sha1(content.encode()).hexdigest()


def fake_embed(texts: list[str]) -> list[list[float]]:
    """Return deterministic fake embeddings based on text hash."""
    results = []
    for t in texts:
        h = hashlib.md5(t.encode()).digest()
        results.append([float(b) / 255.0 for b in h[:FAKE_DIMS]])
    return results


class FakeEmbedder:
    def __init__(self) -> None:
        self.calls = 0

    def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        return fake_embed(texts)


class FakeSource:
    """In-memory RepositorySource; content at every ref is ``files``."""

    def __init__(
        self,
        files: dict[str, str],
        commit: str = "c0ffee0000000000000000000000000000000001",
        gitignore: str | None = None,
        fail_paths: set[str] | None = None,
    ) -> None:
        self.files = dict(files)
        self.commit = commit
        self.gitignore = gitignore
        self.fail_paths = set(fail_paths or ())
        self.changes: list[FileChange] = []
        self.tree_error: Exception | None = None
        self.fetched: list[str] = []
        self.closed = 0

    def resolve_commit(self, owner, repo, branch):
        return self.commit

    def get_tree(self, owner, repo, sha):
        if self.tree_error is not None:
            raise self.tree_error
        return [
            TreeEntry(path=path, size=len(content.encode()), sha=blob_sha(content))
            for path, content in sorted(self.files.items())
        ]

    def get_file_content(self, owner, repo, path, ref):
        self.fetched.append(path)
        if path in self.fail_paths:
            raise GitHubError(f"GET contents/{path} failed (500)", status_code=500)
        if path not in self.files:
            raise GitHubError(f"{path} not found", status_code=404)
        content = self.files[path]
        return FileContent(path=path, content=content, sha=blob_sha(content), size=len(content.encode()))

    def compare_commits(self, owner, repo, base, head):
        return list(self.changes)

    def get_gitignore(self, owner, repo, ref):
        return self.gitignore

    def close(self):
        self.closed += 1


SAMPLE_TS = "\n".join(
    ["export function alpha(x: number) {"]
    + [f"  const value{i} = compute(x, {i});" for i in range(1, 39)]
    + ["}"]
    + [
        line
        for k in range(20)
        for line in (f"export function helper{k}() {{", f"  return {k};", "}", "")
    ]
)

SAMPLE_FILES = {
    "src/a.ts": SAMPLE_TS,
    "src/util/b.py": "def beta():\n    return 1\n\n\nclass Gamma:\n    pass\n",
    "README.md": "# Demo\n\nA small demo repository.\n",
    "node_modules/dep/index.js": "module.exports = {};\n",
    "assets/logo.png": "not really a png",
    "debug.log": "log line\n",
}

# Files that survive the default excludes
INDEXABLE_PATHS = ["README.md", "src/a.ts", "src/util/b.py"]
