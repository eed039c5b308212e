"""Exclude patterns, .gitignore parsing and binary detection for ingestion."""

from __future__ import annotations

import re
from collections.abc import Iterable

DEFAULT_EXCLUDES: list[str] = [
    "node_modules",
    "dist",
    "build",
    ".next",
    ".git",
    "coverage",
    ".nyc_output",
    "*.log",
    "*.lock",
    ".DS_Store",
    "*.min.js",
    "*.min.css",
]

BINARY_EXTENSIONS: frozenset[str] = frozenset({
    ".png", ".jpg", ".jpeg", ".gif", ".svg", ".ico", ".webp",
    ".pdf", ".zip", ".tar", ".gz", ".7z", ".rar",
    ".exe", ".dll", ".so", ".dylib",
    ".woff", ".woff2", ".ttf", ".otf", ".eot",
    ".mp4", ".mp3", ".avi", ".mov", ".wmv", ".flv", ".webm",
})

MAX_TEXT_FILE_SIZE = 2 * 1024 * 1024


def is_binary_file(path: str, size: int | None = None) -> bool:
    """Binary by extension allow-list, or anything larger than 2 MiB."""
    name = path.rsplit("/", 1)[-1].lower()
    dot = name.rfind(".")
    if dot > 0 and name[dot:] in BINARY_EXTENSIONS:
        return True
    return size is not None and size > MAX_TEXT_FILE_SIZE


def parse_gitignore(content: str) -> list[str]:
    """Non-empty, non-comment lines of a .gitignore file."""
    patterns = []
    for line in content.split("\n"):
        line = line.strip()
        if line and not line.startswith("#"):
            patterns.append(line)
    return patterns


class ExcludeMatcher:
    """Match paths against a list of exclude patterns.

    Patterns containing ``*`` become unanchored regexes with ``*`` → ``.*``;
    all other patterns match as plain substrings. This is intentionally more
    permissive than git's own ignore semantics.
    """

    def __init__(self, patterns: Iterable[str]) -> None:
        self.patterns: list[str] = []
        self._substrings: list[str] = []
        self._regexes: list[re.Pattern[str]] = []
        for pattern in patterns:
            if not pattern or pattern in self.patterns:
                continue
            self.patterns.append(pattern)
            if "*" in pattern:
                parts = (re.escape(p) for p in pattern.split("*"))
                self._regexes.append(re.compile(".*".join(parts)))
            else:
                self._substrings.append(pattern)

    def matches(self, path: str) -> bool:
        if any(s in path for s in self._substrings):
            return True
        return any(r.search(path) for r in self._regexes)


def build_exclude_matcher(
    gitignore: str | None = None,
    extra: Iterable[str] | None = None,
) -> ExcludeMatcher:
    """Default excludes + .gitignore entries + caller-supplied globs."""
    patterns = list(DEFAULT_EXCLUDES)
    if gitignore:
        patterns.extend(parse_gitignore(gitignore))
    if extra:
        patterns.extend(extra)
    return ExcludeMatcher(patterns)
