"""Language detection and per-language declaration patterns for the chunker."""

from __future__ import annotations

import re

_EXTENSION_MAP = {
    "ts": "typescript",
    "js": "javascript",
    "mjs": "javascript",
    "cjs": "javascript",
    "tsx": "tsx",
    "jsx": "jsx",
    "py": "python",
    "go": "go",
    "rs": "rust",
    "java": "java",
    "cpp": "cpp",
    "cc": "cpp",
    "cxx": "cpp",
    "c": "c",
    "h": "c",
    "cs": "csharp",
    "php": "php",
    "rb": "ruby",
    "swift": "swift",
    "kt": "kotlin",
    "scala": "scala",
    "r": "r",
    "md": "markdown",
    "yml": "yaml",
    "yaml": "yaml",
    "json": "json",
    "xml": "xml",
    "html": "html",
    "css": "css",
    "scss": "scss",
    "sass": "sass",
    "less": "less",
    "sql": "sql",
    "cmake": "cmake",
    "txt": "plaintext",
    "sh": "shell",
    "bash": "shell",
}

# Extension-less files recognised by name
_FILENAME_MAP = {
    "dockerfile": "docker",
    "makefile": "make",
}

# Functions, arrow-function bindings, classes and type declarations.
# Plain `const x = 1` bindings are not split points.
_TS_DECL = re.compile(
    r"^(export\s+)?(default\s+)?(declare\s+)?(async\s+)?"
    r"(function\*?\s*\w*\s*[(<]"
    r"|(const|let|var)\s+\w+\s*(:[^=]+)?=\s*(async\s*)?(\(|function\b|\w+\s*=>)"
    r"|(abstract\s+)?class\s+\w+"
    r"|interface\s+\w+"
    r"|enum\s+\w+"
    r"|type\s+\w+)"
)

DECLARATION_PATTERNS: dict[str, re.Pattern[str]] = {
    "typescript": _TS_DECL,
    "javascript": _TS_DECL,
    "tsx": _TS_DECL,
    "jsx": _TS_DECL,
    "python": re.compile(r"^(def|async\s+def|class)\s+\w+"),
    "go": re.compile(r"^(func|type)\s+(\([^)]*\)\s+)?\w+"),
    "rust": re.compile(r"^(pub(\([^)]*\))?\s+)?(async\s+)?(fn|impl|struct|enum|trait|mod)\b"),
    "java": re.compile(
        r"^(public|private|protected)?\s*(static\s+)?(final\s+)?(abstract\s+)?"
        r"(class|interface|enum|\w+(<[^>]*>)?\s+\w+\s*\()"
    ),
}

GENERIC_DECLARATION = re.compile(r"^(function|const|let|var|def|fn|class|struct|enum|trait)\s+")

_TS_NAME = re.compile(r"(?:function|const|let|var|class|interface|enum|type)\s+(\w+)")

SYMBOL_NAME_PATTERNS: dict[str, re.Pattern[str]] = {
    "typescript": _TS_NAME,
    "tsx": _TS_NAME,
    "javascript": re.compile(r"(?:function|const|let|var|class)\s+(\w+)"),
    "jsx": re.compile(r"(?:function|const|let|var|class)\s+(\w+)"),
    "python": re.compile(r"(?:def|class)\s+(\w+)"),
    "go": re.compile(r"(?:func|type|var|const)\s+(?:\([^)]*\)\s+)?(\w+)"),
    "rust": re.compile(r"(?:fn|struct|enum|trait|impl|mod)\s+(\w+)"),
    "java": re.compile(r"(?:class|interface|enum)\s+(\w+)|\w+\s+(\w+)\s*\("),
}

GENERIC_SYMBOL_NAME = re.compile(r"(?:function|const|let|var|def|fn|class|struct|enum)\s+(\w+)")

# Checked in order, first match wins
_SYMBOL_KINDS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"^(export\s+)?(default\s+)?(async\s+)?(function|const|let|var)\s+\w+"), "function"),
    (re.compile(r"^(export\s+)?(default\s+)?(abstract\s+)?(class|interface|enum|type)\s+\w+"), "class"),
    (re.compile(r"^(async\s+)?def\s+\w+"), "function"),
    (re.compile(r"^func\s+"), "function"),
    (re.compile(r"^(pub(\([^)]*\))?\s+)?(async\s+)?(fn|impl)\b"), "function"),
    (re.compile(r"^(pub(\([^)]*\))?\s+)?(struct|enum|trait)\s+\w+"), "type"),
]


def detect_language(path: str) -> str:
    """Map a file path to a language tag. Unknown files are ``plaintext``."""
    name = path.rsplit("/", 1)[-1].lower()
    if name in _FILENAME_MAP:
        return _FILENAME_MAP[name]
    if "." not in name:
        return "plaintext"
    ext = name.rsplit(".", 1)[-1]
    return _EXTENSION_MAP.get(ext, "plaintext")


def file_extension(name: str) -> str | None:
    """Return the extension of a file name (without the dot), if any."""
    if "." not in name.lstrip("."):
        return None
    return name.rsplit(".", 1)[-1]


def declaration_pattern(language: str) -> re.Pattern[str]:
    return DECLARATION_PATTERNS.get(language, GENERIC_DECLARATION)


def extract_symbol_name(line: str, language: str) -> str | None:
    """Pull a declared symbol name out of a chunk's first line."""
    if not line:
        return None
    pattern = SYMBOL_NAME_PATTERNS.get(language, GENERIC_SYMBOL_NAME)
    match = pattern.search(line)
    if not match:
        return None
    return next((g for g in match.groups() if g), None)


def extract_symbol_kind(line: str) -> str | None:
    """Classify a declaration line as ``function``, ``class`` or ``type``."""
    if not line:
        return None
    stripped = line.strip()
    for pattern, kind in _SYMBOL_KINDS:
        if pattern.match(stripped):
            return kind
    return None
