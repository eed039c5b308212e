"""Structural chunker: split file content into overlapping, boundary-aware chunks.

Code is split between complete top-level declarations, tracked with running
brace/paren/bracket counters and an in-string flag. This is a heuristic, not a
parser: string escapes are ignored, so an unterminated string literal leaves
the in-string flag set for the rest of the file and disables depth tracking.

Markdown is split at ``#``/``##``/``###`` headings.

Both modes share the same policy:

* a natural split is only taken once the current chunk holds at least 70% of
  ``target_size`` characters;
* the next chunk is seeded with the last ``max(1, overlap // 50)`` lines of
  the previous one;
* a chunk longer than ``max_size`` is force-split at the best boundary line in
  its second half (or at its end if there is none).
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass

from repolens.indexer.languages import (
    declaration_pattern,
    extract_symbol_kind,
    extract_symbol_name,
)

DEFAULT_TARGET_SIZE = 1000
DEFAULT_MAX_SIZE = 2000
DEFAULT_OVERLAP = 150

# A natural split needs the chunk to be at least this full
SPLIT_THRESHOLD = 0.7

_MARKDOWN_HEADING = re.compile(r"^#{1,3}\s")


@dataclass
class Chunk:
    text: str
    start_line: int
    end_line: int
    symbol_name: str | None = None
    symbol_kind: str | None = None


@dataclass
class _State:
    """Accumulator for the chunk currently being built."""

    lines: list[str]
    start_line: int = 1

    def size(self) -> int:
        return len("\n".join(self.lines))


def overlap_lines(overlap: int) -> int:
    """Number of lines carried over into the next chunk."""
    return max(1, overlap // 50)


def chunk_by_language(
    content: str,
    language: str,
    target_size: int = DEFAULT_TARGET_SIZE,
    max_size: int = DEFAULT_MAX_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> list[Chunk]:
    """Chunk ``content`` using the markdown or code strategy for ``language``."""
    if language in ("markdown", "md"):
        return chunk_markdown(content, target_size, max_size, overlap)
    return chunk_code(content, language, target_size, max_size, overlap)


def chunk_code(
    content: str,
    language: str,
    target_size: int = DEFAULT_TARGET_SIZE,
    max_size: int = DEFAULT_MAX_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> list[Chunk]:
    lines = content.split("\n")
    decl = declaration_pattern(language)
    chunks: list[Chunk] = []
    state = _State(lines=[])

    brace = paren = bracket = 0
    in_string = False
    string_char = ""

    for i, line in enumerate(lines):
        balanced = brace == 0 and paren == 0 and bracket == 0
        if (
            balanced
            and state.lines
            and decl.match(line.strip())
            and state.size() >= target_size * SPLIT_THRESHOLD
        ):
            chunks.append(_make_chunk(state.lines, state.start_line, i, language))
            _seed_overlap(state, i + 1, overlap)

        for char in line:
            if char in "\"'`":
                if not in_string:
                    in_string = True
                    string_char = char
                elif char == string_char:
                    in_string = False
                    string_char = ""
                continue
            if in_string:
                continue
            if char == "{":
                brace += 1
            elif char == "}":
                brace -= 1
            elif char == "(":
                paren += 1
            elif char == ")":
                paren -= 1
            elif char == "[":
                bracket += 1
            elif char == "]":
                bracket -= 1

        state.lines.append(line)
        if state.size() > max_size:
            _force_split(state, chunks, _is_code_boundary, language)

    if state.lines:
        chunks.append(_make_chunk(state.lines, state.start_line, len(lines), language))

    return chunks or [_whole_file(content, lines)]


def chunk_markdown(
    content: str,
    target_size: int = DEFAULT_TARGET_SIZE,
    max_size: int = DEFAULT_MAX_SIZE,
    overlap: int = DEFAULT_OVERLAP,
) -> list[Chunk]:
    lines = content.split("\n")
    chunks: list[Chunk] = []
    state = _State(lines=[])

    for i, line in enumerate(lines):
        if (
            _MARKDOWN_HEADING.match(line)
            and state.lines
            and state.size() >= target_size * SPLIT_THRESHOLD
        ):
            chunks.append(Chunk("\n".join(state.lines), state.start_line, i))
            _seed_overlap(state, i + 1, overlap)

        state.lines.append(line)
        if state.size() > max_size:
            _force_split(state, chunks, _is_markdown_boundary, None)

    if state.lines:
        chunks.append(Chunk("\n".join(state.lines), state.start_line, len(lines)))

    return chunks or [_whole_file(content, lines)]


def _seed_overlap(state: _State, next_line: int, overlap: int) -> None:
    """Restart ``state`` with the tail of the previous chunk."""
    seed = state.lines[-overlap_lines(overlap):]
    state.lines = list(seed)
    state.start_line = next_line - len(seed)


def _force_split(
    state: _State,
    chunks: list[Chunk],
    is_boundary: Callable[[str], bool],
    language: str | None,
) -> None:
    """Cut an oversized chunk at the last boundary line in its second half."""
    split_index = len(state.lines) - 1
    for j in range(len(state.lines) - 1, len(state.lines) // 2 - 1, -1):
        if is_boundary(state.lines[j]):
            split_index = j
            break

    first = state.lines[: split_index + 1]
    rest = state.lines[split_index + 1:]
    end_line = state.start_line + len(first) - 1
    if language is None:
        chunks.append(Chunk("\n".join(first), state.start_line, end_line))
    else:
        chunks.append(_make_chunk(first, state.start_line, end_line, language))

    state.lines = rest
    state.start_line = end_line + 1


def _is_code_boundary(line: str) -> bool:
    return line.strip() in ("", "}", "};")


def _is_markdown_boundary(line: str) -> bool:
    return line.strip() == "" or line.startswith("```") or line.startswith("---")


def _make_chunk(lines: list[str], start: int, end: int, language: str) -> Chunk:
    first = lines[0].strip() if lines else ""
    return Chunk(
        text="\n".join(lines),
        start_line=start,
        end_line=end,
        symbol_name=extract_symbol_name(first, language),
        symbol_kind=extract_symbol_kind(first),
    )


def _whole_file(content: str, lines: list[str]) -> Chunk:
    return Chunk(text=content, start_line=1, end_line=len(lines))
