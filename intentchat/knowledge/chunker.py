# ==============================
# Chunker
# ==============================
"""
Split sources into retrieval units with stable identifiers.

Rules:
- Chunk ids derive from (kind, source_ref, line offset); re-chunking an
  unmodified source yields byte-identical chunks and ids.
- Text/code: fixed line window with overlap, capped at max_chars.
- Python: top-level function/class bodies (decorators included) are atomic
  and never split across chunks. Unparseable files fall back to fixed windows.
- Commands: one chunk per descriptor, text "<name>: <description>".
- Unreadable or binary sources raise ChunkSourceError.
"""

from __future__ import annotations

import ast
import logging
import os
import re
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Tuple, Union

from intentchat.config.schema import Settings
from intentchat.contracts.chunk_schema import Chunk, ChunkKind
from intentchat.contracts.command_schema import CommandCatalog
from intentchat.contracts.errors import ChunkSourceError

logger = logging.getLogger("intentchat.chunker")

BINARY_SNIFF_BYTES = 8192
STRUCTURAL_SUFFIXES = {".py", ".pyi"}

Span = Tuple[int, int]  # half-open, 0-based line indexes

# Same line breaks ast counts; str.splitlines also breaks on \f, \v, \x85, \u2028 ...
_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")


def split_lines(text: str) -> List[str]:
    lines = _LINE_BREAK_RE.split(text)
    if lines and lines[-1] == "":
        lines.pop()
    return lines


def read_source(path: Path) -> str:
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise ChunkSourceError(str(path), f"unreadable ({exc.strerror or exc})") from exc
    if b"\x00" in data[:BINARY_SNIFF_BYTES]:
        raise ChunkSourceError(str(path), "binary content")
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise ChunkSourceError(str(path), "not utf-8 text") from exc


def python_units(text: str) -> Optional[List[Span]]:
    """
    Top-level def/class spans, or None when the file does not parse.
    """
    try:
        tree = ast.parse(text)
    except (SyntaxError, ValueError):
        return None
    units: List[Span] = []
    for node in tree.body:
        if not isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef, ast.ClassDef)):
            continue
        first = min([node.lineno] + [d.lineno for d in node.decorator_list])
        last = getattr(node, "end_lineno", None) or node.lineno
        units.append((first - 1, last))
    return units


def _straddling(units: Sequence[Span], boundary: int) -> Optional[Span]:
    for u_start, u_end in units:
        if u_start < boundary < u_end:
            return (u_start, u_end)
    return None


class Chunker:
    def __init__(self, *, window_lines: int = 60, overlap_lines: int = 10, max_chars: int = 4000) -> None:
        if window_lines <= 0:
            raise ValueError("window_lines must be positive")
        if not 0 <= overlap_lines < window_lines:
            raise ValueError("overlap_lines must be in [0, window_lines)")
        self.window_lines = window_lines
        self.overlap_lines = overlap_lines
        self.max_chars = max_chars

    @classmethod
    def from_settings(cls, settings: Settings) -> "Chunker":
        c = settings.chunking
        return cls(window_lines=c.window_lines, overlap_lines=c.overlap_lines, max_chars=c.max_chars)

    # ------------------------------
    # Files
    # ------------------------------

    def chunk(self, source: Union[str, Path]) -> Iterator[Chunk]:
        # symlinks are not resolved: source_ref stays the path found under the synced root
        path = Path(os.path.abspath(Path(source).expanduser()))
        text = read_source(path)
        try:
            mtime = path.stat().st_mtime
        except OSError as exc:
            raise ChunkSourceError(str(path), f"unreadable ({exc.strerror or exc})") from exc
        structural = path.suffix.lower() in STRUCTURAL_SUFFIXES
        yield from self.chunk_text(text, source_ref=path.as_posix(), source_mtime=mtime, structural=structural)

    def chunk_text(
        self,
        text: str,
        *,
        source_ref: str,
        source_mtime: float = 0.0,
        structural: bool = False,
    ) -> Iterator[Chunk]:
        lines = split_lines(text)
        units: List[Span] = []
        if structural:
            parsed = python_units(text)
            if parsed is None:
                logger.debug("structural parse failed, using fixed windows", extra={"op": source_ref})
            else:
                units = parsed
        for start, end in self._spans(lines, units):
            body = "\n".join(lines[start:end])
            if not body.strip():
                continue
            yield Chunk.build(
                kind=ChunkKind.CONTENT,
                source_ref=source_ref,
                offset=start,
                text=body,
                source_mtime=source_mtime,
                start_line=start + 1,
                end_line=end,
            )

    def _spans(self, lines: Sequence[str], units: Sequence[Span]) -> Iterator[Span]:
        n = len(lines)
        start = 0
        while start < n:
            end = self._fit_chars(lines, start, min(n, start + self.window_lines))
            unit = _straddling(units, end)
            cut_at_unit = unit is not None
            if unit is not None:
                # stop before the unit, or take it whole when it starts here
                end = unit[0] if unit[0] > start else unit[1]
            yield (start, end)
            if end >= n:
                break
            if cut_at_unit:
                start = end
                continue
            nxt = max(end - self.overlap_lines, start + 1)
            if _straddling(units, nxt) is not None:
                nxt = end
            start = nxt

    def _fit_chars(self, lines: Sequence[str], start: int, end: int) -> int:
        size = 0
        for i in range(start, end):
            size += len(lines[i]) + 1
            if size > self.max_chars and i > start:
                return i
        return end

    # ------------------------------
    # Commands
    # ------------------------------

    def chunk_commands(self, catalog: CommandCatalog) -> Iterator[Chunk]:
        for descriptor in catalog.commands:
            yield Chunk.build(
                kind=ChunkKind.COMMAND,
                source_ref=f"command:{descriptor.name}",
                offset=0,
                text=descriptor.embedding_text(),
            )
