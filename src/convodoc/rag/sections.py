"""Split markdown documentation into heading-delimited sections for indexing.

Fenced code blocks are never split and headings inside them are ignored.
Sections longer than ``max_chars`` are cut at paragraph boundaries.
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass

__all__ = ["DocSection", "section_id", "split_sections"]

_HEADING_RE = re.compile(r"^(#{1,6})\s+(.+?)\s*#*\s*$")
_FENCE_RE = re.compile(r"^(`{3,}|~{3,})")
_FRONT_MATTER_RE = re.compile(r"\A(?:---|\+\+\+)\s*\n.*?\n(?:---|\+\+\+)\s*\n", re.DOTALL)


@dataclass(frozen=True)
class DocSection:
    """A documentation fragment ready to embed."""

    id: str
    file_path: str
    title: str
    content: str


def section_id(file_path: str, index: int, content: str) -> str:
    """Deterministic id; changes whenever the section text does."""
    content_hash = hashlib.sha256(content.encode("utf-8")).hexdigest()[:8]
    return f"{file_path}#{index:04d}_{content_hash}"


class _SectionTracker:
    """Heading hierarchy as 'H1 > H2 > H3'."""

    def __init__(self) -> None:
        self._stack: list[tuple[int, str]] = []

    @property
    def path(self) -> str:
        return " > ".join(h[1] for h in self._stack)

    def push(self, level: int, title: str) -> None:
        while self._stack and self._stack[-1][0] >= level:
            self._stack.pop()
        self._stack.append((level, title))


def _split_long(text: str, max_chars: int) -> list[str]:
    if len(text) <= max_chars:
        return [text]
    parts: list[str] = []
    current = ""
    for para in text.split("\n\n"):
        candidate = f"{current}\n\n{para}" if current else para
        if len(candidate) <= max_chars:
            current = candidate
            continue
        if current:
            parts.append(current)
        # A single paragraph over the limit is hard-cut.
        while len(para) > max_chars:
            parts.append(para[:max_chars])
            para = para[max_chars:]
        current = para
    if current:
        parts.append(current)
    return parts


def split_sections(file_path: str, text: str, max_chars: int = 4000) -> list[DocSection]:
    """Split a markdown document into sections.

    Args:
        file_path: Path of the document relative to the docs root (POSIX).
        text: Document content.
        max_chars: Upper bound on a section's length.

    Returns:
        Sections in document order; empty sections are dropped.
    """
    if text.startswith("\ufeff"):
        text = text[1:]
    text = _FRONT_MATTER_RE.sub("", text, count=1)

    tracker = _SectionTracker()
    blocks: list[tuple[str, list[str]]] = []
    title = ""
    lines: list[str] = []
    fence: str | None = None

    for line in text.split("\n"):
        fence_match = _FENCE_RE.match(line)
        if fence is not None:
            lines.append(line)
            if fence_match and fence_match.group(1)[0] == fence[0] and len(
                fence_match.group(1)
            ) >= len(fence):
                fence = None
            continue
        if fence_match:
            fence = fence_match.group(1)
            lines.append(line)
            continue

        heading = _HEADING_RE.match(line)
        if heading:
            blocks.append((title, lines))
            tracker.push(len(heading.group(1)), heading.group(2))
            title = tracker.path
            lines = [line]
            continue
        lines.append(line)
    blocks.append((title, lines))

    sections: list[DocSection] = []
    for block_title, block_lines in blocks:
        body = "\n".join(block_lines).strip()
        if not body:
            continue
        for part in _split_long(body, max_chars):
            sections.append(
                DocSection(
                    id=section_id(file_path, len(sections), part),
                    file_path=file_path,
                    title=block_title or file_path,
                    content=part,
                )
            )
    return sections
