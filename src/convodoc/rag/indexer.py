"""Index a documentation directory into a :class:`ChromaRagService`."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from convodoc.exceptions import RagError
from convodoc.rag.sections import split_sections

if TYPE_CHECKING:
    from pathlib import Path

    from convodoc.rag.chroma import ChromaRagService

__all__ = ["DOC_EXTENSIONS", "IndexReport", "index_directory"]

logger = logging.getLogger(__name__)

DOC_EXTENSIONS = frozenset({".md", ".mdx", ".markdown", ".txt", ".rst"})


@dataclass
class IndexReport:
    files_indexed: int = 0
    sections_indexed: int = 0
    files_removed: int = 0
    failed: list[str] = field(default_factory=list)


def index_directory(
    docs_dir: Path, service: ChromaRagService, max_section_chars: int = 4000
) -> IndexReport:
    """Re-index every documentation file under ``docs_dir``.

    Each file's previous sections are replaced; files that disappeared
    from disk are removed from the index. A file that fails to read or
    embed is reported and skipped.

    Raises:
        RagError: If ``docs_dir`` is not a directory.
    """
    if not docs_dir.is_dir():
        raise RagError(f"Documentation directory not found: {docs_dir}")

    report = IndexReport()
    seen: set[str] = set()
    for path in sorted(docs_dir.rglob("*")):
        if not path.is_file() or path.suffix.lower() not in DOC_EXTENSIONS:
            continue
        rel = path.relative_to(docs_dir).as_posix()
        seen.add(rel)
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
            service.delete_file(rel)
            report.sections_indexed += service.add_sections(
                split_sections(rel, text, max_section_chars)
            )
        except (OSError, RagError) as e:
            logger.warning("Failed to index %s: %s", rel, e)
            report.failed.append(rel)
            continue
        report.files_indexed += 1

    for stale in sorted(service.indexed_files() - seen):
        service.delete_file(stale)
        report.files_removed += 1

    logger.info(
        "Indexed %d files (%d sections), removed %d",
        report.files_indexed,
        report.sections_indexed,
        report.files_removed,
    )
    return report
