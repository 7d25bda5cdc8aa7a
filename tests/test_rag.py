"""Tests for convodoc.rag — section splitting, ChromaDB index and directory indexing."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from convodoc.embed.base import BaseEmbedder
from convodoc.exceptions import EmbeddingError, RagError
from convodoc.rag import index_directory, split_sections
from convodoc.rag.chroma import ChromaRagService
from convodoc.rag.sections import section_id

if TYPE_CHECKING:
    from pathlib import Path

_ALPHABET = "abcdefghijklmnopqrstuvwxyz"


class MockLetterEmbedder(BaseEmbedder):
    """Letter-frequency vectors: texts sharing words land close together."""

    name = "letters"

    def __init__(self, fail: bool = False) -> None:
        super().__init__()
        self.fail = fail

    def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        if self.fail:
            raise EmbeddingError("embedder offline")
        vectors = []
        for text in texts:
            lowered = text.lower()
            counts = [float(lowered.count(ch)) for ch in _ALPHABET]
            total = sum(counts) or 1.0
            vectors.append([c / total for c in counts])
        return vectors


# --- split_sections ---


class TestSplitSections:
    def test_heading_paths(self):
        text = "# Guide\n\nIntro.\n\n## Install\n\nRun it.\n\n### Linux\n\napt.\n\n## Usage\n\nUse it."
        sections = split_sections("guide.md", text)
        assert [s.title for s in sections] == [
            "Guide",
            "Guide > Install",
            "Guide > Install > Linux",
            "Guide > Usage",
        ]
        assert sections[1].content == "## Install\n\nRun it."

    def test_preamble_uses_file_path_as_title(self):
        sections = split_sections("notes.md", "Loose text\n\n# Later\n\nbody")
        assert sections[0].title == "notes.md"
        assert sections[0].content == "Loose text"

    def test_headings_inside_fences_ignored(self):
        text = "# Real\n\n```bash\n# not a heading\necho hi\n```\n\nafter"
        [section] = split_sections("a.md", text)
        assert "# not a heading" in section.content
        assert section.content.endswith("after")

    def test_front_matter_and_bom_stripped(self):
        text = '\ufeff---\ntitle: "x"\n---\n# Title\n\nbody'
        [section] = split_sections("a.md", text)
        assert section.title == "Title"
        assert "title:" not in section.content

    def test_long_sections_split_on_paragraphs(self):
        paragraphs = ["word " * 30 for _ in range(5)]
        text = "# Big\n\n" + "\n\n".join(p.strip() for p in paragraphs)
        sections = split_sections("big.md", text, max_chars=200)
        assert len(sections) > 1
        assert all(len(s.content) <= 200 for s in sections)
        assert all(s.title == "Big" for s in sections)

    def test_single_huge_paragraph_hard_cut(self):
        sections = split_sections("x.md", "y" * 450, max_chars=200)
        assert [len(s.content) for s in sections] == [200, 200, 50]

    def test_empty_document(self):
        assert split_sections("empty.md", "\n\n   \n") == []

    def test_ids_are_unique_and_content_addressed(self):
        sections = split_sections("a.md", "# A\n\none\n\n# B\n\ntwo")
        assert len({s.id for s in sections}) == 2
        assert sections[0].id == section_id("a.md", 0, "# A\n\none")
        assert section_id("a.md", 0, "changed") != sections[0].id


# --- ChromaRagService ---


@pytest.fixture
def service(tmp_path: Path) -> ChromaRagService:
    return ChromaRagService(tmp_path / "index", MockLetterEmbedder(), collection_name="test")


class TestChromaRagService:
    def test_empty_index_returns_nothing(self, service: ChromaRagService):
        assert service.count() == 0
        assert service.search("anything") == []

    def test_add_and_search(self, service: ChromaRagService):
        service.add_sections(split_sections("zigbee.md", "# Zigbee\n\nzigbee pairing zigbee"))
        service.add_sections(split_sections("wifi.md", "# Wifi\n\nwifi router password"))
        results = service.search("zigbee pairing", k=5)

        assert len(results) == 2
        assert results[0].file_path == "zigbee.md"
        assert results[0].title == "Zigbee"
        assert 0 < results[1].similarity <= results[0].similarity <= 1

    def test_k_clamped_to_collection_size(self, service: ChromaRagService):
        service.add_sections(split_sections("a.md", "# A\n\nalpha"))
        assert len(service.search("alpha", k=10)) == 1
        assert service.search("alpha", k=0) == []

    def test_upsert_is_idempotent(self, service: ChromaRagService):
        sections = split_sections("a.md", "# A\n\nalpha")
        service.add_sections(sections)
        service.add_sections(sections)
        assert service.count() == 1

    def test_delete_file_and_indexed_files(self, service: ChromaRagService):
        service.add_sections(split_sections("a.md", "# A\n\none\n\n# B\n\ntwo"))
        service.add_sections(split_sections("b.md", "# C\n\nthree"))
        assert service.indexed_files() == {"a.md", "b.md"}
        assert service.delete_file("a.md") == 2
        assert service.delete_file("missing.md") == 0
        assert service.indexed_files() == {"b.md"}

    def test_embedding_failure_raises_rag_error(self, tmp_path: Path):
        service = ChromaRagService(tmp_path / "index", MockLetterEmbedder(fail=True))
        with pytest.raises(RagError, match="Failed to embed"):
            service.add_sections(split_sections("a.md", "# A\n\nalpha"))

    async def test_async_search(self, service: ChromaRagService):
        service.add_sections(split_sections("a.md", "# A\n\nalpha"))
        [doc] = await service.search_similar_docs("alpha", top_k=3)
        assert doc.file_path == "a.md"
        assert doc.content == "# A\n\nalpha"

    def test_persists_across_instances(self, tmp_path: Path):
        first = ChromaRagService(tmp_path / "index", MockLetterEmbedder())
        first.add_sections(split_sections("a.md", "# A\n\nalpha"))
        second = ChromaRagService(tmp_path / "index", MockLetterEmbedder())
        assert second.count() == 1


# --- index_directory ---


class TestIndexDirectory:
    def test_indexes_doc_files_only(self, tmp_path: Path, service: ChromaRagService):
        docs = tmp_path / "docs"
        (docs / "guide").mkdir(parents=True)
        (docs / "index.md").write_text("# Home\n\nwelcome", encoding="utf-8")
        (docs / "guide" / "setup.mdx").write_text("# Setup\n\nsteps", encoding="utf-8")
        (docs / "logo.png").write_bytes(b"\x89PNG")

        report = index_directory(docs, service)
        assert report.files_indexed == 2
        assert report.sections_indexed == 2
        assert service.indexed_files() == {"index.md", "guide/setup.mdx"}

    def test_reindex_replaces_and_removes_stale(self, tmp_path: Path, service: ChromaRagService):
        docs = tmp_path / "docs"
        docs.mkdir()
        page = docs / "page.md"
        page.write_text("# One\n\nfirst\n\n# Two\n\nsecond", encoding="utf-8")
        gone = docs / "gone.md"
        gone.write_text("# Gone\n\nbye", encoding="utf-8")
        index_directory(docs, service)

        page.write_text("# One\n\nrewritten", encoding="utf-8")
        gone.unlink()
        report = index_directory(docs, service)

        assert report.files_removed == 1
        assert service.indexed_files() == {"page.md"}
        assert service.count() == 1

    def test_failed_file_reported(self, tmp_path: Path):
        docs = tmp_path / "docs"
        docs.mkdir()
        (docs / "a.md").write_text("# A\n\nalpha", encoding="utf-8")
        service = ChromaRagService(tmp_path / "index", MockLetterEmbedder(fail=True))
        report = index_directory(docs, service)
        assert report.failed == ["a.md"]
        assert report.files_indexed == 0

    def test_missing_directory_raises(self, tmp_path: Path, service: ChromaRagService):
        with pytest.raises(RagError, match="not found"):
            index_directory(tmp_path / "nope", service)
