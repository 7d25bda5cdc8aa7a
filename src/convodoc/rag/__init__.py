"""Documentation retrieval: section splitting, indexing and similarity search.

``ChromaRagService`` lives in :mod:`convodoc.rag.chroma` and is imported
from there so that chromadb only loads when retrieval is used.
"""

from convodoc.rag.base import BaseRagService
from convodoc.rag.indexer import IndexReport, index_directory
from convodoc.rag.sections import DocSection, split_sections

__all__ = [
    "BaseRagService",
    "DocSection",
    "IndexReport",
    "index_directory",
    "split_sections",
]
