"""Abstract documentation retrieval service."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from convodoc.types import RagDocument

__all__ = ["BaseRagService"]


class BaseRagService(ABC):
    """Similarity search over the project's existing documentation."""

    @abstractmethod
    async def search_similar_docs(self, query: str, top_k: int) -> list[RagDocument]:
        """Return up to ``top_k`` documents most similar to ``query``, best first.

        Raises:
            RagError: If the search fails.
        """
