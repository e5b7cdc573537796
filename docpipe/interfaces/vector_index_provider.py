"""Abstract base class for the similarity-search index.

The index is an off-the-shelf nearest-neighbour store; docpipe only
upserts embedded chunks and queries with a vector.  Queries are always
partitioned by visibility and, optionally, restricted to a set of
document ids.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from docpipe.models.chunk import Chunk
from docpipe.models.document import Visibility
from docpipe.models.retrieval import RetrievalCandidate

# Concrete implementation: ChromaDBVectorIndex
# Located in: docpipe/providers/vector_index/


class IVectorIndexProvider(ABC):
    """Contract for vector similarity search over embedded chunks."""

    @abstractmethod
    async def upsert(self, chunks: list[Chunk]) -> int:
        """Insert or replace *chunks* keyed by chunk id.

        Every chunk must carry an embedding.  Upserting the same chunk
        twice is a no-op apart from refreshing its metadata.

        Returns
        -------
        int
            Number of chunks written.

        Raises
        ------
        docpipe.utils.errors.RAGError
            If the index rejects the write.
        """

    @abstractmethod
    async def query(
        self,
        embedding: list[float],
        visibility: Visibility,
        top_k: int = 20,
        document_ids: list[str] | None = None,
    ) -> list[RetrievalCandidate]:
        """Return up to *top_k* candidates sorted by descending relevance."""

    @abstractmethod
    async def delete_document(self, document_id: str, visibility: Visibility) -> int:
        """Remove every indexed chunk of a document; returns how many were removed."""

    @abstractmethod
    def count(self) -> int:
        """Return the total number of indexed chunks."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this index."""
