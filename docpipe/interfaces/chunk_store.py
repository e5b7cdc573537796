"""Abstract base class for the chunk store."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from docpipe.models.chunk import Chunk
from docpipe.models.document import Visibility


class IChunkStore(ABC):
    """Contract for persisting chunks and their embeddings.

    ``(visibility, document_id, chunk_index)`` is unique.  A chunk's
    embedding is written at most once.
    """

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indices if they do not exist.  Idempotent."""

    @abstractmethod
    async def replace_chunks(
        self,
        document_id: str,
        visibility: Visibility,
        chunks: list[Chunk],
        lease_until: datetime | None = None,
    ) -> int | None:
        """Atomically delete any chunks of the document and insert *chunks*.

        With *lease_until*, the write only happens while the document is
        ``chunking`` under exactly that lease, and the same transaction
        moves it to ``chunked`` with the new ``chunk_count``.

        Returns
        -------
        int | None
            The number of chunks inserted, or ``None`` if the lease no
            longer held and nothing was written.
        """

    @abstractmethod
    async def count_chunks(self, document_id: str, visibility: Visibility) -> int:
        """Return how many chunks the document has."""

    @abstractmethod
    async def list_chunks(self, document_id: str, visibility: Visibility) -> list[Chunk]:
        """Return the document's chunks ordered by ``chunk_index``."""

    @abstractmethod
    async def list_missing_embeddings(
        self,
        document_id: str,
        visibility: Visibility,
    ) -> list[Chunk]:
        """Return the document's chunks whose embedding is still null."""

    @abstractmethod
    async def set_embedding(self, chunk_id: str, embedding: list[float]) -> bool:
        """Persist *embedding* on one chunk if it has none yet.

        Returns ``True`` if the row was updated, ``False`` if the chunk
        already had an embedding or does not exist.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this store."""
