"""Embed stage: vectors for every chunk of a document, then index them.

The stage is resumable.  Only chunks whose embedding is still null are
sent to the embedding provider, each vector is persisted with its own
conditional write, and one failed batch or write never undoes the
others.  The document is only ready for indexing once no null embedding
remains; until then a :class:`PartialEmbeddingFailureError` tells the
orchestrator to try again later.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from docpipe.utils.concurrency import settle_all
from docpipe.utils.errors import NoChunksFoundError, PartialEmbeddingFailureError

if TYPE_CHECKING:
    from docpipe.interfaces.chunk_store import IChunkStore
    from docpipe.interfaces.embedding_provider import IEmbeddingProvider
    from docpipe.interfaces.vector_index_provider import IVectorIndexProvider
    from docpipe.models.chunk import Chunk
    from docpipe.models.document import Visibility

logger = structlog.get_logger(logger_name=__name__)


class ChunkEmbedder:
    """Embeds, persists and indexes the chunks of one document at a time.

    Parameters
    ----------
    chunk_store:
        Source of pending chunks and sink for per-chunk vectors.
    embedding_provider:
        Produces vectors for chunk text.
    vector_index:
        Receives the fully embedded chunk set.
    batch_size:
        Chunks per embedding call (default 50).
    """

    def __init__(
        self,
        chunk_store: IChunkStore,
        embedding_provider: IEmbeddingProvider,
        vector_index: IVectorIndexProvider,
        batch_size: int = 50,
    ) -> None:
        self._chunk_store = chunk_store
        self._embedding_provider = embedding_provider
        self._vector_index = vector_index
        self._batch_size = max(1, batch_size)

    async def embed_document(self, document_id: str, visibility: Visibility) -> int:
        """Embed every pending chunk of a document and index the result.

        Returns
        -------
        int
            Number of chunks written to the vector index.

        Raises
        ------
        NoChunksFoundError
            If the document has no chunks at all.
        PartialEmbeddingFailureError
            If one or more chunks are still without an embedding.
        """
        pending = await self._chunk_store.list_missing_embeddings(document_id, visibility)
        if not pending and await self._chunk_store.count_chunks(document_id, visibility) == 0:
            raise NoChunksFoundError(message=f"No chunks found for document {document_id}")

        failed = 0
        for offset in range(0, len(pending), self._batch_size):
            batch = pending[offset : offset + self._batch_size]
            failed += await self._embed_batch(batch)

        if failed:
            logger.warning(
                "embedding_partial_failure",
                document_id=document_id,
                pending=len(pending),
                failed=failed,
            )
            raise PartialEmbeddingFailureError(
                failed_count=failed,
                provider_name=self._embedding_provider.get_provider_name(),
            )

        chunks = await self._chunk_store.list_chunks(document_id, visibility)
        missing = sum(1 for chunk in chunks if chunk.embedding is None)
        if missing:
            raise PartialEmbeddingFailureError(
                failed_count=missing,
                message=f"{missing} chunk(s) still have no embedding",
            )

        indexed = await self._vector_index.upsert(chunks)
        logger.info(
            "document_embedded",
            document_id=document_id,
            newly_embedded=len(pending),
            indexed=indexed,
        )
        return indexed

    async def _embed_batch(self, batch: list[Chunk]) -> int:
        """Embed one batch and persist each vector; returns the failure count."""
        try:
            vectors = await self._embedding_provider.embed([chunk.content for chunk in batch])
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "embedding_batch_failed",
                chunks=len(batch),
                provider=self._embedding_provider.get_provider_name(),
                error=str(exc),
            )
            return len(batch)
        if len(vectors) != len(batch):
            logger.warning("embedding_count_mismatch", expected=len(batch), got=len(vectors))
            return len(batch)

        _, failures = await settle_all(
            {
                chunk.id: self._chunk_store.set_embedding(chunk.id, vector)
                for chunk, vector in zip(batch, vectors, strict=True)
            },
            logger=logger,
            error_event="embedding_write_failed",
        )
        return len(failures)
