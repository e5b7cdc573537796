"""ChromaDB vector index adapter.

Wraps ``chromadb.PersistentClient`` to implement
:class:`IVectorIndexProvider`.  Cosine distance, local persistence, no
external service.  Vectors are always computed by docpipe's own embedding
provider and passed in explicitly; the collection's built-in embedding
function is replaced with a no-op so ChromaDB never downloads a model.
"""

from __future__ import annotations

import os
from typing import Any

# Telemetry must be disabled before chromadb is imported.
os.environ.setdefault("ANONYMIZED_TELEMETRY", "False")

import chromadb  # noqa: E402
import structlog  # noqa: E402

from docpipe.interfaces.vector_index_provider import IVectorIndexProvider  # noqa: E402
from docpipe.models.chunk import Chunk  # noqa: E402
from docpipe.models.document import Visibility  # noqa: E402
from docpipe.models.retrieval import RetrievalCandidate  # noqa: E402
from docpipe.utils.errors import RAGError  # noqa: E402

logger = structlog.get_logger(logger_name=__name__)

_UPSERT_BATCH_SIZE = 500


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """Embedding function that refuses to run; docpipe always supplies vectors."""

    def __call__(self, input: list[str]) -> list[list[float]]:  # noqa: A002
        raise NotImplementedError(
            "docpipe uses pre-computed embeddings; "
            "ChromaDB's built-in embedding should never be called."
        )

    def name(self) -> str:
        return "noop_precomputed"


class ChromaDBVectorIndex(IVectorIndexProvider):
    """Vector index backed by a persistent ChromaDB collection."""

    def __init__(
        self,
        persist_directory: str = "./data/chromadb",
        collection_name: str = "docpipe_chunks",
        client: Any | None = None,
    ) -> None:
        self._persist_directory = persist_directory
        self._collection_name = collection_name
        self._client = client or chromadb.PersistentClient(
            path=persist_directory,
            settings=chromadb.config.Settings(anonymized_telemetry=False),
        )
        self._collection = self._client.get_or_create_collection(
            name=collection_name,
            metadata={"hnsw:space": "cosine"},
            embedding_function=_NoopEmbeddingFunction(),
        )

    # ------------------------------------------------------------------
    # IVectorIndexProvider implementation
    # ------------------------------------------------------------------

    async def upsert(self, chunks: list[Chunk]) -> int:
        """Upsert embedded chunks in bounded batches, keyed by chunk id."""
        missing = [c.id for c in chunks if c.embedding is None]
        if missing:
            raise ValueError(f"Cannot index chunks without embeddings: {missing[:5]}")
        if not chunks:
            return 0

        try:
            total = 0
            for start in range(0, len(chunks), _UPSERT_BATCH_SIZE):
                batch = chunks[start : start + _UPSERT_BATCH_SIZE]
                self._collection.upsert(
                    ids=[c.id for c in batch],
                    embeddings=[c.embedding for c in batch],
                    documents=[c.content for c in batch],
                    metadatas=[self._chunk_to_metadata(c) for c in batch],
                )
                total += len(batch)
        except Exception as exc:
            raise RAGError(
                message=f"ChromaDB upsert failed: {exc}",
                provider_name=self.get_provider_name(),
                stage="embed",
            ) from exc

        logger.info("chromadb_upsert", count=total, document_id=chunks[0].document_id)
        return total

    async def query(
        self,
        embedding: list[float],
        visibility: Visibility,
        top_k: int = 20,
        document_ids: list[str] | None = None,
    ) -> list[RetrievalCandidate]:
        where = self._build_where(visibility, document_ids)
        try:
            results = self._collection.query(
                query_embeddings=[embedding],
                n_results=top_k,
                where=where,
            )
        except Exception as exc:
            raise RAGError(
                message=f"ChromaDB query failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        if not results["ids"] or not results["ids"][0]:
            return []

        ids = results["ids"][0]
        documents = results["documents"][0] if results.get("documents") else [""] * len(ids)
        metadatas = results["metadatas"][0] if results.get("metadatas") else [{}] * len(ids)
        distances = results["distances"][0] if results.get("distances") else [1.0] * len(ids)

        candidates = [
            RetrievalCandidate(
                chunk_id=chunk_id,
                document_id=str(meta.get("document_id", "")),
                content=text or "",
                token_count=int(meta.get("token_count", 0)),
                # cosine distance in [0, 2]; similarity clamped to [0, 1]
                relevance_score=max(0.0, min(1.0, 1.0 - float(distance))),
                page_number=int(meta["page_number"]) if "page_number" in meta else None,
                section_title=str(meta.get("section_title", "")),
            )
            for chunk_id, text, meta, distance in zip(ids, documents, metadatas, distances, strict=True)
        ]
        candidates.sort(key=lambda c: c.relevance_score, reverse=True)

        logger.info(
            "chromadb_query",
            visibility=visibility.value,
            document_filter=len(document_ids or []),
            results_count=len(candidates),
            top_score=candidates[0].relevance_score if candidates else 0.0,
        )
        return candidates

    async def delete_document(self, document_id: str, visibility: Visibility) -> int:
        where = self._build_where(visibility, [document_id])
        try:
            existing = self._collection.get(where=where)
            count = len(existing["ids"]) if existing["ids"] else 0
            if count:
                self._collection.delete(where=where)
        except Exception as exc:
            raise RAGError(
                message=f"ChromaDB delete failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("chromadb_delete_document", document_id=document_id, deleted_count=count)
        return count

    def count(self) -> int:
        return self._collection.count()

    def get_provider_name(self) -> str:
        return "chromadb"

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _build_where(visibility: Visibility, document_ids: list[str] | None) -> dict[str, Any]:
        visibility_clause = {"visibility": visibility.value}
        if not document_ids:
            return visibility_clause
        if len(document_ids) == 1:
            doc_clause: dict[str, Any] = {"document_id": document_ids[0]}
        else:
            doc_clause = {"document_id": {"$in": list(document_ids)}}
        return {"$and": [visibility_clause, doc_clause]}

    @staticmethod
    def _chunk_to_metadata(chunk: Chunk) -> dict[str, Any]:
        # ChromaDB rejects None metadata values, so optional keys are omitted.
        meta: dict[str, Any] = {
            "document_id": chunk.document_id,
            "visibility": chunk.visibility.value,
            "chunk_index": chunk.chunk_index,
            "token_count": chunk.token_count,
            "section_title": chunk.section_title,
            "start_char": chunk.start_char,
            "end_char": chunk.end_char,
        }
        if chunk.page_number is not None:
            meta["page_number"] = chunk.page_number
        if chunk.keywords:
            meta["keywords"] = ",".join(chunk.keywords)
        return meta
