"""Similarity retrieval and token-budgeted context selection.

:func:`select_context` is a pure function over an already-ranked
candidate list:

1. candidates are visited in the order supplied, never re-sorted;
2. a candidate larger than ``max_chunk_tokens`` is skipped;
3. selection stops at the first candidate that would push the running
   token total past ``token_limit``;
4. after each inclusion the relevance scores are accumulated, and
   selection stops as soon as that sum exceeds ``relevance_ceiling``.

:class:`Retriever` embeds a question and asks the vector index for the
ranked candidates that feed it.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

import structlog

from docpipe.models.retrieval import ContextBudget, RetrievalCandidate

if TYPE_CHECKING:
    from docpipe.interfaces.embedding_provider import IEmbeddingProvider
    from docpipe.interfaces.vector_index_provider import IVectorIndexProvider
    from docpipe.models.document import Visibility

logger = structlog.get_logger(logger_name=__name__)


def select_context(
    candidates: Sequence[RetrievalCandidate],
    token_limit: int,
    max_chunk_tokens: int = 3000,
    relevance_ceiling: float = 5.0,
) -> list[RetrievalCandidate]:
    """Greedily pick candidates that fit the token budget.

    Returns
    -------
    list[RetrievalCandidate]
        The included candidates, in their original relative order.  The
        sum of their ``token_count`` never exceeds *token_limit*.
    """
    selected: list[RetrievalCandidate] = []
    total_tokens = 0
    cumulative_relevance = 0.0

    for candidate in candidates:
        if candidate.token_count > max_chunk_tokens:
            continue
        if total_tokens + candidate.token_count > token_limit:
            break
        selected.append(candidate)
        total_tokens += candidate.token_count
        cumulative_relevance += candidate.relevance_score or 0.0
        if cumulative_relevance > relevance_ceiling:
            break

    return selected


def select_within_budget(
    candidates: Sequence[RetrievalCandidate],
    budget: ContextBudget,
) -> list[RetrievalCandidate]:
    """:func:`select_context` driven by a :class:`ContextBudget`."""
    return select_context(
        candidates,
        token_limit=budget.token_limit,
        max_chunk_tokens=budget.max_chunk_tokens,
        relevance_ceiling=budget.relevance_ceiling,
    )


class Retriever:
    """Embeds a query and returns ranked candidates from the vector index."""

    def __init__(
        self,
        embedding_provider: IEmbeddingProvider,
        vector_index: IVectorIndexProvider,
    ) -> None:
        self._embedding_provider = embedding_provider
        self._vector_index = vector_index

    async def retrieve(
        self,
        question: str,
        document_ids: list[str] | None,
        visibility: Visibility,
        top_k: int = 20,
    ) -> list[RetrievalCandidate]:
        """Return up to *top_k* candidates, most relevant first.

        Raises
        ------
        docpipe.utils.errors.RAGError
            If embedding the question or querying the index fails.
        """
        query_vector = await self._embedding_provider.embed_single(question)
        candidates = await self._vector_index.query(
            embedding=query_vector,
            visibility=visibility,
            top_k=top_k,
            document_ids=document_ids or None,
        )
        ranked = sorted(candidates, key=lambda c: c.relevance_score, reverse=True)
        logger.debug(
            "retrieval_complete",
            visibility=visibility.value,
            documents=len(document_ids or []),
            candidates=len(ranked),
        )
        return ranked
