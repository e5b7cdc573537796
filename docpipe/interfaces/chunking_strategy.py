"""Abstract base class for chunking strategies.

Two strategies exist (deterministic windows and LLM-driven semantic
sections); both return :class:`ChunkingResult` with drafts already
indexed, token-counted and page-mapped, so the orchestrator never needs
to know which one ran.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from docpipe.models.chunk import ChunkingResult


class IChunkingStrategy(ABC):

    @abstractmethod
    async def chunk(self, text: str, page_boundaries: list[int]) -> ChunkingResult:
        """Split *text* into chunk drafts.

        Empty or whitespace-only *text* yields an empty result, not an error.

        Raises
        ------
        docpipe.utils.errors.ChunkingError
            If the strategy cannot produce drafts for non-empty text.
        """

    @abstractmethod
    def get_strategy_name(self) -> str:
        """Return the configuration name of this strategy."""
