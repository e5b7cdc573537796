"""Abstract base class for text-embedding service providers.

Implementations wrap OpenAI ``text-embedding-3-small`` (or any
OpenAI-compatible endpoint) or Nomic ``nomic-embed-text`` served locally by
Ollama.  Providers are interchangeable behind this interface.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

# Concrete implementations:
#   OpenAIEmbeddingProvider -- text-embedding-3-small (requires API key)
#   NomicEmbeddingProvider  -- nomic-embed-text via Ollama (local)
# Located in: docpipe/providers/embedding/


class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by the embed stage and the retriever."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            Text strings to embed.  Implementations split the input further
            if the underlying API has a smaller per-call limit.

        Returns
        -------
        list[list[float]]
            Embedding vectors corresponding positionally to *texts*.  Each
            inner list has length equal to :meth:`get_dimension`.

        Raises
        ------
        docpipe.utils.errors.RAGError
            If the embedding API call fails or times out.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text (e.g. a query)."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the embedding vectors.

        Example values: ``1536`` (OpenAI ``text-embedding-3-small``),
        ``768`` (Nomic ``nomic-embed-text``).
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this embedding provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured and reachable."""
