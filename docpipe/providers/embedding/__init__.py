"""Embedding provider implementations.

Two implementations of IEmbeddingProvider, in the order main.py tries them:
    1. OpenAIEmbeddingProvider -- text-embedding-3-small (1536 dims), or any
       OpenAI-compatible embeddings endpoint.
    2. NomicEmbeddingProvider  -- nomic-embed-text via a local Ollama server
       (768 dims).
"""

from docpipe.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from docpipe.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["NomicEmbeddingProvider", "OpenAIEmbeddingProvider"]
