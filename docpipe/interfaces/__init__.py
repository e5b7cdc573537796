"""Public interface definitions for all external collaborators.

Every external service the pipeline touches is reached only through the
abstract base classes in this package.  Concrete adapters live in
``docpipe/providers/`` and are wired in ``docpipe/main.py``; tests inject
mocks built with ``MagicMock(spec=...)``.

CONCRETE PROVIDER MAP:
    Interface                  →  Concrete implementations (in docpipe/providers/)
    ─────────────────────────────────────────────────────────────────────
    ILLMProvider               →  OpenAILLMProvider, AnthropicLLMProvider
    IEmbeddingProvider         →  OpenAIEmbeddingProvider, NomicEmbeddingProvider
    IBlobStorageProvider       →  LocalBlobStorage, HTTPBlobStorage
    IDocumentStore             →  SQLiteDocumentStore
    IChunkStore                →  SQLiteChunkStore
    IVectorIndexProvider       →  ChromaDBVectorIndex
    IChunkingStrategy          →  DeterministicChunkingStrategy,
                                  SemanticChunkingStrategy (docpipe/services/ingestion/)
"""

from docpipe.interfaces.blob_storage_provider import IBlobStorageProvider
from docpipe.interfaces.chunk_store import IChunkStore
from docpipe.interfaces.chunking_strategy import IChunkingStrategy
from docpipe.interfaces.document_store import IDocumentStore
from docpipe.interfaces.embedding_provider import IEmbeddingProvider
from docpipe.interfaces.llm_provider import ILLMProvider
from docpipe.interfaces.vector_index_provider import IVectorIndexProvider

__all__ = [
    "IBlobStorageProvider",
    "IChunkStore",
    "IChunkingStrategy",
    "IDocumentStore",
    "IEmbeddingProvider",
    "ILLMProvider",
    "IVectorIndexProvider",
]
