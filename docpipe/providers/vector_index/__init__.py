"""Vector index adapters (IVectorIndexProvider)."""

from docpipe.providers.vector_index.chromadb_index import ChromaDBVectorIndex

__all__ = ["ChromaDBVectorIndex"]
