"""Stage logic for the document pipeline.

1. **Extract** (extractor.py / DocumentExtractor) -- format-specific
   processors in source_processors/ turn bytes into page texts, which are
   joined into one string plus a page boundary map.

2. **Chunk** (chunker.py) -- a deterministic window strategy or an
   LLM-driven semantic strategy turns text into indexed chunk drafts.

3. **Embed** (embedder.py / ChunkEmbedder) -- resumable per-chunk
   embedding followed by a vector-index upsert.

None of these touch document status; sequencing, leases and retries are
the job of :class:`~docpipe.pipeline.orchestrator.PipelineOrchestrator`.
"""

from docpipe.services.ingestion.chunker import (
    DeterministicChunkingStrategy,
    SemanticChunkingStrategy,
    build_chunking_strategy,
)
from docpipe.services.ingestion.embedder import ChunkEmbedder
from docpipe.services.ingestion.extractor import DocumentExtractor

__all__ = [
    "ChunkEmbedder",
    "DeterministicChunkingStrategy",
    "DocumentExtractor",
    "SemanticChunkingStrategy",
    "build_chunking_strategy",
]
