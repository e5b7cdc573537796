"""docpipe data models -- documents, chunks, retrieval and pipeline results.

All models are Pydantic v2 ``BaseModel`` subclasses with ``frozen=True``;
updates produce new instances via ``model_copy(update={...})``.
"""

from docpipe.models.chunk import Chunk, ChunkDraft, ChunkingResult
from docpipe.models.document import (
    Document,
    DocumentRef,
    DocumentStatus,
    PipelineStage,
    Visibility,
)
from docpipe.models.pipeline import (
    ExtractionResult,
    ProcessingSummary,
    StageOutcome,
    StageSummary,
)
from docpipe.models.retrieval import (
    AnswerResult,
    ChatMessage,
    Citation,
    ContextBudget,
    ReportType,
    RetrievalCandidate,
)

__all__ = [
    "AnswerResult",
    "ChatMessage",
    "Chunk",
    "ChunkDraft",
    "ChunkingResult",
    "Citation",
    "ContextBudget",
    "Document",
    "DocumentRef",
    "DocumentStatus",
    "ExtractionResult",
    "PipelineStage",
    "ProcessingSummary",
    "ReportType",
    "RetrievalCandidate",
    "StageOutcome",
    "StageSummary",
    "Visibility",
]
