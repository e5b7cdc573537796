"""Pydantic request/response schemas for the docpipe API.

Request bodies name the ownership partition ``type`` (``private`` or
``public``), matching the query parameter used by the document routes;
inside the service it is always ``visibility``.

Convention: request schemas end with "Request", response schemas end
with "Response".
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from docpipe.models.document import Document, DocumentStatus, PipelineStage, Visibility
from docpipe.models.pipeline import ProcessingSummary, StageOutcome
from docpipe.models.retrieval import AnswerResult, ChatMessage, Citation


class _VisibilityRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    visibility: Visibility = Field(default=Visibility.PRIVATE, alias="type")


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class RegisterDocumentRequest(_VisibilityRequest):
    """Register a binary that is already in blob storage."""

    storage_key: str = Field(min_length=1, description="Key, or full public URL")
    filename: str = Field(min_length=1)


class StageRequest(_VisibilityRequest):
    document_id: str = Field(min_length=1)


class AskRequest(_VisibilityRequest):
    question: str = Field(min_length=1)
    document_ids: list[str] = Field(default_factory=list)
    history: list[ChatMessage] = Field(default_factory=list)


class ReportRequest(_VisibilityRequest):
    document_ids: list[str] = Field(min_length=1)
    # Validated by the QA service so an unknown value is a 400, not a 422.
    report_type: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Body of every error response."""

    error: str
    stage: str | None = None
    detail: str


class DocumentResponse(BaseModel):
    id: str
    visibility: Visibility
    storage_key: str
    filename: str
    status: DocumentStatus
    chunk_count: int = 0
    page_count: int = 0
    retry_count: int = 0
    error_detail: str | None = None
    failed_stage: PipelineStage | None = None
    next_attempt_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_document(cls, document: Document) -> DocumentResponse:
        return cls(
            id=document.id,
            visibility=document.visibility,
            storage_key=document.ref.storage_key,
            filename=document.filename,
            status=document.status,
            chunk_count=document.chunk_count,
            page_count=len(document.page_boundaries),
            retry_count=document.retry_count,
            error_detail=document.error_detail,
            failed_stage=document.failed_stage,
            next_attempt_at=document.next_attempt_at,
            created_at=document.created_at,
            updated_at=document.updated_at,
        )


class StageResponse(BaseModel):
    document_id: str
    stage: PipelineStage
    ok: bool
    status: DocumentStatus | None = None
    detail: str | None = None
    count: int = 0

    @classmethod
    def from_outcome(cls, outcome: StageOutcome) -> StageResponse:
        return cls(
            document_id=outcome.document_id,
            stage=outcome.stage,
            ok=outcome.ok,
            status=outcome.status,
            detail=outcome.detail,
            count=outcome.count,
        )


class StageCounts(BaseModel):
    succeeded: list[str] = Field(default_factory=list)
    deferred: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)


class ProcessingRunResponse(BaseModel):
    """Result of one ``/continue-processing`` run."""

    extract: StageCounts
    chunk: StageCounts
    embed: StageCounts
    total_processed: int
    started_at: datetime
    finished_at: datetime | None = None

    @classmethod
    def from_summary(cls, summary: ProcessingSummary) -> ProcessingRunResponse:
        return cls(
            extract=StageCounts(**summary.extract.model_dump()),
            chunk=StageCounts(**summary.chunk.model_dump()),
            embed=StageCounts(**summary.embed.model_dump()),
            total_processed=summary.total_processed,
            started_at=summary.started_at,
            finished_at=summary.finished_at,
        )


class ProcessingStatusResponse(BaseModel):
    documents: list[DocumentResponse]
    total: int


class AnswerResponse(BaseModel):
    answer: str
    citations: list[Citation] = Field(default_factory=list)
    context_tokens: int = 0

    @classmethod
    def from_result(cls, result: AnswerResult) -> AnswerResponse:
        return cls(
            answer=result.answer,
            citations=list(result.citations),
            context_tokens=result.context_tokens,
        )


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    providers: dict[str, str] = Field(default_factory=dict)
