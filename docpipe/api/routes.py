"""FastAPI routes for the docpipe service.

Service dependencies are resolved from ``app.state`` (populated at startup
by ``main._build_all``) through ``Depends`` with the ``Annotated`` pattern.

# ─── API ROUTE MAP ─────────────────────────────────────────────────────
#
# Endpoint                          Method  Description
# ─────────────────────────────────────────────────────────────────────
# /api/v1/documents                 POST    Register a stored binary
# /api/v1/documents/upload          POST    Upload bytes, then register
# /api/v1/documents/{id}            GET     Document status view
# /api/v1/documents/{id}/retry      POST    Retry a document out of error
# /api/v1/extract                   POST    Run the extract stage
# /api/v1/chunk                     POST    Run the chunk stage
# /api/v1/embed                     POST    Run the embed stage
# /api/v1/continue-processing       POST    One orchestrator run (bearer)
# /api/v1/processing-status         GET     Documents not yet embedded
# /api/v1/ask                       POST    Question answering
# /api/v1/reports                   POST    Report generation
# /api/v1/health                    GET     Liveness + provider names
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import hmac
from pathlib import PurePosixPath
from typing import Annotated, Any
from uuid import uuid4

import structlog
from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, Query, Request, UploadFile
from pydantic import ValidationError

from docpipe.api.schemas import (
    AnswerResponse,
    AskRequest,
    DocumentResponse,
    HealthResponse,
    ProcessingRunResponse,
    ProcessingStatusResponse,
    RegisterDocumentRequest,
    ReportRequest,
    StageRequest,
    StageResponse,
)
from docpipe.models.document import DocumentRef, Visibility
from docpipe.pipeline.orchestrator import PipelineOrchestrator
from docpipe.services.qa_service import QAService
from docpipe.utils.errors import InvalidInputError
from docpipe.utils.logging import get_logger

_logger: structlog.BoundLogger = get_logger(__name__)

router = APIRouter(prefix="/api/v1")

_MAX_UPLOAD_BYTES = 50 * 1024 * 1024


# ---------------------------------------------------------------------------
# Dependency helpers
# ---------------------------------------------------------------------------


def _get_orchestrator(request: Request) -> PipelineOrchestrator:
    return request.app.state.orchestrator


def _get_qa_service(request: Request) -> QAService:
    qa_service = getattr(request.app.state, "qa_service", None)
    if qa_service is None:
        raise HTTPException(status_code=503, detail="Question answering is not configured")
    return qa_service


def _get_continue_secret(request: Request) -> str:
    return getattr(request.app.state, "continue_secret", "") or ""


OrchestratorDep = Annotated[PipelineOrchestrator, Depends(_get_orchestrator)]
QAServiceDep = Annotated[QAService, Depends(_get_qa_service)]
ContinueSecretDep = Annotated[str, Depends(_get_continue_secret)]
VisibilityQuery = Annotated[Visibility, Query(alias="type")]


def _make_ref(visibility: Visibility, storage_key: str) -> DocumentRef:
    try:
        return DocumentRef(visibility=visibility, storage_key=storage_key)
    except ValidationError as exc:
        raise InvalidInputError(message=f"Invalid storage key: {storage_key!r}") from exc


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------


@router.post("/documents", response_model=DocumentResponse, status_code=201)
async def register_document(
    body: RegisterDocumentRequest,
    orchestrator: OrchestratorDep,
) -> DocumentResponse:
    """Register a binary already present in blob storage as ``pending``."""
    ref = _make_ref(body.visibility, body.storage_key)
    document = await orchestrator.register(ref, body.filename)
    return DocumentResponse.from_document(document)


@router.post("/documents/upload", response_model=DocumentResponse, status_code=201)
async def upload_document(
    orchestrator: OrchestratorDep,
    file: Annotated[UploadFile, File()],
    visibility: Annotated[Visibility, Form(alias="type")] = Visibility.PRIVATE,
    storage_key: Annotated[str | None, Form()] = None,
) -> DocumentResponse:
    """Store an uploaded file, then register it."""
    filename = PurePosixPath(file.filename or "").name
    if not filename:
        raise InvalidInputError(message="Uploaded file has no filename")

    data = await file.read(_MAX_UPLOAD_BYTES + 1)
    if len(data) > _MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="File too large")
    if not data:
        raise InvalidInputError(message="Uploaded file is empty")

    ref = _make_ref(visibility, storage_key or f"{uuid4().hex}/{filename}")
    document = await orchestrator.upload(ref, filename, data)
    return DocumentResponse.from_document(document)


@router.get("/documents/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: str,
    orchestrator: OrchestratorDep,
    visibility: VisibilityQuery = Visibility.PRIVATE,
) -> DocumentResponse:
    document = await orchestrator.get_document(document_id, visibility)
    return DocumentResponse.from_document(document)


@router.post("/documents/{document_id}/retry", response_model=DocumentResponse)
async def retry_document(
    document_id: str,
    orchestrator: OrchestratorDep,
    visibility: VisibilityQuery = Visibility.PRIVATE,
) -> DocumentResponse:
    """Move a document out of ``error`` into the stage that failed."""
    document = await orchestrator.retry_document(document_id, visibility)
    return DocumentResponse.from_document(document)


# ---------------------------------------------------------------------------
# Stage triggers
# ---------------------------------------------------------------------------


@router.post("/extract", response_model=StageResponse)
async def extract_document(body: StageRequest, orchestrator: OrchestratorDep) -> StageResponse:
    outcome = await orchestrator.extract(body.document_id, body.visibility)
    return StageResponse.from_outcome(outcome)


@router.post("/chunk", response_model=StageResponse)
async def chunk_document(body: StageRequest, orchestrator: OrchestratorDep) -> StageResponse:
    outcome = await orchestrator.chunk(body.document_id, body.visibility)
    return StageResponse.from_outcome(outcome)


@router.post("/embed", response_model=StageResponse)
async def embed_document(body: StageRequest, orchestrator: OrchestratorDep) -> StageResponse:
    outcome = await orchestrator.embed(body.document_id, body.visibility)
    return StageResponse.from_outcome(outcome)


@router.post("/continue-processing", response_model=ProcessingRunResponse)
async def continue_processing(
    orchestrator: OrchestratorDep,
    secret: ContinueSecretDep,
    authorization: Annotated[str | None, Header()] = None,
) -> ProcessingRunResponse:
    """Run the orchestrator once.  Requires ``Authorization: Bearer <secret>``."""
    scheme, _, token = (authorization or "").partition(" ")
    authorized = (
        bool(secret)
        and scheme.lower() == "bearer"
        and hmac.compare_digest(token.encode(), secret.encode())
    )
    if not authorized:
        _logger.warning("continue_processing_unauthorized", configured=bool(secret))
        raise HTTPException(
            status_code=401,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )
    summary = await orchestrator.run_once()
    return ProcessingRunResponse.from_summary(summary)


@router.get("/processing-status", response_model=ProcessingStatusResponse)
async def processing_status(
    orchestrator: OrchestratorDep,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> ProcessingStatusResponse:
    documents = await orchestrator.processing_status(limit=limit)
    return ProcessingStatusResponse(
        documents=[DocumentResponse.from_document(d) for d in documents],
        total=len(documents),
    )


# ---------------------------------------------------------------------------
# Question answering and reports
# ---------------------------------------------------------------------------


@router.post("/ask", response_model=AnswerResponse)
async def ask_question(body: AskRequest, qa_service: QAServiceDep) -> AnswerResponse:
    result = await qa_service.ask(
        question=body.question,
        document_ids=body.document_ids or None,
        visibility=body.visibility,
        history=body.history,
    )
    return AnswerResponse.from_result(result)


@router.post("/reports", response_model=AnswerResponse)
async def generate_report(body: ReportRequest, qa_service: QAServiceDep) -> AnswerResponse:
    result = await qa_service.generate_report(
        document_ids=body.document_ids,
        visibility=body.visibility,
        report_type=body.report_type,
    )
    return AnswerResponse.from_result(result)


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@router.get("/health", response_model=HealthResponse)
async def health(request: Request) -> HealthResponse:
    registry: dict[str, Any] = getattr(request.app.state, "provider_registry", {}) or {}
    return HealthResponse(
        version=getattr(request.app.state, "version", "0.1.0"),
        providers={key: str(value) for key, value in registry.items()},
    )
