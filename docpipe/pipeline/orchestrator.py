"""Drives documents through extract -> chunk -> embed.

ARCHITECTURE NOTE:
    The orchestrator decides every document status write.  The stage
    services (extractor, chunking strategy, embedder) are pure with
    respect to document state: they read inputs and return results, and
    the orchestrator turns the result, or the exception, into a
    conditional status update.

    Each stage invocation follows the same pattern:
        1. Claim the document: compare-and-set from the stage's ready
           status (or an expired lease on its in-flight status) to the
           in-flight status, taking a lease.
        2. Run the stage service.
        3. Compare-and-set from the in-flight status to the done status,
           clearing retry bookkeeping.  The write also requires the
           row to still carry this claim's lease; for the chunk stage
           the chunk rows and the status change share one transaction
           in the chunk store.
        4. On failure classify the exception:
             fatal      -> ``error`` with ``failed_stage``
             transient  -> keep status, release lease, back off
             no chunks  -> keep status, release lease
           A transient failure past ``max_retries`` is dead-lettered into
           ``error``.

    ``run_once`` does this for a batch of documents per stage, oldest
    first, with documents inside a stage running concurrently; one
    document's failure never cancels another's.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any
from uuid import uuid4

import httpx
import structlog

from docpipe.models.chunk import Chunk
from docpipe.models.document import (
    Document,
    DocumentRef,
    DocumentStatus,
    PipelineStage,
    Visibility,
)
from docpipe.models.pipeline import ProcessingSummary, StageOutcome
from docpipe.pipeline.state_machine import (
    StageTransition,
    cooldown_for,
    is_fatal,
    is_forward,
    retry_target,
    transition_for,
)
from docpipe.utils.concurrency import settle_all
from docpipe.utils.errors import (
    DocpipeError,
    DocumentNotFoundError,
    InvalidTransitionError,
    NoChunksFoundError,
)
from docpipe.utils.logging import document_context, get_logger

if TYPE_CHECKING:
    from docpipe.config.app_config import OrchestratorConfig
    from docpipe.interfaces.blob_storage_provider import IBlobStorageProvider
    from docpipe.interfaces.chunk_store import IChunkStore
    from docpipe.interfaces.chunking_strategy import IChunkingStrategy
    from docpipe.interfaces.document_store import IDocumentStore
    from docpipe.services.ingestion.embedder import ChunkEmbedder
    from docpipe.services.ingestion.extractor import DocumentExtractor


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


class PipelineOrchestrator:
    """Status state machine and batch runner for the document pipeline.

    Parameters
    ----------
    document_store:
        Document metadata with compare-and-set status writes.
    chunk_store:
        Chunk rows; used for the already-chunked guard and chunk writes.
    blob_storage:
        Source of document binaries.
    extractor:
        Extract stage service.
    chunking_strategy:
        Chunk stage service.
    embedder:
        Embed stage service.
    config:
        Batch caps, lease length and retry policy.
    http_client:
        Used only to notify ``config.continue_url`` after extraction.
    continue_secret:
        Bearer token sent with that notification.
    clock:
        Returns the current UTC time; injectable for tests.
    """

    def __init__(
        self,
        document_store: IDocumentStore,
        chunk_store: IChunkStore,
        blob_storage: IBlobStorageProvider,
        extractor: DocumentExtractor,
        chunking_strategy: IChunkingStrategy,
        embedder: ChunkEmbedder,
        config: OrchestratorConfig,
        http_client: httpx.AsyncClient | None = None,
        continue_secret: str = "",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._documents = document_store
        self._chunks = chunk_store
        self._blob_storage = blob_storage
        self._extractor = extractor
        self._chunking_strategy = chunking_strategy
        self._embedder = embedder
        self._config = config
        self._http_client = http_client
        self._continue_secret = continue_secret
        self._clock = clock or _utcnow
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Registration and lookup
    # ------------------------------------------------------------------

    async def register(self, ref: DocumentRef, filename: str) -> Document:
        """Record a stored binary as a new ``pending`` document."""
        document = Document(id=uuid4().hex, ref=ref, filename=filename)
        created = await self._documents.create(document)
        self._logger.info(
            "document_registered",
            document_id=created.id,
            visibility=ref.visibility.value,
            filename=filename,
        )
        return created

    async def upload(self, ref: DocumentRef, filename: str, data: bytes) -> Document:
        """Store *data* under *ref*, then register it."""
        await self._blob_storage.put(ref, data)
        return await self.register(ref, filename)

    async def get_document(self, document_id: str, visibility: Visibility) -> Document:
        """Return a document or raise :class:`DocumentNotFoundError`."""
        document = await self._documents.get(document_id, visibility)
        if document is None:
            raise DocumentNotFoundError(message=f"Document {document_id} not found")
        return document

    async def processing_status(self, limit: int = 100) -> list[Document]:
        """Documents not yet ``embedded``, oldest first."""
        return await self._documents.list_unfinished(limit=limit)

    # ------------------------------------------------------------------
    # Single-document stage triggers
    # ------------------------------------------------------------------

    async def extract(self, document_id: str, visibility: Visibility) -> StageOutcome:
        return await self._trigger(document_id, visibility, PipelineStage.EXTRACT)

    async def chunk(self, document_id: str, visibility: Visibility) -> StageOutcome:
        return await self._trigger(document_id, visibility, PipelineStage.CHUNK)

    async def embed(self, document_id: str, visibility: Visibility) -> StageOutcome:
        return await self._trigger(document_id, visibility, PipelineStage.EMBED)

    async def retry_document(self, document_id: str, visibility: Visibility) -> Document:
        """Move a document out of ``error`` into the stage that failed.

        Raises
        ------
        DocumentNotFoundError
            If the document does not exist.
        InvalidTransitionError
            If the document is not in ``error``.
        """
        document = await self.get_document(document_id, visibility)
        if document.status is not DocumentStatus.ERROR:
            raise InvalidTransitionError(
                message=f"Only documents in 'error' can be retried (status is '{document.status.value}')",
            )
        target = retry_target(document.failed_stage)
        updated = await self._transition(
            document,
            DocumentStatus.ERROR,
            status=target,
            error_detail=None,
            failed_stage=None,
            retry_count=0,
            next_attempt_at=None,
            claimed_until=None,
        )
        self._logger.info(
            "document_retried",
            document_id=document_id,
            failed_stage=document.failed_stage.value if document.failed_stage else None,
            status=target.value,
        )
        return updated

    # ------------------------------------------------------------------
    # Batch run
    # ------------------------------------------------------------------

    async def run_once(self) -> ProcessingSummary:
        """Advance up to ``batch_size`` ready documents through each stage.

        Stages run in order (extract, chunk, embed), so a document
        extracted early in the run may also be chunked and embedded in the
        same run.  Documents cooling down or under a live lease are
        skipped.
        """
        summary = ProcessingSummary()
        semaphore = asyncio.Semaphore(self._config.concurrency)

        for stage in PipelineStage:
            transition = transition_for(stage)
            ready = await self._documents.list_ready(
                transition.ready,
                transition.in_flight,
                now=self._clock(),
                limit=self._config.batch_size,
            )
            if not ready:
                continue

            successes, failures = await settle_all(
                {doc.id: self._run_stage(doc, transition) for doc in ready},
                semaphore=semaphore,
                logger=self._logger,
                error_event="stage_job_crashed",
            )
            for outcome in successes.values():
                if outcome is not None:
                    summary = summary.record(outcome)
            for document_id, exc in failures.items():
                summary = summary.record(
                    StageOutcome(
                        document_id=document_id,
                        stage=stage,
                        ok=False,
                        detail=str(exc),
                        deferred=True,
                    )
                )

        summary = summary.finish()
        self._logger.info(
            "processing_run_complete",
            extracted=len(summary.extract.succeeded),
            chunked=len(summary.chunk.succeeded),
            embedded=len(summary.embed.succeeded),
            deferred=sum(len(s.deferred) for s in (summary.extract, summary.chunk, summary.embed)),
            failed=sum(len(s.failed) for s in (summary.extract, summary.chunk, summary.embed)),
        )
        return summary

    # ------------------------------------------------------------------
    # Stage execution
    # ------------------------------------------------------------------

    async def _trigger(
        self, document_id: str, visibility: Visibility, stage: PipelineStage
    ) -> StageOutcome:
        """Run one stage for one document, ignoring any cooldown.

        Stage errors are recorded on the document and then re-raised.
        """
        document = await self.get_document(document_id, visibility)
        transition = transition_for(stage)

        if document.status.is_at_least(transition.done):
            return self._already_done(document, transition)
        if document.status not in (transition.ready, transition.in_flight):
            raise InvalidTransitionError(
                message=(
                    f"Cannot {stage.value} document in status '{document.status.value}'"
                ),
                stage=stage.value,
            )

        outcome = await self._run_stage(document, transition, raise_errors=True)
        if outcome is None:
            raise InvalidTransitionError(
                message=f"Document {document_id} is being processed by another worker",
                stage=stage.value,
            )
        return outcome

    async def _run_stage(
        self,
        document: Document,
        transition: StageTransition,
        raise_errors: bool = False,
    ) -> StageOutcome | None:
        """Claim, execute and record one stage for one document.

        Returns ``None`` when the claim was lost to another worker.
        """
        stage = transition.stage
        now = self._clock()
        lease_until = now + timedelta(seconds=self._config.lease_seconds)
        claimed = await self._documents.claim(
            document.id,
            document.visibility,
            ready_status=transition.ready,
            in_flight_status=transition.in_flight,
            now=now,
            lease_until=lease_until,
        )
        if claimed is None:
            self._logger.debug("claim_lost", document_id=document.id, stage=stage.value)
            return None

        with document_context(claimed.id, stage.value):
            try:
                count, done = await self._execute(claimed, transition, lease_until)
            except Exception as exc:
                outcome = await self._record_failure(claimed, transition, exc, lease_until)
                if raise_errors:
                    raise
                return outcome

            self._logger.info("stage_complete", status=done.status.value, count=count)
            if stage is PipelineStage.EXTRACT:
                await self._notify_continue(done)
            return StageOutcome(
                document_id=done.id,
                stage=stage,
                ok=True,
                status=done.status,
                count=count,
            )

    async def _execute(
        self,
        document: Document,
        transition: StageTransition,
        lease_until: datetime,
    ) -> tuple[int, Document]:
        """Run the stage service and record the done status.

        Every write is conditional on *lease_until* still being the lease
        on the row.  Returns ``(count, done_document)``.
        """
        stage = transition.stage
        fields: dict[str, Any] = {}

        if stage is PipelineStage.EXTRACT:
            data = await self._blob_storage.fetch(document.ref)
            result = await self._extractor.extract(data, document.filename)
            count = len(result.text)
            fields = {
                "extracted_text": result.text,
                "page_boundaries": result.page_boundaries,
            }

        elif stage is PipelineStage.CHUNK:
            result = await self._chunking_strategy.chunk(
                document.extracted_text or "", document.page_boundaries
            )
            chunks = [
                Chunk.from_draft(draft, document.id, document.visibility)
                for draft in result.chunks
            ]
            if result.dropped_blocks or result.fell_back:
                self._logger.warning(
                    "chunking_degraded",
                    strategy=result.strategy,
                    dropped_blocks=result.dropped_blocks,
                    fell_back=result.fell_back,
                )
            # Replaces rows left by an earlier, interrupted attempt and marks
            # the document chunked in the same transaction.
            written = await self._chunks.replace_chunks(
                document.id, document.visibility, chunks, lease_until=lease_until
            )
            if written is None:
                raise InvalidTransitionError(
                    message=f"Document {document.id} is no longer claimed for chunking",
                    stage=stage.value,
                )
            return written, await self.get_document(document.id, document.visibility)

        else:
            count = await self._embedder.embed_document(document.id, document.visibility)

        done = await self._transition(
            document,
            transition.in_flight,
            held_lease=lease_until,
            status=transition.done,
            retry_count=0,
            next_attempt_at=None,
            claimed_until=None,
            **fields,
        )
        return count, done

    async def _record_failure(
        self,
        document: Document,
        transition: StageTransition,
        exc: Exception,
        lease_until: datetime,
    ) -> StageOutcome:
        """Turn a stage exception into a status update and an outcome."""
        stage = transition.stage

        if isinstance(exc, InvalidTransitionError):
            # The lease expired and another worker moved the document on.
            self._logger.warning("stage_result_discarded", error=str(exc))
            return StageOutcome(
                document_id=document.id, stage=stage, ok=False, detail=str(exc), deferred=True
            )

        if is_fatal(exc):
            self._logger.error("stage_failed_fatal", error_type=type(exc).__name__, error=str(exc))
            await self._fail(document, transition, lease_until, str(exc))
            return StageOutcome(
                document_id=document.id,
                stage=stage,
                ok=False,
                status=DocumentStatus.ERROR,
                detail=str(exc),
            )

        if isinstance(exc, NoChunksFoundError):
            self._logger.warning("stage_no_chunks", error=str(exc))
            await self._release(document, transition, lease_until)
            return StageOutcome(
                document_id=document.id,
                stage=stage,
                ok=False,
                status=transition.in_flight,
                detail=str(exc),
                deferred=True,
            )

        retry_count = document.retry_count + 1
        if retry_count >= self._config.max_retries:
            detail = f"Gave up after {retry_count} attempts: {exc}"
            self._logger.error(
                "stage_dead_lettered",
                retry_count=retry_count,
                error_type=type(exc).__name__,
                error=str(exc),
            )
            await self._fail(document, transition, lease_until, detail, retry_count=retry_count)
            return StageOutcome(
                document_id=document.id,
                stage=stage,
                ok=False,
                status=DocumentStatus.ERROR,
                detail=detail,
            )

        cooldown = cooldown_for(
            retry_count,
            self._config.base_cooldown_seconds,
            self._config.max_cooldown_seconds,
        )
        self._logger.warning(
            "stage_failed_transient",
            retry_count=retry_count,
            cooldown_seconds=cooldown.total_seconds(),
            error_type=type(exc).__name__,
            error=str(exc),
            exc_info=not isinstance(exc, DocpipeError),
        )
        await self._release(
            document,
            transition,
            lease_until,
            retry_count=retry_count,
            next_attempt_at=self._clock() + cooldown,
        )
        return StageOutcome(
            document_id=document.id,
            stage=stage,
            ok=False,
            status=transition.in_flight,
            detail=str(exc),
            deferred=True,
        )

    # ------------------------------------------------------------------
    # Status writes
    # ------------------------------------------------------------------

    async def _transition(
        self,
        document: Document,
        expected: DocumentStatus,
        held_lease: datetime | None = None,
        **fields: Any,
    ) -> Document:
        """Compare-and-set *document* from *expected*; raise if it moved."""
        target = fields.get("status")
        if target is not None and not is_forward(expected, target):
            raise InvalidTransitionError(
                message=f"Illegal transition {expected.value} -> {target.value}",
            )
        updated = await self._documents.update_if_status(
            document.id, document.visibility, [expected], held_lease=held_lease, **fields
        )
        if updated is None:
            raise InvalidTransitionError(
                message=f"Document {document.id} is no longer '{expected.value}'",
            )
        return updated

    async def _fail(
        self,
        document: Document,
        transition: StageTransition,
        lease_until: datetime,
        detail: str,
        **fields: Any,
    ) -> None:
        updated = await self._documents.update_if_status(
            document.id,
            document.visibility,
            [transition.in_flight],
            held_lease=lease_until,
            status=DocumentStatus.ERROR,
            failed_stage=transition.stage,
            error_detail=detail,
            claimed_until=None,
            **fields,
        )
        if updated is None:
            self._logger.warning("error_status_not_recorded", detail=detail)

    async def _release(
        self,
        document: Document,
        transition: StageTransition,
        lease_until: datetime,
        **fields: Any,
    ) -> None:
        updated = await self._documents.update_if_status(
            document.id,
            document.visibility,
            [transition.in_flight],
            held_lease=lease_until,
            claimed_until=None,
            **fields,
        )
        if updated is None:
            self._logger.warning("lease_release_not_recorded")

    def _already_done(self, document: Document, transition: StageTransition) -> StageOutcome:
        self._logger.info(
            "stage_already_done",
            document_id=document.id,
            stage=transition.stage.value,
            status=document.status.value,
        )
        count = document.chunk_count if transition.stage is PipelineStage.CHUNK else 0
        return StageOutcome(
            document_id=document.id,
            stage=transition.stage,
            ok=True,
            status=document.status,
            detail="already done",
            count=count,
        )

    async def _notify_continue(self, document: Document) -> None:
        """POST to the continue-processing webhook; failures are only logged."""
        url = self._config.continue_url
        if not url or self._http_client is None:
            return
        headers = {"Authorization": f"Bearer {self._continue_secret}"} if self._continue_secret else {}
        try:
            response = await self._http_client.post(
                url, json={"document_id": document.id}, headers=headers
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self._logger.warning("continue_notify_failed", url=url, error=str(exc))
