"""Integration tests for PipelineOrchestrator.

Real SQLite stores, local blob storage, the real extractor and the
deterministic chunker; only the embedding provider and vector index are
mocked.  A controllable clock drives leases and cooldowns.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock

import httpx
import pytest

from docpipe.config.app_config import OrchestratorConfig
from docpipe.interfaces.chunking_strategy import IChunkingStrategy
from docpipe.models.chunk import ChunkingResult
from docpipe.models.document import DocumentRef, DocumentStatus, PipelineStage, Visibility
from docpipe.pipeline.orchestrator import PipelineOrchestrator
from docpipe.providers.storage.local_blob_storage import LocalBlobStorage
from docpipe.services.ingestion.chunker import DeterministicChunkingStrategy
from docpipe.services.ingestion.embedder import ChunkEmbedder
from docpipe.services.ingestion.extractor import DocumentExtractor
from docpipe.utils.errors import (
    DocumentNotFoundError,
    InvalidTransitionError,
    PartialEmbeddingFailureError,
    RAGError,
)

# Ten 100-char windows, each starting with its two-digit index.
_TEN_WINDOW_TEXT = "".join(f"{i:02d}" + "z" * 98 for i in range(10))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)  # noqa: UP017

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _failing_embed(fail_prefixes: set[str]):
    """Embed side effect that raises for texts starting with any prefix in *fail_prefixes*.

    The set is read on every call, so tests can clear it to "fix" the provider.
    """

    async def _embed(texts: list[str]) -> list[list[float]]:
        if any(text[:2] in fail_prefixes for text in texts):
            raise RAGError(message="embedding backend unavailable", provider_name="mock-embedding")
        return [[0.5, 0.25, 0.125, 1.0] for _ in texts]

    return _embed


class _StalledChunker(DeterministicChunkingStrategy):
    """Deterministic chunker that waits for *release* before returning."""

    def __init__(self, release: asyncio.Event, window_chars: int = 100) -> None:
        super().__init__(window_chars=window_chars)
        self.started = asyncio.Event()
        self._release = release

    async def chunk(self, text: str, page_boundaries: list[int]) -> ChunkingResult:
        self.started.set()
        await self._release.wait()
        return await super().chunk(text, page_boundaries)


@pytest.fixture
def clock() -> _Clock:
    return _Clock()


@pytest.fixture
def blob_storage(tmp_path: Path) -> LocalBlobStorage:
    return LocalBlobStorage(tmp_path / "blobs")


@pytest.fixture
def make_orchestrator(
    document_store, chunk_store, blob_storage, mock_embedding_provider, mock_vector_index, clock
):
    def _factory(
        window_chars: int = 100,
        http_client: httpx.AsyncClient | None = None,
        chunking_strategy: IChunkingStrategy | None = None,
        **config_overrides,
    ) -> PipelineOrchestrator:
        config = OrchestratorConfig(
            **{
                "batch_size": 5,
                "concurrency": 2,
                "lease_seconds": 300,
                "max_retries": 3,
                "base_cooldown_seconds": 60,
                "max_cooldown_seconds": 600,
                **config_overrides,
            }
        )
        embedder = ChunkEmbedder(
            chunk_store=chunk_store,
            embedding_provider=mock_embedding_provider,
            vector_index=mock_vector_index,
            batch_size=1,
        )
        return PipelineOrchestrator(
            document_store=document_store,
            chunk_store=chunk_store,
            blob_storage=blob_storage,
            extractor=DocumentExtractor(min_text_chars=20),
            chunking_strategy=chunking_strategy
            or DeterministicChunkingStrategy(window_chars=window_chars),
            embedder=embedder,
            config=config,
            http_client=http_client,
            continue_secret="s3cret",
            clock=clock,
        )

    return _factory


async def _upload(orchestrator: PipelineOrchestrator, text: str, name: str = "report.txt"):
    ref = DocumentRef(visibility=Visibility.PRIVATE, storage_key=f"acme/{name}")
    return await orchestrator.upload(ref, name, text.encode("utf-8"))


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------


class TestRunOnce:
    async def test_document_flows_through_every_stage(
        self, make_orchestrator, chunk_store, mock_vector_index
    ) -> None:
        orchestrator = make_orchestrator()
        document = await _upload(orchestrator, _TEN_WINDOW_TEXT)
        assert document.status is DocumentStatus.PENDING

        summary = await orchestrator.run_once()

        assert summary.extract.succeeded == [document.id]
        assert summary.chunk.succeeded == [document.id]
        assert summary.embed.succeeded == [document.id]
        assert summary.finished_at is not None

        stored = await orchestrator.get_document(document.id, Visibility.PRIVATE)
        assert stored.status is DocumentStatus.EMBEDDED
        assert stored.chunk_count == 10
        assert stored.extracted_text == _TEN_WINDOW_TEXT
        assert stored.claimed_until is None
        assert await chunk_store.list_missing_embeddings(document.id, Visibility.PRIVATE) == []
        upserted = mock_vector_index.upsert.await_args.args[0]
        assert len(upserted) == 10

    async def test_three_thousand_chars_make_three_contiguous_chunks(
        self, make_orchestrator, chunk_store
    ) -> None:
        orchestrator = make_orchestrator(window_chars=1000)
        document = await _upload(orchestrator, "abcdefghij" * 300)

        await orchestrator.run_once()

        chunks = await chunk_store.list_chunks(document.id, Visibility.PRIVATE)
        assert [c.chunk_index for c in chunks] == [0, 1, 2]
        assert [(c.start_char, c.end_char) for c in chunks] == [(0, 1000), (1000, 2000), (2000, 3000)]
        assert all(c.embedding is not None for c in chunks)

    async def test_nothing_ready_is_an_empty_summary(self, make_orchestrator) -> None:
        summary = await make_orchestrator().run_once()
        assert summary.total_processed == 0

    async def test_batch_size_caps_each_stage(self, make_orchestrator) -> None:
        orchestrator = make_orchestrator(batch_size=2)
        for i in range(3):
            await _upload(orchestrator, _TEN_WINDOW_TEXT, name=f"r{i}.txt")

        summary = await orchestrator.run_once()
        assert len(summary.extract.succeeded) == 2

        remaining = await orchestrator.processing_status()
        assert sorted(d.status.value for d in remaining) == ["pending"]

    async def test_embedded_documents_leave_processing_status(self, make_orchestrator) -> None:
        orchestrator = make_orchestrator()
        await _upload(orchestrator, _TEN_WINDOW_TEXT)
        assert len(await orchestrator.processing_status()) == 1
        await orchestrator.run_once()
        assert await orchestrator.processing_status() == []

    async def test_extraction_notifies_continue_url(self, make_orchestrator) -> None:
        calls: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(200, json={})

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        orchestrator = make_orchestrator(
            http_client=client, continue_url="http://worker/api/v1/continue-processing"
        )
        document = await _upload(orchestrator, _TEN_WINDOW_TEXT)

        await orchestrator.extract(document.id, Visibility.PRIVATE)

        assert len(calls) == 1
        assert calls[0].headers["Authorization"] == "Bearer s3cret"
        assert json.loads(calls[0].content) == {"document_id": document.id}

    async def test_failed_notification_does_not_fail_extraction(self, make_orchestrator) -> None:
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        orchestrator = make_orchestrator(
            http_client=client, continue_url="http://worker/api/v1/continue-processing"
        )
        document = await _upload(orchestrator, _TEN_WINDOW_TEXT)

        outcome = await orchestrator.extract(document.id, Visibility.PRIVATE)
        assert outcome.ok
        assert outcome.status is DocumentStatus.EXTRACTED


# ---------------------------------------------------------------------------
# Manual stage triggers
# ---------------------------------------------------------------------------


class TestStageTriggers:
    async def test_stages_in_order(self, make_orchestrator) -> None:
        orchestrator = make_orchestrator()
        document = await _upload(orchestrator, _TEN_WINDOW_TEXT)

        extracted = await orchestrator.extract(document.id, Visibility.PRIVATE)
        chunked = await orchestrator.chunk(document.id, Visibility.PRIVATE)
        embedded = await orchestrator.embed(document.id, Visibility.PRIVATE)

        assert extracted.count == len(_TEN_WINDOW_TEXT)
        assert chunked.count == 10
        assert embedded.count == 10
        assert embedded.status is DocumentStatus.EMBEDDED

    async def test_repeated_chunk_trigger_is_a_no_op(self, make_orchestrator, chunk_store) -> None:
        orchestrator = make_orchestrator()
        document = await _upload(orchestrator, _TEN_WINDOW_TEXT)
        await orchestrator.extract(document.id, Visibility.PRIVATE)
        await orchestrator.chunk(document.id, Visibility.PRIVATE)
        first_ids = [c.id for c in await chunk_store.list_chunks(document.id, Visibility.PRIVATE)]

        again = await orchestrator.chunk(document.id, Visibility.PRIVATE)

        assert again.ok
        assert again.detail == "already done"
        assert again.count == 10
        second_ids = [c.id for c in await chunk_store.list_chunks(document.id, Visibility.PRIVATE)]
        assert second_ids == first_ids

    async def test_earlier_stage_trigger_never_moves_status_back(self, make_orchestrator) -> None:
        orchestrator = make_orchestrator()
        document = await _upload(orchestrator, _TEN_WINDOW_TEXT)
        await orchestrator.run_once()

        outcome = await orchestrator.extract(document.id, Visibility.PRIVATE)

        assert outcome.detail == "already done"
        stored = await orchestrator.get_document(document.id, Visibility.PRIVATE)
        assert stored.status is DocumentStatus.EMBEDDED

    async def test_skipping_a_stage_is_rejected(self, make_orchestrator) -> None:
        orchestrator = make_orchestrator()
        document = await _upload(orchestrator, _TEN_WINDOW_TEXT)

        with pytest.raises(InvalidTransitionError):
            await orchestrator.embed(document.id, Visibility.PRIVATE)

        stored = await orchestrator.get_document(document.id, Visibility.PRIVATE)
        assert stored.status is DocumentStatus.PENDING

    async def test_unknown_document(self, make_orchestrator) -> None:
        with pytest.raises(DocumentNotFoundError):
            await make_orchestrator().extract("missing", Visibility.PRIVATE)

    async def test_visibility_is_part_of_identity(self, make_orchestrator) -> None:
        orchestrator = make_orchestrator()
        document = await _upload(orchestrator, _TEN_WINDOW_TEXT)
        with pytest.raises(DocumentNotFoundError):
            await orchestrator.extract(document.id, Visibility.PUBLIC)


# ---------------------------------------------------------------------------
# Failures, retries and leases
# ---------------------------------------------------------------------------


class TestFailureHandling:
    async def test_partial_embedding_resumes_with_remaining_chunks(
        self, make_orchestrator, mock_embedding_provider, mock_vector_index, chunk_store, clock
    ) -> None:
        failing = {"08", "09"}
        mock_embedding_provider.embed = AsyncMock(side_effect=_failing_embed(failing))
        orchestrator = make_orchestrator()
        document = await _upload(orchestrator, _TEN_WINDOW_TEXT)

        first = await orchestrator.run_once()

        assert first.embed.deferred == [document.id]
        stored = await orchestrator.get_document(document.id, Visibility.PRIVATE)
        assert stored.status is DocumentStatus.EMBEDDING
        assert stored.retry_count == 1
        assert stored.next_attempt_at == clock.now + timedelta(seconds=60)
        missing = await chunk_store.list_missing_embeddings(document.id, Visibility.PRIVATE)
        assert [c.chunk_index for c in missing] == [8, 9]
        mock_vector_index.upsert.assert_not_awaited()

        failing.clear()
        mock_embedding_provider.embed.reset_mock()
        clock.advance(61)
        second = await orchestrator.run_once()

        assert second.embed.succeeded == [document.id]
        sent = [call.args[0][0][:2] for call in mock_embedding_provider.embed.await_args_list]
        assert sent == ["08", "09"]
        stored = await orchestrator.get_document(document.id, Visibility.PRIVATE)
        assert stored.status is DocumentStatus.EMBEDDED
        assert stored.retry_count == 0
        assert len(mock_vector_index.upsert.await_args.args[0]) == 10

    async def test_cooldown_skips_document_until_due(
        self, make_orchestrator, mock_embedding_provider, clock
    ) -> None:
        failing = {"00"}
        mock_embedding_provider.embed = AsyncMock(side_effect=_failing_embed(failing))
        orchestrator = make_orchestrator()
        document = await _upload(orchestrator, _TEN_WINDOW_TEXT)
        await orchestrator.run_once()
        failing.clear()

        clock.advance(30)
        early = await orchestrator.run_once()
        assert early.total_processed == 0

        clock.advance(31)
        due = await orchestrator.run_once()
        assert due.embed.succeeded == [document.id]

    async def test_manual_trigger_ignores_cooldown(
        self, make_orchestrator, mock_embedding_provider
    ) -> None:
        failing = {"00"}
        mock_embedding_provider.embed = AsyncMock(side_effect=_failing_embed(failing))
        orchestrator = make_orchestrator()
        document = await _upload(orchestrator, _TEN_WINDOW_TEXT)
        await orchestrator.run_once()
        failing.clear()

        outcome = await orchestrator.embed(document.id, Visibility.PRIVATE)
        assert outcome.ok
        assert outcome.status is DocumentStatus.EMBEDDED

    async def test_manual_trigger_reraises_stage_error(
        self, make_orchestrator, mock_embedding_provider
    ) -> None:
        mock_embedding_provider.embed = AsyncMock(side_effect=_failing_embed({"00"}))
        orchestrator = make_orchestrator()
        document = await _upload(orchestrator, _TEN_WINDOW_TEXT)
        await orchestrator.extract(document.id, Visibility.PRIVATE)
        await orchestrator.chunk(document.id, Visibility.PRIVATE)

        with pytest.raises(PartialEmbeddingFailureError):
            await orchestrator.embed(document.id, Visibility.PRIVATE)

        stored = await orchestrator.get_document(document.id, Visibility.PRIVATE)
        assert stored.status is DocumentStatus.EMBEDDING
        assert stored.retry_count == 1

    async def test_dead_letter_then_retry(
        self, make_orchestrator, mock_embedding_provider, clock
    ) -> None:
        failing = {"00"}
        mock_embedding_provider.embed = AsyncMock(side_effect=_failing_embed(failing))
        orchestrator = make_orchestrator(max_retries=2)
        document = await _upload(orchestrator, _TEN_WINDOW_TEXT)

        await orchestrator.run_once()
        clock.advance(61)
        final = await orchestrator.run_once()

        assert final.embed.failed == [document.id]
        stored = await orchestrator.get_document(document.id, Visibility.PRIVATE)
        assert stored.status is DocumentStatus.ERROR
        assert stored.failed_stage is PipelineStage.EMBED
        assert stored.error_detail.startswith("Gave up after 2 attempts")

        # Dead-lettered documents are not picked up automatically.
        clock.advance(3600)
        assert (await orchestrator.run_once()).total_processed == 0

        failing.clear()
        retried = await orchestrator.retry_document(document.id, Visibility.PRIVATE)
        assert retried.status is DocumentStatus.CHUNKED
        assert retried.retry_count == 0
        assert retried.error_detail is None

        summary = await orchestrator.run_once()
        assert summary.embed.succeeded == [document.id]

    async def test_retry_requires_error_status(self, make_orchestrator) -> None:
        orchestrator = make_orchestrator()
        document = await _upload(orchestrator, _TEN_WINDOW_TEXT)
        with pytest.raises(InvalidTransitionError):
            await orchestrator.retry_document(document.id, Visibility.PRIVATE)

    async def test_unreadable_text_is_fatal(self, make_orchestrator) -> None:
        orchestrator = make_orchestrator()
        document = await _upload(orchestrator, "too short")

        summary = await orchestrator.run_once()

        assert summary.extract.failed == [document.id]
        stored = await orchestrator.get_document(document.id, Visibility.PRIVATE)
        assert stored.status is DocumentStatus.ERROR
        assert stored.failed_stage is PipelineStage.EXTRACT
        assert stored.retry_count == 0
        assert "too short" in stored.error_detail

    async def test_missing_binary_is_fatal(self, make_orchestrator) -> None:
        orchestrator = make_orchestrator()
        ref = DocumentRef(visibility=Visibility.PRIVATE, storage_key="acme/never-uploaded.txt")
        document = await orchestrator.register(ref, "never-uploaded.txt")

        await orchestrator.run_once()

        stored = await orchestrator.get_document(document.id, Visibility.PRIVATE)
        assert stored.status is DocumentStatus.ERROR
        assert stored.failed_stage is PipelineStage.EXTRACT

    async def test_one_failure_does_not_block_others(
        self, make_orchestrator, blob_storage
    ) -> None:
        orchestrator = make_orchestrator()
        good = await _upload(orchestrator, _TEN_WINDOW_TEXT, name="good.txt")
        bad = await _upload(orchestrator, "tiny", name="bad.txt")

        summary = await orchestrator.run_once()

        assert summary.extract.succeeded == [good.id]
        assert summary.extract.failed == [bad.id]
        assert summary.embed.succeeded == [good.id]

    async def test_live_lease_blocks_and_expired_lease_is_reclaimed(
        self, make_orchestrator, document_store, clock
    ) -> None:
        orchestrator = make_orchestrator(lease_seconds=300)
        document = await _upload(orchestrator, _TEN_WINDOW_TEXT)

        # Another worker claims the document and then dies.
        claimed = await document_store.claim(
            document.id,
            Visibility.PRIVATE,
            ready_status=DocumentStatus.PENDING,
            in_flight_status=DocumentStatus.EXTRACTING,
            now=clock.now,
            lease_until=clock.now + timedelta(seconds=300),
        )
        assert claimed is not None

        assert (await orchestrator.run_once()).total_processed == 0

        clock.advance(301)
        summary = await orchestrator.run_once()
        assert summary.extract.succeeded == [document.id]
        assert summary.embed.succeeded == [document.id]

    async def test_trigger_on_live_lease_is_rejected(
        self, make_orchestrator, document_store, clock
    ) -> None:
        orchestrator = make_orchestrator()
        document = await _upload(orchestrator, _TEN_WINDOW_TEXT)
        await document_store.claim(
            document.id,
            Visibility.PRIVATE,
            ready_status=DocumentStatus.PENDING,
            in_flight_status=DocumentStatus.EXTRACTING,
            now=clock.now,
            lease_until=clock.now + timedelta(seconds=300),
        )

        with pytest.raises(InvalidTransitionError):
            await orchestrator.extract(document.id, Visibility.PRIVATE)


class TestExpiredLeaseRace:
    async def test_stale_chunk_write_cannot_replace_embedded_chunks(
        self, make_orchestrator, chunk_store, clock
    ) -> None:
        release = asyncio.Event()
        stalled = _StalledChunker(release)
        slow = make_orchestrator(chunking_strategy=stalled)
        fast = make_orchestrator()
        document = await _upload(fast, _TEN_WINDOW_TEXT)
        await fast.extract(document.id, Visibility.PRIVATE)

        slow_chunk = asyncio.create_task(slow.chunk(document.id, Visibility.PRIVATE))
        await stalled.started.wait()

        # The slow worker's lease runs out; another worker finishes the document.
        clock.advance(301)
        await fast.chunk(document.id, Visibility.PRIVATE)
        await fast.embed(document.id, Visibility.PRIVATE)
        embedded = await chunk_store.list_chunks(document.id, Visibility.PRIVATE)

        release.set()
        with pytest.raises(InvalidTransitionError):
            await slow_chunk

        stored = await fast.get_document(document.id, Visibility.PRIVATE)
        assert stored.status is DocumentStatus.EMBEDDED
        assert stored.chunk_count == 10
        after = await chunk_store.list_chunks(document.id, Visibility.PRIVATE)
        assert [c.id for c in after] == [c.id for c in embedded]
        assert all(c.embedding is not None for c in after)

    async def test_stale_chunk_write_yields_to_live_reclaim(
        self, make_orchestrator, document_store, chunk_store, clock
    ) -> None:
        release = asyncio.Event()
        stalled = _StalledChunker(release)
        slow = make_orchestrator(chunking_strategy=stalled)
        document = await _upload(slow, _TEN_WINDOW_TEXT)
        await slow.extract(document.id, Visibility.PRIVATE)

        slow_chunk = asyncio.create_task(slow.chunk(document.id, Visibility.PRIVATE))
        await stalled.started.wait()

        # Another worker reclaims the expired lease and is still working.
        clock.advance(301)
        newer_lease = clock.now + timedelta(seconds=300)
        reclaimed = await document_store.claim(
            document.id,
            Visibility.PRIVATE,
            ready_status=DocumentStatus.EXTRACTED,
            in_flight_status=DocumentStatus.CHUNKING,
            now=clock.now,
            lease_until=newer_lease,
        )
        assert reclaimed is not None

        release.set()
        with pytest.raises(InvalidTransitionError):
            await slow_chunk

        assert await chunk_store.count_chunks(document.id, Visibility.PRIVATE) == 0
        stored = await slow.get_document(document.id, Visibility.PRIVATE)
        assert stored.status is DocumentStatus.CHUNKING
        assert stored.claimed_until == newer_lease
