"""Unit tests for docpipe's Pydantic models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from docpipe.models.chunk import Chunk, ChunkDraft
from docpipe.models.document import DocumentRef, DocumentStatus, PipelineStage, Visibility
from docpipe.models.pipeline import ExtractionResult, ProcessingSummary, StageOutcome
from tests.conftest import make_document


class TestDocumentRef:
    def test_public_url_is_reduced_to_key(self) -> None:
        ref = DocumentRef(
            visibility=Visibility.PUBLIC,
            storage_key="https://cdn.example.test/object/public/documents/2024/plan.pdf",
        )
        assert ref.storage_key == "2024/plan.pdf"

    def test_private_key_is_left_alone(self) -> None:
        key = "tenant/documents/plan.pdf"
        ref = DocumentRef(visibility=Visibility.PRIVATE, storage_key=key)
        assert ref.storage_key == key

    def test_key_is_stripped(self) -> None:
        ref = DocumentRef(visibility="private", storage_key="  a/b.txt ")
        assert ref.storage_key == "a/b.txt"
        assert ref.visibility is Visibility.PRIVATE

    @pytest.mark.parametrize("key", ["", "   "])
    def test_blank_key_rejected(self, key: str) -> None:
        with pytest.raises(ValidationError):
            DocumentRef(visibility=Visibility.PRIVATE, storage_key=key)


class TestDocumentStatus:
    def test_forward_walk_is_ordered(self) -> None:
        walk = [
            DocumentStatus.PENDING,
            DocumentStatus.EXTRACTING,
            DocumentStatus.EXTRACTED,
            DocumentStatus.CHUNKING,
            DocumentStatus.CHUNKED,
            DocumentStatus.EMBEDDING,
            DocumentStatus.EMBEDDED,
        ]
        assert [s.rank for s in walk] == sorted(s.rank for s in walk)

    def test_error_ranks_lowest(self) -> None:
        assert not DocumentStatus.ERROR.is_at_least(DocumentStatus.PENDING)
        assert DocumentStatus.EMBEDDED.is_at_least(DocumentStatus.CHUNKED)


class TestDocument:
    def test_defaults(self) -> None:
        document = make_document()
        assert document.status is DocumentStatus.PENDING
        assert document.visibility is Visibility.PRIVATE
        assert document.chunk_count == 0
        assert document.page_boundaries == []

    def test_frozen(self) -> None:
        document = make_document()
        with pytest.raises(ValidationError):
            document.status = DocumentStatus.EMBEDDED


class TestChunk:
    def test_from_draft_copies_token_count(self) -> None:
        draft = ChunkDraft(
            chunk_index=3, content="text", token_count=17, start_char=10, end_char=14, page_number=2
        )
        chunk = Chunk.from_draft(draft, "doc-1", Visibility.PUBLIC)

        assert chunk.token_count == 17
        assert chunk.chunk_index == 3
        assert chunk.document_id == "doc-1"
        assert chunk.visibility is Visibility.PUBLIC
        assert chunk.embedding is None
        assert len(chunk.id) == 32

    def test_span_must_be_ordered(self) -> None:
        with pytest.raises(ValidationError):
            ChunkDraft(chunk_index=0, content="x", token_count=1, start_char=10, end_char=5)

    def test_empty_content_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ChunkDraft(chunk_index=0, content="", token_count=0, start_char=0, end_char=0)

    def test_page_numbers_start_at_one(self) -> None:
        with pytest.raises(ValidationError):
            ChunkDraft(
                chunk_index=0, content="x", token_count=1, start_char=0, end_char=1, page_number=0
            )


class TestProcessingSummary:
    def test_record_files_outcomes_by_bucket(self) -> None:
        summary = ProcessingSummary()
        summary = summary.record(
            StageOutcome(document_id="a", stage=PipelineStage.EXTRACT, ok=True)
        )
        summary = summary.record(
            StageOutcome(document_id="b", stage=PipelineStage.EXTRACT, ok=False, deferred=True)
        )
        summary = summary.record(StageOutcome(document_id="c", stage=PipelineStage.EMBED, ok=False))

        assert summary.extract.succeeded == ["a"]
        assert summary.extract.deferred == ["b"]
        assert summary.embed.failed == ["c"]
        assert summary.total_processed == 3

    def test_record_returns_a_copy(self) -> None:
        original = ProcessingSummary()
        original.record(StageOutcome(document_id="a", stage=PipelineStage.CHUNK, ok=True))
        assert original.total_processed == 0

    def test_finish_sets_timestamp(self) -> None:
        assert ProcessingSummary().finished_at is None
        assert ProcessingSummary().finish().finished_at is not None


def test_extraction_page_count() -> None:
    result = ExtractionResult(text="a\n\fb", page_boundaries=[2, 4], source_format="text")
    assert result.page_count == 2
