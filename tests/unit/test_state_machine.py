"""Unit tests for status transitions and the retry back-off policy."""

from __future__ import annotations

import pytest

from docpipe.models.document import DocumentStatus, PipelineStage
from docpipe.pipeline.state_machine import (
    STAGE_TRANSITIONS,
    cooldown_for,
    is_fatal,
    is_forward,
    retry_target,
    transition_for,
)
from docpipe.utils.errors import (
    DocumentNotFoundError,
    LLMError,
    StorageError,
    TextTooShortError,
    UnreadableDocumentError,
)


class TestTransitions:
    def test_every_stage_has_a_transition(self) -> None:
        assert set(STAGE_TRANSITIONS) == set(PipelineStage)

    def test_stages_chain(self) -> None:
        extract = transition_for(PipelineStage.EXTRACT)
        chunk = transition_for(PipelineStage.CHUNK)
        embed = transition_for(PipelineStage.EMBED)
        assert extract.done is chunk.ready
        assert chunk.done is embed.ready
        assert embed.done is DocumentStatus.EMBEDDED

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (DocumentStatus.PENDING, DocumentStatus.EXTRACTING),
            (DocumentStatus.EXTRACTING, DocumentStatus.EXTRACTED),
            (DocumentStatus.CHUNKING, DocumentStatus.ERROR),
            (DocumentStatus.ERROR, DocumentStatus.EXTRACTED),
        ],
    )
    def test_forward_moves(self, current: DocumentStatus, target: DocumentStatus) -> None:
        assert is_forward(current, target)

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (DocumentStatus.CHUNKED, DocumentStatus.EXTRACTED),
            (DocumentStatus.EMBEDDED, DocumentStatus.PENDING),
            (DocumentStatus.EXTRACTED, DocumentStatus.EXTRACTED),
            (DocumentStatus.PENDING, DocumentStatus.ERROR),
            (DocumentStatus.ERROR, DocumentStatus.EMBEDDED),
        ],
    )
    def test_backward_or_illegal_moves(
        self, current: DocumentStatus, target: DocumentStatus
    ) -> None:
        assert not is_forward(current, target)

    @pytest.mark.parametrize(
        ("failed_stage", "expected"),
        [
            (PipelineStage.EXTRACT, DocumentStatus.PENDING),
            (PipelineStage.CHUNK, DocumentStatus.EXTRACTED),
            (PipelineStage.EMBED, DocumentStatus.CHUNKED),
            (None, DocumentStatus.PENDING),
        ],
    )
    def test_retry_target(self, failed_stage: PipelineStage | None, expected: DocumentStatus) -> None:
        assert retry_target(failed_stage) is expected


class TestClassification:
    @pytest.mark.parametrize(
        "exc", [UnreadableDocumentError(), TextTooShortError(), DocumentNotFoundError()]
    )
    def test_fatal(self, exc: Exception) -> None:
        assert is_fatal(exc)

    @pytest.mark.parametrize("exc", [LLMError(), StorageError(), RuntimeError("boom")])
    def test_transient(self, exc: Exception) -> None:
        assert not is_fatal(exc)


class TestCooldown:
    @pytest.mark.parametrize(
        ("retry_count", "seconds"),
        [(1, 60), (2, 120), (3, 240), (6, 1920), (7, 3600), (50, 3600)],
    )
    def test_exponential_and_capped(self, retry_count: int, seconds: float) -> None:
        assert cooldown_for(retry_count, 60, 3600).total_seconds() == seconds

    def test_zero_retries_uses_base(self) -> None:
        assert cooldown_for(0, 60, 3600).total_seconds() == 60
