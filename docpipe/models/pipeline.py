"""Pipeline result models.

These are the values stages hand back to the orchestrator and the
orchestrator hands back to its callers (HTTP routes, CLI).  All are frozen;
:class:`ProcessingSummary` is built incrementally by
:meth:`ProcessingSummary.record` returning new copies via ``model_copy``.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from docpipe.models.document import DocumentStatus, PipelineStage


class ExtractionResult(BaseModel):
    """Plain text and page map produced by the extractor."""

    model_config = ConfigDict(frozen=True)

    text: str
    # Cumulative character offset at the end of each page.
    page_boundaries: list[int] = Field(default_factory=list)
    source_format: str

    @property
    def page_count(self) -> int:
        return len(self.page_boundaries)


class StageOutcome(BaseModel):
    """What happened to one document in one stage invocation."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    stage: PipelineStage
    ok: bool
    status: DocumentStatus | None = None
    detail: str | None = None
    # True when the failure was transient and the document will be retried.
    deferred: bool = False
    # Stage-specific count: chunks written, chunks embedded, characters extracted.
    count: int = 0


class StageSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    succeeded: list[str] = Field(default_factory=list)
    deferred: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.succeeded) + len(self.deferred) + len(self.failed)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


class ProcessingSummary(BaseModel):
    """Counts and ids processed per stage during one orchestrator run."""

    model_config = ConfigDict(frozen=True)

    extract: StageSummary = Field(default_factory=StageSummary)
    chunk: StageSummary = Field(default_factory=StageSummary)
    embed: StageSummary = Field(default_factory=StageSummary)
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: datetime | None = None

    def record(self, outcome: StageOutcome) -> ProcessingSummary:
        """Return a copy with *outcome* filed under its stage."""
        stage_summary: StageSummary = getattr(self, outcome.stage.value)
        if outcome.ok:
            bucket = "succeeded"
        elif outcome.deferred:
            bucket = "deferred"
        else:
            bucket = "failed"
        updated = stage_summary.model_copy(
            update={bucket: [*getattr(stage_summary, bucket), outcome.document_id]}
        )
        return self.model_copy(update={outcome.stage.value: updated})

    def finish(self) -> ProcessingSummary:
        return self.model_copy(update={"finished_at": _utcnow()})

    @property
    def total_processed(self) -> int:
        return self.extract.processed + self.chunk.processed + self.embed.processed
