"""Document status transitions and retry policy.

Every stage has three statuses: the one it claims from (*ready*), the one
it holds while running (*in flight*), and the one it leaves behind on
success (*done*)::

    extract:  pending   -> extracting -> extracted
    chunk:    extracted -> chunking   -> chunked
    embed:    chunked   -> embedding  -> embedded

A fatal failure moves an in-flight document to ``error``; an explicit
retry moves it from ``error`` back to the *ready* status of the stage that
failed.  No other move is legal, so a document's rank only goes up
outside of those two transitions.
"""

from __future__ import annotations

from datetime import timedelta

from pydantic import BaseModel, ConfigDict

from docpipe.models.document import DocumentStatus, PipelineStage
from docpipe.utils.errors import FatalDocumentError


class StageTransition(BaseModel):
    model_config = ConfigDict(frozen=True)

    stage: PipelineStage
    ready: DocumentStatus
    in_flight: DocumentStatus
    done: DocumentStatus


STAGE_TRANSITIONS: dict[PipelineStage, StageTransition] = {
    PipelineStage.EXTRACT: StageTransition(
        stage=PipelineStage.EXTRACT,
        ready=DocumentStatus.PENDING,
        in_flight=DocumentStatus.EXTRACTING,
        done=DocumentStatus.EXTRACTED,
    ),
    PipelineStage.CHUNK: StageTransition(
        stage=PipelineStage.CHUNK,
        ready=DocumentStatus.EXTRACTED,
        in_flight=DocumentStatus.CHUNKING,
        done=DocumentStatus.CHUNKED,
    ),
    PipelineStage.EMBED: StageTransition(
        stage=PipelineStage.EMBED,
        ready=DocumentStatus.CHUNKED,
        in_flight=DocumentStatus.EMBEDDING,
        done=DocumentStatus.EMBEDDED,
    ),
}


def transition_for(stage: PipelineStage) -> StageTransition:
    return STAGE_TRANSITIONS[stage]


def retry_target(failed_stage: PipelineStage | None) -> DocumentStatus:
    """Status a document re-enters when retried out of ``error``.

    A document with no recorded stage restarts from extraction.
    """
    return STAGE_TRANSITIONS[failed_stage or PipelineStage.EXTRACT].ready


def is_forward(current: DocumentStatus, target: DocumentStatus) -> bool:
    """Return ``True`` if moving *current* to *target* is legal.

    ``error`` is reachable from any in-flight status; leaving ``error``
    is only legal through :func:`retry_target`.
    """
    if target is DocumentStatus.ERROR:
        return current in {t.in_flight for t in STAGE_TRANSITIONS.values()}
    if current is DocumentStatus.ERROR:
        return target in {t.ready for t in STAGE_TRANSITIONS.values()}
    return target.rank > current.rank


def is_fatal(exc: BaseException) -> bool:
    return isinstance(exc, FatalDocumentError)


def cooldown_for(retry_count: int, base_seconds: float, max_seconds: float) -> timedelta:
    """Exponential back-off: ``base * 2 ** (retry_count - 1)``, capped.

    >>> cooldown_for(1, 60, 3600).total_seconds()
    60.0
    >>> cooldown_for(3, 60, 3600).total_seconds()
    240.0
    >>> cooldown_for(10, 60, 3600).total_seconds()
    3600.0
    """
    exponent = max(retry_count - 1, 0)
    return timedelta(seconds=min(base_seconds * (2 ** exponent), max_seconds))
