"""Document models for the ingestion pipeline.

A document moves through a single forward-only status walk:

    PENDING → EXTRACTING → EXTRACTED → CHUNKING → CHUNKED → EMBEDDING → EMBEDDED

``ERROR`` can be entered from any status and left only through an explicit
retry, which re-enters the stage recorded in ``failed_stage``.  The legal
transitions themselves live in :mod:`docpipe.pipeline.state_machine`; this
module only defines the values and the ordering.

``DocumentRef`` is the one place visibility is interpreted: a public
document registered with a full storage URL is normalised to its key here,
and nothing downstream branches on visibility again except the blob
storage provider picking a bucket.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# Public documents are sometimes registered with their full storage URL;
# the key is everything after this marker.
_PUBLIC_URL_MARKER = "/documents/"


class Visibility(str, Enum):  # noqa: UP042
    """Ownership class of a document; partitions storage and search."""

    PRIVATE = "private"
    PUBLIC = "public"


class PipelineStage(str, Enum):  # noqa: UP042
    """The three stages a document passes through."""

    EXTRACT = "extract"
    CHUNK = "chunk"
    EMBED = "embed"


class DocumentStatus(str, Enum):  # noqa: UP042
    """Lifecycle status of a document."""

    PENDING = "pending"
    EXTRACTING = "extracting"
    EXTRACTED = "extracted"
    CHUNKING = "chunking"
    CHUNKED = "chunked"
    EMBEDDING = "embedding"
    EMBEDDED = "embedded"
    ERROR = "error"

    @property
    def rank(self) -> int:
        """Position in the forward walk; ``ERROR`` ranks below everything."""
        return _STATUS_RANK[self]

    def is_at_least(self, other: DocumentStatus) -> bool:
        return self.rank >= other.rank


_STATUS_RANK: dict[DocumentStatus, int] = {
    DocumentStatus.ERROR: -1,
    DocumentStatus.PENDING: 0,
    DocumentStatus.EXTRACTING: 1,
    DocumentStatus.EXTRACTED: 2,
    DocumentStatus.CHUNKING: 3,
    DocumentStatus.CHUNKED: 4,
    DocumentStatus.EMBEDDING: 5,
    DocumentStatus.EMBEDDED: 6,
}


class DocumentRef(BaseModel):
    """Tagged pointer to a document's binary: visibility plus storage key."""

    model_config = ConfigDict(frozen=True)

    visibility: Visibility
    storage_key: str = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _normalise_public_url(cls, data: object) -> object:
        if not isinstance(data, dict):
            return data
        visibility = data.get("visibility")
        key = data.get("storage_key")
        if (
            visibility in (Visibility.PUBLIC, Visibility.PUBLIC.value)
            and isinstance(key, str)
            and _PUBLIC_URL_MARKER in key
        ):
            data = {**data, "storage_key": key.split(_PUBLIC_URL_MARKER, 1)[1]}
        return data

    @field_validator("storage_key")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("storage_key must not be blank")
        return value


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)  # noqa: UP017


class Document(BaseModel):
    """One registered document and its pipeline bookkeeping."""

    model_config = ConfigDict(frozen=True)

    id: str
    ref: DocumentRef
    filename: str
    status: DocumentStatus = DocumentStatus.PENDING
    extracted_text: str | None = None
    page_boundaries: list[int] = Field(default_factory=list)
    error_detail: str | None = None
    failed_stage: PipelineStage | None = None
    chunk_count: int = Field(default=0, ge=0)
    retry_count: int = Field(default=0, ge=0)
    next_attempt_at: datetime | None = None
    claimed_until: datetime | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def visibility(self) -> Visibility:
        return self.ref.visibility
