"""Chunk models.

``ChunkDraft`` is what a chunking strategy emits: text plus metadata, with
``chunk_index`` already fixed to its position in emission order.  The
orchestrator turns drafts into persisted :class:`Chunk` rows by attaching
the owning document id and visibility.

``token_count`` is computed once when the draft is built and copied
verbatim onto the chunk; nothing downstream recomputes it.
"""

from __future__ import annotations

from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from docpipe.models.document import Visibility


class ChunkDraft(BaseModel):
    """A fragment of extracted text before it is persisted."""

    model_config = ConfigDict(frozen=True)

    chunk_index: int = Field(ge=0)
    content: str = Field(min_length=1)
    token_count: int = Field(ge=0)
    start_char: int = Field(ge=0)
    end_char: int = Field(ge=0)
    page_number: int | None = Field(default=None, ge=1)
    section_title: str = ""
    summary: str = ""
    keywords: list[str] = Field(default_factory=list)
    section_level: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def _span_is_ordered(self) -> ChunkDraft:
        if self.end_char < self.start_char:
            raise ValueError("end_char must be >= start_char")
        return self


class Chunk(ChunkDraft):
    """A persisted chunk, owned by one document."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    document_id: str
    visibility: Visibility
    embedding: list[float] | None = None

    @classmethod
    def from_draft(cls, draft: ChunkDraft, document_id: str, visibility: Visibility) -> Chunk:
        return cls(
            **draft.model_dump(),
            document_id=document_id,
            visibility=visibility,
        )


class ChunkingResult(BaseModel):
    """Output of a chunking strategy run over one document."""

    model_config = ConfigDict(frozen=True)

    chunks: list[ChunkDraft] = Field(default_factory=list)
    strategy: str
    # Semantic strategy only: blocks whose LLM response failed validation.
    dropped_blocks: int = Field(default=0, ge=0)
    fell_back: bool = False
