"""Ephemeral retrieval models (never persisted).

A ``RetrievalCandidate`` is a chunk plus the relevance score returned by
the similarity search for one query.  ``ContextBudget`` bundles the
limits used by :func:`docpipe.services.retriever.select_context`.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class RetrievalCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    chunk_id: str
    document_id: str
    content: str
    token_count: int = Field(ge=0)
    relevance_score: float = 0.0
    page_number: int | None = None
    section_title: str = ""


class ContextBudget(BaseModel):
    """Token ceiling and relevance-accumulation ceiling for one selection."""

    model_config = ConfigDict(frozen=True)

    token_limit: int = Field(ge=0)
    max_chunk_tokens: int = Field(default=3000, ge=0)
    relevance_ceiling: float = 5.0


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str


class ReportType(str, Enum):  # noqa: UP042
    OVERVIEW = "overview"
    INPUTS = "inputs"
    SUSTAINABILITY = "sustainability"


class Citation(BaseModel):
    """A fragment that was included in a generation context."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    document_id: str
    page_number: int | None = None
    section_title: str = ""
    relevance_score: float = 0.0


class AnswerResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    answer: str
    citations: list[Citation] = Field(default_factory=list)
    context_tokens: int = 0
