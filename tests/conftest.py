"""Shared pytest fixtures for the docpipe test suite."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from docpipe.interfaces.embedding_provider import IEmbeddingProvider
from docpipe.interfaces.llm_provider import ILLMProvider
from docpipe.interfaces.vector_index_provider import IVectorIndexProvider
from docpipe.models.chunk import Chunk
from docpipe.models.document import Document, DocumentRef, DocumentStatus, Visibility
from docpipe.models.retrieval import RetrievalCandidate
from docpipe.providers.store.sqlite_chunk_store import SQLiteChunkStore
from docpipe.providers.store.sqlite_document_store import SQLiteDocumentStore

# ---------------------------------------------------------------------------
# Sample text
# ---------------------------------------------------------------------------

SAMPLE_REPORT_TEXT = (
    "Project Overview\n\n"
    "The irrigation upgrade covers 120 hectares of terraced farmland. "
    "Water is drawn from the northern reservoir and distributed through "
    "gravity-fed channels.\n\n"
    "Inputs\n\n"
    "The project requires 40 tonnes of cement, 2 km of PVC pipe and "
    "roughly 3,000 labour-days across two dry seasons.\n\n"
    "Sustainability\n\n"
    "Channel lining reduces seepage losses by an estimated 35 percent, "
    "and the reservoir intake includes a fish screen."
)


@pytest.fixture
def sample_report_text() -> str:
    return SAMPLE_REPORT_TEXT


# ---------------------------------------------------------------------------
# Model builders
# ---------------------------------------------------------------------------


def make_document(
    document_id: str = "doc-1",
    status: DocumentStatus = DocumentStatus.PENDING,
    visibility: Visibility = Visibility.PRIVATE,
    storage_key: str = "user-1/report.txt",
    filename: str = "report.txt",
    **fields,
) -> Document:
    return Document(
        id=document_id,
        ref=DocumentRef(visibility=visibility, storage_key=storage_key),
        filename=filename,
        status=status,
        **fields,
    )


def make_chunk(
    index: int,
    document_id: str = "doc-1",
    visibility: Visibility = Visibility.PRIVATE,
    content: str | None = None,
    embedding: list[float] | None = None,
) -> Chunk:
    text = content or f"Chunk number {index} of the sample document."
    return Chunk(
        id=f"{document_id}-chunk-{index}",
        document_id=document_id,
        visibility=visibility,
        chunk_index=index,
        content=text,
        token_count=len(text) // 4 + 1,
        start_char=index * 100,
        end_char=index * 100 + len(text),
        page_number=1,
        embedding=embedding,
    )


def make_candidate(
    chunk_id: str,
    token_count: int,
    relevance_score: float,
    document_id: str = "doc-1",
    page_number: int | None = 1,
) -> RetrievalCandidate:
    return RetrievalCandidate(
        chunk_id=chunk_id,
        document_id=document_id,
        content=f"Content of {chunk_id}",
        token_count=token_count,
        relevance_score=relevance_score,
        page_number=page_number,
    )


# ---------------------------------------------------------------------------
# SQLite stores on a temporary database
# ---------------------------------------------------------------------------


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "docpipe-test.db"


@pytest.fixture
async def document_store(db_path: Path) -> SQLiteDocumentStore:
    store = SQLiteDocumentStore(db_path=db_path)
    await store.initialize()
    return store


@pytest.fixture
async def chunk_store(db_path: Path) -> SQLiteChunkStore:
    store = SQLiteChunkStore(db_path=db_path)
    await store.initialize()
    return store


# ---------------------------------------------------------------------------
# Mock providers
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_llm_provider() -> ILLMProvider:
    """Mock ILLMProvider returning a plain answer.

    Override with ``mock_llm_provider.complete.return_value = "..."`` or
    ``mock_llm_provider.complete.side_effect = [...]`` for specific tests.
    """
    mock = MagicMock(spec=ILLMProvider)
    mock.get_provider_name.return_value = "mock-llm"
    mock.is_available.return_value = True
    mock.validate_credentials = AsyncMock(return_value=True)
    mock.complete = AsyncMock(return_value="The answer is in the excerpts.")
    return mock


@pytest.fixture
def mock_embedding_provider() -> IEmbeddingProvider:
    """Mock IEmbeddingProvider returning one fixed 4-dim vector per input."""
    mock = MagicMock(spec=IEmbeddingProvider)
    mock.get_provider_name.return_value = "mock-embedding"
    mock.get_dimension.return_value = 4
    mock.is_available.return_value = True

    async def _embed(texts: list[str]) -> list[list[float]]:
        return [[0.5, 0.25, 0.125, 1.0] for _ in texts]

    mock.embed = AsyncMock(side_effect=_embed)
    mock.embed_single = AsyncMock(return_value=[0.5, 0.25, 0.125, 1.0])
    return mock


@pytest.fixture
def mock_vector_index() -> IVectorIndexProvider:
    """Mock IVectorIndexProvider; ``upsert`` reports every chunk indexed."""
    mock = MagicMock(spec=IVectorIndexProvider)
    mock.get_provider_name.return_value = "mock-index"
    mock.count.return_value = 0

    async def _upsert(chunks: list[Chunk]) -> int:
        return len(chunks)

    mock.upsert = AsyncMock(side_effect=_upsert)
    mock.query = AsyncMock(return_value=[])
    mock.delete_document = AsyncMock(return_value=0)
    return mock
