"""SQLite-backed chunk store.

Chunks for a document are written in one transaction (delete leftovers,
insert the new set) so a crashed or repeated chunking attempt can never
leave duplicates behind.  When the write carries a lease, the first
statement of that transaction moves the document row from ``chunking`` to
``chunked`` only while the lease is still the one on the row; if it is
not, nothing is written.  Embeddings are written one chunk at a time with
``WHERE embedding IS NULL``, so each write succeeds or fails on its own
and an embedding is never overwritten.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import aiosqlite
import structlog

from docpipe.interfaces.chunk_store import IChunkStore
from docpipe.models.chunk import Chunk
from docpipe.models.document import DocumentStatus, Visibility
from docpipe.providers.store.sqlite_schema import (
    SQLITE_BUSY_TIMEOUT,
    decode_embedding,
    decode_list,
    encode_embedding,
    encode_list,
    ensure_schema,
    to_iso,
)
from docpipe.utils.errors import StorageError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/docpipe.db")

# ── DML ───────────────────────────────────────────────────────────────

_MARK_CHUNKED_IF_CLAIMED = """\
UPDATE documents
SET status = :done, chunk_count = :chunk_count, retry_count = 0,
    next_attempt_at = NULL, claimed_until = NULL, updated_at = :now
WHERE id = :id AND visibility = :visibility
  AND status = :in_flight AND claimed_until = :lease_until;
"""

_DELETE_DOCUMENT_CHUNKS ="DELETE FROM chunks WHERE document_id = ? AND visibility = ?;"

_INSERT_CHUNK = """\
INSERT INTO chunks (
    id, document_id, visibility, chunk_index, content, token_count, embedding,
    section_title, summary, keywords, start_char, end_char, page_number,
    section_level, created_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_COUNT_CHUNKS = "SELECT COUNT(*) FROM chunks WHERE document_id = ? AND visibility = ?;"

_SELECT_CHUNKS = """\
SELECT * FROM chunks
WHERE document_id = ? AND visibility = ?
ORDER BY chunk_index ASC;
"""

_SELECT_MISSING_EMBEDDINGS = """\
SELECT * FROM chunks
WHERE document_id = ? AND visibility = ? AND embedding IS NULL
ORDER BY chunk_index ASC;
"""

_SET_EMBEDDING = "UPDATE chunks SET embedding = ? WHERE id = ? AND embedding IS NULL;"


class SQLiteChunkStore(IChunkStore):
    """Chunk rows in the ``chunks`` table of the docpipe database."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        await ensure_schema(self._db_path)

    def get_provider_name(self) -> str:
        return "sqlite_chunks"

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(str(self._db_path), timeout=SQLITE_BUSY_TIMEOUT)

    async def replace_chunks(
        self,
        document_id: str,
        visibility: Visibility,
        chunks: list[Chunk],
        lease_until: datetime | None = None,
    ) -> int | None:
        created_at = to_iso(datetime.now(tz=timezone.utc))  # noqa: UP017
        rows = [
            (
                c.id,
                document_id,
                visibility.value,
                c.chunk_index,
                c.content,
                c.token_count,
                encode_embedding(c.embedding) if c.embedding is not None else None,
                c.section_title,
                c.summary,
                encode_list(c.keywords),
                c.start_char,
                c.end_char,
                c.page_number,
                c.section_level,
                created_at,
            )
            for c in chunks
        ]

        try:
            async with self._connect() as db:
                try:
                    if lease_until is not None:
                        cursor = await db.execute(
                            _MARK_CHUNKED_IF_CLAIMED,
                            {
                                "id": document_id,
                                "visibility": visibility.value,
                                "done": DocumentStatus.CHUNKED.value,
                                "in_flight": DocumentStatus.CHUNKING.value,
                                "chunk_count": len(rows),
                                "lease_until": to_iso(lease_until),
                                "now": created_at,
                            },
                        )
                        if cursor.rowcount != 1:
                            await db.rollback()
                            logger.warning("chunk_write_claim_lost", document_id=document_id)
                            return None
                    cursor = await db.execute(_DELETE_DOCUMENT_CHUNKS, (document_id, visibility.value))
                    removed = cursor.rowcount
                    await db.executemany(_INSERT_CHUNK, rows)
                    await db.commit()
                except aiosqlite.Error:
                    await db.rollback()
                    raise
        except aiosqlite.Error as exc:
            raise self._wrap(exc, "replace_chunks") from exc

        if removed:
            logger.warning(
                "stale_chunks_replaced",
                document_id=document_id,
                removed=removed,
            )
        logger.info("chunks_inserted", document_id=document_id, count=len(rows))
        return len(rows)

    async def count_chunks(self, document_id: str, visibility: Visibility) -> int:
        try:
            async with self._connect() as db:
                cursor = await db.execute(_COUNT_CHUNKS, (document_id, visibility.value))
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise self._wrap(exc, "count_chunks") from exc
        return int(row[0]) if row else 0

    async def list_chunks(self, document_id: str, visibility: Visibility) -> list[Chunk]:
        return await self._select(_SELECT_CHUNKS, document_id, visibility, "list_chunks")

    async def list_missing_embeddings(
        self,
        document_id: str,
        visibility: Visibility,
    ) -> list[Chunk]:
        return await self._select(
            _SELECT_MISSING_EMBEDDINGS, document_id, visibility, "list_missing_embeddings"
        )

    async def set_embedding(self, chunk_id: str, embedding: list[float]) -> bool:
        try:
            async with self._connect() as db:
                cursor = await db.execute(_SET_EMBEDDING, (encode_embedding(embedding), chunk_id))
                await db.commit()
                return cursor.rowcount == 1
        except aiosqlite.Error as exc:
            raise self._wrap(exc, "set_embedding") from exc

    # ── Internals ──────────────────────────────────────────────────────

    async def _select(
        self,
        sql: str,
        document_id: str,
        visibility: Visibility,
        operation: str,
    ) -> list[Chunk]:
        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(sql, (document_id, visibility.value))
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise self._wrap(exc, operation) from exc
        return [self._row_to_chunk(dict(r)) for r in rows]

    def _wrap(self, exc: aiosqlite.Error, operation: str) -> StorageError:
        logger.error("chunk_store_error", operation=operation, error=str(exc))
        return StorageError(
            message=f"Chunk store {operation} failed: {exc}",
            provider_name="sqlite",
        )

    @staticmethod
    def _row_to_chunk(data: dict) -> Chunk:
        return Chunk(
            id=data["id"],
            document_id=data["document_id"],
            visibility=Visibility(data["visibility"]),
            chunk_index=data["chunk_index"],
            content=data["content"],
            token_count=data["token_count"],
            embedding=decode_embedding(data["embedding"]),
            section_title=data["section_title"],
            summary=data["summary"],
            keywords=decode_list(data["keywords"]),
            start_char=data["start_char"],
            end_char=data["end_char"],
            page_number=data["page_number"],
            section_level=data["section_level"],
        )
