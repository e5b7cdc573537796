"""SQLite-backed document metadata store.

Every status change is a single conditional ``UPDATE ... WHERE status IN
(...)``.  SQLite serialises writers, so two invocations racing to claim the
same document cannot both see ``rowcount == 1``; the loser gets ``None``
back and moves on.
"""

from __future__ import annotations

from collections.abc import Collection
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

import aiosqlite
import structlog

from docpipe.interfaces.document_store import IDocumentStore
from docpipe.models.document import (
    Document,
    DocumentRef,
    DocumentStatus,
    PipelineStage,
    Visibility,
)
from docpipe.providers.store.sqlite_schema import (
    SQLITE_BUSY_TIMEOUT,
    decode_list,
    encode_list,
    ensure_schema,
    from_iso,
    to_iso,
)
from docpipe.utils.errors import StorageError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/docpipe.db")

# ── DML ───────────────────────────────────────────────────────────────

_INSERT_DOCUMENT = """\
INSERT INTO documents (
    id, visibility, storage_key, filename, status, extracted_text, page_boundaries,
    error_detail, failed_stage, chunk_count, retry_count, next_attempt_at,
    claimed_until, created_at, updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
"""

_SELECT_DOCUMENT = "SELECT * FROM documents WHERE id = ? AND visibility = ?;"

_CLAIM_DOCUMENT = """\
UPDATE documents
SET status = :in_flight, claimed_until = :lease_until, updated_at = :now
WHERE id = :id AND visibility = :visibility
  AND (
    status = :ready
    OR (status = :in_flight AND (claimed_until IS NULL OR claimed_until < :now))
  );
"""

_SELECT_READY = """\
SELECT * FROM documents
WHERE (
    status = :ready
    OR (status = :in_flight AND (claimed_until IS NULL OR claimed_until < :now))
  )
  AND (next_attempt_at IS NULL OR next_attempt_at <= :now)
ORDER BY updated_at ASC, created_at ASC
LIMIT :limit;
"""

_SELECT_UNFINISHED = """\
SELECT * FROM documents
WHERE status != 'embedded'
ORDER BY updated_at ASC, created_at ASC
LIMIT ?;
"""

# Columns update_if_status() may touch.  Anything else is a programming error.
_UPDATABLE_COLUMNS = frozenset({
    "status",
    "extracted_text",
    "page_boundaries",
    "error_detail",
    "failed_stage",
    "chunk_count",
    "retry_count",
    "next_attempt_at",
    "claimed_until",
})


def _encode_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, list):
        return encode_list(value)
    return value


class SQLiteDocumentStore(IDocumentStore):
    """Document rows in the ``documents`` table of the docpipe database."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        self._db_path = Path(db_path)

    async def initialize(self) -> None:
        await ensure_schema(self._db_path)

    def get_provider_name(self) -> str:
        return "sqlite_documents"

    def _connect(self) -> aiosqlite.Connection:
        return aiosqlite.connect(str(self._db_path), timeout=SQLITE_BUSY_TIMEOUT)

    # ── Reads ──────────────────────────────────────────────────────────

    async def get(self, document_id: str, visibility: Visibility) -> Document | None:
        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(_SELECT_DOCUMENT, (document_id, visibility.value))
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise self._wrap(exc, "get") from exc
        return self._row_to_document(row) if row else None

    async def list_ready(
        self,
        ready_status: DocumentStatus,
        in_flight_status: DocumentStatus,
        now: datetime,
        limit: int,
    ) -> list[Document]:
        params = {
            "ready": ready_status.value,
            "in_flight": in_flight_status.value,
            "now": to_iso(now),
            "limit": limit,
        }
        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(_SELECT_READY, params)
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise self._wrap(exc, "list_ready") from exc
        return [self._row_to_document(r) for r in rows]

    async def list_unfinished(self, limit: int = 100) -> list[Document]:
        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(_SELECT_UNFINISHED, (limit,))
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            raise self._wrap(exc, "list_unfinished") from exc
        return [self._row_to_document(r) for r in rows]

    # ── Writes ─────────────────────────────────────────────────────────

    async def create(self, document: Document) -> Document:
        try:
            async with self._connect() as db:
                await db.execute(_INSERT_DOCUMENT, (
                    document.id,
                    document.visibility.value,
                    document.ref.storage_key,
                    document.filename,
                    document.status.value,
                    document.extracted_text,
                    encode_list(document.page_boundaries),
                    document.error_detail,
                    document.failed_stage.value if document.failed_stage else None,
                    document.chunk_count,
                    document.retry_count,
                    to_iso(document.next_attempt_at),
                    to_iso(document.claimed_until),
                    to_iso(document.created_at),
                    to_iso(document.updated_at),
                ))
                await db.commit()
        except aiosqlite.Error as exc:
            raise self._wrap(exc, "create") from exc

        logger.debug("document_inserted", document_id=document.id)
        return document

    async def claim(
        self,
        document_id: str,
        visibility: Visibility,
        ready_status: DocumentStatus,
        in_flight_status: DocumentStatus,
        now: datetime,
        lease_until: datetime,
    ) -> Document | None:
        params = {
            "id": document_id,
            "visibility": visibility.value,
            "ready": ready_status.value,
            "in_flight": in_flight_status.value,
            "now": to_iso(now),
            "lease_until": to_iso(lease_until),
        }
        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(_CLAIM_DOCUMENT, params)
                if cursor.rowcount != 1:
                    await db.rollback()
                    return None
                await db.commit()
                cursor = await db.execute(_SELECT_DOCUMENT, (document_id, visibility.value))
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise self._wrap(exc, "claim") from exc
        return self._row_to_document(row) if row else None

    async def update_if_status(
        self,
        document_id: str,
        visibility: Visibility,
        expected: Collection[DocumentStatus],
        held_lease: datetime | None = None,
        **fields: Any,
    ) -> Document | None:
        unknown = set(fields) - _UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update document columns: {sorted(unknown)}")
        if not expected:
            raise ValueError("expected must name at least one status")

        assignments = [f"{column} = ?" for column in fields]
        assignments.append("updated_at = ?")
        values = [_encode_value(v) for v in fields.values()]
        values.append(to_iso(datetime.now(tz=timezone.utc)))  # noqa: UP017

        expected_values = [s.value for s in expected]
        placeholders = ", ".join("?" for _ in expected_values)
        conditions = f"id = ? AND visibility = ? AND status IN ({placeholders})"
        params = [*values, document_id, visibility.value, *expected_values]
        if held_lease is not None:
            conditions += " AND claimed_until = ?"
            params.append(to_iso(held_lease))
        sql = f"UPDATE documents SET {', '.join(assignments)} WHERE {conditions};"

        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row
                cursor = await db.execute(sql, params)
                if cursor.rowcount != 1:
                    await db.rollback()
                    return None
                await db.commit()
                cursor = await db.execute(_SELECT_DOCUMENT, (document_id, visibility.value))
                row = await cursor.fetchone()
        except aiosqlite.Error as exc:
            raise self._wrap(exc, "update") from exc
        return self._row_to_document(row) if row else None

    # ── Internals ──────────────────────────────────────────────────────

    def _wrap(self, exc: aiosqlite.Error, operation: str) -> StorageError:
        logger.error("document_store_error", operation=operation, error=str(exc))
        return StorageError(
            message=f"Document store {operation} failed: {exc}",
            provider_name="sqlite",
        )

    @staticmethod
    def _row_to_document(row: aiosqlite.Row) -> Document:
        data = dict(row)
        return Document(
            id=data["id"],
            ref=DocumentRef(
                visibility=Visibility(data["visibility"]),
                storage_key=data["storage_key"],
            ),
            filename=data["filename"],
            status=DocumentStatus(data["status"]),
            extracted_text=data["extracted_text"],
            page_boundaries=decode_list(data["page_boundaries"]),
            error_detail=data["error_detail"],
            failed_stage=PipelineStage(data["failed_stage"]) if data["failed_stage"] else None,
            chunk_count=data["chunk_count"],
            retry_count=data["retry_count"],
            next_attempt_at=from_iso(data["next_attempt_at"]),
            claimed_until=from_iso(data["claimed_until"]),
            created_at=from_iso(data["created_at"]),
            updated_at=from_iso(data["updated_at"]),
        )
