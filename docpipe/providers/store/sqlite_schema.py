"""SQLite schema and row codecs shared by the document and chunk stores.

# ─── ARCHITECTURE ROLE ───────────────────────────────────────────────
#
# Layer: Providers.  Both SQLiteDocumentStore and SQLiteChunkStore open
# the same database file (``data/docpipe.db`` by default); this module
# owns the DDL so either store's ``initialize()`` creates everything.
#
# Conventions:
#   - Timestamps are stored as UTC ISO-8601 strings with microseconds,
#     so lexicographic comparison in SQL matches chronological order.
#   - Embeddings are stored as little-endian float32 BLOBs (numpy).
#   - List columns (keywords, page_boundaries) are JSON text.
#   - ``PRAGMA journal_mode=WAL`` lets readers proceed during a write.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite
import numpy as np
import structlog

logger = structlog.get_logger(logger_name=__name__)

# Seconds a connection waits on a locked database before raising.
SQLITE_BUSY_TIMEOUT = 30.0

# ── Schema DDL ────────────────────────────────────────────────────────

_CREATE_DOCUMENTS_TABLE = """\
CREATE TABLE IF NOT EXISTS documents (
    id               TEXT    NOT NULL,
    visibility       TEXT    NOT NULL,
    storage_key      TEXT    NOT NULL,
    filename         TEXT    NOT NULL,
    status           TEXT    NOT NULL DEFAULT 'pending',
    extracted_text   TEXT,
    page_boundaries  TEXT    NOT NULL DEFAULT '[]',
    error_detail     TEXT,
    failed_stage     TEXT,
    chunk_count      INTEGER NOT NULL DEFAULT 0,
    retry_count      INTEGER NOT NULL DEFAULT 0,
    next_attempt_at  TEXT,
    claimed_until    TEXT,
    created_at       TEXT    NOT NULL,
    updated_at       TEXT    NOT NULL,
    PRIMARY KEY (visibility, id)
);
"""

_CREATE_CHUNKS_TABLE = """\
CREATE TABLE IF NOT EXISTS chunks (
    id             TEXT    PRIMARY KEY,
    document_id    TEXT    NOT NULL,
    visibility     TEXT    NOT NULL,
    chunk_index    INTEGER NOT NULL,
    content        TEXT    NOT NULL,
    token_count    INTEGER NOT NULL,
    embedding      BLOB,
    section_title  TEXT    NOT NULL DEFAULT '',
    summary        TEXT    NOT NULL DEFAULT '',
    keywords       TEXT    NOT NULL DEFAULT '[]',
    start_char     INTEGER NOT NULL,
    end_char       INTEGER NOT NULL,
    page_number    INTEGER,
    section_level  INTEGER NOT NULL DEFAULT 1,
    created_at     TEXT    NOT NULL,
    UNIQUE (visibility, document_id, chunk_index),
    FOREIGN KEY (visibility, document_id) REFERENCES documents (visibility, id)
);
"""

_CREATE_INDICES = [
    "CREATE INDEX IF NOT EXISTS idx_documents_status_updated ON documents(status, updated_at);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_document ON chunks(visibility, document_id);",
    "CREATE INDEX IF NOT EXISTS idx_chunks_missing_embedding "
    "ON chunks(visibility, document_id) WHERE embedding IS NULL;",
]


async def ensure_schema(db_path: Path) -> None:
    """Create the database file, tables and indices if they do not exist."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(str(db_path), timeout=SQLITE_BUSY_TIMEOUT) as db:
        await db.execute("PRAGMA journal_mode=WAL;")
        await db.execute(_CREATE_DOCUMENTS_TABLE)
        await db.execute(_CREATE_CHUNKS_TABLE)
        for idx_sql in _CREATE_INDICES:
            await db.execute(idx_sql)
        await db.commit()
    logger.info("docpipe_db_initialized", path=str(db_path))


# ── Codecs ────────────────────────────────────────────────────────────


def to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)  # noqa: UP017
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")  # noqa: UP017


def from_iso(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def encode_embedding(embedding: list[float]) -> bytes:
    return np.asarray(embedding, dtype="<f4").tobytes()


def decode_embedding(blob: bytes | None) -> list[float] | None:
    if blob is None:
        return None
    return np.frombuffer(blob, dtype="<f4").astype(float).tolist()


def encode_list(values: list) -> str:
    return json.dumps(values)


def decode_list(raw: str | None) -> list:
    if not raw:
        return []
    return json.loads(raw)
