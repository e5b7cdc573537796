"""SQLite persistence for documents and chunks (aiosqlite, WAL mode)."""

from docpipe.providers.store.sqlite_chunk_store import SQLiteChunkStore
from docpipe.providers.store.sqlite_document_store import SQLiteDocumentStore

__all__ = ["SQLiteChunkStore", "SQLiteDocumentStore"]
