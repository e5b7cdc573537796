"""Abstract base class for the document metadata store.

Every write that changes ``status`` is a compare-and-set: the caller names
the status(es) it expects the row to be in and the store applies the
update only if that still holds.  A ``None`` return means another
invocation got there first; callers treat that as "lost the race", never
as an error to retry blindly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Collection
from datetime import datetime
from typing import Any

from docpipe.models.document import Document, DocumentStatus, Visibility


class IDocumentStore(ABC):
    """Contract for reading and conditionally updating document rows."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables and indices if they do not exist.  Idempotent."""

    @abstractmethod
    async def create(self, document: Document) -> Document:
        """Insert a new document row and return it."""

    @abstractmethod
    async def get(self, document_id: str, visibility: Visibility) -> Document | None:
        """Return the document, or ``None`` if no row matches."""

    @abstractmethod
    async def claim(
        self,
        document_id: str,
        visibility: Visibility,
        ready_status: DocumentStatus,
        in_flight_status: DocumentStatus,
        now: datetime,
        lease_until: datetime,
    ) -> Document | None:
        """Move a document into *in_flight_status* and take a lease on it.

        Succeeds when the row is in *ready_status*, or already in
        *in_flight_status* with an expired (or missing) lease.

        Returns
        -------
        Document | None
            The claimed document, or ``None`` if the condition did not hold.
        """

    @abstractmethod
    async def update_if_status(
        self,
        document_id: str,
        visibility: Visibility,
        expected: Collection[DocumentStatus],
        held_lease: datetime | None = None,
        **fields: Any,
    ) -> Document | None:
        """Apply *fields* only if the row's status is one of *expected*.

        With *held_lease*, the row's ``claimed_until`` must also equal it,
        so a worker whose lease was taken over cannot write.

        Accepted fields: ``status``, ``extracted_text``, ``page_boundaries``,
        ``error_detail``, ``failed_stage``, ``chunk_count``, ``retry_count``,
        ``next_attempt_at``, ``claimed_until``.  ``updated_at`` is always
        refreshed.

        Returns
        -------
        Document | None
            The updated document, or ``None`` if the condition did not hold.
        """

    @abstractmethod
    async def list_ready(
        self,
        ready_status: DocumentStatus,
        in_flight_status: DocumentStatus,
        now: datetime,
        limit: int,
    ) -> list[Document]:
        """Return up to *limit* documents a stage may claim right now.

        Ready means *ready_status*, or *in_flight_status* with an expired
        lease, and not cooling down (``next_attempt_at`` unset or past).
        Oldest ``updated_at`` first.
        """

    @abstractmethod
    async def list_unfinished(self, limit: int = 100) -> list[Document]:
        """Return documents not yet ``embedded``, oldest ``updated_at`` first."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this store."""
