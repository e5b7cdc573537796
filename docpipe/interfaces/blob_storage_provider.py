"""Abstract base class for binary document storage.

The storage layout is two buckets, one per :class:`Visibility`; which
bucket a document lives in is decided here from its :class:`DocumentRef`
and nowhere else.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from docpipe.models.document import DocumentRef


class IBlobStorageProvider(ABC):
    """Contract for fetching and storing document binaries."""

    @abstractmethod
    async def fetch(self, ref: DocumentRef) -> bytes:
        """Return the binary stored under *ref*.

        Raises
        ------
        docpipe.utils.errors.DocumentNotFoundError
            If nothing is stored under the key.
        docpipe.utils.errors.StorageAccessDeniedError
            If the backend refuses access to the key.
        docpipe.utils.errors.StorageError
            On transient transport failures (timeouts, 5xx).
        """

    @abstractmethod
    async def put(self, ref: DocumentRef, data: bytes) -> None:
        """Store *data* under *ref*, replacing any existing object."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this storage backend."""
