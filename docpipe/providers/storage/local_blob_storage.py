"""Local-filesystem blob storage.

Objects live at ``<root>/<bucket>/<storage_key>``; the bucket comes from
the document's visibility.  File I/O runs in a worker thread via
``asyncio.to_thread`` so a large PDF read never blocks the event loop.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from docpipe.interfaces.blob_storage_provider import IBlobStorageProvider
from docpipe.models.document import DocumentRef, Visibility
from docpipe.utils.errors import (
    DocumentNotFoundError,
    StorageAccessDeniedError,
    StorageError,
)
from docpipe.utils.logging import get_logger

_logger = get_logger(__name__)


class LocalBlobStorage(IBlobStorageProvider):
    """Stores document binaries under a root directory, one subdirectory per bucket."""

    def __init__(
        self,
        root: str | Path,
        public_bucket: str = "documents",
        private_bucket: str = "user-documents",
    ) -> None:
        self._root = Path(root).resolve()
        self._buckets = {
            Visibility.PUBLIC: public_bucket,
            Visibility.PRIVATE: private_bucket,
        }

    def _path_for(self, ref: DocumentRef) -> Path:
        bucket_dir = self._root / self._buckets[ref.visibility]
        path = (bucket_dir / ref.storage_key).resolve()
        # Keys like "../../etc/passwd" must not escape the bucket.
        if not path.is_relative_to(bucket_dir.resolve()):
            raise StorageAccessDeniedError(
                message=f"Storage key escapes its bucket: {ref.storage_key}",
                provider_name=self.get_provider_name(),
            )
        return path

    async def fetch(self, ref: DocumentRef) -> bytes:
        path = self._path_for(ref)
        try:
            data = await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise DocumentNotFoundError(
                message=f"No object stored at {ref.visibility.value}/{ref.storage_key}",
                provider_name=self.get_provider_name(),
                stage="extract",
            ) from exc
        except PermissionError as exc:
            raise StorageAccessDeniedError(
                message=f"Permission denied reading {ref.storage_key}",
                provider_name=self.get_provider_name(),
            ) from exc
        except OSError as exc:
            raise StorageError(
                message=f"Failed to read {ref.storage_key}: {exc}",
                provider_name=self.get_provider_name(),
                stage="extract",
            ) from exc

        _logger.debug("blob_fetched", key=ref.storage_key, size=len(data))
        return data

    async def put(self, ref: DocumentRef, data: bytes) -> None:
        path = self._path_for(ref)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        try:
            await asyncio.to_thread(_write)
        except PermissionError as exc:
            raise StorageAccessDeniedError(
                message=f"Permission denied writing {ref.storage_key}",
                provider_name=self.get_provider_name(),
            ) from exc
        except OSError as exc:
            raise StorageError(
                message=f"Failed to write {ref.storage_key}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        _logger.info("blob_stored", key=ref.storage_key, size=len(data))

    def get_provider_name(self) -> str:
        return "local_storage"
