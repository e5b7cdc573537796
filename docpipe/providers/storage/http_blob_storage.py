"""HTTP object-storage adapter.

Talks to any storage service that serves objects at
``<base_url>/<bucket>/<key>`` with bearer-token auth (GET to read, PUT to
write).  The ``httpx.AsyncClient`` is injected so the application shares
one connection pool and tests can pass a client with a mock transport.

Status mapping:
    404           → DocumentNotFoundError   (fatal)
    401, 403      → StorageAccessDeniedError (fatal)
    other 4xx/5xx → StorageError            (transient)
    timeouts and transport errors → StorageError (transient)
"""

from __future__ import annotations

from urllib.parse import quote

import httpx

from docpipe.interfaces.blob_storage_provider import IBlobStorageProvider
from docpipe.models.document import DocumentRef, Visibility
from docpipe.utils.errors import (
    DocumentNotFoundError,
    StorageAccessDeniedError,
    StorageError,
)
from docpipe.utils.logging import get_logger

_logger = get_logger(__name__)


class HTTPBlobStorage(IBlobStorageProvider):

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url: str,
        api_token: str = "",
        public_bucket: str = "documents",
        private_bucket: str = "user-documents",
        timeout_seconds: float = 30.0,
    ) -> None:
        self._http = http_client
        self._base_url = base_url.rstrip("/")
        self._api_token = api_token
        self._timeout = httpx.Timeout(timeout_seconds, connect=5.0)
        self._buckets = {
            Visibility.PUBLIC: public_bucket,
            Visibility.PRIVATE: private_bucket,
        }

    def _url_for(self, ref: DocumentRef) -> str:
        bucket = self._buckets[ref.visibility]
        return f"{self._base_url}/{bucket}/{quote(ref.storage_key)}"

    def _headers(self) -> dict[str, str]:
        if not self._api_token:
            return {}
        return {"Authorization": f"Bearer {self._api_token}"}

    def _raise_for_status(self, response: httpx.Response, ref: DocumentRef) -> None:
        if response.status_code == 404:
            raise DocumentNotFoundError(
                message=f"No object stored at {ref.visibility.value}/{ref.storage_key}",
                provider_name=self.get_provider_name(),
                stage="extract",
            )
        if response.status_code in (401, 403):
            raise StorageAccessDeniedError(
                message=f"Storage refused access to {ref.storage_key} ({response.status_code})",
                provider_name=self.get_provider_name(),
            )
        if response.is_error:
            raise StorageError(
                message=f"Storage returned {response.status_code} for {ref.storage_key}",
                provider_name=self.get_provider_name(),
                stage="extract",
            )

    async def fetch(self, ref: DocumentRef) -> bytes:
        url = self._url_for(ref)
        try:
            response = await self._http.get(
                url,
                headers=self._headers(),
                timeout=self._timeout,
                follow_redirects=True,
            )
        except httpx.TimeoutException as exc:
            raise StorageError(
                message=f"Timed out fetching {ref.storage_key}",
                provider_name=self.get_provider_name(),
                stage="extract",
            ) from exc
        except httpx.HTTPError as exc:
            raise StorageError(
                message=f"Transport error fetching {ref.storage_key}: {exc}",
                provider_name=self.get_provider_name(),
                stage="extract",
            ) from exc

        self._raise_for_status(response, ref)
        _logger.info("blob_fetched", key=ref.storage_key, size=len(response.content))
        return response.content

    async def put(self, ref: DocumentRef, data: bytes) -> None:
        url = self._url_for(ref)
        try:
            response = await self._http.put(
                url,
                content=data,
                headers={**self._headers(), "Content-Type": "application/octet-stream"},
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            raise StorageError(
                message=f"Transport error storing {ref.storage_key}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        self._raise_for_status(response, ref)
        _logger.info("blob_stored", key=ref.storage_key, size=len(data))

    def get_provider_name(self) -> str:
        return "http_storage"
