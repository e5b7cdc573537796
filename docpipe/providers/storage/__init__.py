"""Blob storage adapters (IBlobStorageProvider).

    - LocalBlobStorage -- files under STORAGE_ROOT, one directory per bucket
    - HTTPBlobStorage  -- bearer-authenticated object storage over httpx;
      selected when STORAGE_BASE_URL is set
"""

from docpipe.providers.storage.http_blob_storage import HTTPBlobStorage
from docpipe.providers.storage.local_blob_storage import LocalBlobStorage

__all__ = ["HTTPBlobStorage", "LocalBlobStorage"]
