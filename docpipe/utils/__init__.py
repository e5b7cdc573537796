"""Utility modules for docpipe.

- **errors** -- Domain exception hierarchy rooted at DocpipeError; the
  orchestrator classifies failures as fatal or transient by class.
- **concurrency** -- semaphore-bounded gather and the settle-all helper
  that keeps one failing document from cancelling its siblings.
- **logging** -- structlog setup with a dual renderer: coloured console
  output in development, structured JSON in production.
- **text** -- token estimation, heuristic chunk metadata, and page-number
  inference from cumulative page boundaries.
"""

# -- Domain exception hierarchy --------------------------------------------
from docpipe.utils.errors import (
    ChunkingError,
    ConfigurationError,
    DocpipeError,
    DocumentNotFoundError,
    FatalDocumentError,
    InvalidInputError,
    InvalidTransitionError,
    LLMError,
    NoChunksFoundError,
    PartialEmbeddingFailureError,
    RAGError,
    StorageAccessDeniedError,
    StorageError,
    TextTooShortError,
    UnreadableDocumentError,
)

# -- Async concurrency helpers ---------------------------------------------
from docpipe.utils.concurrency import settle_all, throttled_gather

# -- Structured logging setup ----------------------------------------------
from docpipe.utils.logging import configure_logging, document_context, get_logger

# -- Text helpers ----------------------------------------------------------
from docpipe.utils.text import estimate_tokens, extract_keywords, infer_page_number

__all__ = [
    "ChunkingError",
    "ConfigurationError",
    "DocpipeError",
    "DocumentNotFoundError",
    "FatalDocumentError",
    "InvalidInputError",
    "InvalidTransitionError",
    "LLMError",
    "NoChunksFoundError",
    "PartialEmbeddingFailureError",
    "RAGError",
    "StorageAccessDeniedError",
    "StorageError",
    "TextTooShortError",
    "UnreadableDocumentError",
    "configure_logging",
    "document_context",
    "estimate_tokens",
    "extract_keywords",
    "get_logger",
    "infer_page_number",
    "settle_all",
    "throttled_gather",
]
