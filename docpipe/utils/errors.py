"""Custom exception hierarchy for docpipe.

All application exceptions inherit from :class:`DocpipeError`, which
carries an optional ``provider_name`` so error handlers can identify which
external service (e.g. "openai", "sqlite", "chromadb") caused the failure,
and an optional ``stage`` naming the pipeline stage that raised it.

The hierarchy is organized by how the orchestrator reacts:

    DocpipeError  (base -- catch-all for any docpipe error)
    +-- FatalDocumentError          (document moves to ``error``, no auto-retry)
    |   +-- UnreadableDocumentError
    |   +-- TextTooShortError
    |   +-- DocumentNotFoundError
    |   +-- StorageAccessDeniedError
    +-- StorageError                (transient blob/metadata store failure)
    +-- LLMError                    (any LLM API call failure)
    +-- RAGError                    (embedding or vector-index failure)
    +-- ChunkingError               (chunking could not produce drafts)
    +-- PartialEmbeddingFailureError
    +-- NoChunksFoundError          (informational, nothing to embed)
    +-- InvalidTransitionError      (compare-and-set on status lost)
    +-- InvalidInputError           (caller input rejected before any mutation)
    +-- ConfigurationError          (startup / missing config)

Anything that is not a :class:`FatalDocumentError` is treated as transient
by the orchestrator: the document keeps its status and is retried after a
cooldown.
"""


class DocpipeError(Exception):
    """Base exception for all docpipe errors.

    Every subclass carries a human-readable ``message``, an optional
    ``provider_name`` identifying which external service triggered the
    error, and an optional ``stage``.  The ``__str__`` method prefixes the
    provider name in brackets for structured log output, e.g.
    ``[openai] Rate limit exceeded``.
    """

    # HTTP status used by the API error middleware.
    status_code: int = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
        stage: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        self._stage = stage
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    @property
    def stage(self) -> str | None:
        return self._stage

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Fatal-to-document errors
# ---------------------------------------------------------------------------

class FatalDocumentError(DocpipeError):
    """Raised when a document can never succeed at its current stage without
    outside intervention (new upload, fixed permissions, manual retry)."""

    status_code = 422

    def __init__(
        self,
        message: str = "Document cannot be processed",
        provider_name: str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class UnreadableDocumentError(FatalDocumentError):
    """Raised when the binary could not be parsed at all (corrupt or unsupported)."""

    def __init__(
        self,
        message: str = "Document could not be parsed",
        provider_name: str | None = None,
        stage: str | None = "extract",
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class TextTooShortError(FatalDocumentError):
    """Raised when extraction yields less text than the configured minimum.

    Usually means a scanned or image-only document with no text layer.
    """

    def __init__(
        self,
        message: str = "Extracted text too short or unreadable",
        provider_name: str | None = None,
        stage: str | None = "extract",
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class DocumentNotFoundError(FatalDocumentError):
    """Raised when a document id (or its binary) does not exist."""

    status_code = 404

    def __init__(
        self,
        message: str = "Document not found",
        provider_name: str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class StorageAccessDeniedError(FatalDocumentError):
    """Raised when the blob storage refuses access to a document's key."""

    status_code = 403

    def __init__(
        self,
        message: str = "Access to the storage path was denied",
        provider_name: str | None = None,
        stage: str | None = "extract",
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


# ---------------------------------------------------------------------------
# Transient / retryable errors
# ---------------------------------------------------------------------------

class StorageError(DocpipeError):
    """Raised when blob storage or the metadata store fails transiently."""

    status_code = 503

    def __init__(
        self,
        message: str = "Storage operation failed",
        provider_name: str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class LLMError(DocpipeError):
    """Raised when an LLM API call fails or returns an unparseable response."""

    status_code = 502

    def __init__(
        self,
        message: str = "LLM API call failed",
        provider_name: str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class RAGError(DocpipeError):
    """Raised when an embedding or vector-index operation fails."""

    status_code = 502

    def __init__(
        self,
        message: str = "RAG pipeline operation failed",
        provider_name: str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class ChunkingError(DocpipeError):
    """Raised when a chunking strategy cannot produce any drafts."""

    def __init__(
        self,
        message: str = "Chunking failed",
        provider_name: str | None = None,
        stage: str | None = "chunk",
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class PartialEmbeddingFailureError(DocpipeError):
    """Raised when some, but not necessarily all, chunk embeddings failed.

    The successfully persisted embeddings are kept; the next run retries
    only the chunks whose embedding is still null.
    """

    status_code = 502

    def __init__(
        self,
        failed_count: int,
        message: str | None = None,
        provider_name: str | None = None,
        stage: str | None = "embed",
    ) -> None:
        self._failed_count = failed_count
        super().__init__(
            message=message or f"{failed_count} chunk embedding(s) failed",
            provider_name=provider_name,
            stage=stage,
        )

    @property
    def failed_count(self) -> int:
        return self._failed_count


class NoChunksFoundError(DocpipeError):
    """Raised when the embed stage finds no chunks for a document."""

    status_code = 409

    def __init__(
        self,
        message: str = "No chunks found to embed",
        provider_name: str | None = None,
        stage: str | None = "embed",
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


# ---------------------------------------------------------------------------
# State / input / configuration errors
# ---------------------------------------------------------------------------

class InvalidTransitionError(DocpipeError):
    """Raised when a conditional status update finds the document elsewhere."""

    status_code = 409

    def __init__(
        self,
        message: str = "Document is not in a state that allows this operation",
        provider_name: str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class InvalidInputError(DocpipeError):
    """Raised when caller input is rejected before any state mutation."""

    status_code = 400

    def __init__(
        self,
        message: str = "Invalid request",
        provider_name: str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)


class ConfigurationError(DocpipeError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
        stage: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, stage=stage)
