"""docpipe FastAPI application entry point.

Wires together all providers, services, and routes via dependency injection.
Loads configuration from ``.env`` and ``config/config.yaml`` and configures
structured logging.  ``_build_all`` is also used by the CLI so both trigger
surfaces run against identically composed services.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

import httpx
import structlog
import uvicorn
from fastapi import FastAPI

from docpipe.api.middleware import (
    RequestLoggingMiddleware,
    configure_cors,
    install_error_handlers,
)
from docpipe.api.routes import router as api_router
from docpipe.config.app_config import AppConfig, EmbeddingConfig, LLMConfig, StorageConfig
from docpipe.config.loader import build_app_config, load_config
from docpipe.config.settings import Settings
from docpipe.interfaces.blob_storage_provider import IBlobStorageProvider
from docpipe.interfaces.embedding_provider import IEmbeddingProvider
from docpipe.interfaces.llm_provider import ILLMProvider
from docpipe.pipeline.orchestrator import PipelineOrchestrator
from docpipe.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from docpipe.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from docpipe.providers.llm.anthropic_provider import AnthropicLLMProvider
from docpipe.providers.llm.openai_provider import OpenAILLMProvider
from docpipe.providers.storage.http_blob_storage import HTTPBlobStorage
from docpipe.providers.storage.local_blob_storage import LocalBlobStorage
from docpipe.providers.store.sqlite_chunk_store import SQLiteChunkStore
from docpipe.providers.store.sqlite_document_store import SQLiteDocumentStore
from docpipe.providers.vector_index.chromadb_index import ChromaDBVectorIndex
from docpipe.services.ingestion.chunker import build_chunking_strategy
from docpipe.services.ingestion.embedder import ChunkEmbedder
from docpipe.services.ingestion.extractor import DocumentExtractor
from docpipe.services.qa_service import QAService
from docpipe.services.retriever import Retriever
from docpipe.utils.logging import configure_logging, get_logger

_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Module-level settings & logging
# ---------------------------------------------------------------------------

settings = Settings()
config = load_config(settings=settings)

configure_logging(
    log_level=settings.log_level,
    json_output=(settings.app_env == "production"),
)
_logger: structlog.BoundLogger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Provider selection
# ---------------------------------------------------------------------------


def _build_llm_provider(app_settings: Settings, llm_config: LLMConfig) -> ILLMProvider | None:
    """Select the first LLM provider with a configured API key.

    Priority order: Anthropic -> OpenAI.  Returns ``None`` when neither is
    configured; question answering and semantic chunking are then
    unavailable.
    """
    if app_settings.anthropic_api_key:
        return AnthropicLLMProvider(settings=app_settings, timeout_seconds=llm_config.timeout_seconds)
    if app_settings.openai_api_key:
        return OpenAILLMProvider(settings=app_settings, timeout_seconds=llm_config.timeout_seconds)
    return None


def _build_embedding_provider(
    app_settings: Settings, embedding_config: EmbeddingConfig
) -> IEmbeddingProvider:
    """Select the embedding provider.

    Priority: OpenAI/OpenAI-compatible (if API key set) -> Nomic/Ollama.
    Nomic is returned even when Ollama is unreachable or the model is not
    pulled at startup; the embed stage then fails transiently and retries
    on its cooldown schedule.
    """
    if app_settings.openai_api_key:
        provider: IEmbeddingProvider = OpenAIEmbeddingProvider(
            settings=app_settings, timeout_seconds=embedding_config.timeout_seconds
        )
        if provider.is_available():
            return provider

    provider = NomicEmbeddingProvider(settings=app_settings, embedding_config=embedding_config)
    if not provider.is_available():
        _logger.warning(
            "embedding_provider_unreachable",
            provider=provider.get_provider_name(),
            base_url=app_settings.ollama_base_url,
            model=embedding_config.ollama_model,
        )
    return provider


def _build_blob_storage(
    app_settings: Settings,
    storage_config: StorageConfig,
    http_client: httpx.AsyncClient,
) -> IBlobStorageProvider:
    """HTTP storage when ``STORAGE_BASE_URL`` is set, local files otherwise."""
    if app_settings.storage_base_url:
        return HTTPBlobStorage(
            http_client=http_client,
            base_url=app_settings.storage_base_url,
            api_token=app_settings.storage_api_token,
            public_bucket=storage_config.public_bucket,
            private_bucket=storage_config.private_bucket,
            timeout_seconds=storage_config.timeout_seconds,
        )
    return LocalBlobStorage(
        root=app_settings.storage_root,
        public_bucket=storage_config.public_bucket,
        private_bucket=storage_config.private_bucket,
    )


# ---------------------------------------------------------------------------
# Full DI assembly
# ---------------------------------------------------------------------------


def _build_all(
    app_settings: Settings,
    raw_config: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Construct every provider and service instance for the application.

    Returns a flat dict of named components to be stored on ``app.state``.
    """
    app_config: AppConfig = build_app_config(raw_config if raw_config is not None else config)

    # -- Shared resources --
    http_client = httpx.AsyncClient(timeout=app_config.storage.timeout_seconds)

    # -- Persistence --
    document_store = SQLiteDocumentStore(db_path=app_settings.database_path)
    chunk_store = SQLiteChunkStore(db_path=app_settings.database_path)
    blob_storage = _build_blob_storage(app_settings, app_config.storage, http_client)
    vector_index = ChromaDBVectorIndex(
        persist_directory=app_settings.chromadb_persist_dir,
        collection_name=app_settings.chromadb_collection,
    )

    # -- Model providers --
    llm = _build_llm_provider(app_settings, app_config.llm)
    embedding_provider = _build_embedding_provider(app_settings, app_config.embedding)

    # -- Stage services --
    extractor = DocumentExtractor(min_text_chars=app_config.extraction.min_text_chars)
    chunking_strategy = build_chunking_strategy(app_config.chunking, llm=llm)
    embedder = ChunkEmbedder(
        chunk_store=chunk_store,
        embedding_provider=embedding_provider,
        vector_index=vector_index,
        batch_size=app_config.embedding.batch_size,
    )

    orchestrator = PipelineOrchestrator(
        document_store=document_store,
        chunk_store=chunk_store,
        blob_storage=blob_storage,
        extractor=extractor,
        chunking_strategy=chunking_strategy,
        embedder=embedder,
        config=app_config.orchestrator,
        http_client=http_client,
        continue_secret=app_settings.continue_processing_secret,
    )

    # -- Question answering (needs an LLM) --
    qa_service = None
    if llm is not None:
        qa_service = QAService(
            llm=llm,
            retriever=Retriever(embedding_provider=embedding_provider, vector_index=vector_index),
            config=app_config.retrieval,
            temperature=app_config.llm.temperature,
        )

    # -- Provider registry for /health --
    provider_registry: dict[str, str] = {
        "llm": llm.get_provider_name() if llm is not None else "none",
        "embedding": embedding_provider.get_provider_name(),
        "blob_storage": blob_storage.get_provider_name(),
        "document_store": document_store.get_provider_name(),
        "vector_index": vector_index.get_provider_name(),
        "chunking": chunking_strategy.get_strategy_name(),
    }

    return {
        "http_client": http_client,
        "app_config": app_config,
        "document_store": document_store,
        "chunk_store": chunk_store,
        "blob_storage": blob_storage,
        "vector_index": vector_index,
        "orchestrator": orchestrator,
        "qa_service": qa_service,
        "continue_secret": app_settings.continue_processing_secret,
        "provider_registry": provider_registry,
        "version": _VERSION,
    }


async def initialize_components(components: dict[str, Any]) -> None:
    """Create the SQLite schema before first use."""
    await components["document_store"].initialize()
    await components["chunk_store"].initialize()


# ---------------------------------------------------------------------------
# Application lifespan (startup / shutdown)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _lifespan(application: FastAPI):  # noqa: ANN201
    """Initialise all providers and services on startup, clean up on shutdown."""
    components = _build_all(settings)

    for key, value in components.items():
        setattr(application.state, key, value)

    await initialize_components(components)

    _logger.info(
        "app_startup",
        version=_VERSION,
        environment=settings.app_env,
        **components["provider_registry"],
    )

    yield

    # -- Shutdown: close shared httpx client --
    http_client: httpx.AsyncClient = components["http_client"]
    await http_client.aclose()
    _logger.info("app_shutdown", message="HTTP client closed")


# ---------------------------------------------------------------------------
# FastAPI application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Build and configure the FastAPI application."""
    application = FastAPI(
        title="docpipe API",
        version=_VERSION,
        description=(
            "Register documents, drive them through extraction, chunking and "
            "embedding, and answer questions from the indexed chunks."
        ),
        lifespan=_lifespan,
    )

    # -- Middleware (order matters: last added = first executed) --
    install_error_handlers(application)
    application.add_middleware(RequestLoggingMiddleware)
    configure_cors(application)

    application.include_router(api_router)
    return application


app = create_app()

# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    uvicorn.run(
        "docpipe.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=(settings.app_env == "development"),
    )
