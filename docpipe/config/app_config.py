"""Typed, frozen view of the merged YAML + environment configuration.

Each pipeline component receives only the section it needs, e.g. the
chunker gets :class:`ChunkingConfig`, so tests can build a component with
a one-line config instead of a whole settings tree.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class _Section(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")


class ExtractionConfig(_Section):
    min_text_chars: int = Field(default=20, ge=0)


class ChunkingConfig(_Section):
    strategy: Literal["deterministic", "semantic"] = "deterministic"
    window_chars: int = Field(default=1000, ge=1)
    block_chars: int = Field(default=12000, ge=1)
    max_concurrent_blocks: int = Field(default=3, ge=1)
    llm_max_tokens: int = Field(default=4000, ge=1)


class EmbeddingConfig(_Section):
    batch_size: int = Field(default=50, ge=1)
    timeout_seconds: float = Field(default=30.0, gt=0)
    # Used only when no OpenAI key is set.
    ollama_model: str = "nomic-embed-text"


class RetrievalConfig(_Section):
    top_k: int = Field(default=20, ge=1)
    max_chunk_tokens: int = Field(default=3000, ge=1)
    relevance_ceiling: float = Field(default=5.0, gt=0)
    qa_token_budget: int = Field(default=6000, ge=1)
    report_token_budget: int = Field(default=12000, ge=1)
    history_messages: int = Field(default=4, ge=0)


class OrchestratorConfig(_Section):
    """Batch caps, leases and retry policy for :class:`PipelineOrchestrator`."""

    batch_size: int = Field(default=5, ge=1)
    concurrency: int = Field(default=3, ge=1)
    lease_seconds: int = Field(default=300, ge=1)
    max_retries: int = Field(default=5, ge=1)
    base_cooldown_seconds: float = Field(default=60.0, ge=0)
    max_cooldown_seconds: float = Field(default=3600.0, ge=0)
    continue_url: str = ""


class StorageConfig(_Section):
    public_bucket: str = "documents"
    private_bucket: str = "user-documents"
    timeout_seconds: float = Field(default=30.0, gt=0)


class LLMConfig(_Section):
    timeout_seconds: float = Field(default=25.0, gt=0)
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    available_providers: list[str] = Field(default_factory=list)


class AppConfig(_Section):
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
