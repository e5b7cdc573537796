"""Configuration module -- exports Settings, AppConfig and the loader helpers."""

from docpipe.config.app_config import (
    AppConfig,
    ChunkingConfig,
    EmbeddingConfig,
    ExtractionConfig,
    LLMConfig,
    OrchestratorConfig,
    RetrievalConfig,
    StorageConfig,
)
from docpipe.config.loader import build_app_config, load_config
from docpipe.config.settings import Settings

__all__ = [
    "AppConfig",
    "ChunkingConfig",
    "EmbeddingConfig",
    "ExtractionConfig",
    "LLMConfig",
    "OrchestratorConfig",
    "RetrievalConfig",
    "Settings",
    "StorageConfig",
    "build_app_config",
    "load_config",
]
