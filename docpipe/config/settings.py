"""Application settings loaded from environment variables via pydantic-settings.

# ─── HOW SETTINGS WORK ────────────────────────────────────────────────
#
# pydantic-settings reads configuration from two sources (in priority
# order):
#
#   1. **Environment variables** -- e.g. OPENAI_API_KEY=sk-abc123
#   2. **.env file** -- key=value lines in the project root .env file
#
# Field ``openai_api_key`` maps to env var ``OPENAI_API_KEY``.  Defaults
# apply when neither source sets a value.
#
# Only secrets, endpoints and paths live here.  Tuning knobs (batch
# sizes, budgets, cooldowns) live in config/config.yaml and are read
# through :mod:`docpipe.config.loader`.
# ──────────────────────────────────────────────────────────────────────
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """docpipe application settings.

    Environment variables override defaults. Loaded from .env file when present.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # === LLM / embedding providers ===
    # Empty string = "not configured"; main.py skips providers with empty keys.
    openai_api_key: str = ""
    openai_base_url: str = ""  # OpenAI-compatible endpoint (TogetherAI, etc.)
    openai_text_model: str = ""
    openai_embedding_model: str = ""
    anthropic_api_key: str = ""
    anthropic_model: str = ""
    ollama_base_url: str = "http://localhost:11434"

    # === Trigger surface ===
    # Shared secret for POST /api/v1/continue-processing.  Empty disables
    # the endpoint (every call is rejected).
    continue_processing_secret: str = ""
    continue_processing_url: str = ""

    # === Persistence ===
    database_path: str = "data/docpipe.db"
    storage_root: str = "data/blobs"
    storage_base_url: str = ""  # set to use the HTTP blob storage instead of local files
    storage_api_token: str = ""
    chromadb_persist_dir: str = "./data/chromadb"
    chromadb_collection: str = "docpipe_chunks"

    # === App Config ===
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    app_env: str = "development"
    log_level: str = "INFO"

    def get_available_llm_providers(self) -> list[str]:
        """Return a list of LLM provider names that have non-empty API keys configured."""
        providers: list[str] = []
        if self.anthropic_api_key:
            providers.append("anthropic")
        if self.openai_api_key:
            providers.append("openai")
        return providers
