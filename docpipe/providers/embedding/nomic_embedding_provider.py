"""Local embedding provider served by Ollama.

The keyless fallback for the embed stage.  Ollama exposes an
OpenAI-compatible ``/v1/embeddings`` endpoint, so the ``openai`` client is
reused; only the model, the batch size and the error messages differ from
:class:`OpenAIEmbeddingProvider`.  ``nomic-embed-text`` (768 dims) is the
default model; any other pulled model can be named in
``embedding.ollama_model``.
"""

from __future__ import annotations

import httpx
import openai
import structlog

from docpipe.config.app_config import EmbeddingConfig
from docpipe.config.settings import Settings
from docpipe.interfaces.embedding_provider import IEmbeddingProvider
from docpipe.utils.errors import RAGError

logger = structlog.get_logger(logger_name=__name__)

_OLLAMA_MODEL_DIMENSIONS: dict[str, int] = {
    "nomic-embed-text": 768,
    "mxbai-embed-large": 1024,
    "all-minilm": 384,
    "bge-m3": 1024,
}


class NomicEmbeddingProvider(IEmbeddingProvider):
    """Embeds chunk text with a model pulled into a local Ollama server.

    Parameters
    ----------
    settings:
        Supplies ``ollama_base_url``.
    embedding_config:
        Model name, per-request batch size and timeout.  Ollama embeds a
        request sequentially, so batches stay at the embed stage's size
        instead of one large request that would outlive the timeout.
    """

    def __init__(self, settings: Settings, embedding_config: EmbeddingConfig | None = None) -> None:
        config = embedding_config or EmbeddingConfig()
        self._base_url = settings.ollama_base_url.rstrip("/")
        self._model = config.ollama_model
        self._batch_size = config.batch_size
        self._timeout_seconds = config.timeout_seconds
        self._dimension = _OLLAMA_MODEL_DIMENSIONS.get(self._model.split(":")[0], 768)
        self._client = openai.AsyncOpenAI(
            base_url=f"{self._base_url}/v1",
            api_key="ollama",  # required by the client, ignored by Ollama
            timeout=openai.Timeout(config.timeout_seconds, connect=3.0),
            max_retries=0,
        )

    async def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        vectors: list[list[float]] = []
        for start in range(0, len(texts), self._batch_size):
            batch = texts[start : start + self._batch_size]
            try:
                response = await self._client.embeddings.create(input=batch, model=self._model)
            except openai.APITimeoutError as exc:
                raise RAGError(
                    message=(
                        f"Ollama model {self._model} timed out after "
                        f"{self._timeout_seconds:g}s on {len(batch)} texts"
                    ),
                    provider_name=self.get_provider_name(),
                ) from exc
            except openai.APIConnectionError as exc:
                raise RAGError(
                    message=f"Ollama is not reachable at {self._base_url}",
                    provider_name=self.get_provider_name(),
                ) from exc
            except openai.NotFoundError as exc:
                raise RAGError(
                    message=f"Ollama model {self._model} is not pulled (ollama pull {self._model})",
                    provider_name=self.get_provider_name(),
                ) from exc
            except openai.APIError as exc:
                raise RAGError(
                    message=f"Ollama embedding error: {exc}",
                    provider_name=self.get_provider_name(),
                ) from exc

            vectors.extend(item.embedding for item in sorted(response.data, key=lambda d: d.index))
            logger.debug("ollama_embedding_batch", model=self._model, batch_size=len(batch))

        if len(vectors) != len(texts):
            raise RAGError(
                message=f"Ollama returned {len(vectors)} vectors for {len(texts)} texts",
                provider_name=self.get_provider_name(),
            )
        return vectors

    async def embed_single(self, text: str) -> list[float]:
        (vector,) = await self.embed([text])
        return vector

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return "nomic_embedding"

    def is_available(self) -> bool:
        """Return ``True`` if Ollama answers and has the model pulled."""
        try:
            response = httpx.get(f"{self._base_url}/api/tags", timeout=3.0)
        except httpx.HTTPError:
            return False
        if response.status_code != 200:
            return False
        pulled = {m.get("name", "").split(":")[0] for m in response.json().get("models", [])}
        return self._model.split(":")[0] in pulled
