"""Unit tests for embedding provider adapters -- OpenAI-compatible and Nomic."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import openai
import pytest

from docpipe.config.app_config import EmbeddingConfig
from docpipe.config.settings import Settings
from docpipe.providers.embedding.nomic_embedding_provider import NomicEmbeddingProvider
from docpipe.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
from docpipe.utils.errors import RAGError


def _settings(**overrides) -> Settings:
    defaults = {
        "openai_api_key": "sk-test",
        "openai_base_url": "",
        "openai_embedding_model": "",
        "ollama_base_url": "http://localhost:11434",
    }
    defaults.update(overrides)
    return Settings(_env_file=None, **defaults)


def _embedding_response(vectors: list[list[float]], shuffled: bool = False) -> MagicMock:
    items = []
    for index, vector in enumerate(vectors):
        item = MagicMock()
        item.index = index
        item.embedding = vector
        items.append(item)
    response = MagicMock()
    response.data = list(reversed(items)) if shuffled else items
    response.usage.total_tokens = 7
    return response


class TestOpenAIEmbeddingProvider:
    def test_default_model_dimension(self) -> None:
        provider = OpenAIEmbeddingProvider(_settings())
        assert provider.get_dimension() == 1536
        assert provider.get_provider_name() == "openai_embedding"

    def test_unknown_model_defaults_to_768(self) -> None:
        provider = OpenAIEmbeddingProvider(_settings(openai_embedding_model="custom/model"))
        assert provider.get_dimension() == 768

    async def test_results_are_ordered_by_index(self) -> None:
        provider = OpenAIEmbeddingProvider(_settings())
        create = AsyncMock(return_value=_embedding_response([[1.0], [2.0], [3.0]], shuffled=True))
        with patch.object(provider._client.embeddings, "create", create):
            vectors = await provider.embed(["a", "b", "c"])
        assert vectors == [[1.0], [2.0], [3.0]]

    async def test_empty_input_makes_no_call(self) -> None:
        provider = OpenAIEmbeddingProvider(_settings())
        create = AsyncMock()
        with patch.object(provider._client.embeddings, "create", create):
            assert await provider.embed([]) == []
        create.assert_not_awaited()

    async def test_count_mismatch_raises(self) -> None:
        provider = OpenAIEmbeddingProvider(_settings())
        create = AsyncMock(return_value=_embedding_response([[1.0]]))
        with patch.object(provider._client.embeddings, "create", create):
            with pytest.raises(RAGError):
                await provider.embed(["a", "b"])

    async def test_api_error_maps_to_rag_error(self) -> None:
        provider = OpenAIEmbeddingProvider(_settings())
        request = httpx.Request("POST", "https://api.openai.com/v1/embeddings")
        create = AsyncMock(side_effect=openai.APIConnectionError(request=request))
        with patch.object(provider._client.embeddings, "create", create):
            with pytest.raises(RAGError):
                await provider.embed_single("question")


class TestNomicEmbeddingProvider:
    async def test_embed_single_uses_configured_model(self) -> None:
        provider = NomicEmbeddingProvider(_settings())
        create = AsyncMock(return_value=_embedding_response([[0.5, 0.5]]))
        with patch.object(provider._client.embeddings, "create", create):
            assert await provider.embed_single("text") == [0.5, 0.5]
        assert create.await_args.kwargs["model"] == "nomic-embed-text"
        assert provider.get_dimension() == 768

    async def test_requests_follow_configured_batch_size(self) -> None:
        provider = NomicEmbeddingProvider(_settings(), EmbeddingConfig(batch_size=2))
        create = AsyncMock(
            side_effect=[
                _embedding_response([[1.0], [2.0]], shuffled=True),
                _embedding_response([[3.0]]),
            ]
        )
        with patch.object(provider._client.embeddings, "create", create):
            vectors = await provider.embed(["a", "b", "c"])

        assert vectors == [[1.0], [2.0], [3.0]]
        assert [c.kwargs["input"] for c in create.await_args_list] == [["a", "b"], ["c"]]

    def test_other_ollama_model(self) -> None:
        provider = NomicEmbeddingProvider(
            _settings(), EmbeddingConfig(ollama_model="mxbai-embed-large")
        )
        assert provider.get_dimension() == 1024

    async def test_timeout_maps_to_rag_error(self) -> None:
        provider = NomicEmbeddingProvider(_settings(), EmbeddingConfig(timeout_seconds=4))
        request = httpx.Request("POST", "http://localhost:11434/v1/embeddings")
        create = AsyncMock(side_effect=openai.APITimeoutError(request=request))
        with patch.object(provider._client.embeddings, "create", create):
            with pytest.raises(RAGError, match="timed out after 4s") as exc_info:
                await provider.embed(["a"])
        assert exc_info.value.provider_name == "nomic_embedding"

    async def test_unreachable_ollama_maps_to_rag_error(self) -> None:
        provider = NomicEmbeddingProvider(_settings())
        request = httpx.Request("POST", "http://localhost:11434/v1/embeddings")
        create = AsyncMock(side_effect=openai.APIConnectionError(request=request))
        with patch.object(provider._client.embeddings, "create", create):
            with pytest.raises(RAGError, match="not reachable at http://localhost:11434"):
                await provider.embed(["a"])

    async def test_count_mismatch_raises(self) -> None:
        provider = NomicEmbeddingProvider(_settings())
        create = AsyncMock(return_value=_embedding_response([[1.0]]))
        with patch.object(provider._client.embeddings, "create", create):
            with pytest.raises(RAGError):
                await provider.embed(["a", "b"])

    def test_is_available_when_model_is_pulled(self) -> None:
        provider = NomicEmbeddingProvider(_settings())
        tags = MagicMock(status_code=200)
        tags.json.return_value = {"models": [{"name": "nomic-embed-text:latest"}]}
        with patch("httpx.get", return_value=tags):
            assert provider.is_available() is True

    def test_unavailable_when_model_is_missing(self) -> None:
        provider = NomicEmbeddingProvider(_settings())
        tags = MagicMock(status_code=200)
        tags.json.return_value = {"models": [{"name": "llama3.2:latest"}]}
        with patch("httpx.get", return_value=tags):
            assert provider.is_available() is False

    def test_unavailable_when_ollama_is_down(self) -> None:
        provider = NomicEmbeddingProvider(_settings())
        with patch("httpx.get", side_effect=httpx.ConnectError("refused")):
            assert provider.is_available() is False
