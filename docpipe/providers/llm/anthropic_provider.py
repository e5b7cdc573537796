"""Anthropic LLM provider adapter.

Wraps the ``anthropic`` async client to implement :class:`ILLMProvider`
through the Messages API.

Differences from the OpenAI adapter:
    - The system prompt is a separate ``system=`` parameter, not a message.
    - Response content is a list of blocks; text blocks are joined.
"""

from __future__ import annotations

import anthropic
import structlog

from docpipe.config.settings import Settings
from docpipe.interfaces.llm_provider import ILLMProvider
from docpipe.models.retrieval import ChatMessage
from docpipe.utils.errors import LLMError

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_MODEL = "claude-sonnet-4-20250514"


class AnthropicLLMProvider(ILLMProvider):
    """LLM provider backed by the Anthropic Claude API."""

    def __init__(self, settings: Settings, timeout_seconds: float = 25.0) -> None:
        self._settings = settings
        self._api_key = settings.anthropic_api_key
        self._timeout_seconds = timeout_seconds
        self._client = anthropic.AsyncAnthropic(
            api_key=self._api_key,
            timeout=timeout_seconds,
        )
        self._model = settings.anthropic_model or _DEFAULT_MODEL

    # ------------------------------------------------------------------
    # ILLMProvider implementation
    # ------------------------------------------------------------------

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        history: list[ChatMessage] | None = None,
    ) -> str:
        messages = [{"role": m.role, "content": m.content} for m in history or []]
        messages.append({"role": "user", "content": user_prompt})

        try:
            response = await self._client.messages.create(
                model=self._model,
                max_tokens=max_tokens,
                system=system_prompt,
                messages=messages,
                temperature=temperature,
            )
            text_blocks = [block.text for block in response.content if block.type == "text"]
            if not text_blocks:
                raise LLMError(
                    message="Anthropic returned no text content",
                    provider_name=self.get_provider_name(),
                )
            logger.info(
                "anthropic_completion",
                model=self._model,
                history_turns=len(history or []),
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            )
            return "\n".join(text_blocks)
        except anthropic.APITimeoutError as exc:
            raise LLMError(
                message=f"Anthropic timed out after {self._timeout_seconds:g}s",
                provider_name=self.get_provider_name(),
            ) from exc
        except anthropic.APIError as exc:
            raise LLMError(
                message=f"Anthropic API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def validate_credentials(self) -> bool:
        """Send a one-token request to confirm the key is accepted."""
        if not self.is_available():
            return False
        try:
            await self._client.messages.create(
                model=self._model,
                max_tokens=1,
                messages=[{"role": "user", "content": "ping"}],
            )
            return True
        except anthropic.APIError:
            return False

    def get_provider_name(self) -> str:
        return "anthropic"
