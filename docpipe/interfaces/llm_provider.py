"""Abstract base class for LLM service providers.

Defines the contract for any large-language-model backend used for
semantic chunk segmentation and for answer/report generation.
Implementations wrap the Anthropic API or an OpenAI-compatible API; every
call-site stays provider-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from docpipe.models.retrieval import ChatMessage

# Concrete implementations: AnthropicLLMProvider, OpenAILLMProvider
# Located in: docpipe/providers/llm/


class ILLMProvider(ABC):
    """Contract for completion services used by the chunker and QA service."""

    @abstractmethod
    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.3,
        max_tokens: int = 4000,
        history: list[ChatMessage] | None = None,
    ) -> str:
        """Generate a text completion from the model.

        Parameters
        ----------
        system_prompt:
            The system/instruction message that sets the model's behaviour.
        user_prompt:
            The final user turn containing the actual request or data.
        temperature:
            Sampling temperature (0.0 = deterministic).
        max_tokens:
            Upper bound on the number of tokens in the response.
        history:
            Earlier conversation turns, oldest first, sent between the
            system prompt and *user_prompt*.

        Returns
        -------
        str
            The model's text response.

        Raises
        ------
        docpipe.utils.errors.LLMError
            If the API call fails, times out, or returns no text.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this LLM provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured.

        Implementations verify that credentials are present without making
        an inference call.
        """

    @abstractmethod
    async def validate_credentials(self) -> bool:
        """Perform a lightweight API call to confirm credentials are valid."""
