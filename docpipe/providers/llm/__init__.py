"""LLM provider adapters.

Two concrete implementations of ILLMProvider (docpipe/interfaces/llm_provider.py):
    - OpenAILLMProvider    -- gpt-4o-mini, or any OpenAI-compatible API
    - AnthropicLLMProvider -- Claude Sonnet

main.py picks the provider matching the configured API key and injects it
into the chunker and QA service.
"""

from docpipe.providers.llm.anthropic_provider import AnthropicLLMProvider
from docpipe.providers.llm.openai_provider import OpenAILLMProvider

__all__ = ["AnthropicLLMProvider", "OpenAILLMProvider"]
