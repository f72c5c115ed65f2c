"""
foreman.integrations.llm - Completion Providers
=================================================

    - BaseLLMProvider:      abstract contract
    - MockLLMProvider:      scripted responses for tests and offline runs
    - AnthropicLLMProvider: Anthropic Messages API (imported lazily by the factory)

Usage:
    >>> provider = create_llm_provider(config.llm)
    >>> response = await provider.generate_with_system(system, user)
"""

from foreman.integrations.llm.base import BaseLLMProvider, LLMResponse, LLMUsage
from foreman.integrations.llm.mock import MockLLMProvider
from foreman.integrations.llm.factory import create_llm_provider

__all__ = [
    "BaseLLMProvider",
    "LLMResponse",
    "LLMUsage",
    "MockLLMProvider",
    "create_llm_provider",
]
