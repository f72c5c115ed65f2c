"""
foreman.integrations.llm.factory - Provider Factory
=====================================================

Maps ``LLMConfig.provider`` to a concrete provider:

    - "mock"      → MockLLMProvider (no credentials needed)
    - "anthropic" → AnthropicLLMProvider
"""

from __future__ import annotations

from foreman.core.config import LLMConfig
from foreman.integrations.llm.base import BaseLLMProvider


def create_llm_provider(config: LLMConfig) -> BaseLLMProvider:
    """Create a provider instance for ``config.provider``.

    Raises:
        ValueError: If the provider name is not recognized.
    """
    provider_name = config.provider.lower()

    if provider_name == "mock":
        from foreman.integrations.llm.mock import MockLLMProvider
        return MockLLMProvider(config)

    if provider_name == "anthropic":
        from foreman.integrations.llm.anthropic import AnthropicLLMProvider
        return AnthropicLLMProvider(config)

    raise ValueError(
        f"Unknown LLM provider: '{provider_name}'. "
        f"Available providers: 'mock', 'anthropic'."
    )
