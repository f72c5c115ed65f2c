"""
foreman.integrations.llm.anthropic - Anthropic Messages API Provider
======================================================================

Completion provider backed by ``anthropic.AsyncAnthropic``. The client is
created lazily on first use so that constructing the provider never needs
network access or a key.

Usage:
    >>> provider = AnthropicLLMProvider(LLMConfig(provider="anthropic", api_key="sk-ant-..."))
    >>> response = await provider.generate_with_system("You are...", "Analyze...")
"""

from __future__ import annotations

import os
from typing import Any, Optional

import structlog
from anthropic import AsyncAnthropic, APIError

from foreman.core.config import LLMConfig
from foreman.core.exceptions import CollaboratorError
from foreman.integrations.llm.base import BaseLLMProvider, LLMResponse, LLMUsage


logger = structlog.get_logger()


class AnthropicLLMProvider(BaseLLMProvider):
    """Provider that calls ``client.messages.create``.

    API failures are re-raised as CollaboratorError so callers only need to
    handle the Foreman hierarchy.
    """

    def __init__(
        self,
        config: LLMConfig,
        client: Optional[AsyncAnthropic] = None,
    ) -> None:
        super().__init__(config)
        self._client = client
        self._logger = logger.bind(component="anthropic_llm_provider", model=config.model)

    def _get_client(self) -> AsyncAnthropic:
        if self._client is None:
            kwargs: dict[str, Any] = {}
            if self._config.api_key:
                kwargs["api_key"] = self._config.api_key
            if self._config.api_base_url:
                kwargs["base_url"] = self._config.api_base_url
            self._client = AsyncAnthropic(**kwargs)
        return self._client

    async def generate(
        self,
        prompt: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        stop_sequences: Optional[list[str]] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        return await self._create(
            prompt,
            system=None,
            temperature=temperature,
            max_tokens=max_tokens,
            stop_sequences=stop_sequences,
        )

    async def generate_with_system(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        stop_sequences: Optional[list[str]] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        return await self._create(
            user_prompt,
            system=system_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            stop_sequences=stop_sequences,
        )

    async def _create(
        self,
        prompt: str,
        *,
        system: Optional[str],
        temperature: Optional[float],
        max_tokens: Optional[int],
        stop_sequences: Optional[list[str]],
    ) -> LLMResponse:
        request: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens or self.max_tokens,
            "temperature": self.temperature if temperature is None else temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            request["system"] = system
        if stop_sequences:
            request["stop_sequences"] = stop_sequences

        try:
            response = await self._get_client().messages.create(**request)
        except APIError as exc:
            self._logger.error("anthropic_request_failed", error=str(exc))
            raise CollaboratorError(
                message=f"Anthropic request failed: {exc}",
                collaborator="llm",
                details={"model": self.model},
            ) from exc

        text = ""
        for block in response.content:
            if hasattr(block, "text"):
                text += block.text

        usage = LLMUsage(
            prompt_tokens=response.usage.input_tokens,
            completion_tokens=response.usage.output_tokens,
            total_tokens=response.usage.input_tokens + response.usage.output_tokens,
        )
        finish_reason = "length" if response.stop_reason == "max_tokens" else "stop"
        return LLMResponse(
            content=text,
            model=response.model,
            usage=usage,
            finish_reason=finish_reason,
            metadata={"request_id": response.id, "stop_reason": response.stop_reason},
        )

    async def validate(self) -> bool:
        return bool(self._config.api_key or os.environ.get("ANTHROPIC_API_KEY"))
