"""
foreman.integrations.llm.base - Completion Service Interface
==============================================================

The contract every completion provider implements. Foreman talks to a
language model in exactly two places: the AI-assisted tier of the
ErrorResolver and the dataset search capability. Both go through this
interface, so tests run against MockLLMProvider without credentials.

    ┌────────────────┐  generate_with_system()  ┌──────────────────┐
    │ ErrorResolver  │ ───────────────────────→ │ BaseLLMProvider  │
    │ dataset_search │ ←──── LLMResponse ─────  │   (abstract)     │
    └────────────────┘                          └────────┬─────────┘
                                                ┌────────┴─────────┐
                                           ┌────▼───┐      ┌───────▼─────┐
                                           │  Mock  │      │  Anthropic  │
                                           └────────┘      └─────────────┘
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from foreman.core.config import LLMConfig


class LLMUsage(BaseModel):
    """Token usage for a single completion call."""

    prompt_tokens: int = Field(default=0, ge=0, description="Tokens in the input prompt")
    completion_tokens: int = Field(default=0, ge=0, description="Tokens in the output")
    total_tokens: int = Field(default=0, ge=0, description="Total tokens consumed")


class LLMResponse(BaseModel):
    """Provider-independent completion result.

    Attributes:
        content: Generated text.
        model: Model that produced it.
        usage: Token counts.
        finish_reason: "stop", "length" or "error".
        metadata: Provider extras (request id, stop reason, ...).
        created_at: Creation timestamp (UTC).
    """

    content: str = Field(description="The generated text content")
    model: str = Field(description="Model identifier that produced this response")
    usage: LLMUsage = Field(default_factory=LLMUsage)
    finish_reason: str = Field(
        default="stop",
        description="Why generation stopped: 'stop', 'length', or 'error'",
    )
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
    )


class BaseLLMProvider(ABC):
    """Abstract base class for completion providers.

    The base class stores the LLMConfig and exposes it through read-only
    properties. Subclasses implement ``generate`` and ``generate_with_system``
    and may override ``validate`` and ``get_available_models``.
    """

    def __init__(self, config: LLMConfig) -> None:
        self._config = config

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def provider_name(self) -> str:
        return self._config.provider

    @property
    def model(self) -> str:
        return self._config.model

    @property
    def temperature(self) -> float:
        return self._config.temperature

    @property
    def max_tokens(self) -> int:
        return self._config.max_tokens

    @property
    def config(self) -> LLMConfig:
        return self._config

    # =========================================================================
    # Abstract Methods
    # =========================================================================

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        stop_sequences: Optional[list[str]] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Generate text from a single user prompt.

        Args:
            prompt: The input prompt.
            temperature: Per-call override; None uses the config default.
            max_tokens: Per-call override; None uses the config default.
            stop_sequences: Strings that stop generation.
            **kwargs: Provider-specific arguments.

        Raises:
            CollaboratorError: If the provider call fails.
        """
        ...

    @abstractmethod
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
        """Generate text with a system prompt framing the user prompt."""
        ...

    # =========================================================================
    # Optional Methods
    # =========================================================================

    async def validate(self) -> bool:
        """Return True when the provider is usable (credentials present, ...)."""
        return True

    def get_available_models(self) -> list[str]:
        return [self.model]

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"provider={self.provider_name!r}, "
            f"model={self.model!r})"
        )
