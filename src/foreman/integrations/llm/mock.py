"""
foreman.integrations.llm.mock - Scripted Completion Provider
==============================================================

A provider that never touches the network. It is the default provider and
the one the test-suite drives.

How It Works:
    1. If failure simulation is on, raise.
    2. If a response is queued, return it (FIFO).
    3. Otherwise build a default from the prompt text:
         - error-analysis prompts → an unresolved resolution JSON
         - dataset prompts        → a dataset recommendation JSON
         - anything else          → ``default_response``

Usage:
    >>> provider = MockLLMProvider()
    >>> provider.queue_response('{"fixed": true, "retry_command": "ls"}')
    >>> response = await provider.generate_with_system("sys", "user")
"""

from __future__ import annotations

import json
from collections import deque
from typing import Any, Optional

import structlog

from foreman.core.config import LLMConfig
from foreman.integrations.llm.base import BaseLLMProvider, LLMResponse, LLMUsage


logger = structlog.get_logger()


class MockLLMProvider(BaseLLMProvider):
    """Mock completion provider with a response queue and call tracking.

    Attributes:
        _response_queue: FIFO queue of pre-configured responses.
        _call_history: One dict per call (prompt, system_prompt, overrides).
        _should_fail: When True every call raises RuntimeError.

    Example:
        >>> provider = MockLLMProvider()
        >>> provider.queue_response("Hello")
        >>> (await provider.generate("Say hello")).content
        'Hello'
    """

    def __init__(
        self,
        config: Optional[LLMConfig] = None,
        default_response: str = "Mock LLM response",
    ) -> None:
        if config is None:
            config = LLMConfig(provider="mock", model="mock-model")
        super().__init__(config)

        self._response_queue: deque[LLMResponse] = deque()
        self._call_history: list[dict[str, Any]] = []
        self._default_response = default_response

        # --- Error Simulation ---
        self._should_fail: bool = False
        self._failure_message: str = "Mock LLM API error"

        self._logger = logger.bind(component="mock_llm_provider")

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def call_history(self) -> list[dict[str, Any]]:
        return self._call_history

    @property
    def call_count(self) -> int:
        return len(self._call_history)

    @property
    def queue_size(self) -> int:
        return len(self._response_queue)

    # =========================================================================
    # Queue Management
    # =========================================================================

    def queue_response(
        self,
        content: str,
        *,
        model: Optional[str] = None,
        finish_reason: str = "stop",
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        """Queue a response with the given text. Responses are served FIFO."""
        response = LLMResponse(
            content=content,
            model=model or self.model,
            usage=self._estimate_usage(content),
            finish_reason=finish_reason,
            metadata=metadata or {},
        )
        self._response_queue.append(response)

    def queue_llm_response(self, response: LLMResponse) -> None:
        self._response_queue.append(response)

    def clear_queue(self) -> None:
        self._response_queue.clear()

    def clear_history(self) -> None:
        self._call_history.clear()

    def set_should_fail(self, should_fail: bool, message: str = "Mock LLM API error") -> None:
        """Make every subsequent call raise RuntimeError(message)."""
        self._should_fail = should_fail
        self._failure_message = message

    # =========================================================================
    # Core Interface
    # =========================================================================

    async def generate(
        self,
        prompt: str,
        *,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        stop_sequences: Optional[list[str]] = None,
        **kwargs: Any,
    ) -> LLMResponse:
        self._call_history.append({
            "prompt": prompt,
            "system_prompt": None,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "kwargs": kwargs,
        })
        self._logger.debug(
            "mock_generate_called",
            prompt_length=len(prompt),
            queue_size=len(self._response_queue),
        )

        if self._should_fail:
            raise RuntimeError(self._failure_message)
        if self._response_queue:
            return self._response_queue.popleft()
        return self._generate_smart_default(prompt)

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
        self._call_history.append({
            "prompt": user_prompt,
            "system_prompt": system_prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "kwargs": kwargs,
        })
        self._logger.debug(
            "mock_generate_with_system_called",
            system_prompt_length=len(system_prompt),
            user_prompt_length=len(user_prompt),
            queue_size=len(self._response_queue),
        )

        if self._should_fail:
            raise RuntimeError(self._failure_message)
        if self._response_queue:
            return self._response_queue.popleft()
        return self._generate_smart_default(f"{system_prompt}\n\n{user_prompt}")

    def get_available_models(self) -> list[str]:
        return ["mock-model"]

    # =========================================================================
    # Smart Defaults
    # =========================================================================

    def _generate_smart_default(self, prompt: str) -> LLMResponse:
        """Pick a default body from keywords in the prompt.

        Error-analysis prompts get an unresolved resolution so that a test
        which never queued a response still exercises the exhaustion path.
        """
        prompt_lower = prompt.lower()

        if "error resolution" in prompt_lower or "analyze this error" in prompt_lower:
            content = json.dumps({
                "fixed": False,
                "retry_command": None,
                "error_analysis": "Mock analysis: no automated fix available",
                "recommendations": ["Inspect the error output manually"],
            })
        elif "dataset" in prompt_lower:
            content = json.dumps({
                "dataset_type": "classification",
                "dataset_name": "Iris",
                "dataset_url": "https://raw.githubusercontent.com/mwaskom/seaborn-data/master/iris.csv",
                "file_format": "csv",
                "reasoning": "Small, well-known tabular dataset",
                "expected_features": ["sepal_length", "sepal_width", "petal_length", "petal_width"],
                "expected_samples": 150,
            })
        else:
            content = self._default_response

        return LLMResponse(
            content=content,
            model=self.model,
            usage=self._estimate_usage(content),
            finish_reason="stop",
            metadata={"source": "smart_default"},
        )

    @staticmethod
    def _estimate_usage(text: str) -> LLMUsage:
        # Roughly four characters per token.
        completion_tokens = max(1, len(text) // 4)
        return LLMUsage(
            prompt_tokens=0,
            completion_tokens=completion_tokens,
            total_tokens=completion_tokens,
        )
