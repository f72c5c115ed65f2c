"""
Tests for foreman.integrations.llm
====================================

MockLLMProvider queueing and smart defaults, the provider factory, and the
Anthropic provider against a stand-in client object (no network).
"""

import json
from types import SimpleNamespace

import httpx
import pytest
from anthropic import APIError

from foreman.core.config import LLMConfig
from foreman.core.exceptions import CollaboratorError
from foreman.integrations.llm import BaseLLMProvider, MockLLMProvider, create_llm_provider
from foreman.integrations.llm.anthropic import AnthropicLLMProvider


# =============================================================================
# Mock Provider
# =============================================================================
class TestMockLLMProvider:
    """Queue, failure simulation and smart defaults."""

    async def test_queued_responses_are_fifo(self, mock_llm_provider) -> None:
        mock_llm_provider.queue_response("first")
        mock_llm_provider.queue_response("second")

        assert (await mock_llm_provider.generate("a")).content == "first"
        assert (await mock_llm_provider.generate("b")).content == "second"
        assert mock_llm_provider.queue_size == 0

    async def test_call_history_records_system_prompt(self, mock_llm_provider) -> None:
        await mock_llm_provider.generate_with_system("be terse", "hello", temperature=0.0)

        call = mock_llm_provider.call_history[0]
        assert call["system_prompt"] == "be terse"
        assert call["prompt"] == "hello"
        assert call["temperature"] == 0.0
        assert mock_llm_provider.call_count == 1

    async def test_failure_simulation(self, mock_llm_provider) -> None:
        mock_llm_provider.set_should_fail(True, "quota exceeded")
        with pytest.raises(RuntimeError, match="quota exceeded"):
            await mock_llm_provider.generate("x")
        assert mock_llm_provider.call_count == 1, "Failed calls are still recorded"

    async def test_error_analysis_default_is_unresolved(self, mock_llm_provider) -> None:
        response = await mock_llm_provider.generate("Please analyze this error: boom")
        assert json.loads(response.content)["fixed"] is False
        assert response.metadata == {"source": "smart_default"}

    async def test_dataset_default(self, mock_llm_provider) -> None:
        response = await mock_llm_provider.generate_with_system("Recommend a dataset", "Data Scientist")
        body = json.loads(response.content)
        assert body["dataset_name"] == "Iris"
        assert body["dataset_url"].endswith("iris.csv")

    async def test_plain_default(self) -> None:
        provider = MockLLMProvider(default_response="hi there")
        assert (await provider.generate("hello")).content == "hi there"

    def test_repr_and_models(self, mock_llm_provider) -> None:
        assert repr(mock_llm_provider) == "MockLLMProvider(provider='mock', model='mock-model')"
        assert mock_llm_provider.get_available_models() == ["mock-model"]


# =============================================================================
# Factory
# =============================================================================
class TestFactory:
    """create_llm_provider maps provider names to classes."""

    def test_mock(self) -> None:
        assert isinstance(create_llm_provider(LLMConfig(provider="mock")), MockLLMProvider)

    def test_anthropic_is_case_insensitive(self) -> None:
        provider = create_llm_provider(LLMConfig(provider="Anthropic", api_key="sk-test"))
        assert isinstance(provider, AnthropicLLMProvider)
        assert isinstance(provider, BaseLLMProvider)

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValueError, match="Unknown LLM provider"):
            create_llm_provider(LLMConfig(provider="oracle"))


# =============================================================================
# Anthropic Provider
# =============================================================================
class _FakeMessages:
    def __init__(self, response=None, error: Exception = None) -> None:
        self.requests: list[dict] = []
        self._response = response
        self._error = error

    async def create(self, **request):
        self.requests.append(request)
        if self._error is not None:
            raise self._error
        return self._response


def _anthropic_response(text: str, stop_reason: str = "end_turn"):
    return SimpleNamespace(
        id="msg_123",
        model="claude-test",
        content=[SimpleNamespace(type="text", text=text)],
        usage=SimpleNamespace(input_tokens=10, output_tokens=5),
        stop_reason=stop_reason,
    )


class TestAnthropicLLMProvider:
    """Request shaping and response mapping."""

    def _provider(self, messages: _FakeMessages) -> AnthropicLLMProvider:
        config = LLMConfig(provider="anthropic", model="claude-test", temperature=0.1, max_tokens=256)
        return AnthropicLLMProvider(config, client=SimpleNamespace(messages=messages))

    async def test_generate_with_system(self) -> None:
        messages = _FakeMessages(_anthropic_response('{"fixed": true}'))

        response = await self._provider(messages).generate_with_system("system text", "user text")

        request = messages.requests[0]
        assert request["system"] == "system text"
        assert request["messages"] == [{"role": "user", "content": "user text"}]
        assert request["max_tokens"] == 256
        assert request["temperature"] == 0.1
        assert response.content == '{"fixed": true}'
        assert response.usage.total_tokens == 15
        assert response.metadata["request_id"] == "msg_123"

    async def test_generate_has_no_system_and_honours_overrides(self) -> None:
        messages = _FakeMessages(_anthropic_response("ok", stop_reason="max_tokens"))

        response = await self._provider(messages).generate("hi", temperature=0.7, stop_sequences=["END"])

        request = messages.requests[0]
        assert "system" not in request
        assert request["temperature"] == 0.7
        assert request["stop_sequences"] == ["END"]
        assert response.finish_reason == "length"

    async def test_api_error_becomes_collaborator_error(self) -> None:
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        messages = _FakeMessages(error=APIError("overloaded", request, body=None))

        with pytest.raises(CollaboratorError) as exc_info:
            await self._provider(messages).generate("hi")

        assert "overloaded" in str(exc_info.value)

    async def test_validate_uses_environment_key(self, monkeypatch) -> None:
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        provider = AnthropicLLMProvider(LLMConfig(provider="anthropic"))
        assert await provider.validate() is False

        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-env")
        assert await provider.validate() is True
