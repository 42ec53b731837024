"""Tests for the generation client adapter: retries, finish reasons, budget, cancellation."""

from __future__ import annotations

import asyncio

import httpx
import openai
import pytest

from conftest import HANG, Reply
from meeting_analysis.config import LLMConfig
from meeting_analysis.errors import (
    AnalysisCancelledError,
    ConfigurationError,
    ContentFilteredError,
    EmptyCompletionError,
    InvalidJSONError,
    ResponseTruncatedError,
    RetriesExhaustedError,
    TokenBudgetExceededError,
    TransportError,
)
from meeting_analysis.llm_client import LLMClient
from meeting_analysis.models import FinishReason


def _connection_error() -> openai.APIConnectionError:
    return openai.APIConnectionError(request=httpx.Request("POST", "https://api.test/v1/chat/completions"))


class TestGenerate:
    @pytest.mark.asyncio
    async def test_single_request_maps_finish_reason(self, llm_client, fake_openai):
        fake_openai.queue(Reply('{"a": 1}', finish_reason="content_filter", usage=(7, 3)))
        generation = await llm_client.generate("system", "prompt", max_tokens=500, temperature=0.2)

        assert generation.finish_reason is FinishReason.CONTENT_FILTERED
        assert generation.token_usage.total_tokens == 10
        assert generation.token_usage.max_tokens == 500
        call = fake_openai.calls[0]
        assert call["max_completion_tokens"] == 500
        assert call["temperature"] == 0.2
        assert call["response_format"] == {"type": "json_object"}
        assert call["messages"][0] == {"role": "system", "content": "system"}

    @pytest.mark.asyncio
    async def test_plain_text_and_default_temperature(self, llm_client, fake_openai):
        fake_openai.queue(Reply("hello"))
        await llm_client.generate("system", "prompt", json_only=False)
        call = fake_openai.calls[0]
        assert "response_format" not in call
        assert "temperature" not in call
        assert call["max_completion_tokens"] == 32000


class TestCompleteJson:
    @pytest.mark.asyncio
    async def test_parses_fenced_json(self, llm_client, fake_openai):
        fake_openai.queue(Reply('Here you go:\n```json\n{"content": "ok"}\n```'))
        data, usage = await llm_client.complete_json("p", "s", "section \"A\"")
        assert data == {"content": "ok"}
        assert usage.total_tokens == 150

    @pytest.mark.asyncio
    async def test_content_filter_is_retried(self, llm_client, fake_openai):
        fake_openai.queue(Reply("", finish_reason="content_filter"), Reply({"content": "fine"}))
        data, _ = await llm_client.complete_json("p", "s", "basic analysis")
        assert data == {"content": "fine"}
        assert len(fake_openai.calls) == 2

    @pytest.mark.asyncio
    async def test_empty_completion_is_retried(self, llm_client, fake_openai):
        fake_openai.queue(Reply("   "), Reply({"content": "fine"}))
        data, _ = await llm_client.complete_json("p", "s", "basic analysis")
        assert data["content"] == "fine"

    @pytest.mark.asyncio
    async def test_transport_errors_exhaust_retries(self, llm_client, fake_openai):
        fake_openai.queue(_connection_error(), _connection_error(), _connection_error())
        with pytest.raises(RetriesExhaustedError) as exc_info:
            await llm_client.complete_json("p", "s", "discussion batch")
        err = exc_info.value
        assert err.attempts == 3
        assert isinstance(err.last_error, TransportError)
        assert err.label == "discussion batch"
        assert "discussion batch" in str(err)
        assert len(fake_openai.calls) == 3

    @pytest.mark.asyncio
    async def test_truncation_is_not_retried(self, llm_client, fake_openai):
        fake_openai.queue(Reply('{"content": "cut', finish_reason="length"))
        with pytest.raises(ResponseTruncatedError) as exc_info:
            await llm_client.complete_json("p", "s", "basic analysis", truncation_hint="Use batched instead.")
        assert "Use batched instead." in str(exc_info.value)
        assert len(fake_openai.calls) == 1

    @pytest.mark.asyncio
    async def test_invalid_json_is_not_retried(self, llm_client, fake_openai):
        fake_openai.queue(Reply("not json at all"))
        with pytest.raises(InvalidJSONError):
            await llm_client.complete_json("p", "s", "basic analysis")
        assert len(fake_openai.calls) == 1

    @pytest.mark.asyncio
    async def test_rejected_request_is_not_retried(self, llm_client, fake_openai):
        response = httpx.Response(400, request=httpx.Request("POST", "https://api.test/v1/chat/completions"))
        fake_openai.queue(openai.BadRequestError("bad request", response=response, body=None))
        with pytest.raises(Exception) as exc_info:
            await llm_client.complete_json("p", "s", "basic analysis")
        assert not isinstance(exc_info.value, RetriesExhaustedError)
        assert len(fake_openai.calls) == 1

    @pytest.mark.asyncio
    async def test_retry_errors_have_expected_types(self, llm_client, fake_openai):
        fake_openai.queue(Reply(""), Reply(""), Reply(""))
        with pytest.raises(RetriesExhaustedError) as exc_info:
            await llm_client.complete_json("p", "s", "basic analysis")
        assert isinstance(exc_info.value.last_error, EmptyCompletionError)

        fake_openai.queue(*(Reply("", finish_reason="content_filter") for _ in range(3)))
        with pytest.raises(RetriesExhaustedError) as exc_info:
            await llm_client.complete_json("p", "s", "basic analysis")
        assert isinstance(exc_info.value.last_error, ContentFilteredError)


class TestTokenBudget:
    def test_heuristic_count_without_tokenizer(self, llm_client):
        assert llm_client.count_tokens("abcdefgh") == 2
        assert llm_client.count_tokens("") == 0

    @pytest.mark.asyncio
    async def test_over_hard_limit_raises_before_any_call(self, fake_openai):
        config = LLMConfig(api_key="k", model="test-model", encoding_name=None,
                           token_warning_threshold=10, token_hard_limit=20)
        client = LLMClient(config, async_client=fake_openai)
        with pytest.raises(TokenBudgetExceededError) as exc_info:
            await client.complete_json("x" * 100, "s", "basic analysis", transcript="y" * 100)
        assert exc_info.value.limit == 20
        assert exc_info.value.estimated_tokens == 50
        assert fake_openai.calls == []

    def test_between_thresholds_only_warns(self, fake_openai):
        config = LLMConfig(api_key="k", model="test-model", encoding_name=None,
                           token_warning_threshold=10, token_hard_limit=100)
        client = LLMClient(config, async_client=fake_openai)
        assert client.check_token_budget("x" * 80) == 20


class TestCancellation:
    @pytest.mark.asyncio
    async def test_preset_event_issues_no_request(self, llm_client, fake_openai):
        event = asyncio.Event()
        event.set()
        with pytest.raises(AnalysisCancelledError):
            await llm_client.complete_json("p", "s", "basic analysis", cancel_event=event)
        assert fake_openai.calls == []

    @pytest.mark.asyncio
    async def test_in_flight_request_is_aborted(self, llm_client, fake_openai):
        fake_openai.queue(HANG)
        event = asyncio.Event()
        task = asyncio.create_task(llm_client.complete_json("p", "s", "basic analysis", cancel_event=event))
        await asyncio.sleep(0.05)
        assert len(fake_openai.calls) == 1
        event.set()
        with pytest.raises(AnalysisCancelledError):
            await asyncio.wait_for(task, timeout=5)
        assert len(fake_openai.calls) == 1

    @pytest.mark.asyncio
    async def test_completed_request_leaves_no_cancel_waiter_pending(self, llm_client, fake_openai):
        fake_openai.queue(Reply({"content": "done"}))
        data, _ = await llm_client.complete_json("p", "s", "basic analysis", cancel_event=asyncio.Event())
        assert data == {"content": "done"}
        waiters = [t for t in asyncio.all_tasks() if t.get_coro().__qualname__ == "Event.wait"]
        assert waiters == []


class TestClientConstruction:
    def test_missing_key_is_a_configuration_error(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        client = LLMClient(LLMConfig(model="test-model", encoding_name=None))
        with pytest.raises(ConfigurationError):
            client._get_async_client()

    def test_azure_requires_endpoint(self):
        client = LLMClient(LLMConfig(provider="azure", api_key="k", model="test-model", encoding_name=None))
        with pytest.raises(ConfigurationError, match="AZURE_OPENAI_ENDPOINT"):
            client._get_async_client()

    def test_azure_client_built(self):
        config = LLMConfig(provider="azure", api_key="k", api_base="https://example.openai.azure.com",
                           model="test-model", encoding_name=None)
        client = LLMClient(config)
        assert isinstance(client._get_async_client(), openai.AsyncAzureOpenAI)


class TestClientLifecycle:
    def test_client_rebuilt_for_each_event_loop(self):
        client = LLMClient(LLMConfig(api_key="k", model="test-model", encoding_name=None))

        async def current():
            return client._get_async_client(), client._get_async_client()

        first, again = asyncio.run(current())
        second, _ = asyncio.run(current())
        assert first is again
        assert second is not first
        assert isinstance(second, openai.AsyncOpenAI)

    def test_injected_client_is_kept_across_loops(self, config, fake_openai):
        client = LLMClient(config.llm, async_client=fake_openai)

        async def current():
            return client._get_async_client()

        assert asyncio.run(current()) is fake_openai
        assert asyncio.run(current()) is fake_openai
