"""Tests for the completion client: model wiring, json mode, error handling."""

import pytest
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from enrichment.config import ProviderConfig, ResilienceConfig
from enrichment.errors import PermanentUpstreamError
from enrichment.llm_client import LLMClient, LLMTask, _content_text
from enrichment.resilience.circuit_breaker import CircuitBreakerRegistry
from enrichment.resilience.client import ResilientClient

from conftest import FakeChatModel


def _llm(models=None, api_key: str = "", max_retries: int = 1) -> LLMClient:  # type: ignore[no-untyped-def]
    resilient = ResilientClient(CircuitBreakerRegistry(), max_retries=max_retries, base_delay=0)
    return LLMClient(
        resilient,
        ProviderConfig(GROQ_API_KEY=api_key),
        ResilienceConfig(UPSTREAM_TIMEOUT_SECONDS=7),
        models=models,
    )


class _RecordingModel(FakeChatModel):
    async def ainvoke(self, messages):  # type: ignore[no-untyped-def]
        self.messages = messages
        return await super().ainvoke(messages)


def test_not_configured_without_key_or_models() -> None:
    client = _llm()
    assert not client.is_configured
    with pytest.raises(PermanentUpstreamError):
        client.get_model(LLMTask.RESEARCH)


def test_models_built_from_config_without_sdk_retries() -> None:
    client = _llm(api_key="gsk_test_key_0001")
    assert client.is_configured
    research = client.get_model(LLMTask.RESEARCH)
    extraction = client.get_model(LLMTask.EXTRACTION)
    assert isinstance(research, ChatOpenAI)
    assert research.model_name == "compound-beta"
    assert research.max_retries == 0
    assert extraction.model_name == "meta-llama/llama-4-scout-17b-16e-instruct"


def test_content_text_flattens_parts() -> None:
    assert _content_text("plain") == "plain"
    assert _content_text([{"type": "text", "text": "a"}, "b"]) == "ab"


@pytest.mark.asyncio
async def test_generate_builds_messages() -> None:
    model = _RecordingModel("answer")
    result = await _llm({LLMTask.EXTRACTION: model}).generate(
        LLMTask.EXTRACTION, "user text", system_prompt="system text"
    )
    assert result.success
    assert result.data == "answer"
    assert isinstance(model.messages[0], SystemMessage)
    assert isinstance(model.messages[1], HumanMessage)
    assert model.bound == {}


@pytest.mark.asyncio
async def test_generate_retries_transient_errors() -> None:
    model = FakeChatModel(Exception("503 Service Unavailable"), "answer")
    result = await _llm({LLMTask.RESEARCH: model}).generate(LLMTask.RESEARCH, "q")
    assert result.success
    assert result.retry_count == 1
    assert model.calls == 2


@pytest.mark.asyncio
async def test_empty_response_is_permanent() -> None:
    model = FakeChatModel("   ")
    result = await _llm({LLMTask.RESEARCH: model}, max_retries=3).generate(LLMTask.RESEARCH, "q")
    assert not result.success
    assert "Empty response" in (result.error or "")
    assert model.calls == 1


@pytest.mark.asyncio
async def test_auth_failure_not_retried() -> None:
    model = FakeChatModel(Exception("401 invalid api key"))
    result = await _llm({LLMTask.RESEARCH: model}, max_retries=3).generate(LLMTask.RESEARCH, "q")
    assert not result.success
    assert model.calls == 1
