"""Tests for the LLM service and the LangChain-backed providers."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from core.errors import (
    NoProviderAvailableError,
    ProviderError,
    ProviderNotConfiguredError,
    ProviderRateLimitedError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    UnknownProviderError,
)
from services.llm import (
    ChatMessage,
    ChatRole,
    CompletionOptions,
    LlmService,
    ProviderName,
    calculate_cost,
)
from services.llm_providers import ClaudeProvider, OllamaProvider, OpenAiProvider, translate_error

MESSAGES = [
    ChatMessage(ChatRole.SYSTEM, "You are an analyst."),
    ChatMessage(ChatRole.USER, "Analyze this."),
]


def _service(usage, *providers, default=ProviderName.CLAUDE):
    return LlmService({p.name: p for p in providers}, usage, default_provider=default)


def test_calculate_cost():
    assert calculate_cost("gpt-4o", 1_000_000, 1_000_000) == pytest.approx(12.5)
    assert calculate_cost("some-unknown-model", 5000, 5000) == 0.0


@pytest.mark.asyncio
async def test_complete_records_usage(usage, fake_provider):
    claude = fake_provider(ProviderName.CLAUDE, responses=["hello"])
    service = _service(usage, claude, fake_provider(ProviderName.OLLAMA))

    result = await service.complete(MESSAGES)

    assert result.content == "hello"
    records = (await usage.usage_summary())["byModel"]
    assert records[0]["provider"] == "claude"
    assert records[0]["tokensIn"] == 10


@pytest.mark.asyncio
async def test_unavailable_default_falls_back_to_local(usage, fake_provider):
    claude = fake_provider(ProviderName.CLAUDE, available=False)
    ollama = fake_provider(ProviderName.OLLAMA, model="llama3.1:8b")
    service = _service(usage, claude, ollama)

    result = await service.complete(MESSAGES)

    assert result.model == "llama3.1:8b"
    assert claude.calls == []
    assert len(ollama.calls) == 1
    assert (await usage.usage_summary())["byProvider"].keys() == {"ollama"}


@pytest.mark.asyncio
async def test_no_provider_available_writes_no_usage(usage, fake_provider):
    service = _service(
        usage,
        fake_provider(ProviderName.OPENAI, available=False),
        fake_provider(ProviderName.OLLAMA, available=False),
    )

    with pytest.raises(NoProviderAvailableError):
        await service.complete(MESSAGES, provider="openai")
    assert (await usage.usage_summary())["totals"]["requests"] == 0


@pytest.mark.asyncio
async def test_provider_error_is_retried_on_fallback(usage, fake_provider):
    claude = fake_provider(ProviderName.CLAUDE, error=ProviderRateLimitedError("claude", "slow down"))
    ollama = fake_provider(ProviderName.OLLAMA)
    service = _service(usage, claude, ollama)

    result = await service.complete(MESSAGES, CompletionOptions(model="claude-3-5-haiku-20241022"))

    assert result.model == "fake-model"
    assert len(claude.calls) == 1 and len(ollama.calls) == 1


@pytest.mark.asyncio
async def test_provider_error_propagates_without_fallback(usage, fake_provider):
    ollama = fake_provider(ProviderName.OLLAMA, error=ProviderTimeoutError("ollama", "too slow"))
    service = _service(usage, ollama, default=ProviderName.OLLAMA)

    with pytest.raises(ProviderTimeoutError):
        await service.complete(MESSAGES)
    assert (await usage.usage_summary())["totals"]["requests"] == 0


@pytest.mark.asyncio
async def test_set_default(usage, fake_provider):
    service = _service(
        usage,
        fake_provider(ProviderName.CLAUDE),
        fake_provider(ProviderName.GEMINI, available=False),
    )

    service.set_default("claude")
    with pytest.raises(ProviderNotConfiguredError):
        service.set_default("gemini")
    with pytest.raises(UnknownProviderError):
        service.set_default("mistral")
    with pytest.raises(UnknownProviderError):
        await service.complete(MESSAGES, provider="glm")


def test_available_providers_lists_registry(usage, fake_provider):
    service = _service(usage, fake_provider(ProviderName.CLAUDE), fake_provider(ProviderName.OLLAMA, available=False))
    listing = {p["name"]: p for p in service.available_providers()}

    assert listing["claude"]["available"] and listing["claude"]["isDefault"]
    assert not listing["ollama"]["available"]


def test_translate_error():
    request = httpx.Request("POST", "https://api.example.com")
    assert isinstance(translate_error(ProviderName.CLAUDE, asyncio.TimeoutError()), ProviderTimeoutError)
    assert isinstance(
        translate_error(ProviderName.OPENAI, httpx.ConnectError("refused", request=request)),
        ProviderUnavailableError,
    )

    rate_limited = Exception("too many requests")
    rate_limited.status_code = 429
    assert isinstance(translate_error(ProviderName.OPENAI, rate_limited), ProviderRateLimitedError)
    assert type(translate_error(ProviderName.OPENAI, ValueError("bad"))) is ProviderError


def _chat_model(response=None, error=None):
    model = MagicMock()
    model.ainvoke = AsyncMock(return_value=response, side_effect=error)
    return model


@pytest.mark.asyncio
async def test_claude_merges_system_messages_and_reports_usage():
    provider = ClaudeProvider(api_key="key", timeout=5)
    response = AIMessage(
        content=[{"type": "text", "text": '{"summary": "ok"}'}],
        usage_metadata={"input_tokens": 1000, "output_tokens": 200, "total_tokens": 1200},
    )
    chat_model = _chat_model(response)
    messages = [ChatMessage(ChatRole.SYSTEM, "a"), ChatMessage(ChatRole.SYSTEM, "b"), MESSAGES[1]]

    with patch.object(ClaudeProvider, "_build_chat_model", return_value=chat_model):
        result = await provider.complete(messages, CompletionOptions())

    sent = chat_model.ainvoke.await_args.args[0]
    assert isinstance(sent[0], SystemMessage) and sent[0].content == "a\n\nb"
    assert isinstance(sent[1], HumanMessage)
    assert result.content == '{"summary": "ok"}'
    assert result.model == "claude-3-5-sonnet-20241022"
    assert result.usage.total_tokens == 1200
    assert result.cost == pytest.approx(calculate_cost("claude-3-5-sonnet-20241022", 1000, 200))


@pytest.mark.asyncio
async def test_missing_usage_counts_as_zero():
    provider = OpenAiProvider(api_key="key", timeout=5)
    with patch.object(OpenAiProvider, "_build_chat_model", return_value=_chat_model(AIMessage(content="hi"))):
        result = await provider.complete(MESSAGES, CompletionOptions(model="gpt-4o"))

    assert result.usage.total_tokens == 0
    assert result.cost == 0.0


@pytest.mark.asyncio
async def test_cloud_provider_without_key_is_not_configured():
    provider = ClaudeProvider(api_key=None, timeout=5)
    assert not await provider.check_availability()
    with pytest.raises(ProviderNotConfiguredError):
        await provider.complete(MESSAGES, CompletionOptions())


@pytest.mark.asyncio
async def test_connection_refused_only_drops_local_provider():
    request = httpx.Request("POST", "http://localhost:11434/api/chat")
    refused = httpx.ConnectError("connection refused", request=request)

    ollama = OllamaProvider("http://localhost:11434/v1", "llama3.1:8b", timeout=5)
    ollama._available = True
    assert ollama.base_url == "http://localhost:11434"
    with patch.object(OllamaProvider, "_build_chat_model", return_value=_chat_model(error=refused)):
        with pytest.raises(ProviderUnavailableError):
            await ollama.complete(MESSAGES, CompletionOptions())
    assert not ollama.is_available

    claude = ClaudeProvider(api_key="key", timeout=5)
    with patch.object(ClaudeProvider, "_build_chat_model", return_value=_chat_model(error=refused)):
        with pytest.raises(ProviderUnavailableError):
            await claude.complete(MESSAGES, CompletionOptions())
    assert claude.is_available


@pytest.mark.asyncio
async def test_timeout_is_enforced():
    async def slow(_):
        await asyncio.sleep(1)

    chat_model = MagicMock()
    chat_model.ainvoke = slow
    provider = OpenAiProvider(api_key="key", timeout=0.01)

    with patch.object(OpenAiProvider, "_build_chat_model", return_value=chat_model):
        with pytest.raises(ProviderTimeoutError):
            await provider.complete(MESSAGES, CompletionOptions())


@pytest.mark.asyncio
async def test_ollama_probe():
    provider = OllamaProvider("http://localhost:11434", "llama3.1:8b", timeout=5)
    client = AsyncMock()
    client.__aenter__.return_value = client
    client.get.return_value = httpx.Response(200, json={"models": []})

    with patch("services.llm_providers.httpx.AsyncClient", return_value=client):
        assert await provider.check_availability()

    client.get.side_effect = httpx.ConnectError("refused")
    with patch("services.llm_providers.httpx.AsyncClient", return_value=client):
        assert not await provider.check_availability()
