"""
LangChain-backed completion providers.

Each provider decides its own availability (API key present, or a reachable
local server), maps our role-tagged messages onto LangChain message types and
reports token usage from the model response.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
from langchain_anthropic import ChatAnthropic
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_ollama import ChatOllama
from langchain_openai import ChatOpenAI

from core.errors import (
    ProviderError,
    ProviderNotConfiguredError,
    ProviderRateLimitedError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from services.config import Config
from services.llm import (
    ChatMessage,
    ChatRole,
    CompletionOptions,
    CompletionResult,
    ProviderName,
    TokenUsage,
    calculate_cost,
)

logger = logging.getLogger(__name__)


def _status_code(error: Exception) -> Optional[int]:
    for attr in ("status_code", "code"):
        value = getattr(error, attr, None)
        if isinstance(value, int):
            return value
    response = getattr(error, "response", None)
    return getattr(response, "status_code", None)


def translate_error(provider: ProviderName, error: Exception) -> ProviderError:
    """Map SDK/transport exceptions onto the provider error taxonomy."""
    name = type(error).__name__
    message = str(error) or name

    if isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException)) or "Timeout" in name:
        return ProviderTimeoutError(provider.value, f"request timed out: {message}")
    if _status_code(error) == 429 or "RateLimit" in name or "ResourceExhausted" in name:
        return ProviderRateLimitedError(provider.value, f"rate limited: {message}")
    if isinstance(error, (httpx.ConnectError, ConnectionError)) or "Connection" in name:
        return ProviderUnavailableError(provider.value, f"connection failed: {message}")
    return ProviderError(provider.value, message)


def _text_content(content: Any) -> str:
    """LangChain content is either a string or a list of content blocks."""
    if isinstance(content, str):
        return content
    parts: List[str] = []
    for block in content or []:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(block.get("text", ""))
    return "".join(parts)


def _usage(response: AIMessage) -> TokenUsage:
    metadata = getattr(response, "usage_metadata", None) or {}
    return TokenUsage(
        input_tokens=int(metadata.get("input_tokens") or 0),
        output_tokens=int(metadata.get("output_tokens") or 0),
    )


class LlmProvider(ABC):
    """
    Base interface for all completion backends.
    """

    name: ProviderName
    default_model: str
    # Connection refused means "gone" only for a local server
    drops_out_on_connection_error = False

    def __init__(self, timeout: float):
        self.timeout = timeout
        self._available = False

    @property
    def is_available(self) -> bool:
        return self._available

    def mark_unavailable(self) -> None:
        if self._available:
            logger.warning(f"LLM provider {self.name.value} marked unavailable")
        self._available = False

    @abstractmethod
    async def check_availability(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def _build_chat_model(self, model: str, options: CompletionOptions) -> BaseChatModel:
        raise NotImplementedError

    def _to_messages(self, messages: List[ChatMessage]) -> List[BaseMessage]:
        converted: List[BaseMessage] = []
        for message in messages:
            if message.role == ChatRole.SYSTEM:
                converted.append(SystemMessage(content=message.content))
            elif message.role == ChatRole.ASSISTANT:
                converted.append(AIMessage(content=message.content))
            else:
                converted.append(HumanMessage(content=message.content))
        return converted

    async def complete(self, messages: List[ChatMessage], options: CompletionOptions) -> CompletionResult:
        if not self.is_available:
            raise ProviderNotConfiguredError(self.name.value, "provider not configured")

        model = options.model or self.default_model
        chat_model = self._build_chat_model(model, options)

        try:
            response = await asyncio.wait_for(
                chat_model.ainvoke(self._to_messages(messages)),
                timeout=self.timeout,
            )
        except Exception as e:
            error = translate_error(self.name, e)
            if isinstance(error, ProviderUnavailableError) and self.drops_out_on_connection_error:
                self.mark_unavailable()
            raise error from e

        usage = _usage(response)
        return CompletionResult(
            content=_text_content(response.content),
            usage=usage,
            model=model,
            cost=calculate_cost(model, usage.input_tokens, usage.output_tokens),
            provider=self.name,
        )


class _ApiKeyProvider(LlmProvider):
    """Cloud providers are available exactly when an API key is configured."""

    def __init__(self, api_key: Optional[str], timeout: float):
        super().__init__(timeout)
        self.api_key = api_key or None
        self._available = self.api_key is not None

    async def check_availability(self) -> bool:
        self._available = self.api_key is not None
        return self._available


class _SingleSystemPromptMixin:
    """Backends that accept one leading system prompt get all system text merged."""

    def _to_messages(self, messages: List[ChatMessage]) -> List[BaseMessage]:
        system = "\n\n".join(m.content for m in messages if m.role == ChatRole.SYSTEM)
        rest = [m for m in messages if m.role != ChatRole.SYSTEM]
        converted = super()._to_messages(rest)
        if system:
            converted.insert(0, SystemMessage(content=system))
        return converted


class ClaudeProvider(_SingleSystemPromptMixin, _ApiKeyProvider):
    name = ProviderName.CLAUDE
    default_model = "claude-3-5-sonnet-20241022"

    def _build_chat_model(self, model: str, options: CompletionOptions) -> BaseChatModel:
        return ChatAnthropic(
            model=model,
            api_key=self.api_key,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            timeout=self.timeout,
            max_retries=0,
        )


class OpenAiProvider(_ApiKeyProvider):
    name = ProviderName.OPENAI
    default_model = "gpt-4o-mini"

    def _build_chat_model(self, model: str, options: CompletionOptions) -> BaseChatModel:
        return ChatOpenAI(
            model=model,
            api_key=self.api_key,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            timeout=self.timeout,
            max_retries=0,
        )


class GeminiProvider(_SingleSystemPromptMixin, _ApiKeyProvider):
    name = ProviderName.GEMINI
    default_model = "gemini-2.0-flash"

    def _build_chat_model(self, model: str, options: CompletionOptions) -> BaseChatModel:
        return ChatGoogleGenerativeAI(
            model=model,
            google_api_key=self.api_key,
            max_output_tokens=options.max_tokens,
            temperature=options.temperature,
            timeout=self.timeout,
            max_retries=0,
        )


class GlmProvider(_ApiKeyProvider):
    """ChatGLM through its OpenAI-compatible endpoint."""

    name = ProviderName.GLM
    default_model = "glm-4-flash"
    base_url = "https://open.bigmodel.cn/api/paas/v4/"

    def _build_chat_model(self, model: str, options: CompletionOptions) -> BaseChatModel:
        return ChatOpenAI(
            model=model,
            api_key=self.api_key,
            base_url=self.base_url,
            max_tokens=options.max_tokens,
            temperature=options.temperature,
            timeout=self.timeout,
            max_retries=0,
        )


class OllamaProvider(LlmProvider):
    """
    Local models served by Ollama. Free, slow, and only available while the
    server answers.
    """

    name = ProviderName.OLLAMA
    drops_out_on_connection_error = True

    def __init__(self, base_url: str, model: str, timeout: float, probe_timeout: float = 2.0):
        super().__init__(timeout)
        # ChatOllama uses Ollama's native API, not OpenAI-compatible /v1 endpoint
        if base_url.endswith("/v1"):
            base_url = base_url[:-3]
        elif base_url.endswith("/v1/"):
            base_url = base_url[:-4]

        self.base_url = base_url.rstrip('/')
        self.default_model = model
        self.probe_timeout = probe_timeout

    async def check_availability(self) -> bool:
        """
        Check if the Ollama server is reachable by calling /api/tags.
        """
        url = f"{self.base_url}/api/tags"
        try:
            async with httpx.AsyncClient(timeout=self.probe_timeout) as client:
                resp = await client.get(url)
            self._available = resp.status_code == 200
            if not self._available:
                logger.warning(f"Ollama health check failed: {resp.status_code}")
        except httpx.HTTPError as e:
            logger.warning(f"Ollama not available (local models disabled): {e} (url={url})")
            self._available = False
        return self._available

    def _build_chat_model(self, model: str, options: CompletionOptions) -> BaseChatModel:
        return ChatOllama(
            base_url=self.base_url,
            model=model,
            temperature=options.temperature,
            num_predict=options.max_tokens,
        )


def build_providers(config: Config) -> Dict[ProviderName, LlmProvider]:
    """Create the fixed provider registry from configuration."""
    return {
        ProviderName.CLAUDE: ClaudeProvider(config.ANTHROPIC_API_KEY, config.LLM_CLOUD_TIMEOUT),
        ProviderName.OPENAI: OpenAiProvider(config.OPENAI_API_KEY, config.LLM_CLOUD_TIMEOUT),
        ProviderName.GEMINI: GeminiProvider(config.GOOGLE_AI_API_KEY, config.LLM_CLOUD_TIMEOUT),
        ProviderName.GLM: GlmProvider(config.GLM_API_KEY, config.LLM_CLOUD_TIMEOUT),
        ProviderName.OLLAMA: OllamaProvider(
            base_url=config.OLLAMA_BASE_URL,
            model=config.OLLAMA_MODEL,
            timeout=config.LLM_LOCAL_TIMEOUT,
        ),
    }
