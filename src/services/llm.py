"""
Provider-agnostic completion layer: message/result types, the static price
table and the LlmService that resolves a provider, falls back to the local
one and records usage.
"""
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, TYPE_CHECKING

from core.entities import LlmUsageRecord
from core.errors import (
    NoProviderAvailableError,
    ProviderError,
    ProviderNotConfiguredError,
    UnknownProviderError,
)

if TYPE_CHECKING:
    from services.llm_providers import LlmProvider
    from services.stores import LlmUsageStore

logger = logging.getLogger(__name__)


class ProviderName(str, Enum):
    CLAUDE = "claude"
    OPENAI = "openai"
    GEMINI = "gemini"
    GLM = "glm"
    OLLAMA = "ollama"


class ChatRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatMessage:
    role: ChatRole
    content: str


@dataclass(frozen=True)
class CompletionOptions:
    max_tokens: int = 4096
    temperature: float = 0.7
    model: Optional[str] = None


@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class CompletionResult:
    content: str
    model: str
    cost: float
    usage: TokenUsage = field(default_factory=TokenUsage)
    provider: Optional[ProviderName] = None


# USD per 1M tokens
MODEL_PRICING: Dict[str, Dict[str, float]] = {
    # Claude
    "claude-3-5-sonnet-20241022": {"input": 3.0, "output": 15.0},
    "claude-3-5-haiku-20241022": {"input": 0.8, "output": 4.0},
    "claude-3-haiku-20240307": {"input": 0.25, "output": 1.25},

    # OpenAI
    "gpt-4o": {"input": 2.5, "output": 10.0},
    "gpt-4o-mini": {"input": 0.15, "output": 0.6},
    "gpt-4-turbo": {"input": 10.0, "output": 30.0},

    # Gemini
    "gemini-1.5-pro": {"input": 1.25, "output": 5.0},
    "gemini-1.5-flash": {"input": 0.075, "output": 0.3},
    "gemini-2.0-flash": {"input": 0.1, "output": 0.4},

    # GLM
    "glm-4-plus": {"input": 0.5, "output": 0.5},
    "glm-4-flash": {"input": 0.01, "output": 0.01},

    # Ollama (local - free)
    "llama3:8b": {"input": 0.0, "output": 0.0},
    "llama3.1:8b": {"input": 0.0, "output": 0.0},
    "mistral:7b": {"input": 0.0, "output": 0.0},
    "qwen2.5:7b": {"input": 0.0, "output": 0.0},
}


def calculate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Unknown models are priced at zero rather than rejected."""
    prices = MODEL_PRICING.get(model)
    if not prices:
        return 0.0
    return (input_tokens / 1_000_000) * prices["input"] + (output_tokens / 1_000_000) * prices["output"]


class LlmService:
    """
    Registry of completion backends with default selection, local fallback
    and usage accounting. Built once and handed to the pipeline.
    """

    def __init__(
        self,
        providers: Dict[ProviderName, "LlmProvider"],
        usage_store: "LlmUsageStore",
        default_provider: ProviderName = ProviderName.CLAUDE,
        fallback_provider: ProviderName = ProviderName.OLLAMA,
    ):
        self.providers = providers
        self.usage_store = usage_store
        self.default_provider = default_provider
        self.fallback_provider = fallback_provider

    async def initialize(self) -> None:
        """Probe every provider once at startup."""
        for name, provider in self.providers.items():
            available = await provider.check_availability()
            if available:
                logger.info(f"LLM provider available: {name.value} ({provider.default_model})")
            else:
                logger.warning(f"LLM provider unavailable: {name.value}")
        logger.info(f"LLM service initialized with provider: {self.default_provider.value}")

    def _get(self, name: ProviderName | str) -> "LlmProvider":
        try:
            key = ProviderName(name)
        except ValueError:
            raise UnknownProviderError(f"Unknown LLM provider: {name}")
        provider = self.providers.get(key)
        if provider is None:
            raise UnknownProviderError(f"Unknown LLM provider: {name}")
        return provider

    def available_providers(self) -> List[Dict[str, object]]:
        return [
            {
                "name": name.value,
                "available": provider.is_available,
                "defaultModel": provider.default_model,
                "isDefault": name == self.default_provider,
            }
            for name, provider in self.providers.items()
        ]

    def set_default(self, name: ProviderName | str) -> None:
        provider = self._get(name)
        if not provider.is_available:
            raise ProviderNotConfiguredError(provider.name.value, "provider is not configured")
        self.default_provider = provider.name
        logger.info(f"Switched to LLM provider: {provider.name.value}")

    def _resolve(self, requested: Optional[ProviderName | str]) -> "LlmProvider":
        provider = self._get(requested or self.default_provider)
        if provider.is_available:
            return provider

        logger.warning(
            f"Provider {provider.name.value} not available, falling back to {self.fallback_provider.value}"
        )
        fallback = self.providers.get(self.fallback_provider)
        if fallback is None or not fallback.is_available:
            raise NoProviderAvailableError("No LLM providers available")
        return fallback

    async def complete(
        self,
        messages: List[ChatMessage],
        options: Optional[CompletionOptions] = None,
        *,
        provider: Optional[ProviderName | str] = None,
        operation: str = "summarize",
    ) -> CompletionResult:
        """
        Complete with the requested (or default) provider. A provider failure
        is retried once on the fallback provider when that is a different,
        available backend.
        """
        options = options or CompletionOptions()
        selected = self._resolve(provider)

        try:
            result = await selected.complete(messages, options)
        except ProviderError as e:
            fallback = self.providers.get(self.fallback_provider)
            if fallback is None or fallback is selected or not fallback.is_available:
                raise
            logger.warning(f"{e}; retrying with {fallback.name.value}")
            selected = fallback
            # The requested model belongs to the failed provider
            result = await selected.complete(
                messages,
                CompletionOptions(max_tokens=options.max_tokens, temperature=options.temperature),
            )

        await self.usage_store.append(
            LlmUsageRecord(
                provider=selected.name.value,
                model=result.model,
                tokens_in=result.usage.input_tokens,
                tokens_out=result.usage.output_tokens,
                cost=result.cost,
                operation=operation,
            )
        )
        return result
