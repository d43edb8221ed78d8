"""Shared fixtures: a temporary database, its stores and a fake LLM provider."""

from datetime import datetime, timezone
from typing import List, Optional

import pytest

from core.entities import CheckFrequency, Source, SourceType
from services.database import Database
from services.llm import (
    ChatMessage,
    CompletionOptions,
    CompletionResult,
    ProviderName,
    TokenUsage,
)
from services.llm_providers import LlmProvider
from services.stores import (
    DigestStore,
    LlmUsageStore,
    ProcessedItemStore,
    RawItemStore,
    SourceStore,
)


class FakeProvider(LlmProvider):
    """Provider returning canned responses, or raising `error` when set."""

    def __init__(
        self,
        name: ProviderName,
        available: bool = True,
        responses: Optional[List[str]] = None,
        error: Optional[Exception] = None,
        model: str = "fake-model",
    ):
        super().__init__(timeout=5.0)
        self.name = name
        self.default_model = model
        self._available = available
        self.responses = list(responses or ['{"summary": "ok", "relevanceScore": 0.6}'])
        self.error = error
        self.calls: List[List[ChatMessage]] = []

    async def check_availability(self) -> bool:
        return self._available

    def _build_chat_model(self, model, options):
        raise NotImplementedError

    async def complete(self, messages: List[ChatMessage], options: CompletionOptions) -> CompletionResult:
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        content = self.responses[0] if len(self.responses) == 1 else self.responses.pop(0)
        return CompletionResult(
            content=content,
            model=options.model or self.default_model,
            cost=0.0,
            usage=TokenUsage(input_tokens=10, output_tokens=5),
            provider=self.name,
        )


@pytest.fixture
def fake_provider():
    return FakeProvider


@pytest.fixture
async def db(tmp_path) -> Database:
    database = Database(str(tmp_path / "data" / "test.db"))
    await database.init_tables()
    return database


@pytest.fixture
def sources(db) -> SourceStore:
    return SourceStore(db)


@pytest.fixture
def raw_items(db) -> RawItemStore:
    return RawItemStore(db)


@pytest.fixture
def processed_items(db) -> ProcessedItemStore:
    return ProcessedItemStore(db)


@pytest.fixture
def digests(db) -> DigestStore:
    return DigestStore(db)


@pytest.fixture
def usage(db) -> LlmUsageStore:
    return LlmUsageStore(db)


@pytest.fixture
def make_source(sources):
    async def _make(
        name: str = "Next.js releases",
        type: SourceType = SourceType.GITHUB,
        url: str = "https://github.com/vercel/next.js",
        config: Optional[dict] = None,
        check_frequency: CheckFrequency = CheckFrequency.DAILY,
        is_active: bool = True,
    ) -> Source:
        return await sources.create(
            name=name,
            type=type,
            url=url,
            config=config,
            check_frequency=check_frequency,
            is_active=is_active,
        )

    return _make


@pytest.fixture
def make_raw_item(raw_items):
    async def _make(
        source: Source,
        external_id: str = "item-1",
        title: str = "Some title",
        published_at: Optional[datetime] = None,
        content: str = "Some content",
    ):
        await raw_items.insert_if_absent(
            source_id=source.id,
            external_id=external_id,
            title=title,
            content=content,
            url=f"https://example.com/{external_id}",
            author="someone",
            published_at=published_at or datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        items = await raw_items.list_for_source(source.id)
        return next(i for i in items if i.external_id == external_id)

    return _make
