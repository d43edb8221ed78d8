import logging
from datetime import datetime
from typing import Callable, List, Optional

from core.entities import ProcessedItem, RawItem
from processing.evaluator import parse_analysis
from services.database import utcnow
from services.llm import ChatMessage, ChatRole, CompletionOptions, LlmService
from services.stores import ProcessedItemStore, RawItemStore

logger = logging.getLogger(__name__)

MAX_CONTENT_CHARS = 8000

SYSTEM_PROMPT = """You are a tech news analyst specializing in JavaScript/TypeScript, Next.js, NestJS, Node.js, and AI/ML technologies.

Your task is to analyze tech content and provide:
1. A concise summary (2-3 sentences for news, up to 5 for major releases)
2. Categories (frontend, backend, ai, security, devops, breaking-change, release, tutorial, deep-dive, performance, tooling)
3. Tags (specific technologies: nextjs, nestjs, react, nodejs, typescript, etc.)
4. Relevance score (0-1) based on how important this is for a JS/TS developer
5. Urgency level (CRITICAL, HIGH, NORMAL, LOW)
6. Action items if applicable (e.g., "Update package X to fix CVE-XXX")
7. Sentiment (POSITIVE, NEGATIVE, NEUTRAL, CONTROVERSIAL)

Respond in JSON format:
{
  "summary": "...",
  "categories": ["..."],
  "tags": ["..."],
  "relevanceScore": 0.8,
  "urgencyLevel": "NORMAL",
  "actionItems": ["..."],
  "sentiment": "NEUTRAL"
}"""


def build_messages(raw_item: RawItem) -> List[ChatMessage]:
    """Fixed analysis prompt for one raw item."""
    prompt = f"""Analyze this tech content:

Title: {raw_item.title}

Content:
{raw_item.content[:MAX_CONTENT_CHARS]}

URL: {raw_item.url}"""
    if raw_item.author:
        prompt += f"\nAuthor: {raw_item.author}"

    return [
        ChatMessage(role=ChatRole.SYSTEM, content=SYSTEM_PROMPT),
        ChatMessage(role=ChatRole.USER, content=prompt),
    ]


class Summarizer:
    """
    Enriches unprocessed raw items through the LLM service.
    """

    def __init__(
        self,
        llm: LlmService,
        raw_items: RawItemStore,
        processed_items: ProcessedItemStore,
        options: Optional[CompletionOptions] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.llm = llm
        self.raw_items = raw_items
        self.processed_items = processed_items
        self.options = options or CompletionOptions()
        self.clock = clock

    async def process_item(self, raw_item: RawItem) -> ProcessedItem:
        logger.debug(f"Processing item: {raw_item.title[:50]}...")

        response = await self.llm.complete(build_messages(raw_item), self.options)
        analysis = parse_analysis(response.content)

        return await self.processed_items.create_for_raw_item(
            raw_item,
            analysis,
            llm_model=response.model,
            llm_tokens_used=response.usage.total_tokens,
            llm_cost=response.cost,
            processed_at=self.clock(),
        )

    async def process_batch(self, limit: int = 20) -> int:
        """
        Process up to `limit` unprocessed items, newest first.
        Returns how many completed; failures are logged and skipped.
        """
        unprocessed = await self.raw_items.list_unprocessed(limit)

        if not unprocessed:
            logger.info("No unprocessed items to process")
            return 0

        logger.info(f"Processing batch of {len(unprocessed)} items")

        processed = 0
        for item in unprocessed:
            try:
                await self.process_item(item)
                processed += 1
            except Exception as e:
                logger.error(f"Failed to process item {item.id}: {e}")

        logger.info(f"Processed {processed}/{len(unprocessed)} items")
        return processed
