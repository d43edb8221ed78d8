"""
Read-only aggregates over sources, items, digests and LLM usage.
"""
from collections import Counter
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from core.entities import Source
from services.database import to_db_time, utcnow
from services.stores import (
    DigestStore,
    LlmUsageStore,
    ProcessedItemStore,
    RawItemStore,
    SourceStore,
)

ERROR_THRESHOLD = 5
STALE_AFTER = timedelta(days=3)


def health_status(source: Source, now: Optional[datetime] = None) -> str:
    if not source.is_active:
        return "inactive"
    if source.error_count >= ERROR_THRESHOLD:
        return "error"
    if source.error_count > 0:
        return "warning"
    if source.last_fetch_at and source.last_fetch_at < (now or utcnow()) - STALE_AFTER:
        return "warning"
    return "healthy"


class StatsService:
    def __init__(
        self,
        sources: SourceStore,
        raw_items: RawItemStore,
        processed_items: ProcessedItemStore,
        digests: DigestStore,
        usage: LlmUsageStore,
    ):
        self.sources = sources
        self.raw_items = raw_items
        self.processed_items = processed_items
        self.digests = digests
        self.usage = usage

    async def system_stats(self) -> Dict[str, Any]:
        sources = await self.sources.list()
        digest_counts = await self.digests.counts()
        return {
            "totalSources": len(sources),
            "activeSources": sum(1 for s in sources if s.is_active),
            "totalItems": await self.raw_items.count(),
            "processedItems": await self.processed_items.count(),
            "totalDigests": sum(digest_counts.values()),
            "publishedDigests": digest_counts.get("published", 0),
            "llmUsage": await self.llm_usage(),
        }

    async def llm_usage(self, days: int = 30) -> Dict[str, Any]:
        summary = await self.usage.usage_summary(days)
        totals = summary["totals"]
        return {
            "days": days,
            "requests": totals["requests"],
            "totalTokens": totals["tokensIn"] + totals["tokensOut"],
            "totalCost": totals["cost"],
            "byProvider": summary["byProvider"],
            "byModel": summary["byModel"],
        }

    async def collection_stats(self, days: int = 7) -> List[Dict[str, Any]]:
        since = utcnow() - timedelta(days=days)
        counts = await self.raw_items.counts_by_source_since(since)
        sources = {s.id: s for s in await self.sources.list()}
        return [
            {
                "source": {"id": sid, "name": sources[sid].name, "type": sources[sid].type.value}
                if sid in sources else None,
                "itemCount": count,
            }
            for sid, count in sorted(counts.items(), key=lambda kv: -kv[1])
        ]

    async def category_distribution(self) -> List[Dict[str, Any]]:
        counter: Counter = Counter()
        for categories, _ in await self.processed_items.all_labels():
            counter.update(categories)
        return [{"category": c, "count": n} for c, n in counter.most_common()]

    async def tag_cloud(self, limit: int = 30) -> List[Dict[str, Any]]:
        counter: Counter = Counter()
        for _, tags in await self.processed_items.all_labels():
            counter.update(tags)
        return [{"tag": t, "count": n} for t, n in counter.most_common(limit)]

    async def source_health(self) -> List[Dict[str, Any]]:
        now = utcnow()
        item_counts = await self.sources.item_counts()
        relevance = await self.processed_items.relevance_by_source()
        return [
            {
                "sourceId": s.id,
                "sourceName": s.name,
                "type": s.type.value,
                "lastFetch": to_db_time(s.last_fetch_at),
                "lastError": s.last_error,
                "errorCount": s.error_count,
                "relevanceRate": relevance.get(s.id),
                "itemCount": item_counts.get(s.id, 0),
                "status": health_status(s, now),
            }
            for s in await self.sources.list()
        ]
