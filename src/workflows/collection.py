"""
Collector dispatcher: runs the adapters for due sources and keeps their
health counters current.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional

from core.entities import CheckFrequency, Source, SourceType
from core.errors import ConfigError
from ingestion.base import SourceAdapter
from services.stores import SourceStore

logger = logging.getLogger(__name__)


@dataclass
class CollectionReport:
    source_id: int
    name: str
    success: bool
    new_items: int = 0
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "sourceId": self.source_id,
            "name": self.name,
            "success": self.success,
            "newItems": self.new_items,
            "error": self.error,
        }


class CollectorDispatcher:
    """
    Distinct sources are collected concurrently, bounded by `max_concurrency`.
    The same source is never collected twice at once: each source id has its
    own lock, since dedup is check-then-insert.
    """

    def __init__(
        self,
        sources: SourceStore,
        collectors: Mapping[SourceType, SourceAdapter],
        max_concurrency: int = 4,
    ):
        self.sources = sources
        self.collectors = collectors
        self.max_concurrency = max(1, max_concurrency)
        self._locks: Dict[int, asyncio.Lock] = {}

    def _lock_for(self, source_id: int) -> asyncio.Lock:
        lock = self._locks.get(source_id)
        if lock is None:
            lock = self._locks[source_id] = asyncio.Lock()
        return lock

    def _adapter_for(self, source: Source) -> SourceAdapter:
        adapter = self.collectors.get(source.type)
        if adapter is None:
            raise ConfigError(f"No collector for source type: {source.type.value}")
        return adapter

    async def _collect(self, source: Source) -> int:
        """Collect one source and record its health. Errors propagate."""
        async with self._lock_for(source.id):
            try:
                new_items = await self._adapter_for(source).collect(source)
            except Exception as e:
                logger.error(f"Collection failed for {source.name} ({source.id}): {e}")
                await self.sources.record_failure(source.id, str(e) or type(e).__name__)
                raise

            await self.sources.record_success(source.id)
            logger.info(f"Collected {new_items} new items from {source.name}")
            return new_items

    async def _collect_isolated(self, source: Source, gate: asyncio.Semaphore) -> CollectionReport:
        async with gate:
            try:
                new_items = await self._collect(source)
            except Exception as e:
                return CollectionReport(source.id, source.name, success=False, error=str(e) or type(e).__name__)
            return CollectionReport(source.id, source.name, success=True, new_items=new_items)

    async def _run(self, sources: List[Source]) -> List[CollectionReport]:
        if not sources:
            return []
        gate = asyncio.Semaphore(self.max_concurrency)
        reports = await asyncio.gather(*(self._collect_isolated(s, gate) for s in sources))

        failed = sum(1 for r in reports if not r.success)
        logger.info(f"Collection run finished: {len(reports) - failed} succeeded, {failed} failed")
        return list(reports)

    async def run_bucket(self, frequency: CheckFrequency) -> List[CollectionReport]:
        """Scheduled trigger: active sources in one check-frequency bucket."""
        sources = await self.sources.list_active(frequency)
        logger.info(f"Running {frequency.value} collection for {len(sources)} sources")
        return await self._run(sources)

    async def trigger_all(self) -> List[CollectionReport]:
        """Manual trigger: every active source, regardless of bucket."""
        sources = await self.sources.list_active()
        logger.info(f"Manual collection for {len(sources)} active sources")
        return await self._run(sources)

    async def trigger_source(self, source_id: int) -> int:
        """
        Manual single-source trigger. Health is recorded either way, and the
        adapter's error is raised to the caller.
        """
        source = await self.sources.get(source_id)
        return await self._collect(source)
