"""
Application wiring: builds every store, service and workflow once from
configuration and hands the same objects to the API, the CLI and the
scheduler.
"""
import logging
from dataclasses import dataclass
from functools import partial
from typing import Dict, Mapping, Optional

import httpx

from core.entities import CheckFrequency, SourceType
from digest.generator import DigestGenerator
from ingestion.base import SourceAdapter
from ingestion.source_factory import build_collectors
from processing.summarizer import Summarizer
from services.config import Config
from services.database import Database
from services.llm import CompletionOptions, LlmService, ProviderName
from services.llm_providers import LlmProvider, build_providers
from services.scheduler import Scheduler, next_hourly, next_interval, next_run_time, next_weekly
from services.stats import StatsService
from services.stores import (
    DigestStore,
    LlmUsageStore,
    ProcessedItemStore,
    RawItemStore,
    SourceStore,
)
from workflows.collection import CollectorDispatcher
from workflows.processing import ProcessingRunner

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    config: Config
    db: Database
    sources: SourceStore
    raw_items: RawItemStore
    processed_items: ProcessedItemStore
    digests: DigestStore
    usage: LlmUsageStore
    llm: LlmService
    collectors: Mapping[SourceType, SourceAdapter]
    dispatcher: CollectorDispatcher
    summarizer: Summarizer
    processing: ProcessingRunner
    digest_generator: DigestGenerator
    stats: StatsService
    scheduler: Scheduler

    async def startup(self, start_scheduler: bool = True) -> None:
        await self.db.init_tables()
        await self.llm.initialize()
        if start_scheduler and self.config.schedule.enabled:
            self.scheduler.start()

    async def shutdown(self) -> None:
        if self.scheduler.running:
            await self.scheduler.stop()


def build_scheduler(
    config: Config,
    dispatcher: CollectorDispatcher,
    processing: ProcessingRunner,
    digest_generator: DigestGenerator,
) -> Scheduler:
    schedule = config.schedule
    scheduler = Scheduler()

    scheduler.add_job(
        "hourly-collection",
        next_hourly,
        partial(dispatcher.run_bucket, CheckFrequency.HOURLY),
    )
    scheduler.add_job(
        "daily-collection",
        lambda now: next_run_time(schedule.daily_collection_hour, now),
        partial(dispatcher.run_bucket, CheckFrequency.DAILY),
    )
    scheduler.add_job(
        "weekly-collection",
        lambda now: next_weekly(schedule.weekly_collection_weekday, schedule.daily_collection_hour, now),
        partial(dispatcher.run_bucket, CheckFrequency.WEEKLY),
    )
    scheduler.add_job(
        "processing",
        lambda now: next_interval(schedule.processing_interval_minutes, now),
        processing.run_scheduled,
    )
    scheduler.add_job(
        "daily-digest",
        lambda now: next_run_time(schedule.digest_hour, now),
        digest_generator.generate_daily,
    )
    return scheduler


def build_context(
    config: Config,
    *,
    providers: Optional[Dict[ProviderName, LlmProvider]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AppContext:
    db = Database(config.DATABASE_PATH)
    sources = SourceStore(db)
    raw_items = RawItemStore(db)
    processed_items = ProcessedItemStore(db)
    digests = DigestStore(db)
    usage = LlmUsageStore(db)

    llm = LlmService(
        providers if providers is not None else build_providers(config),
        usage,
        default_provider=ProviderName(config.LLM_DEFAULT_PROVIDER),
        fallback_provider=ProviderName(config.LLM_FALLBACK_PROVIDER),
    )

    collectors = build_collectors(config, raw_items, transport=transport)
    dispatcher = CollectorDispatcher(sources, collectors, max_concurrency=config.COLLECTOR_CONCURRENCY)

    summarizer = Summarizer(
        llm,
        raw_items,
        processed_items,
        options=CompletionOptions(max_tokens=config.LLM_MAX_TOKENS, temperature=config.LLM_TEMPERATURE),
    )
    processing = ProcessingRunner(summarizer, batch_size=config.PROCESSING_BATCH_SIZE)
    digest_generator = DigestGenerator(
        processed_items,
        digests,
        relevance_threshold=config.DIGEST_RELEVANCE_THRESHOLD,
    )
    stats = StatsService(sources, raw_items, processed_items, digests, usage)

    return AppContext(
        config=config,
        db=db,
        sources=sources,
        raw_items=raw_items,
        processed_items=processed_items,
        digests=digests,
        usage=usage,
        llm=llm,
        collectors=collectors,
        dispatcher=dispatcher,
        summarizer=summarizer,
        processing=processing,
        digest_generator=digest_generator,
        stats=stats,
        scheduler=build_scheduler(config, dispatcher, processing, digest_generator),
    )
