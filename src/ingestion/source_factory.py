"""
Source Factory - builds the collector registry keyed by source type.
"""
import logging
from typing import Dict, Optional

import httpx

from core.entities import SourceType
from ingestion.base import SourceAdapter
from ingestion.github import GitHubAdapter
from ingestion.hackernews import HackerNewsAdapter
from ingestion.reddit import RedditAdapter
from ingestion.rss import RSSAdapter
from services.config import Config
from services.stores import RawItemStore

logger = logging.getLogger(__name__)


def build_collectors(
    config: Config,
    raw_items: RawItemStore,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[SourceType, SourceAdapter]:
    """
    One adapter per supported source type. `website` sources have no
    collector and are rejected by the dispatcher.

    Args:
        config: Application configuration (timeouts and credentials)
        raw_items: Store the adapters write into
        transport: Optional httpx transport, used by tests

    Returns:
        Mapping of SourceType to its adapter
    """
    collectors: Dict[SourceType, SourceAdapter] = {
        SourceType.GITHUB: GitHubAdapter(
            raw_items,
            token=config.GITHUB_TOKEN,
            timeout=config.COLLECTOR_TIMEOUT,
            transport=transport,
        ),
        SourceType.RSS: RSSAdapter(raw_items, timeout=config.RSS_TIMEOUT, transport=transport),
        SourceType.REDDIT: RedditAdapter(
            raw_items,
            client_id=config.REDDIT_CLIENT_ID,
            client_secret=config.REDDIT_CLIENT_SECRET,
            user_agent=config.REDDIT_USER_AGENT,
            timeout=config.COLLECTOR_TIMEOUT,
            transport=transport,
        ),
        SourceType.HACKERNEWS: HackerNewsAdapter(
            raw_items,
            timeout=config.COLLECTOR_TIMEOUT,
            transport=transport,
        ),
    }
    logger.info(f"Registered collectors: {', '.join(t.value for t in collectors)}")
    return collectors
