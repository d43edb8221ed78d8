"""
Ingestion from RSS sources
"""
import hashlib
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Pattern

import feedparser
import httpx

from core.entities import Source, SourceType
from core.errors import ConfigError, ParseError
from ingestion.base import IngestedItem, SourceAdapter, strip_html
from services.stores import RawItemStore

logger = logging.getLogger(__name__)

DEFAULT_ITEM_LIMIT = 50


def external_id_for(link: str) -> str:
    """Stable dedup key derived from the entry link."""
    return f"rss-{hashlib.sha256(link.encode('utf-8')).hexdigest()}"


def compile_title_filter(pattern: Optional[str]) -> Optional[Pattern[str]]:
    if not pattern:
        return None
    try:
        return re.compile(pattern, re.IGNORECASE)
    except re.error as e:
        raise ConfigError(f"Invalid titleFilter {pattern!r}: {e}") from e


def extract_content(entry: Dict[str, Any]) -> str:
    # content:encoded and atom content land in `content`, snippets in `summary`
    for block in entry.get("content") or []:
        value = block.get("value")
        if value:
            return strip_html(value)
    return strip_html(entry.get("summary") or entry.get("description") or "")


def _published(entry: Dict[str, Any]) -> datetime:
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if parsed:
        return datetime(*parsed[:6], tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


def _enclosure(entry: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    enclosures = entry.get("enclosures") or []
    if not enclosures:
        return None
    first = enclosures[0]
    return {"url": first.get("href"), "type": first.get("type"), "length": first.get("length")}


class RSSAdapter(SourceAdapter):
    source_type = SourceType.RSS

    def __init__(
        self,
        raw_items: RawItemStore,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(raw_items, timeout=timeout, transport=transport)

    async def fetch(self, source: Source) -> List[IngestedItem]:
        item_limit = int(source.config.get("itemLimit") or DEFAULT_ITEM_LIMIT)
        title_filter = compile_title_filter(source.config.get("titleFilter"))
        what = f"RSS feed {source.url}"

        logger.info(f"Collecting RSS feed from {source.url}")

        async with self._client() as client:
            response = await self._get(client, source.url, what, follow_redirects=True)

        feed = feedparser.parse(response.content)
        if feed.bozo and not feed.entries:
            raise ParseError(f"Failed to parse RSS feed: {feed.get('bozo_exception')}")

        feed_title = feed.feed.get("title")
        items: List[IngestedItem] = []

        for entry in feed.entries[:item_limit]:
            link = entry.get("link")
            if not link:
                continue

            title = entry.get("title") or ""
            if title_filter and not title_filter.search(title):
                continue

            items.append(
                IngestedItem(
                    external_id=external_id_for(link),
                    title=title or "Untitled",
                    content=extract_content(entry),
                    url=link,
                    author=entry.get("author"),
                    published_at=_published(entry),
                    metadata={
                        "feedTitle": feed_title,
                        "categories": [tag.get("term") for tag in entry.get("tags") or [] if tag.get("term")],
                        "enclosure": _enclosure(entry),
                    },
                )
            )

        return items

    async def collect(self, source: Source) -> int:
        saved = await super().collect(source)
        logger.info(f"Collected {saved} new items from RSS feed {source.url}")
        return saved
