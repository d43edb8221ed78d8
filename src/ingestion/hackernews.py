"""
Ingest stories from Hacker News
"""
import logging
from datetime import datetime, timezone
from typing import List, Optional

import httpx

from core.entities import Source, SourceType
from core.errors import ConfigError, ParseError
from ingestion.base import IngestedItem, SourceAdapter, json_body, strip_html
from services.stores import RawItemStore

logger = logging.getLogger(__name__)

LISTS = {"top": "topstories", "new": "newstories", "best": "beststories"}


class HackerNewsAdapter(SourceAdapter):
    BASE_URL = "https://hacker-news.firebaseio.com/v0"
    source_type = SourceType.HACKERNEWS

    def __init__(
        self,
        raw_items: RawItemStore,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(raw_items, timeout=timeout, transport=transport)

    async def fetch(self, source: Source) -> List[IngestedItem]:
        list_name = source.config.get("list") or "top"
        if list_name not in LISTS:
            raise ConfigError(f"Unknown Hacker News list: {list_name}")
        try:
            limit = int(source.config.get("limit") or 30)
            min_score = float(source.config.get("minScore") or 0)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid Hacker News limit or minScore: {e}") from e
        what = f"Hacker News {list_name} stories"

        logger.info(f"Collecting {what}")

        items: List[IngestedItem] = []
        async with self._client() as client:
            response = await self._get(client, f"{self.BASE_URL}/{LISTS[list_name]}.json", what)
            story_ids = json_body(response, what)
            if not isinstance(story_ids, list):
                raise ParseError(f"{what}: expected a list of ids")

            for sid in story_ids[:limit]:
                story = await self._send(client, "GET", f"{self.BASE_URL}/item/{sid}.json", what)
                if story.status_code != 200:
                    continue

                data = json_body(story, what)
                if not isinstance(data, dict) or data.get("type") != "story":
                    continue
                if data.get("dead") or data.get("deleted"):
                    continue

                score = data.get("score") or 0
                if min_score and score < min_score:
                    continue

                link = data.get("url")
                discussion = f"https://news.ycombinator.com/item?id={sid}"
                items.append(
                    IngestedItem(
                        external_id=f"item-{sid}",
                        title=data.get("title") or "Untitled",
                        content=strip_html(data.get("text") or "") or f"External link: {link or discussion}",
                        url=link or discussion,
                        author=data.get("by"),
                        published_at=datetime.fromtimestamp(data.get("time") or 0, tz=timezone.utc),
                        metadata={
                            "score": score,
                            "numComments": data.get("descendants", 0),
                            "discussionUrl": discussion,
                        },
                    )
                )

        return items
