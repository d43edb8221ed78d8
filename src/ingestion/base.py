"""
Base classes for Ingestion
"""
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import aiosqlite
import httpx
from bs4 import BeautifulSoup
from pydantic import BaseModel, Field

from core.entities import Source, SourceType
from core.errors import NotFoundError, ParseError, RateLimitedError, UpstreamError
from services.stores import RawItemStore

logger = logging.getLogger(__name__)

USER_AGENT = "TechIntelligence/1.0"


class IngestedItem(BaseModel):
    """
    Canonical shape every collector maps its upstream records to.
    """
    external_id: str
    title: str
    content: str
    url: str
    author: Optional[str] = None
    published_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)


def strip_html(html: str) -> str:
    if not html:
        return ""
    text = BeautifulSoup(html, "html.parser").get_text(" ")
    return re.sub(r"\s+", " ", text).strip()


def check_response(
    response: httpx.Response,
    what: str,
    rate_limit_statuses: Tuple[int, ...] = (429,),
) -> None:
    """Raise the collector error matching an unsuccessful HTTP status."""
    status = response.status_code
    if status < 400:
        return
    if status == 404:
        raise NotFoundError(f"{what} not found")
    if status in rate_limit_statuses:
        raise RateLimitedError(f"{what}: rate limit exceeded")
    raise UpstreamError(f"{what}: upstream error {status}")


def json_body(response: httpx.Response, what: str) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise ParseError(f"{what}: invalid JSON payload ({e})") from e


class SourceAdapter(ABC):
    """
    Base interface for all collectors. `fetch` talks to one external
    protocol; `collect` stores what is new for the source.
    """

    source_type: SourceType

    def __init__(
        self,
        raw_items: RawItemStore,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.raw_items = raw_items
        self.timeout = timeout
        self.transport = transport

    def _client(self, headers: Optional[Dict[str, str]] = None) -> httpx.AsyncClient:
        merged = {"User-Agent": USER_AGENT}
        merged.update(headers or {})
        return httpx.AsyncClient(timeout=self.timeout, headers=merged, transport=self.transport)

    @abstractmethod
    async def fetch(self, source: Source) -> List[IngestedItem]:
        """
        Fetch the current upstream items for a source.
        Raises a CollectorError subclass on failure.
        """
        raise NotImplementedError

    async def _send(
        self,
        client: httpx.AsyncClient,
        method: str,
        url: str,
        what: str,
        **kwargs,
    ) -> httpx.Response:
        """Issue a request, mapping transport failures to UpstreamError."""
        try:
            return await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise UpstreamError(f"{what}: request timed out") from e
        except httpx.HTTPError as e:
            raise UpstreamError(f"{what}: {e}") from e

    async def _get(
        self,
        client: httpx.AsyncClient,
        url: str,
        what: str,
        rate_limit_statuses: Tuple[int, ...] = (429,),
        **kwargs,
    ) -> httpx.Response:
        response = await self._send(client, "GET", url, what, **kwargs)
        check_response(response, what, rate_limit_statuses)
        return response

    async def collect(self, source: Source) -> int:
        """Fetch and store new items. Returns the number of newly stored items."""
        items = await self.fetch(source)
        return await self.store_new(source, items)

    async def store_new(self, source: Source, items: List[IngestedItem]) -> int:
        saved = 0
        for item in items:
            if await self.raw_items.exists(source.id, item.external_id):
                continue
            try:
                stored = await self.raw_items.insert_if_absent(
                    source_id=source.id,
                    external_id=item.external_id,
                    title=item.title,
                    content=item.content,
                    url=item.url,
                    author=item.author,
                    published_at=item.published_at,
                    metadata=item.metadata,
                )
            except aiosqlite.Error as e:
                logger.error(f"Failed to store {item.external_id} for source {source.id}: {e}")
                continue
            if stored:
                saved += 1
                logger.debug(f"Saved item: {item.title[:50]}")
        return saved
