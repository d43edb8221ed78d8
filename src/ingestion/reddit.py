"""
Ingest posts from subreddits
"""
import logging
import re
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import httpx

from core.entities import Source, SourceType
from core.errors import ConfigError, ParseError
from ingestion.base import IngestedItem, SourceAdapter, check_response, json_body
from services.stores import RawItemStore

logger = logging.getLogger(__name__)

TOKEN_URL = "https://www.reddit.com/api/v1/access_token"
OAUTH_BASE_URL = "https://oauth.reddit.com"
PUBLIC_BASE_URL = "https://www.reddit.com"

SORT_MODES = ("hot", "new", "top", "rising")
TOKEN_EXPIRY_SKEW = 60  # seconds


def parse_subreddit(source: Source) -> str:
    subreddit = source.config.get("subreddit")
    if subreddit:
        return subreddit

    match = re.search(r"reddit\.com/r/([^/?#]+)", source.url)
    if not match:
        raise ConfigError(f"Invalid Reddit URL: {source.url}")
    return match.group(1)


def _children(listing: Any, what: str) -> List[Dict[str, Any]]:
    try:
        return [child["data"] for child in listing["data"]["children"]]
    except (KeyError, TypeError) as e:
        raise ParseError(f"{what}: malformed listing ({e})") from e


class RedditAdapter(SourceAdapter):
    """
    Reddit listings, authenticated through the client-credentials flow when
    REDDIT_CLIENT_ID / REDDIT_CLIENT_SECRET are set. Without credentials, or
    when the token cannot be obtained, the public JSON endpoint is used.
    """

    source_type = SourceType.REDDIT

    def __init__(
        self,
        raw_items: RawItemStore,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        user_agent: str = "TechIntelligence/1.0",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(raw_items, timeout=timeout, transport=transport)
        self.client_id = client_id
        self.client_secret = client_secret
        self.user_agent = user_agent
        self.clock = clock
        self._access_token: Optional[str] = None
        self._token_expiry = 0.0

    async def _ensure_access_token(self, client: httpx.AsyncClient) -> Optional[str]:
        if self._access_token and self.clock() < self._token_expiry:
            return self._access_token

        self._access_token = None
        if not self.client_id or not self.client_secret:
            return None

        try:
            response = await client.post(
                TOKEN_URL,
                data={"grant_type": "client_credentials"},
                auth=(self.client_id, self.client_secret),
            )
            response.raise_for_status()
            payload = response.json()
            token = payload["access_token"]
            expires_in = float(payload.get("expires_in", 3600))
        except (httpx.HTTPError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to get Reddit OAuth token, falling back to public API: {e}")
            return None

        self._access_token = token
        self._token_expiry = self.clock() + expires_in - TOKEN_EXPIRY_SKEW
        return token

    def invalidate_token(self) -> None:
        self._access_token = None
        self._token_expiry = 0.0

    async def _fetch_posts(
        self,
        client: httpx.AsyncClient,
        subreddit: str,
        sort: str,
        limit: int,
    ) -> List[Dict[str, Any]]:
        what = f"Subreddit r/{subreddit}"
        params = {"limit": limit}

        token = await self._ensure_access_token(client)
        if token:
            response = await self._send(
                client,
                "GET",
                f"{OAUTH_BASE_URL}/r/{subreddit}/{sort}",
                what,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
            if response.status_code in (401, 403):
                logger.warning(f"Reddit OAuth listing rejected ({response.status_code}), using public API")
                self.invalidate_token()
            else:
                check_response(response, what)
                return _children(json_body(response, what), what)

        response = await self._get(client, f"{PUBLIC_BASE_URL}/r/{subreddit}/{sort}.json", what, params=params)
        return _children(json_body(response, what), what)

    async def fetch(self, source: Source) -> List[IngestedItem]:
        subreddit = parse_subreddit(source)
        sort = source.config.get("sort") or "hot"
        if sort not in SORT_MODES:
            raise ConfigError(f"Unknown Reddit sort mode: {sort}")
        try:
            limit = int(source.config.get("limit") or 50)
            min_score = float(source.config.get("minScore") or 0)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid Reddit limit or minScore: {e}") from e
        flair_filter = source.config.get("flairFilter") or []

        logger.info(f"Collecting from r/{subreddit}")

        async with self._client({"User-Agent": self.user_agent}) as client:
            posts = await self._fetch_posts(client, subreddit, sort, limit)

        items: List[IngestedItem] = []
        for post in posts:
            try:
                score = post.get("score") or 0
                if min_score and score < min_score:
                    continue

                flair = post.get("link_flair_text")
                if flair_filter and (flair or "") not in flair_filter:
                    continue

                is_self = bool(post.get("is_self"))
                items.append(
                    IngestedItem(
                        external_id=f"post-{post['id']}",
                        title=post["title"],
                        content=post.get("selftext") or f"External link: {post.get('url')}",
                        url=f"https://reddit.com{post['permalink']}",
                        author=post.get("author"),
                        published_at=datetime.fromtimestamp(post.get("created_utc") or 0, tz=timezone.utc),
                        metadata={
                            "subreddit": subreddit,
                            "score": score,
                            "numComments": post.get("num_comments", 0),
                            "flair": flair,
                            "isSelf": is_self,
                            "externalUrl": None if is_self else post.get("url"),
                        },
                    )
                )
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                raise ParseError(f"r/{subreddit}: malformed post payload ({e})") from e

        return items

    async def collect(self, source: Source) -> int:
        saved = await super().collect(source)
        logger.info(f"Collected {saved} new posts from {source.url}")
        return saved
