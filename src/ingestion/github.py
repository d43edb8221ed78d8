"""
Ingest releases from GitHub repositories
"""
import logging
import re
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import httpx

from core.entities import Source, SourceType
from core.errors import ConfigError, ParseError
from ingestion.base import IngestedItem, SourceAdapter, json_body
from services.stores import RawItemStore

logger = logging.getLogger(__name__)

EMPTY_NOTES = "No release notes provided."


def parse_repository(source: Source) -> Tuple[str, str]:
    """owner/repo from explicit config, else from the source URL."""
    owner = source.config.get("owner")
    repo = source.config.get("repo")
    if owner and repo:
        return owner, repo

    match = re.search(r"github\.com/([^/]+)/([^/?#]+)", source.url)
    if not match:
        raise ConfigError(f"Invalid GitHub URL: {source.url}")
    repo = match.group(2)
    if repo.endswith(".git"):
        repo = repo[:-4]
    return match.group(1), repo


def _parse_time(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


class GitHubAdapter(SourceAdapter):
    BASE_URL = "https://api.github.com"
    source_type = SourceType.GITHUB

    def __init__(
        self,
        raw_items: RawItemStore,
        token: Optional[str] = None,
        page_size: int = 20,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(raw_items, timeout=timeout, transport=transport)
        self.token = token
        self.page_size = page_size

    async def fetch(self, source: Source) -> List[IngestedItem]:
        owner, repo = parse_repository(source)
        include_prerelease = bool(source.config.get("includePrerelease", False))
        what = f"Repository {owner}/{repo}"

        logger.info(f"Collecting GitHub releases from {owner}/{repo}")

        headers = {"Accept": "application/vnd.github.v3+json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        async with self._client(headers) as client:
            # GitHub answers 403 once the hourly quota is spent
            response = await self._get(
                client,
                f"{self.BASE_URL}/repos/{owner}/{repo}/releases",
                what,
                rate_limit_statuses=(403, 429),
                params={"per_page": self.page_size},
            )

        releases = json_body(response, what)
        if not isinstance(releases, list):
            raise ParseError(f"{what}: expected a list of releases")

        items: List[IngestedItem] = []
        for release in releases:
            try:
                if release.get("draft"):
                    continue
                if release.get("prerelease") and not include_prerelease:
                    continue

                tag = release["tag_name"]
                title = f"{repo} {tag}"
                if release.get("name"):
                    title += f": {release['name']}"

                items.append(
                    IngestedItem(
                        external_id=f"release-{release['id']}",
                        title=title,
                        content=release.get("body") or EMPTY_NOTES,
                        url=release.get("html_url") or f"https://github.com/{owner}/{repo}/releases/tag/{tag}",
                        author=(release.get("author") or {}).get("login"),
                        published_at=_parse_time(release.get("published_at")),
                        metadata={
                            "tagName": tag,
                            "prerelease": bool(release.get("prerelease")),
                            "owner": owner,
                            "repo": repo,
                        },
                    )
                )
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                raise ParseError(f"{what}: malformed release payload ({e})") from e

        return items

    async def collect(self, source: Source) -> int:
        saved = await super().collect(source)
        logger.info(f"Collected {saved} new releases from {source.url}")
        return saved
