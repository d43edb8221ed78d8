"""Tests for the GitHub, RSS, Reddit and Hacker News collectors."""

import json

import httpx
import pytest

from core.entities import Source, SourceType
from core.errors import ConfigError, NotFoundError, ParseError, RateLimitedError, UpstreamError
from ingestion.github import EMPTY_NOTES, GitHubAdapter, parse_repository
from ingestion.hackernews import HackerNewsAdapter
from ingestion.reddit import RedditAdapter, parse_subreddit
from ingestion.rss import RSSAdapter, external_id_for


def _source(type: SourceType, url: str, config=None, id: int = 1) -> Source:
    return Source(id=id, name="test", type=type, url=url, config=config or {})


RELEASES = [
    {
        "id": 123,
        "tag_name": "v15.0.0",
        "name": "Big one",
        "body": "Notes",
        "html_url": "https://github.com/vercel/next.js/releases/tag/v15.0.0",
        "author": {"login": "octocat"},
        "published_at": "2024-10-21T12:00:00Z",
        "draft": False,
        "prerelease": False,
    },
    {"id": 124, "tag_name": "v15.1.0-canary.1", "name": "", "body": "", "draft": False, "prerelease": True,
     "published_at": "2024-10-22T12:00:00Z"},
    {"id": 125, "tag_name": "v16.0.0", "name": "", "body": "", "draft": True, "prerelease": False},
]


def test_parse_repository_from_config_and_url():
    assert parse_repository(_source(SourceType.GITHUB, "x", {"owner": "a", "repo": "b"})) == ("a", "b")
    assert parse_repository(_source(SourceType.GITHUB, "https://github.com/nestjs/nest.git")) == ("nestjs", "nest")
    with pytest.raises(ConfigError):
        parse_repository(_source(SourceType.GITHUB, "https://gitlab.com/a/b"))


@pytest.mark.asyncio
async def test_github_filters_drafts_and_prereleases():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json=RELEASES)

    adapter = GitHubAdapter(raw_items=None, token="tok", transport=httpx.MockTransport(handler))
    items = await adapter.fetch(_source(SourceType.GITHUB, "https://github.com/vercel/next.js"))

    assert [i.external_id for i in items] == ["release-123"]
    assert items[0].title == "next.js v15.0.0: Big one"
    assert items[0].author == "octocat"
    assert items[0].metadata == {"tagName": "v15.0.0", "prerelease": False, "owner": "vercel", "repo": "next.js"}
    assert "per_page=20" in seen["url"]
    assert seen["auth"] == "Bearer tok"


@pytest.mark.asyncio
async def test_github_includes_prereleases_when_configured():
    adapter = GitHubAdapter(None, transport=httpx.MockTransport(lambda r: httpx.Response(200, json=RELEASES)))
    items = await adapter.fetch(
        _source(SourceType.GITHUB, "https://github.com/vercel/next.js", {"includePrerelease": True})
    )

    assert [i.external_id for i in items] == ["release-123", "release-124"]
    assert items[1].title == "next.js v15.1.0-canary.1"
    assert items[1].content == EMPTY_NOTES


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, error",
    [(404, NotFoundError), (403, RateLimitedError), (429, RateLimitedError), (500, UpstreamError)],
)
async def test_github_status_mapping(status, error):
    adapter = GitHubAdapter(None, transport=httpx.MockTransport(lambda r: httpx.Response(status)))
    with pytest.raises(error):
        await adapter.fetch(_source(SourceType.GITHUB, "https://github.com/a/b"))


@pytest.mark.asyncio
async def test_github_timeout_is_upstream_error():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    adapter = GitHubAdapter(None, transport=httpx.MockTransport(handler))
    with pytest.raises(UpstreamError):
        await adapter.fetch(_source(SourceType.GITHUB, "https://github.com/a/b"))


@pytest.mark.asyncio
async def test_github_malformed_payload_is_parse_error():
    adapter = GitHubAdapter(None, transport=httpx.MockTransport(lambda r: httpx.Response(200, text="<html>")))
    with pytest.raises(ParseError):
        await adapter.fetch(_source(SourceType.GITHUB, "https://github.com/a/b"))


@pytest.mark.asyncio
async def test_collect_twice_stores_nothing_new(raw_items, make_source):
    source = await make_source()
    adapter = GitHubAdapter(raw_items, transport=httpx.MockTransport(lambda r: httpx.Response(200, json=RELEASES)))

    assert await adapter.collect(source) == 1
    assert await adapter.collect(source) == 0
    assert await raw_items.count() == 1


FEED = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:content="http://purl.org/rss/1.0/modules/content/">
  <channel>
    <title>Node Weekly</title>
    <link>https://example.com</link>
    <item>
      <title>Node.js 22 released</title>
      <link>https://example.com/node-22</link>
      <description>Short &lt;b&gt;snippet&lt;/b&gt;</description>
      <content:encoded><![CDATA[<p>Full <em>release</em> notes</p>]]></content:encoded>
      <category>release</category>
      <pubDate>Tue, 23 Apr 2024 10:00:00 GMT</pubDate>
    </item>
    <item>
      <title>Weekly roundup</title>
      <link>https://example.com/roundup</link>
      <description>&lt;p&gt;Lots of   links&lt;/p&gt;</description>
    </item>
    <item>
      <title>No link here</title>
      <description>orphan</description>
    </item>
  </channel>
</rss>
"""


def _rss_adapter(body: str = FEED, status: int = 200) -> RSSAdapter:
    return RSSAdapter(None, transport=httpx.MockTransport(lambda r: httpx.Response(status, text=body)))


@pytest.mark.asyncio
async def test_rss_maps_entries():
    items = await _rss_adapter().fetch(_source(SourceType.RSS, "https://example.com/feed.xml"))

    assert [i.url for i in items] == ["https://example.com/node-22", "https://example.com/roundup"]
    first, second = items
    assert first.external_id == external_id_for("https://example.com/node-22")
    assert first.content == "Full release notes"
    assert first.published_at.year == 2024
    assert first.metadata["feedTitle"] == "Node Weekly"
    assert first.metadata["categories"] == ["release"]
    assert second.content == "Lots of links"


@pytest.mark.asyncio
async def test_rss_title_filter_and_item_limit():
    source = _source(SourceType.RSS, "https://example.com/feed.xml", {"titleFilter": "NODE"})
    items = await _rss_adapter().fetch(source)
    assert [i.title for i in items] == ["Node.js 22 released"]

    source = _source(SourceType.RSS, "https://example.com/feed.xml", {"itemLimit": 1})
    assert len(await _rss_adapter().fetch(source)) == 1


@pytest.mark.asyncio
async def test_rss_invalid_title_filter_is_config_error():
    with pytest.raises(ConfigError):
        await _rss_adapter().fetch(_source(SourceType.RSS, "https://example.com/feed.xml", {"titleFilter": "("}))


@pytest.mark.asyncio
async def test_rss_unparseable_feed_is_parse_error():
    with pytest.raises(ParseError):
        await _rss_adapter(body="this is < not a feed").fetch(_source(SourceType.RSS, "https://example.com/x"))


def test_rss_external_id_is_stable_and_distinct():
    assert external_id_for("https://a.com/1") == external_id_for("https://a.com/1")
    assert external_id_for("https://a.com/1") != external_id_for("https://a.com/2")


LISTING = {
    "data": {
        "children": [
            {"data": {"id": "abc", "title": "Self post", "selftext": "body", "url": "https://reddit.com/x",
                      "permalink": "/r/nextjs/comments/abc/", "author": "u1", "created_utc": 1700000000,
                      "score": 50, "num_comments": 3, "link_flair_text": "News", "is_self": True}},
            {"data": {"id": "def", "title": "Link post", "selftext": "", "url": "https://blog.example.com",
                      "permalink": "/r/nextjs/comments/def/", "author": "u2", "created_utc": 1700000100,
                      "score": 5, "num_comments": 0, "link_flair_text": None, "is_self": False}},
        ]
    }
}


def test_parse_subreddit():
    assert parse_subreddit(_source(SourceType.REDDIT, "https://www.reddit.com/r/nextjs/")) == "nextjs"
    assert parse_subreddit(_source(SourceType.REDDIT, "x", {"subreddit": "node"})) == "node"
    with pytest.raises(ConfigError):
        parse_subreddit(_source(SourceType.REDDIT, "https://example.com"))


@pytest.mark.asyncio
async def test_reddit_public_listing_without_credentials():
    requested = []

    def handler(request):
        requested.append(str(request.url))
        return httpx.Response(200, json=LISTING)

    adapter = RedditAdapter(None, transport=httpx.MockTransport(handler))
    items = await adapter.fetch(_source(SourceType.REDDIT, "https://www.reddit.com/r/nextjs", {"sort": "new"}))

    assert requested == ["https://www.reddit.com/r/nextjs/new.json?limit=50"]
    assert [i.external_id for i in items] == ["post-abc", "post-def"]
    assert items[0].content == "body"
    assert items[0].url == "https://reddit.com/r/nextjs/comments/abc/"
    assert items[1].content == "External link: https://blog.example.com"
    assert items[1].metadata["externalUrl"] == "https://blog.example.com"


@pytest.mark.asyncio
async def test_reddit_filters():
    adapter = RedditAdapter(None, transport=httpx.MockTransport(lambda r: httpx.Response(200, json=LISTING)))
    url = "https://www.reddit.com/r/nextjs"

    items = await adapter.fetch(_source(SourceType.REDDIT, url, {"minScore": 10}))
    assert [i.external_id for i in items] == ["post-abc"]

    items = await adapter.fetch(_source(SourceType.REDDIT, url, {"flairFilter": ["Discussion"]}))
    assert items == []


@pytest.mark.asyncio
async def test_reddit_uses_cached_oauth_token():
    calls = []

    def handler(request):
        calls.append(request.url.host)
        if request.url.path == "/api/v1/access_token":
            return httpx.Response(200, json={"access_token": "t0k", "expires_in": 3600})
        assert request.headers["Authorization"] == "Bearer t0k"
        return httpx.Response(200, json=LISTING)

    adapter = RedditAdapter(None, client_id="id", client_secret="secret", transport=httpx.MockTransport(handler))
    source = _source(SourceType.REDDIT, "https://www.reddit.com/r/nextjs")
    await adapter.fetch(source)
    await adapter.fetch(source)

    assert calls == ["www.reddit.com", "oauth.reddit.com", "oauth.reddit.com"]


@pytest.mark.asyncio
async def test_reddit_falls_back_to_public_when_oauth_rejected():
    calls = []

    def handler(request):
        calls.append(request.url.host)
        if request.url.path == "/api/v1/access_token":
            return httpx.Response(200, json={"access_token": "t0k", "expires_in": 3600})
        if request.url.host == "oauth.reddit.com":
            return httpx.Response(401)
        return httpx.Response(200, json=LISTING)

    adapter = RedditAdapter(None, client_id="id", client_secret="secret", transport=httpx.MockTransport(handler))
    items = await adapter.fetch(_source(SourceType.REDDIT, "https://www.reddit.com/r/nextjs"))

    assert len(items) == 2
    assert calls == ["www.reddit.com", "oauth.reddit.com", "www.reddit.com"]
    assert adapter._access_token is None


@pytest.mark.asyncio
async def test_reddit_token_failure_falls_back_to_public():
    def handler(request):
        if request.url.path == "/api/v1/access_token":
            return httpx.Response(401)
        return httpx.Response(200, json=LISTING)

    adapter = RedditAdapter(None, client_id="id", client_secret="bad", transport=httpx.MockTransport(handler))
    items = await adapter.fetch(_source(SourceType.REDDIT, "https://www.reddit.com/r/nextjs"))
    assert len(items) == 2


@pytest.mark.asyncio
async def test_hackernews_stories_only():
    stories = {
        1: {"id": 1, "type": "story", "title": "Show HN: thing", "url": "https://thing.dev", "by": "pg",
            "time": 1700000000, "score": 120, "descendants": 40},
        2: {"id": 2, "type": "job", "title": "Hiring"},
        3: {"id": 3, "type": "story", "title": "Ask HN: help?", "text": "<p>Question</p>", "by": "x",
            "time": 1700000000, "score": 2},
    }

    def handler(request):
        if request.url.path.endswith("topstories.json"):
            return httpx.Response(200, content=json.dumps([1, 2, 3]))
        item_id = int(request.url.path.rsplit("/", 1)[1].split(".")[0])
        return httpx.Response(200, json=stories[item_id])

    adapter = HackerNewsAdapter(None, transport=httpx.MockTransport(handler))
    items = await adapter.fetch(_source(SourceType.HACKERNEWS, "https://news.ycombinator.com"))

    assert [i.external_id for i in items] == ["item-1", "item-3"]
    assert items[0].content == "External link: https://thing.dev"
    assert items[1].content == "Question"
    assert items[1].url == "https://news.ycombinator.com/item?id=3"

    items = await adapter.fetch(_source(SourceType.HACKERNEWS, "https://news.ycombinator.com", {"minScore": 10}))
    assert [i.external_id for i in items] == ["item-1"]


@pytest.mark.asyncio
async def test_github_non_object_release_is_a_parse_error():
    adapter = GitHubAdapter(
        raw_items=None,
        transport=httpx.MockTransport(lambda r: httpx.Response(200, json=[RELEASES[0], "v1.0.0"])),
    )

    with pytest.raises(ParseError):
        await adapter.fetch(_source(SourceType.GITHUB, "https://github.com/vercel/next.js"))


@pytest.mark.asyncio
async def test_reddit_non_numeric_min_score_is_a_config_error():
    adapter = RedditAdapter(None, transport=httpx.MockTransport(lambda r: httpx.Response(200, json=LISTING)))

    with pytest.raises(ConfigError):
        await adapter.fetch(_source(SourceType.REDDIT, "https://www.reddit.com/r/nextjs", {"minScore": "lots"}))

    items = await adapter.fetch(_source(SourceType.REDDIT, "https://www.reddit.com/r/nextjs", {"minScore": "10"}))
    assert [i.external_id for i in items] == ["post-abc"]


@pytest.mark.asyncio
async def test_reddit_malformed_post_is_a_parse_error():
    listing = {"data": {"children": [{"kind": "t3", "data": ["not", "a", "post"]}]}}
    adapter = RedditAdapter(None, transport=httpx.MockTransport(lambda r: httpx.Response(200, json=listing)))

    with pytest.raises(ParseError):
        await adapter.fetch(_source(SourceType.REDDIT, "https://www.reddit.com/r/nextjs"))


@pytest.mark.asyncio
async def test_hackernews_non_numeric_limit_is_a_config_error():
    adapter = HackerNewsAdapter(None, transport=httpx.MockTransport(lambda r: httpx.Response(200, json=[])))

    with pytest.raises(ConfigError):
        await adapter.fetch(_source(SourceType.HACKERNEWS, "https://news.ycombinator.com", {"limit": "many"}))
