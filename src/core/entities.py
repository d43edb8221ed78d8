from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Optional, Dict, Any


class SourceType(str, Enum):
    GITHUB = "github"
    RSS = "rss"
    REDDIT = "reddit"
    HACKERNEWS = "hackernews"
    WEBSITE = "website"


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class CheckFrequency(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


class UrgencyLevel(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Higher is more urgent."""
        return _URGENCY_RANK[self]


_URGENCY_RANK = {
    UrgencyLevel.CRITICAL: 3,
    UrgencyLevel.HIGH: 2,
    UrgencyLevel.NORMAL: 1,
    UrgencyLevel.LOW: 0,
}


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"
    CONTROVERSIAL = "controversial"


class ModerationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DigestStatus(str, Enum):
    DRAFT = "draft"
    REVIEW = "review"  # reserved, nothing transitions into it yet
    PUBLISHED = "published"


class Section(str, Enum):
    CRITICAL = "critical"
    RELEASES = "releases"
    NEWS = "news"
    AI = "ai"
    READING = "reading"
    TRENDING = "trending"


@dataclass(frozen=True)
class Source:
    """
    A configured external feed, repository or subreddit to poll.
    Only the dispatcher touches the health fields.
    """
    id: int
    name: str
    type: SourceType
    url: str
    config: Dict[str, Any] = field(default_factory=dict)
    priority: Priority = Priority.MEDIUM
    check_frequency: CheckFrequency = CheckFrequency.DAILY
    is_active: bool = True
    last_fetch_at: Optional[datetime] = None
    last_error: Optional[str] = None
    error_count: int = 0
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class RawItem:
    """
    Canonical representation of an ingested content item.
    Unique per (source_id, external_id).
    """
    id: int
    source_id: int
    external_id: str
    title: str
    content: str
    url: str
    author: Optional[str]
    published_at: datetime
    fetched_at: datetime
    metadata: Dict[str, Any] = field(default_factory=dict)
    is_processed: bool = False


@dataclass(frozen=True)
class ProcessedItem:
    """
    LLM analysis of exactly one raw item.
    """
    id: int
    raw_item_id: int
    summary: str
    categories: List[str]
    tags: List[str]
    relevance_score: float
    urgency_level: UrgencyLevel
    sentiment: Optional[Sentiment]
    action_items: List[str]
    llm_model: str
    llm_tokens_used: int
    llm_cost: float
    processed_at: datetime
    moderation_status: ModerationStatus = ModerationStatus.PENDING


@dataclass(frozen=True)
class DigestEntry:
    """
    A processed item joined with its raw item and source, ready to be
    placed in a digest section.
    """
    processed_item_id: int
    title: str
    url: str
    source_name: str
    summary: str
    categories: List[str]
    tags: List[str]
    urgency_level: UrgencyLevel
    relevance_score: float


@dataclass(frozen=True)
class DigestItem:
    digest_id: int
    processed_item_id: int
    section: Section
    order: int
    entry: Optional[DigestEntry] = None


@dataclass(frozen=True)
class Digest:
    id: int
    date: date
    title: str
    content: str
    status: DigestStatus
    published_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: List[DigestItem] = field(default_factory=list)

    @property
    def is_published(self) -> bool:
        return self.status == DigestStatus.PUBLISHED


@dataclass(frozen=True)
class LlmUsageRecord:
    provider: str
    model: str
    tokens_in: int
    tokens_out: int
    cost: float
    operation: str
    created_at: Optional[datetime] = None
    id: Optional[int] = None
