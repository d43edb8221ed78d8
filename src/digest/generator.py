"""
Daily digest assembly, publishing and editing.
"""
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Dict, List, Optional

from core.entities import Digest, DigestEntry, DigestItem, DigestStatus, Section
from core.errors import DigestLockedError
from digest.renderer import digest_title, render_digest
from digest.sections import assign_section
from services.database import utcnow
from services.stores import DigestStore, ProcessedItemStore

logger = logging.getLogger(__name__)


def selection_window(day: date) -> tuple:
    """The calendar day before `day`, as a half-open UTC interval."""
    end = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return end - timedelta(days=1), end


def group_by_section(entries: List[DigestEntry]) -> Dict[Section, List[DigestEntry]]:
    sections: Dict[Section, List[DigestEntry]] = {section: [] for section in Section}
    for entry in entries:
        sections[assign_section(entry.urgency_level, entry.categories)].append(entry)
    return sections


class DigestGenerator:
    def __init__(
        self,
        processed_items: ProcessedItemStore,
        digests: DigestStore,
        relevance_threshold: float = 0.3,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.processed_items = processed_items
        self.digests = digests
        self.relevance_threshold = relevance_threshold
        self.clock = clock

    async def generate_for_date(self, day: date) -> Optional[Digest]:
        """
        Build (or rebuild) the draft digest for `day` from the items processed
        the day before. A published digest is returned unchanged; no qualifying
        items means no digest at all.
        """
        existing = await self.digests.get_by_date(day)
        if existing is not None and existing.is_published:
            logger.info(f"Digest for {day} already published")
            return existing

        start, end = selection_window(day)
        entries = await self.processed_items.list_for_digest_window(start, end, self.relevance_threshold)
        if not entries:
            logger.info(f"No items to include in digest for {day}")
            return None

        content = render_digest(day, group_by_section(entries))
        items = [
            DigestItem(
                digest_id=existing.id if existing else 0,
                processed_item_id=entry.processed_item_id,
                section=assign_section(entry.urgency_level, entry.categories),
                order=position,
            )
            for position, entry in enumerate(entries)
        ]

        digest = await self.digests.save_draft(day, digest_title(day), content, items)
        if digest is None:
            # published between the check above and the write
            return await self.digests.get_by_date(day)

        logger.info(f"Generated digest for {day} with {len(items)} items")
        return digest

    async def generate_daily(self) -> Optional[Digest]:
        logger.info("Starting daily digest generation")
        return await self.generate_for_date(self.clock().date())

    async def publish(self, digest_id: int) -> Digest:
        digest = await self.digests.publish(digest_id, self.clock())
        logger.info(f"Digest {digest_id} published at {digest.published_at}")
        return digest

    async def update(self, digest_id: int, *, title: Optional[str] = None, content: Optional[str] = None) -> Digest:
        digest = await self.digests.get(digest_id)
        if digest.is_published:
            raise DigestLockedError(f"Digest {digest_id} is published and can no longer be edited")

        if not await self.digests.update_content(digest_id, title=title, content=content):
            raise DigestLockedError(f"Digest {digest_id} is published and can no longer be edited")
        return await self.digests.get(digest_id)

    async def list(self, status: Optional[DigestStatus] = None, limit: Optional[int] = None) -> List[Digest]:
        return await self.digests.list(status=status, limit=limit)

    async def get(self, digest_id: int) -> Digest:
        return await self.digests.get(digest_id)

    async def get_by_date(self, day: date) -> Optional[Digest]:
        return await self.digests.get_by_date(day)

    async def latest(self) -> Optional[Digest]:
        return await self.digests.latest_published()
