"""
Row-level persistence for sources, raw items, processed items, digests and LLM usage.

Each store owns the columns its component is allowed to write; no store
mutates another component's fields.
"""
import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

import aiosqlite

from core.entities import (
    CheckFrequency,
    Digest,
    DigestEntry,
    DigestItem,
    DigestStatus,
    LlmUsageRecord,
    ModerationStatus,
    Priority,
    ProcessedItem,
    RawItem,
    Section,
    Sentiment,
    Source,
    SourceType,
    UrgencyLevel,
)
from core.errors import RecordNotFoundError
from core.schemas import AnalysisResult
from services.database import Database, from_db_time, from_json, to_db_time, to_json, utcnow

logger = logging.getLogger(__name__)

URGENCY_RANK_SQL = (
    "CASE p.urgency_level "
    "WHEN 'critical' THEN 3 WHEN 'high' THEN 2 WHEN 'normal' THEN 1 ELSE 0 END"
)


def _source_from_row(row: aiosqlite.Row) -> Source:
    return Source(
        id=row["id"],
        name=row["name"],
        type=SourceType(row["type"]),
        url=row["url"],
        config=from_json(row["config"], {}),
        priority=Priority(row["priority"]),
        check_frequency=CheckFrequency(row["check_frequency"]),
        is_active=bool(row["is_active"]),
        last_fetch_at=from_db_time(row["last_fetch_at"]),
        last_error=row["last_error"],
        error_count=row["error_count"],
        created_at=from_db_time(row["created_at"]),
    )


def _raw_item_from_row(row: aiosqlite.Row) -> RawItem:
    return RawItem(
        id=row["id"],
        source_id=row["source_id"],
        external_id=row["external_id"],
        title=row["title"],
        content=row["content"],
        url=row["url"],
        author=row["author"],
        published_at=from_db_time(row["published_at"]),
        fetched_at=from_db_time(row["fetched_at"]),
        metadata=from_json(row["metadata"], {}),
        is_processed=bool(row["is_processed"]),
    )


def _processed_item_from_row(row: aiosqlite.Row) -> ProcessedItem:
    return ProcessedItem(
        id=row["id"],
        raw_item_id=row["raw_item_id"],
        summary=row["summary"],
        categories=from_json(row["categories"], []),
        tags=from_json(row["tags"], []),
        relevance_score=row["relevance_score"],
        urgency_level=UrgencyLevel(row["urgency_level"]),
        sentiment=Sentiment(row["sentiment"]) if row["sentiment"] else None,
        action_items=from_json(row["action_items"], []),
        llm_model=row["llm_model"],
        llm_tokens_used=row["llm_tokens_used"],
        llm_cost=row["llm_cost"],
        processed_at=from_db_time(row["processed_at"]),
        moderation_status=ModerationStatus(row["moderation_status"]),
    )


def _entry_from_row(row: aiosqlite.Row) -> DigestEntry:
    return DigestEntry(
        processed_item_id=row["id"],
        title=row["title"],
        url=row["url"],
        source_name=row["source_name"],
        summary=row["summary"],
        categories=from_json(row["categories"], []),
        tags=from_json(row["tags"], []),
        urgency_level=UrgencyLevel(row["urgency_level"]),
        relevance_score=row["relevance_score"],
    )


def _digest_from_row(row: aiosqlite.Row, items: Optional[List[DigestItem]] = None) -> Digest:
    return Digest(
        id=row["id"],
        date=date.fromisoformat(row["date"]),
        title=row["title"],
        content=row["content"],
        status=DigestStatus(row["status"]),
        published_at=from_db_time(row["published_at"]),
        created_at=from_db_time(row["created_at"]),
        updated_at=from_db_time(row["updated_at"]),
        items=items or [],
    )


class SourceStore:
    """Source definitions and their health counters."""

    def __init__(self, db: Database):
        self.db = db

    async def get(self, source_id: int) -> Source:
        row = await self.db.fetchone("SELECT * FROM sources WHERE id = ?", (source_id,))
        if row is None:
            raise RecordNotFoundError(f"Source {source_id} not found")
        return _source_from_row(row)

    async def list(
        self,
        *,
        type: Optional[SourceType] = None,
        is_active: Optional[bool] = None,
        priority: Optional[Priority] = None,
    ) -> List[Source]:
        clauses: List[str] = []
        params: List[Any] = []
        if type is not None:
            clauses.append("type = ?")
            params.append(type.value)
        if is_active is not None:
            clauses.append("is_active = ?")
            params.append(int(is_active))
        if priority is not None:
            clauses.append("priority = ?")
            params.append(priority.value)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self.db.fetchall(
            f"""SELECT * FROM sources {where}
                ORDER BY CASE priority WHEN 'high' THEN 0 WHEN 'medium' THEN 1 ELSE 2 END, name""",
            tuple(params),
        )
        return [_source_from_row(row) for row in rows]

    async def list_active(self, frequency: Optional[CheckFrequency] = None) -> List[Source]:
        sources = await self.list(is_active=True)
        if frequency is None:
            return sources
        return [s for s in sources if s.check_frequency == frequency]

    async def create(
        self,
        *,
        name: str,
        type: SourceType,
        url: str,
        config: Optional[Dict[str, Any]] = None,
        priority: Priority = Priority.MEDIUM,
        check_frequency: CheckFrequency = CheckFrequency.DAILY,
        is_active: bool = True,
    ) -> Source:
        source_id = await self.db.insert(
            """
            INSERT INTO sources (name, type, url, config, priority, check_frequency, is_active, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                name,
                type.value,
                url,
                to_json(config or {}),
                priority.value,
                check_frequency.value,
                int(is_active),
                to_db_time(utcnow()),
            ),
        )
        logger.info(f"Created source: {name} ({type.value})")
        return await self.get(source_id)

    async def update(self, source_id: int, changes: Dict[str, Any]) -> Source:
        """Apply definition changes (not health fields)."""
        await self.get(source_id)

        columns = {
            "name": lambda v: v,
            "url": lambda v: v,
            "config": to_json,
            "priority": lambda v: Priority(v).value,
            "check_frequency": lambda v: CheckFrequency(v).value,
            "is_active": lambda v: int(bool(v)),
        }
        assignments: List[str] = []
        params: List[Any] = []
        for key, value in changes.items():
            if key not in columns or value is None:
                continue
            assignments.append(f"{key} = ?")
            params.append(columns[key](value))

        if assignments:
            params.append(source_id)
            await self.db.execute(
                f"UPDATE sources SET {', '.join(assignments)} WHERE id = ?",
                tuple(params),
            )
            logger.info(f"Updated source: {source_id}")
        return await self.get(source_id)

    async def delete(self, source_id: int) -> None:
        deleted = await self.db.execute("DELETE FROM sources WHERE id = ?", (source_id,))
        if not deleted:
            raise RecordNotFoundError(f"Source {source_id} not found")
        logger.info(f"Deleted source: {source_id}")

    async def record_success(self, source_id: int, fetched_at: Optional[datetime] = None) -> None:
        await self.db.execute(
            "UPDATE sources SET last_fetch_at = ?, last_error = NULL, error_count = 0 WHERE id = ?",
            (to_db_time(fetched_at or utcnow()), source_id),
        )

    async def record_failure(self, source_id: int, message: str) -> None:
        await self.db.execute(
            "UPDATE sources SET last_error = ?, error_count = error_count + 1 WHERE id = ?",
            (message, source_id),
        )

    async def item_counts(self) -> Dict[int, int]:
        rows = await self.db.fetchall(
            "SELECT source_id, COUNT(*) AS n FROM raw_items GROUP BY source_id"
        )
        return {row["source_id"]: row["n"] for row in rows}


class RawItemStore:
    """Ingested items; written only by collectors, flagged only by the summarizer."""

    def __init__(self, db: Database):
        self.db = db

    async def exists(self, source_id: int, external_id: str) -> bool:
        row = await self.db.fetchone(
            "SELECT 1 FROM raw_items WHERE source_id = ? AND external_id = ?",
            (source_id, external_id),
        )
        return row is not None

    async def insert_if_absent(
        self,
        *,
        source_id: int,
        external_id: str,
        title: str,
        content: str,
        url: str,
        author: Optional[str],
        published_at: datetime,
        metadata: Optional[Dict[str, Any]] = None,
        fetched_at: Optional[datetime] = None,
    ) -> bool:
        """Insert the item unless the dedup key is taken. Returns True when stored."""
        inserted = await self.db.execute(
            """
            INSERT OR IGNORE INTO raw_items
            (source_id, external_id, title, content, url, author, published_at, fetched_at, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                source_id,
                external_id,
                title,
                content,
                url,
                author,
                to_db_time(published_at),
                to_db_time(fetched_at or utcnow()),
                to_json(metadata or {}),
            ),
        )
        return inserted > 0

    async def get(self, item_id: int) -> RawItem:
        row = await self.db.fetchone("SELECT * FROM raw_items WHERE id = ?", (item_id,))
        if row is None:
            raise RecordNotFoundError(f"Raw item {item_id} not found")
        return _raw_item_from_row(row)

    async def list_for_source(self, source_id: int) -> List[RawItem]:
        rows = await self.db.fetchall(
            "SELECT * FROM raw_items WHERE source_id = ? ORDER BY published_at DESC",
            (source_id,),
        )
        return [_raw_item_from_row(row) for row in rows]

    async def list_unprocessed(self, limit: int) -> List[RawItem]:
        rows = await self.db.fetchall(
            """SELECT * FROM raw_items
               WHERE is_processed = 0
               ORDER BY published_at DESC, id DESC
               LIMIT ?""",
            (limit,),
        )
        return [_raw_item_from_row(row) for row in rows]

    async def count(self) -> int:
        row = await self.db.fetchone("SELECT COUNT(*) FROM raw_items")
        return row[0]

    async def counts_by_source_since(self, since: datetime) -> Dict[int, int]:
        rows = await self.db.fetchall(
            "SELECT source_id, COUNT(*) AS n FROM raw_items WHERE fetched_at >= ? GROUP BY source_id",
            (to_db_time(since),),
        )
        return {row["source_id"]: row["n"] for row in rows}


class ProcessedItemStore:
    """LLM-enriched items."""

    def __init__(self, db: Database):
        self.db = db

    async def create_for_raw_item(
        self,
        raw_item: RawItem,
        analysis: AnalysisResult,
        *,
        llm_model: str,
        llm_tokens_used: int,
        llm_cost: float,
        processed_at: datetime,
    ) -> ProcessedItem:
        """
        Store the analysis and flag the raw item as processed in one transaction.
        A raw item that already has an analysis keeps the existing one.
        """
        async with self.db.transaction() as conn:
            await conn.execute(
                """
                INSERT OR IGNORE INTO processed_items
                (raw_item_id, summary, categories, tags, relevance_score, urgency_level,
                 sentiment, action_items, llm_model, llm_tokens_used, llm_cost, processed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    raw_item.id,
                    analysis.summary,
                    to_json(analysis.categories),
                    to_json(analysis.tags),
                    analysis.relevance_score,
                    analysis.urgency_level.value,
                    analysis.sentiment.value if analysis.sentiment else None,
                    to_json(analysis.action_items),
                    llm_model,
                    llm_tokens_used,
                    llm_cost,
                    to_db_time(processed_at),
                ),
            )
            await conn.execute(
                "UPDATE raw_items SET is_processed = 1 WHERE id = ?",
                (raw_item.id,),
            )
            cursor = await conn.execute(
                "SELECT * FROM processed_items WHERE raw_item_id = ?", (raw_item.id,)
            )
            row = await cursor.fetchone()
        return _processed_item_from_row(row)

    async def get(self, item_id: int) -> ProcessedItem:
        row = await self.db.fetchone("SELECT * FROM processed_items WHERE id = ?", (item_id,))
        if row is None:
            raise RecordNotFoundError(f"Processed item {item_id} not found")
        return _processed_item_from_row(row)

    async def get_for_raw_item(self, raw_item_id: int) -> Optional[ProcessedItem]:
        row = await self.db.fetchone(
            "SELECT * FROM processed_items WHERE raw_item_id = ?", (raw_item_id,)
        )
        return _processed_item_from_row(row) if row else None

    async def list(
        self,
        *,
        limit: int = 50,
        offset: int = 0,
        category: Optional[str] = None,
    ) -> List[ProcessedItem]:
        if category:
            rows = await self.db.fetchall(
                """SELECT p.* FROM processed_items p
                   WHERE EXISTS (SELECT 1 FROM json_each(p.categories) WHERE value = ?)
                   ORDER BY p.processed_at DESC, p.id DESC LIMIT ? OFFSET ?""",
                (category.lower(), limit, offset),
            )
        else:
            rows = await self.db.fetchall(
                "SELECT * FROM processed_items ORDER BY processed_at DESC, id DESC LIMIT ? OFFSET ?",
                (limit, offset),
            )
        return [_processed_item_from_row(row) for row in rows]

    async def set_moderation(self, item_id: int, status: ModerationStatus) -> ProcessedItem:
        updated = await self.db.execute(
            "UPDATE processed_items SET moderation_status = ? WHERE id = ?",
            (status.value, item_id),
        )
        if not updated:
            raise RecordNotFoundError(f"Processed item {item_id} not found")
        logger.info(f"Processed item {item_id} moderated: {status.value}")
        return await self.get(item_id)

    async def list_for_digest_window(
        self,
        start: datetime,
        end: datetime,
        min_relevance: float,
    ) -> List[DigestEntry]:
        """
        Items processed in [start, end) that qualify for a digest, most urgent
        first, then most relevant. Rejected items never qualify; approved items
        always do.
        """
        rows = await self.db.fetchall(
            f"""
            SELECT p.id, p.summary, p.categories, p.tags, p.urgency_level, p.relevance_score,
                   r.title, r.url, s.name AS source_name
            FROM processed_items p
            JOIN raw_items r ON r.id = p.raw_item_id
            JOIN sources s ON s.id = r.source_id
            WHERE p.processed_at >= ? AND p.processed_at < ?
              AND p.moderation_status != 'rejected'
              AND (p.relevance_score >= ? OR p.moderation_status = 'approved')
            ORDER BY {URGENCY_RANK_SQL} DESC, p.relevance_score DESC, p.processed_at ASC, p.id ASC
            """,
            (to_db_time(start), to_db_time(end), min_relevance),
        )
        return [_entry_from_row(row) for row in rows]

    async def count(self) -> int:
        row = await self.db.fetchone("SELECT COUNT(*) FROM processed_items")
        return row[0]

    async def all_labels(self) -> List[tuple]:
        """(categories, tags) of every processed item."""
        rows = await self.db.fetchall("SELECT categories, tags FROM processed_items")
        return [(from_json(row["categories"], []), from_json(row["tags"], [])) for row in rows]

    async def relevance_by_source(self) -> Dict[int, float]:
        """Share of each source's processed items that scored as relevant."""
        rows = await self.db.fetchall(
            """SELECT r.source_id,
                      AVG(CASE WHEN p.relevance_score >= 0.5 THEN 1.0 ELSE 0.0 END) AS rate
               FROM processed_items p JOIN raw_items r ON r.id = p.raw_item_id
               GROUP BY r.source_id"""
        )
        return {row["source_id"]: row["rate"] for row in rows}


class DigestStore:
    """Digests and their ordered item membership."""

    def __init__(self, db: Database):
        self.db = db

    async def _items(self, conn: aiosqlite.Connection, digest_id: int) -> List[DigestItem]:
        cursor = await conn.execute(
            """
            SELECT di.digest_id, di.section, di.position,
                   p.id, p.summary, p.categories, p.tags, p.urgency_level, p.relevance_score,
                   r.title, r.url, s.name AS source_name
            FROM digest_items di
            JOIN processed_items p ON p.id = di.processed_item_id
            JOIN raw_items r ON r.id = p.raw_item_id
            JOIN sources s ON s.id = r.source_id
            WHERE di.digest_id = ?
            ORDER BY di.position
            """,
            (digest_id,),
        )
        rows = await cursor.fetchall()
        return [
            DigestItem(
                digest_id=row["digest_id"],
                processed_item_id=row["id"],
                section=Section(row["section"]),
                order=row["position"],
                entry=_entry_from_row(row),
            )
            for row in rows
        ]

    async def _load(self, where: str, params: tuple) -> Optional[Digest]:
        async with self.db.connect() as conn:
            cursor = await conn.execute(f"SELECT * FROM digests {where}", params)
            row = await cursor.fetchone()
            if row is None:
                return None
            return _digest_from_row(row, await self._items(conn, row["id"]))

    async def get(self, digest_id: int) -> Digest:
        digest = await self._load("WHERE id = ?", (digest_id,))
        if digest is None:
            raise RecordNotFoundError(f"Digest {digest_id} not found")
        return digest

    async def items_for(self, digest_id: int) -> List[DigestItem]:
        async with self.db.connect() as conn:
            return await self._items(conn, digest_id)

    async def get_by_date(self, day: date) -> Optional[Digest]:
        return await self._load("WHERE date = ?", (day.isoformat(),))

    async def latest_published(self) -> Optional[Digest]:
        return await self._load(
            "WHERE status = ? ORDER BY date DESC LIMIT 1",
            (DigestStatus.PUBLISHED.value,),
        )

    async def list(self, *, status: Optional[DigestStatus] = None, limit: Optional[int] = None) -> List[Digest]:
        query = "SELECT * FROM digests"
        params: List[Any] = []
        if status is not None:
            query += " WHERE status = ?"
            params.append(status.value)
        query += " ORDER BY date DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        async with self.db.connect() as conn:
            cursor = await conn.execute(query, tuple(params))
            rows = await cursor.fetchall()
            return [_digest_from_row(row, await self._items(conn, row["id"])) for row in rows]

    async def save_draft(
        self,
        day: date,
        title: str,
        content: str,
        items: Sequence[DigestItem],
    ) -> Optional[Digest]:
        """
        Create or refresh the draft for `day` and replace its item list, all in
        one transaction. Returns None when the digest for `day` is already
        published (nothing is written).
        """
        now = to_db_time(utcnow())
        async with self.db.transaction() as conn:
            cursor = await conn.execute("SELECT * FROM digests WHERE date = ?", (day.isoformat(),))
            existing = await cursor.fetchone()

            if existing is not None and existing["status"] == DigestStatus.PUBLISHED.value:
                return None

            if existing is None:
                cursor = await conn.execute(
                    """INSERT INTO digests (date, title, content, status, created_at, updated_at)
                       VALUES (?, ?, ?, ?, ?, ?)""",
                    (day.isoformat(), title, content, DigestStatus.DRAFT.value, now, now),
                )
                digest_id = cursor.lastrowid
            else:
                digest_id = existing["id"]
                await conn.execute(
                    "UPDATE digests SET title = ?, content = ?, status = ?, updated_at = ? WHERE id = ?",
                    (title, content, DigestStatus.DRAFT.value, now, digest_id),
                )

            await conn.execute("DELETE FROM digest_items WHERE digest_id = ?", (digest_id,))
            await conn.executemany(
                """INSERT INTO digest_items (digest_id, processed_item_id, section, position)
                   VALUES (?, ?, ?, ?)""",
                [(digest_id, item.processed_item_id, item.section.value, item.order) for item in items],
            )

        return await self.get(digest_id)

    async def publish(self, digest_id: int, published_at: Optional[datetime] = None) -> Digest:
        """Move to published once; later calls leave the record untouched."""
        await self.db.execute(
            "UPDATE digests SET status = ?, published_at = ?, updated_at = ? WHERE id = ? AND status != ?",
            (
                DigestStatus.PUBLISHED.value,
                to_db_time(published_at or utcnow()),
                to_db_time(utcnow()),
                digest_id,
                DigestStatus.PUBLISHED.value,
            ),
        )
        return await self.get(digest_id)

    async def update_content(self, digest_id: int, *, title: Optional[str], content: Optional[str]) -> int:
        """Edit a digest that is not published. Returns the affected row count."""
        return await self.db.execute(
            """UPDATE digests
               SET title = COALESCE(?, title), content = COALESCE(?, content), updated_at = ?
               WHERE id = ? AND status != ?""",
            (title, content, to_db_time(utcnow()), digest_id, DigestStatus.PUBLISHED.value),
        )

    async def counts(self) -> Dict[str, int]:
        rows = await self.db.fetchall("SELECT status, COUNT(*) AS n FROM digests GROUP BY status")
        return {row["status"]: row["n"] for row in rows}


class LlmUsageStore:
    """Append-only log of completions."""

    def __init__(self, db: Database):
        self.db = db

    async def append(self, record: LlmUsageRecord) -> int:
        return await self.db.insert(
            """INSERT INTO llm_usage (provider, model, tokens_in, tokens_out, cost, operation, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                record.provider,
                record.model,
                record.tokens_in,
                record.tokens_out,
                record.cost,
                record.operation,
                to_db_time(record.created_at or utcnow()),
            ),
        )

    async def list_since(self, since: datetime) -> List[LlmUsageRecord]:
        rows = await self.db.fetchall(
            "SELECT * FROM llm_usage WHERE created_at >= ? ORDER BY created_at",
            (to_db_time(since),),
        )
        return [
            LlmUsageRecord(
                id=row["id"],
                provider=row["provider"],
                model=row["model"],
                tokens_in=row["tokens_in"],
                tokens_out=row["tokens_out"],
                cost=row["cost"],
                operation=row["operation"],
                created_at=from_db_time(row["created_at"]),
            )
            for row in rows
        ]

    async def usage_summary(self, days: int = 30) -> Dict[str, Any]:
        since = utcnow() - timedelta(days=days)
        rows = await self.db.fetchall(
            """SELECT provider, model, COUNT(*) AS requests,
                      SUM(tokens_in) AS tokens_in, SUM(tokens_out) AS tokens_out, SUM(cost) AS cost
               FROM llm_usage WHERE created_at >= ?
               GROUP BY provider, model ORDER BY provider, model""",
            (to_db_time(since),),
        )
        by_model = [
            {
                "provider": row["provider"],
                "model": row["model"],
                "requests": row["requests"],
                "tokensIn": row["tokens_in"] or 0,
                "tokensOut": row["tokens_out"] or 0,
                "cost": row["cost"] or 0.0,
            }
            for row in rows
        ]

        by_provider: Dict[str, Dict[str, Any]] = {}
        for entry in by_model:
            bucket = by_provider.setdefault(entry["provider"], {"requests": 0, "tokens": 0, "cost": 0.0})
            bucket["requests"] += entry["requests"]
            bucket["tokens"] += entry["tokensIn"] + entry["tokensOut"]
            bucket["cost"] += entry["cost"]

        return {
            "days": days,
            "totals": {
                "requests": sum(e["requests"] for e in by_model),
                "tokensIn": sum(e["tokensIn"] for e in by_model),
                "tokensOut": sum(e["tokensOut"] for e in by_model),
                "cost": sum(e["cost"] for e in by_model),
            },
            "byProvider": by_provider,
            "byModel": by_model,
        }
