import aiosqlite
import json
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional
import logging

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    """Serialize timestamps as fixed-width UTC ISO strings so they sort lexically."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_json(value: Any) -> str:
    return json.dumps(value, default=str)


def from_json(value: Optional[str], default: Any) -> Any:
    if not value:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        logger.warning(f"Corrupt JSON column value: {value[:80]}")
        return default


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS sources (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        type TEXT NOT NULL,
        url TEXT NOT NULL,
        config TEXT NOT NULL DEFAULT '{}',
        priority TEXT NOT NULL DEFAULT 'medium',
        check_frequency TEXT NOT NULL DEFAULT 'daily',
        is_active BOOLEAN NOT NULL DEFAULT 1,
        last_fetch_at TEXT,
        last_error TEXT,
        error_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS raw_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        source_id INTEGER NOT NULL,
        external_id TEXT NOT NULL,
        title TEXT NOT NULL,
        content TEXT NOT NULL,
        url TEXT NOT NULL,
        author TEXT,
        published_at TEXT NOT NULL,
        fetched_at TEXT NOT NULL,
        metadata TEXT NOT NULL DEFAULT '{}',
        is_processed BOOLEAN NOT NULL DEFAULT 0,
        FOREIGN KEY (source_id) REFERENCES sources(id) ON DELETE CASCADE,
        UNIQUE(source_id, external_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS processed_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        raw_item_id INTEGER NOT NULL UNIQUE,
        summary TEXT NOT NULL,
        categories TEXT NOT NULL DEFAULT '[]',
        tags TEXT NOT NULL DEFAULT '[]',
        relevance_score REAL NOT NULL,
        urgency_level TEXT NOT NULL,
        sentiment TEXT,
        action_items TEXT NOT NULL DEFAULT '[]',
        llm_model TEXT NOT NULL,
        llm_tokens_used INTEGER NOT NULL DEFAULT 0,
        llm_cost REAL NOT NULL DEFAULT 0,
        processed_at TEXT NOT NULL,
        moderation_status TEXT NOT NULL DEFAULT 'pending',
        FOREIGN KEY (raw_item_id) REFERENCES raw_items(id) ON DELETE CASCADE,
        CHECK (relevance_score >= 0 AND relevance_score <= 1)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS digests (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        date TEXT NOT NULL UNIQUE,
        title TEXT NOT NULL,
        content TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'draft',
        published_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS digest_items (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        digest_id INTEGER NOT NULL,
        processed_item_id INTEGER NOT NULL,
        section TEXT NOT NULL,
        position INTEGER NOT NULL,
        FOREIGN KEY (digest_id) REFERENCES digests(id) ON DELETE CASCADE,
        FOREIGN KEY (processed_item_id) REFERENCES processed_items(id) ON DELETE CASCADE,
        UNIQUE(digest_id, processed_item_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS llm_usage (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        provider TEXT NOT NULL,
        model TEXT NOT NULL,
        tokens_in INTEGER NOT NULL DEFAULT 0,
        tokens_out INTEGER NOT NULL DEFAULT 0,
        cost REAL NOT NULL DEFAULT 0,
        operation TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_raw_items_unprocessed ON raw_items(is_processed, published_at)",
    "CREATE INDEX IF NOT EXISTS idx_raw_items_fetched_at ON raw_items(fetched_at)",
    "CREATE INDEX IF NOT EXISTS idx_processed_items_processed_at ON processed_items(processed_at)",
    "CREATE INDEX IF NOT EXISTS idx_digest_items_digest ON digest_items(digest_id, position)",
    "CREATE INDEX IF NOT EXISTS idx_llm_usage_created_at ON llm_usage(created_at)",
)


class Database:
    def __init__(self, path: str):
        self.path = path

    @asynccontextmanager
    async def connect(self) -> AsyncIterator[aiosqlite.Connection]:
        conn = await aiosqlite.connect(self.path)
        await conn.execute("PRAGMA journal_mode=WAL;")
        await conn.execute("PRAGMA foreign_keys=ON;")
        conn.row_factory = aiosqlite.Row
        try:
            yield conn
        finally:
            await conn.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Run several statements as one unit: committed together or not at all.
        """
        async with self.connect() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            else:
                await conn.commit()

    async def execute(self, query: str, params: tuple = ()) -> int:
        """Execute a write and return the affected row count."""
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.rowcount

    async def insert(self, query: str, params: tuple = ()) -> int:
        """Execute an INSERT and return the new row id."""
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.lastrowid

    async def fetchone(self, query: str, params: tuple = ()):
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchone()

    async def fetchall(self, query: str, params: tuple = ()):
        async with self.connect() as conn:
            cursor = await conn.execute(query, params)
            return await cursor.fetchall()

    async def init_tables(self) -> None:
        """Create all tables and indexes if they do not exist."""
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)

        async with self.connect() as conn:
            for statement in SCHEMA:
                await conn.execute(statement)
            await conn.commit()
            logger.info("Database tables initialized")
