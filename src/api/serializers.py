"""
JSON shapes returned by the HTTP API.
"""
from typing import Any, Dict, Optional

from core.entities import Digest, DigestItem, ProcessedItem, Source
from services.database import to_db_time


def source_to_dict(source: Source) -> Dict[str, Any]:
    return {
        "id": source.id,
        "name": source.name,
        "type": source.type.value,
        "url": source.url,
        "config": source.config,
        "priority": source.priority.value,
        "checkFrequency": source.check_frequency.value,
        "isActive": source.is_active,
        "lastFetchAt": to_db_time(source.last_fetch_at),
        "lastError": source.last_error,
        "errorCount": source.error_count,
        "createdAt": to_db_time(source.created_at),
    }


def processed_item_to_dict(item: ProcessedItem) -> Dict[str, Any]:
    return {
        "id": item.id,
        "rawItemId": item.raw_item_id,
        "summary": item.summary,
        "categories": item.categories,
        "tags": item.tags,
        "relevanceScore": item.relevance_score,
        "urgencyLevel": item.urgency_level.value,
        "sentiment": item.sentiment.value if item.sentiment else None,
        "actionItems": item.action_items,
        "llmModel": item.llm_model,
        "llmTokensUsed": item.llm_tokens_used,
        "llmCost": item.llm_cost,
        "processedAt": to_db_time(item.processed_at),
        "moderationStatus": item.moderation_status.value,
    }


def digest_item_to_dict(item: DigestItem) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "processedItemId": item.processed_item_id,
        "section": item.section.value,
        "order": item.order,
    }
    if item.entry is not None:
        payload.update(
            title=item.entry.title,
            url=item.entry.url,
            source=item.entry.source_name,
            summary=item.entry.summary,
            categories=item.entry.categories,
            tags=item.entry.tags,
            urgencyLevel=item.entry.urgency_level.value,
            relevanceScore=item.entry.relevance_score,
        )
    return payload


def digest_to_dict(digest: Optional[Digest]) -> Optional[Dict[str, Any]]:
    if digest is None:
        return None
    return {
        "id": digest.id,
        "date": digest.date.isoformat(),
        "title": digest.title,
        "content": digest.content,
        "status": digest.status.value,
        "publishedAt": to_db_time(digest.published_at),
        "createdAt": to_db_time(digest.created_at),
        "updatedAt": to_db_time(digest.updated_at),
        "items": [digest_item_to_dict(item) for item in digest.items],
    }
