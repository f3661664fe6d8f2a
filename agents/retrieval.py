from __future__ import annotations

import logging
import math
import string
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Sequence

from memory.vector_store import ItemStore
from models.schemas import EmbedResult, Item, ItemCategory, RetrievalResult, utcnow

logger = logging.getLogger(__name__)

SIMILARITY_THRESHOLD = 0.5
VECTOR_LIMIT = 10
KEYWORD_LIMIT = 8
RELATED_LIMIT = 5
MAX_KEYWORDS = 5
NO_ITEMS_SENTINEL = "No relevant items found in knowledge base."

Embedder = Callable[[str], Awaitable[EmbedResult]]


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> List[str]:
    words = [w.strip(string.punctuation) for w in (text or "").split()]
    return [w for w in words if len(w) > 3][:limit]


def sanitize_like_input(value: str) -> str:
    """Escape LIKE metacharacters so user text only ever matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def keyword_patterns(keywords: Sequence[str]) -> List[str]:
    return [f"%{sanitize_like_input(kw)}%" for kw in keywords]


def compute_hybrid_score(similarity: float, keyword_score: float, recency_boost: float) -> float:
    return 0.6 * similarity + 0.3 * keyword_score + 0.1 * recency_boost


def keyword_match_score(item: Item, keywords: Sequence[str]) -> float:
    """Share of keywords found in the item's name or content."""
    if not keywords:
        return 0.0
    haystack = f"{item.name} {item.content}".lower()
    return sum(1 for kw in keywords if kw.lower() in haystack) / len(keywords)


def recency_boost(updated_at: datetime, now: datetime | None = None, half_life_days: float = 30.0) -> float:
    age_days = max(0.0, ((now or utcnow()) - updated_at).total_seconds() / 86400)
    return math.pow(0.5, age_days / half_life_days)


def format_item(item: Item) -> str:
    details = f"- {item.name}: {item.content}"
    if item.category == ItemCategory.PRODUCT.value and item.meta:
        meta = item.meta
        if meta.get("price"):
            details += f"\n  - Price: {meta['price']}"
        if meta.get("discount"):
            details += f"\n  - Discount: {meta['discount']}"
        if "inStock" in meta and meta["inStock"] is not None:
            details += f"\n  - Stock: {'In Stock' if meta['inStock'] else 'OUT OF STOCK'}"
    return f"{details} (Source: {item.source_id or 'Global'})"


def format_items(items: Sequence[Item]) -> str:
    return "\n".join(format_item(item) for item in items) or NO_ITEMS_SENTINEL


class KnowledgeRetriever:
    """Vector search over a workspace's items, keyword fallback, related-item expansion."""

    def __init__(self, items: ItemStore) -> None:
        self.items = items

    async def retrieve(self, workspace_id: str, query: str, embed: Embedder) -> RetrievalResult:
        now = utcnow()
        vector_fallback = False
        try:
            embedding = (await embed(query)).embedding
            hits = self.items.similarity_search(
                workspace_id,
                embedding,
                threshold=SIMILARITY_THRESHOLD,
                limit=VECTOR_LIMIT,
                include_expired=False,
                now=now,
            )
            found = [item for item, _ in hits]
        except Exception as exc:
            logger.warning("vector_search_failed", extra={"workspace_id": workspace_id, "error": repr(exc)})
            vector_fallback = True
            found = self._keyword_fallback(workspace_id, query, now)
        return RetrievalResult(items=self._expand(workspace_id, found, now), vector_fallback=vector_fallback)

    def _keyword_fallback(self, workspace_id: str, query: str, now: datetime) -> List[Item]:
        keywords = extract_keywords(query)
        if not keywords:
            return []
        rows = self.items.keyword_search(workspace_id, keyword_patterns(keywords), limit=KEYWORD_LIMIT * 4)
        return [item for item in rows if not item.is_expired(now)][:KEYWORD_LIMIT]

    def _expand(self, workspace_id: str, found: Sequence[Item], now: datetime) -> List[Item]:
        merged: Dict[str, Item] = {}
        for item in found:
            merged.setdefault(item.id, item)
            if not item.related_item_ids:
                continue
            related = self.items.by_ids(workspace_id, item.related_item_ids, limit=RELATED_LIMIT)
            for rel in related:
                if not rel.is_expired(now):
                    merged.setdefault(rel.id, rel)
        return list(merged.values())
