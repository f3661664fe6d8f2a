from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Sequence, Tuple

import numpy as np

from memory.json_store import JsonTableStore, ilike
from models.schemas import Item, utcnow
from settings import SETTINGS


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    norm = np.linalg.norm(va) * np.linalg.norm(vb)
    if norm == 0:
        return 0.0
    return float(np.dot(va, vb) / norm)


def rank_by_similarity(items: Sequence[Item], query: Sequence[float]) -> List[Tuple[Item, float]]:
    """Score items against a query vector, best first. Items without a
    same-sized embedding are skipped."""
    q = np.asarray(query, dtype=float)
    candidates = [item for item in items if item.embedding and len(item.embedding) == q.size]
    if not candidates or q.size == 0:
        return []
    matrix = np.asarray([item.embedding for item in candidates], dtype=float)
    norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
    safe = np.where(norms == 0, 1.0, norms)
    scores = np.where(norms == 0, 0.0, matrix @ q / safe)
    ranked = sorted(zip(candidates, scores.tolist()), key=lambda pair: pair[1], reverse=True)
    return [(item, float(score)) for item, score in ranked]


class ItemStore(JsonTableStore[Item]):
    """Knowledge base items with brute-force cosine search over stored embeddings."""

    model = Item
    table = "items"

    def default_path(self) -> str:
        return SETTINGS.item_store_path

    def for_workspace(self, workspace_id: str) -> List[Item]:
        return self.where(lambda i: i.workspace_id == workspace_id)

    def similarity_search(
        self,
        workspace_id: str,
        embedding: Sequence[float],
        threshold: float,
        limit: int,
        exclude_ids: Iterable[str] = (),
        include_expired: bool = True,
        now: datetime | None = None,
    ) -> List[Tuple[Item, float]]:
        excluded = set(exclude_ids)
        current = now or utcnow()
        pool = [
            item
            for item in self.for_workspace(workspace_id)
            if item.id not in excluded and (include_expired or not item.is_expired(current))
        ]
        return [(item, score) for item, score in rank_by_similarity(pool, embedding) if score > threshold][:limit]

    def keyword_search(self, workspace_id: str, patterns: Sequence[str], limit: int) -> List[Item]:
        """Items whose name or content matches any LIKE pattern."""
        if not patterns:
            return []
        rows = self.where(
            lambda i: i.workspace_id == workspace_id
            and any(ilike(i.name, p) or ilike(i.content, p) for p in patterns)
        )
        return rows[:limit]

    def by_ids(self, workspace_id: str, ids: Sequence[str], limit: int) -> List[Item]:
        wanted = set(ids)
        rows = self.where(lambda i: i.workspace_id == workspace_id and i.id in wanted)
        return rows[:limit]

    def find_by_name(self, workspace_id: str, name: str) -> Item | None:
        needle = name.strip().lower()
        rows = self.where(lambda i: i.workspace_id == workspace_id and i.name.strip().lower() == needle)
        return rows[0] if rows else None

    def unverified(self, workspace_id: str) -> List[Item]:
        return self.where(lambda i: i.workspace_id == workspace_id and not i.is_verified)

    def recent(self, workspace_id: str, category: str | None = None, limit: int = 20) -> List[Item]:
        rows = self.where(lambda i: i.workspace_id == workspace_id and (category is None or i.category == category))
        rows.sort(key=lambda i: i.updated_at, reverse=True)
        return rows[:limit]
