from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Callable, Dict, Iterable, List, Sequence

from agents.base import BaseAgent
from agents.gateway import AIGateway, AIServiceFactory
from agents.prompts import ingestion_prompt, link_items_prompt
from channels.platform import PlatformFactory
from memory import Repositories
from models.errors import AIServiceError
from models.schemas import AIRole, ChatParams, Item, ItemCategory, utcnow

logger = logging.getLogger(__name__)

LINK_SIMILARITY = 0.7
LINK_VECTOR_LIMIT = 10
LINK_CANDIDATE_LIMIT = 20
DEFAULT_BATCH_SIZE = 10
MAX_ITEM_NAME = 100

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)
_CATEGORIES = {c.value for c in ItemCategory}

JobSink = Callable[[str, Dict[str, Any]], Any]


def parse_json_array(text: str) -> List[Any]:
    """Model output -> list. Code fences are tolerated; anything but a JSON array raises ValueError."""
    parsed = json.loads(_FENCE_RE.sub("", text or "").strip())
    if not isinstance(parsed, list):
        raise ValueError("expected a JSON array")
    return parsed


def item_text(item: Item) -> str:
    return f"{item.name}: {item.content}"


class KnowledgeIngestionService(BaseAgent):
    """Builds and maintains a workspace's knowledge base.

    When a job sink is given, follow-up work (per-item embeddings, per-post
    ingestion) is enqueued through it instead of running inline.
    """

    def __init__(
        self,
        repos: Repositories,
        ai_factory: AIServiceFactory,
        platforms: PlatformFactory | None = None,
        enqueue: JobSink | None = None,
    ) -> None:
        super().__init__("ingestion", repos, ai_factory, platforms)
        self.enqueue = enqueue

    def _coach_ai(self, workspace_id: str) -> AIGateway | None:
        try:
            return self.ai_factory.get(workspace_id, AIRole.COACH)
        except AIServiceError as exc:
            logger.warning("ingestion_ai_unavailable", extra={"workspace_id": workspace_id, "error": str(exc)})
            return None

    async def link_and_verify_kb(self, workspace_id: str, batch_size: int = DEFAULT_BATCH_SIZE) -> int:
        """Link every unverified item to its related items and mark it verified.

        Returns how many items were verified. A failing item is logged and left
        unverified; the rest of the batch carries on.
        """
        pending = self.repos.items.unverified(workspace_id)
        if not pending:
            return 0
        ai = self._coach_ai(workspace_id)
        if ai is None:
            return 0

        verified = 0
        for start in range(0, len(pending), batch_size):
            batch = pending[start : start + batch_size]
            batch_ids = {item.id for item in batch}
            candidates = [item for item in self.repos.items.for_workspace(workspace_id) if item.id not in batch_ids]
            outcomes = await asyncio.gather(
                *(self._link_item(ai, workspace_id, item, batch_ids, candidates) for item in batch),
                return_exceptions=True,
            )
            for item, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    logger.error("kb_link_item_failed", extra={"workspace_id": workspace_id, "item_id": item.id, "error": repr(outcome)})
                else:
                    verified += 1
        logger.info("kb_linking_completed", extra={"workspace_id": workspace_id, "verified": verified, "pending": len(pending)})
        return verified

    async def _link_item(
        self,
        ai: AIGateway,
        workspace_id: str,
        item: Item,
        batch_ids: Iterable[str],
        candidates: Sequence[Item],
    ) -> List[str]:
        embedding: List[float] | None = None
        try:
            embedding = (await ai.embed(item_text(item), item.id)).embedding
        except Exception as exc:
            logger.warning("kb_link_embedding_failed", extra={"item_id": item.id, "error": repr(exc)})

        vector_ids: List[str] = []
        if embedding:
            hits = self.repos.items.similarity_search(
                workspace_id, embedding, threshold=LINK_SIMILARITY, limit=LINK_VECTOR_LIMIT, exclude_ids=batch_ids
            )
            vector_ids = [peer.id for peer, _ in hits]

        llm_ids: List[str] = []
        try:
            result = await ai.chat(
                ChatParams(
                    system_prompt="Output valid JSON only (array of IDs).",
                    user_message=link_items_prompt(item, candidates[:LINK_CANDIDATE_LIMIT]),
                    temperature=0.2,
                ),
                item.id,
            )
            llm_ids = [value for value in parse_json_array(result.content) if isinstance(value, str)]
        except Exception as exc:
            logger.warning("kb_link_llm_failed", extra={"item_id": item.id, "error": repr(exc)})

        related = list(dict.fromkeys([*llm_ids, *vector_ids]))
        fields: Dict[str, Any] = {"related_item_ids": related, "is_verified": True, "updated_at": utcnow()}
        if embedding and not item.embedding:
            fields["embedding"] = embedding
        self.repos.items.update(item.id, **fields)
        logger.info("kb_item_linked", extra={"item_id": item.id, "related": len(related)})
        return related

    async def ingest_post(self, post_id: str) -> int:
        """Extract knowledge items from one stored post. Returns how many were saved."""
        post = self.repos.posts.get(post_id)
        if post is None or not post.content:
            return 0
        ai = self._coach_ai(post.workspace_id)
        if ai is None:
            return 0

        try:
            result = await ai.chat(
                ChatParams(
                    system_prompt="Output valid JSON array only.",
                    user_message=ingestion_prompt(post.content),
                    temperature=0.1,
                )
            )
            extracted = parse_json_array(result.content)
        except Exception as exc:
            logger.warning("post_extraction_failed", extra={"post_id": post_id, "error": repr(exc)})
            return 0

        saved = 0
        for raw in extracted:
            if not isinstance(raw, dict) or not raw.get("name") or not raw.get("content"):
                continue
            category = str(raw.get("category") or ItemCategory.PRODUCT.value).lower()
            item = Item(
                workspace_id=post.workspace_id,
                source_id=post.platform_id,
                name=str(raw["name"])[:MAX_ITEM_NAME],
                content=str(raw["content"]),
                category=category if category in _CATEGORIES else ItemCategory.GENERAL.value,
                meta=raw.get("meta") if isinstance(raw.get("meta"), dict) else {},
                is_verified=False,
            )
            try:
                item.embedding = (await ai.embed(item_text(item), "item_extraction")).embedding
            except Exception as exc:
                logger.warning("post_item_embedding_failed", extra={"post_id": post_id, "item": item.name, "error": repr(exc)})
            self.repos.items.insert(item)
            saved += 1
        logger.info("post_ingested", extra={"post_id": post_id, "extracted": len(extracted), "saved": saved})
        return saved

    async def process_batch_ingestion(self, workspace_id: str, source_id: str, rows: Sequence[Dict[str, Any]]) -> List[str]:
        """Bulk insert uploaded rows without embeddings, then embed each one."""
        if not rows:
            return []
        items = [
            Item(
                workspace_id=workspace_id,
                source_id=source_id,
                name=str(row.get("name") or "")[:MAX_ITEM_NAME] or "Untitled",
                content=str(row.get("content") or ""),
                category=str(row.get("category") or ItemCategory.GENERAL.value),
                meta=row.get("meta") if isinstance(row.get("meta"), dict) else {},
            )
            for row in rows
        ]
        self.repos.items.insert_many(items)
        ids = [item.id for item in items]
        logger.info("batch_items_inserted", extra={"workspace_id": workspace_id, "count": len(ids)})

        for item_id in ids:
            if self.enqueue is not None:
                self.enqueue("refresh_item_embedding", {"itemId": item_id})
                continue
            try:
                await self.refresh_item_embedding(item_id)
            except Exception as exc:
                logger.warning("batch_item_embedding_failed", extra={"item_id": item_id, "error": repr(exc)})
        return ids

    async def refresh_item_embedding(self, item_id: str) -> bool:
        item = self.repos.items.get(item_id)
        if item is None:
            return False
        ai = self.ai_factory.get(item.workspace_id, AIRole.COACH)
        embedding = (await ai.embed(item_text(item), item.id)).embedding
        self.repos.items.update(item.id, embedding=embedding, updated_at=utcnow())
        return True

    async def sync_historical_posts(self, workspace_id: str) -> List[str]:
        """Pull recent posts from the platform, upsert them and ingest each."""
        workspace = self.repos.workspaces.require(workspace_id)
        recent = await self.platform_client(workspace).fetch_recent_posts()
        if not recent:
            return []
        post_ids: List[str] = []
        for remote in recent:
            post = self.repos.posts.upsert_by_platform_id(
                workspace_id,
                remote.id,
                remote.caption,
                {"mediaUrl": remote.media_url, "createdAt": remote.created_at.isoformat() if remote.created_at else None},
            )
            post_ids.append(post.id)
            if self.enqueue is not None:
                self.enqueue("ingest", {"postId": post.id})
            else:
                await self.ingest_post(post.id)
        logger.info("historical_posts_synced", extra={"workspace_id": workspace_id, "posts": len(post_ids)})
        return post_ids
