from __future__ import annotations

from typing import Any, Dict

from memory.json_store import JsonTableStore
from models.schemas import Post, utcnow
from settings import SETTINGS


class PostStore(JsonTableStore[Post]):
    model = Post
    table = "posts"

    def default_path(self) -> str:
        return SETTINGS.post_store_path

    def upsert_by_platform_id(self, workspace_id: str, platform_id: str, content: str, meta: Dict[str, Any] | None = None) -> Post:
        existing = self.where(lambda p: p.workspace_id == workspace_id and p.platform_id == platform_id)
        if existing:
            updated = self.update(existing[0].id, content=content, updated_at=utcnow())
            return updated or existing[0]
        return self.insert(Post(workspace_id=workspace_id, platform_id=platform_id, content=content, meta=meta or {}))
