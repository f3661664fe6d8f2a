from __future__ import annotations

import os
from dataclasses import dataclass

from .customer_store import CustomerStore
from .interaction_store import CoachConversationStore, FeedbackQueueStore, InteractionStore
from .order_store import OrderStore
from .post_store import PostStore
from .vector_store import ItemStore, cosine_similarity
from .workspace_store import WorkspaceStore


@dataclass
class Repositories:
    workspaces: WorkspaceStore
    interactions: InteractionStore
    customers: CustomerStore
    items: ItemStore
    orders: OrderStore
    posts: PostStore
    feedback: FeedbackQueueStore
    coach_conversations: CoachConversationStore

    @classmethod
    def in_memory(cls) -> "Repositories":
        return cls(
            workspaces=WorkspaceStore(path=""),
            interactions=InteractionStore(path=""),
            customers=CustomerStore(path=""),
            items=ItemStore(path=""),
            orders=OrderStore(path=""),
            posts=PostStore(path=""),
            feedback=FeedbackQueueStore(path=""),
            coach_conversations=CoachConversationStore(path=""),
        )

    @classmethod
    def from_settings(cls, data_dir: str | None = None) -> "Repositories":
        """Default paths from SETTINGS, or every table under one directory."""
        if data_dir is None:
            return cls(
                workspaces=WorkspaceStore(),
                interactions=InteractionStore(),
                customers=CustomerStore(),
                items=ItemStore(),
                orders=OrderStore(),
                posts=PostStore(),
                feedback=FeedbackQueueStore(),
                coach_conversations=CoachConversationStore(),
            )
        def join(name: str) -> str:
            return os.path.join(data_dir, name)

        return cls(
            workspaces=WorkspaceStore(join("workspaces.json")),
            interactions=InteractionStore(join("interactions.json")),
            customers=CustomerStore(join("customers.json")),
            items=ItemStore(join("items.json")),
            orders=OrderStore(join("orders.json")),
            posts=PostStore(join("posts.json")),
            feedback=FeedbackQueueStore(join("feedback_queue.json")),
            coach_conversations=CoachConversationStore(join("coach_conversations.json")),
        )


__all__ = [
    "CoachConversationStore",
    "CustomerStore",
    "FeedbackQueueStore",
    "InteractionStore",
    "ItemStore",
    "OrderStore",
    "PostStore",
    "Repositories",
    "WorkspaceStore",
    "cosine_similarity",
]
