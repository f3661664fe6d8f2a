from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List

from memory.json_store import JsonTableStore, ilike
from models.errors import InteractionNotFoundError
from models.schemas import CoachMessage, FeedbackEntry, Interaction, InteractionStatus
from settings import SETTINGS


class InteractionStore(JsonTableStore[Interaction]):
    model = Interaction
    table = "interactions"

    def default_path(self) -> str:
        return SETTINGS.interaction_store_path

    def require(self, interaction_id: str) -> Interaction:
        interaction = self.get(interaction_id)
        if interaction is None:
            raise InteractionNotFoundError(f"interaction not found: {interaction_id}")
        return interaction

    def recent_for_author(
        self,
        workspace_id: str,
        author_id: str,
        exclude_id: str | None = None,
        limit: int = 15,
    ) -> List[Interaction]:
        """Most recent turns for one author, returned oldest first."""
        rows = self.where(
            lambda i: i.workspace_id == workspace_id and i.author_id == author_id and i.id != exclude_id
        )
        rows.sort(key=lambda i: i.created_at, reverse=True)
        return list(reversed(rows[:limit]))

    def matching_content(self, workspace_id: str, keyword_pattern: str) -> List[Interaction]:
        return self.where(lambda i: i.workspace_id == workspace_id and ilike(i.content, keyword_pattern))

    def since(self, workspace_id: str, start: datetime | None) -> List[Interaction]:
        return self.where(
            lambda i: i.workspace_id == workspace_id and (start is None or i.created_at > start)
        )

    def set_result(
        self,
        interaction_id: str,
        response: str,
        status: InteractionStatus,
        meta: Dict[str, Any] | None = None,
    ) -> Interaction | None:
        """Write the processing outcome once; meta is merged into the existing bag."""
        with self._writing():
            current = self._rows.get(interaction_id)
            if current is None:
                return None
            merged = {**current.meta, **(meta or {})}
            updated = current.model_copy(update={"response": response, "status": status, "meta": merged})
            self._rows[interaction_id] = updated
            return updated.model_copy(deep=True)


class FeedbackQueueStore(JsonTableStore[FeedbackEntry]):
    model = FeedbackEntry
    table = "feedback_queue"

    def default_path(self) -> str:
        return SETTINGS.feedback_store_path

    def for_interaction(self, interaction_id: str) -> List[FeedbackEntry]:
        return self.where(lambda f: f.interaction_id == interaction_id)


class CoachConversationStore(JsonTableStore[CoachMessage]):
    model = CoachMessage
    table = "coach_conversations"

    def default_path(self) -> str:
        return SETTINGS.coach_store_path

    def history(self, workspace_id: str, limit: int = 50) -> List[CoachMessage]:
        rows = self.where(lambda m: m.workspace_id == workspace_id)
        rows.sort(key=lambda m: m.created_at)
        return rows[-limit:]

    def append_exchange(self, workspace_id: str, user_message: str, reply: str) -> None:
        self.insert_many(
            [
                CoachMessage(workspace_id=workspace_id, role="user", content=user_message),
                CoachMessage(workspace_id=workspace_id, role="coach", content=reply),
            ]
        )
