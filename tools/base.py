from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Protocol, Type

from pydantic import BaseModel

from channels.platform import PlatformFactory
from memory import Repositories
from models.schemas import EmbedResult, ToolDefinition, Workspace

logger = logging.getLogger(__name__)

SystemNotifier = Callable[[str, str, "str | None"], Awaitable[Any]]


class Embedder(Protocol):
    async def embed(self, text: str, interaction_id: str | None = None) -> EmbedResult: ...


@dataclass
class ToolContext:
    workspace_id: str
    workspace: Workspace
    ai: Embedder
    repos: Repositories
    platforms: PlatformFactory = field(default_factory=PlatformFactory)
    notify: SystemNotifier | None = None


@dataclass(frozen=True)
class CoachTool:
    """One coach capability: the LLM-facing schema, its validator and its handler."""

    name: str
    description: str
    parameters: Dict[str, Any]
    args_model: Type[BaseModel]
    execute: Callable[[Any, ToolContext], Awaitable[str]]

    def definition(self) -> ToolDefinition:
        return ToolDefinition(name=self.name, description=self.description, parameters=self.parameters)


async def notify_customer(ctx: ToolContext, interaction_id: str | None, event_message: str, seller_note: str | None = None) -> None:
    """Hand a seller-side event to the customer assistant. Failures never undo the mutation."""
    if not interaction_id or ctx.notify is None:
        return
    try:
        await ctx.notify(interaction_id, event_message, seller_note)
    except Exception as exc:
        logger.warning(
            "system_notification_failed",
            extra={"workspace_id": ctx.workspace_id, "interaction_id": interaction_id, "error": repr(exc)},
        )
