from __future__ import annotations

import logging

from agents.gateway import AIServiceFactory
from channels.platform import PlatformClient, PlatformFactory
from compliance.secrets import try_decrypt
from memory import Repositories
from models.schemas import OutboundMessage, Workspace

logger = logging.getLogger(__name__)


class BaseAgent:
    """Shared plumbing: repositories, gateway factory, platform clients."""

    def __init__(
        self,
        name: str,
        repos: Repositories,
        ai_factory: AIServiceFactory,
        platforms: PlatformFactory | None = None,
    ) -> None:
        self.name = name
        self.repos = repos
        self.ai_factory = ai_factory
        self.platforms = platforms or PlatformFactory()

    def platform_client(self, workspace: Workspace) -> PlatformClient:
        return self.platforms.get_client(workspace.platform, try_decrypt(workspace.access_token))

    async def dispatch(self, workspace: Workspace, to: str, text: str, reply_to: str | None = None) -> bool:
        """Send through the workspace's platform. Failures are logged, never raised."""
        try:
            result = await self.platform_client(workspace).send(
                OutboundMessage(to=to, text=text, reply_to_message_id=reply_to, workspace_id=workspace.id)
            )
        except Exception as exc:
            logger.error("dispatch_failed", extra={"agent": self.name, "workspace_id": workspace.id, "to": to, "error": repr(exc)})
            return False
        if not result.success:
            logger.error("dispatch_rejected", extra={"agent": self.name, "workspace_id": workspace.id, "to": to, "error": result.error})
        return result.success
