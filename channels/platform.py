from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Type

from models.schemas import OutboundMessage, RecentPost, new_id, utcnow

logger = logging.getLogger(__name__)

RateLimitFn = Callable[[str], Awaitable[bool]]


@dataclass
class SendResult:
    success: bool
    external_id: str | None = None
    error: str | None = None


class PlatformClient(ABC):
    """Outbound side of a messaging platform."""

    def __init__(self, access_token: str | None = None, rate_limit_fn: RateLimitFn | None = None) -> None:
        self.access_token = access_token
        self.rate_limit_fn = rate_limit_fn

    async def send(self, message: OutboundMessage) -> SendResult:
        if self.rate_limit_fn is not None:
            allowed = await self.rate_limit_fn(message.workspace_id)
            if not allowed:
                logger.warning("outbound_rate_limited", extra={"workspace_id": message.workspace_id, "to": message.to})
                return SendResult(success=False, error="Rate Limit Exceeded")
        return await self._deliver(message)

    @abstractmethod
    async def _deliver(self, message: OutboundMessage) -> SendResult:
        raise NotImplementedError

    async def fetch_recent_posts(self) -> List[RecentPost] | None:
        """None when the platform cannot list posts."""
        return None


class MockPlatformClient(PlatformClient):
    """Records every send in memory. Used for the generic platform and in tests."""

    def __init__(self, access_token: str | None = None, rate_limit_fn: RateLimitFn | None = None) -> None:
        super().__init__(access_token, rate_limit_fn)
        self.sent: List[OutboundMessage] = []
        self.recent_posts: List[RecentPost] = []

    async def _deliver(self, message: OutboundMessage) -> SendResult:
        self.sent.append(message)
        logger.info("mock_outbound_message", extra={"to": message.to, "workspace_id": message.workspace_id})
        return SendResult(success=True, external_id=f"mock-msg-{new_id()[:12]}")

    async def fetch_recent_posts(self) -> List[RecentPost] | None:
        if self.recent_posts:
            return list(self.recent_posts)
        return [
            RecentPost(
                id=f"mock-post-{i}",
                caption=f"Mock post {i + 1}: featuring our bestselling widget priced at ${(i + 1) * 20}.",
                created_at=utcnow(),
            )
            for i in range(3)
        ]


class PlatformFactory:
    """Maps a workspace's platform name to a client class; unknown names get the mock."""

    def __init__(self, rate_limit_fn: RateLimitFn | None = None) -> None:
        self.rate_limit_fn = rate_limit_fn
        self._registry: Dict[str, Type[PlatformClient]] = {"generic": MockPlatformClient}

    def register(self, platform: str, client_cls: Type[PlatformClient]) -> None:
        self._registry[platform.lower()] = client_cls

    def get_client(self, platform: str | None, access_token: str | None = None) -> PlatformClient:
        client_cls = self._registry.get((platform or "generic").lower(), MockPlatformClient)
        return client_cls(access_token=access_token, rate_limit_fn=self.rate_limit_fn)


class SharedClientFactory(PlatformFactory):
    """Hands out one shared client regardless of platform."""

    def __init__(self, client: PlatformClient) -> None:
        super().__init__(rate_limit_fn=client.rate_limit_fn)
        self.client = client

    def get_client(self, platform: str | None, access_token: str | None = None) -> PlatformClient:
        return self.client
