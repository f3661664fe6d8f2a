from __future__ import annotations

from typing import Any, Callable, Dict, List

import pytest

from agents.engine import AIEngine, build_engine
from agents.llm_runtime import LLMProvider
from channels.platform import MockPlatformClient, SharedClientFactory
from channels.rate_limiter import AIAccessRateLimiter, SlidingWindowRateLimiter
from compliance.usage_logger import UsageLogger
from memory import Repositories
from models.schemas import ChatParams, ChatResult, EmbedResult, TokenUsage, Workspace


class ScriptedProvider(LLMProvider):
    """Replays queued replies. An entry may be a string, a ChatResult, an
    exception to raise or a callable taking the ChatParams."""

    name = "scripted"
    supports_embeddings = True

    def __init__(self, api_key: str = "", model: str | None = None, embedding_model: str | None = None) -> None:
        super().__init__(api_key, model or "scripted-model", embedding_model or "scripted-embedding")
        self.replies: List[Any] = []
        self.embeddings: Dict[str, List[float]] = {}
        self.default_embedding: List[float] = [0.0, 0.0, 1.0]
        self.embed_error: Exception | None = None
        self.chat_calls: List[ChatParams] = []
        self.embed_calls: List[str] = []

    def queue(self, *replies: Any) -> "ScriptedProvider":
        self.replies.extend(replies)
        return self

    async def chat(self, params: ChatParams) -> ChatResult:
        self.chat_calls.append(params)
        usage = TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15)
        if not self.replies:
            return ChatResult(content="OK", usage=usage, model=self.model, provider=self.name)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply(params)
        if isinstance(reply, str):
            return ChatResult(content=reply, usage=usage, model=self.model, provider=self.name)
        return reply

    async def embed(self, text: str) -> EmbedResult:
        self.embed_calls.append(text)
        if self.embed_error is not None:
            raise self.embed_error
        for needle, vector in self.embeddings.items():
            if needle.lower() in text.lower():
                return EmbedResult(embedding=vector, usage=TokenUsage(prompt_tokens=3, total_tokens=3), provider=self.name)
        return EmbedResult(embedding=list(self.default_embedding), usage=TokenUsage(prompt_tokens=3, total_tokens=3), provider=self.name)


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def platform_client() -> MockPlatformClient:
    return MockPlatformClient()


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def make_engine(provider, platform_client, sleeps) -> Callable[..., AIEngine]:
    def _make(**overrides: Any) -> AIEngine:
        async def record_sleep(delay: float) -> None:
            sleeps.append(delay)

        options: Dict[str, Any] = {
            "repos": Repositories.in_memory(),
            "usage_logger": UsageLogger(path=""),
            "platforms": SharedClientFactory(platform_client),
            "rate_limiter": AIAccessRateLimiter(SlidingWindowRateLimiter(60, 60)),
            "provider_builder": lambda name, **kwargs: provider,
            "sleep": record_sleep,
        }
        options.update(overrides)
        return build_engine(**options)

    return _make


@pytest.fixture
def engine(make_engine) -> AIEngine:
    return make_engine()


@pytest.fixture
def workspace(engine) -> Workspace:
    return engine.repos.workspaces.insert(
        Workspace(name="Lina Boutique", business_name="Lina Boutique", industry="Fashion", tone_of_voice="Friendly")
    )
