from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import Awaitable, Callable, Tuple

from agents.llm_runtime import EMBEDDING_PROVIDER_ORDER, LLMProvider, build_provider
from agents.retry import with_retry
from channels.rate_limiter import AIAccessRateLimiter
from compliance.usage_logger import UsageLogger
from memory.workspace_store import WorkspaceStore
from models.errors import AILimitExceededError, RateLimitExceededError
from models.schemas import (
    AIRole,
    ChatParams,
    ChatResult,
    EffectiveSettings,
    EmbedResult,
    UsageLogEntry,
    UsageOperation,
)
from tenants.ai_settings import resolve_effective_settings

logger = logging.getLogger(__name__)

ProviderBuilder = Callable[..., LLMProvider]

CONFIDENCE_INSTRUCTION = (
    "\n\nAfter your reply, add one final line in the exact form [CONFIDENCE: 0.00] "
    "giving your confidence from 0 to 1 that the reply is fully supported by the knowledge provided."
)
_CONFIDENCE_RE = re.compile(r"\[CONFIDENCE:\s*([0-9]*\.?[0-9]+)\s*\]", re.IGNORECASE)


def extract_confidence(text: str) -> Tuple[str, float | None]:
    """Strip confidence tags from text and return the last value, clamped to [0, 1]."""
    matches = _CONFIDENCE_RE.findall(text or "")
    cleaned = _CONFIDENCE_RE.sub("", text or "").strip()
    if not matches:
        return cleaned, None
    try:
        value = float(matches[-1])
    except ValueError:
        return cleaned, None
    return cleaned, max(0.0, min(1.0, value))


class AIGateway:
    """Per-workspace, per-role entry point for chat and embedding calls.

    Every call passes the inbound rate check, then the monthly budget check,
    then runs inside the retry loop with usage logged for the outcome.
    """

    def __init__(
        self,
        workspace_id: str,
        settings: EffectiveSettings,
        role: AIRole,
        usage_logger: UsageLogger,
        rate_limiter: AIAccessRateLimiter,
        provider_builder: ProviderBuilder = build_provider,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.workspace_id = workspace_id
        self.settings = settings
        self.role = role
        self.usage_logger = usage_logger
        self.rate_limiter = rate_limiter
        self._provider_builder = provider_builder
        self._sleep = sleep
        name = settings.provider_for(role)
        self.provider = provider_builder(
            name,
            api_key=settings.api_keys.get(name, ""),
            model=settings.model_for(role),
            embedding_model=settings.embedding_model,
        )

    def _embedding_provider(self) -> LLMProvider:
        if self.provider.supports_embeddings:
            return self.provider
        for name in EMBEDDING_PROVIDER_ORDER:
            if name in self.settings.api_keys:
                return self._provider_builder(name, api_key=self.settings.api_keys[name], embedding_model=self.settings.embedding_model)
        if self.settings.source == "env":
            return self._provider_builder("mock")
        # No embedding-capable key: the chat provider raises UnsupportedOperationError.
        return self.provider

    async def _precheck(self) -> None:
        allowed = await self.rate_limiter.check(self.workspace_id, self.settings.rate_limit_per_minute)
        if not allowed:
            raise RateLimitExceededError(self.workspace_id)
        if self.settings.usage_limit is not None:
            used = self.usage_logger.monthly_tokens(self.workspace_id)
            if used >= self.settings.usage_limit:
                raise AILimitExceededError(used, self.settings.usage_limit)

    def _with_defaults(self, params: ChatParams) -> ChatParams:
        update = {
            "temperature": params.temperature if params.temperature is not None else self.settings.temperature,
            "max_tokens": params.max_tokens or self.settings.max_tokens,
            "top_p": params.top_p if params.top_p is not None else self.settings.top_p,
        }
        if params.return_confidence:
            update["system_prompt"] = params.system_prompt + CONFIDENCE_INSTRUCTION
        return params.model_copy(update=update)

    async def chat(
        self,
        params: ChatParams,
        interaction_id: str | None = None,
        operation: UsageOperation = UsageOperation.CHAT,
    ) -> ChatResult:
        await self._precheck()
        request = self._with_defaults(params)
        started = time.perf_counter()
        try:
            result = await with_retry(lambda: self.provider.chat(request), self.settings.retry_attempts, "chat", self._sleep)
        except Exception as exc:
            self._log(operation, interaction_id, self.provider, started, success=False, error=str(exc))
            raise
        total = result.usage.total_tokens or result.usage.prompt_tokens + result.usage.completion_tokens
        self._log(
            operation,
            interaction_id,
            self.provider,
            started,
            input_tokens=result.usage.prompt_tokens,
            output_tokens=result.usage.completion_tokens,
            total_tokens=total,
            model=result.model or self.provider.model,
        )
        if params.return_confidence:
            content, confidence = extract_confidence(result.content)
            result = result.model_copy(update={"content": content, "confidence": confidence})
        return result

    async def embed(self, text: str, interaction_id: str | None = None) -> EmbedResult:
        await self._precheck()
        provider = self._embedding_provider()
        started = time.perf_counter()
        try:
            result = await with_retry(lambda: provider.embed(text), self.settings.retry_attempts, "embed", self._sleep)
        except Exception as exc:
            self._log(UsageOperation.EMBEDDING, interaction_id, provider, started, success=False, error=str(exc), model=provider.embedding_model)
            raise
        tokens = result.usage.total_tokens or result.usage.prompt_tokens
        self._log(
            UsageOperation.EMBEDDING,
            interaction_id,
            provider,
            started,
            input_tokens=tokens,
            total_tokens=tokens,
            model=result.model or provider.embedding_model,
        )
        return result

    def _log(
        self,
        operation: UsageOperation,
        interaction_id: str | None,
        provider: LLMProvider,
        started: float,
        success: bool = True,
        error: str | None = None,
        input_tokens: int = 0,
        output_tokens: int = 0,
        total_tokens: int = 0,
        model: str | None = None,
    ) -> None:
        self.usage_logger.log_usage(
            UsageLogEntry(
                workspace_id=self.workspace_id,
                interaction_id=interaction_id,
                provider=provider.name,
                model=model or provider.model,
                operation=operation,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                total_tokens=total_tokens,
                latency_ms=int((time.perf_counter() - started) * 1000),
                success=success,
                error=error,
            )
        )


class AIServiceFactory:
    """Builds gateways from stored workspace/global configuration."""

    def __init__(
        self,
        workspaces: WorkspaceStore,
        usage_logger: UsageLogger,
        rate_limiter: AIAccessRateLimiter | None = None,
        provider_builder: ProviderBuilder = build_provider,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.workspaces = workspaces
        self.usage_logger = usage_logger
        self.rate_limiter = rate_limiter or AIAccessRateLimiter()
        self.provider_builder = provider_builder
        self.sleep = sleep

    def resolve(self, workspace_id: str) -> EffectiveSettings:
        workspace = self.workspaces.require(workspace_id)
        return resolve_effective_settings(workspace, self.workspaces.global_ai_settings())

    def get(self, workspace_id: str, role: AIRole) -> AIGateway:
        return AIGateway(
            workspace_id=workspace_id,
            settings=self.resolve(workspace_id),
            role=role,
            usage_logger=self.usage_logger,
            rate_limiter=self.rate_limiter,
            provider_builder=self.provider_builder,
            sleep=self.sleep,
        )
