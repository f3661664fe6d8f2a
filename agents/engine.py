from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable

from agents.coach_agent import CoachAgent
from agents.customer_processor import CustomerInteractionProcessor
from agents.gateway import AIServiceFactory, ProviderBuilder
from agents.ingestion import JobSink, KnowledgeIngestionService
from agents.llm_runtime import build_provider
from agents.workflow import WorkflowEngine
from channels.platform import PlatformFactory
from channels.rate_limiter import AIAccessRateLimiter, OutboundRateLimiter
from compliance.usage_logger import UsageLogger
from memory import Repositories


@dataclass
class AIEngine:
    repos: Repositories
    usage_logger: UsageLogger
    ai_factory: AIServiceFactory
    platforms: PlatformFactory
    processor: CustomerInteractionProcessor
    coach: CoachAgent
    ingestion: KnowledgeIngestionService


def build_engine(
    repos: Repositories | None = None,
    usage_logger: UsageLogger | None = None,
    platforms: PlatformFactory | None = None,
    rate_limiter: AIAccessRateLimiter | None = None,
    provider_builder: ProviderBuilder = build_provider,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    workflow: WorkflowEngine | None = None,
    enqueue: JobSink | None = None,
) -> AIEngine:
    """Wire stores, gateway factory, platform clients and the three services together."""
    repos = repos or Repositories.from_settings()
    usage_logger = usage_logger or UsageLogger()
    platforms = platforms or PlatformFactory(rate_limit_fn=OutboundRateLimiter())
    ai_factory = AIServiceFactory(
        repos.workspaces,
        usage_logger,
        rate_limiter=rate_limiter,
        provider_builder=provider_builder,
        sleep=sleep,
    )
    ingestion = KnowledgeIngestionService(repos, ai_factory, platforms, enqueue=enqueue)
    processor = CustomerInteractionProcessor(
        repos,
        ai_factory,
        platforms,
        workflow=workflow,
        knowledge_linker=ingestion.link_and_verify_kb,
    )
    coach = CoachAgent(repos, ai_factory, platforms, notifier=processor)
    return AIEngine(
        repos=repos,
        usage_logger=usage_logger,
        ai_factory=ai_factory,
        platforms=platforms,
        processor=processor,
        coach=coach,
        ingestion=ingestion,
    )
