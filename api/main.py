from __future__ import annotations

import logging

from fastapi import FastAPI

from agents.engine import AIEngine, build_engine
from agents.ingestion import JobSink
from api.middleware.logging import RequestLoggingMiddleware
from api.middleware.rate_limiting import RateLimitMiddleware
from api.routers import admin, analytics, coach, customer, interactions, webhooks
from settings import SETTINGS

logger = logging.getLogger(__name__)


def create_app(engine: AIEngine | None = None, enqueue: JobSink | None = None) -> FastAPI:
    """Build the HTTP surface. Without an enqueue function interactions are processed inline."""
    logging.basicConfig(level=logging.DEBUG if SETTINGS.debug else logging.INFO)
    app = FastAPI(title="Social AI Engine", version="0.1.0")
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RateLimitMiddleware)
    app.state.engine = engine or build_engine(enqueue=enqueue)
    app.state.enqueue = enqueue

    api_prefix = "/api/v1"
    app.include_router(coach.router, prefix=api_prefix)
    app.include_router(interactions.router, prefix=api_prefix)
    app.include_router(webhooks.router, prefix=api_prefix)
    app.include_router(analytics.router, prefix=api_prefix)
    app.include_router(customer.router, prefix=api_prefix)
    app.include_router(admin.router, prefix=api_prefix)

    @app.get("/health")
    async def health():
        engine_state: AIEngine = app.state.engine
        return {
            "ok": True,
            "service": "social-ai-engine",
            "workspaces": len(engine_state.repos.workspaces),
            "queue": "celery" if app.state.enqueue else "inline",
        }

    return app


def create_queued_app() -> FastAPI:
    """App that hands interactions to the Celery worker (uvicorn --factory api.main:create_queued_app)."""
    from tasks.ai_worker import enqueue_job

    return create_app(enqueue=enqueue_job)
