from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict

from celery import Celery

from agents.engine import AIEngine, build_engine
from models.errors import AIServiceError, NonRetryableJobError
from models.schemas import InteractionStatus
from settings import SETTINGS

logger = logging.getLogger(__name__)

INACTIVE_WORKSPACE_STATUSES = {"suspended", "inactive", "deleted"}
WORKSPACE_INACTIVE = "WORKSPACE_INACTIVE"
MAX_RETRIES = 3
RETRY_BASE_SECONDS = 5

celery_app = Celery("social_ai_engine")
if SETTINGS.redis_url:
    celery_app.conf.broker_url = SETTINGS.redis_url
    celery_app.conf.result_backend = SETTINGS.redis_url
celery_app.conf.task_acks_late = True

JobHandler = Callable[[Dict[str, Any]], Awaitable[Any]]


def _require(payload: Dict[str, Any], field: str) -> Any:
    value = payload.get(field)
    if value in (None, ""):
        raise NonRetryableJobError(f"missing job field: {field}")
    return value


class AIJobDispatcher:
    """Maps queue job kinds onto engine entry points and classifies failures.

    NonRetryableJobError means redelivery cannot help; anything else is
    left for the queue's retry policy.
    """

    def __init__(self, engine: AIEngine) -> None:
        self.engine = engine
        self.handlers: Dict[str, JobHandler] = {
            "process": self._process,
            "ingest": self._ingest,
            "upload_batch": self._upload_batch,
            "initial_sync": self._initial_sync,
            "refresh_item_embedding": self._refresh_item_embedding,
        }

    async def dispatch(self, kind: str, payload: Dict[str, Any] | None) -> Dict[str, Any]:
        handler = self.handlers.get(kind)
        if handler is None:
            raise NonRetryableJobError(f"Unknown AI job type: {kind}")
        try:
            result = await handler(payload or {})
        except NonRetryableJobError:
            raise
        except LookupError as exc:
            raise NonRetryableJobError(str(exc)) from exc
        except AIServiceError as exc:
            if not exc.retryable:
                raise NonRetryableJobError(str(exc)) from exc
            raise
        return {"success": True, "kind": kind, "result": result}

    async def _process(self, payload: Dict[str, Any]) -> Any:
        interaction_id = _require(payload, "interactionId")
        repos = self.engine.repos
        interaction = repos.interactions.require(interaction_id)
        workspace = repos.workspaces.require(interaction.workspace_id)
        if workspace.status in INACTIVE_WORKSPACE_STATUSES:
            repos.interactions.set_result(
                interaction.id, WORKSPACE_INACTIVE, InteractionStatus.FAILED, {"error": WORKSPACE_INACTIVE}
            )
            raise NonRetryableJobError(f"workspace {workspace.id} is {workspace.status}")
        outcome = await self.engine.processor.process_interaction(interaction_id)
        return {"status": outcome.status.value if outcome.status else None, "reply": outcome.reply}

    async def _ingest(self, payload: Dict[str, Any]) -> Any:
        return await self.engine.ingestion.ingest_post(_require(payload, "postId"))

    async def _upload_batch(self, payload: Dict[str, Any]) -> Any:
        rows = payload.get("items")
        if not isinstance(rows, list):
            raise NonRetryableJobError("missing job field: items")
        return await self.engine.ingestion.process_batch_ingestion(
            _require(payload, "workspaceId"), payload.get("sourceId") or "upload", rows
        )

    async def _initial_sync(self, payload: Dict[str, Any]) -> Any:
        return await self.engine.ingestion.sync_historical_posts(_require(payload, "workspaceId"))

    async def _refresh_item_embedding(self, payload: Dict[str, Any]) -> Any:
        return await self.engine.ingestion.refresh_item_embedding(_require(payload, "itemId"))


_dispatcher: AIJobDispatcher | None = None


def enqueue_job(kind: str, payload: Dict[str, Any]) -> None:
    process_job.delay(kind, payload)


def get_dispatcher() -> AIJobDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = AIJobDispatcher(build_engine(enqueue=enqueue_job))
    return _dispatcher


@celery_app.task(bind=True, name="ai.process_job", max_retries=MAX_RETRIES)
def process_job(self, kind: str, payload: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return asyncio.run(get_dispatcher().dispatch(kind, payload))
    except NonRetryableJobError as exc:
        logger.error("ai_job_failed", extra={"kind": kind, "error": str(exc), "retry": False})
        return {"success": False, "kind": kind, "error": str(exc)}
    except Exception as exc:
        logger.error("ai_job_failed", extra={"kind": kind, "error": repr(exc), "retry": True, "attempt": self.request.retries})
        raise self.retry(exc=exc, countdown=RETRY_BASE_SECONDS * 2 ** self.request.retries)
