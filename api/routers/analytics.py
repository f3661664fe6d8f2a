from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.middleware.auth import require_workspace
from models.errors import AIServiceError
from models.schemas import InteractionStatus, Workspace


router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/usage")
async def usage_summary(request: Request, workspace: Workspace = Depends(require_workspace)):
    engine = request.app.state.engine
    summary = engine.usage_logger.summary(workspace.id)
    try:
        settings = engine.ai_factory.resolve(workspace.id)
    except AIServiceError as exc:
        return {**summary, "usage_limit": None, "settings_source": None, "ai_error": str(exc)}
    return {**summary, "usage_limit": settings.usage_limit, "settings_source": settings.source}


@router.get("/review-queue")
async def review_queue(request: Request, workspace: Workspace = Depends(require_workspace)):
    """Interactions the assistant escalated for a human answer."""
    rows = request.app.state.engine.repos.interactions.where(
        lambda i: i.workspace_id == workspace.id and i.status == InteractionStatus.NEEDS_REVIEW
    )
    return {"count": len(rows), "interactions": [row.model_dump(mode="json") for row in rows]}
