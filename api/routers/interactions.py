from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from api.middleware.auth import require_workspace
from models.errors import InteractionNotFoundError
from models.schemas import Interaction, Workspace


router = APIRouter(prefix="/interactions", tags=["interactions"])


class InteractionCreateRequest(BaseModel):
    content: str = Field(min_length=1)
    author_id: str | None = None
    author_name: str | None = None
    external_id: str | None = None
    post_id: str | None = None
    source_id: str | None = None
    meta: Dict[str, Any] = Field(default_factory=dict)


def outcome_payload(outcome) -> Dict[str, Any]:
    return {
        "interaction_id": outcome.interaction_id,
        "status": outcome.status.value if outcome.status else None,
        "reply": outcome.reply,
        "confidence": outcome.confidence,
        "escalated": outcome.escalated,
    }


async def submit_interaction(request: Request, interaction: Interaction) -> Dict[str, Any]:
    """Queue the interaction when a worker is attached, otherwise process it inline."""
    enqueue = request.app.state.enqueue
    if enqueue is not None:
        enqueue("process", {"interactionId": interaction.id})
        return {"ok": True, "queued": True, "interaction_id": interaction.id}
    outcome = await request.app.state.engine.processor.process_interaction(interaction.id)
    return {"ok": True, "queued": False, **outcome_payload(outcome)}


@router.post("")
async def create_interaction(
    payload: InteractionCreateRequest,
    request: Request,
    workspace: Workspace = Depends(require_workspace),
):
    repos = request.app.state.engine.repos
    customer_id = None
    if payload.author_id:
        customer_id = repos.customers.get_or_create(workspace.id, payload.author_id, payload.author_name).id
    interaction = repos.interactions.insert(
        Interaction(
            workspace_id=workspace.id,
            source_id=payload.source_id,
            post_id=payload.post_id,
            customer_id=customer_id,
            external_id=payload.external_id,
            author_id=payload.author_id,
            author_name=payload.author_name,
            content=payload.content,
            meta=payload.meta,
        )
    )
    return await submit_interaction(request, interaction)


@router.post("/{interaction_id}/process")
async def process_interaction(interaction_id: str, request: Request, workspace: Workspace = Depends(require_workspace)):
    repos = request.app.state.engine.repos
    interaction = repos.interactions.get(interaction_id)
    if interaction is None or interaction.workspace_id != workspace.id:
        raise HTTPException(status_code=404, detail="interaction_not_found")
    try:
        outcome = await request.app.state.engine.processor.process_interaction(interaction_id)
    except InteractionNotFoundError as exc:
        raise HTTPException(status_code=404, detail="interaction_not_found") from exc
    return {"ok": True, **outcome_payload(outcome)}


@router.get("/{interaction_id}")
async def get_interaction(interaction_id: str, request: Request, workspace: Workspace = Depends(require_workspace)):
    interaction = request.app.state.engine.repos.interactions.get(interaction_id)
    if interaction is None or interaction.workspace_id != workspace.id:
        raise HTTPException(status_code=404, detail="interaction_not_found")
    return interaction.model_dump(mode="json")
