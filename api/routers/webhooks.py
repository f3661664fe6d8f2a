from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.middleware.auth import require_workspace
from api.routers.interactions import submit_interaction
from models.schemas import Interaction, Workspace


router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/{platform}")
async def platform_webhook(platform: str, request: Request, workspace: Workspace = Depends(require_workspace)):
    """Normalize an inbound platform message into an interaction.

    Accepts {sender_id, sender_name, text, message_id, post_id}. Redelivered
    webhooks (same message_id) return the existing interaction.
    """
    payload = await request.json()
    text = str(payload.get("text") or payload.get("message") or "").strip()
    sender_id = str(payload.get("sender_id") or payload.get("from") or "").strip()
    if not text or not sender_id:
        raise HTTPException(status_code=422, detail="text_and_sender_required")
    message_id = payload.get("message_id")

    repos = request.app.state.engine.repos
    if message_id:
        existing = repos.interactions.where(
            lambda i: i.workspace_id == workspace.id and i.external_id == str(message_id)
        )
        if existing:
            return {"ok": True, "duplicate": True, "interaction_id": existing[0].id}

    post_id = None
    if payload.get("post_id"):
        matches = repos.posts.where(lambda p: p.workspace_id == workspace.id and p.platform_id == str(payload["post_id"]))
        post_id = matches[0].id if matches else None

    customer = repos.customers.get_or_create(workspace.id, sender_id, payload.get("sender_name"))
    interaction = repos.interactions.insert(
        Interaction(
            workspace_id=workspace.id,
            source_id=platform.lower(),
            post_id=post_id,
            customer_id=customer.id,
            external_id=str(message_id) if message_id else None,
            author_id=sender_id,
            author_name=payload.get("sender_name"),
            content=text,
        )
    )
    return await submit_interaction(request, interaction)
