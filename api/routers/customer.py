from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from api.middleware.auth import require_workspace
from models.schemas import Workspace


router = APIRouter(prefix="/customers", tags=["customers"])


class TakeoverRequest(BaseModel):
    paused: bool = True


@router.post("/{platform_id}/takeover")
async def set_human_takeover(
    platform_id: str,
    payload: TakeoverRequest,
    request: Request,
    workspace: Workspace = Depends(require_workspace),
):
    """Pause (or resume) the assistant for one customer while a human replies."""
    customers = request.app.state.engine.repos.customers
    customer = customers.find_by_platform_id(workspace.id, platform_id)
    if customer is None:
        raise HTTPException(status_code=404, detail="customer_not_found")
    updated = customers.set_ai_paused(customer.id, payload.paused)
    return {"ok": True, "customer_id": customer.id, "ai_paused": updated.ai_paused if updated else payload.paused}
