from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from api.middleware.auth import require_workspace
from api.routers.errors import http_error_for
from models.errors import AIServiceError
from models.schemas import Workspace


router = APIRouter(prefix="/coach", tags=["coach"])


class CoachTurn(BaseModel):
    role: str
    content: str = ""


class CoachMessageRequest(BaseModel):
    message: str = Field(min_length=1)
    history: List[CoachTurn] | None = None


@router.post("/message")
async def post_coach_message(
    payload: CoachMessageRequest,
    request: Request,
    workspace: Workspace = Depends(require_workspace),
):
    coach = request.app.state.engine.coach
    history = [turn.model_dump() for turn in payload.history] if payload.history is not None else None
    try:
        reply = await coach.process_coach_message(workspace.id, payload.message, history)
    except AIServiceError as exc:
        raise http_error_for(exc) from exc
    return {"ok": True, "reply": reply}


@router.get("/history")
async def get_coach_history(request: Request, workspace: Workspace = Depends(require_workspace)):
    return {"ok": True, "history": request.app.state.engine.coach.stored_history(workspace.id)}
