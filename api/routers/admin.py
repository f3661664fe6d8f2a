from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from api.middleware.auth import require_role
from compliance.secrets import encrypt_secret
from models.schemas import AIProviderSettings, Workspace, WorkspaceSettings


router = APIRouter(prefix="/admin", tags=["admin"])

_KEY_FIELDS = ("openai_api_key", "gemini_api_key", "groq_api_key", "openrouter_api_key")


class WorkspaceCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    business_name: str | None = None
    industry: str | None = None
    platform: str = "generic"
    access_token: str | None = None
    plan: str = "free"
    settings: Dict[str, Any] = Field(default_factory=dict)


class GlobalAISettingsRequest(BaseModel):
    """Plaintext keys in, encrypted keys at rest."""

    coach_provider: str | None = None
    coach_model: str | None = None
    customer_provider: str | None = None
    customer_model: str | None = None
    embedding_model: str | None = None
    openai_api_key: str | None = None
    gemini_api_key: str | None = None
    groq_api_key: str | None = None
    openrouter_api_key: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    rate_limit_per_minute: int | None = None
    retry_attempts: int | None = None
    system_prompt_template: str | None = None


def encrypt_provider_settings(payload: GlobalAISettingsRequest) -> AIProviderSettings:
    data = payload.model_dump()
    for field in _KEY_FIELDS:
        if data.get(field):
            data[field] = encrypt_secret(data[field])
    return AIProviderSettings.model_validate(data)


@router.post("/workspaces")
async def create_workspace(payload: WorkspaceCreateRequest, request: Request, _role: str = Depends(require_role("ADMIN"))):
    workspace = Workspace(
        name=payload.name,
        business_name=payload.business_name,
        industry=payload.industry,
        platform=payload.platform,
        access_token=encrypt_secret(payload.access_token) if payload.access_token else None,
        plan=payload.plan,
        settings=WorkspaceSettings.model_validate(payload.settings),
    )
    request.app.state.engine.repos.workspaces.insert(workspace)
    return {"ok": True, "workspace_id": workspace.id}


@router.put("/ai-settings")
async def put_global_ai_settings(
    payload: GlobalAISettingsRequest,
    request: Request,
    _role: str = Depends(require_role("ADMIN")),
):
    stored = encrypt_provider_settings(payload)
    request.app.state.engine.repos.workspaces.set_global_ai_settings(stored)
    return {"ok": True, "configured_keys": sorted(stored.encrypted_keys())}
