"""Effective AI settings for a workspace.

Resolution is an ordered list of resolvers; the first one returning a value
wins. A resolver may also raise to stop the chain (access denied).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from agents.llm_runtime import build_provider
from compliance.secrets import try_decrypt
from models.errors import AIAccessDeniedError
from models.schemas import AIProviderSettings, EffectiveSettings, Workspace, utcnow
from settings import SETTINGS

logger = logging.getLogger(__name__)

COACH_PREFERENCE = ("openai", "gemini", "openrouter", "groq")
CUSTOMER_PREFERENCE = ("groq", "openai", "gemini", "openrouter")


@dataclass
class ResolutionContext:
    workspace: Workspace
    global_settings: AIProviderSettings
    allow_global_ai: bool
    now: datetime


Resolver = Callable[[ResolutionContext], Optional[EffectiveSettings]]


def global_ai_allowed(workspace: Workspace, now: datetime | None = None) -> bool:
    """Raise for suspended or blocked workspaces; otherwise report global-key eligibility."""
    if workspace.status == "suspended":
        raise AIAccessDeniedError("Workspace is suspended.")
    if workspace.ai_blocked:
        raise AIAccessDeniedError("AI has been blocked for this workspace by an administrator.")
    allowed = workspace.allow_global_ai
    if workspace.status == "past_due":
        allowed = False
    current = now or utcnow()
    if workspace.plan == "free" and workspace.trial_ends_at is not None and workspace.trial_ends_at < current:
        allowed = False
    return allowed


def _decrypted_keys(row: AIProviderSettings) -> Dict[str, str]:
    keys: Dict[str, str] = {}
    for provider, token in row.encrypted_keys().items():
        plain = try_decrypt(token)
        if plain and plain.strip():
            keys[provider] = plain.strip()
    return keys


def _pick_provider(requested: str | None, keys: Dict[str, str], preference: Sequence[str]) -> str:
    if requested and requested in keys:
        return requested
    for name in preference:
        if name in keys:
            return name
    return "mock"


def _model_for(provider: str, requested: str | None) -> str:
    return requested or build_provider(provider).model


def _prompt_template(workspace: Workspace, row: AIProviderSettings) -> str | None:
    return workspace.settings.system_prompt_template or workspace.ai_settings.system_prompt_template or row.system_prompt_template


def _effective(
    source: str,
    coach: str,
    coach_model: str | None,
    customer: str,
    customer_model: str | None,
    row: AIProviderSettings,
    keys: Dict[str, str],
    usage_limit: int | None,
    workspace: Workspace,
) -> EffectiveSettings:
    return EffectiveSettings(
        source=source,
        coach_provider=coach,
        coach_model=_model_for(coach, coach_model),
        customer_provider=customer,
        customer_model=_model_for(customer, customer_model),
        embedding_model=row.embedding_model,
        api_keys=keys,
        temperature=row.temperature if row.temperature is not None else SETTINGS.default_temperature,
        max_tokens=row.max_tokens or SETTINGS.default_max_tokens,
        top_p=row.top_p if row.top_p is not None else SETTINGS.default_top_p,
        rate_limit_per_minute=row.rate_limit_per_minute or SETTINGS.default_rate_limit_per_minute,
        retry_attempts=row.retry_attempts or SETTINGS.default_retry_attempts,
        usage_limit=usage_limit,
        system_prompt_template=_prompt_template(workspace, row),
    )


def _build(
    row: AIProviderSettings,
    keys: Dict[str, str],
    source: str,
    usage_limit: int | None,
    workspace: Workspace,
) -> EffectiveSettings:
    coach = _pick_provider(row.coach_provider, keys, COACH_PREFERENCE)
    customer = _pick_provider(row.customer_provider, keys, CUSTOMER_PREFERENCE)
    # A configured model only applies to the provider it was configured for.
    coach_model = row.coach_model if coach == row.coach_provider else None
    customer_model = row.customer_model if customer == row.customer_provider else None
    return _effective(source, coach, coach_model, customer, customer_model, row, keys, usage_limit, workspace)


def resolve_own_keys(ctx: ResolutionContext) -> EffectiveSettings | None:
    keys = _decrypted_keys(ctx.workspace.ai_settings)
    if not keys:
        return None
    return _build(ctx.workspace.ai_settings, keys, "byok", None, ctx.workspace)


def deny_without_global_access(ctx: ResolutionContext) -> EffectiveSettings | None:
    if not ctx.allow_global_ai:
        raise AIAccessDeniedError("Global AI access is disabled for this workspace. Add your own API key to continue.")
    return None


def plan_usage_limit(workspace: Workspace) -> int:
    if workspace.custom_usage_limit:
        return workspace.custom_usage_limit
    if workspace.plan and workspace.plan != "free":
        return SETTINGS.paid_plan_token_limit
    return SETTINGS.free_plan_token_limit


def resolve_global_keys(ctx: ResolutionContext) -> EffectiveSettings | None:
    keys = _decrypted_keys(ctx.global_settings)
    if not keys:
        return None
    return _build(ctx.global_settings, keys, "global", plan_usage_limit(ctx.workspace), ctx.workspace)


def environment_keys() -> Dict[str, str]:
    keys = {
        "openai": SETTINGS.openai_api_key,
        "gemini": SETTINGS.gemini_api_key,
        "groq": SETTINGS.groq_api_key,
        "openrouter": SETTINGS.openrouter_api_key,
    }
    return {name: value for name, value in keys.items() if value}


def resolve_environment(ctx: ResolutionContext) -> EffectiveSettings | None:
    keys = environment_keys()
    coach = "openai" if "openai" in keys else "mock"
    customer = "groq" if "groq" in keys else "mock"
    return _effective("env", coach, None, customer, None, AIProviderSettings(), keys, None, ctx.workspace)


RESOLUTION_CHAIN: List[Resolver] = [
    resolve_own_keys,
    deny_without_global_access,
    resolve_global_keys,
    resolve_environment,
]


def resolve_effective_settings(
    workspace: Workspace,
    global_settings: AIProviderSettings,
    now: datetime | None = None,
    chain: Iterable[Resolver] = RESOLUTION_CHAIN,
) -> EffectiveSettings:
    ctx = ResolutionContext(
        workspace=workspace,
        global_settings=global_settings,
        allow_global_ai=global_ai_allowed(workspace, now),
        now=now or utcnow(),
    )
    for resolver in chain:
        resolved = resolver(ctx)
        if resolved is not None:
            logger.debug("ai_settings_resolved", extra={"workspace_id": workspace.id, "source": resolved.source})
            return resolved
    raise AIAccessDeniedError("No AI provider is configured.")
