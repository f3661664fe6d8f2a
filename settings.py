from __future__ import annotations

import os
from dataclasses import dataclass


def _bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    openai_model: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    openai_embedding_model: str = os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small")

    gemini_api_key: str = os.getenv("GEMINI_API_KEY", "")
    gemini_base_url: str = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")
    gemini_model: str = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
    gemini_embedding_model: str = os.getenv("GEMINI_EMBEDDING_MODEL", "text-embedding-004")

    groq_api_key: str = os.getenv("GROQ_API_KEY", "")
    groq_base_url: str = os.getenv("GROQ_BASE_URL", "https://api.groq.com/openai/v1")
    groq_model: str = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")

    openrouter_api_key: str = os.getenv("OPENROUTER_API_KEY", "")
    openrouter_base_url: str = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1")
    openrouter_model: str = os.getenv("OPENROUTER_MODEL", "meta-llama/llama-3.3-70b-instruct")

    embedding_dimensions: int = _int("EMBEDDING_DIMENSIONS", 768)
    default_temperature: float = _float("AI_DEFAULT_TEMPERATURE", 0.7)
    default_max_tokens: int = _int("AI_DEFAULT_MAX_TOKENS", 1024)
    default_top_p: float = _float("AI_DEFAULT_TOP_P", 1.0)
    default_rate_limit_per_minute: int = _int("AI_RATE_LIMIT_PER_MINUTE", 60)
    default_retry_attempts: int = _int("AI_RETRY_ATTEMPTS", 3)
    free_plan_token_limit: int = _int("FREE_PLAN_TOKEN_LIMIT", 10_000)
    paid_plan_token_limit: int = _int("PAID_PLAN_TOKEN_LIMIT", 1_000_000)
    outbound_rate_limit: int = _int("OUTBOUND_RATE_LIMIT", 5)
    outbound_rate_window_seconds: int = _int("OUTBOUND_RATE_WINDOW_SECONDS", 5)

    redis_url: str = os.getenv("REDIS_URL", "")
    encryption_key: str = os.getenv("ENCRYPTION_KEY", "")

    workspace_store_path: str = os.getenv("WORKSPACE_STORE_PATH", "./data/workspaces.json")
    interaction_store_path: str = os.getenv("INTERACTION_STORE_PATH", "./data/interactions.json")
    customer_store_path: str = os.getenv("CUSTOMER_STORE_PATH", "./data/customers.json")
    item_store_path: str = os.getenv("ITEM_STORE_PATH", "./data/items.json")
    order_store_path: str = os.getenv("ORDER_STORE_PATH", "./data/orders.json")
    post_store_path: str = os.getenv("POST_STORE_PATH", "./data/posts.json")
    feedback_store_path: str = os.getenv("FEEDBACK_STORE_PATH", "./data/feedback_queue.json")
    coach_store_path: str = os.getenv("COACH_STORE_PATH", "./data/coach_conversations.json")
    usage_log_path: str = os.getenv("USAGE_LOG_PATH", "./data/usage.log.jsonl")

    rate_limit_per_minute: int = _int("RATE_LIMIT_PER_MINUTE", 60)
    llm_timeout_seconds: int = _int("LLM_TIMEOUT_SECONDS", 25)

    debug: bool = _bool("DEBUG", True)


SETTINGS = Settings()
