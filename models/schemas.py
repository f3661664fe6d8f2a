from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class AIRole(str, Enum):
    COACH = "coach"
    CUSTOMER = "customer"


class UsageOperation(str, Enum):
    CHAT = "chat"
    EMBEDDING = "embedding"
    COACH_CHAT = "coach_chat"


class InteractionStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    IGNORED = "IGNORED"
    FAILED = "FAILED"
    NEEDS_REVIEW = "NEEDS_REVIEW"
    ACTION_REQUIRED = "ACTION_REQUIRED"
    RESOLVED = "RESOLVED"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NEGOTIATING = "negotiating"


class ItemCategory(str, Enum):
    PRODUCT = "product"
    SERVICE = "service"
    FAQ = "faq"
    POLICY = "policy"
    GENERAL = "general"


class ConversationState(str, Enum):
    """States owned by this engine. Any other value belongs to the workflow engine."""

    IDLE = "IDLE"
    AWAITING_PROPOSAL_RESPONSE = "AWAITING_PROPOSAL_RESPONSE"


class AIProviderSettings(BaseModel):
    """Provider configuration row, used both per workspace and as the global fallback.

    API keys are stored encrypted (see compliance.secrets).
    """

    coach_provider: Optional[str] = None
    coach_model: Optional[str] = None
    customer_provider: Optional[str] = None
    customer_model: Optional[str] = None
    embedding_model: Optional[str] = None
    openai_api_key: Optional[str] = None
    gemini_api_key: Optional[str] = None
    groq_api_key: Optional[str] = None
    openrouter_api_key: Optional[str] = None
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    rate_limit_per_minute: Optional[int] = None
    retry_attempts: Optional[int] = None
    system_prompt_template: Optional[str] = None

    def encrypted_keys(self) -> Dict[str, str]:
        keys = {
            "openai": self.openai_api_key,
            "gemini": self.gemini_api_key,
            "groq": self.groq_api_key,
            "openrouter": self.openrouter_api_key,
        }
        return {name: value for name, value in keys.items() if value and value.strip()}


class WorkspaceSettings(BaseModel):
    model_config = ConfigDict(extra="allow")

    ai_active: bool = True
    language: Optional[str] = None
    system_prompt_template: Optional[str] = None


class Workspace(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str = ""
    business_name: Optional[str] = None
    industry: Optional[str] = None
    about: Optional[str] = None
    target_audience: Optional[str] = None
    tone_of_voice: Optional[str] = None
    platform: str = "generic"
    access_token: Optional[str] = None
    plan: str = "free"
    status: str = "active"
    trial_ends_at: Optional[datetime] = None
    allow_global_ai: bool = True
    ai_blocked: bool = False
    custom_usage_limit: Optional[int] = None
    settings: WorkspaceSettings = Field(default_factory=WorkspaceSettings)
    ai_settings: AIProviderSettings = Field(default_factory=AIProviderSettings)
    created_at: datetime = Field(default_factory=utcnow)


class EffectiveSettings(BaseModel):
    """Outcome of the settings resolution chain for one workspace."""

    source: str
    coach_provider: str
    coach_model: str
    customer_provider: str
    customer_model: str
    embedding_model: Optional[str] = None
    api_keys: Dict[str, str] = Field(default_factory=dict)
    temperature: float = 0.7
    max_tokens: int = 1024
    top_p: float = 1.0
    rate_limit_per_minute: int = 60
    retry_attempts: int = 3
    usage_limit: Optional[int] = None
    system_prompt_template: Optional[str] = None

    @property
    def unlimited(self) -> bool:
        return self.usage_limit is None

    def provider_for(self, role: AIRole) -> str:
        return self.coach_provider if role == AIRole.COACH else self.customer_provider

    def model_for(self, role: AIRole) -> str:
        return self.coach_model if role == AIRole.COACH else self.customer_model


class Interaction(BaseModel):
    id: str = Field(default_factory=new_id)
    workspace_id: str
    source_id: Optional[str] = None
    post_id: Optional[str] = None
    customer_id: Optional[str] = None
    external_id: Optional[str] = None
    author_id: Optional[str] = None
    author_name: Optional[str] = None
    content: str = ""
    response: Optional[str] = None
    status: InteractionStatus = InteractionStatus.PENDING
    meta: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class Customer(BaseModel):
    id: str = Field(default_factory=new_id)
    workspace_id: str
    platform_id: str
    name: Optional[str] = None
    ai_paused: bool = False
    ai_paused_at: Optional[datetime] = None
    conversation_state: str = ConversationState.IDLE.value
    conversation_context: Dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime = Field(default_factory=utcnow)


class Item(BaseModel):
    id: str = Field(default_factory=new_id)
    workspace_id: str
    source_id: Optional[str] = None
    name: str
    content: str = ""
    category: str = ItemCategory.GENERAL.value
    meta: Dict[str, Any] = Field(default_factory=dict)
    embedding: Optional[List[float]] = None
    related_item_ids: List[str] = Field(default_factory=list)
    is_verified: bool = False
    expires_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())


class Order(BaseModel):
    id: str = Field(default_factory=new_id)
    workspace_id: str
    customer_id: Optional[str] = None
    interaction_id: Optional[str] = None
    customer_name: str = ""
    customer_message: str = ""
    customer_note: Optional[str] = None
    service_type: Optional[str] = None
    phone_number: Optional[str] = None
    order_items: List[Dict[str, Any]] = Field(default_factory=list)
    total_amount: Optional[float] = None
    status: OrderStatus = OrderStatus.PENDING
    seller_note: Optional[str] = None
    seller_proposal: Optional[str] = None
    confirmed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Post(BaseModel):
    id: str = Field(default_factory=new_id)
    workspace_id: str
    platform_id: str
    content: str = ""
    meta: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class FeedbackEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    workspace_id: str
    interaction_id: str
    content: str
    items_context: str
    status: str = "PENDING"
    created_at: datetime = Field(default_factory=utcnow)


class CoachMessage(BaseModel):
    id: str = Field(default_factory=new_id)
    workspace_id: str
    role: str
    content: str
    created_at: datetime = Field(default_factory=utcnow)


class UsageLogEntry(BaseModel):
    workspace_id: str
    interaction_id: Optional[str] = None
    provider: str
    model: str
    operation: UsageOperation
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    latency_ms: int = 0
    success: bool = True
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class ChatMessage(BaseModel):
    role: str
    content: str


class ToolDefinition(BaseModel):
    name: str
    description: str
    parameters: Dict[str, Any] = Field(default_factory=dict)


class ToolCall(BaseModel):
    id: str = Field(default_factory=lambda: f"call_{uuid.uuid4().hex[:8]}")
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    source: str = "native"


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatParams(BaseModel):
    system_prompt: str = ""
    user_message: str = ""
    history: List[ChatMessage] = Field(default_factory=list)
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    tools: Optional[List[ToolDefinition]] = None
    user_id: Optional[str] = None
    return_confidence: bool = False


class ChatResult(BaseModel):
    content: str = ""
    tool_calls: List[ToolCall] = Field(default_factory=list)
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: str = ""
    provider: str = ""
    confidence: Optional[float] = None


class EmbedResult(BaseModel):
    embedding: List[float]
    usage: TokenUsage = Field(default_factory=TokenUsage)
    model: str = ""
    provider: str = ""


class RetrievalResult(BaseModel):
    items: List[Item] = Field(default_factory=list)
    vector_fallback: bool = False


class OutboundMessage(BaseModel):
    to: str
    text: str
    reply_to_message_id: Optional[str] = None
    workspace_id: str


class RecentPost(BaseModel):
    id: str
    caption: str = ""
    media_url: Optional[str] = None
    created_at: Optional[datetime] = None


class WorkflowResult(BaseModel):
    reply: Optional[str] = None
