from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import Annotated, List, Literal, Optional

from pydantic import BaseModel, Field, StringConstraints

from agents.retrieval import keyword_patterns
from models.schemas import Item, utcnow
from tools.base import CoachTool, ToolContext

logger = logging.getLogger(__name__)

DUPLICATE_SIMILARITY = 0.85
SEARCH_SIMILARITY = 0.5
SEARCH_LIMIT = 5

_DURATION_RE = re.compile(r"^(\d+)([dhwmy])$")
_UNIT_DAYS = {"d": 1, "w": 7, "m": 30, "y": 365}

CategoryName = Literal["product", "service", "faq", "policy", "general"]
CATEGORY_ENUM = ["product", "service", "faq", "policy", "general"]

ShortText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=200)]
LongText = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=5000)]


def parse_duration(value: str | None, now: datetime | None = None) -> datetime | None:
    """'24h', '7d', '2w', '1m', '1y' -> absolute expiry. Anything else -> None."""
    if not value:
        return None
    match = _DURATION_RE.match(value.strip())
    if not match:
        return None
    amount, unit = int(match.group(1)), match.group(2)
    start = now or utcnow()
    if unit == "h":
        return start + timedelta(hours=amount)
    return start + timedelta(days=amount * _UNIT_DAYS[unit])


class CreateItemArgs(BaseModel):
    name: ShortText
    content: LongText
    category: CategoryName = "general"
    expires_in: Optional[Annotated[str, StringConstraints(max_length=20)]] = None


async def create_item(args: CreateItemArgs, ctx: ToolContext) -> str:
    items = ctx.repos.items
    embedding: List[float] | None = None
    try:
        embedding = (await ctx.ai.embed(f"{args.name}: {args.content}")).embedding
    except Exception as exc:
        logger.warning("coach_item_embedding_failed", extra={"workspace_id": ctx.workspace_id, "error": repr(exc)})

    existing: Item | None = None
    if embedding:
        hits = items.similarity_search(ctx.workspace_id, embedding, threshold=DUPLICATE_SIMILARITY, limit=1)
        if hits:
            existing = hits[0][0]
    if existing is None:
        existing = items.find_by_name(ctx.workspace_id, args.name)

    expires_at = parse_duration(args.expires_in)
    if existing:
        items.update(
            existing.id,
            name=args.name,
            content=args.content,
            category=args.category,
            expires_at=expires_at,
            embedding=embedding or existing.embedding,
            updated_at=utcnow(),
        )
        return f'✅ Updated existing "{args.name}" in Knowledge Base.'

    items.insert(
        Item(
            workspace_id=ctx.workspace_id,
            name=args.name,
            content=args.content,
            category=args.category,
            source_id="coach_learning",
            embedding=embedding,
            expires_at=expires_at,
        )
    )
    message = f'✅ Saved "{args.name}" to Knowledge Base ({args.category}).'
    if expires_at:
        message += f" ⏰ Expires on {expires_at.date().isoformat()}"
    return message


class UpdateConfigArgs(BaseModel):
    businessName: Optional[Annotated[str, StringConstraints(max_length=100)]] = None
    industry: Optional[Annotated[str, StringConstraints(max_length=100)]] = None
    toneOfVoice: Optional[Annotated[str, StringConstraints(max_length=100)]] = None
    about: Optional[Annotated[str, StringConstraints(max_length=2000)]] = None
    targetAudience: Optional[Annotated[str, StringConstraints(max_length=2000)]] = None
    language: Optional[Annotated[str, StringConstraints(max_length=50)]] = None
    ai_active: Optional[bool] = None


_PROFILE_FIELDS = {
    "businessName": "business_name",
    "industry": "industry",
    "toneOfVoice": "tone_of_voice",
    "about": "about",
    "targetAudience": "target_audience",
}


async def update_config(args: UpdateConfigArgs, ctx: ToolContext) -> str:
    # Re-read right before merging so concurrent edits to other settings survive.
    fresh = ctx.repos.workspaces.require(ctx.workspace_id)
    settings = fresh.settings.model_dump()
    updates = {}
    changed: List[str] = []

    for arg_name, column in _PROFILE_FIELDS.items():
        value = getattr(args, arg_name)
        if value:
            updates[column] = value
            changed.append(arg_name)

    settings_changed = False
    if args.ai_active is not None:
        settings["ai_active"] = args.ai_active
        settings_changed = True
        changed.append("ai_active")
    if args.language is not None:
        settings["language"] = args.language
        settings_changed = True
        changed.append("language")
    if settings_changed:
        updates["settings"] = settings

    if not updates:
        return "ℹ️ No configuration changes were needed."
    ctx.repos.workspaces.update(ctx.workspace_id, **updates)
    return f"✅ Updated: {', '.join(changed)}"


class ListItemsArgs(BaseModel):
    category: Optional[CategoryName] = None
    limit: int = Field(default=20, ge=1, le=50)


async def list_items(args: ListItemsArgs, ctx: ToolContext) -> str:
    rows = ctx.repos.items.recent(ctx.workspace_id, category=args.category, limit=args.limit)
    if not rows:
        return "📭 Knowledge Base is empty. Start teaching me about your business!"
    summary = "\n".join(
        f"{i}. [{item.category}] **{item.name}**: {(item.content or '')[:80]}..." for i, item in enumerate(rows, start=1)
    )
    return f"📚 Knowledge Base ({len(rows)} items):\n{summary}"


class DeleteItemArgs(BaseModel):
    name: ShortText


async def delete_item(args: DeleteItemArgs, ctx: ToolContext) -> str:
    existing = ctx.repos.items.find_by_name(ctx.workspace_id, args.name)
    if not existing:
        return f'❌ Item "{args.name}" not found in Knowledge Base.'
    ctx.repos.items.delete(existing.id)
    return f'🗑️ Deleted "{existing.name}" from Knowledge Base.'


class SearchItemsArgs(BaseModel):
    query: ShortText


async def search_items(args: SearchItemsArgs, ctx: ToolContext) -> str:
    try:
        embedding = (await ctx.ai.embed(args.query)).embedding
        rows = [
            item
            for item, _ in ctx.repos.items.similarity_search(
                ctx.workspace_id, embedding, threshold=SEARCH_SIMILARITY, limit=SEARCH_LIMIT
            )
        ]
    except Exception as exc:
        logger.warning("coach_search_vector_failed", extra={"workspace_id": ctx.workspace_id, "error": repr(exc)})
        rows = ctx.repos.items.keyword_search(ctx.workspace_id, keyword_patterns([args.query]), limit=SEARCH_LIMIT)

    if not rows:
        return f'🔍 No items matching "{args.query}" found.'
    summary = "\n".join(
        f"{i}. [{item.category}] **{item.name}**: {(item.content or '')[:120]}" for i, item in enumerate(rows, start=1)
    )
    return f'🔍 Found {len(rows)} result(s) for "{args.query}":\n{summary}'


class GetConfigArgs(BaseModel):
    pass


async def get_config(args: GetConfigArgs, ctx: ToolContext) -> str:
    ws = ctx.repos.workspaces.get(ctx.workspace_id)
    if ws is None:
        return "❌ Workspace not found."
    return "\n".join(
        [
            "📋 **Current Business Profile:**",
            f"• Business Name: {ws.business_name or 'Not set'}",
            f"• Industry: {ws.industry or 'Not set'}",
            f"• Tone of Voice: {ws.tone_of_voice or 'Professional'}",
            f"• About: {ws.about or 'Not set'}",
            f"• Target Audience: {ws.target_audience or 'Not set'}",
            f"• Language: {ws.settings.language or 'Not set'}",
            f"• AI Active: {'Yes' if ws.settings.ai_active is not False else 'Paused'}",
        ]
    )


KNOWLEDGE_TOOLS = [
    CoachTool(
        name="create_item",
        description=(
            "Save a new fact, FAQ, product, service, or policy to the Knowledge Base. "
            "Also updates existing items if a similar one exists."
        ),
        parameters={
            "type": "object",
            "properties": {
                "name": {"type": "string", "description": "Short descriptive title"},
                "content": {"type": "string", "description": "Structured fact or answer"},
                "category": {"type": "string", "enum": CATEGORY_ENUM, "description": "Knowledge category"},
                "expires_in": {"type": "string", "description": "Optional duration string e.g. '7d', '24h'"},
            },
            "required": ["name", "content", "category"],
        },
        args_model=CreateItemArgs,
        execute=create_item,
    ),
    CoachTool(
        name="update_config",
        description=(
            "Update workspace settings like business name, industry, tone of voice, etc. "
            "Pass ONLY the fields you want to change."
        ),
        parameters={
            "type": "object",
            "properties": {
                "businessName": {"type": "string", "description": "Business name"},
                "industry": {"type": "string", "description": "Business industry"},
                "toneOfVoice": {"type": "string", "description": "AI response tone"},
                "about": {"type": "string", "description": "About the business"},
                "targetAudience": {"type": "string", "description": "Target audience description"},
                "language": {"type": "string", "description": "Primary language"},
                "ai_active": {"type": "boolean", "description": "Enable/disable AI"},
            },
        },
        args_model=UpdateConfigArgs,
        execute=update_config,
    ),
    CoachTool(
        name="list_items",
        description=(
            "List all items currently in the Knowledge Base. Use this before creating items to avoid duplicates, "
            "or to answer the user when they ask what you already know."
        ),
        parameters={
            "type": "object",
            "properties": {
                "category": {"type": "string", "enum": CATEGORY_ENUM, "description": "Filter by category (optional)"},
                "limit": {"type": "number", "description": "Max items to return (default 20)"},
            },
        },
        args_model=ListItemsArgs,
        execute=list_items,
    ),
    CoachTool(
        name="delete_item",
        description=(
            "Delete a Knowledge Base item by its exact name. "
            "Use this when the user asks to remove outdated or incorrect information."
        ),
        parameters={
            "type": "object",
            "properties": {"name": {"type": "string", "description": "Exact name of the item to delete"}},
            "required": ["name"],
        },
        args_model=DeleteItemArgs,
        execute=delete_item,
    ),
    CoachTool(
        name="search_items",
        description=(
            "Search the Knowledge Base by keyword. "
            "Use this to find specific information before answering questions about the business."
        ),
        parameters={
            "type": "object",
            "properties": {"query": {"type": "string", "description": "Search keyword or phrase"}},
            "required": ["query"],
        },
        args_model=SearchItemsArgs,
        execute=search_items,
    ),
    CoachTool(
        name="get_config",
        description=(
            "Get the current workspace configuration and business profile. "
            "Use this when the user asks about their current settings or when you need context."
        ),
        parameters={"type": "object", "properties": {}},
        args_model=GetConfigArgs,
        execute=get_config,
    ),
]
