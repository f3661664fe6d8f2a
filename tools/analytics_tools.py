from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from typing import Literal

from pydantic import BaseModel

from models.schemas import utcnow
from tools.base import CoachTool, ToolContext

IGNORED_INTENTS = {"greeting", "gratitude", "unknown"}
TOP_INTENTS = 5


def timeframe_start(timeframe: str, now: datetime | None = None) -> datetime | None:
    current = now or utcnow()
    if timeframe == "today":
        return current.replace(hour=0, minute=0, second=0, microsecond=0)
    if timeframe == "7d":
        return current - timedelta(days=7)
    if timeframe == "30d":
        return current - timedelta(days=30)
    return None


class ViewAnalyticsArgs(BaseModel):
    timeframe: Literal["today", "7d", "30d", "all"] = "7d"


async def view_analytics(args: ViewAnalyticsArgs, ctx: ToolContext) -> str:
    start = timeframe_start(args.timeframe)
    by_status = ctx.repos.orders.count_by_status(ctx.workspace_id, start)
    intents = Counter(
        interaction.meta.get("intent")
        for interaction in ctx.repos.interactions.since(ctx.workspace_id, start)
        if interaction.meta.get("intent") and interaction.meta.get("intent") not in IGNORED_INTENTS
    )

    lines = [
        f"📊 **Analytics ({args.timeframe})**",
        f"🛒 Total Orders: {sum(by_status.values())}",
        f"• Pending: {by_status.get('pending', 0)}",
        f"• Confirmed: {by_status.get('confirmed', 0)}",
        f"• Completed: {by_status.get('completed', 0)}",
        f"• Rejected/Cancelled: {by_status.get('rejected', 0) + by_status.get('cancelled', 0)}",
        "",
        "🗣️ **Top Customer Topics:**",
    ]
    if not intents:
        lines.append("• No specific intents detected yet.")
    for intent, count in intents.most_common(TOP_INTENTS):
        lines.append(f"• {intent}: {count} interactions")
    return "\n".join(lines)


ANALYTICS_TOOLS = [
    CoachTool(
        name="view_analytics",
        description="View order statistics and popular customer intents over a specific timeframe.",
        parameters={
            "type": "object",
            "properties": {
                "timeframe": {
                    "type": "string",
                    "enum": ["today", "7d", "30d", "all"],
                    "description": "The time period to analyze",
                }
            },
        },
        args_model=ViewAnalyticsArgs,
        execute=view_analytics,
    ),
]
