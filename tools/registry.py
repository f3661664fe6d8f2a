"""Coach tool registry.

TOOL_REGISTRY is the single list of coach capabilities. The LLM catalogue,
KNOWN_TOOLS and the dispatch table are all derived from it, so adding a tool
means adding one CoachTool to one of the lists below.
"""

from __future__ import annotations

import logging
from typing import Dict, List

from pydantic import ValidationError

from models.schemas import ToolCall, ToolDefinition
from tools.analytics_tools import ANALYTICS_TOOLS
from tools.base import CoachTool, ToolContext
from tools.knowledge_tools import KNOWLEDGE_TOOLS
from tools.notification_tools import NOTIFICATION_TOOLS
from tools.order_tools import ORDER_TOOLS

logger = logging.getLogger(__name__)

TOOL_REGISTRY: List[CoachTool] = [*KNOWLEDGE_TOOLS, *ORDER_TOOLS, *NOTIFICATION_TOOLS, *ANALYTICS_TOOLS]

KNOWN_TOOLS = frozenset(tool.name for tool in TOOL_REGISTRY)

_TOOL_MAP: Dict[str, CoachTool] = {tool.name: tool for tool in TOOL_REGISTRY}


def tool_definitions() -> List[ToolDefinition]:
    return [tool.definition() for tool in TOOL_REGISTRY]


def format_validation_error(exc: ValidationError) -> str:
    fields: Dict[str, List[str]] = {}
    for error in exc.errors():
        key = ".".join(str(part) for part in error.get("loc", ())) or "arguments"
        fields.setdefault(key, []).append(error.get("msg", "invalid"))
    return "; ".join(f"{key}: {', '.join(msgs)}" for key, msgs in fields.items())


async def execute_tool_call(call: ToolCall, ctx: ToolContext) -> str:
    """Validate and run one tool call. Problems come back as text, never as exceptions."""
    tool = _TOOL_MAP.get(call.name)
    if tool is None:
        logger.warning("coach_unknown_tool", extra={"workspace_id": ctx.workspace_id, "tool": call.name})
        return f"❌ Unknown tool: {call.name}"

    try:
        args = tool.args_model.model_validate(call.arguments or {})
    except ValidationError as exc:
        detail = format_validation_error(exc)
        logger.warning("coach_tool_invalid_args", extra={"workspace_id": ctx.workspace_id, "tool": call.name, "errors": detail})
        return f"❌ Invalid arguments for {call.name}: {detail}"

    try:
        return await tool.execute(args, ctx)
    except Exception as exc:
        logger.error("coach_tool_crashed", extra={"workspace_id": ctx.workspace_id, "tool": call.name, "error": repr(exc)})
        return f"❌ Tool {call.name} crashed: {exc}"
