from .base import CoachTool, ToolContext
from .knowledge_tools import parse_duration
from .registry import KNOWN_TOOLS, TOOL_REGISTRY, execute_tool_call, tool_definitions

__all__ = [
    "CoachTool",
    "KNOWN_TOOLS",
    "TOOL_REGISTRY",
    "ToolContext",
    "execute_tool_call",
    "parse_duration",
    "tool_definitions",
]
