from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Sequence, Tuple

from agents.base import BaseAgent
from agents.customer_processor import CustomerInteractionProcessor, strip_function_tags
from agents.gateway import AIServiceFactory
from agents.prompts import COACH_FOLLOW_UP_SUFFIX, coach_follow_up_message, coach_system_prompt
from channels.platform import PlatformFactory
from memory import Repositories
from models.errors import AIAccessDeniedError, AIServiceError
from models.schemas import AIRole, ChatMessage, ChatParams, CoachMessage, ToolCall, UsageOperation, new_id
from tools import KNOWN_TOOLS, ToolContext, execute_tool_call, tool_definitions

logger = logging.getLogger(__name__)

MAX_HISTORY_TURNS = 50
MAX_TURN_CHARS = 800
MAX_USER_MESSAGE_CHARS = 2000
COACH_TEMPERATURE = 0.2
EMPTY_REPLY = "Done!"

# <function(name)>{..}</function>, <function(name>{..}</function>, <function=name>{..}</function>
_LEAKED_XML_RE = re.compile(r"<function[=(]([^)>=]+)[)>= ]*>?([\s\S]*?)</function>", re.IGNORECASE)


def _leaked_json_re(known: Sequence[str]) -> re.Pattern:
    names = "|".join(re.escape(f'"{name}"') for name in sorted(known))
    return re.compile(
        r'\{[^{}]*"(?:name|tool)"\s*:\s*(' + names + r')[^{}]*"arguments"\s*:\s*(\{[^{}]*\})[^{}]*\}'
    )


def extract_leaked_tool_calls(content: str, known: Sequence[str] = tuple(KNOWN_TOOLS)) -> Tuple[List[ToolCall], str]:
    """Recover tool calls some backends write into the text instead of the
    structured tool-call field. Returns the calls and the text without them."""
    calls: List[ToolCall] = []
    cleaned = content or ""

    for match in _LEAKED_XML_RE.finditer(content or ""):
        name = match.group(1).strip()
        raw_args = (match.group(2) or "").strip()
        cleaned = cleaned.replace(match.group(0), "").strip()
        if name not in known:
            logger.warning("coach_leaked_tool_unknown", extra={"tool": name})
            continue
        if raw_args.startswith("{") and not raw_args.endswith("}"):
            raw_args += "}"
        try:
            arguments = json.loads(raw_args) if raw_args else {}
        except json.JSONDecodeError:
            logger.warning("coach_leaked_tool_unparsable", extra={"tool": name, "raw": raw_args[:100]})
            continue
        if not isinstance(arguments, dict):
            continue
        calls.append(ToolCall(id=f"text_{new_id()[:6]}", name=name, arguments=arguments, source="text_xml"))

    if calls:
        return calls, cleaned

    for match in _leaked_json_re(known).finditer(content or ""):
        try:
            arguments = json.loads(match.group(2))
        except json.JSONDecodeError:
            continue
        calls.append(
            ToolCall(id=f"json_{new_id()[:6]}", name=match.group(1).strip('"'), arguments=arguments, source="text_json")
        )
        cleaned = cleaned.replace(match.group(0), "").strip()
    return calls, cleaned


def _looks_leaked(content: str) -> bool:
    return "<function" in content or any(f'"{name}"' in content for name in KNOWN_TOOLS)


class CoachAgent(BaseAgent):
    """Owner-facing assistant that manages the knowledge base, config and orders through tools."""

    def __init__(
        self,
        repos: Repositories,
        ai_factory: AIServiceFactory,
        platforms: PlatformFactory | None = None,
        notifier: CustomerInteractionProcessor | None = None,
    ) -> None:
        super().__init__("coach", repos, ai_factory, platforms)
        self.notifier = notifier

    def stored_history(self, workspace_id: str) -> List[Dict[str, str]]:
        return [{"role": m.role, "content": m.content} for m in self.repos.coach_conversations.history(workspace_id, MAX_HISTORY_TURNS)]

    async def process_coach_message(
        self,
        workspace_id: str,
        user_message: str,
        history: Sequence[Dict[str, Any] | CoachMessage] | None = None,
    ) -> str:
        workspace = self.repos.workspaces.require(workspace_id)
        if workspace.settings.ai_active is False:
            raise AIAccessDeniedError("AI has been paused for this workspace.")

        try:
            ai = self.ai_factory.get(workspace_id, AIRole.COACH)
        except AIServiceError as exc:
            if not exc.retryable:
                raise
            logger.error("coach_ai_unavailable", extra={"workspace_id": workspace_id, "error": repr(exc)})
            return f"Error accessing AI: {exc}"

        system_prompt = coach_system_prompt(
            workspace.business_name or workspace.name or "Unknown Business",
            workspace.industry or "Unknown",
            workspace.tone_of_voice or "Professional",
            workspace.settings.language or "Unknown",
        )
        turns = list(history) if history is not None else self.stored_history(workspace_id)
        mapped = [self._to_chat_message(turn) for turn in turns[-MAX_HISTORY_TURNS:]]
        message = (user_message or "")[:MAX_USER_MESSAGE_CHARS]

        result = await ai.chat(
            ChatParams(
                system_prompt=system_prompt,
                user_message=message,
                history=mapped,
                tools=tool_definitions(),
                temperature=COACH_TEMPERATURE,
            ),
            operation=UsageOperation.COACH_CHAT,
        )

        calls: List[ToolCall] = list(result.tool_calls)
        content = result.content or ""
        if content and _looks_leaked(content):
            leaked, cleaned = extract_leaked_tool_calls(content)
            if leaked:
                logger.info("coach_leaked_tool_calls", extra={"workspace_id": workspace_id, "count": len(leaked)})
                calls.extend(leaked)
                content = cleaned

        ctx = ToolContext(
            workspace_id=workspace_id,
            workspace=workspace,
            ai=ai,
            repos=self.repos,
            platforms=self.platforms,
            notify=self.notifier.handle_system_notification if self.notifier else None,
        )
        # Sequential: later tools may read what earlier ones wrote.
        results: List[Tuple[str, str]] = []
        for call in calls:
            try:
                output = await execute_tool_call(call, ctx)
            except Exception as exc:
                output = f"❌ Tool {call.name} crashed: {exc}"
                logger.error("coach_tool_crashed", extra={"workspace_id": workspace_id, "tool": call.name, "error": repr(exc)})
            results.append((call.name, output))

        if results:
            reply = await self._summarize(ai, system_prompt, user_message, mapped, results)
        else:
            reply = content.strip() or EMPTY_REPLY

        reply = strip_function_tags(reply) or EMPTY_REPLY
        self.repos.coach_conversations.append_exchange(workspace_id, user_message, reply)
        return reply

    async def _summarize(self, ai, system_prompt: str, user_message: str, history: List[ChatMessage], results: List[Tuple[str, str]]) -> str:
        raw = "\n".join(output for _, output in results)
        summary = "\n".join(f'Tool "{name}" result: {output}' for name, output in results)
        try:
            follow_up = await ai.chat(
                ChatParams(
                    system_prompt=system_prompt + COACH_FOLLOW_UP_SUFFIX,
                    user_message=coach_follow_up_message(user_message, summary),
                    history=history,
                    temperature=COACH_TEMPERATURE,
                ),
                operation=UsageOperation.COACH_CHAT,
            )
        except Exception as exc:
            logger.warning("coach_follow_up_failed", extra={"error": repr(exc)})
            return raw
        return (follow_up.content or "").strip() or raw

    @staticmethod
    def _to_chat_message(turn: Dict[str, Any] | CoachMessage) -> ChatMessage:
        role = turn.role if isinstance(turn, CoachMessage) else str(turn.get("role", "user"))
        content = turn.content if isinstance(turn, CoachMessage) else str(turn.get("content") or "")
        return ChatMessage(role="assistant" if role in ("coach", "assistant") else "user", content=content[:MAX_TURN_CHARS])
