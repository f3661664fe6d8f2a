from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Tuple

from agents.base import BaseAgent
from agents.gateway import AIGateway, AIServiceFactory
from agents.prompts import (
    ESCALATION_MARKER,
    INTENT_INSTRUCTION,
    INTENTS,
    customer_system_prompt,
    system_notification_prompt,
)
from agents.retrieval import KnowledgeRetriever, format_items
from agents.workflow import PassThroughWorkflow, WorkflowEngine
from channels.platform import PlatformFactory
from memory import Repositories
from models.errors import AIServiceError, WorkspaceNotFoundError
from models.schemas import (
    AIRole,
    ChatMessage,
    ChatParams,
    ConversationState,
    FeedbackEntry,
    Interaction,
    InteractionStatus,
    Workspace,
    new_id,
)

logger = logging.getLogger(__name__)

AI_PAUSED_SENTINEL = "AI_PAUSED_BY_USER"
HUMAN_TAKEOVER_SENTINEL = "HUMAN_TAKEOVER_ACTIVE"
ACCESS_DENIED_SENTINEL = "AI_ACCESS_DENIED"
APOLOGY_REPLY = "Sorry, I'm temporarily unable to respond. Please try again shortly."
CONFIDENCE_THRESHOLD = 0.7
FINAL_STATUSES = frozenset(
    {InteractionStatus.PROCESSED, InteractionStatus.IGNORED, InteractionStatus.NEEDS_REVIEW, InteractionStatus.RESOLVED}
)
HISTORY_TURNS = 15
NOTIFICATION_HISTORY_TURNS = 10
SYSTEM_ARCHITECT_ID = "system_architect"
SYSTEM_ARCHITECT_NAME = "The Architect"
STATE_FLOW_PREFIX = "[State Flow] "

_FUNCTION_TAG_RE = re.compile(r"<function[^>]*>[\s\S]*?</function>", re.IGNORECASE)
_INTENT_RE = re.compile(r"\[INTENT:\s*([A-Za-z_]+)\s*\]", re.IGNORECASE)

KnowledgeLinker = Callable[[str], Awaitable[Any]]


def strip_function_tags(text: str) -> str:
    return _FUNCTION_TAG_RE.sub("", text or "").strip()


def extract_intent(text: str) -> Tuple[str, str]:
    """Strip intent tags; the last label wins and anything unrecognised is "unknown"."""
    labels = _INTENT_RE.findall(text or "")
    cleaned = _INTENT_RE.sub("", text or "").strip()
    if not labels:
        return cleaned, "unknown"
    label = labels[-1].lower()
    return cleaned, label if label in INTENTS else "unknown"


def build_history(turns: List[Interaction]) -> List[ChatMessage]:
    """Role-tagged history, relabeling alert and automated-flow turns."""
    history: List[ChatMessage] = []
    for turn in turns:
        history.append(ChatMessage(role="user", content=turn.content))
        response = turn.response or ""
        prefix = "[System Alert] " if turn.author_id == SYSTEM_ARCHITECT_ID else ""
        if turn.meta.get("isStateFlow") or response.startswith(STATE_FLOW_PREFIX):
            prefix = "[Automated Flow] "
            response = response.replace(STATE_FLOW_PREFIX, "", 1)
        history.append(ChatMessage(role="assistant", content=f"{prefix}{response or '...'}"))
    return history


@dataclass
class ProcessingOutcome:
    interaction_id: str
    reply: str
    status: InteractionStatus | None
    confidence: float | None = None
    intent: str | None = None
    vector_fallback: bool = False
    escalated: bool = False
    dispatched: bool = False


class CustomerInteractionProcessor(BaseAgent):
    """Turns one inbound interaction into a persisted, dispatched reply."""

    def __init__(
        self,
        repos: Repositories,
        ai_factory: AIServiceFactory,
        platforms: PlatformFactory | None = None,
        workflow: WorkflowEngine | None = None,
        knowledge_linker: KnowledgeLinker | None = None,
    ) -> None:
        super().__init__("customer_processor", repos, ai_factory, platforms)
        self.workflow = workflow or PassThroughWorkflow()
        self.retriever = KnowledgeRetriever(repos.items)
        self.knowledge_linker = knowledge_linker

    async def process_interaction(self, interaction_id: str) -> ProcessingOutcome:
        started = time.perf_counter()
        interaction = self.repos.interactions.require(interaction_id)
        if interaction.status in FINAL_STATUSES:
            # Redelivered job or repeated /process call: the stored result stands.
            logger.info(
                "interaction_already_processed", extra={"interaction_id": interaction.id, "status": interaction.status.value}
            )
            return ProcessingOutcome(
                interaction.id,
                interaction.response or "",
                interaction.status,
                confidence=interaction.meta.get("confidence"),
                intent=interaction.meta.get("intent"),
            )
        workspace = self.repos.workspaces.require(interaction.workspace_id)

        if workspace.settings.ai_active is False:
            self.repos.interactions.set_result(interaction.id, AI_PAUSED_SENTINEL, InteractionStatus.IGNORED)
            return ProcessingOutcome(interaction.id, AI_PAUSED_SENTINEL, InteractionStatus.IGNORED)

        customer = None
        if interaction.author_id:
            customer = self.repos.customers.find_by_platform_id(workspace.id, interaction.author_id)
            if customer and customer.ai_paused:
                return ProcessingOutcome(interaction.id, HUMAN_TAKEOVER_SENTINEL, None)

        if customer:
            flow = await self.workflow.process_state_machine(
                customer.id,
                customer.conversation_state or ConversationState.IDLE.value,
                dict(customer.conversation_context or {}),
                interaction.content,
            )
            if flow.reply:
                self.repos.interactions.set_result(interaction.id, flow.reply, InteractionStatus.PROCESSED, {"isStateFlow": True})
                return ProcessingOutcome(interaction.id, flow.reply, InteractionStatus.PROCESSED)

        try:
            ai = self.ai_factory.get(workspace.id, AIRole.CUSTOMER)
        except (AIServiceError, WorkspaceNotFoundError) as exc:
            logger.warning("customer_ai_unavailable", extra={"interaction_id": interaction.id, "error": str(exc)})
            return self._fail(interaction, ACCESS_DENIED_SENTINEL, str(exc))

        retrieval = await self.retriever.retrieve(
            workspace.id, interaction.content, lambda text: ai.embed(text, interaction.id)
        )
        items_context = format_items(retrieval.items)

        history: List[ChatMessage] = []
        if interaction.author_id:
            turns = self.repos.interactions.recent_for_author(
                workspace.id, interaction.author_id, exclude_id=interaction.id, limit=HISTORY_TURNS
            )
            history = build_history(turns)

        system_prompt = customer_system_prompt(
            workspace,
            self._context_header(interaction),
            items_context,
            template=ai.settings.system_prompt_template,
            is_simulation=interaction.source_id == "simulation",
        ) + INTENT_INSTRUCTION

        confidence = 1.0
        intent = "unknown"
        try:
            result = await ai.chat(
                ChatParams(
                    system_prompt=system_prompt,
                    user_message=interaction.content,
                    history=history,
                    temperature=0.3,
                    user_id=interaction.author_id,
                    return_confidence=True,
                ),
                interaction.id,
            )
            reply, intent = extract_intent(strip_function_tags(result.content))
            confidence = result.confidence if result.confidence is not None else 1.0
        except AIServiceError as exc:
            if not exc.retryable:
                logger.warning("customer_chat_rejected", extra={"interaction_id": interaction.id, "error": str(exc)})
                return self._fail(interaction, str(exc), str(exc))
            logger.error("customer_chat_failed", extra={"interaction_id": interaction.id, "error": repr(exc)})
            reply = APOLOGY_REPLY
        except Exception as exc:
            logger.error("customer_chat_failed", extra={"interaction_id": interaction.id, "error": repr(exc)})
            reply = APOLOGY_REPLY

        escalated = ESCALATION_MARKER in reply or confidence < CONFIDENCE_THRESHOLD
        status = InteractionStatus.NEEDS_REVIEW if escalated else InteractionStatus.PROCESSED
        if escalated:
            await self._escalate(workspace, interaction, items_context, confidence)
        visible = reply.replace(ESCALATION_MARKER, "").strip()

        self.repos.interactions.set_result(
            interaction.id,
            visible,
            status,
            {"confidence": confidence, "intent": intent, "vectorFallback": retrieval.vector_fallback},
        )

        dispatched = False
        if interaction.author_id and visible:
            dispatched = await self.dispatch(workspace, interaction.author_id, visible, reply_to=interaction.external_id)

        logger.info(
            "interaction_processed",
            extra={
                "interaction_id": interaction.id,
                "status": status.value,
                "confidence": confidence,
                "intent": intent,
                "latency_ms": int((time.perf_counter() - started) * 1000),
            },
        )
        return ProcessingOutcome(
            interaction.id,
            visible,
            status,
            confidence=confidence,
            vector_fallback=retrieval.vector_fallback,
            intent=intent,
            escalated=escalated,
            dispatched=dispatched,
        )

    def _fail(self, interaction: Interaction, response: str, detail: str) -> ProcessingOutcome:
        self.repos.interactions.set_result(
            interaction.id, response, InteractionStatus.FAILED, {"error": ACCESS_DENIED_SENTINEL, "errorDetail": detail}
        )
        return ProcessingOutcome(interaction.id, response, InteractionStatus.FAILED)

    def _context_header(self, interaction: Interaction) -> str:
        if not interaction.post_id:
            return ""
        post = self.repos.posts.get(interaction.post_id)
        return f'User commenting on post: "{post.content}"' if post else ""

    async def _escalate(self, workspace: Workspace, interaction: Interaction, items_context: str, confidence: float) -> None:
        # Redelivered jobs must not duplicate the audit row or the operator alert.
        if not self.repos.feedback.for_interaction(interaction.id):
            self.repos.feedback.insert(
                FeedbackEntry(
                    workspace_id=workspace.id,
                    interaction_id=interaction.id,
                    content=interaction.content,
                    items_context=items_context,
                )
            )

        if self.knowledge_linker is not None:
            try:
                await self.knowledge_linker(workspace.id)
            except Exception as exc:
                logger.warning("knowledge_linking_failed", extra={"workspace_id": workspace.id, "error": repr(exc)})

        alert_external_id = f"escalation-{interaction.id}"
        if self.repos.interactions.where(lambda i: i.external_id == alert_external_id):
            return
        self.repos.interactions.insert(
            Interaction(
                workspace_id=workspace.id,
                source_id="simulation",
                external_id=alert_external_id,
                author_id=SYSTEM_ARCHITECT_ID,
                author_name=SYSTEM_ARCHITECT_NAME,
                content=f'Escalated: "{interaction.content[:100]}"',
                response=(
                    f'🚨 Bot Stuck!\nCustomer asked: "{interaction.content}"\n'
                    f"Confidence: {confidence}\nPlease provide the correct answer."
                ),
                status=InteractionStatus.PROCESSED,
                meta={"originalInteractionId": interaction.id},
            )
        )

    async def handle_system_notification(
        self,
        original_interaction_id: str,
        event_message: str,
        seller_note: str | None = None,
    ) -> str | None:
        """Tell the customer behind an interaction about a seller-side event."""
        original = self.repos.interactions.require(original_interaction_id)
        if not original.author_id:
            logger.info("system_notification_skipped", extra={"interaction_id": original.id, "reason": "no_author"})
            return None
        workspace = self.repos.workspaces.require(original.workspace_id)
        ai: AIGateway = self.ai_factory.get(workspace.id, AIRole.CUSTOMER)

        turns = self.repos.interactions.recent_for_author(workspace.id, original.author_id, limit=NOTIFICATION_HISTORY_TURNS)
        event_line = f"[SYSTEM EVENT]: {event_message}"
        result = await ai.chat(
            ChatParams(
                system_prompt=system_notification_prompt(workspace, event_message, seller_note),
                user_message=event_line,
                history=build_history(turns),
                temperature=0.4,
                max_tokens=150,
            ),
            original.id,
        )
        reply = strip_function_tags(result.content)
        if not reply:
            return None

        await self.dispatch(workspace, original.author_id, reply, reply_to=original.external_id)
        meta: Dict[str, Any] = {"isSystemNotification": True, "originalInteractionId": original.id}
        self.repos.interactions.insert(
            Interaction(
                workspace_id=workspace.id,
                source_id=original.source_id,
                external_id=f"system-{new_id()[:12]}",
                customer_id=original.customer_id,
                author_id=original.author_id,
                author_name=original.author_name,
                content=event_line,
                response=reply,
                status=InteractionStatus.PROCESSED,
                meta=meta,
            )
        )
        return reply
