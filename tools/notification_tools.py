from __future__ import annotations

import logging
import time
from typing import Annotated, Dict

from pydantic import BaseModel, StringConstraints

from agents.customer_processor import SYSTEM_ARCHITECT_ID
from agents.retrieval import sanitize_like_input
from compliance.secrets import try_decrypt
from models.schemas import Interaction, InteractionStatus, OutboundMessage
from tools.base import CoachTool, ToolContext

logger = logging.getLogger(__name__)

BROADCAST_SOURCE = "coach_broadcast"


class BroadcastMessageArgs(BaseModel):
    keyword: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
    message: Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=2000)]


async def broadcast_message(args: BroadcastMessageArgs, ctx: ToolContext) -> str:
    matches = ctx.repos.interactions.matching_content(ctx.workspace_id, f"%{sanitize_like_input(args.keyword)}%")
    audience: Dict[str, str | None] = {}
    for interaction in matches:
        # Broadcast audit rows and operator alerts quote the keyword themselves.
        if interaction.source_id == BROADCAST_SOURCE or interaction.author_id == SYSTEM_ARCHITECT_ID:
            continue
        if interaction.author_id:
            audience[interaction.author_id] = interaction.customer_id
    if not audience:
        return f'📭 No customers found who mentioned "{args.keyword}".'

    client = ctx.platforms.get_client(ctx.workspace.platform or "generic", try_decrypt(ctx.workspace.access_token))
    sent = failed = 0
    for author_id, customer_id in audience.items():
        try:
            result = await client.send(
                OutboundMessage(to=author_id, text=args.message, workspace_id=ctx.workspace_id)
            )
        except Exception as exc:
            logger.error("broadcast_send_failed", extra={"workspace_id": ctx.workspace_id, "to": author_id, "error": repr(exc)})
            failed += 1
            continue
        if not result.success:
            logger.error("broadcast_send_rejected", extra={"workspace_id": ctx.workspace_id, "to": author_id, "error": result.error})
            failed += 1
            continue
        ctx.repos.interactions.insert(
            Interaction(
                workspace_id=ctx.workspace_id,
                source_id=BROADCAST_SOURCE,
                external_id=f"broadcast-{int(time.time() * 1000)}-{author_id}",
                author_id=author_id,
                customer_id=customer_id,
                author_name="Broadcast Target",
                content=f"(Matched keyword: {args.keyword})",
                response=args.message,
                status=InteractionStatus.PROCESSED,
                meta={"isBroadcast": True, "keyword": args.keyword},
            )
        )
        sent += 1

    failed_note = f"({failed} failed)" if failed else ""
    return f"✅ Broadcast complete! Sent to {sent} customers. {failed_note}".rstrip()


NOTIFICATION_TOOLS = [
    CoachTool(
        name="broadcast_message",
        description=(
            "Broadcast a message to all customers who have mentioned a specific keyword in the past. "
            "Useful for back-in-stock notifications or targeted promotions."
        ),
        parameters={
            "type": "object",
            "properties": {
                "keyword": {
                    "type": "string",
                    "description": "The keyword to search for in past customer messages (e.g., 'red dress')",
                },
                "message": {"type": "string", "description": "The exact message to send to these customers"},
            },
            "required": ["keyword", "message"],
        },
        args_model=BroadcastMessageArgs,
        execute=broadcast_message,
    ),
]
