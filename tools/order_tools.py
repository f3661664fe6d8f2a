from __future__ import annotations

from typing import Annotated, Literal, Optional

from pydantic import BaseModel, Field, StringConstraints

from models.schemas import ConversationState, Order, OrderStatus, utcnow
from tools.base import CoachTool, ToolContext, notify_customer

OrderId = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=100)]
Note = Annotated[str, StringConstraints(max_length=500)]
RequiredNote = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=500)]

_ORDER_ID_PARAM = {"type": "string", "description": "Order ID (first 8 characters are enough)"}


def short_id(order: Order) -> str:
    return order.id[:8]


def _request_kind(order: Order, default: str) -> str:
    if order.service_type:
        return f"appointment for {order.service_type}"
    if order.phone_number:
        return "call request"
    return default


def _not_found(order_id: str, status: OrderStatus) -> str:
    return f'❌ No {status.value} order found matching "{order_id}".'


class ListOrdersArgs(BaseModel):
    status: Literal["pending", "confirmed", "rejected", "completed", "cancelled", "negotiating"] = "pending"
    limit: int = Field(default=10, ge=1, le=50)


async def list_orders(args: ListOrdersArgs, ctx: ToolContext) -> str:
    rows = ctx.repos.orders.list_by_status(ctx.workspace_id, OrderStatus(args.status), limit=args.limit)
    if not rows:
        return f"📭 No {args.status} orders found."
    lines = []
    for i, order in enumerate(rows, start=1):
        emoji = {"appointment": "📅", "call_request": "📞"}.get(order.customer_note or "", "🛒")
        when = order.created_at.strftime("%Y-%m-%d %H:%M")
        lines.append(
            f'{i}. {emoji} [{short_id(order)}] **{order.customer_name}**: "{(order.customer_message or "")[:80]}" ({when})'
        )
    return (
        f"📋 {args.status.upper()} Orders ({len(rows)}):\n" + "\n".join(lines)
        + "\n\nUse confirm_order or reject_order with the order ID to take action."
    )


class ConfirmOrderArgs(BaseModel):
    order_id: OrderId
    note: Optional[Note] = None


async def confirm_order(args: ConfirmOrderArgs, ctx: ToolContext) -> str:
    order = ctx.repos.orders.find_by_prefix(ctx.workspace_id, args.order_id, OrderStatus.PENDING)
    if not order:
        return _not_found(args.order_id, OrderStatus.PENDING)
    now = utcnow()
    ctx.repos.orders.update(
        order.id, status=OrderStatus.CONFIRMED, seller_note=args.note or None, confirmed_at=now, updated_at=now
    )
    await notify_customer(
        ctx,
        order.interaction_id,
        f"The seller has confirmed the customer's {_request_kind(order, 'order')}.",
        args.note or None,
    )
    suffix = f" Note: {args.note}" if args.note else ""
    return f"✅ Order {short_id(order)} confirmed!{suffix}"


class RejectOrderArgs(BaseModel):
    order_id: OrderId
    reason: RequiredNote


async def reject_order(args: RejectOrderArgs, ctx: ToolContext) -> str:
    order = ctx.repos.orders.find_by_prefix(ctx.workspace_id, args.order_id, OrderStatus.PENDING)
    if not order:
        return _not_found(args.order_id, OrderStatus.PENDING)
    ctx.repos.orders.update(order.id, status=OrderStatus.REJECTED, seller_note=args.reason, updated_at=utcnow())
    await notify_customer(
        ctx,
        order.interaction_id,
        f"The seller has rejected the customer's {_request_kind(order, 'request')}.",
        args.reason,
    )
    return f"🚫 Order {short_id(order)} rejected. Reason: {args.reason}"


class ProposeChangeArgs(BaseModel):
    order_id: OrderId
    proposal: RequiredNote


async def propose_change(args: ProposeChangeArgs, ctx: ToolContext) -> str:
    order = ctx.repos.orders.find_by_prefix(ctx.workspace_id, args.order_id, OrderStatus.PENDING)
    if not order:
        return _not_found(args.order_id, OrderStatus.PENDING)
    ctx.repos.orders.update(order.id, status=OrderStatus.NEGOTIATING, seller_proposal=args.proposal, updated_at=utcnow())
    if order.customer_id:
        # The workflow engine reads this state on the customer's next message.
        ctx.repos.customers.set_state(
            order.customer_id,
            ConversationState.AWAITING_PROPOSAL_RESPONSE.value,
            {"orderId": order.id, "proposal": args.proposal},
        )
    await notify_customer(
        ctx,
        order.interaction_id,
        f"The seller cannot accept the exact request, but proposes this alternative: '{args.proposal}'. "
        "Ask the customer if this is acceptable.",
    )
    return f'💬 Proposal sent to customer: "{args.proposal}". Waiting for their reply.'


class GrantDiscountArgs(BaseModel):
    order_id: OrderId
    new_total_amount: float = Field(ge=0)
    note: Optional[Note] = None


async def grant_discount(args: GrantDiscountArgs, ctx: ToolContext) -> str:
    order = ctx.repos.orders.find_by_prefix(ctx.workspace_id, args.order_id, OrderStatus.NEGOTIATING)
    if not order:
        return (
            f'❌ No negotiating order found matching "{args.order_id}". '
            "Note: The order must be in 'negotiating' status."
        )
    old_total = order.total_amount or 0
    ctx.repos.orders.update(
        order.id,
        total_amount=args.new_total_amount,
        status=OrderStatus.PENDING,
        seller_note=args.note or f"Discount applied. Price reduced from ${old_total} to ${args.new_total_amount}",
        updated_at=utcnow(),
    )
    if order.customer_id:
        ctx.repos.customers.set_state(order.customer_id, ConversationState.IDLE.value)
    await notify_customer(
        ctx,
        order.interaction_id,
        f"The seller has GRANTED the requested discount! The new cart total is ${args.new_total_amount}. "
        "Tell the customer the good news and ask if they are ready to check out!",
        args.note or None,
    )
    return (
        f"✅ Discount granted. Order {short_id(order)} total is now ${args.new_total_amount}. "
        "Customer has been notified."
    )


ORDER_TOOLS = [
    CoachTool(
        name="list_orders",
        description=(
            "List pending or recent orders, bookings, and call requests from customers. "
            "Use this when the user asks about new orders or wants to see what needs attention."
        ),
        parameters={
            "type": "object",
            "properties": {
                "status": {
                    "type": "string",
                    "enum": ["pending", "confirmed", "rejected", "completed", "cancelled", "negotiating"],
                    "description": "Filter by status (default: pending)",
                },
                "limit": {"type": "number", "description": "Max orders to return (default 10)"},
            },
        },
        args_model=ListOrdersArgs,
        execute=list_orders,
    ),
    CoachTool(
        name="confirm_order",
        description=(
            "Confirm a pending order or booking. The customer will be notified automatically. "
            "Use the short order ID (first 8 characters)."
        ),
        parameters={
            "type": "object",
            "properties": {
                "order_id": _ORDER_ID_PARAM,
                "note": {"type": "string", "description": "Optional note to include in confirmation"},
            },
            "required": ["order_id"],
        },
        args_model=ConfirmOrderArgs,
        execute=confirm_order,
    ),
    CoachTool(
        name="reject_order",
        description="Reject a pending order with a reason. The customer will be notified automatically.",
        parameters={
            "type": "object",
            "properties": {
                "order_id": _ORDER_ID_PARAM,
                "reason": {"type": "string", "description": "Reason for rejection (shown to customer)"},
            },
            "required": ["order_id", "reason"],
        },
        args_model=RejectOrderArgs,
        execute=reject_order,
    ),
    CoachTool(
        name="propose_change",
        description=(
            "Propose a change to a pending order/booking (e.g., offering a different time or product). "
            "The customer will be asked if they accept your proposal."
        ),
        parameters={
            "type": "object",
            "properties": {
                "order_id": _ORDER_ID_PARAM,
                "proposal": {
                    "type": "string",
                    "description": "The alternative you are proposing (e.g., '2 PM is full, how about 4 PM?')",
                },
            },
            "required": ["order_id", "proposal"],
        },
        args_model=ProposeChangeArgs,
        execute=propose_change,
    ),
    CoachTool(
        name="grant_discount",
        description=(
            "Grant a discount requested by a customer. This updates their pending order with the new price "
            "and notifies the customer assistant to deliver the good news."
        ),
        parameters={
            "type": "object",
            "properties": {
                "order_id": _ORDER_ID_PARAM,
                "new_total_amount": {"type": "number", "description": "The new total price after applying the discount"},
                "note": {
                    "type": "string",
                    "description": "Optional note to the customer explaining the discount (e.g. 'Approved your 10% off!')",
                },
            },
            "required": ["order_id", "new_total_amount"],
        },
        args_model=GrantDiscountArgs,
        execute=grant_discount,
    ),
]
