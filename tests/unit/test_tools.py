import asyncio
from datetime import timedelta

import pytest

from models.schemas import (
    AIRole,
    ConversationState,
    Interaction,
    Item,
    Order,
    OrderStatus,
    ToolCall,
    utcnow,
)
from tools import TOOL_REGISTRY, ToolContext, execute_tool_call, parse_duration, tool_definitions


@pytest.fixture
def notified():
    return []


@pytest.fixture
def ctx(engine, workspace, notified):
    async def notify(interaction_id, event_message, seller_note=None):
        notified.append((interaction_id, event_message, seller_note))

    return ToolContext(
        workspace_id=workspace.id,
        workspace=workspace,
        ai=engine.ai_factory.get(workspace.id, AIRole.COACH),
        repos=engine.repos,
        platforms=engine.platforms,
        notify=notify,
    )


def _call(ctx, name, /, **arguments):
    return asyncio.run(execute_tool_call(ToolCall(name=name, arguments=arguments), ctx))


def _order(engine, workspace, status=OrderStatus.PENDING, **fields):
    customer = engine.repos.customers.get_or_create(workspace.id, "cust-9", "Omar")
    return engine.repos.orders.insert(
        Order(
            workspace_id=workspace.id,
            customer_id=customer.id,
            interaction_id="int-9",
            customer_name="Omar",
            customer_message="2x red dress",
            total_amount=80.0,
            status=status,
            **fields,
        )
    )


def test_every_tool_has_a_definition():
    names = [d.name for d in tool_definitions()]
    assert names == [tool.name for tool in TOOL_REGISTRY]
    assert len(set(names)) == len(names)
    assert {"create_item", "confirm_order", "broadcast_message", "view_analytics"} <= set(names)


def test_parse_duration_units():
    now = utcnow()
    assert parse_duration("24h", now) == now + timedelta(hours=24)
    assert parse_duration("2w", now) == now + timedelta(days=14)
    assert parse_duration("1m", now) == now + timedelta(days=30)
    assert parse_duration("1y", now) == now + timedelta(days=365)
    assert parse_duration("soon", now) is None
    assert parse_duration(None, now) is None


def test_create_item_updates_similar_item(ctx, engine, workspace, provider):
    provider.embeddings = {"dress": [1.0, 0.0, 0.0]}
    first = _call(ctx, "create_item", name="Red dress", content="Silk, $40", category="product")
    second = _call(ctx, "create_item", name="Red silk dress", content="Silk, now $35", category="product", expires_in="7d")

    items = engine.repos.items.for_workspace(workspace.id)
    assert first.startswith('✅ Saved "Red dress"')
    assert second == '✅ Updated existing "Red silk dress" in Knowledge Base.'
    assert len(items) == 1
    assert items[0].content == "Silk, now $35"
    assert items[0].expires_at is not None


def test_create_item_matches_by_name_without_embeddings(ctx, engine, workspace, provider):
    provider.embed_error = RuntimeError("no embeddings")
    _call(ctx, "create_item", name="Opening hours", content="9-5", category="faq")
    _call(ctx, "create_item", name="opening hours", content="10-6", category="faq")
    items = engine.repos.items.for_workspace(workspace.id)
    assert [item.content for item in items] == ["10-6"]


def test_create_item_rejects_oversized_name(ctx, engine, workspace):
    result = _call(ctx, "create_item", name="x" * 201, content="c", category="faq")
    assert result.startswith("❌ Invalid arguments for create_item: name:")
    assert engine.repos.items.for_workspace(workspace.id) == []


def test_update_config_merges_settings(ctx, engine, workspace):
    result = _call(ctx, "update_config", toneOfVoice="Playful", language="Arabic")
    stored = engine.repos.workspaces.get(workspace.id)
    assert result == "✅ Updated: toneOfVoice, language"
    assert stored.tone_of_voice == "Playful"
    assert stored.settings.language == "Arabic"
    assert stored.settings.ai_active is True
    assert _call(ctx, "update_config") == "ℹ️ No configuration changes were needed."


def test_delete_and_search_items(ctx, engine, workspace, provider):
    provider.embed_error = RuntimeError("down")
    engine.repos.items.insert(Item(workspace_id=workspace.id, name="Gift wrap", content="Free gift wrapping"))
    assert "Found 1 result(s)" in _call(ctx, "search_items", query="wrap")
    assert _call(ctx, "delete_item", name="gift wrap") == '🗑️ Deleted "Gift wrap" from Knowledge Base.'
    assert _call(ctx, "delete_item", name="gift wrap") == '❌ Item "gift wrap" not found in Knowledge Base.'


def test_confirm_order_by_prefix_notifies_customer(ctx, engine, workspace, notified):
    order = _order(engine, workspace)
    result = _call(ctx, "confirm_order", order_id=order.id[:8], note="Ships Monday")

    stored = engine.repos.orders.get(order.id)
    assert result == f"✅ Order {order.id[:8]} confirmed! Note: Ships Monday"
    assert stored.status == OrderStatus.CONFIRMED
    assert stored.confirmed_at is not None
    assert notified == [("int-9", "The seller has confirmed the customer's order.", "Ships Monday")]


def test_confirm_order_ignores_non_pending(ctx, engine, workspace, notified):
    order = _order(engine, workspace, status=OrderStatus.CONFIRMED)
    result = _call(ctx, "confirm_order", order_id=order.id[:8])
    assert result == f'❌ No pending order found matching "{order.id[:8]}".'
    assert engine.repos.orders.get(order.id).status == OrderStatus.CONFIRMED
    assert notified == []


def test_reject_order_requires_reason(ctx, engine, workspace):
    order = _order(engine, workspace, service_type="haircut")
    assert _call(ctx, "reject_order", order_id=order.id).startswith("❌ Invalid arguments for reject_order")
    result = _call(ctx, "reject_order", order_id=order.id, reason="Fully booked")
    assert result == f"🚫 Order {order.id[:8]} rejected. Reason: Fully booked"
    assert engine.repos.orders.get(order.id).status == OrderStatus.REJECTED


def test_propose_change_sets_customer_state(ctx, engine, workspace, notified):
    order = _order(engine, workspace)
    _call(ctx, "propose_change", order_id=order.id[:8], proposal="Blue instead of red?")

    stored = engine.repos.orders.get(order.id)
    customer = engine.repos.customers.get(order.customer_id)
    assert stored.status == OrderStatus.NEGOTIATING
    assert stored.seller_proposal == "Blue instead of red?"
    assert customer.conversation_state == ConversationState.AWAITING_PROPOSAL_RESPONSE.value
    assert customer.conversation_context == {"orderId": order.id, "proposal": "Blue instead of red?"}
    assert "Blue instead of red?" in notified[0][1]


def test_grant_discount_reopens_order(ctx, engine, workspace):
    order = _order(engine, workspace, status=OrderStatus.NEGOTIATING)
    engine.repos.customers.set_state(order.customer_id, ConversationState.AWAITING_PROPOSAL_RESPONSE.value)

    result = _call(ctx, "grant_discount", order_id=order.id[:8], new_total_amount=70)

    stored = engine.repos.orders.get(order.id)
    assert result.startswith("✅ Discount granted.")
    assert stored.status == OrderStatus.PENDING
    assert stored.total_amount == 70
    assert stored.seller_note == "Discount applied. Price reduced from $80.0 to $70.0"
    assert engine.repos.customers.get(order.customer_id).conversation_state == ConversationState.IDLE.value


def test_grant_discount_rejects_negative_total(ctx, engine, workspace):
    order = _order(engine, workspace, status=OrderStatus.NEGOTIATING)
    assert _call(ctx, "grant_discount", order_id=order.id, new_total_amount=-5).startswith("❌ Invalid arguments")
    assert engine.repos.orders.get(order.id).status == OrderStatus.NEGOTIATING


def test_notification_failure_does_not_undo_mutation(ctx, engine, workspace):
    async def broken(interaction_id, event_message, seller_note=None):
        raise RuntimeError("provider down")

    ctx.notify = broken
    order = _order(engine, workspace)
    assert _call(ctx, "confirm_order", order_id=order.id[:8]).startswith("✅")
    assert engine.repos.orders.get(order.id).status == OrderStatus.CONFIRMED


def test_list_orders(ctx, engine, workspace):
    assert _call(ctx, "list_orders") == "📭 No pending orders found."
    order = _order(engine, workspace)
    listing = _call(ctx, "list_orders", status="pending")
    assert f"[{order.id[:8]}] **Omar**" in listing


def test_broadcast_reaches_each_author_once(ctx, engine, workspace, platform_client):
    for author, text in [("a1", "Is the red dress back?"), ("a1", "red dress pls"), ("a2", "RED DRESS size S?"), ("a3", "shoes?")]:
        engine.repos.interactions.insert(Interaction(workspace_id=workspace.id, author_id=author, content=text))

    result = _call(ctx, "broadcast_message", keyword="red dress", message="The red dress is back in stock!")
    again = _call(ctx, "broadcast_message", keyword="red dress", message="Last few left!")

    assert result == "✅ Broadcast complete! Sent to 2 customers."
    assert again == "✅ Broadcast complete! Sent to 2 customers."
    assert [m.to for m in platform_client.sent] == ["a1", "a2", "a1", "a2"]
    audit = engine.repos.interactions.where(lambda i: i.meta.get("isBroadcast"))
    assert len(audit) == 4


def test_broadcast_without_audience(ctx):
    assert _call(ctx, "broadcast_message", keyword="kimono", message="hi") == '📭 No customers found who mentioned "kimono".'


def test_view_analytics_counts(ctx, engine, workspace):
    _order(engine, workspace)
    _order(engine, workspace, status=OrderStatus.CANCELLED)
    for intent in ["price", "price", "greeting", "delivery"]:
        engine.repos.interactions.insert(Interaction(workspace_id=workspace.id, content="q", meta={"intent": intent}))

    report = _call(ctx, "view_analytics", timeframe="all")

    assert "🛒 Total Orders: 2" in report
    assert "• Rejected/Cancelled: 1" in report
    assert "• price: 2 interactions" in report
    assert "greeting" not in report


def test_view_analytics_reports_intents_from_processed_replies(ctx, engine, workspace, provider):
    provider.queue(
        "It's $40. [CONFIDENCE: 0.9]\n[INTENT: price_check]",
        "Ships in 2 days. [INTENT: delivery_question] [CONFIDENCE: 0.9]",
        "Also $40! [CONFIDENCE: 0.9]\n[INTENT: PRICE_CHECK]",
    )
    for author, content in [("c1", "how much?"), ("c2", "when will it arrive?"), ("c3", "price of the blue one?")]:
        inbound = engine.repos.interactions.insert(Interaction(workspace_id=workspace.id, author_id=author, content=content))
        asyncio.run(engine.processor.process_interaction(inbound.id))

    report = _call(ctx, "view_analytics", timeframe="all")

    assert "• price_check: 2 interactions" in report
    assert "• delivery_question: 1 interactions" in report
    assert "No specific intents" not in report
