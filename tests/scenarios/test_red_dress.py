import asyncio

from models.schemas import ChatResult, Interaction, InteractionStatus, Item, Order, OrderStatus, ToolCall


def test_owner_teaches_then_customer_gets_grounded_answer(engine, workspace, provider, platform_client):
    provider.embeddings = {"red dress": [0.9, 0.435889894, 0.0], "dress": [1.0, 0.0, 0.0]}
    provider.queue(
        ChatResult(
            tool_calls=[
                ToolCall(
                    name="create_item",
                    arguments={"name": "Red Dress", "content": "Silk midi, sizes S-L, $40", "category": "product"},
                )
            ]
        ),
        "Saved the red dress.",
    )
    asyncio.run(engine.coach.process_coach_message(workspace.id, "We sell a red silk midi dress for $40"))

    def answer(params):
        assert "Red Dress: Silk midi, sizes S-L, $40" in params.system_prompt
        return ChatResult(content="Yes! The red dress is $40 in sizes S-L. [CONFIDENCE: 0.93]")

    provider.queue(answer)
    engine.repos.customers.get_or_create(workspace.id, "ig-55", "Dina")
    inbound = engine.repos.interactions.insert(
        Interaction(workspace_id=workspace.id, author_id="ig-55", content="Is the dress still available?", external_id="m-1")
    )

    outcome = asyncio.run(engine.processor.process_interaction(inbound.id))

    assert outcome.status == InteractionStatus.PROCESSED
    assert outcome.vector_fallback is False
    assert engine.repos.interactions.get(inbound.id).response == "Yes! The red dress is $40 in sizes S-L."
    assert [m.to for m in platform_client.sent] == ["ig-55"]


def test_order_confirmation_reaches_customer(engine, workspace, provider, platform_client):
    customer = engine.repos.customers.get_or_create(workspace.id, "ig-77", "Rami")
    inbound = engine.repos.interactions.insert(
        Interaction(workspace_id=workspace.id, author_id="ig-77", customer_id=customer.id, content="I'll take 2", external_id="m-7")
    )
    order = engine.repos.orders.insert(
        Order(workspace_id=workspace.id, customer_id=customer.id, interaction_id=inbound.id, customer_name="Rami", total_amount=80)
    )
    provider.queue(
        ChatResult(tool_calls=[ToolCall(name="confirm_order", arguments={"order_id": order.id[:8]})]),
        "Your order is confirmed, Rami! 🎉",
        "Order confirmed and Rami has been told.",
    )

    reply = asyncio.run(engine.coach.process_coach_message(workspace.id, f"confirm {order.id[:8]}"))

    assert reply == "Order confirmed and Rami has been told."
    assert engine.repos.orders.get(order.id).status == OrderStatus.CONFIRMED
    assert [(m.to, m.text) for m in platform_client.sent] == [("ig-77", "Your order is confirmed, Rami! 🎉")]
    notice = engine.repos.interactions.where(lambda i: i.meta.get("isSystemNotification"))
    assert notice[0].content == "[SYSTEM EVENT]: The seller has confirmed the customer's order."


def test_in_stock_product_question(engine, workspace, provider, platform_client):
    engine.repos.items.insert(
        Item(
            workspace_id=workspace.id,
            name="Red Dress",
            content="Silk midi dress",
            category="product",
            meta={"price": "$40", "inStock": True},
            embedding=[0.9, 0.435889894, 0.0],
            is_verified=True,
        )
    )
    provider.embeddings = {"red dress": [1.0, 0.0, 0.0]}
    provider.queue(
        lambda params: ChatResult(
            content="Yes, the Red Dress is in stock for $40! [CONFIDENCE: 0.9]"
            if "Stock: In Stock" in params.system_prompt
            else "I'm not sure. [CONFIDENCE: 0.2]"
        )
    )
    inbound = engine.repos.interactions.insert(
        Interaction(workspace_id=workspace.id, author_id="fb-1", content="Do you have the red dress in stock?")
    )

    outcome = asyncio.run(engine.processor.process_interaction(inbound.id))

    assert outcome.status == InteractionStatus.PROCESSED
    assert outcome.confidence >= 0.7
    assert "Red Dress" in outcome.reply
    assert len(platform_client.sent) == 1
