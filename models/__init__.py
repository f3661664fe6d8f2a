from .schemas import (
    AIRole,
    ChatMessage,
    ChatParams,
    ChatResult,
    Customer,
    EffectiveSettings,
    EmbedResult,
    Interaction,
    InteractionStatus,
    Item,
    Order,
    OrderStatus,
    ToolCall,
    Workspace,
)

__all__ = [
    "AIRole",
    "ChatMessage",
    "ChatParams",
    "ChatResult",
    "Customer",
    "EffectiveSettings",
    "EmbedResult",
    "Interaction",
    "InteractionStatus",
    "Item",
    "Order",
    "OrderStatus",
    "ToolCall",
    "Workspace",
]
