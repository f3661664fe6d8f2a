from __future__ import annotations

from typing import Any, Dict

from memory.json_store import JsonTableStore
from models.schemas import Customer, utcnow
from settings import SETTINGS


class CustomerStore(JsonTableStore[Customer]):
    model = Customer
    table = "customers"

    def default_path(self) -> str:
        return SETTINGS.customer_store_path

    def find_by_platform_id(self, workspace_id: str, platform_id: str) -> Customer | None:
        rows = self.where(lambda c: c.workspace_id == workspace_id and c.platform_id == platform_id)
        return rows[0] if rows else None

    def get_or_create(self, workspace_id: str, platform_id: str, name: str | None = None) -> Customer:
        existing = self.find_by_platform_id(workspace_id, platform_id)
        if existing:
            return existing
        return self.insert(Customer(workspace_id=workspace_id, platform_id=platform_id, name=name))

    def set_state(self, customer_id: str, state: str, context: Dict[str, Any] | None = None) -> Customer | None:
        fields: Dict[str, Any] = {"conversation_state": state, "updated_at": utcnow()}
        if context is not None:
            fields["conversation_context"] = context
        return self.update(customer_id, **fields)

    def set_ai_paused(self, customer_id: str, paused: bool) -> Customer | None:
        return self.update(
            customer_id,
            ai_paused=paused,
            ai_paused_at=utcnow() if paused else None,
            updated_at=utcnow(),
        )
