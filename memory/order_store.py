from __future__ import annotations

from datetime import datetime
from typing import Dict, List

from memory.json_store import JsonTableStore
from models.schemas import Order, OrderStatus
from settings import SETTINGS


class OrderStore(JsonTableStore[Order]):
    model = Order
    table = "orders"

    def default_path(self) -> str:
        return SETTINGS.order_store_path

    def find_by_prefix(self, workspace_id: str, id_prefix: str, status: OrderStatus) -> Order | None:
        """First order of the given status whose id starts with the prefix."""
        prefix = id_prefix.strip().lower()
        if not prefix:
            return None
        rows = self.where(
            lambda o: o.workspace_id == workspace_id and o.status == status and o.id.lower().startswith(prefix)
        )
        return rows[0] if rows else None

    def list_by_status(self, workspace_id: str, status: OrderStatus, limit: int = 10) -> List[Order]:
        rows = self.where(lambda o: o.workspace_id == workspace_id and o.status == status)
        rows.sort(key=lambda o: o.created_at, reverse=True)
        return rows[:limit]

    def count_by_status(self, workspace_id: str, start: datetime | None = None) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for order in self.where(lambda o: o.workspace_id == workspace_id and (start is None or o.created_at > start)):
            counts[order.status.value] = counts.get(order.status.value, 0) + 1
        return counts
