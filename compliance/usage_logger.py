from __future__ import annotations

import json
import logging
import os
from datetime import datetime
from threading import Lock
from typing import Any, Dict, List

from models.schemas import UsageLogEntry, utcnow
from settings import SETTINGS

logger = logging.getLogger(__name__)


class UsageLogger:
    """Append-only JSONL log of provider calls. An empty path keeps entries in memory."""

    def __init__(self, path: str | None = None) -> None:
        self.path = SETTINGS.usage_log_path if path is None else path
        self._lock = Lock()
        self._memory: List[Dict[str, Any]] = []
        if self.path:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)

    def log_usage(self, entry: UsageLogEntry) -> None:
        """Never raises: a broken usage log must not break the call path."""
        try:
            self.log_json(entry.model_dump(mode="json"))
        except Exception as exc:
            logger.error(
                "usage_log_write_failed",
                extra={"workspace_id": entry.workspace_id, "operation": entry.operation.value, "error": repr(exc)},
            )

    def log_json(self, payload: Dict[str, Any]) -> None:
        with self._lock:
            if not self.path:
                self._memory.append(payload)
                return
            line = json.dumps(payload, ensure_ascii=True)
            with open(self.path, "a", encoding="utf-8") as fh:
                fh.write(line + "\n")

    def entries(self, workspace_id: str | None = None) -> List[UsageLogEntry]:
        with self._lock:
            raw = list(self._memory) if not self.path else self._read_file()
        rows: List[UsageLogEntry] = []
        for payload in raw:
            try:
                row = UsageLogEntry.model_validate(payload)
            except Exception:
                continue
            if workspace_id is None or row.workspace_id == workspace_id:
                rows.append(row)
        return rows

    def _read_file(self) -> List[Dict[str, Any]]:
        if not os.path.exists(self.path):
            return []
        out: List[Dict[str, Any]] = []
        with open(self.path, "r", encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if not line:
                    continue
                try:
                    out.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
        return out

    def monthly_tokens(self, workspace_id: str, now: datetime | None = None) -> int:
        current = now or utcnow()
        month_start = current.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        return sum(e.total_tokens for e in self.entries(workspace_id) if e.created_at >= month_start)

    def summary(self, workspace_id: str) -> Dict[str, Any]:
        rows = self.entries(workspace_id)
        by_operation: Dict[str, int] = {}
        for row in rows:
            by_operation[row.operation.value] = by_operation.get(row.operation.value, 0) + row.total_tokens
        return {
            "workspace_id": workspace_id,
            "calls": len(rows),
            "failed_calls": sum(1 for r in rows if not r.success),
            "month_to_date_tokens": self.monthly_tokens(workspace_id),
            "tokens_by_operation": by_operation,
        }
