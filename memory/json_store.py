from __future__ import annotations

import json
import logging
import os
import re
import time
import uuid
from contextlib import contextmanager, nullcontext
from threading import Lock
from typing import Any, Callable, Dict, Generic, Iterable, Iterator, List, Tuple, Type, TypeVar

from filelock import FileLock
from pydantic import BaseModel

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def ilike(text: str | None, pattern: str) -> bool:
    """Case-insensitive SQL LIKE match. `\\` escapes the next character."""
    if text is None:
        return False
    parts: List[str] = []
    escaped = False
    for ch in pattern:
        if escaped:
            parts.append(re.escape(ch))
            escaped = False
        elif ch == "\\":
            escaped = True
        elif ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.fullmatch("".join(parts), text, flags=re.IGNORECASE | re.DOTALL) is not None


class JsonTableStore(Generic[ModelT]):
    """Rows of one pydantic model keyed by id, persisted as a JSON document.

    Several processes (API and worker) may share one file: reads pick up
    changes written elsewhere, and every write reloads the file, applies the
    change and saves it while holding ``<path>.lock``. An empty path keeps the
    table in memory only.
    """

    model: Type[ModelT]
    table: str = "rows"

    def __init__(self, path: str | None = None) -> None:
        self.path = self.default_path() if path is None else path
        self._rows: Dict[str, ModelT] = {}
        self._lock = Lock()
        self._seen: Tuple[int, int, int] | None = None
        if self.path:
            os.makedirs(os.path.dirname(self.path) or ".", exist_ok=True)
            self._file_lock: Any = FileLock(f"{self.path}.lock")
        else:
            self._file_lock = nullcontext()
        self._refresh(force=True)

    def default_path(self) -> str:
        return ""

    def _signature(self) -> Tuple[int, int, int] | None:
        try:
            stat = os.stat(self.path)
        except FileNotFoundError:
            return None
        return (stat.st_ino, stat.st_mtime_ns, stat.st_size)

    def _refresh(self, force: bool = False) -> None:
        """Reload from disk when the file changed since we last read or wrote it."""
        if not self.path:
            return
        signature = self._signature()
        if signature is None or (signature == self._seen and not force):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except Exception as exc:
            logger.warning("json_store_load_failed", extra={"path": self.path, "error": repr(exc)})
            return
        rows: Dict[str, ModelT] = {}
        for raw in payload.get(self.table, []):
            try:
                row = self.model.model_validate(raw)
            except Exception:
                continue
            rows[row.id] = row
        self._rows = rows
        self._load_extra(payload)
        self._seen = signature

    def _load_extra(self, payload: Dict[str, Any]) -> None:
        return None

    def _extra_payload(self) -> Dict[str, Any]:
        return {}

    @contextmanager
    def _reading(self) -> Iterator[None]:
        with self._lock:
            self._refresh()
            yield

    @contextmanager
    def _writing(self) -> Iterator[None]:
        with self._lock, self._file_lock:
            self._refresh(force=True)
            yield
            self._persist()

    def _persist(self) -> None:
        if not self.path:
            return
        payload = {self.table: [row.model_dump(mode="json") for row in self._rows.values()], **self._extra_payload()}
        last_err: Exception | None = None
        for attempt in range(5):
            tmp = f"{self.path}.{uuid.uuid4().hex}.tmp"
            try:
                with open(tmp, "w", encoding="utf-8") as fh:
                    json.dump(payload, fh, ensure_ascii=True)
                os.replace(tmp, self.path)
                self._seen = self._signature()
                return
            except PermissionError as exc:
                # Windows can hold the target open briefly.
                last_err = exc
                if os.path.exists(tmp):
                    os.remove(tmp)
                time.sleep(0.03 * (attempt + 1))
        logger.warning("json_store_persist_failed", extra={"path": self.path, "error": repr(last_err)})

    def get(self, row_id: str) -> ModelT | None:
        with self._reading():
            row = self._rows.get(row_id)
            return row.model_copy(deep=True) if row else None

    def all(self) -> List[ModelT]:
        with self._reading():
            return [row.model_copy(deep=True) for row in self._rows.values()]

    def where(self, predicate: Callable[[ModelT], bool]) -> List[ModelT]:
        with self._reading():
            return [row.model_copy(deep=True) for row in self._rows.values() if predicate(row)]

    def insert(self, row: ModelT) -> ModelT:
        with self._writing():
            self._rows[row.id] = row.model_copy(deep=True)
        return row

    def insert_many(self, rows: Iterable[ModelT]) -> List[ModelT]:
        saved = list(rows)
        with self._writing():
            for row in saved:
                self._rows[row.id] = row.model_copy(deep=True)
        return saved

    def save(self, row: ModelT) -> ModelT:
        return self.insert(row)

    def update(self, row_id: str, **fields: Any) -> ModelT | None:
        with self._writing():
            current = self._rows.get(row_id)
            if current is None:
                return None
            data = current.model_dump()
            data.update(fields)
            updated = self.model.model_validate(data)
            self._rows[row_id] = updated
            return updated.model_copy(deep=True)

    def delete(self, row_id: str) -> bool:
        with self._writing():
            return self._rows.pop(row_id, None) is not None

    def __len__(self) -> int:
        with self._reading():
            return len(self._rows)
