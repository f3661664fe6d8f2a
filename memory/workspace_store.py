from __future__ import annotations

from typing import Any, Dict

from memory.json_store import JsonTableStore
from models.errors import WorkspaceNotFoundError
from models.schemas import AIProviderSettings, Workspace
from settings import SETTINGS


class WorkspaceStore(JsonTableStore[Workspace]):
    """Workspaces plus the single admin-managed global AI settings row."""

    model = Workspace
    table = "workspaces"

    def __init__(self, path: str | None = None) -> None:
        self._global = AIProviderSettings()
        super().__init__(path)

    def default_path(self) -> str:
        return SETTINGS.workspace_store_path

    def _load_extra(self, payload: Dict[str, Any]) -> None:
        raw = payload.get("global_ai_settings")
        if isinstance(raw, dict):
            self._global = AIProviderSettings.model_validate(raw)

    def _extra_payload(self) -> Dict[str, Any]:
        return {"global_ai_settings": self._global.model_dump(mode="json")}

    def require(self, workspace_id: str) -> Workspace:
        workspace = self.get(workspace_id)
        if workspace is None:
            raise WorkspaceNotFoundError(f"workspace not found: {workspace_id}")
        return workspace

    def global_ai_settings(self) -> AIProviderSettings:
        with self._reading():
            return self._global.model_copy(deep=True)

    def set_global_ai_settings(self, value: AIProviderSettings) -> None:
        with self._writing():
            self._global = value.model_copy(deep=True)
