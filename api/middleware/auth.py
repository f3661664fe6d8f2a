from __future__ import annotations

from fastapi import Header, HTTPException, Request

from models.schemas import Workspace


def get_role_from_request(request: Request) -> str:
    # Dev-friendly shim; a deployment puts a real identity provider in front.
    return request.headers.get("X-Role", "OWNER").upper()


def require_role(*allowed_roles: str):
    allowed = {r.upper() for r in allowed_roles}

    async def _dependency(request: Request) -> str:
        role = get_role_from_request(request)
        if allowed and role not in allowed:
            raise HTTPException(status_code=403, detail="forbidden")
        return role

    return _dependency


async def require_workspace(request: Request, x_workspace_id: str | None = Header(default=None)) -> Workspace:
    """Resolve the X-Workspace-Id header to a stored workspace."""
    if not x_workspace_id:
        raise HTTPException(status_code=400, detail="missing_workspace_id")
    workspace = request.app.state.engine.repos.workspaces.get(x_workspace_id)
    if workspace is None:
        raise HTTPException(status_code=404, detail="workspace_not_found")
    return workspace
