from __future__ import annotations

from typing import Any, Dict, Protocol

from models.schemas import WorkflowResult


class WorkflowEngine(Protocol):
    """Scripted conversation flows that may answer before free-form generation."""

    async def process_state_machine(
        self,
        customer_id: str,
        state: str,
        context: Dict[str, Any],
        message: str,
    ) -> WorkflowResult: ...


class PassThroughWorkflow:
    """Default engine: never claims a message."""

    async def process_state_machine(
        self,
        customer_id: str,
        state: str,
        context: Dict[str, Any],
        message: str,
    ) -> WorkflowResult:
        return WorkflowResult(reply=None)
