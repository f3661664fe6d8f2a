from __future__ import annotations


class AIServiceError(Exception):
    """Base class for gateway-level failures."""

    retryable = True


class AIAccessDeniedError(AIServiceError):
    retryable = False

    def __init__(self, reason: str = "AI access is not available for this workspace.") -> None:
        super().__init__(f"AI_ACCESS_DENIED: {reason}")
        self.reason = reason


class AILimitExceededError(AIServiceError):
    retryable = False

    def __init__(self, used: int, limit: int) -> None:
        super().__init__(f"AI_LIMIT_EXCEEDED: Monthly token limit reached ({used}/{limit}).")
        self.used = used
        self.limit = limit


class RateLimitExceededError(AIServiceError):
    retryable = False

    def __init__(self, workspace_id: str) -> None:
        super().__init__(f"Rate limit exceeded for workspace {workspace_id}")
        self.workspace_id = workspace_id


class UnsupportedOperationError(AIServiceError):
    retryable = False

    def __init__(self, provider: str, operation: str) -> None:
        super().__init__(f"Provider '{provider}' does not support {operation}")
        self.provider = provider
        self.operation = operation


class ProviderError(AIServiceError):
    """Malformed or empty provider response."""


class WorkspaceNotFoundError(LookupError):
    pass


class InteractionNotFoundError(LookupError):
    pass


class NonRetryableJobError(Exception):
    """Raised at the worker boundary for failures a queue retry cannot fix."""
