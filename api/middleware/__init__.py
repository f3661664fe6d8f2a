from .auth import require_role, require_workspace
from .logging import RequestLoggingMiddleware
from .rate_limiting import RateLimitMiddleware

__all__ = ["require_role", "require_workspace", "RequestLoggingMiddleware", "RateLimitMiddleware"]
