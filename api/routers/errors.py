from __future__ import annotations

from fastapi import HTTPException

from models.errors import AIAccessDeniedError, AILimitExceededError, AIServiceError, RateLimitExceededError


def http_error_for(exc: AIServiceError) -> HTTPException:
    if isinstance(exc, AIAccessDeniedError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, AILimitExceededError):
        return HTTPException(status_code=402, detail=str(exc))
    if isinstance(exc, RateLimitExceededError):
        return HTTPException(status_code=429, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))
