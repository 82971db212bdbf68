"""Shared FastAPI dependencies: service, optimizer, caller identity, rate limiting."""
import logging
import uuid
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Header, Request, Response

from querygen.optimizer import APIOptimizer, RateLimitExceeded, RateLimitResult, client_identifier
from querygen.service import QueryGenerationService, build_service

logger = logging.getLogger(__name__)

_service: Optional[QueryGenerationService] = None


@lru_cache()
def get_api_optimizer() -> APIOptimizer:
    """Process-wide HTTP optimizer (response cache + rate limiter)."""
    return APIOptimizer()


def get_query_service() -> QueryGenerationService:
    """Process-wide query generation service, built on first use."""
    global _service
    if _service is None:
        _service = build_service()
    return _service


def correlation_id_for(request: Request) -> str:
    """Correlation id set by the middleware, or a fresh one."""
    correlation_id = getattr(request.state, "correlation_id", None)
    if not correlation_id:
        correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
    return correlation_id


def get_correlation_id(request: Request) -> str:
    return correlation_id_for(request)


def get_caller_identity(x_user_id: Optional[str] = Header(None)) -> str:
    """Caller identity for attribution only. Not authenticated."""
    return x_user_id or "anonymous"


def enforce_rate_limit(
    request: Request,
    response: Response,
    optimizer: APIOptimizer = Depends(get_api_optimizer),
) -> Optional[RateLimitResult]:
    """
    Count the request against the caller's window.

    Raises:
        RateLimitExceeded: window exhausted (rendered as a 429 envelope)
    """
    if not optimizer.config.rate_limit_enabled:
        return None

    fallback = request.client.host if request.client else None
    client_id = client_identifier(request.headers, fallback)
    result = optimizer.check_rate_limit(client_id)
    if not result.allowed:
        logger.warning("Rate limit exceeded for %s on %s", client_id, request.url.path)
        raise RateLimitExceeded(result)

    response.headers.update(result.headers())
    return result
