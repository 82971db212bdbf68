"""Query generation endpoints."""
import logging
import time
import uuid

from fastapi import APIRouter, Depends, Query, Request, Response

from api.dependencies import (
    enforce_rate_limit,
    get_api_optimizer,
    get_caller_identity,
    get_correlation_id,
    get_query_service,
)
from models.api import QueryGenerationBody, QueryGenerationData, SuccessEnvelope
from models.query import QueryGenerationRequest
from querygen.errors import QueryGenerationError, ValidationError
from querygen.optimizer import APIOptimizer
from querygen.service import QueryGenerationService

logger = logging.getLogger(__name__)

router = APIRouter()

ACTIONS = ("health", "templates", "config", "stats")
# Always computed fresh
UNCACHED_ACTIONS = ("stats",)


@router.post("", dependencies=[Depends(enforce_rate_limit)])
async def generate_queries(
    body: QueryGenerationBody,
    request: Request,
    service: QueryGenerationService = Depends(get_query_service),
    optimizer: APIOptimizer = Depends(get_api_optimizer),
    user_id: str = Depends(get_caller_identity),
    correlation_id: str = Depends(get_correlation_id),
):
    """
    Generate ranked search queries for a free-text request and criteria.

    Returns a success envelope whose data status is "completed" or "partial".
    """
    started = time.perf_counter()
    generation_request = QueryGenerationRequest(
        search_id=body.search_id or str(uuid.uuid4()),
        batch_id=str(uuid.uuid4()),
        original_query=body.query,
        criteria=body.criteria,
        options=body.options,
        user_id=user_id,
    )
    logger.info(
        "Query generation requested by %s (search=%s, correlation=%s)",
        user_id, generation_request.search_id, correlation_id,
    )

    try:
        result = await service.generate_queries(generation_request)
    except QueryGenerationError:
        optimizer.record_request(request.url.path, (time.perf_counter() - started) * 1000, 500)
        raise

    # Template usage counters changed
    optimizer.invalidate(prefix=f"GET:{request.url.path}")
    optimizer.record_request(request.url.path, (time.perf_counter() - started) * 1000, 200)

    envelope = SuccessEnvelope(data=QueryGenerationData.from_result(result), correlation_id=correlation_id)
    return envelope.model_dump(by_alias=True, mode="json")


@router.get("", dependencies=[Depends(enforce_rate_limit)])
async def query_generation_info(
    request: Request,
    response: Response,
    action: str = Query("health", description="One of: health, templates, config, stats"),
    service: QueryGenerationService = Depends(get_query_service),
    optimizer: APIOptimizer = Depends(get_api_optimizer),
    correlation_id: str = Depends(get_correlation_id),
):
    """
    Service information. Responses are cached per action.

    X-Cache-Status reports HIT or MISS.
    """
    if action not in ACTIONS:
        raise ValidationError(
            f"Unknown action: {action}",
            details={"allowed": list(ACTIONS)},
        )

    started = time.perf_counter()
    key = optimizer.cache_key("GET", request.url.path, {"action": action})
    cacheable = action not in UNCACHED_ACTIONS and optimizer.should_cache("GET", request.headers)

    data = optimizer.get_cached_response(key) if cacheable else None
    cached = data is not None
    if not cached:
        data = await _action_data(action, service, optimizer)
        if cacheable:
            optimizer.cache_response(key, data)

    response.headers["X-Cache-Status"] = "HIT" if cached else "MISS"
    optimizer.record_request(request.url.path, (time.perf_counter() - started) * 1000, 200, cached=cached)
    return SuccessEnvelope(data=data, correlation_id=correlation_id).model_dump(by_alias=True, mode="json")


async def _action_data(action: str, service: QueryGenerationService, optimizer: APIOptimizer) -> dict:
    if action == "health":
        return {
            "status": "healthy",
            "service": "query-generation",
            "aiEnabled": service.ai_available,
        }
    if action == "templates":
        stats = await service.template_engine.get_template_stats()
        return stats.model_dump(mode="json")
    if action == "config":
        return service.get_config()
    return {
        "service": await service.get_stats(),
        "api": optimizer.get_stats(),
        "recommendations": optimizer.get_recommendations(),
    }
