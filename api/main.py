"""
FastAPI application for the Media Query Generator.

Provides HTTP endpoints for:
- Generating ranked search queries
- Template, configuration and optimizer statistics
- System health checks
"""
import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from config.settings import settings, configure_logging
from db.connection import init_db
from api.dependencies import correlation_id_for, get_api_optimizer, get_query_service
from api.routes import health, query_generation
from models.api import ErrorDetail, ErrorEnvelope
from querygen.cache import CacheSweeper
from querygen.errors import QueryGenerationError, ValidationError
from querygen.optimizer import RateLimitExceeded

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    # Startup
    configure_logging()
    logger.info("🚀 Starting Media Query Generator API...")
    init_db()
    logger.info("✅ Database initialized")

    service = get_query_service()
    seeded = await service.initialize()
    if seeded:
        logger.info("🌱 Seeded %d default templates", seeded)

    sweeper = CacheSweeper(
        caches=[*get_api_optimizer().caches, service.template_engine.cache],
        interval=settings.cache_sweep_interval,
    )
    if service.enhancer is not None:
        sweeper.register(service.enhancer.optimizer.cache)
    sweeper.start()

    yield

    # Shutdown
    logger.info("👋 Shutting down...")
    await sweeper.stop()
    await service.close()


# Create FastAPI app
app = FastAPI(
    title="Media Query Generator API",
    description="Template and AI driven search query generation for media contact discovery",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware (adjust origins for production)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.environment == "development" else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Correlation-ID", "X-Cache-Status", "X-RateLimit-Limit",
                    "X-RateLimit-Remaining", "X-RateLimit-Reset", "Retry-After"],
)
app.add_middleware(GZipMiddleware, minimum_size=settings.compression_threshold)


@app.middleware("http")
async def add_correlation_id(request: Request, call_next):
    """Propagate X-Correlation-ID, generating one when absent."""
    request.state.correlation_id = request.headers.get("x-correlation-id") or str(uuid.uuid4())
    response = await call_next(request)
    response.headers["X-Correlation-ID"] = request.state.correlation_id
    return response


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(query_generation.router, prefix="/api/ai/query-generation", tags=["Query Generation"])


# =============================================================================
# ERROR ENVELOPES
# =============================================================================

def _error_response(request: Request, status_code: int, error: dict, headers: dict = None) -> JSONResponse:
    envelope = ErrorEnvelope(error=ErrorDetail(**error), correlation_id=correlation_id_for(request))
    return JSONResponse(
        status_code=status_code,
        content=envelope.model_dump(by_alias=True, exclude_none=True),
        headers=headers,
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return _error_response(request, 429, exc.to_dict(), headers=exc.result.headers())


@app.exception_handler(QueryGenerationError)
async def query_generation_error_handler(request: Request, exc: QueryGenerationError):
    if isinstance(exc, ValidationError):
        return _error_response(request, 400, exc.to_dict())
    logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
    return _error_response(request, 500, exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": [str(part) for part in e.get("loc", ())], "msg": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]
    return _error_response(request, 400, {
        "code": "VALIDATION_ERROR",
        "message": "Invalid request",
        "type": "validation_error",
        "details": {"errors": errors},
    })


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "name": "Media Query Generator API",
        "version": "1.0.0",
        "environment": settings.environment,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    uvicorn.run("api.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
