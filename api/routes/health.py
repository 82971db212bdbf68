"""Health check endpoints."""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.settings import settings
from db.connection import get_db
from db.models import GeneratedQuery, QueryTemplate
from models.scoring import ScoringWeights

logger = logging.getLogger(__name__)

router = APIRouter()


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@router.get("/health")
async def health_check():
    """Liveness."""
    return {
        "status": "healthy",
        "service": "media-query-generator",
        "environment": settings.environment,
        "timestamp": _now(),
    }


@router.get("/health/db")
def database_health(db: Session = Depends(get_db)):
    """Database connectivity plus template and query row counts."""
    try:
        db.execute(text("SELECT 1"))
        active_templates = (
            db.query(func.count(QueryTemplate.id)).filter(QueryTemplate.is_active.is_(True)).scalar()
        )
        generated = db.query(func.count(GeneratedQuery.id)).scalar()
    except SQLAlchemyError as e:
        logger.error("Database health check failed: %s", e)
        return {
            "status": "unhealthy",
            "database": "disconnected",
            "error": str(e),
            "timestamp": _now(),
        }

    return {
        # No templates means nothing can be generated until seeding runs
        "status": "healthy" if active_templates else "degraded",
        "database": "connected",
        "activeTemplates": active_templates,
        "generatedQueries": generated,
        "timestamp": _now(),
    }


@router.get("/health/config")
async def config_check():
    """Required keys and a usable scoring configuration."""
    try:
        ScoringWeights(**settings.scoring_weights)
        weights_ok = True
    except PydanticValidationError as e:
        logger.error("Invalid scoring weights: %s", e)
        weights_ok = False

    checks = {
        "openai_api_key": bool(settings.openai_api_key) or not settings.ai_enabled,
        "database_url": bool(settings.database_url),
        "scoring_weights": weights_ok,
        "similarity_threshold": 0.0 <= settings.similarity_threshold <= 1.0,
    }
    return {
        "status": "healthy" if all(checks.values()) else "degraded",
        "checks": checks,
        "ai_enabled": settings.ai_enabled,
        "model": settings.query_model if settings.ai_enabled else None,
        "timestamp": _now(),
    }
