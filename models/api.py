"""
HTTP request/response models for the query generation API.
"""

from datetime import datetime, timezone
from typing import Any, Optional
from pydantic import Field

from models.query import (
    CamelModel,
    GeneratedQuery,
    QueryCriteria,
    QueryGenerationMetrics,
    QueryGenerationOptions,
    QueryGenerationResult,
    QueryScores,
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class QueryGenerationBody(CamelModel):
    """POST /api/ai/query-generation request body."""
    query: str = Field(min_length=1, max_length=1000)
    search_id: Optional[str] = None
    criteria: QueryCriteria = Field(default_factory=QueryCriteria)
    options: QueryGenerationOptions = Field(default_factory=QueryGenerationOptions)


class GeneratedQueryView(CamelModel):
    """Public shape of a generated query."""
    id: str
    query: str
    type: str
    scores: QueryScores
    metadata: dict[str, Any]
    criteria: dict[str, Optional[str]]

    @classmethod
    def from_query(cls, query: GeneratedQuery) -> "GeneratedQueryView":
        return cls(
            id=query.id,
            query=query.generated_query,
            type=query.query_type.value,
            scores=query.scores,
            metadata=query.metadata,
            criteria=query.criteria,
        )


class QueryGenerationData(CamelModel):
    """data payload of a successful POST."""
    search_id: str
    batch_id: str
    original_query: str
    queries: list[GeneratedQueryView]
    metrics: QueryGenerationMetrics
    status: str
    errors: Optional[list[str]] = None

    @classmethod
    def from_result(cls, result: QueryGenerationResult) -> "QueryGenerationData":
        return cls(
            search_id=result.search_id,
            batch_id=result.batch_id,
            original_query=result.original_query,
            queries=[GeneratedQueryView.from_query(q) for q in result.queries],
            metrics=result.metrics,
            status=result.status,
            errors=result.errors,
        )


class SuccessEnvelope(CamelModel):
    success: bool = True
    data: Any
    timestamp: str = Field(default_factory=_now_iso)
    correlation_id: str


class ErrorDetail(CamelModel):
    code: str
    message: str
    type: str
    details: Optional[dict[str, Any]] = None


class ErrorEnvelope(CamelModel):
    success: bool = False
    error: ErrorDetail
    timestamp: str = Field(default_factory=_now_iso)
    correlation_id: str
