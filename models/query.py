"""
Query models - requests, generated queries and pipeline results.

These models flow through querygen.service and out of the HTTP API. Fields
serialize with camelCase aliases (searchId, batchId, ...) and accept either
casing on input.
"""

from datetime import datetime, timezone
from typing import Any, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from models.enums import EnhancementType, QueryStatus, QueryType


CRITERIA_DIMENSIONS = ("countries", "categories", "beats", "languages", "topics")


class CamelModel(BaseModel):
    """Base model with camelCase aliases."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class QueryCriteria(CamelModel):
    """Structured filter dimensions for a query generation request."""
    countries: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    beats: list[str] = Field(default_factory=list)
    languages: list[str] = Field(default_factory=list)
    topics: list[str] = Field(default_factory=list)

    @field_validator(*CRITERIA_DIMENSIONS, mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        return [] if value is None else value

    def first(self, dimension: str) -> Optional[str]:
        """First value of a dimension, or None when empty."""
        values = getattr(self, dimension)
        return values[0] if values else None

    def snapshot(self) -> dict[str, Optional[str]]:
        """First value per dimension, as stored on each generated query."""
        return {
            "country": self.first("countries"),
            "category": self.first("categories"),
            "beat": self.first("beats"),
            "language": self.first("languages"),
            "topic": self.first("topics"),
        }

    def is_empty(self) -> bool:
        return not any(getattr(self, d) for d in CRITERIA_DIMENSIONS)


class QueryGenerationOptions(CamelModel):
    """Caller-tunable knobs for a single run."""
    max_queries: int = Field(default=10, ge=1, le=50)
    min_relevance_score: float = Field(default=0.3, ge=0.0, le=1.0)
    enable_ai_enhancement: bool = True


class QueryGenerationRequest(CamelModel):
    """
    A single query generation run.

    user_id is the caller identity and is used for attribution only.
    """
    search_id: str
    batch_id: str
    original_query: str = Field(min_length=1, max_length=1000)
    criteria: QueryCriteria = Field(default_factory=QueryCriteria)
    options: QueryGenerationOptions = Field(default_factory=QueryGenerationOptions)
    user_id: Optional[str] = None


class QueryScores(CamelModel):
    """Per-factor scores, each clamped to [0, 1]."""
    relevance: float = Field(default=0.0, ge=0.0, le=1.0)
    diversity: float = Field(default=0.0, ge=0.0, le=1.0)
    complexity: float = Field(default=0.0, ge=0.0, le=1.0)
    specificity: float = Field(default=0.0, ge=0.0, le=1.0)
    overall: float = Field(default=0.0, ge=0.0, le=1.0)


class GeneratedQuery(CamelModel):
    """
    One candidate query produced during a run.

    metadata keys used by the pipeline: templateUsed, aiEnhanced,
    enhancementType, processingMs, duplicateOf, duplicateReason, similarity,
    selected, filterReason.
    """
    id: str
    search_id: str
    batch_id: str
    original_query: str
    generated_query: str
    template_id: Optional[str] = None
    query_type: QueryType
    criteria: dict[str, Optional[str]] = Field(default_factory=dict)
    scores: QueryScores = Field(default_factory=QueryScores)
    metadata: dict[str, Any] = Field(default_factory=dict)
    status: QueryStatus = QueryStatus.PENDING
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class QueryGenerationMetrics(CamelModel):
    """Aggregate numbers for a run."""
    total_generated: int = 0  # candidate pool before dedup/filter
    total_duplicates: int = 0
    average_score: float = 0.0
    diversity_score: float = 0.0
    processing_time_ms: int = 0
    coverage_by_criteria: dict[str, list[str]] = Field(default_factory=dict)  # requested values mentioned by final queries


class QueryGenerationResult(CamelModel):
    """
    Output of QueryGenerationService.generate_queries().

    queries holds only the final, selected queries.
    """
    search_id: str
    batch_id: str
    original_query: str
    queries: list[GeneratedQuery]
    metrics: QueryGenerationMetrics
    status: Literal["completed", "partial", "failed"]
    errors: Optional[list[str]] = None


class QueryEnhancementRequest(CamelModel):
    """Input to the AI enhancer for one enhancement type."""
    base_query: str
    criteria: QueryCriteria = Field(default_factory=QueryCriteria)
    enhancement_type: EnhancementType
    target_count: int = Field(default=5, ge=1)
    diversity_boost: bool = True
