"""
Shared Pydantic models for the Media Query Generator.

These models define the data structures that flow between pipeline stages,
ensuring type safety and validation across the entire system.
"""

from models.enums import (
    TemplateType,
    QueryType,
    QueryStatus,
    LogStatus,
    OperationType,
    EnhancementType,
    DedupMethod,
)
from models.template import (
    QueryTemplate,
    RenderedQuery,
    TemplateStats,
    template_rank_key,
)
from models.query import (
    CamelModel,
    QueryCriteria,
    QueryGenerationOptions,
    QueryGenerationRequest,
    QueryScores,
    GeneratedQuery,
    QueryGenerationMetrics,
    QueryGenerationResult,
    QueryEnhancementRequest,
)
from models.scoring import (
    ScoringWeights,
    ScoringCandidate,
    RankedQuery,
    ScoringStats,
)
from models.deduplication import (
    DuplicateMatch,
    DeduplicationStats,
    DeduplicationResult,
    SimilarQuery,
)
from models.performance import PerformanceLogEntry

__all__ = [
    # Enums
    "TemplateType",
    "QueryType",
    "QueryStatus",
    "LogStatus",
    "OperationType",
    "EnhancementType",
    "DedupMethod",
    # Template
    "QueryTemplate",
    "RenderedQuery",
    "TemplateStats",
    "template_rank_key",
    # Query
    "CamelModel",
    "QueryCriteria",
    "QueryGenerationOptions",
    "QueryGenerationRequest",
    "QueryScores",
    "GeneratedQuery",
    "QueryGenerationMetrics",
    "QueryGenerationResult",
    "QueryEnhancementRequest",
    # Scoring
    "ScoringWeights",
    "ScoringCandidate",
    "RankedQuery",
    "ScoringStats",
    # Deduplication
    "DuplicateMatch",
    "DeduplicationStats",
    "DeduplicationResult",
    "SimilarQuery",
    # Performance
    "PerformanceLogEntry",
]
