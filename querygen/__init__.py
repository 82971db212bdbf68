"""
Query generation pipeline.

The orchestration service lives in querygen.service (also the CLI entry
point) and is imported from there directly.
"""

from querygen.errors import (
    QueryGenerationError,
    ValidationError,
    ProviderError,
    PersistenceError,
    PipelineError,
)
from querygen.cache import CacheContext, CacheSweeper
from querygen.template_engine import TemplateEngine
from querygen.scoring import QueryScorer
from querygen.deduplication import QueryDeduplicator
from querygen.ai_enhancement import QueryEnhancer, OpenAIQueryProvider
from querygen.optimizer import AIServiceOptimizer, APIOptimizer, RateLimitExceeded

__all__ = [
    "QueryGenerationError",
    "ValidationError",
    "ProviderError",
    "PersistenceError",
    "PipelineError",
    "CacheContext",
    "CacheSweeper",
    "TemplateEngine",
    "QueryScorer",
    "QueryDeduplicator",
    "QueryEnhancer",
    "OpenAIQueryProvider",
    "AIServiceOptimizer",
    "APIOptimizer",
    "RateLimitExceeded",
]
