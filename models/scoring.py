"""
Scoring models - weight vector, scorer input and ranked output.
"""

from typing import Any, Optional
from pydantic import BaseModel, Field, model_validator

from models.query import QueryCriteria, QueryScores


class ScoringWeights(BaseModel):
    """Weight vector for the overall score. Must sum to 1.0."""
    relevance: float = Field(default=0.4, ge=0.0)
    diversity: float = Field(default=0.25, ge=0.0)
    complexity: float = Field(default=0.2, ge=0.0)
    specificity: float = Field(default=0.15, ge=0.0)

    @model_validator(mode="after")
    def _check_sum(self):
        total = self.relevance + self.diversity + self.complexity + self.specificity
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"Scoring weights must sum to 1.0 (got {total:.4f})")
        return self


class ScoringCandidate(BaseModel):
    """A candidate query handed to the scorer."""
    id: str
    query: str
    original_query: str
    criteria: QueryCriteria = Field(default_factory=QueryCriteria)
    metadata: dict[str, Any] = Field(default_factory=dict)


class RankedQuery(BaseModel):
    """A scored candidate. rank is 1-based after sorting."""
    id: str
    query: str
    scores: QueryScores
    rank: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)


class DimensionStats(BaseModel):
    min: float = 0.0
    max: float = 0.0
    avg: float = 0.0


class ScoringStats(BaseModel):
    """Distribution of overall scores plus per-dimension min/max/avg."""
    total: int
    average_score: float
    distribution: dict[str, int]  # high (> 0.8), medium (0.5-0.8), low (< 0.5)
    dimensions: dict[str, DimensionStats]
    top_query: Optional[str] = None
