"""
Deduplication models.
"""

from pydantic import BaseModel, Field


class DuplicateMatch(BaseModel):
    """A candidate judged to duplicate an already-accepted query."""
    query_id: str
    duplicate_of: str
    reason: str
    similarity: float


class DeduplicationStats(BaseModel):
    total_processed: int = 0
    duplicates_removed: int = 0
    unique_queries: int = 0


class DeduplicationResult(BaseModel):
    """unique_queries holds ids in visit order (highest overall first)."""
    unique_queries: list[str] = Field(default_factory=list)
    duplicates: list[DuplicateMatch] = Field(default_factory=list)
    deduplication_stats: DeduplicationStats = Field(default_factory=DeduplicationStats)


class SimilarQuery(BaseModel):
    """Result row of Deduplicator.find_similar_queries()."""
    query_id: str
    query: str
    similarity: float
