"""SQLAlchemy ORM models for the Media Query Generator."""
from datetime import datetime, timezone
from uuid import uuid4
from sqlalchemy import (
    Column, String, Float, Integer, Boolean, DateTime, Text,
    ForeignKey, Enum, Index, JSON
)
from sqlalchemy.orm import DeclarativeBase, relationship

from models.enums import (
    LogStatus,
    OperationType,
    QueryStatus,
    QueryType,
    TemplateType,
)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _uuid() -> str:
    return str(uuid4())


# =============================================================================
# MODELS
# =============================================================================

class QueryTemplate(Base):
    """Reusable query template. Deactivated, never deleted."""
    __tablename__ = "query_templates"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    template = Column(Text, nullable=False)
    type = Column(Enum(TemplateType), nullable=False)

    # Criterion this template applies to (*_SPECIFIC types only)
    country = Column(String(10))
    category = Column(String(100))
    beat = Column(String(100))
    language = Column(String(20))

    variables = Column(JSON, default=dict)  # {"name": "value"}
    priority = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)

    # Performance counters
    usage_count = Column(Integer, default=0)
    success_count = Column(Integer, default=0)
    average_confidence = Column(Float, default=0.0)

    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    generated_queries = relationship("GeneratedQuery", back_populates="template")

    __table_args__ = (
        Index("idx_query_templates_type_active", "type", "is_active"),
    )


class GeneratedQuery(Base):
    """A candidate query produced by a generation run."""
    __tablename__ = "generated_queries"

    id = Column(String(36), primary_key=True)
    search_id = Column(String(255), nullable=False, index=True)
    batch_id = Column(String(255), nullable=False, index=True)
    template_id = Column(String(36), ForeignKey("query_templates.id"))

    original_query = Column(Text, nullable=False)
    generated_query = Column(Text, nullable=False)
    query_type = Column(Enum(QueryType), nullable=False)

    # Criteria snapshot (first value per dimension)
    country = Column(String(10))
    category = Column(String(100))
    beat = Column(String(100))
    language = Column(String(20))
    topic = Column(String(255))

    # Scores
    relevance_score = Column(Float, default=0.0)
    diversity_score = Column(Float, default=0.0)
    complexity_score = Column(Float, default=0.0)
    specificity_score = Column(Float, default=0.0)
    overall_score = Column(Float, default=0.0)

    # "metadata" is reserved on declarative classes
    query_metadata = Column("metadata", JSON, default=dict)
    status = Column(Enum(QueryStatus), default=QueryStatus.PENDING)
    user_id = Column(String(255))  # attribution only

    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    # Relationships
    template = relationship("QueryTemplate", back_populates="generated_queries")

    __table_args__ = (
        Index("idx_generated_queries_search_batch", "search_id", "batch_id"),
        Index("idx_generated_queries_status", "status"),
    )


class QueryPerformanceLog(Base):
    """Append-only timing record, one per pipeline stage per run."""
    __tablename__ = "query_performance_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    search_id = Column(String(255), nullable=False, index=True)
    batch_id = Column(String(255), nullable=False)

    operation = Column(Enum(OperationType), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    duration_ms = Column(Integer, nullable=False)
    status = Column(Enum(LogStatus), nullable=False)
    log_metadata = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("idx_query_performance_logs_operation", "operation"),
    )
