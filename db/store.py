"""
Persistence store for templates, generated queries and performance logs.

All methods are synchronous and open a short-lived session each call. The
pipeline dispatches them to worker threads with asyncio.to_thread().
SQLAlchemy errors propagate to the caller.
"""
from typing import Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import sessionmaker

from db.connection import SessionLocal
from db.models import (
    QueryTemplate as QueryTemplateDB,
    GeneratedQuery as GeneratedQueryDB,
    QueryPerformanceLog as QueryPerformanceLogDB,
)
from models.enums import TemplateType
from models.performance import PerformanceLogEntry
from models.query import GeneratedQuery, QueryCriteria, QueryScores
from models.template import QueryTemplate, template_rank_key


class QueryStore:
    """SQLAlchemy-backed read/write contract used by the pipeline."""

    def __init__(self, session_factory: sessionmaker = None):
        self.session_factory = session_factory or SessionLocal

    # =========================================================================
    # TEMPLATES
    # =========================================================================

    def count_templates(self, active_only: bool = False) -> int:
        db = self.session_factory()
        try:
            query = db.query(func.count(QueryTemplateDB.id))
            if active_only:
                query = query.filter(QueryTemplateDB.is_active.is_(True))
            return query.scalar() or 0
        finally:
            db.close()

    def create_template(self, **fields) -> QueryTemplate:
        """Insert a template and return it."""
        db = self.session_factory()
        try:
            row = QueryTemplateDB(**fields)
            db.add(row)
            db.commit()
            db.refresh(row)
            return QueryTemplate.model_validate(row)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def list_active_templates(self, criteria: QueryCriteria, limit: int = 50) -> list[QueryTemplate]:
        """
        Active templates applicable to the criteria, best first.

        BASE templates always apply. *_SPECIFIC templates apply when their
        criterion value appears in the matching dimension. COMPOSITE templates
        apply once any selection dimension (countries, categories, beats,
        languages) has a value.
        """
        applicable = [QueryTemplateDB.type == TemplateType.BASE]
        specific = (
            (TemplateType.COUNTRY_SPECIFIC, QueryTemplateDB.country, criteria.countries),
            (TemplateType.CATEGORY_SPECIFIC, QueryTemplateDB.category, criteria.categories),
            (TemplateType.BEAT_SPECIFIC, QueryTemplateDB.beat, criteria.beats),
            (TemplateType.LANGUAGE_SPECIFIC, QueryTemplateDB.language, criteria.languages),
        )
        for template_type, column, values in specific:
            if values:
                applicable.append(and_(QueryTemplateDB.type == template_type, column.in_(values)))
        if any(values for _, _, values in specific):
            applicable.append(QueryTemplateDB.type == TemplateType.COMPOSITE)

        db = self.session_factory()
        try:
            rows = (
                db.query(QueryTemplateDB)
                .filter(QueryTemplateDB.is_active.is_(True), or_(*applicable))
                .all()
            )
            templates = [QueryTemplate.model_validate(r) for r in rows]
        finally:
            db.close()

        templates.sort(key=template_rank_key)
        return templates[:limit]

    def increment_template_stats(self, template_id: str, success: bool) -> None:
        """usage_count += 1 always; success_count += 1 when success."""
        values = {QueryTemplateDB.usage_count: QueryTemplateDB.usage_count + 1}
        if success:
            values[QueryTemplateDB.success_count] = QueryTemplateDB.success_count + 1

        db = self.session_factory()
        try:
            db.query(QueryTemplateDB).filter(QueryTemplateDB.id == template_id).update(
                values, synchronize_session=False
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def update_template_confidence(self, template_id: str, score: float) -> Optional[float]:
        """
        Fold a score into the template's running average_confidence.

        Samples are counted by success_count. Returns the new average, or
        None if the template does not exist.
        """
        db = self.session_factory()
        try:
            row = db.query(QueryTemplateDB).filter(QueryTemplateDB.id == template_id).first()
            if row is None:
                return None
            samples = max(row.success_count or 0, 1)
            current = row.average_confidence or 0.0
            row.average_confidence = (current * (samples - 1) + score) / samples
            db.commit()
            return row.average_confidence
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def template_counts_by_type(self) -> dict[str, int]:
        db = self.session_factory()
        try:
            rows = (
                db.query(QueryTemplateDB.type, func.count(QueryTemplateDB.id))
                .group_by(QueryTemplateDB.type)
                .all()
            )
            return {template_type.value: count for template_type, count in rows}
        finally:
            db.close()

    def top_templates(self, limit: int = 10) -> list[QueryTemplate]:
        """Best performers by success_count, then average_confidence."""
        db = self.session_factory()
        try:
            rows = (
                db.query(QueryTemplateDB)
                .order_by(
                    QueryTemplateDB.success_count.desc(),
                    QueryTemplateDB.average_confidence.desc(),
                )
                .limit(limit)
                .all()
            )
            return [QueryTemplate.model_validate(r) for r in rows]
        finally:
            db.close()

    # =========================================================================
    # GENERATED QUERIES
    # =========================================================================

    def upsert_generated_query(self, query: GeneratedQuery, user_id: str = None) -> None:
        """Insert or update a generated query by id."""
        criteria = query.criteria or {}
        row = GeneratedQueryDB(
            id=query.id,
            search_id=query.search_id,
            batch_id=query.batch_id,
            template_id=query.template_id,
            original_query=query.original_query,
            generated_query=query.generated_query,
            query_type=query.query_type,
            country=criteria.get("country"),
            category=criteria.get("category"),
            beat=criteria.get("beat"),
            language=criteria.get("language"),
            topic=criteria.get("topic"),
            relevance_score=query.scores.relevance,
            diversity_score=query.scores.diversity,
            complexity_score=query.scores.complexity,
            specificity_score=query.scores.specificity,
            overall_score=query.scores.overall,
            query_metadata=query.metadata,
            status=query.status,
            user_id=user_id,
            created_at=query.created_at.replace(tzinfo=None),
        )

        db = self.session_factory()
        try:
            db.merge(row)
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def get_generated_queries(self, search_id: str, batch_id: str = None) -> list[GeneratedQuery]:
        db = self.session_factory()
        try:
            query = db.query(GeneratedQueryDB).filter(GeneratedQueryDB.search_id == search_id)
            if batch_id:
                query = query.filter(GeneratedQueryDB.batch_id == batch_id)
            return [_to_generated_query(r) for r in query.order_by(GeneratedQueryDB.created_at).all()]
        finally:
            db.close()

    def count_generated_queries(self, search_id: str = None) -> int:
        db = self.session_factory()
        try:
            query = db.query(func.count(GeneratedQueryDB.id))
            if search_id:
                query = query.filter(GeneratedQueryDB.search_id == search_id)
            return query.scalar() or 0
        finally:
            db.close()

    # =========================================================================
    # PERFORMANCE LOGS
    # =========================================================================

    def create_performance_log(self, entry: PerformanceLogEntry) -> int:
        """Append a performance log entry and return its id."""
        row = QueryPerformanceLogDB(
            search_id=entry.search_id,
            batch_id=entry.batch_id,
            operation=entry.operation,
            start_time=entry.start_time.replace(tzinfo=None),
            end_time=entry.end_time.replace(tzinfo=None),
            duration_ms=entry.duration_ms,
            status=entry.status,
            log_metadata=entry.metadata,
        )

        db = self.session_factory()
        try:
            db.add(row)
            db.commit()
            db.refresh(row)
            return row.id
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def list_performance_logs(self, search_id: str) -> list[PerformanceLogEntry]:
        db = self.session_factory()
        try:
            rows = (
                db.query(QueryPerformanceLogDB)
                .filter(QueryPerformanceLogDB.search_id == search_id)
                .order_by(QueryPerformanceLogDB.id)
                .all()
            )
            return [
                PerformanceLogEntry(
                    id=r.id,
                    search_id=r.search_id,
                    batch_id=r.batch_id,
                    operation=r.operation,
                    start_time=r.start_time,
                    end_time=r.end_time,
                    duration_ms=r.duration_ms,
                    status=r.status,
                    metadata=r.log_metadata or {},
                )
                for r in rows
            ]
        finally:
            db.close()


def _to_generated_query(row: GeneratedQueryDB) -> GeneratedQuery:
    return GeneratedQuery(
        id=row.id,
        search_id=row.search_id,
        batch_id=row.batch_id,
        original_query=row.original_query,
        generated_query=row.generated_query,
        template_id=row.template_id,
        query_type=row.query_type,
        criteria={
            "country": row.country,
            "category": row.category,
            "beat": row.beat,
            "language": row.language,
            "topic": row.topic,
        },
        scores=QueryScores(
            relevance=row.relevance_score or 0.0,
            diversity=row.diversity_score or 0.0,
            complexity=row.complexity_score or 0.0,
            specificity=row.specificity_score or 0.0,
            overall=row.overall_score or 0.0,
        ),
        metadata=row.query_metadata or {},
        status=row.status,
        created_at=row.created_at,
    )
