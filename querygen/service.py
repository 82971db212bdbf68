#!/usr/bin/env python3
"""
Query Generation Service - coordinates the full query generation pipeline.

Stages run in order, each writing one performance log entry:
    template-selection -> [ai-enhancement] -> scoring -> deduplication -> validation

Usage:
    python -m querygen.service "tech journalists"
    python -m querygen.service "tech journalists" --category Technology --max-queries 5
    python -m querygen.service "climate reporters" --country GB --no-ai --json
"""

import argparse
import asyncio
import logging
import math
import re
import sys
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv

from config.settings import Settings, configure_logging, settings as default_settings
from db.connection import init_db
from db.store import QueryStore
from models.deduplication import DeduplicationResult
from models.enums import EnhancementType, LogStatus, OperationType, QueryStatus, QueryType
from models.performance import PerformanceLogEntry
from models.query import (
    GeneratedQuery,
    QueryCriteria,
    QueryEnhancementRequest,
    QueryGenerationMetrics,
    QueryGenerationOptions,
    QueryGenerationRequest,
    QueryGenerationResult,
)
from models.scoring import ScoringCandidate
from models.template import RenderedQuery
from querygen.ai_enhancement import OpenAIQueryProvider, QueryEnhancer
from querygen.deduplication import QueryDeduplicator
from querygen.errors import PersistenceError, PipelineError
from querygen.scoring import COUNTRY_SYNONYMS, QueryScorer
from querygen.template_engine import TemplateEngine

logger = logging.getLogger(__name__)

ENHANCEMENT_QUERY_TYPES = {
    EnhancementType.EXPANSION: QueryType.EXPANDED,
    EnhancementType.REFINEMENT: QueryType.REFINED,
    EnhancementType.LOCALIZATION: QueryType.LOCALIZED,
}

COVERAGE_DIMENSIONS = ("countries", "categories", "beats", "languages")


@dataclass
class StageOutcome:
    """Settled result of one enhancement type."""
    enhancement_type: EnhancementType
    queries: list[str] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class _StageLog:
    metadata: dict = field(default_factory=dict)
    failed: bool = False


def _request_summary(request: QueryGenerationRequest) -> dict:
    return {
        "searchId": request.search_id,
        "batchId": request.batch_id,
        "originalQuery": request.original_query,
        "criteria": request.criteria.model_dump(by_alias=True),
    }


def _mentions(text: str, term: str) -> bool:
    return re.search(rf"\b{re.escape(term.lower())}\b", text) is not None


def coverage_by_criteria(queries: list[GeneratedQuery], criteria: QueryCriteria) -> dict[str, list[str]]:
    """
    Requested criteria values mentioned by at least one query.

    Countries also match their common names ("US" -> "usa", "american").
    """
    texts = [q.generated_query.lower() for q in queries]
    coverage = {}
    for dimension in COVERAGE_DIMENSIONS:
        covered = []
        for value in getattr(criteria, dimension):
            terms = [value]
            if dimension == "countries":
                terms.extend(COUNTRY_SYNONYMS.get(value.upper(), ()))
            if any(_mentions(text, term) for text in texts for term in terms):
                covered.append(value)
        coverage[dimension] = covered
    return coverage


# =============================================================================
# SERVICE
# =============================================================================

class QueryGenerationService:
    """
    Runs one query generation request end to end.

    Args:
        store: Persistence store (defaults to QueryStore over SessionLocal)
        template_engine: Defaults to a TemplateEngine over the store
        enhancer: Optional; AI enhancement is skipped when None
        scorer: Defaults to QueryScorer with the configured weights
        deduplicator: Defaults to the configured method and threshold
        settings: Defaults to the values in config.settings
    """

    def __init__(
        self,
        store: QueryStore = None,
        template_engine: TemplateEngine = None,
        enhancer: QueryEnhancer = None,
        scorer: QueryScorer = None,
        deduplicator: QueryDeduplicator = None,
        settings: Settings = None,
    ):
        self.settings = settings or default_settings
        self.store = store if store is not None else QueryStore()
        self.template_engine = template_engine if template_engine is not None else TemplateEngine(self.store)
        self.enhancer = enhancer
        self.scorer = scorer if scorer is not None else QueryScorer()
        self.deduplicator = deduplicator if deduplicator is not None else QueryDeduplicator(
            method=self.settings.dedup_method,
            similarity_threshold=self.settings.similarity_threshold,
        )

    async def initialize(self) -> int:
        """Seed the default templates. Returns the number inserted."""
        return await self.template_engine.seed_default_templates()

    async def close(self) -> None:
        if self.enhancer is not None:
            await self.enhancer.optimizer.close()

    @property
    def ai_available(self) -> bool:
        return self.enhancer is not None and self.settings.ai_enabled

    # =========================================================================
    # PIPELINE
    # =========================================================================

    async def generate_queries(
        self,
        request: QueryGenerationRequest,
        cancel_event: asyncio.Event = None,
    ) -> QueryGenerationResult:
        """
        Generate, score, deduplicate and select queries for a request.

        Args:
            request: Original query, criteria and options
            cancel_event: Checked between stages; when set the run stops

        Returns:
            QueryGenerationResult with the final queries ("completed") or an
            empty list and an explanation in errors ("partial")

        Raises:
            PipelineError: GENERATION_FAILED when a stage fails,
                GENERATION_CANCELLED when cancel_event is set
        """
        started = time.perf_counter()
        options = request.options
        warnings: list[str] = []
        logger.info(
            "Generating queries for search %s batch %s (user=%s)",
            request.search_id, request.batch_id, request.user_id or "anonymous",
        )

        def elapsed_ms() -> int:
            return int((time.perf_counter() - started) * 1000)

        # Template selection
        self._check_cancelled(cancel_event, request)
        async with self._stage(request, OperationType.TEMPLATE_SELECTION) as log:
            templates = await self.template_engine.select_templates(request)
            rendered = await self.template_engine.generate_from_templates(templates, request)
            candidates = [self._from_template(r, request, elapsed_ms()) for r in rendered]
            log.metadata.update(templatesSelected=len(templates), queriesGenerated=len(candidates))

        # AI enhancement
        if options.enable_ai_enhancement and self.ai_available:
            self._check_cancelled(cancel_event, request)
            async with self._stage(request, OperationType.AI_ENHANCEMENT) as log:
                outcomes = await self._run_enhancements(request)
                added = 0
                for outcome in outcomes:
                    if outcome.error is not None:
                        message = f"AI {outcome.enhancement_type.value} enhancement failed: {outcome.error}"
                        logger.warning(message)
                        warnings.append(message)
                        continue
                    for query in outcome.queries:
                        candidates.append(self._from_enhancement(query, outcome.enhancement_type, request, elapsed_ms()))
                        added += 1
                log.failed = bool(outcomes) and all(o.error is not None for o in outcomes)
                log.metadata.update(
                    enhancementTypes=[o.enhancement_type.value for o in outcomes],
                    failedTypes=[o.enhancement_type.value for o in outcomes if o.error is not None],
                    queriesGenerated=added,
                )

        by_id = {c.id: c for c in candidates}

        # Scoring
        self._check_cancelled(cancel_event, request)
        async with self._stage(request, OperationType.SCORING) as log:
            for candidate in candidates:
                candidate.status = QueryStatus.PROCESSING
            ranked = self.scorer.score_and_rank_queries([
                ScoringCandidate(
                    id=c.id,
                    query=c.generated_query,
                    original_query=request.original_query,
                    criteria=request.criteria,
                    metadata=c.metadata,
                )
                for c in candidates
            ])
            for item in ranked:
                by_id[item.id].scores = item.scores
            await self._record_template_confidence(candidates)
            log.metadata.update(
                queriesScored=len(ranked),
                averageScore=sum(r.scores.overall for r in ranked) / len(ranked) if ranked else 0.0,
            )

        # Deduplication
        self._check_cancelled(cancel_event, request)
        async with self._stage(request, OperationType.DEDUPLICATION) as log:
            if self.settings.dedup_enabled:
                dedup = self.deduplicator.deduplicate_queries(ranked)
            else:
                dedup = DeduplicationResult(unique_queries=[r.id for r in ranked])
            for match in dedup.duplicates:
                duplicate = by_id[match.query_id]
                duplicate.status = QueryStatus.CANCELLED
                duplicate.metadata.update(
                    duplicateOf=match.duplicate_of,
                    duplicateReason=match.reason,
                    similarity=match.similarity,
                )
            unique = [by_id[query_id] for query_id in dedup.unique_queries]
            log.metadata.update(uniqueQueries=len(unique), duplicatesRemoved=len(dedup.duplicates))

        # Validation: filter, truncate, persist
        self._check_cancelled(cancel_event, request)
        async with self._stage(request, OperationType.VALIDATION) as log:
            eligible = [q for q in unique if q.scores.overall >= options.min_relevance_score]
            final = eligible[:options.max_queries]
            selected_ids = {q.id for q in final}
            for query in unique:
                query.status = QueryStatus.COMPLETED
                query.metadata["selected"] = query.id in selected_ids
                if query.id not in selected_ids:
                    query.metadata["filterReason"] = (
                        "below_min_score" if query.scores.overall < options.min_relevance_score
                        else "max_queries_exceeded"
                    )
            persisted = await self._persist(candidates, request, warnings)
            log.metadata.update(finalQueries=len(final), persisted=persisted)

        if not final:
            if not candidates:
                message = "No candidate queries were generated"
            else:
                best = max(q.scores.overall for q in unique)
                message = (
                    f"No candidates met minimum relevance score "
                    f"{options.min_relevance_score:.2f} (best {best:.2f})"
                )
            logger.warning(message)
            warnings.append(message)

        metrics = QueryGenerationMetrics(
            total_generated=len(candidates),
            total_duplicates=len(dedup.duplicates),
            average_score=sum(q.scores.overall for q in final) / len(final) if final else 0.0,
            diversity_score=sum(q.scores.diversity for q in final) / len(final) if final else 0.0,
            processing_time_ms=elapsed_ms(),
            coverage_by_criteria=coverage_by_criteria(final, request.criteria),
        )
        logger.info(
            "Generated %d queries for search %s (%d candidates, %d duplicates) in %dms",
            len(final), request.search_id, metrics.total_generated,
            metrics.total_duplicates, metrics.processing_time_ms,
        )
        return QueryGenerationResult(
            search_id=request.search_id,
            batch_id=request.batch_id,
            original_query=request.original_query,
            queries=final,
            metrics=metrics,
            status="completed" if final else "partial",
            errors=warnings or None,
        )

    # =========================================================================
    # STAGE HELPERS
    # =========================================================================

    @asynccontextmanager
    async def _stage(self, request: QueryGenerationRequest, operation: OperationType):
        """Time a stage, write its performance log, and wrap failures in PipelineError."""
        log = _StageLog()
        start_time = datetime.now(timezone.utc)
        try:
            yield log
        except PipelineError as e:
            log.failed = True
            log.metadata["error"] = e.message
            raise
        except Exception as e:
            log.failed = True
            log.metadata["error"] = str(e)
            logger.error("Stage %s failed for search %s: %s", operation.value, request.search_id, e)
            raise PipelineError(
                f"Query generation failed during {operation.value}: {e}",
                code="GENERATION_FAILED",
                details={"request": _request_summary(request), "stage": operation.value},
            ) from e
        finally:
            await self._write_performance_log(request, operation, start_time, log)

    async def _write_performance_log(
        self,
        request: QueryGenerationRequest,
        operation: OperationType,
        start_time: datetime,
        log: _StageLog,
    ) -> None:
        if not self.settings.performance_tracking_enabled:
            return
        end_time = datetime.now(timezone.utc)
        entry = PerformanceLogEntry(
            search_id=request.search_id,
            batch_id=request.batch_id,
            operation=operation,
            start_time=start_time,
            end_time=end_time,
            duration_ms=int((end_time - start_time).total_seconds() * 1000),
            status=LogStatus.FAILED if log.failed else LogStatus.COMPLETED,
            metadata=log.metadata,
        )
        try:
            await asyncio.to_thread(self.store.create_performance_log, entry)
        except Exception as e:
            logger.warning("Could not write %s performance log: %s", operation.value, e)

    @staticmethod
    def _check_cancelled(cancel_event: Optional[asyncio.Event], request: QueryGenerationRequest) -> None:
        if cancel_event is not None and cancel_event.is_set():
            logger.info("Query generation cancelled for search %s", request.search_id)
            raise PipelineError(
                "Query generation was cancelled",
                code="GENERATION_CANCELLED",
                details={"request": _request_summary(request)},
            )

    @staticmethod
    def _from_template(rendered: RenderedQuery, request: QueryGenerationRequest, processing_ms: int) -> GeneratedQuery:
        return GeneratedQuery(
            id=str(uuid.uuid4()),
            search_id=request.search_id,
            batch_id=request.batch_id,
            original_query=request.original_query,
            generated_query=rendered.query,
            template_id=rendered.template_id,
            query_type=QueryType.BASE,
            criteria=request.criteria.snapshot(),
            metadata={
                "templateUsed": rendered.template_name,
                "templateType": rendered.template_type.value,
                "aiEnhanced": False,
                "processingMs": processing_ms,
            },
        )

    @staticmethod
    def _from_enhancement(
        query: str,
        enhancement_type: EnhancementType,
        request: QueryGenerationRequest,
        processing_ms: int,
    ) -> GeneratedQuery:
        return GeneratedQuery(
            id=str(uuid.uuid4()),
            search_id=request.search_id,
            batch_id=request.batch_id,
            original_query=request.original_query,
            generated_query=query,
            query_type=ENHANCEMENT_QUERY_TYPES.get(enhancement_type, QueryType.ENHANCED),
            criteria=request.criteria.snapshot(),
            metadata={
                "aiEnhanced": True,
                "enhancementType": enhancement_type.value,
                "processingMs": processing_ms,
            },
        )

    async def _run_enhancements(self, request: QueryGenerationRequest) -> list[StageOutcome]:
        """Run every enhancement type concurrently and settle all of them."""
        types = [EnhancementType.EXPANSION, EnhancementType.REFINEMENT]
        if request.criteria.countries or request.criteria.languages:
            types.append(EnhancementType.LOCALIZATION)
        target_count = math.ceil(request.options.max_queries / len(types))

        results = await asyncio.gather(
            *(
                self.enhancer.enhance_query(QueryEnhancementRequest(
                    base_query=request.original_query,
                    criteria=request.criteria,
                    enhancement_type=enhancement_type,
                    target_count=target_count,
                ))
                for enhancement_type in types
            ),
            return_exceptions=True,
        )

        outcomes = []
        for enhancement_type, result in zip(types, results):
            if isinstance(result, Exception):
                outcomes.append(StageOutcome(enhancement_type, error=getattr(result, "message", str(result))))
            else:
                outcomes.append(StageOutcome(enhancement_type, queries=list(result)))
        return outcomes

    async def _record_template_confidence(self, candidates: list[GeneratedQuery]) -> None:
        for candidate in candidates:
            if not candidate.template_id:
                continue
            try:
                await self.template_engine.record_confidence(candidate.template_id, candidate.scores.overall)
            except Exception as e:
                logger.warning("Could not update confidence for template %s: %s", candidate.template_id, e)

    async def _persist(
        self,
        queries: list[GeneratedQuery],
        request: QueryGenerationRequest,
        warnings: list[str],
    ) -> int:
        """
        Upsert every candidate, a bounded number at a time.

        Returns:
            Number of queries written

        Raises:
            PersistenceError: every write failed
        """
        if not queries:
            return 0
        semaphore = asyncio.Semaphore(self.settings.persistence_max_concurrency)

        async def save(query: GeneratedQuery) -> None:
            async with semaphore:
                try:
                    await asyncio.to_thread(self.store.upsert_generated_query, query, request.user_id)
                except Exception as e:
                    raise PersistenceError(
                        f"Failed to persist query {query.id}: {e}",
                        details={"query_id": query.id},
                    ) from e

        outcomes = await asyncio.gather(*(save(q) for q in queries), return_exceptions=True)
        failures = [o for o in outcomes if isinstance(o, Exception)]
        for failure in failures:
            message = getattr(failure, "message", str(failure))
            logger.warning(message)
            warnings.append(message)

        if len(failures) == len(queries):
            raise PersistenceError(
                f"Failed to persist all {len(queries)} generated queries",
                details={"failures": len(failures)},
            )
        return len(queries) - len(failures)

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    async def get_stats(self) -> dict:
        """Template stats, stored query count, AI usage and optimizer stats."""
        templates = await self.template_engine.get_template_stats()
        stats = {
            "templates": templates.model_dump(mode="json"),
            "generatedQueries": await asyncio.to_thread(self.store.count_generated_queries),
            "templateCache": self.template_engine.cache.stats(),
            "ai": None,
        }
        if self.enhancer is not None:
            stats["ai"] = {
                "usage": self.enhancer.get_usage(),
                "optimizer": self.enhancer.optimizer.get_stats(),
                "recommendations": self.enhancer.optimizer.get_recommendations(),
            }
        return stats

    def get_config(self) -> dict:
        """Effective configuration for this service instance."""
        s = self.settings
        return {
            "aiEnabled": self.ai_available,
            "model": s.query_model if self.enhancer is not None else None,
            "scoringWeights": self.scorer.weights.model_dump(),
            "minScore": s.min_score,
            "deduplication": {
                "enabled": s.dedup_enabled,
                "method": self.deduplicator.method.value,
                "similarityThreshold": self.deduplicator.similarity_threshold,
            },
            "templates": {
                "cacheTtl": self.template_engine.cache_ttl,
                "maxPerQuery": self.template_engine.max_templates,
            },
            "defaults": QueryGenerationOptions().model_dump(by_alias=True),
            "persistenceMaxConcurrency": s.persistence_max_concurrency,
            "performanceTracking": s.performance_tracking_enabled,
        }


def build_service(store: QueryStore = None, settings: Settings = None) -> QueryGenerationService:
    """Service with an OpenAI enhancer when AI is enabled and a key is configured."""
    settings = settings or default_settings
    enhancer = None
    if settings.ai_enabled:
        if settings.openai_api_key:
            enhancer = QueryEnhancer(OpenAIQueryProvider())
        else:
            logger.warning("OPENAI_KEY not set - AI enhancement disabled")
    return QueryGenerationService(store=store, enhancer=enhancer, settings=settings)


# =============================================================================
# CLI
# =============================================================================

def _build_request(args: argparse.Namespace) -> QueryGenerationRequest:
    return QueryGenerationRequest(
        search_id=args.search_id or f"cli-{uuid.uuid4().hex[:8]}",
        batch_id=str(uuid.uuid4()),
        original_query=args.query,
        criteria=QueryCriteria(
            countries=args.country,
            categories=args.category,
            beats=args.beat,
            languages=args.language,
            topics=args.topic,
        ),
        options=QueryGenerationOptions(
            max_queries=args.max_queries,
            min_relevance_score=args.min_score,
            enable_ai_enhancement=not args.no_ai,
        ),
        user_id="cli",
    )


async def _run_cli(args: argparse.Namespace) -> QueryGenerationResult:
    init_db()
    service = build_service()
    try:
        seeded = await service.initialize()
        if seeded and not args.json:
            print(f"   🌱 Seeded {seeded} default templates")
        return await service.generate_queries(_build_request(args))
    finally:
        await service.close()


def _print_result(result: QueryGenerationResult) -> None:
    metrics = result.metrics
    print(f"\n{'='*70}")
    print("✅ QUERY GENERATION COMPLETE" if result.status == "completed" else "⚠️  QUERY GENERATION PARTIAL")
    print(f"{'='*70}")
    print(f"   Candidates:       {metrics.total_generated}")
    print(f"   Duplicates:       {metrics.total_duplicates}")
    print(f"   Selected:         {len(result.queries)}")
    print(f"   Average score:    {metrics.average_score:.3f}")
    print(f"   Duration:         {metrics.processing_time_ms} ms")

    if result.queries:
        print("\n🔥 TOP QUERIES:")
        for i, q in enumerate(result.queries):
            source = q.metadata.get("templateUsed") or q.metadata.get("enhancementType", "")
            print(f"   {i+1}. [{q.scores.overall:.2f}] {q.generated_query}")
            print(f"      {q.query_type.value} · {source}")

    for warning in result.errors or []:
        print(f"   ⚠️  {warning}")


def main():
    parser = argparse.ArgumentParser(
        description="Generate ranked media-contact search queries"
    )
    parser.add_argument("query", help="Free-text search request")
    parser.add_argument(
        "--country", action="append", default=[],
        help="Country code (repeatable)"
    )
    parser.add_argument(
        "--category", action="append", default=[],
        help="Media category (repeatable)"
    )
    parser.add_argument(
        "--beat", action="append", default=[],
        help="Journalist beat (repeatable)"
    )
    parser.add_argument(
        "--language", action="append", default=[],
        help="Language (repeatable)"
    )
    parser.add_argument(
        "--topic", action="append", default=[],
        help="Topic (repeatable)"
    )
    parser.add_argument(
        "--max-queries", type=int, default=10,
        help="Maximum number of queries to return (1-50)"
    )
    parser.add_argument(
        "--min-score", type=float, default=default_settings.min_score,
        help="Minimum overall score for a query to be returned"
    )
    parser.add_argument(
        "--search-id", default=None,
        help="Search id to record the run under"
    )
    parser.add_argument(
        "--no-ai", action="store_true",
        help="Skip AI enhancement"
    )
    parser.add_argument(
        "--json", action="store_true",
        help="Print the result as JSON"
    )
    parser.add_argument(
        "--log-level", default=None,
        help="Override LOG_LEVEL"
    )
    args = parser.parse_args()

    # Load environment variables
    load_dotenv(default_settings.project_root / ".env")
    configure_logging(args.log_level)

    if not args.json:
        print("=" * 70)
        print("🚀 MEDIA QUERY GENERATOR")
        print(f"   Query: {args.query}")
        print("=" * 70)
        print("\n🔍 Generating queries...")

    try:
        result = asyncio.run(_run_cli(args))
    except PipelineError as e:
        print(f"❌ {e.code}: {e.message}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(result.model_dump_json(by_alias=True, indent=2))
    else:
        _print_result(result)


if __name__ == "__main__":
    main()
