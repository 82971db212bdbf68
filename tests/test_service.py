"""End-to-end tests for the query generation pipeline over a SQLite store."""
import argparse
import asyncio
from unittest.mock import Mock

import pytest

from config.settings import settings as default_settings
from models.enums import LogStatus, OperationType, QueryStatus, QueryType
from models.query import GeneratedQuery
from models.scoring import ScoringWeights
from querygen.ai_enhancement import QueryEnhancer
from querygen.errors import PipelineError
from querygen.scoring import QueryScorer
from querygen.service import QueryGenerationService, _build_request, build_service, coverage_by_criteria
from tests.helpers import FakeProvider, make_request, no_retry_config


def _settings(**overrides):
    return default_settings.model_copy(update=overrides)


async def _service(store, provider=None, **kwargs) -> QueryGenerationService:
    enhancer = QueryEnhancer(provider, optimizer_config=no_retry_config()) if provider else None
    service = QueryGenerationService(store=store, enhancer=enhancer, **kwargs)
    await service.initialize()
    return service


def _stored(query: str, id: str = "q") -> GeneratedQuery:
    return GeneratedQuery(
        id=id, search_id="s", batch_id="b", original_query="x",
        generated_query=query, query_type=QueryType.BASE,
    )


class TestTemplateOnlyRun:
    async def test_category_request_without_ai(self, store):
        service = await _service(store)
        request = make_request(categories=["Technology"], max_queries=5, enable_ai_enhancement=False)

        result = await service.generate_queries(request)

        assert result.status == "completed"
        assert result.errors is None
        assert 1 <= len(result.queries) <= 5
        scores = [q.scores.overall for q in result.queries]
        assert scores == sorted(scores, reverse=True)
        for query in result.queries:
            assert query.scores.overall >= 0.3
            assert query.query_type == QueryType.BASE
            assert query.status == QueryStatus.COMPLETED
            assert query.metadata["aiEnhanced"] is False
            assert query.metadata["selected"] is True
            assert query.metadata["templateUsed"]
            assert "{" not in query.generated_query
        assert result.metrics.total_generated == 4
        assert result.metrics.coverage_by_criteria["categories"] == ["Technology"]

    async def test_every_candidate_is_persisted_with_final_status(self, store):
        service = await _service(store)
        result = await service.generate_queries(
            make_request(categories=["Technology"], enable_ai_enhancement=False)
        )

        stored = store.get_generated_queries("search-1", "batch-1")
        assert len(stored) == result.metrics.total_generated
        selected = {q.id for q in result.queries}
        for query in stored:
            assert query.status in (QueryStatus.COMPLETED, QueryStatus.CANCELLED)
            if query.id in selected:
                assert query.metadata["selected"] is True
            elif query.status == QueryStatus.COMPLETED:
                assert query.metadata["selected"] is False
                assert query.metadata["filterReason"] in ("below_min_score", "max_queries_exceeded")
            assert query.criteria["category"] == "Technology"

    async def test_max_queries_truncates(self, store):
        service = await _service(store)
        result = await service.generate_queries(
            make_request(categories=["Technology"], max_queries=1, enable_ai_enhancement=False)
        )
        assert len(result.queries) == 1
        reasons = [
            q.metadata.get("filterReason") for q in store.get_generated_queries("search-1")
            if q.status == QueryStatus.COMPLETED and not q.metadata["selected"]
        ]
        assert "max_queries_exceeded" in reasons

    async def test_nothing_meets_min_score(self, store):
        """A complexity-only scorer and a high floor leave no query selected."""
        scorer = QueryScorer(ScoringWeights(relevance=0.0, diversity=0.0, complexity=1.0, specificity=0.0))
        service = await _service(store, scorer=scorer)

        result = await service.generate_queries(make_request(min_relevance_score=0.9, enable_ai_enhancement=False))

        assert result.queries == []
        assert result.status == "partial"
        assert result.errors == ["No candidates met minimum relevance score 0.90 (best 0.40)"]
        assert result.metrics.average_score == 0.0
        stored = store.get_generated_queries("search-1")
        assert stored[0].metadata["filterReason"] == "below_min_score"

    async def test_ai_option_is_ignored_when_no_enhancer(self, store):
        service = await _service(store)
        result = await service.generate_queries(make_request())
        assert all(not q.metadata["aiEnhanced"] for q in result.queries)
        operations = [log.operation for log in store.list_performance_logs("search-1")]
        assert OperationType.AI_ENHANCEMENT not in operations

    async def test_template_confidence_is_recorded(self, store):
        service = await _service(store)
        await service.generate_queries(make_request(enable_ai_enhancement=False))
        basic = next(t for t in store.top_templates(limit=20) if t.name == "Basic Media Search")
        assert basic.average_confidence > 0


class TestAIEnhancedRun:
    async def test_enhanced_queries_join_the_pool(self, store):
        provider = FakeProvider({
            "query_expansion": ["technology journalists covering startups"],
            "query_refinement": ["senior technology editors national newspapers"],
        })
        service = await _service(store, provider)

        result = await service.generate_queries(make_request(max_queries=10))

        assert sorted(provider.operations()) == ["query_expansion", "query_refinement"]
        assert result.metrics.total_generated == 3
        types = {q.query_type for q in store.get_generated_queries("search-1")}
        assert types == {QueryType.BASE, QueryType.EXPANDED, QueryType.REFINED}
        enhanced = [q for q in store.get_generated_queries("search-1") if q.metadata["aiEnhanced"]]
        assert {q.metadata["enhancementType"] for q in enhanced} == {"expansion", "refinement"}
        assert all(q.template_id is None for q in enhanced)

    async def test_near_identical_queries_are_collapsed(self, store):
        provider = FakeProvider({
            "query_expansion": ["tech reporters USA"],
            "query_refinement": ["Tech Reporters USA "],
        })
        service = await _service(store, provider)

        result = await service.generate_queries(make_request())

        assert result.metrics.total_duplicates == 1
        assert sum("tech reporters usa" == q.generated_query for q in result.queries) == 1
        cancelled = [q for q in store.get_generated_queries("search-1") if q.status == QueryStatus.CANCELLED]
        assert len(cancelled) == 1
        assert cancelled[0].metadata["duplicateOf"] in {q.id for q in result.queries}
        assert cancelled[0].metadata["similarity"] >= 0.8

    async def test_failed_enhancement_type_becomes_a_warning(self, store):
        provider = FakeProvider(
            {"query_expansion": ["tech reporters usa newsroom"]},
            fail={"query_localization"},
        )
        service = await _service(store, provider)

        result = await service.generate_queries(make_request(countries=["US"]))

        assert result.status == "completed"
        assert result.queries
        assert len(result.errors) == 1
        assert result.errors[0].startswith("AI localization enhancement failed:")
        logs = {log.operation: log for log in store.list_performance_logs("search-1")}
        assert logs[OperationType.AI_ENHANCEMENT].status == LogStatus.COMPLETED
        assert logs[OperationType.AI_ENHANCEMENT].metadata["failedTypes"] == ["localization"]

    async def test_all_enhancement_types_failing_still_completes(self, store):
        provider = FakeProvider(fail={"query_expansion", "query_refinement"})
        service = await _service(store, provider)

        result = await service.generate_queries(make_request())

        assert result.status == "completed"
        assert len(result.errors) == 2
        logs = {log.operation: log for log in store.list_performance_logs("search-1")}
        assert logs[OperationType.AI_ENHANCEMENT].status == LogStatus.FAILED

    async def test_target_count_is_split_across_types(self, store):
        provider = FakeProvider({"query_expansion": [f"tech reporter variant number {i}" for i in range(10)]})
        service = await _service(store, provider)

        await service.generate_queries(make_request(max_queries=4))

        expanded = [q for q in store.get_generated_queries("search-1") if q.query_type == QueryType.EXPANDED]
        assert len(expanded) == 2

    async def test_ai_disabled_in_settings(self, store):
        provider = FakeProvider({"query_expansion": ["tech reporters"]})
        service = await _service(store, provider, settings=_settings(ai_enabled=False))
        await service.generate_queries(make_request())
        assert provider.calls == []


class TestStagesAndFailures:
    async def test_one_performance_log_per_stage(self, store):
        provider = FakeProvider({"query_expansion": ["tech reporters usa"]})
        service = await _service(store, provider)

        await service.generate_queries(make_request())

        logs = store.list_performance_logs("search-1")
        assert [log.operation for log in logs] == [
            OperationType.TEMPLATE_SELECTION,
            OperationType.AI_ENHANCEMENT,
            OperationType.SCORING,
            OperationType.DEDUPLICATION,
            OperationType.VALIDATION,
        ]
        assert all(log.status == LogStatus.COMPLETED for log in logs)
        assert all(log.duration_ms >= 0 for log in logs)
        assert logs[0].metadata["queriesGenerated"] == 1

    async def test_performance_tracking_can_be_disabled(self, store):
        service = await _service(store, settings=_settings(performance_tracking_enabled=False))
        await service.generate_queries(make_request())
        assert store.list_performance_logs("search-1") == []

    async def test_dedup_can_be_disabled(self, store):
        provider = FakeProvider({
            "query_expansion": ["tech reporters usa"],
            "query_refinement": ["Tech Reporters USA"],
        })
        service = await _service(store, provider, settings=_settings(dedup_enabled=False))
        result = await service.generate_queries(make_request())
        assert result.metrics.total_duplicates == 0

    async def test_cancelled_before_start(self, store):
        service = await _service(store)
        cancel = asyncio.Event()
        cancel.set()

        with pytest.raises(PipelineError) as exc_info:
            await service.generate_queries(make_request(), cancel_event=cancel)

        assert exc_info.value.code == "GENERATION_CANCELLED"
        assert store.count_generated_queries() == 0

    async def test_stage_failure_is_wrapped(self, store):
        scorer = QueryScorer()
        scorer.score_and_rank_queries = Mock(side_effect=ValueError("bad weights"))
        service = await _service(store, scorer=scorer)

        with pytest.raises(PipelineError) as exc_info:
            await service.generate_queries(make_request(query="climate reporters"))

        error = exc_info.value
        assert error.code == "GENERATION_FAILED"
        assert error.details["stage"] == "scoring"
        assert error.details["request"]["originalQuery"] == "climate reporters"
        scoring_log = store.list_performance_logs("search-1")[-1]
        assert scoring_log.operation == OperationType.SCORING
        assert scoring_log.status == LogStatus.FAILED
        assert "bad weights" in scoring_log.metadata["error"]

    async def test_single_persistence_failure_is_a_warning(self, store):
        service = await _service(store)
        upsert = store.upsert_generated_query

        def flaky_upsert(query, user_id=None):
            if "site:" in query.generated_query:
                raise RuntimeError("disk full")
            return upsert(query, user_id)

        store.upsert_generated_query = flaky_upsert
        result = await service.generate_queries(
            make_request(categories=["Technology"], enable_ai_enhancement=False)
        )

        assert any("Failed to persist query" in e for e in result.errors)
        assert store.count_generated_queries() == result.metrics.total_generated - 1

    async def test_total_persistence_failure_aborts(self, store):
        service = await _service(store)
        store.upsert_generated_query = Mock(side_effect=RuntimeError("database is locked"))

        with pytest.raises(PipelineError) as exc_info:
            await service.generate_queries(make_request(enable_ai_enhancement=False))

        assert exc_info.value.details["stage"] == "validation"

    async def test_performance_log_failure_does_not_fail_run(self, store):
        service = await _service(store)
        store.create_performance_log = Mock(side_effect=RuntimeError("read only"))
        result = await service.generate_queries(make_request(enable_ai_enhancement=False))
        assert result.status == "completed"


class TestCoverage:
    def test_values_and_country_names(self):
        request = make_request(countries=["US", "GB"], categories=["Technology", "Sports"], beats=["AI"])
        queries = [_stored("american technology reporters", "1"), _stored("ai policy editors", "2")]
        coverage = coverage_by_criteria(queries, request.criteria)
        assert coverage == {
            "countries": ["US"],
            "categories": ["Technology"],
            "beats": ["AI"],
            "languages": [],
        }

    def test_whole_words_only(self):
        request = make_request(beats=["AI"])
        assert coverage_by_criteria([_stored("email reporters")], request.criteria)["beats"] == []


class TestIntrospection:
    async def test_stats(self, store):
        service = await _service(store, FakeProvider({"query_expansion": ["tech reporters usa"]}))
        await service.generate_queries(make_request())

        stats = await service.get_stats()

        assert stats["templates"]["total"] == 15
        assert stats["generatedQueries"] == 2
        assert "hits" in stats["templateCache"]
        assert stats["ai"]["usage"] is None
        assert "query-generation" in stats["ai"]["optimizer"]["requests"]

    async def test_config(self, store):
        service = await _service(store)
        config = service.get_config()
        assert config["aiEnabled"] is False
        assert config["model"] is None
        assert config["scoringWeights"] == {
            "relevance": 0.4, "diversity": 0.25, "complexity": 0.2, "specificity": 0.15,
        }
        assert config["deduplication"]["method"] == "hybrid"
        assert config["defaults"] == {"maxQueries": 10, "minRelevanceScore": 0.3, "enableAiEnhancement": True}

    def test_build_service_without_key(self, store):
        service = build_service(store=store, settings=_settings(openai_api_key=""))
        assert service.enhancer is None
        assert not service.ai_available

    def test_cli_request(self):
        args = argparse.Namespace(
            query="climate reporters", search_id=None, country=["GB"], category=[], beat=[],
            language=[], topic=["energy"], max_queries=3, min_score=0.5, no_ai=True,
        )
        request = _build_request(args)
        assert request.search_id.startswith("cli-")
        assert request.criteria.countries == ["GB"]
        assert request.options.max_queries == 3
        assert request.options.enable_ai_enhancement is False
