"""Tests for the SQLAlchemy-backed store."""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from models.enums import LogStatus, OperationType, QueryStatus, QueryType, TemplateType
from models.performance import PerformanceLogEntry
from models.query import GeneratedQuery, QueryCriteria, QueryScores


def _generated(id: str, query: str = "tech reporters usa", **fields) -> GeneratedQuery:
    values = {
        "id": id,
        "search_id": "search-1",
        "batch_id": "batch-1",
        "original_query": "tech journalists",
        "generated_query": query,
        "query_type": QueryType.BASE,
        "criteria": QueryCriteria(countries=["US"]).snapshot(),
        "scores": QueryScores(relevance=0.8, overall=0.6),
        "metadata": {"templateUsed": "Basic Media Search"},
    }
    values.update(fields)
    return GeneratedQuery(**values)


class TestTemplates:
    def test_list_filters_by_criteria(self, store):
        store.create_template(name="General", template="{query} journalist", type=TemplateType.BASE)
        store.create_template(
            name="US", template="{query} american press", type=TemplateType.COUNTRY_SPECIFIC, country="US"
        )
        store.create_template(
            name="GB", template="{query} uk press", type=TemplateType.COUNTRY_SPECIFIC, country="GB"
        )
        store.create_template(
            name="Off", template="{query} press", type=TemplateType.BASE, is_active=False
        )

        names = [t.name for t in store.list_active_templates(QueryCriteria(countries=["US"]))]
        assert sorted(names) == ["General", "US"]
        assert [t.name for t in store.list_active_templates(QueryCriteria())] == ["General"]

    def test_composite_requires_a_selection_value(self, store):
        store.create_template(name="General", template="{query} journalist", type=TemplateType.BASE)
        store.create_template(
            name="Mixed", template="{query} {country} {category} press", type=TemplateType.COMPOSITE
        )

        assert [t.name for t in store.list_active_templates(QueryCriteria())] == ["General"]
        assert [t.name for t in store.list_active_templates(QueryCriteria(topics=["AI"]))] == ["General"]
        names = {t.name for t in store.list_active_templates(QueryCriteria(categories=["Tech"]))}
        assert names == {"General", "Mixed"}

    def test_list_orders_by_priority_then_performance(self, store):
        store.create_template(name="Low", template="{query} a", type=TemplateType.BASE, priority=1)
        store.create_template(
            name="Proven", template="{query} b", type=TemplateType.BASE, priority=5, success_count=9
        )
        store.create_template(name="New", template="{query} c", type=TemplateType.BASE, priority=5)

        names = [t.name for t in store.list_active_templates(QueryCriteria())]
        assert names == ["Proven", "New", "Low"]
        assert len(store.list_active_templates(QueryCriteria(), limit=2)) == 2

    def test_usage_and_confidence_tracking(self, store):
        template = store.create_template(name="T", template="{query} x", type=TemplateType.BASE)

        store.increment_template_stats(template.id, success=True)
        store.increment_template_stats(template.id, success=False)
        assert store.update_template_confidence(template.id, 0.8) == pytest.approx(0.8)
        store.increment_template_stats(template.id, success=True)
        assert store.update_template_confidence(template.id, 0.4) == pytest.approx(0.6)

        stored = store.top_templates(limit=1)[0]
        assert stored.usage_count == 3
        assert stored.success_count == 2
        assert stored.average_confidence == pytest.approx(0.6)

    def test_confidence_for_unknown_template(self, store):
        assert store.update_template_confidence("missing", 0.5) is None

    def test_counts(self, store):
        store.create_template(name="A", template="{query} a", type=TemplateType.BASE)
        store.create_template(name="B", template="{query} b", type=TemplateType.COMPOSITE, is_active=False)
        assert store.count_templates() == 2
        assert store.count_templates(active_only=True) == 1
        assert store.template_counts_by_type() == {"BASE": 1, "COMPOSITE": 1}


class TestGeneratedQueries:
    def test_upsert_inserts_then_updates(self, store):
        query = _generated("q-1")
        store.upsert_generated_query(query, user_id="user-7")

        updated = query.model_copy(update={
            "status": QueryStatus.COMPLETED,
            "metadata": {**query.metadata, "selected": True},
        })
        store.upsert_generated_query(updated, user_id="user-7")

        stored = store.get_generated_queries("search-1")
        assert len(stored) == 1
        assert stored[0].status == QueryStatus.COMPLETED
        assert stored[0].metadata == {"templateUsed": "Basic Media Search", "selected": True}
        assert stored[0].criteria["country"] == "US"
        assert stored[0].scores.relevance == pytest.approx(0.8)

    def test_filters_by_search_and_batch(self, store):
        store.upsert_generated_query(_generated("q-1"))
        store.upsert_generated_query(_generated("q-2", batch_id="batch-2"))
        store.upsert_generated_query(_generated("q-3", search_id="search-2"))

        assert {q.id for q in store.get_generated_queries("search-1")} == {"q-1", "q-2"}
        assert [q.id for q in store.get_generated_queries("search-1", batch_id="batch-2")] == ["q-2"]
        assert store.count_generated_queries() == 3
        assert store.count_generated_queries("search-2") == 1

    def test_template_reference_is_kept(self, store):
        store.upsert_generated_query(_generated("q-1", template_id="no-such-template"))
        assert store.get_generated_queries("search-1")[0].template_id == "no-such-template"


class TestPerformanceLogs:
    def test_create_and_list(self, store):
        start = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
        for operation in (OperationType.TEMPLATE_SELECTION, OperationType.SCORING):
            store.create_performance_log(PerformanceLogEntry(
                search_id="search-1",
                batch_id="batch-1",
                operation=operation,
                start_time=start,
                end_time=start + timedelta(milliseconds=25),
                duration_ms=25,
                status=LogStatus.COMPLETED,
                metadata={"candidates": 4},
            ))

        logs = store.list_performance_logs("search-1")
        assert [log.operation for log in logs] == [OperationType.TEMPLATE_SELECTION, OperationType.SCORING]
        assert logs[0].id < logs[1].id
        assert logs[0].metadata == {"candidates": 4}
        assert logs[0].start_time == start.replace(tzinfo=None)
        assert store.list_performance_logs("other") == []

    def test_database_errors_propagate(self, store):
        template = store.create_template(name="T", template="{query} x", type=TemplateType.BASE)
        with pytest.raises(IntegrityError):
            store.create_template(id=template.id, name="Dup", template="{query} y", type=TemplateType.BASE)
        assert store.count_templates() == 1
