"""Tests for AI query enhancement."""
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest

from config.settings import settings
from models.enums import EnhancementType
from models.query import QueryCriteria, QueryEnhancementRequest
from querygen.ai_enhancement import (
    EnhancedQueriesSchema,
    OpenAIQueryProvider,
    QueryEnhancer,
    add_diversity,
    build_expansion_prompt,
    build_localization_prompt,
    parse_numbered_list,
)
from querygen.errors import ProviderError
from tests.helpers import FakeProvider, no_retry_config


def _request(enhancement_type: EnhancementType, target_count: int = 5, diversity_boost: bool = False, **criteria):
    return QueryEnhancementRequest(
        base_query="tech journalists",
        criteria=QueryCriteria(**criteria),
        enhancement_type=enhancement_type,
        target_count=target_count,
        diversity_boost=diversity_boost,
    )


def _completion(queries=None, refusal=None, content=None, tokens=(100, 50)):
    message = SimpleNamespace(
        parsed=EnhancedQueriesSchema(queries=queries) if queries is not None else None,
        refusal=refusal,
        content=content,
    )
    usage = Mock(total_tokens=sum(tokens))
    usage.model_dump.return_value = {
        "prompt_tokens": tokens[0],
        "completion_tokens": tokens[1],
        "total_tokens": sum(tokens),
    }
    return SimpleNamespace(choices=[SimpleNamespace(message=message)], usage=usage)


def _client(parse: AsyncMock):
    return SimpleNamespace(beta=SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(parse=parse))))


class TestHelpers:
    def test_parse_numbered_list(self):
        content = 'Here you go:\n1. "tech reporters usa"\n2) technology editors\n\n3.   \nnot numbered'
        assert parse_numbered_list(content) == ["tech reporters usa", "technology editors"]

    def test_parse_numbered_list_empty(self):
        assert parse_numbered_list(None) == []

    def test_add_diversity_appends_category_and_beat_variants(self):
        criteria = QueryCriteria(categories=["Technology"], beats=["AI"])
        assert add_diversity(["tech reporters"], criteria) == [
            "tech reporters",
            "tech reporters Technology",
            "tech reporters AI",
        ]

    def test_prompts_include_context(self):
        criteria = QueryCriteria(categories=["Technology"], countries=["GB"])
        assert "Categories: Technology" in build_expansion_prompt("tech journalists", criteria)
        localization = build_localization_prompt("tech journalists", "GB", criteria)
        assert "BBC" in localization
        assert "localized versions of this query for GB" in localization


class TestQueryEnhancer:
    async def test_expansion_filters_normalizes_and_dedupes(self):
        provider = FakeProvider({"query_expansion": [
            "Tech Reporters USA",
            "tech reporters usa",
            "{query} press",
            "ok",
            "Technology journalists covering startups.",
        ]})
        enhancer = QueryEnhancer(provider, optimizer_config=no_retry_config())

        queries = await enhancer.enhance_query(_request(EnhancementType.EXPANSION))

        assert queries == ["tech reporters usa", "technology journalists covering startups"]
        assert provider.operations() == ["query_expansion"]

    async def test_target_count_truncates(self):
        provider = FakeProvider({"query_refinement": [f"tech reporter variant {i}" for i in range(8)]})
        enhancer = QueryEnhancer(provider, optimizer_config=no_retry_config())
        queries = await enhancer.enhance_query(_request(EnhancementType.REFINEMENT, target_count=3))
        assert len(queries) == 3

    async def test_diversity_boost(self):
        provider = FakeProvider({"query_expansion": ["tech reporters"]})
        enhancer = QueryEnhancer(provider, optimizer_config=no_retry_config())
        queries = await enhancer.enhance_query(
            _request(EnhancementType.EXPANSION, diversity_boost=True, categories=["Technology"])
        )
        assert queries == ["tech reporters", "tech reporters technology"]

    async def test_localization_calls_each_country_and_language(self):
        provider = FakeProvider({
            "query_localization": ["tech reporters local press"],
            "query_language_specific": ["journalistes tech"],
        })
        enhancer = QueryEnhancer(provider, optimizer_config=no_retry_config())

        queries = await enhancer.enhance_query(
            _request(EnhancementType.LOCALIZATION, countries=["US", "GB"], languages=["French"])
        )

        assert sorted(provider.operations()) == [
            "query_language_specific", "query_localization", "query_localization",
        ]
        assert queries == ["tech reporters local press", "journalistes tech"]

    async def test_localization_tolerates_partial_failure(self):
        provider = FakeProvider(
            {"query_localization": ["tech reporters london"]},
            fail={"query_language_specific"},
        )
        enhancer = QueryEnhancer(provider, optimizer_config=no_retry_config())
        queries = await enhancer.enhance_query(
            _request(EnhancementType.LOCALIZATION, countries=["GB"], languages=["French"])
        )
        assert queries == ["tech reporters london"]

    async def test_localization_fails_when_every_call_fails(self):
        provider = FakeProvider(fail={"query_localization"})
        enhancer = QueryEnhancer(provider, optimizer_config=no_retry_config())
        with pytest.raises(ProviderError) as exc_info:
            await enhancer.enhance_query(_request(EnhancementType.LOCALIZATION, countries=["US"]))
        assert "localization" in exc_info.value.message

    async def test_localization_without_countries_or_languages_is_empty(self):
        provider = FakeProvider()
        enhancer = QueryEnhancer(provider, optimizer_config=no_retry_config())
        assert await enhancer.enhance_query(_request(EnhancementType.LOCALIZATION)) == []
        assert provider.calls == []

    async def test_provider_failure_raises_provider_error(self):
        provider = FakeProvider(fail={"query_expansion"})
        enhancer = QueryEnhancer(provider, optimizer_config=no_retry_config())
        with pytest.raises(ProviderError):
            await enhancer.enhance_query(_request(EnhancementType.EXPANSION))

    async def test_retries_before_giving_up(self):
        provider = FakeProvider(fail={"query_expansion"})
        enhancer = QueryEnhancer(
            provider,
            optimizer_config=no_retry_config(retry_enabled=True, max_retries=2),
        )
        with pytest.raises(ProviderError):
            await enhancer.enhance_query(_request(EnhancementType.EXPANSION))
        assert len(provider.calls) == 3

    async def test_identical_prompts_are_served_from_cache(self):
        provider = FakeProvider({"query_expansion": ["tech reporters usa"]})
        enhancer = QueryEnhancer(provider, optimizer_config=no_retry_config())

        first = await enhancer.enhance_query(_request(EnhancementType.EXPANSION))
        second = await enhancer.enhance_query(_request(EnhancementType.EXPANSION))

        assert first == second
        assert len(provider.calls) == 1
        assert enhancer.optimizer.get_stats()["cache"]["hits"] == 1

    def test_usage_is_none_for_providers_without_tracking(self):
        enhancer = QueryEnhancer(FakeProvider(), optimizer_config=no_retry_config())
        assert enhancer.get_usage() is None


class TestOpenAIQueryProvider:
    async def test_structured_output_and_usage(self):
        parse = AsyncMock(return_value=_completion(queries=["tech reporters usa", "technology editors"]))
        provider = OpenAIQueryProvider(client=_client(parse), model="gpt-4o-mini")

        queries = await provider.complete("prompt", "query_expansion")

        assert queries == ["tech reporters usa", "technology editors"]
        kwargs = parse.await_args.kwargs
        assert kwargs["model"] == "gpt-4o-mini"
        assert kwargs["response_format"] is EnhancedQueriesSchema
        assert kwargs["messages"][1] == {"role": "user", "content": "prompt"}
        assert provider.usage.requests == 1
        assert provider.usage.total_tokens == 150
        assert provider.usage.estimated_cost == pytest.approx((100 * 0.15 + 50 * 0.60) / 1_000_000)

    async def test_plain_content_fallback(self):
        parse = AsyncMock(return_value=_completion(content="1. tech reporters\n2. science editors"))
        provider = OpenAIQueryProvider(client=_client(parse))
        assert await provider.complete("prompt", "query_refinement") == ["tech reporters", "science editors"]

    async def test_refusal_raises(self):
        parse = AsyncMock(return_value=_completion(refusal="I can't help with that"))
        provider = OpenAIQueryProvider(client=_client(parse))
        with pytest.raises(ProviderError):
            await provider.complete("prompt", "query_expansion")

    async def test_api_error_raises_and_counts_failure(self):
        parse = AsyncMock(side_effect=RuntimeError("503 Service Unavailable"))
        provider = OpenAIQueryProvider(client=_client(parse))
        with pytest.raises(ProviderError) as exc_info:
            await provider.complete("prompt", "query_expansion")
        assert "503" in exc_info.value.message
        assert provider.usage.failures == 1

    def test_missing_key_without_client(self, monkeypatch):
        monkeypatch.setattr(settings, "openai_api_key", "")
        with pytest.raises(ValueError):
            OpenAIQueryProvider()

    async def test_enhancer_reports_provider_usage(self):
        parse = AsyncMock(return_value=_completion(queries=["tech reporters usa"]))
        enhancer = QueryEnhancer(OpenAIQueryProvider(client=_client(parse)), optimizer_config=no_retry_config())
        await enhancer.enhance_query(_request(EnhancementType.EXPANSION))
        assert enhancer.get_usage()["requests"] == 1
