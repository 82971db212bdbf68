"""
AI query enhancement - expand, refine or localize a base query with an LLM.

Functions for pipeline:
    QueryEnhancer.enhance_query(request: QueryEnhancementRequest) -> list[str]

Provider calls go through AIServiceOptimizer, so identical prompts are served
from cache and concurrent duplicates share one call.
"""

import asyncio
import logging
import re
from typing import Optional, Protocol

from openai import AsyncOpenAI
from pydantic import BaseModel

from config.settings import settings
from models.enums import EnhancementType
from models.query import QueryCriteria, QueryEnhancementRequest
from querygen.cost_tracker import UsageStats
from querygen.errors import ProviderError
from querygen.optimizer import AIRequest, AIServiceOptimizer, OptimizerConfig, request_cache_key
from querygen.text import MAX_QUERY_LENGTH, MIN_QUERY_LENGTH, normalize_query

logger = logging.getLogger(__name__)

# Configuration (from settings.py)
MODEL = settings.query_model
REQUEST_TYPE = "query-generation"


# =============================================================================
# STRUCTURED OUTPUT SCHEMA (for OpenAI API)
# =============================================================================

class EnhancedQueriesSchema(BaseModel):
    """Schema for OpenAI structured output."""
    queries: list[str]


# =============================================================================
# PROMPTS
# =============================================================================

SYSTEM_PROMPT = """You are an expert in media research and search query optimization. You help find journalists, reporters, editors and other media contacts.

Return only search queries. Each query must be a single line of plain search text without numbering, commentary or placeholders."""

COUNTRY_CONTEXTS = {
    "US": "Major publications include NYT, Washington Post, WSJ. Focus on national and regional media.",
    "GB": "Major publications include BBC, The Guardian, The Times. Focus on UK and European media.",
    "CA": "Major publications include CBC, The Globe and Mail, Toronto Star. Focus on Canadian media.",
    "AU": "Major publications include ABC, The Australian, Sydney Morning Herald. Focus on Australian and Asia-Pacific media.",
    "DE": "Major publications include Der Spiegel, Die Zeit, Frankfurter Allgemeine. Focus on German and European media.",
    "FR": "Major publications include Le Monde, Le Figaro, Libération. Focus on French and European media.",
}
DEFAULT_COUNTRY_CONTEXT = "Focus on local and national media outlets."


def build_context_info(criteria: QueryCriteria) -> str:
    parts = []
    for label, values in (
        ("Categories", criteria.categories),
        ("Beats", criteria.beats),
        ("Countries", criteria.countries),
        ("Languages", criteria.languages),
        ("Topics", criteria.topics),
    ):
        if values:
            parts.append(f"{label}: {', '.join(values)}")
    return "\nAdditional context:\n" + "\n".join(parts) if parts else ""


def build_expansion_prompt(base_query: str, criteria: QueryCriteria) -> str:
    return f"""Given the base search query: "{base_query}"
{build_context_info(criteria)}

Generate 5-8 expanded search queries that would help find relevant media contacts. Each query should:
1. Include synonyms and related terms
2. Use different phrasing and structure
3. Incorporate relevant media/journalism terminology
4. Be optimized for search engines
5. Maintain the core intent of the original query"""


def build_refinement_prompt(base_query: str, criteria: QueryCriteria) -> str:
    return f"""Given the base search query: "{base_query}"
{build_context_info(criteria)}

Refine this query into 3-5 more precise versions that would yield higher quality results. Each refined query should:
1. Be more specific and targeted
2. Include professional terminology
3. Add relevant qualifiers and filters
4. Remove ambiguity
5. Maintain searchability"""


def build_localization_prompt(base_query: str, country: str, criteria: QueryCriteria) -> str:
    return f"""Given the base search query: "{base_query}"
{build_context_info(criteria)}
Country context: {COUNTRY_CONTEXTS.get(country.upper(), DEFAULT_COUNTRY_CONTEXT)}

Generate 3-5 localized versions of this query for {country}. Each query should:
1. Incorporate local media terminology
2. Use country-specific publications and outlets
3. Include local geographic references
4. Adapt to local media landscape
5. Maintain searchability"""


def build_language_prompt(base_query: str, language: str, criteria: QueryCriteria) -> str:
    return f"""Given the base search query: "{base_query}"
{build_context_info(criteria)}
Target language: {language}

Generate 3-5 language-specific versions of this query. Each query should:
1. Include relevant language terminology
2. Target language-specific media outlets
3. Use appropriate cultural references
4. Maintain searchability in both English and target language where applicable"""


# =============================================================================
# PROVIDERS
# =============================================================================

_NUMBERED_LINE = re.compile(r"^\s*\d+[.)]\s*(.+)$")


def parse_numbered_list(content: str) -> list[str]:
    """Extract '1. query' lines from a plain-text completion."""
    queries = []
    for line in (content or "").splitlines():
        match = _NUMBERED_LINE.match(line)
        if match:
            query = match.group(1).strip().strip("\"'[]").strip()
            if query:
                queries.append(query)
    return queries


class QueryProvider(Protocol):
    """Anything that turns a prompt into candidate query strings."""

    async def complete(self, prompt: str, operation: str) -> list[str]:
        ...


class OpenAIQueryProvider:
    """OpenAI chat completions with structured output."""

    def __init__(
        self,
        client: AsyncOpenAI = None,
        model: str = MODEL,
        temperature: float = None,
        max_tokens: int = None,
        timeout: float = None,
    ):
        if client is None:
            if not settings.openai_api_key:
                raise ValueError("OPENAI_KEY not found in environment")
            client = AsyncOpenAI(api_key=settings.openai_api_key)
        self.client = client
        self.model = model
        self.temperature = settings.ai_temperature if temperature is None else temperature
        self.max_tokens = max_tokens or settings.ai_max_tokens
        self.timeout = timeout or settings.ai_timeout
        self.usage = UsageStats()

    async def complete(self, prompt: str, operation: str) -> list[str]:
        """
        Ask the model for queries.

        Returns:
            Query strings, possibly empty

        Raises:
            ProviderError: API error, timeout or refusal
        """
        try:
            response = await self.client.beta.chat.completions.parse(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                response_format=EnhancedQueriesSchema,
                temperature=self.temperature,
                max_completion_tokens=self.max_tokens,
                timeout=self.timeout,
            )
        except Exception as e:
            self.usage.add_failure()
            raise ProviderError(f"OpenAI {operation} call failed: {e}", details={"operation": operation}) from e

        if getattr(response, "usage", None):
            cost = self.usage.add_openai_usage(response.usage.model_dump(), self.model)
            logger.debug("%s used %d tokens [$%.4f]", operation, response.usage.total_tokens or 0, cost)

        message = response.choices[0].message
        if message.parsed is not None:
            return list(message.parsed.queries)
        if message.refusal:
            raise ProviderError(f"Model refused {operation}: {message.refusal}", details={"operation": operation})
        # Plain content fallback
        return parse_numbered_list(message.content)


# =============================================================================
# ENHANCER
# =============================================================================

def add_diversity(queries: list[str], criteria: QueryCriteria) -> list[str]:
    """Append category and beat variants of each query, de-duplicated in order."""
    diverse = list(queries)
    for category in criteria.categories:
        diverse.extend(f"{q} {category}" for q in queries)
    for beat in criteria.beats:
        diverse.extend(f"{q} {beat}" for q in queries)
    return list(dict.fromkeys(diverse))


def _is_usable(query: str) -> bool:
    stripped = query.strip()
    return (
        MIN_QUERY_LENGTH <= len(stripped) <= MAX_QUERY_LENGTH
        and "{" not in stripped
        and "}" not in stripped
    )


class QueryEnhancer:
    """Runs one enhancement type per call through the AI optimizer."""

    def __init__(
        self,
        provider: QueryProvider,
        optimizer: AIServiceOptimizer = None,
        optimizer_config: OptimizerConfig = None,
    ):
        self.provider = provider
        self.optimizer = optimizer or AIServiceOptimizer(executor=self._execute, config=optimizer_config)

    async def _execute(self, request: AIRequest) -> list[str]:
        return await self.provider.complete(request.payload["prompt"], request.payload["operation"])

    async def _call(self, prompt: str, operation: str) -> list[str]:
        payload = {"prompt": prompt, "operation": operation}
        request = AIRequest(id=request_cache_key(REQUEST_TYPE, payload), type=REQUEST_TYPE, payload=payload)
        response = await self.optimizer.execute(request)
        return list(response.result or [])

    async def _localize(self, request: QueryEnhancementRequest) -> list[str]:
        """One call per country and per language. Fails only if every call fails."""
        criteria = request.criteria
        calls = [
            (f"country {c}", build_localization_prompt(request.base_query, c, criteria), "query_localization")
            for c in criteria.countries
        ] + [
            (f"language {lang}", build_language_prompt(request.base_query, lang, criteria), "query_language_specific")
            for lang in criteria.languages
        ]
        if not calls:
            return []

        outcomes = await asyncio.gather(
            *(self._call(prompt, operation) for _, prompt, operation in calls),
            return_exceptions=True,
        )

        queries, failures = [], []
        for (label, _, _), outcome in zip(calls, outcomes):
            if isinstance(outcome, Exception):
                logger.warning("Localization for %s failed: %s", label, outcome)
                failures.append(f"{label}: {outcome}")
            else:
                queries.extend(outcome)

        if len(failures) == len(calls):
            raise ProviderError(
                "All localization calls failed: " + "; ".join(failures),
                details={"failures": failures},
            )
        return queries

    async def enhance_query(self, request: QueryEnhancementRequest) -> list[str]:
        """
        Generate enhanced variants of the base query.

        Args:
            request: base query, criteria, type, target count, diversity flag

        Returns:
            Normalized, valid queries, at most request.target_count

        Raises:
            ProviderError: the enhancement type failed
        """
        enhancement_type = EnhancementType(request.enhancement_type)
        try:
            if enhancement_type == EnhancementType.EXPANSION:
                raw = await self._call(
                    build_expansion_prompt(request.base_query, request.criteria), "query_expansion"
                )
            elif enhancement_type == EnhancementType.REFINEMENT:
                raw = await self._call(
                    build_refinement_prompt(request.base_query, request.criteria), "query_refinement"
                )
            else:
                raw = await self._localize(request)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(
                f"{enhancement_type.value} enhancement failed: {e}",
                details={"enhancement_type": enhancement_type.value},
            ) from e

        if request.diversity_boost:
            raw = add_diversity(raw, request.criteria)

        queries = list(dict.fromkeys(normalize_query(q) for q in raw if _is_usable(q)))
        logger.info("%s enhancement produced %d queries", enhancement_type.value, len(queries))
        return queries[:request.target_count]

    def get_usage(self) -> Optional[dict]:
        usage = getattr(self.provider, "usage", None)
        return usage.to_dict() if isinstance(usage, UsageStats) else None
