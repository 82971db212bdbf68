"""
Query scorer - multi-factor scoring and ranking of candidate queries.

Factors (each in [0, 1]):
    relevance    overlap with the original query, criteria mentions, media keywords
    diversity    distance from the candidates generated before it
    complexity   search operators, length, phrases, boolean words, exclusions
    specificity  criteria, geographic and date mentions

overall is the weighted sum of the factors. The scorer ranks but never filters.
"""

import re
from typing import Optional

from config.settings import settings
from models.query import QueryCriteria, QueryScores
from models.scoring import DimensionStats, RankedQuery, ScoringCandidate, ScoringStats, ScoringWeights
from querygen.text import jaccard, tokenize


MEDIA_KEYWORDS = ("journalist", "reporter", "media", "editor", "writer", "author", "contact")

# Matched against the lowercased query
OPERATOR_INDICATORS = ("site:", "filetype:", "intitle:", "inurl:", "related:", "author:", "-", '"')
# Matched case-sensitively as whole words
UPPERCASE_OPERATORS = (re.compile(r"\bOR\b"), re.compile(r"\bAND\b"))

SPECIFICITY_FACTORS = {
    "countries": 0.15,
    "categories": 0.12,
    "beats": 0.15,
    "languages": 0.08,
    "topics": 0.10,
}

COUNTRY_SYNONYMS = {
    "US": ("america", "usa", "united states", "american"),
    "GB": ("uk", "britain", "united kingdom", "british"),
    "CA": ("canada", "canadian"),
    "AU": ("australia", "australian"),
    "DE": ("germany", "german"),
    "FR": ("france", "french"),
}

GEOGRAPHIC_TERMS = (
    "city", "state", "region", "local", "national", "international",
    "global", "worldwide", "asia", "europe", "america", "africa",
    "north", "south", "east", "west", "central",
)

DATE_TERMS = (
    "2023", "2024", "2025", "2026", "january", "february", "march", "april",
    "may", "june", "july", "august", "september", "october",
    "november", "december", "recent", "latest", "current", "year",
)

PHRASE = re.compile(r'"[^"]+"')
EXCLUSION = re.compile(r"-\w+")


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _criteria_match(lower_query: str, values: list[str]) -> float:
    """Fraction of criteria values mentioned in the query."""
    matches = [v for v in values if v.lower() in lower_query]
    return len(matches) / len(values)


# =============================================================================
# FACTORS
# =============================================================================

def relevance_score(query: str, original_query: str, criteria: QueryCriteria) -> float:
    lower = query.lower()
    score = 0.5 + 0.3 * jaccard(query, original_query)

    for dimension, weight in (("categories", 0.15), ("beats", 0.15), ("countries", 0.10), ("topics", 0.10)):
        values = getattr(criteria, dimension)
        if values:
            score += weight * _criteria_match(lower, values)

    if any(keyword in lower for keyword in MEDIA_KEYWORDS):
        score += 0.1
    return min(score, 1.0)


def diversity_score(query: str, earlier: list[str]) -> float:
    if not earlier:
        return 1.0

    average_similarity = sum(jaccard(query, other) for other in earlier) / len(earlier)
    score = 1.0 - average_similarity

    seen = set()
    for other in earlier:
        seen.update(tokenize(other))
    new_terms = set(tokenize(query)) - seen
    if len(new_terms) > 2:
        score += 0.1
    return min(score, 1.0)


def complexity_score(query: str) -> float:
    lower = query.lower()
    score = 0.3

    score += 0.1 * sum(1 for indicator in OPERATOR_INDICATORS if indicator in lower)
    score += 0.1 * sum(1 for pattern in UPPERCASE_OPERATORS if pattern.search(query))

    word_count = len(tokenize(query))
    if word_count > 5:
        score += 0.1
    if word_count > 10:
        score += 0.1

    phrases = PHRASE.findall(query)
    if phrases:
        score += min(len(phrases) * 0.05, 0.2)

    padded = f" {lower} "
    for word in (" and ", " or ", " not "):
        if word in padded:
            score += 0.05

    exclusions = EXCLUSION.findall(query)
    if exclusions:
        score += min(len(exclusions) * 0.03, 0.1)
    return min(score, 1.0)


def specificity_score(query: str, criteria: QueryCriteria) -> float:
    lower = query.lower()
    score = 0.2

    for dimension, factor in SPECIFICITY_FACTORS.items():
        values = getattr(criteria, dimension)
        if not values:
            continue
        mentioned = any(v.lower() in lower for v in values)
        if not mentioned and dimension == "countries":
            mentioned = any(
                synonym in lower
                for v in values
                for synonym in COUNTRY_SYNONYMS.get(v.upper(), ())
            )
        if mentioned:
            score += factor

    if any(term in lower for term in GEOGRAPHIC_TERMS):
        score += 0.1
    if any(term in lower for term in DATE_TERMS):
        score += 0.05
    return min(score, 1.0)


# =============================================================================
# PUBLIC API
# =============================================================================

class QueryScorer:
    """Scores and ranks a batch of candidate queries."""

    def __init__(self, weights: Optional[ScoringWeights] = None):
        self.weights = weights or ScoringWeights(**settings.scoring_weights)

    def score_query(self, candidate: ScoringCandidate, earlier: list[str]) -> QueryScores:
        """Score one candidate against the candidates generated before it."""
        relevance = _clamp(relevance_score(candidate.query, candidate.original_query, candidate.criteria))
        diversity = _clamp(diversity_score(candidate.query, earlier))
        complexity = _clamp(complexity_score(candidate.query))
        specificity = _clamp(specificity_score(candidate.query, candidate.criteria))
        overall = (
            self.weights.relevance * relevance
            + self.weights.diversity * diversity
            + self.weights.complexity * complexity
            + self.weights.specificity * specificity
        )
        return QueryScores(
            relevance=relevance,
            diversity=diversity,
            complexity=complexity,
            specificity=specificity,
            overall=_clamp(overall),
        )

    def score_and_rank_queries(self, candidates: list[ScoringCandidate]) -> list[RankedQuery]:
        """
        Score every candidate and sort by overall descending.

        The sort is stable, so ties keep generation order.
        """
        scored = []
        earlier: list[str] = []
        for candidate in candidates:
            scored.append(RankedQuery(
                id=candidate.id,
                query=candidate.query,
                scores=self.score_query(candidate, earlier),
                metadata=candidate.metadata,
            ))
            earlier.append(candidate.query)

        scored.sort(key=lambda r: r.scores.overall, reverse=True)
        for rank, item in enumerate(scored, start=1):
            item.rank = rank
        return scored

    @staticmethod
    def filter_by_score(ranked: list[RankedQuery], min_score: float = None) -> list[RankedQuery]:
        threshold = settings.min_score if min_score is None else min_score
        return [r for r in ranked if r.scores.overall >= threshold]

    @staticmethod
    def top_queries(ranked: list[RankedQuery], n: int = 10) -> list[RankedQuery]:
        return ranked[:n]

    @staticmethod
    def get_scoring_stats(ranked: list[RankedQuery]) -> ScoringStats:
        dimensions = ("relevance", "diversity", "complexity", "specificity", "overall")
        if not ranked:
            return ScoringStats(
                total=0,
                average_score=0.0,
                distribution={"high": 0, "medium": 0, "low": 0},
                dimensions={d: DimensionStats() for d in dimensions},
            )

        overall = [r.scores.overall for r in ranked]
        breakdown = {}
        for dimension in dimensions:
            values = [getattr(r.scores, dimension) for r in ranked]
            breakdown[dimension] = DimensionStats(
                min=min(values), max=max(values), avg=sum(values) / len(values)
            )

        best = max(ranked, key=lambda r: r.scores.overall)
        return ScoringStats(
            total=len(ranked),
            average_score=sum(overall) / len(overall),
            distribution={
                "high": sum(1 for s in overall if s > 0.8),
                "medium": sum(1 for s in overall if 0.5 <= s <= 0.8),
                "low": sum(1 for s in overall if s < 0.5),
            },
            dimensions=breakdown,
            top_query=best.query,
        )
