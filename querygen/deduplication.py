"""
Query deduplicator - similarity-based duplicate detection within a batch.

Methods:
    exact     normalized equality, else 0.7 * Jaccard + 0.3 * edit-distance similarity
    semantic  keyword/synonym overlap blended with structural features
    hybrid    normalized equality, else the mean of exact and semantic
"""

import logging
import re
from typing import Union

from rapidfuzz.distance import Levenshtein

from config.settings import settings
from models.deduplication import DeduplicationResult, DeduplicationStats, DuplicateMatch, SimilarQuery
from models.enums import DedupMethod
from models.scoring import RankedQuery

logger = logging.getLogger(__name__)

# Configuration (from settings.py)
SIMILARITY_THRESHOLD = settings.similarity_threshold
DEDUP_METHOD = settings.dedup_method

KEYWORD_STOPWORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "is", "are", "was", "were", "be", "been", "have",
    "has", "had", "do", "does", "did", "will", "would", "could", "should",
})

SYNONYMS = {
    "journalist": ("reporter", "writer", "author", "correspondent"),
    "media": ("news", "press", "publication", "outlet"),
    "contact": ("reach", "email", "connect"),
    "search": ("find", "look", "research", "investigate"),
    "technology": ("tech", "software", "digital", "it"),
    "business": ("finance", "corporate", "commercial", "company"),
    "sports": ("athletics", "games", "competition", "fitness"),
    "health": ("medical", "wellness", "healthcare", "medicine"),
}

ADVANCED_OPERATORS = ("site:", "filetype:", "intitle:", "inurl:", "related:")

_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")
_BOOLEAN = re.compile(r"\b(and|or|not)\b")
_EXCLUSION = re.compile(r"-\w+")
_PHRASE = re.compile(r'"[^"]+"')


# =============================================================================
# SIMILARITY
# =============================================================================

def normalize_for_comparison(query: str) -> str:
    """Lowercase, punctuation to spaces, whitespace collapsed."""
    return _WHITESPACE.sub(" ", _NON_WORD.sub(" ", query.lower())).strip()


def edit_similarity(a: str, b: str) -> float:
    """1 - Levenshtein distance / longer length; two empty strings are identical."""
    return Levenshtein.normalized_similarity(a, b)


def exact_similarity(query1: str, query2: str) -> float:
    norm1, norm2 = normalize_for_comparison(query1), normalize_for_comparison(query2)
    if norm1 == norm2:
        return 1.0

    words1, words2 = set(norm1.split()), set(norm2.split())
    union = words1 | words2
    jaccard = len(words1 & words2) / len(union) if union else 0.0

    return 0.7 * jaccard + 0.3 * edit_similarity(norm1, norm2)


def extract_keywords(query: str) -> set[str]:
    words = _NON_WORD.sub(" ", query.lower()).split()
    return {w for w in words if len(w) > 2 and w not in KEYWORD_STOPWORDS}


def _are_synonyms(word1: str, word2: str) -> bool:
    return word2 in SYNONYMS.get(word1, ()) or word1 in SYNONYMS.get(word2, ())


def keyword_similarity(keywords1: set[str], keywords2: set[str]) -> float:
    if not keywords1 and not keywords2:
        return 1.0
    if not keywords1 or not keywords2:
        return 0.0

    direct = len(keywords1 & keywords2) / len(keywords1 | keywords2)

    matches = sum(
        1 for w1 in keywords1 for w2 in keywords2
        if w1 == w2 or _are_synonyms(w1, w2)
    )
    synonym_overlap = matches / (len(keywords1) * len(keywords2))
    return 0.7 * direct + 0.3 * synonym_overlap


def query_structure(query: str) -> dict:
    lower = query.lower()
    return {
        "has_quotes": '"' in lower,
        "has_exact_phrase": bool(_PHRASE.search(query)),
        "has_site_operator": "site:" in lower,
        "has_filetype_operator": "filetype:" in lower,
        "has_boolean_operators": bool(_BOOLEAN.search(lower)),
        "has_exclude_operators": bool(_EXCLUSION.search(query)),
        "word_count": len(query.split()),
        "has_advanced_operators": any(op in lower for op in ADVANCED_OPERATORS),
    }


def structural_similarity(query1: str, query2: str) -> float:
    s1, s2 = query_structure(query1), query_structure(query2)
    return sum(1 for key in s1 if s1[key] == s2[key]) / len(s1)


def semantic_similarity(query1: str, query2: str) -> float:
    keywords = keyword_similarity(extract_keywords(query1), extract_keywords(query2))
    return 0.6 * keywords + 0.4 * structural_similarity(query1, query2)


def similarity(query1: str, query2: str, method: Union[DedupMethod, str] = DedupMethod.HYBRID) -> float:
    """Similarity in [0, 1] under the given method."""
    method = DedupMethod(method)
    if method == DedupMethod.EXACT:
        return exact_similarity(query1, query2)
    if method == DedupMethod.SEMANTIC:
        return semantic_similarity(query1, query2)
    if normalize_for_comparison(query1) == normalize_for_comparison(query2):
        return 1.0
    return (exact_similarity(query1, query2) + semantic_similarity(query1, query2)) / 2


def duplicate_reason(score: float, method: Union[DedupMethod, str]) -> str:
    method = DedupMethod(method).value
    if score >= 0.95:
        return f"Nearly identical ({method})"
    if score >= 0.85:
        return f"Very similar ({method})"
    if score >= 0.75:
        return f"Similar ({method})"
    return f"Potentially duplicate ({method})"


def _validate_threshold(threshold: float) -> float:
    if not 0.0 <= threshold <= 1.0:
        raise ValueError("Similarity threshold must be between 0 and 1")
    return threshold


# =============================================================================
# PUBLIC API
# =============================================================================

class QueryDeduplicator:
    """Removes near-duplicate candidates from a batch."""

    def __init__(
        self,
        method: Union[DedupMethod, str] = DEDUP_METHOD,
        similarity_threshold: float = SIMILARITY_THRESHOLD,
        keep_highest_scored: bool = True,
    ):
        self.method = DedupMethod(method)
        self.similarity_threshold = _validate_threshold(similarity_threshold)
        self.keep_highest_scored = keep_highest_scored

    def deduplicate_queries(
        self,
        queries: list[RankedQuery],
        method: Union[DedupMethod, str] = None,
        similarity_threshold: float = None,
        keep_highest_scored: bool = None,
    ) -> DeduplicationResult:
        """
        Split a batch into unique queries and duplicates.

        Candidates are visited highest overall first (stable). Each is compared
        against the queries already accepted; the first one at or above the
        threshold marks it a duplicate.

        Args:
            queries: Scored candidates
            method: Overrides the configured method
            similarity_threshold: Overrides the configured threshold
            keep_highest_scored: Visit by overall score rather than input order

        Returns:
            DeduplicationResult with unique ids and duplicate matches
        """
        method = DedupMethod(method or self.method)
        threshold = (
            self.similarity_threshold if similarity_threshold is None
            else _validate_threshold(similarity_threshold)
        )
        keep_best = self.keep_highest_scored if keep_highest_scored is None else keep_highest_scored

        ordered = list(queries)
        if keep_best:
            ordered.sort(key=lambda q: q.scores.overall, reverse=True)

        accepted: list[RankedQuery] = []
        duplicates: list[DuplicateMatch] = []
        for candidate in ordered:
            match = None
            for kept in accepted:
                score = similarity(candidate.query, kept.query, method)
                if score >= threshold:
                    match = DuplicateMatch(
                        query_id=candidate.id,
                        duplicate_of=kept.id,
                        reason=duplicate_reason(score, method),
                        similarity=score,
                    )
                    break
            if match:
                duplicates.append(match)
            else:
                accepted.append(candidate)

        logger.debug("Deduplicated %d queries: %d unique, %d duplicates",
                     len(ordered), len(accepted), len(duplicates))
        return DeduplicationResult(
            unique_queries=[q.id for q in accepted],
            duplicates=duplicates,
            deduplication_stats=DeduplicationStats(
                total_processed=len(ordered),
                duplicates_removed=len(duplicates),
                unique_queries=len(accepted),
            ),
        )

    def find_similar_queries(
        self,
        target: str,
        pool: list[RankedQuery],
        method: Union[DedupMethod, str] = None,
        threshold: float = 0.5,
        max_results: int = 10,
    ) -> list[SimilarQuery]:
        """Pool entries at least `threshold` similar to target, most similar first."""
        method = DedupMethod(method or self.method)
        _validate_threshold(threshold)
        matches = []
        for item in pool:
            if item.query == target:
                continue
            score = similarity(target, item.query, method)
            if score >= threshold:
                matches.append(SimilarQuery(query_id=item.id, query=item.query, similarity=score))
        matches.sort(key=lambda m: m.similarity, reverse=True)
        return matches[:max_results]

    def batch_deduplicate(self, batches: dict[str, list[RankedQuery]], **options) -> dict[str, DeduplicationResult]:
        """Deduplicate each batch independently. Keys are batch ids."""
        return {batch_id: self.deduplicate_queries(queries, **options) for batch_id, queries in batches.items()}

    @staticmethod
    def get_deduplication_stats(results: list[DeduplicationResult]) -> dict:
        processed = sum(r.deduplication_stats.total_processed for r in results)
        removed = sum(r.deduplication_stats.duplicates_removed for r in results)
        unique = sum(r.deduplication_stats.unique_queries for r in results)
        return {
            "total_batches": len(results),
            "total_queries_processed": processed,
            "total_duplicates_removed": removed,
            "average_duplicate_rate": removed / processed if processed else 0.0,
            "average_unique_queries": unique / len(results) if results else 0.0,
        }
