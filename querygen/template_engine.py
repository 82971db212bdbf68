"""
Template engine - selects, renders and tracks query templates.

Functions for pipeline:
    TemplateEngine.select_templates(request) -> list[QueryTemplate]
    TemplateEngine.generate_from_templates(templates, request) -> list[RenderedQuery]
"""

import asyncio
import logging
import re
from typing import Optional

from config.settings import settings
from db.store import QueryStore
from models.enums import TemplateType
from models.query import QueryCriteria, QueryGenerationRequest
from models.template import QueryTemplate, RenderedQuery, TemplateStats
from querygen.cache import CacheContext
from querygen.errors import ValidationError
from querygen.text import normalize_query, validate_query

logger = logging.getLogger(__name__)

# Configuration (from settings.py)
TEMPLATE_CACHE_TTL = settings.template_cache_ttl
MAX_TEMPLATES = settings.max_templates_per_query

PLACEHOLDER = re.compile(r"\{(\w+)\}")

# {country} -> first value, {countries} -> values OR-joined
SINGULAR_PLACEHOLDERS = {
    "country": "countries",
    "category": "categories",
    "beat": "beats",
    "language": "languages",
    "topic": "topics",
}
PLURAL_PLACEHOLDERS = frozenset(SINGULAR_PLACEHOLDERS.values())


# =============================================================================
# BUILT-IN TEMPLATES
# =============================================================================

DEFAULT_TEMPLATES = [
    # Base
    {"name": "Basic Media Search", "type": TemplateType.BASE, "priority": 100,
     "template": "{query} media contact journalist reporter"},
    {"name": "Beat Focused Search", "type": TemplateType.BASE, "priority": 90,
     "template": "{query} {beat} journalist reporter"},
    {"name": "Category Focused Search", "type": TemplateType.BASE, "priority": 90,
     "template": "{query} {category} media journalism"},
    # Country specific
    {"name": "UK Media Search", "type": TemplateType.COUNTRY_SPECIFIC, "country": "GB", "priority": 85,
     "template": "{query} UK British media journalist reporter"},
    {"name": "US Media Search", "type": TemplateType.COUNTRY_SPECIFIC, "country": "US", "priority": 85,
     "template": "{query} US American media journalist reporter"},
    {"name": "Canada Media Search", "type": TemplateType.COUNTRY_SPECIFIC, "country": "CA", "priority": 85,
     "template": "{query} Canada Canadian media journalist reporter"},
    # Category specific
    {"name": "Technology Media Search", "type": TemplateType.CATEGORY_SPECIFIC, "category": "Technology",
     "priority": 88, "template": "{query} technology tech journalist reporter media"},
    {"name": "Business Media Search", "type": TemplateType.CATEGORY_SPECIFIC, "category": "Business",
     "priority": 88, "template": "{query} business finance journalist reporter media"},
    {"name": "Sports Media Search", "type": TemplateType.CATEGORY_SPECIFIC, "category": "Sports",
     "priority": 88, "template": "{query} sports journalist reporter media athletics"},
    # Beat specific
    {"name": "Politics Beat Search", "type": TemplateType.BEAT_SPECIFIC, "beat": "Politics", "priority": 87,
     "template": "{query} politics government journalist reporter political"},
    {"name": "Healthcare Beat Search", "type": TemplateType.BEAT_SPECIFIC, "beat": "Healthcare", "priority": 87,
     "template": "{query} health medical journalist reporter healthcare"},
    {"name": "Entertainment Beat Search", "type": TemplateType.BEAT_SPECIFIC, "beat": "Entertainment",
     "priority": 87, "template": "{query} entertainment celebrity journalist reporter media"},
    # Composite
    {"name": "Category and Beat Search", "type": TemplateType.COMPOSITE, "priority": 75,
     "template": "{query} {category} {beat} journalist reporter media"},
    {"name": "Country and Category Search", "type": TemplateType.COMPOSITE, "priority": 80,
     "template": "{query} {country} {category} media journalist reporter"},
    {"name": "Site Restricted Search", "type": TemplateType.COMPOSITE, "priority": 70,
     "template": "{query} site:.com OR site:.org {category} journalist reporter author contact"},
]


# =============================================================================
# INTERNAL FUNCTIONS
# =============================================================================

def criteria_cache_key(criteria: QueryCriteria) -> str:
    """
    Cache key for template selection.

    Each selection dimension is sorted and comma-joined, dimensions are
    "|"-joined. Criteria with no selection values map to "default".
    """
    dimensions = (criteria.countries, criteria.categories, criteria.beats, criteria.languages)
    if not any(dimensions):
        return "default"
    return "|".join(",".join(sorted(values)) for values in dimensions)


def _lookup(name: str, template: QueryTemplate, request: QueryGenerationRequest) -> Optional[str]:
    """Resolve one placeholder name, or None when it has no value."""
    if name == "query":
        return request.original_query
    if name in SINGULAR_PLACEHOLDERS:
        return request.criteria.first(SINGULAR_PLACEHOLDERS[name])
    if name in PLURAL_PLACEHOLDERS:
        values = getattr(request.criteria, name)
        return " OR ".join(values) if values else None
    return template.variables.get(name) or None


def placeholders_resolve(template: QueryTemplate, request: QueryGenerationRequest) -> bool:
    """True when every placeholder in the template has a value for this request."""
    return all(
        _lookup(name, template, request) is not None for name in PLACEHOLDER.findall(template.template)
    )


def render_template(template: QueryTemplate, request: QueryGenerationRequest) -> str:
    """
    Resolve every placeholder and return the normalized query.

    Raises:
        ValidationError: unknown or empty placeholder, or invalid result
    """
    def substitute(match: re.Match) -> str:
        value = _lookup(match.group(1), template, request)
        if value is None:
            raise ValidationError(
                f"Template '{template.name}' has no value for placeholder {{{match.group(1)}}}",
                details={"template_id": template.id, "placeholder": match.group(1)},
            )
        return value

    rendered = PLACEHOLDER.sub(substitute, template.template)
    errors = validate_query(rendered)
    if errors:
        raise ValidationError(
            f"Template '{template.name}' produced an invalid query: {'; '.join(errors)}",
            details={"template_id": template.id, "errors": errors},
        )
    return normalize_query(rendered)


# =============================================================================
# PUBLIC API
# =============================================================================

class TemplateEngine:
    """Template selection with a criteria-keyed cache in front of the store."""

    def __init__(
        self,
        store: QueryStore,
        cache: CacheContext = None,
        cache_ttl: float = TEMPLATE_CACHE_TTL,
        max_templates: int = MAX_TEMPLATES,
    ):
        self.store = store
        self.cache_ttl = cache_ttl
        self.max_templates = max_templates
        self.cache = cache if cache is not None else CacheContext(
            max_size=settings.template_cache_max_size,
            default_ttl=cache_ttl,
            name="templates",
        )

    async def select_templates(self, request: QueryGenerationRequest) -> list[QueryTemplate]:
        """
        Templates applicable to the request, best first.

        A cache hit never touches the store. COMPOSITE templates are dropped
        unless every placeholder they use has a value.
        """
        key = criteria_cache_key(request.criteria)
        templates = self.cache.get(key)
        if templates is None:
            templates = await asyncio.to_thread(
                self.store.list_active_templates, request.criteria, self.max_templates
            )
            self.cache.set(key, templates, ttl=self.cache_ttl)
            logger.debug("Loaded %d templates for criteria key %r", len(templates), key)

        return [
            t for t in templates
            if t.type != TemplateType.COMPOSITE or placeholders_resolve(t, request)
        ]

    async def generate_from_templates(
        self,
        templates: list[QueryTemplate],
        request: QueryGenerationRequest,
    ) -> list[RenderedQuery]:
        """
        Render each template against the request.

        Each attempt bumps the template's usage_count; accepted renders also
        bump success_count. Rejected templates are logged and skipped.
        """
        rendered = []
        for template in templates:
            try:
                query = render_template(template, request)
            except ValidationError as e:
                logger.warning("Skipping template %s: %s", template.id, e.message)
                await self._record_attempt(template.id, success=False)
                continue

            rendered.append(RenderedQuery(
                template_id=template.id,
                template_name=template.name,
                template_type=template.type,
                query=query,
            ))
            await self._record_attempt(template.id, success=True)
        return rendered

    async def _record_attempt(self, template_id: str, success: bool) -> None:
        try:
            await asyncio.to_thread(self.store.increment_template_stats, template_id, success)
        except Exception as e:
            logger.warning("Could not update stats for template %s: %s", template_id, e)

    async def record_confidence(self, template_id: str, score: float) -> Optional[float]:
        """Fold an overall score into the template's average_confidence."""
        return await asyncio.to_thread(self.store.update_template_confidence, template_id, score)

    async def seed_default_templates(self) -> int:
        """
        Insert the built-in templates when the store has none.

        Returns:
            Number of templates inserted (0 when already seeded)
        """
        existing = await asyncio.to_thread(self.store.count_templates)
        if existing:
            return 0

        for template in DEFAULT_TEMPLATES:
            await asyncio.to_thread(lambda t=template: self.store.create_template(**t, variables={}))
        self.clear_cache()
        logger.info("Seeded %d default query templates", len(DEFAULT_TEMPLATES))
        return len(DEFAULT_TEMPLATES)

    async def get_template_stats(self) -> TemplateStats:
        total = await asyncio.to_thread(self.store.count_templates)
        active = await asyncio.to_thread(self.store.count_templates, True)
        by_type = await asyncio.to_thread(self.store.template_counts_by_type)
        top = await asyncio.to_thread(self.store.top_templates, 10)
        return TemplateStats(total=total, active=active, by_type=by_type, top_performing=top)

    def clear_cache(self) -> None:
        self.cache.clear()
