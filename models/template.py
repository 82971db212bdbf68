"""
Template models - reusable query strings with named placeholders.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

from models.enums import TemplateType


class QueryTemplate(BaseModel):
    """
    A stored query template.

    The criterion fields (country, category, beat, language) tie a
    *_SPECIFIC template to one criteria value. BASE and COMPOSITE templates
    leave them empty.
    """
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    template: str  # e.g. "{query} {beat} journalist reporter"
    type: TemplateType
    country: Optional[str] = None
    category: Optional[str] = None
    beat: Optional[str] = None
    language: Optional[str] = None
    variables: dict[str, str] = Field(default_factory=dict)
    priority: int = 0
    is_active: bool = True
    usage_count: int = 0
    success_count: int = 0
    average_confidence: float = 0.0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RenderedQuery(BaseModel):
    """A template whose placeholders have all been resolved."""
    template_id: str
    template_name: str
    template_type: TemplateType
    query: str


class TemplateStats(BaseModel):
    """Summary returned by TemplateEngine.get_template_stats()."""
    total: int
    active: int
    by_type: dict[str, int]
    top_performing: list[QueryTemplate]


def template_rank_key(template: QueryTemplate) -> tuple:
    """
    Sort key for template selection.

    priority desc, then success_count desc, then average_confidence desc,
    then usage_count desc. Name breaks remaining ties.
    """
    return (
        -template.priority,
        -template.success_count,
        -template.average_confidence,
        -template.usage_count,
        template.name,
    )
