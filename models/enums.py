"""
Enumerations shared by the pydantic models and the ORM tables.
"""

import enum


class TemplateType(str, enum.Enum):
    BASE = "BASE"
    COUNTRY_SPECIFIC = "COUNTRY_SPECIFIC"
    CATEGORY_SPECIFIC = "CATEGORY_SPECIFIC"
    BEAT_SPECIFIC = "BEAT_SPECIFIC"
    LANGUAGE_SPECIFIC = "LANGUAGE_SPECIFIC"
    COMPOSITE = "COMPOSITE"


class QueryType(str, enum.Enum):
    BASE = "BASE"
    EXPANDED = "EXPANDED"
    REFINED = "REFINED"
    LOCALIZED = "LOCALIZED"
    ENHANCED = "ENHANCED"


class QueryStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    FAILED = "FAILED"


class LogStatus(str, enum.Enum):
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class OperationType(str, enum.Enum):
    TEMPLATE_SELECTION = "template-selection"
    AI_ENHANCEMENT = "ai-enhancement"
    SCORING = "scoring"
    DEDUPLICATION = "deduplication"
    VALIDATION = "validation"


class EnhancementType(str, enum.Enum):
    EXPANSION = "expansion"
    REFINEMENT = "refinement"
    LOCALIZATION = "localization"


class DedupMethod(str, enum.Enum):
    EXACT = "exact"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"
