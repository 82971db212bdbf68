"""
Error types for the query generation pipeline.

Recovery by type:
    ValidationError   -> candidate dropped
    ProviderError     -> warning for that enhancement type
    PersistenceError  -> warning for that item
    PipelineError     -> run aborted
"""
from typing import Any, Optional


class QueryGenerationError(Exception):
    """Base error carrying a machine-readable code and type."""

    code = "QUERY_GENERATION_ERROR"
    error_type = "query_generation_error"

    def __init__(
        self,
        message: str,
        code: str = None,
        error_type: str = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.code
        self.error_type = error_type or self.error_type
        self.details = details or {}

    def to_dict(self) -> dict:
        """Shape used inside the HTTP error envelope."""
        body = {
            "code": self.code,
            "message": self.message,
            "type": self.error_type,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(QueryGenerationError):
    code = "VALIDATION_ERROR"
    error_type = "validation_error"


class ProviderError(QueryGenerationError):
    code = "AI_ERROR"
    error_type = "ai_error"


class PersistenceError(QueryGenerationError):
    code = "PERSISTENCE_ERROR"
    error_type = "persistence_error"


class PipelineError(QueryGenerationError):
    code = "PIPELINE_ERROR"
    error_type = "pipeline_error"
