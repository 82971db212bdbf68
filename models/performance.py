"""
Performance log model - one entry per pipeline stage per run.
"""

from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field

from models.enums import LogStatus, OperationType


class PerformanceLogEntry(BaseModel):
    """Append-only timing record for a single stage."""
    id: Optional[int] = None  # assigned by the database
    search_id: str
    batch_id: str
    operation: OperationType
    start_time: datetime
    end_time: datetime
    duration_ms: int
    status: LogStatus
    metadata: dict[str, Any] = Field(default_factory=dict)
