from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Union

import numpy as np
from pydantic import BaseModel, ConfigDict, Field, field_validator

from chartquery.api.models.visualization import VisualizationResponse

# Closed set of scalar types a result cell may hold.
Cell = Union[str, int, float, bool, datetime, date, None]
Row = Dict[str, Cell]


def normalize_cell(value: Any) -> Cell:
    """Coerce a driver value into one of the ``Cell`` types."""
    if value is None or isinstance(value, (str, bool, int, float, datetime, date)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, np.bool_):
        return bool(value)
    if isinstance(value, np.integer):
        return int(value)
    if isinstance(value, np.floating):
        return float(value)
    if isinstance(value, time):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


class Complexity(str, Enum):
    SIMPLE = "Simple"
    MEDIUM = "Medium"
    COMPLEX = "Complex"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            for member in cls:
                if member.value.lower() == value.strip().lower():
                    return member
        return None


class QueryIntent(BaseModel):
    """What the table-selection agent understood from the question."""

    model_config = ConfigDict(populate_by_name=True)

    intent: str = ""
    tables: List[str] = Field(default_factory=list)
    relationships: str = ""
    complexity: Complexity = Complexity.SIMPLE

    @field_validator("tables", mode="before")
    @classmethod
    def _coerce_tables(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return [str(item).strip() for item in value if item is not None and str(item).strip()]

    @field_validator("relationships", mode="before")
    @classmethod
    def _coerce_relationships(cls, value):
        if value is None:
            return ""
        if isinstance(value, (list, tuple)):
            return "; ".join(str(item) for item in value)
        return str(value)


@dataclass(frozen=True)
class ValidatedQuery:
    sql: str
    original: str
    row_limit_injected: bool = False


@dataclass(frozen=True)
class ResultBatch:
    columns: List[str]
    rows: List[Row]
    is_complete: bool = False
    total_row_count: int = 0


@dataclass
class ResultSet:
    columns: List[str] = field(default_factory=list)
    rows: List[Row] = field(default_factory=list)

    def extend(self, batch: ResultBatch) -> None:
        if not self.columns:
            self.columns = list(batch.columns)
        self.rows.extend(batch.rows)

    def sample(self, size: int) -> List[Row]:
        return self.rows[:size]

    @property
    def row_count(self) -> int:
        return len(self.rows)


class PipelineState(str, Enum):
    RECEIVED = "received"
    TABLES_SELECTED = "tables_selected"
    QUERY_VALIDATED = "query_validated"
    ROWS_STREAMING = "rows_streaming"
    VISUALIZATION_READY = "visualization_ready"
    DELIVERED = "delivered"
    FAILED = "failed"


class PipelineStage(str, Enum):
    TABLE_SELECTION = "table-selection"
    QUERY_VALIDATION = "query-validation"
    EXECUTION = "execution"
    SYNTHESIS = "synthesis"


class EventStatus(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass(frozen=True)
class PipelineEvent:
    stage: PipelineStage
    status: EventStatus
    message: str
    details: List[str] = field(default_factory=list)
    timestamp: float = 0.0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage.value,
            "status": self.status.value,
            "message": self.message,
            "details": list(self.details),
            "timestamp": self.timestamp,
        }


@dataclass
class PipelineResult:
    question: str
    session_id: str
    state: PipelineState
    intent: Optional[QueryIntent] = None
    query: Optional[ValidatedQuery] = None
    result: ResultSet = field(default_factory=ResultSet)
    visualization: Optional[VisualizationResponse] = None
    events: List[PipelineEvent] = field(default_factory=list)
    duration_ms: float = 0.0
