from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from chartquery.api.models.catalog import SchemaCatalog
from chartquery.api.models.pipeline import PipelineResult
from chartquery.api.models.visualization import VisualizationResponse


class QueryResultResponse(BaseModel):
    question: str
    session_id: str
    state: str
    sql: Optional[str]
    tables: List[str]
    columns: List[str]
    rows: List[Dict[str, Any]]
    row_count: int
    visualization: Optional[VisualizationResponse]
    events: List[Dict[str, Any]]
    timing: Dict[str, float]

    @classmethod
    def from_result(cls, result: PipelineResult) -> "QueryResultResponse":
        return cls(
            question=result.question,
            session_id=result.session_id,
            state=result.state.value,
            sql=result.query.sql if result.query else None,
            tables=list(result.intent.tables) if result.intent else [],
            columns=list(result.result.columns),
            rows=list(result.result.rows),
            row_count=result.result.row_count,
            visualization=result.visualization,
            events=[event.as_dict() for event in result.events],
            timing={"total_ms": round(result.duration_ms, 2)},
        )


class SchemaResponse(BaseModel):
    tables: List[dict]
    relationships: List[dict]
    refreshed_at: datetime

    @classmethod
    def from_catalog(cls, catalog: SchemaCatalog) -> "SchemaResponse":
        return cls(
            tables=[table.model_dump() for table in catalog.tables.values()],
            relationships=[edge.model_dump() for edge in catalog.relationships],
            refreshed_at=catalog.refreshed_at,
        )
