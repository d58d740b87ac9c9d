from __future__ import annotations

from enum import Enum
from typing import List, Optional

from chartquery.api.models.pipeline import PipelineStage


class PipelineError(Exception):
    """Fatal failure of one pipeline stage; the message is shown to the user."""

    stage: Optional[PipelineStage] = None

    def __init__(self, message: str, *, stage: Optional[PipelineStage] = None) -> None:
        super().__init__(message)
        self.message = message
        if stage is not None:
            self.stage = stage

    @property
    def error_type(self) -> str:
        return type(self).__name__

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.value if self.stage else None,
            "error": self.error_type,
            "message": self.message,
        }


class NoValidTablesError(PipelineError):
    stage = PipelineStage.TABLE_SELECTION

    def __init__(self, available_tables: List[str]) -> None:
        self.available_tables = list(available_tables)
        listing = ", ".join(self.available_tables) if self.available_tables else "(none)"
        super().__init__(
            f"Could not identify any valid tables for your query. Available tables are: {listing}"
        )


class UnsafeSqlRule(str, Enum):
    EMPTY = "empty"
    NOT_SELECT = "not_select"
    FORBIDDEN_KEYWORD = "forbidden_keyword"
    MULTIPLE_STATEMENTS = "multiple_statements"
    COMMENT_INJECTION = "comment_injection"


class UnsafeSqlError(PipelineError):
    stage = PipelineStage.QUERY_VALIDATION

    def __init__(self, rule: UnsafeSqlRule, message: str, *, keyword: Optional[str] = None) -> None:
        self.rule = rule
        self.keyword = keyword
        super().__init__(message)

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["rule"] = self.rule.value
        return payload


class AgentFailureError(PipelineError):
    """An agent answered with an ``ERROR:`` token or something unparseable."""

    def __init__(self, agent: str, reason: str, *, stage: Optional[PipelineStage] = None) -> None:
        self.agent = agent
        self.reason = reason
        super().__init__(f"{agent} failed: {reason}", stage=stage)


class QueryExecutionError(PipelineError):
    stage = PipelineStage.EXECUTION


class PipelineCancelledError(PipelineError):
    pass
