from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class QueryRequest(BaseModel):
    question: str
    session_id: Optional[str] = Field(default=None, max_length=128)
    connection_string: Optional[str] = None


class SchemaRefreshRequest(BaseModel):
    connection_string: Optional[str] = Field(default=None, min_length=5)
