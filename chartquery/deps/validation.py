import uuid
from typing import Optional

from fastapi import HTTPException, status, Body
from chartquery.api.config import get_settings
from chartquery.api.models.requests import QueryRequest
from chartquery.utils.sanitizer import (
    clean_input,
    is_too_long,
    DEFAULT_MAX_LENGTH,
)


def validate_query_payload(payload: QueryRequest = Body(...)) -> QueryRequest:
    """
    FastAPI dependency to sanitize and validate QueryRequest coming from JSON body.
    Raises HTTPException on invalid input. Returns sanitized payload with a session id.
    """
    cleaned = clean_input(payload.question if payload.question is not None else "")
    if cleaned == "":
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Question cannot be empty after trimming whitespace.",
        )

    if is_too_long(cleaned, DEFAULT_MAX_LENGTH):
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Question is too long (>{DEFAULT_MAX_LENGTH} chars).",
        )

    payload.question = cleaned
    if not payload.session_id:
        payload.session_id = uuid.uuid4().hex
    return payload


def resolve_connection_string(explicit: Optional[str] = None) -> str:
    """Use the request's connection string, else the configured default."""
    connection_string = explicit or get_settings().database.connection_string
    if not connection_string:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="connection_string is required (none given and database.connection_string is not configured)",
        )
    return connection_string
