from typing import Optional

from fastapi import APIRouter, Body, HTTPException, status

from chartquery.api.models.requests import SchemaRefreshRequest
from chartquery.api.models.responses import SchemaResponse
from chartquery.api.services.engine_registry import get_registry
from chartquery.deps.validation import resolve_connection_string

router = APIRouter(prefix="/schema", tags=["schema"])


@router.get("", response_model=SchemaResponse)
def get_schema(connection_string: Optional[str] = None) -> SchemaResponse:
    resolved = resolve_connection_string(connection_string)
    try:
        catalog = get_registry().get_service(resolved).get_schema()
        return SchemaResponse.from_catalog(catalog)
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.post("/refresh", response_model=SchemaResponse)
def refresh_schema(payload: Optional[SchemaRefreshRequest] = Body(default=None)) -> SchemaResponse:
    resolved = resolve_connection_string(payload.connection_string if payload else None)
    try:
        catalog = get_registry().get_service(resolved).refresh_schema()
        return SchemaResponse.from_catalog(catalog)
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
