import os
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chartquery.api.routes import query, schema
from chartquery.api.config import reload_settings, get_settings
from chartquery.api.database import redact
from chartquery.api.services.engine_registry import get_registry

app = FastAPI(title="Chart Query Engine", version="0.1.0")

_settings = get_settings()
logging.basicConfig(level=os.getenv("LOG_LEVEL", _settings.logging.level))
logging.getLogger(__name__).info(
    "Startup diagnostics: provider=%s model=%s db=%s row_limit_style=%s",
    _settings.llm.provider if _settings.llm else None,
    _settings.llm.model if _settings.llm else None,
    redact(_settings.database.connection_string) if _settings.database.connection_string else None,
    _settings.pipeline.row_limit_style,
)


# CORS: allow frontend dev origins (adjust via CORS_ORIGINS env if needed)
default_origins = [
    "http://localhost:4200",
    "http://127.0.0.1:4200",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]

env_origins = os.environ.get("CORS_ORIGINS", "").strip()
allowed_origins = (
    [o.strip() for o in env_origins.split(",") if o.strip()] if env_origins else default_origins
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(query.router, prefix="/api")
app.include_router(schema.router, prefix="/api")


@app.get("/health", tags=["system"])
async def health_check() -> dict:
    """Simple health check endpoint."""
    return {"status": "ok"}


@app.post("/admin/reload-config", tags=["system"])
async def admin_reload_config() -> dict:
    """Reload config.yml, clear cached settings and drop services built from the old config."""
    settings = reload_settings()
    get_registry().clear()
    return {
        "reloaded": True,
        "provider": settings.llm.provider if settings.llm else None,
        "model": settings.llm.model if settings.llm else None,
    }


@app.get("/admin/llm-info", tags=["system"])
async def admin_llm_info() -> dict:
    settings = get_settings()
    return {
        "provider": settings.llm.provider if settings.llm else None,
        "model": settings.llm.model if settings.llm else None,
        "api_key_present": bool(settings.llm and settings.llm.api_key),
    }
