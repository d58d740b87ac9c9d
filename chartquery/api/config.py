from __future__ import annotations

import logging
import os
from functools import lru_cache
import re
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class DatabaseConfig(BaseModel):
    connection_string: Optional[str] = Field(default=None)
    pool_size: int = Field(default=10, ge=1)
    pool_timeout: int = Field(default=30, ge=1)


class CacheConfig(BaseModel):
    # Schema snapshots are expensive to reflect; keep them for an hour by default.
    ttl_seconds: int = Field(default=3600, ge=1)
    max_size: int = Field(default=16, ge=1)


class AgentOptions(BaseModel):
    temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    max_tokens: int = Field(default=800, ge=1)


class AgentsConfig(BaseModel):
    table_selection: AgentOptions = AgentOptions(temperature=0.2, max_tokens=500)
    query_generation: AgentOptions = AgentOptions(temperature=0.1, max_tokens=1024)
    visualization: AgentOptions = AgentOptions(temperature=0.3, max_tokens=1000)


class LLMConfig(BaseModel):
    # Provider can be 'groq' (default) or 'openai'.
    provider: str = Field(default="groq")
    api_key: str
    # Keep the hyphen after 'llama' (e.g., 'llama-3.1-8b-instant').
    model: str = Field(default="llama-3.1-8b-instant")
    agents: AgentsConfig = AgentsConfig()


class PipelineConfig(BaseModel):
    max_tables: int = Field(default=5, ge=1)
    default_row_limit: int = Field(default=1000, ge=1)
    # 'top' injects T-SQL `SELECT TOP n`, 'limit' appends `LIMIT n`.
    row_limit_style: str = Field(default="top", pattern="^(top|limit)$")
    batch_size: int = Field(default=100, ge=1)
    recommendation_sample_rows: int = Field(default=20, ge=1)


class LoggingConfig(BaseModel):
    level: str = Field(default="INFO")


class Settings(BaseModel):
    database: DatabaseConfig = DatabaseConfig()
    cache: CacheConfig = CacheConfig()
    llm: Optional[LLMConfig] = None
    pipeline: PipelineConfig = PipelineConfig()
    logging: LoggingConfig = LoggingConfig()


def _load_yaml_config(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        raw = yaml.safe_load(handle) or {}
    # Interpolate environment variables like ${VAR}
    pattern = re.compile(r"\$\{([^}]+)\}")

    def interpolate(value):
        if isinstance(value, str):
            def repl(match):
                var = match.group(1)
                return os.getenv(var, match.group(0))
            return pattern.sub(repl, value)
        return value

    def walk(obj):
        if isinstance(obj, dict):
            return {k: walk(v) for k, v in obj.items()}
        if isinstance(obj, list):
            return [walk(v) for v in obj]
        return interpolate(obj)

    return walk(raw)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    config_path = Path(os.getenv("CONFIG_PATH", Path.cwd() / "config.yml"))
    raw = _load_yaml_config(config_path)
    settings = Settings.model_validate(raw)
    if settings.llm and settings.llm.model and settings.llm.model.startswith("llama3"):
        logger.warning(
            "LLM model '%s' looks malformed. Did you mean 'llama-3.1-8b-instant' or another hyphenated form?",
            settings.llm.model,
        )
    return settings


def reload_settings() -> Settings:
    """Invalidate cache and reload settings, useful after editing config.yml."""
    get_settings.cache_clear()  # type: ignore[attr-defined]
    return get_settings()
