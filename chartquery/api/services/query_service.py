from __future__ import annotations

import logging
import threading
from typing import Optional

from chartquery.api.config import Settings, get_settings
from chartquery.api.database import redact
from chartquery.api.models.catalog import SchemaCatalog
from chartquery.api.models.pipeline import PipelineResult
from chartquery.api.services.agents import LLMAgents, ReasoningAgents
from chartquery.api.services.cache import TTLCache
from chartquery.api.services.executor import StreamingExecutor
from chartquery.api.services.pipeline import DeliverCallback, EventCallback, QueryPipeline
from chartquery.api.services.schema_catalog import SchemaCatalogProvider
from chartquery.api.services.sql_validator import SqlSafetyValidator
from chartquery.api.services.table_selection import TableSelectionValidator
from chartquery.api.services.visualization import VisualizationSynthesizer

logger = logging.getLogger(__name__)


class QueryService:
    """Per-database entry point: owns the shared collaborators and builds one pipeline per question."""

    def __init__(
        self,
        connection_string: str,
        agents: Optional[ReasoningAgents] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.connection_string = connection_string
        self._settings = settings or get_settings()
        pipeline_cfg = self._settings.pipeline
        self._catalog_provider = SchemaCatalogProvider(
            connection_string,
            cache=TTLCache(
                ttl_seconds=self._settings.cache.ttl_seconds,
                max_size=self._settings.cache.max_size,
            ),
        )
        self._executor = StreamingExecutor(connection_string, batch_size=pipeline_cfg.batch_size)
        self._table_validator = TableSelectionValidator(max_tables=pipeline_cfg.max_tables)
        self._sql_validator = SqlSafetyValidator(
            default_limit=pipeline_cfg.default_row_limit,
            limit_style=pipeline_cfg.row_limit_style,
        )
        self._synthesizer = VisualizationSynthesizer()
        self._agents = agents
        self._agents_lock = threading.Lock()
        logger.info("Query service ready for %s", redact(connection_string))

    @property
    def agents(self) -> ReasoningAgents:
        # LLM clients are created on first use so schema endpoints work without an API key.
        with self._agents_lock:
            if self._agents is None:
                self._agents = LLMAgents(self._settings)
            return self._agents

    def submit(
        self,
        question: str,
        session_id: str,
        on_event: Optional[EventCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        deliver: Optional[DeliverCallback] = None,
    ) -> PipelineResult:
        logger.info("Session %s asked: %s", session_id, question)
        pipeline = QueryPipeline(
            catalog_provider=self._catalog_provider,
            agents=self.agents,
            executor=self._executor,
            table_validator=self._table_validator,
            sql_validator=self._sql_validator,
            synthesizer=self._synthesizer,
            sample_rows=self._settings.pipeline.recommendation_sample_rows,
            batch_size=self._settings.pipeline.batch_size,
            on_event=on_event,
            cancel_event=cancel_event,
            deliver=deliver,
        )
        return pipeline.run(question, session_id)

    def get_schema(self) -> SchemaCatalog:
        return self._catalog_provider.get_catalog()

    def refresh_schema(self) -> SchemaCatalog:
        return self._catalog_provider.refresh()
