from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Set

from chartquery.api.models.pipeline import (
    EventStatus,
    PipelineEvent,
    PipelineResult,
    PipelineStage,
    PipelineState,
    ResultSet,
    ValidatedQuery,
)
from chartquery.api.services.agents import ReasoningAgents
from chartquery.api.services.errors import (
    PipelineCancelledError,
    PipelineError,
    QueryExecutionError,
)
from chartquery.api.services.executor import StreamingExecutor
from chartquery.api.services.schema_catalog import SchemaCatalogProvider
from chartquery.api.services.sql_validator import SqlSafetyValidator
from chartquery.api.services.table_selection import TableSelectionValidator
from chartquery.api.services.visualization import VisualizationSynthesizer

logger = logging.getLogger(__name__)

DEFAULT_SAMPLE_ROWS = 20

EventCallback = Callable[[PipelineEvent], None]
DeliverCallback = Callable[[PipelineResult], None]

_TRANSITIONS: Dict[PipelineState, Set[PipelineState]] = {
    PipelineState.RECEIVED: {PipelineState.TABLES_SELECTED},
    PipelineState.TABLES_SELECTED: {PipelineState.QUERY_VALIDATED},
    PipelineState.QUERY_VALIDATED: {PipelineState.ROWS_STREAMING},
    PipelineState.ROWS_STREAMING: {PipelineState.VISUALIZATION_READY},
    PipelineState.VISUALIZATION_READY: {PipelineState.DELIVERED},
    PipelineState.DELIVERED: set(),
    PipelineState.FAILED: set(),
}


class QueryPipeline:
    """Runs one question through table selection, SQL validation, execution and synthesis.

    An instance handles exactly one query. Collaborators are shared and read-only;
    everything mutable (state, events, rows) lives on the instance.

    Fatal errors move the pipeline to ``FAILED`` and are re-raised as ``PipelineError``
    with the stage they happened in. The only recovered failure is the visualization
    recommender: its errors fall back to a shape-based visualization.
    """

    def __init__(
        self,
        *,
        catalog_provider: SchemaCatalogProvider,
        agents: ReasoningAgents,
        executor: StreamingExecutor,
        table_validator: Optional[TableSelectionValidator] = None,
        sql_validator: Optional[SqlSafetyValidator] = None,
        synthesizer: Optional[VisualizationSynthesizer] = None,
        sample_rows: int = DEFAULT_SAMPLE_ROWS,
        batch_size: Optional[int] = None,
        on_event: Optional[EventCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        deliver: Optional[DeliverCallback] = None,
    ) -> None:
        self._catalog_provider = catalog_provider
        self._agents = agents
        self._executor = executor
        self._table_validator = table_validator or TableSelectionValidator()
        self._sql_validator = sql_validator or SqlSafetyValidator()
        self._synthesizer = synthesizer or VisualizationSynthesizer()
        self._sample_rows = sample_rows
        self._batch_size = batch_size
        self._on_event = on_event
        self._cancel_event = cancel_event
        self._deliver = deliver
        self._state = PipelineState.RECEIVED
        self._events: List[PipelineEvent] = []
        self._result: Optional[PipelineResult] = None

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def events(self) -> List[PipelineEvent]:
        return list(self._events)

    def run(self, question: str, session_id: str) -> PipelineResult:
        if self._state is not PipelineState.RECEIVED:
            raise RuntimeError("A QueryPipeline instance can only run once")

        started = time.perf_counter()
        result = PipelineResult(question=question, session_id=session_id, state=self._state, events=self._events)
        self._result = result
        stage = PipelineStage.TABLE_SELECTION
        try:
            self._check_cancelled()
            self._emit(stage, EventStatus.STARTED, "Analyzing your question")
            catalog = self._catalog_provider.get_catalog()
            intent = self._agents.select_tables(question, catalog)
            intent = self._table_validator.validate(intent, catalog)
            result.intent = intent
            self._transition(PipelineState.TABLES_SELECTED)
            self._emit(stage, EventStatus.COMPLETED, f"Selected {len(intent.tables)} table(s)", intent.tables)

            stage = PipelineStage.QUERY_VALIDATION
            self._check_cancelled()
            self._emit(stage, EventStatus.STARTED, "Generating SQL query")
            candidate = self._agents.generate_sql(question, intent, catalog)
            query = self._sql_validator.validate(candidate)
            result.query = query
            self._transition(PipelineState.QUERY_VALIDATED)
            self._emit(stage, EventStatus.COMPLETED, "SQL query validated", [query.sql])

            stage = PipelineStage.EXECUTION
            self._check_cancelled()
            self._emit(stage, EventStatus.STARTED, "Executing query")
            self._transition(PipelineState.ROWS_STREAMING)
            result.result = self._consume(query)
            self._emit(stage, EventStatus.COMPLETED, f"Retrieved {result.result.row_count} row(s)")

            stage = PipelineStage.SYNTHESIS
            self._check_cancelled()
            self._emit(stage, EventStatus.STARTED, "Creating visualization")
            visualization = self._synthesize(question, query, result.result)
            self._check_cancelled()
            result.visualization = visualization
            self._transition(PipelineState.VISUALIZATION_READY)
            self._emit(
                stage,
                EventStatus.COMPLETED,
                f"Created {visualization.response_type.value} visualization",
                [visualization.reasoning] if visualization.reasoning else [],
            )

            if self._deliver is not None:
                self._deliver(result)
            self._transition(PipelineState.DELIVERED)
            return result
        except PipelineError as exc:
            if exc.stage is None:
                exc.stage = stage
            self._fail(exc)
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected failure during %s", stage.value)
            error = PipelineError(f"{stage.value} failed: {exc}", stage=stage)
            self._fail(error)
            raise error from exc
        finally:
            result.duration_ms = (time.perf_counter() - started) * 1000
            logger.info(
                "Pipeline for session %s finished in state %s after %.0fms",
                session_id,
                self._state.value,
                result.duration_ms,
            )

    def _consume(self, query: ValidatedQuery) -> ResultSet:
        rows = ResultSet()
        batches = self._executor.stream_batches(query, self._batch_size)
        try:
            for batch in batches:
                self._check_cancelled()
                rows.extend(batch)
                logger.debug("Received batch of %d rows (total %d)", len(batch.rows), batch.total_row_count)
                if batch.is_complete:
                    return rows
        finally:
            close = getattr(batches, "close", None)
            if close is not None:
                close()
        raise QueryExecutionError("Result stream ended before the final batch")

    def _synthesize(self, question: str, query: ValidatedQuery, rows: ResultSet):
        if not rows.rows:
            return self._synthesizer.build_fallback(rows.columns, rows.rows)
        try:
            recommendation = self._agents.recommend_visualization(
                question,
                query.sql,
                rows.columns,
                rows.sample(self._sample_rows),
                rows.row_count,
            )
        except Exception as exc:  # noqa: BLE001
            logger.warning("Visualization recommendation failed, using fallback: %s", exc)
            return self._synthesizer.build_fallback(rows.columns, rows.rows, reason=str(exc))
        return self._synthesizer.build(recommendation, rows.columns, rows.rows)

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise PipelineCancelledError("Query was cancelled")

    def _transition(self, target: PipelineState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"Illegal pipeline transition {self._state.value} -> {target.value}")
        logger.debug("Pipeline state %s -> %s", self._state.value, target.value)
        self._state = target
        if self._result is not None:
            self._result.state = target

    def _fail(self, error: PipelineError) -> None:
        logger.error("Pipeline failed at %s: %s", error.stage.value if error.stage else "unknown", error.message)
        if self._state not in (PipelineState.DELIVERED, PipelineState.FAILED):
            self._state = PipelineState.FAILED
        if self._result is not None:
            self._result.state = self._state
            self._result.visualization = None
            if isinstance(error, PipelineCancelledError):
                self._result.result = ResultSet()
        if error.stage is not None:
            self._emit(error.stage, EventStatus.ERROR, error.message)

    def _emit(
        self,
        stage: PipelineStage,
        status: EventStatus,
        message: str,
        details: Optional[List[str]] = None,
    ) -> None:
        event = PipelineEvent(
            stage=stage,
            status=status,
            message=message,
            details=list(details or []),
            timestamp=time.time(),
        )
        self._events.append(event)
        if self._on_event is not None:
            self._on_event(event)
