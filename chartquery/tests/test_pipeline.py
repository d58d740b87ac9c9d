from __future__ import annotations

import threading

import pytest

from chartquery.api.models.pipeline import (
    EventStatus,
    PipelineStage,
    PipelineState,
    ResultBatch,
)
from chartquery.api.models.visualization import ResponseType, VisualizationRecommendation
from chartquery.api.services.errors import (
    AgentFailureError,
    NoValidTablesError,
    PipelineCancelledError,
    PipelineError,
    QueryExecutionError,
    UnsafeSqlError,
)
from chartquery.api.services.executor import StreamingExecutor
from chartquery.api.services.pipeline import QueryPipeline
from chartquery.api.services.schema_catalog import SchemaCatalogProvider
from chartquery.api.services.sql_validator import SqlSafetyValidator
from conftest import FakeAgents


def _pipeline(sales_db, agents, **kwargs) -> QueryPipeline:
    return QueryPipeline(
        catalog_provider=SchemaCatalogProvider(sales_db),
        agents=agents,
        executor=kwargs.pop("executor", StreamingExecutor(sales_db, batch_size=100)),
        sql_validator=SqlSafetyValidator(limit_style="limit"),
        **kwargs,
    )


def test_happy_path_reaches_delivered(sales_db):
    agents = FakeAgents(
        tables=["orders"],
        sql="SELECT Region, Amount FROM Orders",
        recommendation=VisualizationRecommendation(
            response_type="Chart",
            chart_type="Column",
            category_column_index=0,
            value_column_indices=[1],
            reasoning="compare regions",
        ),
    )
    events = []
    delivered = []
    pipeline = _pipeline(sales_db, agents, on_event=events.append, deliver=delivered.append)

    result = pipeline.run("Total amount by region", "session-1")

    assert result.state is PipelineState.DELIVERED
    assert pipeline.state is PipelineState.DELIVERED
    assert result.intent.tables == ["Orders", "Customers", "Regions"]
    assert result.query.sql == "SELECT Region, Amount FROM Orders\nLIMIT 1000"
    assert result.result.row_count == 250
    # recommender sees a sample, synthesis sees every row
    assert agents.sample_size == 20
    assert agents.total_rows == 250
    chart = result.visualization.chart
    assert chart.categories == ["North", "South"]
    assert sum(chart.series[0].data) == pytest.approx(sum(range(1, 251)))
    assert delivered == [result]
    assert [(event.stage, event.status) for event in events] == [
        (PipelineStage.TABLE_SELECTION, EventStatus.STARTED),
        (PipelineStage.TABLE_SELECTION, EventStatus.COMPLETED),
        (PipelineStage.QUERY_VALIDATION, EventStatus.STARTED),
        (PipelineStage.QUERY_VALIDATION, EventStatus.COMPLETED),
        (PipelineStage.EXECUTION, EventStatus.STARTED),
        (PipelineStage.EXECUTION, EventStatus.COMPLETED),
        (PipelineStage.SYNTHESIS, EventStatus.STARTED),
        (PipelineStage.SYNTHESIS, EventStatus.COMPLETED),
    ]
    assert result.events == events
    assert result.duration_ms > 0


def test_no_valid_tables_fails_at_table_selection(sales_db):
    agents = FakeAgents(tables=["Ghosts"])
    pipeline = _pipeline(sales_db, agents)

    with pytest.raises(NoValidTablesError) as exc_info:
        pipeline.run("where are the ghosts", "s")

    assert pipeline.state is PipelineState.FAILED
    assert "Available tables are:" in exc_info.value.message
    assert agents.calls == ["select_tables"]
    last = pipeline.events[-1]
    assert (last.stage, last.status) == (PipelineStage.TABLE_SELECTION, EventStatus.ERROR)


def test_unsafe_sql_is_never_executed(sales_db):
    class ExplodingExecutor:
        def stream_batches(self, query, batch_size=None):
            raise AssertionError("rejected SQL must not reach the executor")

    agents = FakeAgents(sql="SELECT * FROM Orders; DROP TABLE Orders;")
    pipeline = _pipeline(sales_db, agents, executor=ExplodingExecutor())

    with pytest.raises(UnsafeSqlError) as exc_info:
        pipeline.run("drop it", "s")

    assert exc_info.value.stage is PipelineStage.QUERY_VALIDATION
    assert pipeline.state is PipelineState.FAILED
    assert pipeline.events[-1].message == exc_info.value.message


def test_agent_error_token_gets_stage(sales_db):
    agents = FakeAgents(sql_error=AgentFailureError("query generator", "column Foo does not exist"))
    pipeline = _pipeline(sales_db, agents)

    with pytest.raises(AgentFailureError) as exc_info:
        pipeline.run("foo?", "s")

    assert exc_info.value.stage is PipelineStage.QUERY_VALIDATION
    assert exc_info.value.to_dict() == {
        "stage": "query-validation",
        "error": "AgentFailureError",
        "message": "query generator failed: column Foo does not exist",
    }


def test_recommender_failure_falls_back(sales_db):
    agents = FakeAgents(
        sql="SELECT Region, COUNT(*) AS Orders FROM Orders GROUP BY Region",
        recommend_error=AgentFailureError("visualization recommender", "response was not valid JSON"),
    )
    result = _pipeline(sales_db, agents).run("orders per region", "s")

    assert result.state is PipelineState.DELIVERED
    assert result.visualization.confidence == 0.3
    assert result.visualization.response_type is ResponseType.CHART
    assert "not valid JSON" in result.visualization.reasoning


def test_empty_result_skips_recommender(sales_db):
    agents = FakeAgents(sql="SELECT Id FROM Orders WHERE Id < 0")
    result = _pipeline(sales_db, agents).run("nothing", "s")

    assert "recommend_visualization" not in agents.calls
    assert result.visualization.text.content == "No results found."


def test_unexpected_error_is_wrapped_with_stage(sales_db):
    agents = FakeAgents(table_error=ConnectionError("llm unreachable"))
    pipeline = _pipeline(sales_db, agents)

    with pytest.raises(PipelineError) as exc_info:
        pipeline.run("q", "s")

    assert exc_info.value.stage is PipelineStage.TABLE_SELECTION
    assert "llm unreachable" in exc_info.value.message


def test_cancel_between_batches_stops_stream(sales_db):
    cancel = threading.Event()
    consumed = []

    class CountingExecutor:
        def __init__(self):
            self.closed = False

        def stream_batches(self, query, batch_size=None):
            try:
                for index in range(10):
                    consumed.append(index)
                    if index == 1:
                        cancel.set()
                    yield ResultBatch(columns=["Id"], rows=[{"Id": index}], is_complete=index == 9)
            finally:
                self.closed = True

    executor = CountingExecutor()
    agents = FakeAgents()
    pipeline = _pipeline(sales_db, agents, executor=executor, cancel_event=cancel)

    with pytest.raises(PipelineCancelledError) as exc_info:
        pipeline.run("q", "s")

    assert consumed == [0, 1]
    assert executor.closed is True
    assert exc_info.value.stage is PipelineStage.EXECUTION
    assert pipeline.state is PipelineState.FAILED
    assert "recommend_visualization" not in agents.calls


def test_cancel_before_start(sales_db):
    cancel = threading.Event()
    cancel.set()
    agents = FakeAgents()
    with pytest.raises(PipelineCancelledError):
        _pipeline(sales_db, agents, cancel_event=cancel).run("q", "s")
    assert agents.calls == []


def test_stream_without_completion_batch_fails(sales_db):
    class TruncatedExecutor:
        def stream_batches(self, query, batch_size=None):
            yield ResultBatch(columns=["Id"], rows=[{"Id": 1}])

    with pytest.raises(QueryExecutionError):
        _pipeline(sales_db, FakeAgents(), executor=TruncatedExecutor()).run("q", "s")


def test_pipeline_runs_once(sales_db):
    pipeline = _pipeline(sales_db, FakeAgents(sql="SELECT Id FROM Regions"))
    pipeline.run("q", "s")
    with pytest.raises(RuntimeError):
        pipeline.run("q", "s")
