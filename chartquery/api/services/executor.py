from __future__ import annotations

import logging
import time
from typing import Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from chartquery.api.database import get_connection
from chartquery.api.models.pipeline import ResultBatch, Row, ValidatedQuery, normalize_cell
from chartquery.api.services.errors import QueryExecutionError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 100


class StreamingExecutor:
    """Runs validated SELECTs and yields their rows in bounded batches.

    Exactly one batch per query is flagged ``is_complete``: the last one. A query
    without rows still produces that batch, empty but carrying the column names.
    """

    def __init__(self, connection_string: str, batch_size: int = DEFAULT_BATCH_SIZE) -> None:
        self._connection_string = connection_string
        self._batch_size = batch_size

    def stream_batches(self, query: ValidatedQuery, batch_size: Optional[int] = None) -> Iterator[ResultBatch]:
        size = batch_size or self._batch_size
        if size < 1:
            raise ValueError("batch_size must be positive")

        logger.info("Executing SQL: %s", query.sql[:200])
        started = time.perf_counter()
        total = 0
        try:
            with get_connection(self._connection_string) as conn:
                result = conn.execution_options(stream_results=True).exec_driver_sql(query.sql)
                try:
                    columns = list(result.keys())
                    mapped = result.mappings()
                    pending = self._fetch(mapped, size)
                    while True:
                        upcoming = self._fetch(mapped, size) if pending else []
                        total += len(pending)
                        if not upcoming:
                            yield ResultBatch(columns=columns, rows=pending, is_complete=True, total_row_count=total)
                            break
                        yield ResultBatch(columns=columns, rows=pending, total_row_count=total)
                        pending = upcoming
                finally:
                    result.close()
        except SQLAlchemyError as exc:
            logger.error("Error executing SQL query: %s", exc)
            raise QueryExecutionError(f"Query execution failed: {exc}") from exc

        logger.info(
            "Query executed successfully. Rows: %d, Time: %.0fms",
            total,
            (time.perf_counter() - started) * 1000,
        )

    def _fetch(self, mapped, size: int) -> List[Row]:
        return [
            {key: normalize_cell(value) for key, value in row.items()}
            for row in mapped.fetchmany(size)
        ]
