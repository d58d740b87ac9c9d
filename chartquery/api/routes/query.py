import json
import logging
import queue
import threading
from typing import Any, Dict, Iterator, Tuple

from fastapi import APIRouter, HTTPException, status, Depends
from fastapi.responses import StreamingResponse

from chartquery.api.models.requests import QueryRequest
from chartquery.api.models.responses import QueryResultResponse
from chartquery.api.services.engine_registry import get_registry
from chartquery.api.services.errors import PipelineError
from chartquery.deps.validation import resolve_connection_string, validate_query_payload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/query", tags=["query"])

# Seconds a finished or abandoned stream waits for its pipeline thread.
WORKER_JOIN_TIMEOUT = 5.0


@router.post("", response_model=QueryResultResponse)
def process_query(
    validated: QueryRequest = Depends(validate_query_payload),
) -> QueryResultResponse:
    connection_string = resolve_connection_string(validated.connection_string)
    try:
        service = get_registry().get_service(connection_string)
        result = service.submit(validated.question, validated.session_id)
        return QueryResultResponse.from_result(result)
    except PipelineError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=exc.to_dict()
        ) from exc
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)
        ) from exc


@router.post("/stream")
def stream_query(
    validated: QueryRequest = Depends(validate_query_payload),
) -> StreamingResponse:
    """Run the pipeline and stream progress as NDJSON.

    Each line is ``{"type": "event" | "result" | "error", "data": {...}}``; the last
    line is always a result or an error. Dropping the connection cancels the query.

    The pipeline runs on a daemon thread. Cancellation is cooperative: after a
    disconnect the thread keeps going until its next stage or batch boundary, so a
    blocking LLM or driver call finishes first. The stream waits up to
    ``WORKER_JOIN_TIMEOUT`` seconds for it and then lets it finish on its own.
    """
    connection_string = resolve_connection_string(validated.connection_string)
    try:
        service = get_registry().get_service(connection_string)
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    messages: "queue.Queue[Tuple[str, Dict[str, Any]]]" = queue.Queue()
    cancel_event = threading.Event()

    def run_pipeline() -> None:
        try:
            result = service.submit(
                validated.question,
                validated.session_id,
                on_event=lambda event: messages.put(("event", event.as_dict())),
                cancel_event=cancel_event,
            )
            payload = QueryResultResponse.from_result(result).model_dump(mode="json", by_alias=True)
            messages.put(("result", payload))
        except PipelineError as exc:
            messages.put(("error", exc.to_dict()))
        except Exception as exc:  # noqa: BLE001
            logger.exception("Streaming query failed")
            messages.put(("error", {"stage": None, "error": type(exc).__name__, "message": str(exc)}))

    def body() -> Iterator[str]:
        worker = threading.Thread(target=run_pipeline, name=f"query-{validated.session_id}", daemon=True)
        worker.start()
        try:
            while True:
                kind, payload = messages.get()
                yield json.dumps({"type": kind, "data": payload}, default=str) + "\n"
                if kind != "event":
                    break
        finally:
            # Client gone or stream finished; either way stop the pipeline.
            cancel_event.set()
            worker.join(timeout=WORKER_JOIN_TIMEOUT)
            if worker.is_alive():
                logger.warning("Query worker %s still running after cancellation", worker.name)

    return StreamingResponse(body(), media_type="application/x-ndjson")
