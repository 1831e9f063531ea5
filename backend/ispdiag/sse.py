"""
Server-Sent Events for long-running diagnostics.

The run executes in a worker thread with its own app context and pushes
events onto a queue; the response generator drains the queue. A client
that disconnects stops the generator but not the run, which still
persists its log.
"""
import json
import logging
import queue
import threading
from typing import Any, Callable

from flask import Response, current_app

from ispdiag.errors import ServiceError

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    'Cache-Control': 'no-cache',
    'Connection': 'keep-alive',
    'X-Accel-Buffering': 'no',
}
KEEPALIVE_SECONDS = 15


def format_event(event: str, data: Any) -> str:
    return f"event: {event}\ndata: {json.dumps(data, default=str)}\n\n"


def stream_run(run: Callable[[Callable[[str, Any], None]], Any]) -> Response:
    """Stream the events ``run(send_event)`` emits as ``text/event-stream``.

    An exception escaping ``run`` becomes a final ``error`` event.
    """
    app = current_app._get_current_object()
    events: 'queue.Queue' = queue.Queue()

    def send_event(event: str, data: Any) -> None:
        events.put((event, data))

    def worker():
        with app.app_context():
            try:
                run(send_event)
            except ServiceError as e:
                send_event('error', {'message': e.message, 'status_code': e.status_code})
            except Exception as e:
                logger.exception('Streaming diagnostic failed')
                send_event('error', {'message': str(e)})
            finally:
                events.put(None)

    threading.Thread(target=worker, name='sse-diagnostic', daemon=True).start()

    def generate():
        while True:
            try:
                item = events.get(timeout=KEEPALIVE_SECONDS)
            except queue.Empty:
                yield ": keep-alive\n\n"
                continue
            if item is None:
                break
            yield format_event(*item)

    return Response(generate(), mimetype='text/event-stream', headers=SSE_HEADERS)
