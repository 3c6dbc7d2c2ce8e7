"""Per-request observability context and access log.

ObservabilityMiddleware is the outermost middleware. For every HTTP request it:

  1. records the arrival time (monotonic clock)
  2. assigns a ULID request id (bound into every log line, echoed as ``X-Request-ID``)
  3. recovers the inbound trace id when telemetry is enabled
  4. binds a child logger carrying the trace id and stores it at
     ``request.state.log`` for downstream handlers
  5. after the last response byte has been handed to the server, emits exactly
     one access-log record, whether the response succeeded, failed, or the
     client went away

Implemented as a pure ASGI middleware rather than BaseHTTPMiddleware so the
record is written after the body is flushed, not when the handler returns.
"""

from __future__ import annotations

import time
from typing import Any

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from edge.observability.telemetry import Telemetry
from edge.utils.logger import clear_request_id, get_logger, set_request_id
from edge.utils.ulid import generate_ulid

logger = get_logger("edge.access")

TRACE_LOG_KEY = "logging.googleapis.com/trace"
REQUEST_ID_HEADER = "X-Request-ID"

# Logged when the handler never started a response (client went away first).
STATUS_CLIENT_CLOSED = 499


def latency_record(seconds: float) -> dict[str, int]:
    """Split a duration into the ``{seconds, nanos}`` shape Cloud Logging expects."""
    whole = int(seconds)
    return {"seconds": whole, "nanos": int((seconds - whole) * 1e9)}


def request_url(scope: Scope) -> str:
    """Path plus query string, as received."""
    url = scope["path"]
    query_string = scope.get("query_string", b"")
    if query_string:
        url = f"{url}?{query_string.decode('latin-1')}"
    return url


def _content_length(headers: Headers) -> int:
    try:
        return int(headers.get("content-length", 0))
    except ValueError:
        return 0


class ObservabilityMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        arrival = time.perf_counter()
        request_id = generate_ulid()
        token = set_request_id(request_id)

        request_headers = Headers(scope=scope)
        app_state = getattr(scope.get("app"), "state", None)
        telemetry: Any = getattr(app_state, "telemetry", None)
        trace_id = telemetry.trace_for(request_headers) if telemetry is not None else ""

        log = logger.bind(**{TRACE_LOG_KEY: trace_id})
        state = scope.setdefault("state", {})
        state["log"] = log
        state["request_id"] = request_id

        status_code = STATUS_CLIENT_CLOSED
        response_size = 0

        async def send_wrapper(message: Message) -> None:
            nonlocal status_code, response_size
            if message["type"] == "http.response.start":
                status_code = message["status"]
                message.setdefault("headers", [])
                headers = MutableHeaders(scope=message)
                headers[REQUEST_ID_HEADER] = request_id
                response_size = _content_length(headers)
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception:
            if status_code == STATUS_CLIENT_CLOSED:
                status_code = 500
            raise
        finally:
            elapsed = time.perf_counter() - arrival
            url = request_url(scope)
            log.info(
                url,
                timestamp=int(time.time() * 1000),
                httpRequest={
                    "status": status_code,
                    "requestUrl": url,
                    "requestMethod": scope["method"],
                    "userAgent": request_headers.get("user-agent", ""),
                    "responseSize": response_size,
                    "latency": latency_record(elapsed),
                },
                trace=trace_id,
            )
            if isinstance(telemetry, Telemetry):
                telemetry.record_request(scope["method"], status_code, elapsed * 1000)
            clear_request_id(token)
