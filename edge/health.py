"""Health endpoint for the edge server.

GET /healthz is polled by the load balancer and the container runtime. It is
answered by the edge server itself: no origin call, no render handler, and it
is exempt from the HTTPS redirect so plaintext probes keep working.

Response body (200):
    {"status": "ok"}
"""

from __future__ import annotations

from starlette.requests import Request
from starlette.responses import JSONResponse

HEALTH_PATH = "/healthz"

HEALTH_OK_BODY: dict[str, str] = {"status": "ok"}


async def healthz(request: Request) -> JSONResponse:
    return JSONResponse(HEALTH_OK_BODY)
