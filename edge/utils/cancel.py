"""Client-disconnect watcher.

Handlers that wait on the origin wrap the call in ``watch_disconnect()``:

    async with watch_disconnect(request) as cancel:
        feed = await build_feed(origin, site, cancel=cancel)

A background task reads ASGI ``receive`` messages until ``http.disconnect``
arrives and then sets the event. The origin client races its HTTP call against
the event, so an abandoned request no longer keeps a GraphQL call running.

Only use this for requests whose body the handler does not read: the watcher
consumes every message the server delivers.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from starlette.requests import Request

from edge.utils.logger import get_logger

logger = get_logger(__name__)


async def _wait_for_disconnect(request: Request, event: asyncio.Event) -> None:
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            event.set()
            return


@asynccontextmanager
async def watch_disconnect(request: Request) -> AsyncIterator[asyncio.Event]:
    """Yield an event that is set once the client disconnects."""
    event = asyncio.Event()
    watcher = asyncio.create_task(_wait_for_disconnect(request, event))
    try:
        yield event
    finally:
        watcher.cancel()
        try:
            await watcher
        except asyncio.CancelledError:
            pass
        if event.is_set():
            logger.debug("Client disconnected before the response was ready", path=request.url.path)
