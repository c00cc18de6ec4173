"""Raw ASGI transport.

The server hands over (scope, receive, send). Disconnects arrive as an
"http.disconnect" message on receive, or show up as a failing send.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from starlette.datastructures import Headers
from starlette.requests import ClientDisconnect
from starlette.types import Message, Receive, Scope, Send

from ..config import DEFAULT_REQUEST_METHOD, DEFAULT_RESPONSE_CODE
from ..errors import ConstructionError
from .base import (
    Connection,
    ConnectionOptions,
    build_response_headers,
    build_url,
    cancel_task,
)

logger = logging.getLogger(__name__)

# Errors a server raises when writing to a peer that went away
SEND_ERRORS = (OSError, ClientDisconnect)


def response_start(status: int, raw_headers: list[tuple[bytes, bytes]]) -> Message:
    return {"type": "http.response.start", "status": status, "headers": raw_headers}


def response_body(body: bytes = b"", more_body: bool = True) -> Message:
    return {"type": "http.response.body", "body": body, "more_body": more_body}


async def listen_for_disconnect(receive: Receive, on_disconnect: Callable[[], None]) -> None:
    """Drain receive until the client disconnects, then call on_disconnect."""
    while True:
        message = await receive()
        if message["type"] == "http.disconnect":
            on_disconnect()
            break


class AsgiConnection(Connection):
    """Connection over a raw ASGI (scope, receive, send) triple.

    Must be created inside a running event loop; it starts watching
    receive for the disconnect message right away.
    """

    def __init__(
        self,
        scope: Scope,
        receive: Receive,
        send: Send,
        options: ConnectionOptions | None = None,
    ) -> None:
        options = options or ConnectionOptions()

        if scope.get("type") != "http":
            raise ConstructionError(f"Expected an http scope, got {scope.get('type')!r}")
        path = scope.get("path")
        if not path:
            raise ConstructionError("ASGI scope has no path")

        request_headers = Headers(raw=list(scope.get("headers", [])))
        host = request_headers.get("host") or options.default_host
        if not host:
            raise ConstructionError("Request has no Host header and no default host is set")

        query = scope.get("query_string", b"").decode("latin-1")
        super().__init__(
            url=build_url(scope.get("scheme", "http"), host, path, query),
            method=scope.get("method") or DEFAULT_REQUEST_METHOD,
            request_headers=request_headers,
            status=options.status_code or DEFAULT_RESPONSE_CODE,
            response_headers=build_response_headers(options.headers),
        )
        self._send = send
        self._watcher: asyncio.Task | None = asyncio.get_running_loop().create_task(
            listen_for_disconnect(receive, self._mark_closed)
        )

    async def _write(self, message: Message) -> None:
        try:
            await self._send(message)
        except SEND_ERRORS as e:
            logger.debug(f"Send failed, treating as disconnect: {e!r}")
            self._mark_closed()

    async def send_head(self) -> None:
        self._begin_head()
        await self._write(response_start(self.status, list(self.response_headers.raw)))

    async def send_chunk(self, chunk: str) -> None:
        if self.closed:
            logger.debug("Dropping chunk written after close")
            return
        await self._write(response_body(chunk.encode("utf-8")))

    async def close(self) -> None:
        if self.closed:
            return
        if not self.head_sent:
            # Never started; answer with an empty event stream
            await self.send_head()
        if not self.closed:
            await self._write(response_body(more_body=False))
        self._mark_closed()

    def _release(self) -> None:
        watcher, self._watcher = self._watcher, None
        cancel_task(watcher)
