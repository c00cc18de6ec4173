"""Starlette Request/Response transport.

The endpoint returns EventStreamResponse to starlette. Nothing is written
until starlette calls the response; that first pull runs the session's
start-up (head, retry hint) and the response then stays open until the
connection closes.

    async def events(request: Request) -> Response:
        session = await create_session(request)
        session.events.once("connected", lambda: channel.register(session))
        return session.response
"""

from __future__ import annotations

import asyncio
import contextlib
import logging

from starlette.requests import Request
from starlette.responses import Response
from starlette.types import Message, Receive, Scope, Send

from ..config import DEFAULT_RESPONSE_CODE
from ..errors import ConstructionError
from .asgi import SEND_ERRORS, listen_for_disconnect, response_body, response_start
from .base import (
    Connection,
    ConnectionOptions,
    PullHandler,
    build_response_headers,
    build_url,
    cancel_task,
)

logger = logging.getLogger(__name__)

# Headers of a template response that do not apply to an open-ended body
_SKIPPED_TEMPLATE_HEADERS = frozenset({"content-length", "transfer-encoding"})


class EventStreamResponse(Response):
    """Pull-driven response backed by a StarletteConnection."""

    media_type = "text/event-stream"

    def __init__(self, connection: StarletteConnection) -> None:
        # Status and headers live on the connection until the head is sent
        self.connection = connection
        self.background = None

    @property
    def status_code(self) -> int:  # type: ignore[override]
        return self.connection.status

    @property
    def raw_headers(self) -> list[tuple[bytes, bytes]]:  # type: ignore[override]
        return self.connection.response_headers.raw

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        await self.connection.pulled(receive, send)


class StarletteConnection(Connection):
    """Connection over a starlette Request, answered by EventStreamResponse."""

    deferred_head = True

    def __init__(
        self,
        request: Request,
        response: Response | None = None,
        options: ConnectionOptions | None = None,
    ) -> None:
        options = options or ConnectionOptions()
        if request.scope.get("type") != "http":
            raise ConstructionError(f"Expected an http request, got {request.scope.get('type')!r}")
        path = request.scope.get("path")
        if not path:
            raise ConstructionError("Request has no path")

        host = request.headers.get("host") or options.default_host
        if not host:
            raise ConstructionError("Request has no Host header and no default host is set")

        template_headers = None
        if response is not None:
            template_headers = {
                key: value
                for key, value in response.headers.items()
                if key not in _SKIPPED_TEMPLATE_HEADERS
            }

        query = request.scope.get("query_string", b"").decode("latin-1")
        super().__init__(
            url=build_url(request.scope.get("scheme", "http"), host, path, query),
            method=request.method,
            request_headers=request.headers,
            status=(
                options.status_code
                or (response.status_code if response is not None else None)
                or DEFAULT_RESPONSE_CODE
            ),
            response_headers=build_response_headers(template_headers, options.headers),
        )
        self.response = EventStreamResponse(self)
        self._send: Send | None = None
        self._watcher: asyncio.Task | None = None
        self._pull_handler: PullHandler | None = None

    def on_pull(self, handler: PullHandler) -> None:
        self._pull_handler = handler

    async def pulled(self, receive: Receive, send: Send) -> None:
        """Serve the response: start up, then hold it open until closed.

        Cancellation by the server (client went away, shutdown) closes
        the connection.
        """
        if self.closed:
            # Ended before the server asked for it; answer with an empty body
            with contextlib.suppress(*SEND_ERRORS):
                await send(response_start(self.status, list(self.response_headers.raw)))
                await send(response_body(more_body=False))
            return
        self._send = send
        self._watcher = asyncio.get_running_loop().create_task(
            listen_for_disconnect(receive, self._mark_closed)
        )
        try:
            if self._pull_handler is not None:
                await self._pull_handler()
            elif not self.head_sent:
                await self.send_head()
            await self.wait_closed()
        finally:
            self._mark_closed()
            self._release()

    async def _write(self, message: Message) -> None:
        if self._send is None:
            raise RuntimeError("Response has not been pulled yet")
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
        if self.head_sent:
            await self._write(response_body(more_body=False))
        self._mark_closed()

    def _release(self) -> None:
        watcher, self._watcher = self._watcher, None
        cancel_task(watcher)
