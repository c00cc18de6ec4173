"""Multiplexed (HTTP/2, HTTP/3) stream transport.

One event stream maps onto one stream of a multiplexed connection:
- request metadata arrives as pseudo-headers (:authority, :path, ...)
- the head is written with a single respond() call carrying :status
- connection-specific headers are not allowed and are dropped

Servers expose streams through different APIs; anything implementing the
MultiplexedStream protocol can be wrapped. LoopbackStream is an in-process
implementation, handy for feeding a session's output to local consumers.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Mapping
from typing import Protocol, runtime_checkable

from starlette.datastructures import Headers

from ..config import DEFAULT_REQUEST_METHOD, DEFAULT_RESPONSE_CODE
from ..errors import ConstructionError
from .base import Connection, ConnectionOptions, build_response_headers, build_url

logger = logging.getLogger(__name__)

# Forbidden on HTTP/2 and HTTP/3 responses
CONNECTION_SPECIFIC_HEADERS = frozenset(
    {"connection", "keep-alive", "proxy-connection", "transfer-encoding", "upgrade"}
)


@runtime_checkable
class MultiplexedStream(Protocol):
    """Server-side stream within a multiplexed connection."""

    stream_id: int
    request_headers: Mapping[str, str]
    closed: bool

    def respond(self, headers: Mapping[str, str]) -> None:
        """Send the response head, including the :status pseudo-header."""
        ...

    def write(self, data: bytes) -> None:
        """Queue body data. Raises OSError once the stream is gone."""
        ...

    def end(self) -> None:
        """Finish the stream from the server side."""
        ...

    def add_close_callback(self, callback: Callable[[], None]) -> None: ...

    def remove_close_callback(self, callback: Callable[[], None]) -> None: ...


class MultiplexedConnection(Connection):
    """Connection over a single MultiplexedStream."""

    def __init__(
        self,
        stream: MultiplexedStream,
        options: ConnectionOptions | None = None,
    ) -> None:
        options = options or ConnectionOptions()
        if not isinstance(stream, MultiplexedStream):
            raise ConstructionError(f"{type(stream).__name__} is not a multiplexed stream")

        request_headers = Headers(headers=dict(stream.request_headers))
        host = (
            request_headers.get(":authority")
            or request_headers.get("host")
            or options.default_host
        )
        if not host:
            raise ConstructionError("Stream has no :authority and no default host is set")
        target = request_headers.get(":path")
        if not target:
            raise ConstructionError("Stream has no :path pseudo-header")
        path, _, query = target.partition("?")

        super().__init__(
            url=build_url(request_headers.get(":scheme", "https"), host, path, query),
            method=request_headers.get(":method") or DEFAULT_REQUEST_METHOD,
            request_headers=request_headers,
            status=(
                options.status_code
                or getattr(stream, "status", None)
                or DEFAULT_RESPONSE_CODE
            ),
            response_headers=build_response_headers(
                getattr(stream, "response_headers", None), options.headers
            ),
        )
        self._stream = stream
        stream.add_close_callback(self._mark_closed)
        if stream.closed:
            self._mark_closed()

    def _call(self, method: Callable[..., None], *args: object) -> None:
        try:
            method(*args)
        except OSError as e:
            logger.debug(f"Stream {self._stream.stream_id} write failed: {e!r}")
            self._mark_closed()

    async def send_head(self) -> None:
        self._begin_head()
        head = {":status": str(self.status)}
        for key, value in self.response_headers.items():
            if key not in CONNECTION_SPECIFIC_HEADERS:
                head[key] = value
        self._call(self._stream.respond, head)

    async def send_chunk(self, chunk: str) -> None:
        if self.closed:
            logger.debug("Dropping chunk written after close")
            return
        self._call(self._stream.write, chunk.encode("utf-8"))

    async def close(self) -> None:
        if self.closed:
            return
        self._call(self._stream.end)
        self._mark_closed()

    def _release(self) -> None:
        self._stream.remove_close_callback(self._mark_closed)


class LoopbackStream:
    """In-process MultiplexedStream.

    Whatever the server side writes can be read back with read() or by
    iterating the stream. reset() simulates the peer going away.
    """

    def __init__(self, stream_id: int = 1, request_headers: Mapping[str, str] | None = None):
        self.stream_id = stream_id
        self.request_headers: dict[str, str] = dict(
            request_headers or {":method": "GET", ":path": "/", ":authority": "localhost"}
        )
        self.status: int | None = None
        self.response_headers: dict[str, str] = {}
        self.sent_headers: dict[str, str] | None = None
        self.closed = False
        self._callbacks: list[Callable[[], None]] = []
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()

    def respond(self, headers: Mapping[str, str]) -> None:
        if self.closed:
            raise OSError("Stream closed")
        if self.sent_headers is not None:
            raise RuntimeError("Headers already sent")
        self.sent_headers = dict(headers)

    def write(self, data: bytes) -> None:
        if self.closed:
            raise OSError("Stream closed")
        self._queue.put_nowait(data)

    def end(self) -> None:
        if self.closed:
            return
        self._queue.put_nowait(None)
        self._close()

    def reset(self) -> None:
        """Close the stream as if the remote peer cancelled it."""
        if self.closed:
            return
        self._queue.put_nowait(None)
        self._close()

    def add_close_callback(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def remove_close_callback(self, callback: Callable[[], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _close(self) -> None:
        self.closed = True
        for callback in list(self._callbacks):
            callback()

    async def read(self) -> bytes:
        """Next written chunk, or b"" once the stream has ended."""
        data = await self._queue.get()
        if data is None:
            # Keep the end marker for later readers
            self._queue.put_nowait(None)
            return b""
        return data

    def read_nowait(self) -> bytes:
        """Everything written so far, without waiting."""
        chunks = []
        while not self._queue.empty():
            data = self._queue.get_nowait()
            if data is None:
                self._queue.put_nowait(None)
                break
            chunks.append(data)
        return b"".join(chunks)

    async def __aiter__(self) -> AsyncIterator[str]:
        while True:
            data = await self.read()
            if not data:
                break
            yield data.decode("utf-8")
