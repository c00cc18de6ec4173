"""Connection abstraction.

A Connection wraps one HTTP response stream and exposes the capability set
sessions need: request metadata, response status and headers that stay
mutable until the head is written, chunk writes, and remote close
detection. Concrete transports:

- AsgiConnection: raw ASGI (scope, receive, send)
- MultiplexedConnection: one stream of an HTTP/2 or HTTP/3 connection
- StarletteConnection: starlette Request in, pull-driven Response out
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field

from starlette.datastructures import URL, Headers, MutableHeaders

from ..config import DEFAULT_RESPONSE_HEADERS, get_settings
from ..notify import Notifier

logger = logging.getLogger(__name__)

CloseListener = Callable[[], None]
PullHandler = Callable[[], Awaitable[None]]


@dataclass
class ConnectionOptions:
    """Per-connection overrides."""

    # Response status; falls back to the transport's status, then 200
    status_code: int | None = None

    # Extra response headers, applied over the defaults
    headers: Mapping[str, str] = field(default_factory=dict)

    # Host used when the request carries none; None makes it an error
    default_host: str | None = field(default_factory=lambda: get_settings().default_host)


def build_url(scheme: str, host: str, path: str, query: str = "") -> URL:
    """Absolute request URL from its parts."""
    url = f"{scheme}://{host}{path}"
    if query:
        url = f"{url}?{query}"
    return URL(url)


def build_response_headers(*overlays: Mapping[str, str] | None) -> MutableHeaders:
    """Protocol default headers with each overlay applied in order."""
    headers = MutableHeaders(headers=DEFAULT_RESPONSE_HEADERS)
    for overlay in overlays:
        if not overlay:
            continue
        for key, value in overlay.items():
            headers[key] = value
    return headers


def cancel_task(task: asyncio.Task | None) -> None:
    """Cancel a task unless it is finished or is the task running now."""
    if task is None or task.done():
        return
    current = None
    with contextlib.suppress(RuntimeError):
        current = asyncio.current_task()
    if task is not current:
        task.cancel()


class Connection(ABC):
    """Transport-agnostic view of one event stream response."""

    # True when the head can only be written once the response is pulled
    deferred_head: bool = False

    def __init__(
        self,
        *,
        url: URL,
        method: str,
        request_headers: Headers,
        status: int,
        response_headers: MutableHeaders,
    ) -> None:
        self.url = url
        self.method = method
        self.request_headers = request_headers
        self.status = status
        self.response_headers = response_headers
        self._head_sent = False
        self._closed = False
        self._closed_event = asyncio.Event()
        self._notifier = Notifier()

    @property
    def closed(self) -> bool:
        """True once the remote peer disconnected or the stream was ended."""
        return self._closed

    @property
    def head_sent(self) -> bool:
        return self._head_sent

    def add_close_listener(self, listener: CloseListener) -> Callable[[], None]:
        """Call listener synchronously when the connection closes.

        Returns:
            Function removing the listener
        """
        return self._notifier.on("close", listener)

    def remove_close_listener(self, listener: CloseListener) -> None:
        self._notifier.off("close", listener)

    def on_pull(self, handler: PullHandler) -> None:
        """Register the coroutine run when a deferred response is pulled."""
        raise RuntimeError(f"{type(self).__name__} writes its head immediately")

    async def wait_closed(self) -> None:
        await self._closed_event.wait()

    def _begin_head(self) -> None:
        if self._head_sent:
            raise RuntimeError("Response head has already been sent")
        self._head_sent = True

    def _mark_closed(self) -> None:
        """Flip closed once and notify listeners in the same turn."""
        if self._closed:
            return
        self._closed = True
        self._closed_event.set()
        logger.debug(f"Connection closed: {self.method} {self.url}")
        self._notifier.emit("close")

    @abstractmethod
    async def send_head(self) -> None:
        """Write status and headers. Allowed once."""
        ...

    @abstractmethod
    async def send_chunk(self, chunk: str) -> None:
        """Write text to the body. Dropped once the connection is closed."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """End the response from the server side."""
        ...

    def cleanup(self) -> None:
        """Remove close listeners and release transport subscriptions.

        Safe to call any number of times.
        """
        self._notifier.clear()
        self._release()

    def _release(self) -> None:
        """Transport-specific part of cleanup()."""
        return None
