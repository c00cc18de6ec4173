"""Session - one Server-Sent Events stream.

A Session owns a Connection and speaks the event-stream protocol over it:
event framing, retry hint, keep-alive comments and last-event-id tracking.

Lifecycle:

    INIT -> (CONNECTING) -> ACTIVE -> DISCONNECTED

Transports that write their head immediately go straight from INIT to
ACTIVE in start(). Deferred transports (starlette responses) sit in
CONNECTING until the server pulls the response. DISCONNECTED is terminal;
a reconnecting client always gets a new Session.

Notifications (session.events):
- "connected": the session became active
- "disconnected": the connection closed
- "push": an event was written, with (data, event_name, event_id)
"""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import inspect
import json
import logging
from collections.abc import AsyncIterable, Callable, Coroutine, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar, cast

from starlette.datastructures import QueryParams
from starlette.responses import Response

from .config import get_settings
from .errors import ConnectionClosedError
from .notify import Notifier
from .transport import Connection, ConnectionOptions, create_connection
from .transport.base import cancel_task
from .wire import (
    KEEP_ALIVE_FRAME,
    EventBuffer,
    Sanitizer,
    Serializer,
    format_comment,
    format_event,
    format_retry,
    sanitize,
    serialize,
)

logger = logging.getLogger(__name__)

StateT = TypeVar("StateT")


class SessionState(str, Enum):
    """Session lifecycle states."""

    INIT = "init"
    CONNECTING = "connecting"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"


@dataclass
class SessionOptions:
    """Session behaviour. Defaults come from eventstream.config."""

    # Seconds between keep-alive comments; 0 or None disables them
    keep_alive: float | None = field(default_factory=lambda: get_settings().keep_alive)

    # Reconnection hint in milliseconds sent on start; 0 or None skips it
    retry: int | None = field(default_factory=lambda: get_settings().retry)

    # Restore last_event_id from the Last-Event-ID header or lastEventId query param
    trust_client_event_id: bool = field(
        default_factory=lambda: get_settings().trust_client_event_id
    )

    # Number events without an explicit id from a running counter
    auto_event_id: bool = True

    serializer: Serializer = json.dumps
    sanitizer: Sanitizer = sanitize


class Session(Generic[StateT]):
    """A single event stream to one client.

    Usage (raw ASGI):
        async def app(scope, receive, send):
            session = await Session.create(AsgiConnection(scope, receive, send))
            await session.push({"hello": "world"}, "greeting")
            await session.wait_disconnected()
    """

    def __init__(
        self,
        connection: Connection,
        *,
        state: StateT | None = None,
        options: SessionOptions | None = None,
    ) -> None:
        self.connection = connection
        self.options = options or SessionOptions()
        self.state: StateT = state if state is not None else cast(StateT, {})
        self.events = Notifier()
        self.last_event_id: str | None = None

        self._status = SessionState.INIT
        self._counter = 0
        self._keep_alive_task: asyncio.Task | None = None
        self._relays: set[asyncio.Task] = set()
        self._active = asyncio.Event()
        self._disconnected = asyncio.Event()

        if self.options.trust_client_event_id:
            self._restore_last_event_id()

        connection.add_close_listener(self._on_disconnected)
        if connection.closed:
            self._on_disconnected()
        elif connection.deferred_head:
            self._status = SessionState.CONNECTING
            connection.on_pull(self._activate)

    @classmethod
    async def create(
        cls,
        connection: Connection,
        *,
        state: StateT | None = None,
        options: SessionOptions | None = None,
    ) -> Session[StateT]:
        """Create a session and start it.

        Deferred transports are returned while still CONNECTING, since
        their response has to be handed to the server first.
        """
        session = cls(connection, state=state, options=options)
        if not connection.deferred_head:
            await session.start()
        return session

    # =========================================================================
    # State
    # =========================================================================

    @property
    def status(self) -> SessionState:
        return self._status

    @property
    def is_connected(self) -> bool:
        """True while the session is active and its connection open."""
        return self._status is SessionState.ACTIVE and not self.connection.closed

    @property
    def response(self) -> Response | None:
        """Response to return to the server, for deferred transports."""
        return getattr(self.connection, "response", None)

    def _restore_last_event_id(self) -> None:
        value = self.connection.request_headers.get("last-event-id")
        if not value:
            value = QueryParams(self.connection.url.query).get("lastEventId")
        if value:
            self._set_last_event_id(value)

    def _set_last_event_id(self, value: str) -> None:
        self.last_event_id = value
        if value.isdecimal():
            self._counter = int(value)

    def _next_event_id(self) -> str:
        self._counter += 1
        return str(self._counter)

    def _ensure_connected(self) -> None:
        if not self.is_connected:
            raise ConnectionClosedError(f"Session is {self._status.value}, not active")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def start(self) -> Session[StateT]:
        """Make the session active.

        Immediate transports send their head here. For deferred transports
        this waits until the server pulls the response, so do not await it
        before the response has been returned.
        """
        if self._status is SessionState.INIT:
            await self._activate()
        elif self._status is SessionState.CONNECTING:
            waiters = [
                asyncio.ensure_future(self._active.wait()),
                asyncio.ensure_future(self._disconnected.wait()),
            ]
            try:
                await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            finally:
                for waiter in waiters:
                    waiter.cancel()
        return self

    async def _activate(self) -> None:
        if self._status not in (SessionState.INIT, SessionState.CONNECTING):
            return

        await self.connection.send_head()
        if self.options.retry:
            await self.connection.send_chunk(format_retry(self.options.retry))

        # The client may have gone away while the head was being written
        if self._status is SessionState.DISCONNECTED or self.connection.closed:
            return

        self._status = SessionState.ACTIVE
        if self.options.keep_alive:
            self._keep_alive_task = asyncio.create_task(self._keep_alive(self.options.keep_alive))
        self._active.set()
        logger.debug(f"Session active: {self.connection.method} {self.connection.url}")
        self.events.emit("connected")

    async def _keep_alive(self, interval: float) -> None:
        while self.is_connected:
            await asyncio.sleep(interval)
            if not self.is_connected:
                break
            await self.connection.send_chunk(KEEP_ALIVE_FRAME)

    def _on_disconnected(self) -> None:
        """Single disconnect handler; runs at most once."""
        if self._status is SessionState.DISCONNECTED:
            return
        self._status = SessionState.DISCONNECTED

        cancel_task(self._keep_alive_task)
        self._keep_alive_task = None
        for relay in list(self._relays):
            cancel_task(relay)
        self.connection.cleanup()

        self._disconnected.set()
        logger.debug(f"Session disconnected: {self.connection.url}")
        self.events.emit("disconnected")

    async def close(self) -> None:
        """End the stream from the server side."""
        if self._status is SessionState.DISCONNECTED:
            return
        await self.connection.close()
        self._on_disconnected()

    async def wait_disconnected(self) -> None:
        """Wait until the session is disconnected."""
        await self._disconnected.wait()

    # =========================================================================
    # Writing
    # =========================================================================

    async def push(
        self,
        data: Any,
        event_name: str | None = None,
        event_id: str | None = None,
    ) -> bool:
        """Send one event.

        Args:
            data: str and bytes are sent verbatim, None sends no data lines,
                  anything else goes through the serializer (JSON by default)
            event_name: Value of the event field
            event_id: Value of the id field; defaults to the running counter

        Returns:
            False if the connection closed while the frame was being written

        Raises:
            ConnectionClosedError: If the session is not active
        """
        self._ensure_connected()

        text = serialize(data, self.options.serializer)
        if text is not None:
            text = self.options.sanitizer(text)
        if event_id is None and self.options.auto_event_id:
            event_id = self._next_event_id()
        frame = format_event(text, event_name, event_id)
        if event_id is not None:
            self._set_last_event_id(event_id)

        await self.connection.send_chunk(frame)
        if self.connection.closed:
            logger.debug("Connection closed during push")
            return False
        self.events.emit("push", data, event_name, event_id)
        return True

    async def set_retry(self, milliseconds: int) -> None:
        """Tell the client how long to wait before reconnecting."""
        self._ensure_connected()
        await self.connection.send_chunk(format_retry(milliseconds))

    async def comment(self, text: str = "") -> None:
        self._ensure_connected()
        await self.connection.send_chunk(format_comment(text))

    async def batch(self, batcher: EventBuffer | Callable[[EventBuffer], Any]) -> None:
        """Write several events as a single chunk.

        Args:
            batcher: A filled EventBuffer, or a (possibly async) callable
                     that fills the fresh buffer it is given
        """
        self._ensure_connected()
        if isinstance(batcher, EventBuffer):
            buffer = batcher
        else:
            buffer = EventBuffer(
                serializer=self.options.serializer, sanitizer=self.options.sanitizer
            )
            result = batcher(buffer)
            if inspect.isawaitable(result):
                await result
        await self.connection.send_chunk(buffer.read())

    # =========================================================================
    # Relaying
    # =========================================================================

    async def iterate(
        self,
        source: Iterable[Any] | AsyncIterable[Any],
        event_name: str | None = None,
    ) -> bool:
        """Push every item of a sync or async iterable as an event.

        Returns:
            True if the source was exhausted, False if the session
            disconnected first
        """
        self._ensure_connected()
        return await self._run_relay(self._relay_items(source, event_name), source)

    async def stream(
        self,
        source: AsyncIterable[bytes] | AsyncIterable[str],
        event_name: str | None = None,
    ) -> bool:
        """Push each chunk of a byte or text stream as an event.

        Bytes are decoded as UTF-8, keeping split multi-byte characters
        together across chunks.

        Returns:
            True if the stream ended, False if the session disconnected first
        """
        self._ensure_connected()
        return await self._run_relay(self._relay_chunks(source, event_name), source)

    async def _run_relay(self, relay: Coroutine[Any, Any, bool], source: object) -> bool:
        task = asyncio.ensure_future(relay)
        self._relays.add(task)
        task.add_done_callback(self._relays.discard)
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            # The disconnect handler cancelled the relay
            return False
        finally:
            if not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            await _release_source(source)

    async def _relay_items(
        self, source: Iterable[Any] | AsyncIterable[Any], event_name: str | None
    ) -> bool:
        try:
            if isinstance(source, AsyncIterable):
                async for item in source:
                    if not await self.push(item, event_name):
                        return False
            else:
                for item in source:
                    if not await self.push(item, event_name):
                        return False
                    # Give the loop a chance to deliver disconnects
                    await asyncio.sleep(0)
        except ConnectionClosedError:
            logger.debug("Session disconnected during relay, stopping")
            return False
        return True

    async def _relay_chunks(
        self, source: AsyncIterable[bytes] | AsyncIterable[str], event_name: str | None
    ) -> bool:
        decoder = codecs.getincrementaldecoder("utf-8")()
        try:
            async for chunk in source:
                text = decoder.decode(chunk) if isinstance(chunk, (bytes, bytearray)) else chunk
                if text and not await self.push(text, event_name):
                    return False
            tail = decoder.decode(b"", final=True)
            if tail and not await self.push(tail, event_name):
                return False
        except ConnectionClosedError:
            logger.debug("Session disconnected during stream, stopping")
            return False
        return True


async def _release_source(source: object) -> None:
    """Close a relay source if it supports closing."""
    aclose = getattr(source, "aclose", None)
    if aclose is not None:
        await aclose()
        return
    close = getattr(source, "close", None)
    if close is not None and not isinstance(source, (list, tuple, dict, set)):
        result = close()
        if inspect.isawaitable(result):
            await result


async def create_session(
    *args: Any,
    state: Any = None,
    options: SessionOptions | None = None,
    connection_options: ConnectionOptions | None = None,
) -> Session[Any]:
    """Create a Session straight from transport inputs.

    Takes the same positional arguments as create_connection(). Returns
    an active session for immediate transports, or a CONNECTING one whose
    .response must be returned to starlette.
    """
    connection = create_connection(*args, options=connection_options)
    return await Session.create(connection, state=state, options=options)
