"""Client-side consumption of event streams.

Handles:
- Parsing the event-stream format line by line
- Automatic reconnection, honouring the server's retry hint
- Resending Last-Event-ID so the server can resume
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)

_LINE_BREAK = re.compile(r"\r\n|\r|\n")


class ServerSentEvent(BaseModel):
    """A dispatched event."""

    event: str = "message"
    data: str = ""
    id: str | None = None
    retry: int | None = None

    def load(self) -> Any:
        """Decode data as JSON."""
        return json.loads(self.data)


class EventStreamParser:
    """Incremental parser following the HTML event-stream rules.

    Feed it one line at a time (without the line terminator). A blank line
    dispatches the pending event; events with no data lines are not
    dispatched, though their id and retry fields still apply.
    """

    def __init__(self, last_event_id: str | None = None) -> None:
        self.last_event_id = last_event_id
        self.retry: int | None = None
        self._event: str | None = None
        self._data: list[str] = []

    def feed(self, line: str) -> ServerSentEvent | None:
        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None

        name, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            if "\0" not in value:
                self.last_event_id = value or None
        elif name == "retry":
            if value.isdigit():
                self.retry = int(value)
        return None

    def _dispatch(self) -> ServerSentEvent | None:
        event_name, data = self._event, self._data
        self._event, self._data = None, []
        if not data:
            return None
        return ServerSentEvent(
            event=event_name or "message",
            data="\n".join(data),
            id=self.last_event_id,
            retry=self.retry,
        )


def parse_events(text: str) -> list[ServerSentEvent]:
    """Parse a complete chunk of event-stream text.

    A trailing line without a terminator is incomplete and ignored.
    """
    parser = EventStreamParser()
    lines = _LINE_BREAK.split(text)
    lines.pop()
    events = []
    for line in lines:
        event = parser.feed(line)
        if event is not None:
            events.append(event)
    return events


@dataclass
class ClientConfig:
    """Event source client configuration."""

    url: str
    timeout: float = 30.0
    headers: dict[str, str] = field(default_factory=dict)

    # Reconnection settings (for intermittent connectivity)
    reconnect: bool = True
    reconnect_delay: float = 1.0
    max_reconnect_delay: float = 30.0
    reconnect_backoff: float = 2.0


class EventSourceClient:
    """Consumes an event stream over HTTP with httpx.

    Usage:
        client = EventSourceClient(ClientConfig(url="http://localhost:8000/events"))
        async for event in client:
            print(event.event, event.data)
    """

    def __init__(self, config: ClientConfig, *, client: httpx.AsyncClient | None = None):
        self.config = config
        self.last_event_id: str | None = None
        self._client = client
        self._owns_client = client is None
        self._closed = False
        self._retry: int | None = None
        self._reconnect_delay = config.reconnect_delay

    async def _ensure_client(self) -> httpx.AsyncClient:
        """Ensure client is initialized."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout, read=None),  # No read timeout for SSE
            )
        return self._client

    def _request_headers(self) -> dict[str, str]:
        headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        headers.update(self.config.headers)
        if self.last_event_id is not None:
            headers["Last-Event-ID"] = self.last_event_id
        return headers

    def _base_delay(self) -> float:
        if self._retry is not None:
            return self._retry / 1000
        return self.config.reconnect_delay

    async def __aiter__(self) -> AsyncIterator[ServerSentEvent]:
        """Iterate over events, reconnecting until closed."""
        client = await self._ensure_client()
        while not self._closed:
            parser = EventStreamParser(self.last_event_id)
            try:
                async with client.stream(
                    "GET", self.config.url, headers=self._request_headers()
                ) as response:
                    if response.status_code == 204:
                        # Server asked us to stop reconnecting
                        self._closed = True
                        break
                    response.raise_for_status()
                    self._reconnect_delay = self._base_delay()  # Reset on success

                    async for line in response.aiter_lines():
                        if self._closed:
                            break
                        event = parser.feed(line)
                        self.last_event_id = parser.last_event_id
                        self._retry = parser.retry if parser.retry is not None else self._retry
                        if event is not None:
                            yield event

                if self._closed or not self.config.reconnect:
                    break
                delay = self._base_delay()
                logger.debug(f"Event stream ended, reconnecting in {delay}s")

            except httpx.RequestError as e:
                if self._closed or not self.config.reconnect:
                    raise
                delay = self._reconnect_delay
                logger.warning(f"Event stream connection lost: {e}. Reconnecting in {delay}s...")
                self._reconnect_delay = min(
                    self._reconnect_delay * self.config.reconnect_backoff,
                    self.config.max_reconnect_delay,
                )

            await asyncio.sleep(delay)

    async def close(self) -> None:
        """Stop iterating and close the HTTP client if we created it."""
        self._closed = True
        if self._client is not None and self._owns_client:
            await self._client.aclose()
