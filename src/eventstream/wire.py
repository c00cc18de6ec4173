"""Server-Sent Events wire format.

One event per frame:

    id: <last-event-id>
    event: <event-name>
    data: <line>
    <blank line>

Comment frames start with ":" and carry no event. The retry field is sent
once per session to set the client's reconnection delay.
"""

from __future__ import annotations

import json
import re
from collections.abc import AsyncIterable, Callable, Iterable
from typing import Any

Serializer = Callable[[Any], str]
Sanitizer = Callable[[str], str]

KEEP_ALIVE_FRAME = ":\n\n"

_NEWLINES = re.compile(r"\r\n|\r|\n")


def sanitize(text: str) -> str:
    """Normalize CRLF and CR line endings to LF."""
    return _NEWLINES.sub("\n", text)


def serialize(data: Any, serializer: Serializer = json.dumps) -> str | None:
    """Turn an event payload into text.

    Strings pass through, bytes are decoded as UTF-8 and None means the
    event has no data. Anything else goes through serializer.
    """
    if data is None:
        return None
    if isinstance(data, str):
        return data
    if isinstance(data, (bytes, bytearray, memoryview)):
        return bytes(data).decode("utf-8")
    return serializer(data)


def _check_field(name: str, value: str) -> str:
    if "\n" in value or "\r" in value:
        raise ValueError(f"SSE {name} must not contain line breaks: {value!r}")
    return value


def format_data(text: str | None) -> str:
    """One "data:" line per line of text. None produces nothing."""
    if text is None:
        return ""
    return "".join(f"data: {line}\n" for line in text.split("\n"))


def format_event(
    data: str | None,
    event_name: str | None = None,
    event_id: str | None = None,
) -> str:
    """Build a complete event frame from already serialized text."""
    frame = ""
    if event_id is not None:
        frame += f"id: {_check_field('id', event_id)}\n"
    if event_name is not None:
        frame += f"event: {_check_field('event name', event_name)}\n"
    frame += format_data(None if data is None else sanitize(data))
    return frame + "\n"


def format_comment(text: str = "") -> str:
    """Comment frame. Multi-line comments get one ":" line each."""
    lines = sanitize(text).split("\n")
    body = "".join(f": {line}\n" if line else ":\n" for line in lines)
    return body + "\n"


def format_retry(milliseconds: int) -> str:
    """Frame carrying only the reconnection delay."""
    if milliseconds < 0:
        raise ValueError("retry must be a non-negative number of milliseconds")
    return f"retry: {int(milliseconds)}\n\n"


class EventBuffer:
    """Accumulates several frames so they can be written in one chunk.

    Usage:
        buffer = EventBuffer()
        buffer.push({"x": 1}, "point")
        buffer.comment("batch end")
        await session.batch(buffer)

    Low-level methods (event, id, data, retry) add single fields; call
    dispatch() to terminate the frame they belong to.
    """

    def __init__(
        self,
        *,
        serializer: Serializer = json.dumps,
        sanitizer: Sanitizer = sanitize,
    ) -> None:
        self._serializer = serializer
        self._sanitizer = sanitizer
        self._chunks: list[str] = []

    def line(self, text: str) -> EventBuffer:
        """Append a raw line."""
        self._chunks.append(f"{text}\n")
        return self

    def event(self, name: str) -> EventBuffer:
        return self.line(f"event: {_check_field('event name', name)}")

    def id(self, value: str | None = None) -> EventBuffer:
        """Set the event id. An empty id line resets the client's last id."""
        if value is None:
            return self.line("id")
        return self.line(f"id: {_check_field('id', value)}")

    def retry(self, milliseconds: int) -> EventBuffer:
        return self.line(f"retry: {int(milliseconds)}")

    def data(self, value: Any) -> EventBuffer:
        text = serialize(value, self._serializer)
        if text is not None:
            self._chunks.append(format_data(self._sanitizer(text)))
        return self

    def comment(self, text: str = "") -> EventBuffer:
        # format_comment adds the frame terminator itself
        self._chunks.append(format_comment(text))
        return self

    def dispatch(self) -> EventBuffer:
        """Terminate the current frame."""
        self._chunks.append("\n")
        return self

    def push(
        self,
        data: Any,
        event_name: str | None = None,
        event_id: str | None = None,
    ) -> EventBuffer:
        """Append a complete event frame."""
        if event_id is not None:
            self.id(event_id)
        if event_name is not None:
            self.event(event_name)
        return self.data(data).dispatch()

    async def iterate(
        self,
        source: Iterable[Any] | AsyncIterable[Any],
        event_name: str | None = None,
    ) -> EventBuffer:
        """Append one event per item of a sync or async iterable."""
        if isinstance(source, AsyncIterable):
            async for item in source:
                self.push(item, event_name)
        else:
            for item in source:
                self.push(item, event_name)
        return self

    def read(self) -> str:
        """Contents of the buffer as a single string."""
        return "".join(self._chunks)

    def clear(self) -> None:
        self._chunks = []

    def __len__(self) -> int:
        return len(self.read())
