"""Transport layer.

Three ways a server can hand over an HTTP response, one Connection
interface on top:
- AsgiConnection - raw ASGI (scope, receive, send)
- MultiplexedConnection - one stream of an HTTP/2 or HTTP/3 connection
- StarletteConnection - starlette Request in, EventStreamResponse out

create_connection() picks the right one from the arguments it is given.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from starlette.requests import Request

from ..errors import ConstructionError
from .asgi import AsgiConnection
from .base import Connection, ConnectionOptions
from .multiplexed import LoopbackStream, MultiplexedConnection, MultiplexedStream
from .response import EventStreamResponse, StarletteConnection


def create_connection(*args: Any, options: ConnectionOptions | None = None) -> Connection:
    """Build a Connection from transport-specific inputs.

    Accepted shapes:
        create_connection(request)                  # starlette Request
        create_connection(request, response)        # Request + template Response
        create_connection(scope, receive, send)     # raw ASGI
        create_connection(stream)                   # MultiplexedStream

    Raises:
        ConstructionError: If the arguments match no transport
    """
    # Request is itself a Mapping over its scope, so test it first
    if args and isinstance(args[0], Request) and len(args) <= 2:
        return StarletteConnection(*args, options=options)
    if len(args) == 3 and isinstance(args[0], Mapping) and callable(args[1]) and callable(args[2]):
        return AsgiConnection(args[0], args[1], args[2], options=options)
    if len(args) == 1 and isinstance(args[0], MultiplexedStream):
        return MultiplexedConnection(args[0], options=options)
    shapes = ", ".join(type(arg).__name__ for arg in args)
    raise ConstructionError(f"No transport accepts ({shapes})")


__all__ = [
    "AsgiConnection",
    "Connection",
    "ConnectionOptions",
    "EventStreamResponse",
    "LoopbackStream",
    "MultiplexedConnection",
    "MultiplexedStream",
    "StarletteConnection",
    "create_connection",
]
