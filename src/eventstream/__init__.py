"""eventstream - Server-Sent Events sessions and channels.

Push typed text events to clients over long-lived HTTP responses:
- Session: one event stream (framing, keep-alive, retry, last-event-id)
- Channel: broadcast to many sessions, with filters and exclusions
- transport: ASGI, starlette and multiplexed-stream connections
"""

from .channel import Channel
from .client import ClientConfig, EventSourceClient, EventStreamParser, ServerSentEvent, parse_events
from .config import Settings, get_settings, reset_settings
from .errors import ConnectionClosedError, ConstructionError, EventStreamError, RegistrationError
from .notify import Notifier
from .session import Session, SessionOptions, SessionState, create_session
from .transport import (
    AsgiConnection,
    Connection,
    ConnectionOptions,
    EventStreamResponse,
    LoopbackStream,
    MultiplexedConnection,
    MultiplexedStream,
    StarletteConnection,
    create_connection,
)
from .wire import EventBuffer

__all__ = [
    # Core
    "Session",
    "SessionOptions",
    "SessionState",
    "Channel",
    "create_session",
    "EventBuffer",
    "Notifier",
    # Transports
    "Connection",
    "ConnectionOptions",
    "AsgiConnection",
    "MultiplexedConnection",
    "MultiplexedStream",
    "LoopbackStream",
    "StarletteConnection",
    "EventStreamResponse",
    "create_connection",
    # Client
    "ClientConfig",
    "EventSourceClient",
    "EventStreamParser",
    "ServerSentEvent",
    "parse_events",
    # Configuration
    "Settings",
    "get_settings",
    "reset_settings",
    # Errors
    "EventStreamError",
    "ConnectionClosedError",
    "RegistrationError",
    "ConstructionError",
]
