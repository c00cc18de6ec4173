"""Channel - broadcast to a group of sessions.

Members are tracked by session identity. A channel subscribes to each
member's "disconnected" notification and drops it the moment it goes
away, so a broadcast never iterates a session known to be closed.

Notifications (channel.events):
- "session-registered": (session,)
- "session-deregistered": (session,)
- "session-disconnected": (session,), before the matching deregistration
- "broadcast": (data, event_name, event_id)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from functools import partial
from typing import Any, Generic, TypeVar, cast

from .errors import ConnectionClosedError, RegistrationError
from .notify import Notifier
from .session import Session

logger = logging.getLogger(__name__)

StateT = TypeVar("StateT")

SessionFilter = Callable[[Session[Any]], bool]


class Channel(Generic[StateT]):
    """A set of sessions addressed together.

    Registering a session twice is a no-op; the session stays registered
    once and is delivered each broadcast once.
    """

    def __init__(self, *, state: StateT | None = None, name: str | None = None) -> None:
        self.name = name
        self.state: StateT = state if state is not None else cast(StateT, {})
        self.events = Notifier()
        # Session -> unsubscribe function for its "disconnected" notification
        self._members: dict[Session[Any], Callable[[], None]] = {}

    @property
    def active_sessions(self) -> list[Session[Any]]:
        """Snapshot of the current members."""
        return list(self._members)

    @property
    def session_count(self) -> int:
        return len(self._members)

    def __contains__(self, session: object) -> bool:
        return session in self._members

    def register(self, session: Session[Any]) -> Session[Any]:
        """Add a connected session.

        Raises:
            RegistrationError: If the session is not connected
        """
        if not session.is_connected:
            raise RegistrationError(
                f"Cannot register a session that is {session.status.value}"
            )
        if session in self._members:
            return session

        self._members[session] = session.events.on(
            "disconnected", partial(self._on_session_disconnected, session)
        )
        logger.debug(f"Registered session to channel {self.name or id(self)}")
        self.events.emit("session-registered", session)
        return session

    def deregister(self, session: Session[Any]) -> None:
        """Remove a session. Unknown sessions are ignored."""
        if self._remove(session):
            self.events.emit("session-deregistered", session)

    def _remove(self, session: Session[Any]) -> bool:
        unsubscribe = self._members.pop(session, None)
        if unsubscribe is None:
            return False
        unsubscribe()
        return True

    def _on_session_disconnected(self, session: Session[Any]) -> None:
        if self._remove(session):
            logger.debug(f"Session left channel {self.name or id(self)} on disconnect")
            self.events.emit("session-disconnected", session)
            self.events.emit("session-deregistered", session)

    async def broadcast(
        self,
        data: Any,
        event_name: str | None = None,
        *,
        filter: SessionFilter | None = None,  # noqa: A002
        exclude: Session[Any] | Iterable[Session[Any]] | None = None,
        event_id: str | None = None,
    ) -> int:
        """Push one event to every matching member.

        Args:
            data: Event payload, serialized per session
            event_name: Event name
            filter: Only sessions for which this returns True receive the event
            exclude: A session, or several, to skip (e.g. the sender)
            event_id: Shared id; by default each session numbers the event

        Returns:
            Number of sessions the event was written to. A recipient that
            fails is logged and skipped; it never fails the broadcast.
        """
        if exclude is None:
            excluded: set[Session[Any]] = set()
        elif isinstance(exclude, Session):
            excluded = {exclude}
        else:
            excluded = set(exclude)

        recipients = [
            session
            for session in self._members
            if session not in excluded and (filter is None or filter(session))
        ]
        results = await asyncio.gather(
            *(self._deliver(session, data, event_name, event_id) for session in recipients)
        )

        self.events.emit("broadcast", data, event_name, event_id)
        return sum(results)

    async def _deliver(
        self,
        session: Session[Any],
        data: Any,
        event_name: str | None,
        event_id: str | None,
    ) -> bool:
        try:
            written = await session.push(data, event_name, event_id)
        except ConnectionClosedError:
            # Disconnected in the same tick, before auto-removal ran
            logger.debug("Skipping broadcast to a closed session")
            return False
        except Exception as e:
            logger.warning(f"Broadcast delivery failed: {e!r}")
            return False
        if not written:
            logger.debug("Broadcast recipient disconnected while writing")
        return written
