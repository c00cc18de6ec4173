"""Minimal synchronous notification registry.

Sessions, channels and connections use a Notifier to tell their owners
about lifecycle changes. Listeners run synchronously inside emit(), so a
notification is fully applied before control returns to the event loop.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

Listener = Callable[..., Any]


class Notifier:
    """Named listener lists with unsubscribe support.

    Usage:
        notifier = Notifier()
        unsubscribe = notifier.on("disconnected", on_disconnected)
        notifier.emit("disconnected")
        unsubscribe()
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, name: str, listener: Listener) -> Callable[[], None]:
        """Subscribe to a notification.

        Args:
            name: Notification name (e.g., "disconnected")
            listener: Callable invoked with the emitted arguments

        Returns:
            Unsubscribe function
        """
        self._listeners.setdefault(name, []).append(listener)

        def unsubscribe() -> None:
            self.off(name, listener)

        return unsubscribe

    def once(self, name: str, listener: Listener) -> Callable[[], None]:
        """Subscribe to the next emission only."""

        def wrapper(*args: Any) -> None:
            self.off(name, wrapper)
            listener(*args)

        return self.on(name, wrapper)

    def off(self, name: str, listener: Listener) -> None:
        """Remove a listener. Unknown listeners are ignored."""
        listeners = self._listeners.get(name)
        if listeners and listener in listeners:
            listeners.remove(listener)
            if not listeners:
                del self._listeners[name]

    def emit(self, name: str, *args: Any) -> None:
        """Call every listener for name with args.

        A failing listener is logged and does not stop the others.
        """
        # Copy to allow listeners to unsubscribe while we iterate
        for listener in list(self._listeners.get(name, [])):
            try:
                listener(*args)
            except Exception:
                logger.exception(f"Error in listener for {name}")

    def listener_count(self, name: str) -> int:
        """Number of listeners currently subscribed to name."""
        return len(self._listeners.get(name, []))

    def clear(self) -> None:
        """Remove all listeners."""
        self._listeners = {}
