"""Unit tests for the Notifier listener registry."""

from __future__ import annotations

import logging

import pytest

from eventstream.notify import Notifier


class TestNotifier:
    """Tests for on/once/off/emit."""

    def test_emit_calls_listeners_with_args(self) -> None:
        notifier = Notifier()
        calls = []
        notifier.on("push", lambda *args: calls.append(args))

        notifier.emit("push", "data", "name")

        assert calls == [("data", "name")]

    def test_unsubscribe(self) -> None:
        """The function returned by on() removes the listener."""
        notifier = Notifier()
        calls = []
        unsubscribe = notifier.on("x", lambda: calls.append(1))

        unsubscribe()
        notifier.emit("x")

        assert calls == []
        assert notifier.listener_count("x") == 0

    def test_unsubscribe_twice_is_harmless(self) -> None:
        notifier = Notifier()
        unsubscribe = notifier.on("x", lambda: None)
        unsubscribe()
        unsubscribe()

    def test_once(self) -> None:
        """once() listeners run a single time."""
        notifier = Notifier()
        calls = []
        notifier.once("x", lambda: calls.append(1))

        notifier.emit("x")
        notifier.emit("x")

        assert calls == [1]

    def test_listener_can_unsubscribe_during_emit(self) -> None:
        """Removing listeners mid-emit does not skip the others."""
        notifier = Notifier()
        calls = []
        unsubscribe_first = None

        def first() -> None:
            calls.append("first")
            unsubscribe_first()

        unsubscribe_first = notifier.on("x", first)
        notifier.on("x", lambda: calls.append("second"))

        notifier.emit("x")
        notifier.emit("x")

        assert calls == ["first", "second", "second"]

    def test_failing_listener_is_isolated(self, caplog: pytest.LogCaptureFixture) -> None:
        """A listener raising does not stop the others and is logged."""
        notifier = Notifier()
        calls = []

        def broken() -> None:
            raise RuntimeError("boom")

        notifier.on("x", broken)
        notifier.on("x", lambda: calls.append(1))

        with caplog.at_level(logging.ERROR, logger="eventstream.notify"):
            notifier.emit("x")

        assert calls == [1]
        assert "Error in listener for x" in caplog.text

    def test_clear(self) -> None:
        notifier = Notifier()
        notifier.on("a", lambda: None)
        notifier.on("b", lambda: None)

        notifier.clear()

        assert notifier.listener_count("a") == 0
        assert notifier.listener_count("b") == 0
