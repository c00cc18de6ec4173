"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from typing import Any

import pytest
from starlette.types import Message

from eventstream.config import reset_settings


class FakeServer:
    """Plays the ASGI server side: records sent messages, feeds receive()."""

    def __init__(self) -> None:
        self.sent: list[Message] = []
        self.fail_sends = False
        self._incoming: asyncio.Queue[Message] = asyncio.Queue()

    async def receive(self) -> Message:
        return await self._incoming.get()

    async def send(self, message: Message) -> None:
        if self.fail_sends:
            raise OSError("Broken pipe")
        self.sent.append(message)

    def disconnect(self) -> None:
        self._incoming.put_nowait({"type": "http.disconnect"})

    @property
    def start(self) -> Message | None:
        for message in self.sent:
            if message["type"] == "http.response.start":
                return message
        return None

    @property
    def headers(self) -> dict[str, str]:
        assert self.start is not None
        return {k.decode("latin-1"): v.decode("latin-1") for k, v in self.start["headers"]}

    @property
    def body(self) -> str:
        return "".join(
            message["body"].decode("utf-8")
            for message in self.sent
            if message["type"] == "http.response.body"
        )

    @property
    def finished(self) -> bool:
        return any(
            message["type"] == "http.response.body" and not message.get("more_body", False)
            for message in self.sent
        )


def make_scope(
    path: str = "/events",
    *,
    host: str | None = "example.com",
    query_string: bytes = b"",
    headers: list[tuple[bytes, bytes]] | None = None,
    method: str | None = "GET",
) -> dict[str, Any]:
    raw_headers = list(headers or [])
    if host is not None:
        raw_headers.insert(0, (b"host", host.encode("latin-1")))
    scope: dict[str, Any] = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode("latin-1"),
        "root_path": "",
        "query_string": query_string,
        "headers": raw_headers,
        "client": ("127.0.0.1", 50000),
        "server": ("example.com", 80),
    }
    if method is not None:
        scope["method"] = method
    return scope


async def _settle(rounds: int = 5) -> None:
    """Let pending callbacks and woken tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def clean_settings(monkeypatch: pytest.MonkeyPatch):
    """Isolate tests from EVENTSTREAM_* variables in the environment."""
    for name in (
        "EVENTSTREAM_KEEP_ALIVE",
        "EVENTSTREAM_RETRY",
        "EVENTSTREAM_DEFAULT_HOST",
        "EVENTSTREAM_TRUST_CLIENT_EVENT_ID",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def scope_factory() -> Callable[..., dict[str, Any]]:
    return make_scope


@pytest.fixture
def settle() -> Callable[..., Coroutine[Any, Any, None]]:
    return _settle


@pytest.fixture
def server_factory() -> Callable[[], FakeServer]:
    """For tests that need more than one client."""
    return FakeServer
