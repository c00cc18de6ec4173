"""Unit tests for the event-stream wire format."""

from __future__ import annotations

import pytest

from eventstream.wire import (
    KEEP_ALIVE_FRAME,
    EventBuffer,
    format_comment,
    format_event,
    format_retry,
    sanitize,
    serialize,
)

# =============================================================================
# Formatting Tests
# =============================================================================


class TestFormatEvent:
    """Tests for format_event."""

    def test_full_frame(self) -> None:
        """id, event and one data line per content line."""
        frame = format_event("hello\nworld", "greeting", "42")
        assert frame == "id: 42\nevent: greeting\ndata: hello\ndata: world\n\n"

    def test_data_only(self) -> None:
        """Optional fields are left out."""
        assert format_event("ping") == "data: ping\n\n"

    def test_empty_payload_has_one_data_line(self) -> None:
        """An empty string still produces a data line."""
        assert format_event("") == "data: \n\n"

    def test_none_payload_has_no_data_lines(self) -> None:
        """None produces a frame without data lines."""
        assert format_event(None, "end") == "event: end\n\n"

    def test_crlf_and_cr_are_split(self) -> None:
        """All newline styles split into separate data lines."""
        assert format_event("a\r\nb\rc") == "data: a\ndata: b\ndata: c\n\n"

    def test_line_break_in_event_name_rejected(self) -> None:
        """Event names cannot break the frame."""
        with pytest.raises(ValueError):
            format_event("x", "bad\nname")

    def test_line_break_in_id_rejected(self) -> None:
        """Ids cannot break the frame."""
        with pytest.raises(ValueError):
            format_event("x", event_id="1\r2")


class TestSerialize:
    """Tests for payload serialization."""

    def test_string_verbatim(self) -> None:
        assert serialize('{"not": "parsed"}') == '{"not": "parsed"}'

    def test_bytes_decoded(self) -> None:
        assert serialize("café".encode()) == "café"

    def test_structured_json(self) -> None:
        assert serialize({"a": [1, 2]}) == '{"a": [1, 2]}'

    def test_none(self) -> None:
        assert serialize(None) is None

    def test_custom_serializer(self) -> None:
        assert serialize(3, serializer=lambda value: f"<{value}>") == "<3>"

    def test_sanitize(self) -> None:
        assert sanitize("a\r\nb\rc\n") == "a\nb\nc\n"


class TestCommentAndRetry:
    """Tests for comment and retry frames."""

    def test_keep_alive_frame(self) -> None:
        """Empty comment is the keep-alive frame."""
        assert format_comment() == KEEP_ALIVE_FRAME == ":\n\n"

    def test_comment_text(self) -> None:
        assert format_comment("hi\nthere") == ": hi\n: there\n\n"

    def test_retry(self) -> None:
        assert format_retry(2000) == "retry: 2000\n\n"

    def test_negative_retry_rejected(self) -> None:
        with pytest.raises(ValueError):
            format_retry(-1)


# =============================================================================
# EventBuffer Tests
# =============================================================================


class TestEventBuffer:
    """Tests for EventBuffer batching."""

    def test_push_frames(self) -> None:
        """push appends complete frames in order."""
        buffer = EventBuffer()
        buffer.push("one", "a", "1").push({"two": 2})

        assert buffer.read() == 'id: 1\nevent: a\ndata: one\n\ndata: {"two": 2}\n\n'

    def test_low_level_fields(self) -> None:
        """Fields build a frame terminated by dispatch."""
        buffer = EventBuffer()
        buffer.event("update").id("7").retry(500).data("x").dispatch()

        assert buffer.read() == "event: update\nid: 7\nretry: 500\ndata: x\n\n"

    def test_empty_id_resets(self) -> None:
        assert EventBuffer().id().read() == "id\n"

    def test_comment(self) -> None:
        assert EventBuffer().comment("note").read() == ": note\n\n"

    def test_clear(self) -> None:
        buffer = EventBuffer().push("x")
        buffer.clear()
        assert buffer.read() == ""
        assert len(buffer) == 0

    def test_sanitizer_is_applied(self) -> None:
        buffer = EventBuffer(sanitizer=lambda text: text.upper())
        assert buffer.push("abc").read() == "data: ABC\n\n"

    @pytest.mark.asyncio
    async def test_iterate_async_source(self) -> None:
        """iterate pushes one event per item."""

        async def numbers():
            for number in range(3):
                yield number

        buffer = EventBuffer()
        await buffer.iterate(numbers(), "n")

        assert buffer.read() == "event: n\ndata: 0\n\nevent: n\ndata: 1\n\nevent: n\ndata: 2\n\n"

    @pytest.mark.asyncio
    async def test_iterate_sync_source(self) -> None:
        buffer = EventBuffer()
        await buffer.iterate(["a", "b"])
        assert buffer.read() == "data: a\n\ndata: b\n\n"
