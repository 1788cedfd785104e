"""Unit tests for socket event parsing."""

import pytest

from codebridge.models.errors import ProtocolError
from codebridge.models.events import (
    INBOUND_EVENTS,
    EventKind,
    JoinPayload,
    ProgramInputPayload,
    SyncCodePayload,
    make_frame,
    parse_inbound_event,
)


class TestParseInboundEvent:
    """Test parse_inbound_event."""

    def test_join(self):
        parsed = parse_inbound_event(
            {"event": "join", "data": {"roomId": "r1", "username": "alice"}}
        )
        assert parsed.kind == EventKind.JOIN
        assert isinstance(parsed.payload, JoinPayload)
        assert parsed.payload.room_id == "r1"
        assert parsed.payload.username == "alice"

    def test_sync_code_alias(self):
        parsed = parse_inbound_event(
            {"event": "sync-code", "data": {"code": "x", "socketId": "abc"}}
        )
        assert isinstance(parsed.payload, SyncCodePayload)
        assert parsed.payload.socket_id == "abc"

    def test_program_input_bare_string(self):
        parsed = parse_inbound_event({"event": "program-input", "data": "42"})
        assert isinstance(parsed.payload, ProgramInputPayload)
        assert parsed.payload.input == "42"

    def test_program_stop_without_data(self):
        parsed = parse_inbound_event({"event": "program-stop"})
        assert parsed.kind == EventKind.PROGRAM_STOP

    def test_extra_fields_ignored(self):
        parsed = parse_inbound_event(
            {"event": "code-change", "data": {"roomId": "r1", "code": "", "extra": 1}}
        )
        assert parsed.payload.code == ""

    @pytest.mark.parametrize(
        "raw",
        [
            "join",
            ["join"],
            {"event": "explode"},
            {"event": None},
            {"event": "join", "data": {"roomId": "r1"}},
            {"event": "join", "data": {"roomId": "", "username": "a"}},
            {"event": "join", "data": "r1"},
            {"event": "code-change", "data": {"roomId": "r1"}},
        ],
    )
    def test_malformed_frames(self, raw):
        with pytest.raises(ProtocolError):
            parse_inbound_event(raw)

    @pytest.mark.parametrize(
        "kind", [kind for kind in EventKind if kind not in INBOUND_EVENTS]
    )
    def test_outbound_events_rejected(self, kind):
        with pytest.raises(ProtocolError, match="cannot be sent"):
            parse_inbound_event({"event": kind.value, "data": {}})


def test_make_frame():
    assert make_frame(EventKind.CONNECTED, {"socketId": "x"}) == {
        "event": "connected",
        "data": {"socketId": "x"},
    }
