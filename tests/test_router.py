"""Unit tests for gateway frame routing and command correlation."""

import asyncio
import json

import pytest

from wabridge.whatsapp import (
    Closed,
    CommandRouter,
    CredentialsUpdated,
    FrameRouter,
    GatewayMessage,
    MessageReceived,
    Opened,
    QrIssued,
    parse_frame,
)
from wabridge.whatsapp.router import close_reason_from_body, close_reason_from_code


def frame(msg_type: str, body=None, msg_id: str = "m-1") -> GatewayMessage:
    return GatewayMessage(type=msg_type, ts=1700000000, id=msg_id, body=body or {})


@pytest.mark.unit
class TestParseFrame:
    """Test cases for parse_frame."""

    def test_valid_frame(self):
        raw = json.dumps({"type": "qr", "ts": 1, "id": "abc", "body": {"qr": "2@x"}})

        msg = parse_frame(raw)

        assert msg.type == "qr"
        assert msg.id == "abc"
        assert msg.body == {"qr": "2@x"}

    def test_bytes_frame(self):
        msg = parse_frame(b'{"type": "open"}')

        assert msg.type == "open"
        assert msg.body == {}

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"type": 5}', b"\xff\xfe"])
    def test_invalid_frames(self, raw):
        assert parse_frame(raw) is None


@pytest.mark.unit
class TestCloseReasons:
    """Test cases for close reason parsing."""

    def test_logged_out_inferred_from_status(self):
        reason = close_reason_from_body({"statusCode": 401})

        assert reason.status_code == 401
        assert reason.logged_out is True

    def test_explicit_logged_out_flag(self):
        reason = close_reason_from_body({"statusCode": 500, "loggedOut": False, "message": "bad"})

        assert reason.logged_out is False
        assert reason.message == "bad"

    def test_missing_status_defaults_to_closed(self):
        reason = close_reason_from_body({"statusCode": "nope"})

        assert reason.status_code == 428
        assert reason.logged_out is False

    def test_gateway_close_code_carries_status(self):
        reason = close_reason_from_code(4515, "restart required")

        assert reason.status_code == 515
        assert reason.message == "restart required"

    def test_other_close_code_is_connection_lost(self):
        reason = close_reason_from_code(1006)

        assert reason.status_code == 408
        assert reason.logged_out is False


@pytest.mark.unit
class TestFrameRouter:
    """Test cases for FrameRouter."""

    def test_qr(self):
        assert FrameRouter().route(frame("qr", {"qr": "2@ref"})) == [QrIssued(qr="2@ref")]

    def test_qr_without_payload(self):
        assert FrameRouter().route(frame("qr", {})) == []

    def test_open(self):
        assert FrameRouter().route(frame("open")) == [Opened()]

    def test_close(self):
        events = FrameRouter().route(frame("close", {"statusCode": 440, "message": "replaced"}))

        assert len(events) == 1
        assert isinstance(events[0], Closed)
        assert events[0].reason.status_code == 440

    def test_creds_update(self):
        events = FrameRouter().route(frame("creds.update", {"creds": {"registered": True}}))

        assert events == [CredentialsUpdated(credentials={"creds": {"registered": True}})]

    def test_inbound_messages_skip_own(self):
        """Test that only messages from other parties are relayed."""
        body = {"messages": [
            {"key": {"remoteJid": "5511888888888@s.whatsapp.net", "fromMe": False}, "message": {"conversation": "oi"}},
            {"key": {"remoteJid": "5511888888888@s.whatsapp.net", "fromMe": True}, "message": {"conversation": "eco"}},
            "garbage",
        ]}

        events = FrameRouter().route(frame("messages.upsert", body))

        assert len(events) == 1
        assert isinstance(events[0], MessageReceived)
        assert events[0].sender == "5511888888888@s.whatsapp.net"

    def test_ack_goes_to_callback(self):
        acks = []
        router = FrameRouter(on_ack=lambda msg: acks.append(msg) or True)

        assert router.route(frame("ack", {"ok": True})) == []
        assert len(acks) == 1

    def test_unknown_type_ignored(self):
        assert FrameRouter().route(frame("presence.update")) == []


@pytest.mark.unit
class TestCommandRouter:
    """Test cases for CommandRouter."""

    @pytest.mark.asyncio
    async def test_ack_resolves_command(self):
        """Test request/ack correlation by envelope id."""
        commands = CommandRouter()
        sent = []

        async def send_func(payload):
            sent.append(payload)

        msg = GatewayMessage.create("send", {"jid": "x@s.whatsapp.net", "text": "hi"})
        task = asyncio.create_task(commands.send_command(msg, send_func))
        await asyncio.sleep(0)

        assert commands.pending_count == 1
        assert commands.handle_ack(frame("ack", {"ok": True, "messageId": "ABC"}, msg_id=msg.id))

        assert await task == {"ok": True, "messageId": "ABC"}
        assert sent[0]["id"] == msg.id
        assert commands.pending_count == 0

    def test_unmatched_ack(self):
        assert CommandRouter().handle_ack(frame("ack", msg_id="unknown")) is False

    @pytest.mark.asyncio
    async def test_cancel_all_fails_pending(self):
        commands = CommandRouter()

        async def send_func(payload):
            pass

        task = asyncio.create_task(commands.send_command(GatewayMessage.create("send"), send_func))
        await asyncio.sleep(0)
        commands.cancel_all("socket closed")

        with pytest.raises(ConnectionError, match="socket closed"):
            await task
        assert commands.pending_count == 0

    @pytest.mark.asyncio
    async def test_cancellation_removes_pending(self):
        """Test that a caller timeout leaves no pending entry behind."""
        commands = CommandRouter()

        async def send_func(payload):
            pass

        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(
                commands.send_command(GatewayMessage.create("send"), send_func), 0.01
            )
        assert commands.pending_count == 0
