"""
Frame routing for the session gateway.

Handles:
- Frame parsing and envelope validation
- Translation of gateway frames into tagged session events
- Correlation of outbound commands with their acks
"""

import asyncio
import json
import logging
from typing import Optional, Callable, Awaitable

from .config import DisconnectReason, FrameType
from .types import (
    GatewayMessage,
    SessionEvent,
    QrIssued,
    Opened,
    Closed,
    CloseReason,
    CredentialsUpdated,
    MessageReceived,
)


logger = logging.getLogger("wabridge.router")


def parse_frame(raw_data: str | bytes) -> Optional[GatewayMessage]:
    """
    Parse and validate a raw gateway frame.

    Returns:
        GatewayMessage if valid, None otherwise
    """
    try:
        text = raw_data if isinstance(raw_data, str) else raw_data.decode("utf-8")
        data = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Invalid JSON from gateway: {e}")
        return None

    if not isinstance(data, dict):
        logger.warning("Invalid frame from gateway: not an object")
        return None

    if not isinstance(data.get("type"), str):
        logger.warning("Invalid frame from gateway: 'type' must be string")
        return None

    return GatewayMessage.from_dict(data)


def close_reason_from_body(body: dict) -> CloseReason:
    """Build a CloseReason from a `close` frame body."""
    try:
        status_code = int(body.get("statusCode", DisconnectReason.CONNECTION_CLOSED))
    except (TypeError, ValueError):
        status_code = DisconnectReason.CONNECTION_CLOSED

    logged_out = body.get("loggedOut")
    if logged_out is None:
        logged_out = status_code == DisconnectReason.LOGGED_OUT

    return CloseReason(
        status_code=status_code,
        logged_out=bool(logged_out),
        message=str(body.get("message") or "")
    )


def close_reason_from_code(code: Optional[int], reason: str = "") -> CloseReason:
    """Build a CloseReason from a socket close code."""
    base = DisconnectReason.GATEWAY_CODE_BASE
    if code is not None and base <= code < base + 1000:
        return close_reason_from_body({"statusCode": code - base, "message": reason})
    return CloseReason.connection_lost(reason or f"socket closed ({code})")


class FrameRouter:
    """
    Turns gateway frames into session events.

    Ack frames never become events; they are handed to `on_ack` so the
    handle can resolve the matching pending send.
    """

    def __init__(self, on_ack: Optional[Callable[[GatewayMessage], bool]] = None):
        self._on_ack = on_ack

    def route(self, msg: GatewayMessage) -> list[SessionEvent]:
        """Translate one frame into zero or more events."""
        msg_type = msg.type
        body = msg.body

        if msg_type == FrameType.ACK:
            if self._on_ack and not self._on_ack(msg):
                logger.debug(f"Unmatched ack [{msg.id}]")
            return []

        if msg_type == FrameType.QR:
            qr = body.get("qr")
            if not isinstance(qr, str) or not qr:
                logger.warning("QR frame without payload")
                return []
            return [QrIssued(qr=qr)]

        if msg_type == FrameType.OPEN:
            return [Opened()]

        if msg_type == FrameType.CLOSE:
            return [Closed(reason=close_reason_from_body(body))]

        if msg_type == FrameType.CREDS_UPDATE:
            return [CredentialsUpdated(credentials=dict(body))] if body else []

        if msg_type == FrameType.MESSAGES_UPSERT:
            return self._inbound_messages(body)

        logger.debug(f"Ignoring frame type '{msg_type}'")
        return []

    def _inbound_messages(self, body: dict) -> list[SessionEvent]:
        events = []
        for message in body.get("messages") or []:
            if not isinstance(message, dict):
                continue
            key = message.get("key") or {}
            if key.get("fromMe"):
                continue
            events.append(MessageReceived(message=message, sender=key.get("remoteJid")))
        return events


class CommandRouter:
    """
    Tracks outbound commands awaiting an ack.

    Provides request/response correlation using the envelope ID, which the
    gateway echoes back in its ack.
    """

    def __init__(self):
        self._pending: dict[str, asyncio.Future] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def send_command(
        self,
        msg: GatewayMessage,
        send_func: Callable[[dict], Awaitable[None]]
    ) -> dict:
        """
        Send a command and wait for its ack.

        No timeout is applied here; callers bound the wait. The pending entry
        is always removed, including on cancellation.

        Returns:
            Ack body
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[msg.id] = future

        try:
            await send_func(msg.to_dict())
            return await future
        finally:
            self._pending.pop(msg.id, None)

    def handle_ack(self, msg: GatewayMessage) -> bool:
        """Resolve the pending command matching this ack."""
        future = self._pending.get(msg.id)
        if future and not future.done():
            future.set_result(msg.body)
            return True
        return False

    def cancel_all(self, reason: str = "session closed") -> None:
        """Fail all pending commands."""
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ConnectionError(reason))
        self._pending.clear()
