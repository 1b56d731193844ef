"""
WebSocket transport to the session gateway.

The gateway owns the messaging network's socket protocol. This module opens
one WebSocket per session attempt, sends the `hello` handshake with the stored
credentials, and pumps inbound frames into the lifecycle manager's event sink.
"""

import asyncio
import json
import logging
from typing import Optional

from websockets.asyncio.client import connect, ClientConnection
from websockets.exceptions import ConnectionClosed

from .config import FrameType
from .errors import SendFailed
from .router import FrameRouter, CommandRouter, parse_frame, close_reason_from_code
from .types import GatewayMessage, EventSink, SessionEvent, Closed, CloseReason


logger = logging.getLogger("wabridge.transport")


class GatewaySessionHandle:
    """
    One live gateway session.

    Owns the WebSocket, the reader task and the pending-ack table. Events are
    delivered to the sink until `detach()` is called.
    """

    def __init__(self, ws: ClientConnection, on_event: EventSink):
        self._ws = ws
        self._sink: Optional[EventSink] = on_event
        self._commands = CommandRouter()
        self._router = FrameRouter(on_ack=self._commands.handle_ack)
        self._reader: Optional[asyncio.Task] = None
        self._closed = False

    def start(self) -> None:
        """Start pumping inbound frames."""
        if self._reader is None:
            self._reader = asyncio.create_task(self._read_loop())

    async def send(self, jid: str, text: str) -> dict:
        """
        Send a text message and wait for the gateway's ack.

        Returns:
            Ack body (contains `messageId` when the gateway provides it)

        Raises:
            SendFailed: If the gateway refuses the message or the socket is gone
        """
        if self._closed:
            raise SendFailed("Session transport is closed")

        msg = GatewayMessage.create(FrameType.SEND, {"jid": jid, "text": text})
        try:
            ack = await self._commands.send_command(msg, self._send_json)
        except (ConnectionClosed, ConnectionError) as e:
            raise SendFailed(f"Session transport closed while sending: {e}") from e

        if not ack.get("ok", True):
            raise SendFailed(str(ack.get("error") or "Message rejected by gateway"))
        return ack

    def detach(self) -> None:
        """Stop delivering events to the sink."""
        self._sink = None

    async def close(self) -> None:
        """Close the socket and stop the reader. Safe to call twice."""
        if self._closed:
            return
        self._closed = True
        self._commands.cancel_all()

        reader = self._reader
        if reader is not None and reader is not asyncio.current_task() and not reader.done():
            reader.cancel()
            try:
                await reader
            except asyncio.CancelledError:
                pass

        try:
            await self._ws.close()
        except Exception as e:
            logger.debug(f"Error closing gateway socket: {e}")

    # =========================================================================
    # Private Implementation
    # =========================================================================

    async def _send_json(self, payload: dict) -> None:
        await self._ws.send(json.dumps(payload))

    def _emit(self, event: SessionEvent) -> None:
        sink = self._sink
        if sink is None:
            return
        try:
            sink(event)
        except Exception as e:
            logger.error(f"Error delivering {type(event).__name__}: {e}", exc_info=True)

    async def _read_loop(self) -> None:
        close_seen = False
        reason: Optional[CloseReason] = None
        try:
            async for raw in self._ws:
                msg = parse_frame(raw)
                if msg is None:
                    continue
                for event in self._router.route(msg):
                    self._emit(event)
                    if isinstance(event, Closed):
                        close_seen = True
        except ConnectionClosed as e:
            rcvd = e.rcvd
            reason = close_reason_from_code(
                rcvd.code if rcvd else None,
                rcvd.reason if rcvd else ""
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Gateway reader failed: {e}", exc_info=True)
            reason = CloseReason.connection_lost(str(e))
        finally:
            self._commands.cancel_all()

        if close_seen or self._closed:
            return

        # A socket that ends without an explicit close frame is a lost connection
        if reason is None:
            reason = close_reason_from_code(self._ws.close_code, self._ws.close_reason or "")
        self._emit(Closed(reason=reason))


class GatewaySessionClient:
    """
    Opens gateway sessions.

    Args:
        url: Gateway WebSocket URL
        browser: Browser identification sent in the handshake
    """

    def __init__(self, url: str, browser: tuple = ("Educare API", "Chrome", "1.0")):
        self.url = url
        self.browser = browser

    async def open(
        self,
        credentials: Optional[dict],
        on_event: EventSink
    ) -> GatewaySessionHandle:
        """
        Connect, send the handshake and start the reader.

        Raises:
            OSError / websockets errors: If the gateway cannot be reached
        """
        ws = await connect(self.url, max_size=None)
        hello = GatewayMessage.create(FrameType.HELLO, {
            "credentials": credentials,
            "browser": list(self.browser),
        })
        try:
            await ws.send(json.dumps(hello.to_dict()))
        except Exception:
            await ws.close()
            raise

        handle = GatewaySessionHandle(ws, on_event)
        handle.start()
        logger.info(
            f"Gateway session opened ({'resuming' if credentials else 'new pairing'}) at {self.url}"
        )
        return handle
