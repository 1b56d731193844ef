"""
Type definitions for the WhatsApp session lifecycle.

Holds the connection state enum, the gateway message envelope, the tagged
session events consumed by the lifecycle manager and the protocols the
manager expects from its collaborators.
"""

from dataclasses import dataclass, field
from typing import Optional, Callable, Any, Protocol
from enum import Enum
import time
import uuid

from .config import DisconnectReason


class ConnectionState(str, Enum):
    """State of the single logical session."""
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"
    TERMINATED = "terminated"


@dataclass
class GatewayMessage:
    """
    Message envelope exchanged with the session gateway.

    Every frame in both directions is a JSON object of this shape.
    """
    type: str
    ts: int  # Unix timestamp in seconds
    id: str  # Unique message ID, echoed back by acks
    body: dict = field(default_factory=dict)

    @classmethod
    def create(cls, msg_type: str, body: Optional[dict] = None) -> "GatewayMessage":
        """Factory method to create a new message with auto-generated ID and timestamp."""
        return cls(
            type=msg_type,
            ts=int(time.time()),
            id=str(uuid.uuid4()),
            body=body or {}
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "type": self.type,
            "ts": self.ts,
            "id": self.id,
            "body": self.body,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GatewayMessage":
        """Create from dictionary (e.g., parsed JSON)."""
        body = data.get("body")
        return cls(
            type=data.get("type", "unknown"),
            ts=data.get("ts", int(time.time())),
            id=data.get("id", ""),
            body=body if isinstance(body, dict) else {}
        )


@dataclass(frozen=True)
class CloseReason:
    """Why a session closed."""
    status_code: int
    logged_out: bool = False
    message: str = ""

    @classmethod
    def connection_lost(cls, message: str = "connection lost") -> "CloseReason":
        return cls(status_code=DisconnectReason.CONNECTION_LOST, message=message)

    def describe(self) -> str:
        label = self.message or "no detail"
        return f"{self.status_code} ({label})"


# =============================================================================
# Session events (tagged variants, processed in emission order)
# =============================================================================

@dataclass(frozen=True)
class SessionEvent:
    """Base class for events emitted by a session handle."""


@dataclass(frozen=True)
class QrIssued(SessionEvent):
    qr: str


@dataclass(frozen=True)
class Opened(SessionEvent):
    pass


@dataclass(frozen=True)
class Closed(SessionEvent):
    reason: CloseReason


@dataclass(frozen=True)
class CredentialsUpdated(SessionEvent):
    credentials: dict


@dataclass(frozen=True)
class MessageReceived(SessionEvent):
    message: dict
    sender: Optional[str] = None


EventSink = Callable[[SessionEvent], None]


@dataclass(frozen=True)
class StatusSnapshot:
    """Non-blocking view of the lifecycle manager."""
    state: ConnectionState
    reconnect_attempts: int
    pairing_available: bool
    reconnect_pending: bool = False
    last_disconnect: Optional[dict] = None

    @property
    def label(self) -> str:
        """Human-facing connection label used by the status endpoint."""
        if self.state == ConnectionState.OPEN:
            return "connected"
        if self.state == ConnectionState.CONNECTING:
            return "connecting"
        if self.state == ConnectionState.TERMINATED:
            return "logged_out"
        if self.reconnect_pending:
            return "reconnecting"
        return "disconnected"

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "reconnectAttempts": self.reconnect_attempts,
            "pairingAvailable": self.pairing_available,
            "reconnectPending": self.reconnect_pending,
            "lastDisconnect": self.last_disconnect,
        }


# =============================================================================
# Collaborator protocols
# =============================================================================

class SessionHandle(Protocol):
    """Live session returned by a session client."""

    async def send(self, jid: str, text: str) -> dict: ...

    def detach(self) -> None: ...

    async def close(self) -> None: ...


class SessionClient(Protocol):
    """Opens sessions against the messaging network."""

    async def open(
        self,
        credentials: Optional[dict],
        on_event: EventSink
    ) -> SessionHandle: ...


class CredentialStore(Protocol):
    """Persists the credential material of the session."""

    async def load(self) -> Optional[dict]: ...

    async def persist(self, credentials: dict) -> None: ...

    async def erase(self) -> None: ...


OnInboundMessage = Callable[[MessageReceived], Any]
