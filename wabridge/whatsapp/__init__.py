"""
WhatsApp session lifecycle management.

Keeps one authenticated session to the messaging network alive.

Features:
- Connection state machine with a single owner
- Bounded exponential reconnection with jitter
- One attempt in flight, one reconnect timer pending
- Corrupted-credential detection and re-pairing
- QR pairing artifact publishing

Usage:
    from wabridge.whatsapp import create_lifecycle_manager, Config

    config = Config.from_env()
    manager = create_lifecycle_manager(config.whatsapp)
    await manager.start()
"""

from typing import Optional

# Type definitions
from .types import (
    ConnectionState,
    GatewayMessage,
    CloseReason,
    SessionEvent,
    QrIssued,
    Opened,
    Closed,
    CredentialsUpdated,
    MessageReceived,
    StatusSnapshot,
    SessionHandle,
    SessionClient,
    CredentialStore,
)

# Configuration
from .config import (
    Config,
    ServerConfig,
    WhatsAppConfig,
    RelayConfig,
    PairingPageConfig,
    DisconnectReason,
    FrameType,
    logger,
    setup_logging,
)

# Errors
from .errors import (
    BridgeError,
    NotConnected,
    InvalidArgument,
    OperationTimeout,
    SendFailed,
    TransientDisconnect,
    TerminalLogout,
    CredentialCorruption,
    DownstreamUnavailable,
)

# Building blocks
from .backoff import ReconnectPolicy, ReconnectTimer
from .pairing import PairingPublisher, PairingArtifact
from .credentials import MultiFileCredentialStore
from .router import FrameRouter, CommandRouter, parse_frame
from .transport import GatewaySessionClient, GatewaySessionHandle

# Lifecycle manager
from .lifecycle import ConnectionLifecycleManager, normalize_recipient


def create_lifecycle_manager(
    config: Optional[WhatsAppConfig] = None,
    on_message=None
) -> ConnectionLifecycleManager:
    """Build a manager wired to the gateway client and the on-disk store."""
    config = config or WhatsAppConfig.from_env()
    return ConnectionLifecycleManager(
        client=GatewaySessionClient(config.gateway_url, browser=config.browser),
        store=MultiFileCredentialStore(config.auth_dir),
        pairing=PairingPublisher(ttl=config.qr_ttl),
        config=config,
        on_message=on_message
    )


__all__ = [
    # Types
    "ConnectionState",
    "GatewayMessage",
    "CloseReason",
    "SessionEvent",
    "QrIssued",
    "Opened",
    "Closed",
    "CredentialsUpdated",
    "MessageReceived",
    "StatusSnapshot",
    "SessionHandle",
    "SessionClient",
    "CredentialStore",

    # Configuration
    "Config",
    "ServerConfig",
    "WhatsAppConfig",
    "RelayConfig",
    "PairingPageConfig",
    "DisconnectReason",
    "FrameType",
    "logger",
    "setup_logging",

    # Errors
    "BridgeError",
    "NotConnected",
    "InvalidArgument",
    "OperationTimeout",
    "SendFailed",
    "TransientDisconnect",
    "TerminalLogout",
    "CredentialCorruption",
    "DownstreamUnavailable",

    # Building blocks
    "ReconnectPolicy",
    "ReconnectTimer",
    "PairingPublisher",
    "PairingArtifact",
    "MultiFileCredentialStore",
    "FrameRouter",
    "CommandRouter",
    "parse_frame",
    "GatewaySessionClient",
    "GatewaySessionHandle",

    # Manager
    "ConnectionLifecycleManager",
    "normalize_recipient",
    "create_lifecycle_manager",
]
