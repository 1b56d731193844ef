"""
Error taxonomy for the WhatsApp bridge.

Every error carries a machine-readable code and the HTTP status the control
surface answers with, so route handlers never have to map exceptions by hand.
"""

from typing import Optional


class BridgeError(Exception):
    """Base class for all bridge errors."""
    code: str = "BridgeError"
    http_status: int = 500

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or (self.__class__.__doc__ or self.code).strip()

    def to_dict(self) -> dict:
        """Structured JSON body for HTTP callers."""
        return {"status": "error", "error": self.code, "message": self.message}


class NotConnected(BridgeError):
    """WhatsApp session is not connected."""
    code = "NotConnected"
    http_status = 503


class InvalidArgument(BridgeError):
    """Request is missing a field or carries an invalid value."""
    code = "InvalidArgument"
    http_status = 400


class OperationTimeout(BridgeError):
    """Operation did not complete within its time bound."""
    code = "Timeout"
    http_status = 504


class SendFailed(BridgeError):
    """The session rejected or failed to deliver the message."""
    code = "SendFailed"
    http_status = 500


class TransientDisconnect(BridgeError):
    """Session closed for a recoverable reason."""
    code = "TransientDisconnect"
    http_status = 503

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TerminalLogout(BridgeError):
    """Session was logged out; a reset is required to pair again."""
    code = "TerminalLogout"
    http_status = 503

    def __init__(self, message: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CredentialCorruption(BridgeError):
    """Persisted credentials are unusable and must be erased."""
    code = "CredentialCorruption"
    http_status = 500


class DownstreamUnavailable(BridgeError):
    """Webhook relay target did not accept the message."""
    code = "DownstreamUnavailable"
    http_status = 502
