"""
Manager classes for the WhatsApp bridge.

Note: the session lifecycle manager lives in the whatsapp/ module.
Import it from: from wabridge.whatsapp import ConnectionLifecycleManager
"""

from .relay_manager import WebhookRelay

__all__ = [
    "WebhookRelay",
]
