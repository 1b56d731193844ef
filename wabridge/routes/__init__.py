"""
Route modules for the WhatsApp bridge.
"""

from .control import router as control_router
from .qr import router as qr_router

__all__ = [
    "control_router",
    "qr_router",
]
