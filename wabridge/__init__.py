"""
wa-bridge - WhatsApp session bridge for n8n automations.
"""

__version__ = "1.0.0"
