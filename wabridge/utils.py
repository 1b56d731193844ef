"""
Utility functions for the WhatsApp bridge.
"""

import base64


def json_safe(obj):
    """
    Convert an inbound message to something `json.dumps` accepts.

    Binary fields (media keys, thumbnails) become base64 strings, unknown
    objects fall back to their string form.
    """
    if isinstance(obj, dict):
        return {str(k): json_safe(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple, set)):
        return [json_safe(v) for v in obj]
    if isinstance(obj, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(obj)).decode("ascii")
    if obj is None or isinstance(obj, (str, int, float, bool)):
        return obj
    return str(obj)


def shorten(text, max_length: int = 200) -> str:
    """Clip a response body or payload for log lines."""
    if text is None:
        return ""
    text = str(text)
    if len(text) <= max_length:
        return text
    return f"{text[:max_length]}... ({len(text)} chars)"
