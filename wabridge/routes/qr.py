"""
QR pairing page.

Renders the current pairing artifact as a PNG embedded in a self-refreshing
HTML page, or a "connected" page when there is nothing to scan.
"""

import base64
import html
import io
import logging

import qrcode
from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse

from wabridge.whatsapp import ConnectionLifecycleManager, ConnectionState

from .control import get_manager

logger = logging.getLogger("wabridge.routes")

router = APIRouter(tags=["Pairing"])


PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta http-equiv="refresh" content="{refresh}">
  <title>{title}</title>
  <style>
    body {{ font-family: sans-serif; text-align: center; padding: 2rem; background: #f4f4f4; }}
    .card {{ display: inline-block; background: #fff; padding: 2rem; border-radius: 12px; }}
    .muted {{ color: #666; font-size: 0.9rem; }}
  </style>
</head>
<body>
  <div class="card">
    <h1>{title}</h1>
    {content}
    <p class="muted">This page refreshes every {refresh}s.</p>
  </div>
</body>
</html>
"""


def build_qr_png(data: str) -> bytes:
    """Render a QR payload as PNG bytes."""
    qr = qrcode.QRCode(
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=8,
        border=4,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="#000000", back_color="#FFFFFF")
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def render_page(title: str, content: str, refresh: int) -> str:
    return PAGE_TEMPLATE.format(title=html.escape(title), content=content, refresh=refresh)


@router.get("/qr", response_class=HTMLResponse)
async def qr_page(
    request: Request,
    manager: ConnectionLifecycleManager = Depends(get_manager)
) -> HTMLResponse:
    """Show the QR code to scan, or the connection state when there is none."""
    refresh = request.app.state.config.pairing_page.refresh_seconds
    artifact = manager.pairing.current()

    if artifact is not None:
        png = build_qr_png(artifact.qr)
        encoded = base64.b64encode(png).decode("ascii")
        content = (
            f'<img src="data:image/png;base64,{encoded}" alt="WhatsApp QR code" '
            f'data-version="{artifact.version}">'
            "<p>Open WhatsApp &rsaquo; Linked devices &rsaquo; Link a device, then scan.</p>"
        )
        return HTMLResponse(render_page("Scan to connect WhatsApp", content, refresh))

    snapshot = manager.current_status()
    if snapshot.state == ConnectionState.OPEN:
        title = "WhatsApp connected"
        detail = "The session is connected, no QR code is needed."
    else:
        title = "No QR code available"
        detail = f"Session state: {html.escape(snapshot.label)}. A QR code appears here when pairing starts."
    return HTMLResponse(render_page(title, f"<p>{detail}</p>", refresh))
