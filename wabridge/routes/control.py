"""
Control and status endpoints.

- GET  /          Status summary
- GET  /health    Process and session health
- POST /sendText  Outbound text message
- POST /reset     Forced re-pairing
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any

import psutil
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from wabridge.whatsapp import ConnectionLifecycleManager, InvalidArgument

logger = logging.getLogger("wabridge.routes")

router = APIRouter(tags=["Control"])


# =============================================================================
# Dependencies
# =============================================================================

def get_manager(request: Request) -> ConnectionLifecycleManager:
    """Lifecycle manager injected by the application factory."""
    return request.app.state.manager


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# Request Models
# =============================================================================

class SendTextRequest(BaseModel):
    """Body of POST /sendText. Values are validated by the manager."""
    numero: Any = None
    mensagem: Any = None


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/")
async def status(manager: ConnectionLifecycleManager = Depends(get_manager)):
    """Status summary of the bridge."""
    snapshot = manager.current_status()
    return {
        "status": "online",
        "whatsapp": snapshot.label,
        "qrCode": "available" if snapshot.pairing_available else "unavailable",
        "reconnectAttempts": snapshot.reconnect_attempts,
        "timestamp": _timestamp(),
    }


@router.get("/health")
async def health(
    request: Request,
    manager: ConnectionLifecycleManager = Depends(get_manager)
) -> JSONResponse:
    """Process uptime, memory usage and session state."""
    try:
        memory = psutil.Process().memory_info()
        snapshot = manager.current_status()
        relay = getattr(request.app.state, "relay", None)
        content = {
            "status": "healthy",
            "uptime": round(time.monotonic() - request.app.state.started_at, 3),
            "memory": {
                "rss": memory.rss,
                "vms": memory.vms,
            },
            "whatsapp": snapshot.to_dict(),
            "relay": {
                "enabled": relay.enabled,
                "backlog": relay.backlog,
                "delivered": relay.delivered,
                "failed": relay.failed,
            } if relay is not None else None,
            "timestamp": _timestamp(),
        }
    except Exception as e:
        logger.error(f"Health check failed: {e}", exc_info=True)
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "error": "HealthCheckFailed", "message": str(e)}
        )
    return JSONResponse(content=content)


@router.post("/sendText")
async def send_text(
    request: Request,
    manager: ConnectionLifecycleManager = Depends(get_manager)
):
    """
    Send a text message.

    Errors are raised as BridgeError subclasses and rendered by the
    application's exception handler (503 / 400 / 504 / 500). Session state
    is checked before the body, so a malformed request to a closed session
    still answers 503.
    """
    try:
        body = SendTextRequest.model_validate_json(await request.body())
    except ValidationError:
        manager.require_open()
        raise InvalidArgument(
            "Request body must be a JSON object with 'numero' and 'mensagem'"
        ) from None

    result = await manager.request_send(body.numero, body.mensagem)
    return {
        "status": "OK",
        "to": result["jid"],
        "messageId": result.get("messageId"),
        "timestamp": _timestamp(),
    }


@router.get("/sendText")
async def send_text_wrong_method() -> JSONResponse:
    """Only POST is accepted."""
    return JSONResponse(
        status_code=405,
        headers={"Allow": "POST"},
        content={
            "status": "error",
            "error": "MethodNotAllowed",
            "message": "Use POST /sendText with {\"numero\": ..., \"mensagem\": ...}",
        }
    )


@router.post("/reset")
async def reset(manager: ConnectionLifecycleManager = Depends(get_manager)) -> JSONResponse:
    """Wipe the session and pair again."""
    try:
        await manager.reset()
    except Exception as e:
        logger.error(f"Reset failed: {e}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"status": "error", "error": "ResetFailed", "message": str(e)}
        )
    return JSONResponse(content={
        "status": "OK",
        "message": "Session reset, a new QR will be available shortly",
        "timestamp": _timestamp(),
    })
