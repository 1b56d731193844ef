"""
WhatsApp Bridge Server

This server orchestrates:
1. One long-lived WhatsApp session (through the session gateway)
2. HTTP control surface (status, health, QR page, send, reset)
3. Relay of inbound messages to an n8n webhook

Architecture:
┌─────────────────────────────────────────────────────────────┐
│                        server.py                             │
├─────────────────────────────────────────────────────────────┤
│  GET  /, /health, /qr    ←── operators / monitoring          │
│  POST /sendText, /reset  ←── n8n workflows                   │
│                                                              │
│  ┌──────────────────────┐      ┌─────────────────┐          │
│  │ Lifecycle Manager    │ ───► │  Webhook Relay  │ ───► n8n │
│  │ (state, backoff,     │      │  (queue+worker) │          │
│  │  recovery, QR)       │      └─────────────────┘          │
│  └──────────┬───────────┘                                    │
│             ▼                                                │
│  ┌──────────────────────┐      ┌─────────────────┐          │
│  │ Gateway transport    │      │ Credential dir  │          │
│  │ (WebSocket session)  │      │ (auth_info/)    │          │
│  └──────────────────────┘      └─────────────────┘          │
└─────────────────────────────────────────────────────────────┘
"""

import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from wabridge.whatsapp import (
    BridgeError,
    Config,
    ConnectionLifecycleManager,
    create_lifecycle_manager,
    logger,
)
from wabridge.whatsapp.config import print_startup_banner
from wabridge.managers import WebhookRelay
from wabridge.routes import control_router, qr_router


# =============================================================================
# FastAPI Application
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    config: Config = app.state.config
    manager: ConnectionLifecycleManager = app.state.manager
    relay: WebhookRelay = app.state.relay

    relay.start()
    await manager.start()

    print_startup_banner(config.server.host, config.server.port)
    logger.info(f"WhatsApp bridge listening on port {config.server.port}")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await manager.shutdown()
    await relay.stop()
    logger.info("Goodbye! 👋")


async def handle_bridge_error(request: Request, exc: BridgeError) -> JSONResponse:
    """Render bridge errors as structured JSON."""
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


def create_app(
    config: Optional[Config] = None,
    manager: Optional[ConnectionLifecycleManager] = None,
    relay: Optional[WebhookRelay] = None
) -> FastAPI:
    """
    Build the application.

    Args:
        config: Application configuration (read from the environment if omitted)
        manager: Lifecycle manager (wired to the gateway and auth dir if omitted)
        relay: Webhook relay (built from config if omitted)
    """
    config = config or Config.from_env()
    relay = relay or WebhookRelay(config.relay)
    manager = manager or create_lifecycle_manager(config.whatsapp, on_message=relay.submit)

    app = FastAPI(
        title="WhatsApp Bridge",
        description="WhatsApp session bridge for n8n automations",
        lifespan=lifespan
    )
    app.state.config = config
    app.state.manager = manager
    app.state.relay = relay
    app.state.started_at = time.monotonic()

    app.add_exception_handler(BridgeError, handle_bridge_error)

    app.include_router(control_router)
    app.include_router(qr_router)

    return app


# =============================================================================
# Main Entry Point
# =============================================================================

def main() -> None:
    import uvicorn

    config = Config.from_env()
    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
        log_level="warning",  # Reduce Uvicorn noise, our logger handles it
        access_log=False,
    )


if __name__ == "__main__":
    main()
