"""Tests for the HTTP control surface."""

import httpx
import pytest
import pytest_asyncio

from wabridge.managers import WebhookRelay
from wabridge.server import create_app
from wabridge.whatsapp import (
    Closed,
    CloseReason,
    Config,
    QrIssued,
    RelayConfig,
)
from tests.helpers import connect, start_attempt


@pytest.fixture
def app(manager):
    return create_app(Config(), manager=manager, relay=WebhookRelay(RelayConfig()))


@pytest_asyncio.fixture
async def http(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.mark.unit
class TestStatusEndpoints:
    """GET / and GET /health."""

    @pytest.mark.asyncio
    async def test_status_idle(self, http):
        response = await http.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "online"
        assert data["whatsapp"] == "disconnected"
        assert data["qrCode"] == "unavailable"
        assert data["reconnectAttempts"] == 0
        assert "timestamp" in data

    @pytest.mark.asyncio
    async def test_status_connected(self, http, manager, client):
        await connect(manager, client)

        data = (await http.get("/")).json()

        assert data["whatsapp"] == "connected"

    @pytest.mark.asyncio
    async def test_status_reports_pending_qr(self, http, manager, client):
        handle = await start_attempt(manager, client)
        handle.emit(QrIssued(qr="2@pairing"))
        await manager.settle()

        data = (await http.get("/")).json()

        assert data["whatsapp"] == "connecting"
        assert data["qrCode"] == "available"

    @pytest.mark.asyncio
    async def test_health(self, http, manager, client):
        """Test that health reports memory, uptime and session state."""
        await connect(manager, client)

        response = await http.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["uptime"] >= 0
        assert data["memory"]["rss"] > 0
        assert data["whatsapp"]["state"] == "open"
        assert data["relay"]["enabled"] is False

    @pytest.mark.asyncio
    async def test_health_failure(self, http, monkeypatch):
        def broken_process():
            raise RuntimeError("no /proc")

        monkeypatch.setattr("wabridge.routes.control.psutil.Process", broken_process)

        response = await http.get("/health")

        assert response.status_code == 503
        assert response.json()["status"] == "unhealthy"


@pytest.mark.unit
class TestSendText:
    """POST /sendText."""

    @pytest.mark.asyncio
    async def test_send_success(self, http, manager, client):
        handle = await connect(manager, client)

        response = await http.post("/sendText", json={"numero": "5511999999999", "mensagem": "ola"})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "OK"
        assert data["to"] == "5511999999999@s.whatsapp.net"
        assert data["messageId"] == "3EB0C0FFEE"
        assert handle.sent == [("5511999999999@s.whatsapp.net", "ola")]

    @pytest.mark.asyncio
    async def test_send_while_closed(self, http, manager, client):
        """Test that a closed session answers 503 without touching the handle."""
        handle = await connect(manager, client)
        handle.emit(Closed(reason=CloseReason(status_code=428)))
        await manager.settle()

        response = await http.post("/sendText", json={"numero": "5511999999999", "mensagem": "ola"})

        assert response.status_code == 503
        assert response.json()["error"] == "NotConnected"
        assert handle.sent == []

    @pytest.mark.asyncio
    async def test_send_missing_field(self, http, manager, client):
        await connect(manager, client)

        response = await http.post("/sendText", json={"mensagem": "ola"})

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidArgument"

    @pytest.mark.asyncio
    async def test_send_malformed_body(self, http, manager, client):
        await connect(manager, client)

        response = await http.post(
            "/sendText", content=b"not json", headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"] == "InvalidArgument"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", [b"", b"not json", b"[1, 2]"])
    async def test_malformed_body_while_not_open(self, http, manager, client, content):
        """Test that session state is checked before the body is parsed."""
        await start_attempt(manager, client)

        response = await http.post(
            "/sendText", content=content, headers={"Content-Type": "application/json"}
        )

        assert response.status_code == 503
        assert response.json()["error"] == "NotConnected"

    @pytest.mark.asyncio
    async def test_send_timeout(self, http, manager, client):
        handle = await connect(manager, client)
        handle.send_delay = 1.0

        response = await http.post("/sendText", json={"numero": "5511999999999", "mensagem": "ola"})

        assert response.status_code == 504
        assert response.json()["error"] == "Timeout"

    @pytest.mark.asyncio
    async def test_get_not_allowed(self, http):
        response = await http.get("/sendText")

        assert response.status_code == 405
        assert response.headers["allow"] == "POST"


@pytest.mark.unit
class TestReset:
    """POST /reset."""

    @pytest.mark.asyncio
    async def test_reset(self, http, manager, client, store):
        await connect(manager, client)

        response = await http.post("/reset")

        assert response.status_code == 200
        assert response.json()["status"] == "OK"
        assert store.erase_calls == 1
        assert manager.timer.reason == "restart after reset"

    @pytest.mark.asyncio
    async def test_reset_failure(self, http, manager, monkeypatch):
        async def failing_reset():
            raise OSError("read-only filesystem")

        monkeypatch.setattr(manager, "reset", failing_reset)

        response = await http.post("/reset")

        assert response.status_code == 500
        data = response.json()
        assert data["error"] == "ResetFailed"
        assert "read-only filesystem" in data["message"]


@pytest.mark.unit
class TestQrPage:
    """GET /qr."""

    @pytest.mark.asyncio
    async def test_qr_page_with_artifact(self, http, manager, client):
        handle = await start_attempt(manager, client)
        handle.emit(QrIssued(qr="2@pairing-ref,abc,def"))
        await manager.settle()

        response = await http.get("/qr")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert 'src="data:image/png;base64,' in response.text
        assert 'data-version="1"' in response.text
        assert 'content="15"' in response.text

    @pytest.mark.asyncio
    async def test_qr_page_without_artifact(self, http):
        response = await http.get("/qr")

        assert response.status_code == 200
        assert "No QR code available" in response.text
        assert "data:image/png" not in response.text

    @pytest.mark.asyncio
    async def test_qr_page_when_connected(self, http, manager, client):
        await connect(manager, client)

        response = await http.get("/qr")

        assert "WhatsApp connected" in response.text
