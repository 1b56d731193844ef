"""Pytest configuration and shared fixtures."""

import pytest
import pytest_asyncio

from wabridge.whatsapp import (
    ConnectionLifecycleManager,
    PairingPublisher,
    WhatsAppConfig,
)
from tests.helpers import FakeSessionClient, FakeCredentialStore


@pytest.fixture
def wa_config() -> WhatsAppConfig:
    """Config with long timers so nothing fires unless a test asks for it."""
    return WhatsAppConfig(
        max_reconnect_attempts=3,
        reconnect_base_delay=30.0,
        reconnect_max_delay=300.0,
        reconnect_max_jitter=0.0,
        auth_reject_threshold=3,
        auth_rejected_status=500,
        reset_restart_delay=30.0,
        send_timeout=0.2,
        open_timeout=1.0,
        qr_ttl=60.0,
    )


@pytest.fixture
def client() -> FakeSessionClient:
    return FakeSessionClient()


@pytest.fixture
def store() -> FakeCredentialStore:
    return FakeCredentialStore(credentials={"creds": {"me": {"id": "5511999999999:1@s.whatsapp.net"}}})


@pytest.fixture
def inbound() -> list:
    return []


@pytest_asyncio.fixture
async def manager(client, store, wa_config, inbound):
    mgr = ConnectionLifecycleManager(
        client=client,
        store=store,
        pairing=PairingPublisher(ttl=wa_config.qr_ttl),
        config=wa_config,
        on_message=inbound.append,
    )
    yield mgr
    await mgr.shutdown()
