"""Fakes and helpers shared by the test suite."""

import asyncio
from typing import Optional

from wabridge.whatsapp import ConnectionLifecycleManager, CredentialCorruption, Opened


# =============================================================================
# Fakes for the session client and the credential store
# =============================================================================

class FakeHandle:
    """Session handle driven by the test."""

    def __init__(self, sink, credentials: Optional[dict]):
        self.sink = sink
        self.credentials = credentials
        self.sent: list[tuple[str, str]] = []
        self.detached = False
        self.closed = False
        self.send_delay = 0.0
        self.send_error: Optional[Exception] = None
        self.ack = {"ok": True, "messageId": "3EB0C0FFEE"}

    def emit(self, event) -> None:
        if not self.detached:
            self.sink(event)

    async def send(self, jid: str, text: str) -> dict:
        if self.send_delay:
            await asyncio.sleep(self.send_delay)
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((jid, text))
        return dict(self.ack)

    def detach(self) -> None:
        self.detached = True

    async def close(self) -> None:
        self.closed = True


class FakeSessionClient:
    """Session client that hands out FakeHandles."""

    def __init__(self):
        self.handles: list[FakeHandle] = []
        self.open_calls = 0
        self.fail_with: Optional[Exception] = None

    async def open(self, credentials, on_event) -> FakeHandle:
        self.open_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        handle = FakeHandle(on_event, credentials)
        self.handles.append(handle)
        return handle

    @property
    def latest(self) -> FakeHandle:
        return self.handles[-1]


class FakeCredentialStore:
    """In-memory credential store counting erases."""

    def __init__(self, credentials: Optional[dict] = None):
        self.credentials = credentials
        self.persisted: list[dict] = []
        self.erase_calls = 0
        self.corrupt = False

    async def load(self) -> Optional[dict]:
        if self.corrupt:
            raise CredentialCorruption("creds.json is not valid JSON")
        return self.credentials

    async def persist(self, credentials: dict) -> None:
        self.persisted.append(credentials)
        self.credentials = {**(self.credentials or {}), **credentials}

    async def erase(self) -> None:
        self.erase_calls += 1
        self.credentials = None
        self.corrupt = False


# =============================================================================
# Helpers
# =============================================================================

async def start_attempt(manager: ConnectionLifecycleManager, client: FakeSessionClient) -> FakeHandle:
    """Start (or restart) an attempt and return its handle."""
    await manager.start()
    await manager.settle()
    return client.latest


async def connect(manager: ConnectionLifecycleManager, client: FakeSessionClient) -> FakeHandle:
    """Drive the manager to the open state."""
    handle = await start_attempt(manager, client)
    handle.emit(Opened())
    await manager.settle()
    return handle
