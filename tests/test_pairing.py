"""Unit tests for PairingPublisher."""

import pytest

from wabridge.whatsapp import PairingPublisher


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.mark.unit
class TestPairingPublisher:
    """Test cases for PairingPublisher."""

    def test_empty_by_default(self, clock):
        publisher = PairingPublisher(ttl=60, now=clock)

        assert publisher.current() is None
        assert publisher.available is False
        assert publisher.version == 0

    def test_publish(self, clock):
        """Test that a published QR is readable with its markers."""
        publisher = PairingPublisher(ttl=60, now=clock)

        artifact = publisher.publish("2@abc,def")

        assert publisher.current() == artifact
        assert artifact.qr == "2@abc,def"
        assert artifact.version == 1
        assert artifact.issued_at == 1000.0
        assert artifact.expires_at == 1060.0

    def test_newer_replaces_older(self, clock):
        """Test that only the latest QR is ever exposed."""
        publisher = PairingPublisher(ttl=60, now=clock)

        publisher.publish("2@first")
        clock.now += 5
        second = publisher.publish("2@second")

        assert publisher.current() is second
        assert publisher.version == 2

    def test_expired_artifact_hidden(self, clock):
        """Test that an expired QR is not served."""
        publisher = PairingPublisher(ttl=60, now=clock)
        publisher.publish("2@abc")

        clock.now += 59.9
        assert publisher.available is True

        clock.now += 0.1
        assert publisher.current() is None
        assert publisher.available is False

    def test_no_ttl_never_expires(self, clock):
        publisher = PairingPublisher(ttl=None, now=clock)
        publisher.publish("2@abc")

        clock.now += 10_000
        assert publisher.current().expires_at is None
        assert publisher.available is True

    def test_clear(self, clock):
        """Test that clearing drops the artifact but keeps the version counter."""
        publisher = PairingPublisher(ttl=60, now=clock)
        publisher.publish("2@abc")

        publisher.clear()
        publisher.clear()

        assert publisher.current() is None
        assert publisher.version == 1
        assert publisher.publish("2@next").version == 2
