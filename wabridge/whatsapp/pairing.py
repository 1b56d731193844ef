"""
Pairing publisher.

Keeps the most recent QR payload issued by the session so the HTTP layer can
render it. A newer QR always replaces the older one, and the artifact is
cleared as soon as the session opens.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional, Callable


logger = logging.getLogger("wabridge.pairing")


@dataclass(frozen=True)
class PairingArtifact:
    """A QR payload together with its issue marker and validity."""
    qr: str
    version: int
    issued_at: float
    expires_at: Optional[float] = None

    def is_valid(self, now: float) -> bool:
        return self.expires_at is None or now < self.expires_at


class PairingPublisher:
    """
    Holds at most one current pairing artifact.

    The artifact is replaced wholesale on every publish, so readers always
    observe either the previous artifact, the new one or None.
    """

    def __init__(
        self,
        ttl: Optional[float] = 60.0,
        now: Optional[Callable[[], float]] = None
    ):
        self._ttl = ttl
        self._now = now or time.time
        self._current: Optional[PairingArtifact] = None
        self._version = 0

    @property
    def version(self) -> int:
        """Issue marker of the last published artifact."""
        return self._version

    def publish(self, qr: str) -> PairingArtifact:
        """Publish a new QR payload, invalidating any previous one."""
        self._version += 1
        issued_at = self._now()
        artifact = PairingArtifact(
            qr=qr,
            version=self._version,
            issued_at=issued_at,
            expires_at=issued_at + self._ttl if self._ttl else None
        )
        superseded = self._current is not None
        self._current = artifact
        logger.info(
            f"QR #{artifact.version} published"
            + (" (previous QR invalidated)" if superseded else "")
        )
        return artifact

    def clear(self) -> None:
        """Drop the current artifact."""
        if self._current is not None:
            logger.info(f"QR #{self._current.version} cleared")
        self._current = None

    def current(self) -> Optional[PairingArtifact]:
        """Current valid artifact, if any."""
        artifact = self._current
        if artifact is None or not artifact.is_valid(self._now()):
            return None
        return artifact

    @property
    def available(self) -> bool:
        return self.current() is not None
