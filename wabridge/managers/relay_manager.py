"""
Webhook Relay - forwards inbound WhatsApp messages to n8n.

Messages are queued by the lifecycle manager and delivered by a separate
worker task, so a slow or failing webhook never stalls session events.
"""

import asyncio
import logging
from typing import Optional

import httpx

from wabridge.whatsapp.config import RelayConfig
from wabridge.whatsapp.errors import DownstreamUnavailable
from wabridge.whatsapp.types import MessageReceived
from wabridge.utils import json_safe, shorten

logger = logging.getLogger("wabridge.relay")


class WebhookRelay:
    """Delivers inbound messages to the configured webhook."""

    def __init__(
        self,
        config: Optional[RelayConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.config = config or RelayConfig()
        self._http = http_client
        self._owns_http = http_client is None
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.queue_size)
        self._task: Optional[asyncio.Task] = None
        self.delivered = 0
        self.failed = 0
        self.dropped = 0

    @property
    def enabled(self) -> bool:
        return bool(self.config.webhook_url)

    @property
    def backlog(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        """Start the delivery worker."""
        if not self.enabled:
            logger.info("N8N_WEBHOOK_URL not set, inbound relay disabled")
            return
        if self._task is not None and not self._task.done():
            return
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.config.timeout)
        self._task = asyncio.create_task(self._deliver_loop())
        logger.info(f"Relaying inbound messages to {self.config.webhook_url}")

    async def stop(self) -> None:
        """Stop the worker and release the HTTP client."""
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    def submit(self, event: MessageReceived) -> bool:
        """
        Queue an inbound message for delivery. Never blocks.

        Returns:
            True if queued, False if the relay is disabled or the queue is full
        """
        if not self.enabled:
            return False

        logger.info(f"Message received from {event.sender}")
        try:
            self._queue.put_nowait(json_safe(event.message))
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning("Relay queue full, dropping inbound message")
            return False

    async def deliver(self, payload: dict) -> None:
        """
        POST one payload to the webhook.

        Raises:
            DownstreamUnavailable: If the webhook cannot be reached or rejects it
        """
        if self._http is None:
            raise DownstreamUnavailable("Relay HTTP client not started")
        try:
            response = await self._http.post(
                self.config.webhook_url,
                json=payload,
                timeout=self.config.timeout
            )
        except httpx.HTTPError as e:
            raise DownstreamUnavailable(f"{type(e).__name__}: {e}") from e

        if response.status_code >= 400:
            raise DownstreamUnavailable(
                f"Webhook answered {response.status_code}: {shorten(response.text)}"
            )

    async def _deliver_loop(self) -> None:
        while True:
            payload = await self._queue.get()
            try:
                await self.deliver(payload)
                self.delivered += 1
            except asyncio.CancelledError:
                raise
            except DownstreamUnavailable as e:
                self.failed += 1
                logger.error(f"Webhook delivery failed: {e.message}")
            except Exception as e:
                self.failed += 1
                logger.error(f"Unexpected relay error: {e}", exc_info=True)
            finally:
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued message has been handled."""
        await self._queue.join()
