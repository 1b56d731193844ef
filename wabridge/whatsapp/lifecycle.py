"""
Connection lifecycle manager for the WhatsApp session.

Owns the single logical session:
- State machine (idle -> connecting -> open -> closed -> ...)
- Bounded exponential reconnection with jitter
- Concurrency guard: one attempt in flight, one timer pending
- Cleanup of superseded session handles
- Corrupted-session recovery (erase credentials and pair again)

Session events reach the manager through a single queue and are processed
one at a time, in emission order, under the manager lock. Every event is
tagged with the attempt generation that produced it so late events from a
discarded handle are dropped.
"""

import asyncio
import logging
import re
from typing import Optional, Any

from .backoff import ReconnectPolicy, ReconnectTimer
from .config import WhatsAppConfig
from .errors import (
    BridgeError,
    NotConnected,
    InvalidArgument,
    OperationTimeout,
    SendFailed,
    TransientDisconnect,
    TerminalLogout,
    CredentialCorruption,
)
from .pairing import PairingPublisher
from .types import (
    ConnectionState,
    CloseReason,
    SessionEvent,
    SessionHandle,
    SessionClient,
    CredentialStore,
    QrIssued,
    Opened,
    Closed,
    CredentialsUpdated,
    MessageReceived,
    StatusSnapshot,
    OnInboundMessage,
)


logger = logging.getLogger("wabridge.lifecycle")

USER_JID_SUFFIX = "@s.whatsapp.net"
_PHONE_STRIP = re.compile(r"[\s\-\(\)\.]")
_PHONE_DIGITS = re.compile(r"^\+?(\d{8,15})$")


def normalize_recipient(recipient: Any) -> str:
    """
    Resolve a recipient to a chat address.

    Accepts a phone number (digits, optionally formatted) or a full address
    containing '@'.

    Raises:
        InvalidArgument: If the recipient cannot be resolved
    """
    if recipient is None:
        raise InvalidArgument("'numero' is required")
    if isinstance(recipient, bool) or not isinstance(recipient, (str, int)):
        raise InvalidArgument("'numero' must be a phone number or chat address")

    value = str(recipient).strip()
    if not value:
        raise InvalidArgument("'numero' is required")

    if "@" in value:
        user, _, server = value.partition("@")
        if not user or not server:
            raise InvalidArgument(f"Invalid chat address: {value}")
        return value

    match = _PHONE_DIGITS.match(_PHONE_STRIP.sub("", value))
    if not match:
        raise InvalidArgument(f"Invalid phone number: {value}")
    return f"{match.group(1)}{USER_JID_SUFFIX}"


class ConnectionLifecycleManager:
    """
    Manages the one long-lived session to the messaging network.

    Usage:
        manager = ConnectionLifecycleManager(client, store, pairing, config)
        await manager.start()

        # From HTTP handlers
        ack = await manager.request_send("5511999999999", "hi")
        await manager.reset()
        snapshot = manager.current_status()
    """

    def __init__(
        self,
        client: SessionClient,
        store: CredentialStore,
        pairing: Optional[PairingPublisher] = None,
        config: Optional[WhatsAppConfig] = None,
        policy: Optional[ReconnectPolicy] = None,
        on_message: Optional[OnInboundMessage] = None
    ):
        """
        Initialize the lifecycle manager.

        Args:
            client: Opens sessions and emits session events
            store: Loads, persists and erases credentials
            pairing: Publisher for QR artifacts
            config: Session configuration
            policy: Reconnection policy (built from config if omitted)
            on_message: Callback for inbound messages (must not block)
        """
        self.config = config or WhatsAppConfig()
        self._client = client
        self._store = store
        self.pairing = pairing or PairingPublisher(ttl=self.config.qr_ttl)
        self.policy = policy or ReconnectPolicy(
            base_delay=self.config.reconnect_base_delay,
            max_delay=self.config.reconnect_max_delay,
            max_jitter=self.config.reconnect_max_jitter,
            max_attempts=self.config.max_reconnect_attempts
        )
        self._on_message = on_message

        # Owned state, mutated only under the lock
        self._state = ConnectionState.IDLE
        self._reconnect_attempts = 0
        self._auth_rejections = 0
        self._generation = 0
        self._handle: Optional[SessionHandle] = None
        self._last_disconnect: Optional[BridgeError] = None
        self.timer = ReconnectTimer()

        self._lock = asyncio.Lock()
        self._store_lock = asyncio.Lock()

        # Event channel and its single consumer
        self._events: asyncio.Queue = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()

    # =========================================================================
    # Public API
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def reconnect_attempts(self) -> int:
        return self._reconnect_attempts

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.OPEN and self._handle is not None

    async def start(self) -> None:
        """
        Begin a connection attempt.

        Idempotent: returns immediately while an attempt is in flight or the
        session is already open.
        """
        self._ensure_consumer()
        async with self._lock:
            if self._state == ConnectionState.CONNECTING:
                logger.warning("Connection attempt already in flight, ignoring start()")
                return
            if self._state == ConnectionState.OPEN:
                logger.info("Session already open, ignoring start()")
                return
            if self._state == ConnectionState.TERMINATED:
                logger.warning("Session was logged out, POST /reset to pair again")
                return
            await self._begin_attempt("start")

    def require_open(self) -> SessionHandle:
        """
        Return the live handle.

        Raises:
            NotConnected: If the session is not open
        """
        handle = self._handle
        if self._state != ConnectionState.OPEN or handle is None:
            raise NotConnected(f"WhatsApp session is {self._state.value}")
        return handle

    async def request_send(self, recipient: Any, text: Any) -> dict:
        """
        Send a text message through the open session.

        Returns:
            Ack returned by the session handle

        Raises:
            NotConnected: If the session is not open
            InvalidArgument: If recipient or text is invalid
            OperationTimeout: If the send exceeds the send timeout
            SendFailed: If the session fails to deliver
        """
        handle = self.require_open()

        jid = normalize_recipient(recipient)
        if text is None:
            raise InvalidArgument("'mensagem' is required")
        if not isinstance(text, str) or not text.strip():
            raise InvalidArgument("'mensagem' must be a non-empty string")

        timeout = self.config.send_timeout
        try:
            ack = await asyncio.wait_for(handle.send(jid, text), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Send to {jid} timed out after {timeout}s")
            raise OperationTimeout(f"Send did not complete within {timeout:g}s") from None
        except BridgeError:
            raise
        except Exception as e:
            logger.error(f"Send to {jid} failed: {e}")
            raise SendFailed(str(e) or type(e).__name__) from e

        logger.info(f"Message sent to {jid}")
        return {"jid": jid, **(ack or {})}

    async def reset(self) -> None:
        """
        Force the session back to idle and pair from scratch.

        Releases the handle, cancels the timer, wipes credentials and the QR,
        then schedules a fresh start after a short delay.
        """
        self._ensure_consumer()
        async with self._lock:
            logger.warning(f"Reset requested (state={self._state.value})")
            self.timer.cancel()
            await self._release_handle()
            self._generation += 1
            self._set_state(ConnectionState.IDLE)
            self._reconnect_attempts = 0
            self._auth_rejections = 0
            self._last_disconnect = None
            self.pairing.clear()

            await self._erase_credentials()

            self.timer.schedule(
                self.config.reset_restart_delay,
                self._timer_callback(self._generation),
                reason="restart after reset"
            )

    def current_status(self) -> StatusSnapshot:
        """Non-blocking snapshot of the session."""
        last = self._last_disconnect
        return StatusSnapshot(
            state=self._state,
            reconnect_attempts=self._reconnect_attempts,
            pairing_available=self.pairing.available,
            reconnect_pending=self.timer.pending,
            last_disconnect=last.to_dict() if last else None
        )

    async def dispatch(self, event: SessionEvent, generation: Optional[int] = None) -> None:
        """
        Process one session event.

        Args:
            event: Event to apply
            generation: Attempt that produced it; stale generations are dropped
        """
        async with self._lock:
            if generation is not None and generation != self._generation:
                logger.debug(
                    f"Dropping stale {type(event).__name__} "
                    f"(generation {generation}, current {self._generation})"
                )
                return

            if isinstance(event, Opened):
                self._handle_opened()
            elif isinstance(event, Closed):
                await self._handle_closed(event.reason)
            elif isinstance(event, QrIssued):
                self._handle_qr(event.qr)
            elif isinstance(event, CredentialsUpdated):
                self._spawn(self._persist_credentials(event.credentials))
            elif isinstance(event, MessageReceived):
                self._relay(event)
            else:
                logger.warning(f"Unknown session event: {event!r}")

    async def settle(self) -> None:
        """Wait until queued events and background tasks are processed."""
        while True:
            await self._events.join()
            tasks = [t for t in self._tasks if not t.done()]
            if not tasks:
                if self._events.empty():
                    return
                continue
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self) -> None:
        """Stop everything without touching stored credentials."""
        async with self._lock:
            self.timer.cancel()
            self._generation += 1
            await self._release_handle()
            self._set_state(ConnectionState.IDLE)

        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

        if self._consumer and not self._consumer.done():
            self._consumer.cancel()
            try:
                await self._consumer
            except asyncio.CancelledError:
                pass
        self._consumer = None
        logger.info("Lifecycle manager stopped")

    # =========================================================================
    # Transitions (lock held)
    # =========================================================================

    async def _begin_attempt(self, cause: str) -> None:
        """Clean up the previous attempt and launch a new one."""
        self.timer.cancel()
        await self._release_handle()

        self._generation += 1
        generation = self._generation
        self._set_state(ConnectionState.CONNECTING)
        logger.info(
            f"Connecting ({cause}, attempt generation {generation}, "
            f"retries {self._reconnect_attempts}/{self.policy.max_attempts})"
        )
        self._spawn(self._attempt(generation))

    def _handle_opened(self) -> None:
        if self._state != ConnectionState.CONNECTING:
            logger.debug(f"Ignoring open while {self._state.value}")
            return
        self._set_state(ConnectionState.OPEN)
        self._reconnect_attempts = 0
        self._auth_rejections = 0
        self._last_disconnect = None
        self.pairing.clear()
        logger.info("WhatsApp connected")

    def _handle_qr(self, qr: str) -> None:
        artifact = self.pairing.publish(qr)
        logger.info(f"QR_CODE_STRING (#{artifact.version}): {qr}")

    async def _handle_closed(self, reason: CloseReason) -> None:
        if self._state not in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            logger.debug(f"Ignoring close while {self._state.value}: {reason.describe()}")
            return

        self._set_state(ConnectionState.CLOSED)
        await self._release_handle()

        if reason.logged_out:
            self.timer.cancel()
            self.pairing.clear()
            self._last_disconnect = TerminalLogout(
                f"Logged out: {reason.describe()}", status_code=reason.status_code
            )
            self._set_state(ConnectionState.TERMINATED)
            logger.error("Session logged out, automatic reconnection stopped; POST /reset to pair again")
            return

        self._last_disconnect = TransientDisconnect(
            f"Connection closed: {reason.describe()}", status_code=reason.status_code
        )

        if reason.status_code == self.config.auth_rejected_status:
            self._auth_rejections += 1
        else:
            self._auth_rejections = 0

        if self._auth_rejections >= self.config.auth_reject_threshold:
            self._recover_corrupted_session(reason)
            return

        if not self.policy.can_retry(self._reconnect_attempts):
            self._set_state(ConnectionState.IDLE)
            logger.error(
                f"Reconnect attempts exhausted ({self._reconnect_attempts}/"
                f"{self.policy.max_attempts}); POST /reset to resume"
            )
            return

        self._reconnect_attempts += 1
        delay = self.policy.delay_for(self._reconnect_attempts)
        logger.warning(
            f"Connection closed: {reason.describe()}; retry "
            f"{self._reconnect_attempts}/{self.policy.max_attempts} in {delay:.1f}s"
        )
        self.timer.schedule(delay, self._timer_callback(self._generation), reason="reconnect")

    def _recover_corrupted_session(self, reason: CloseReason) -> None:
        logger.error(
            f"Credentials rejected {self._auth_rejections} times in a row "
            f"(status {reason.status_code}); erasing session and pairing again"
        )
        self._last_disconnect = CredentialCorruption(
            f"Credentials rejected {self._auth_rejections} times (status {reason.status_code})"
        )
        self.timer.cancel()
        self._reconnect_attempts = 0
        self._auth_rejections = 0
        self.pairing.clear()
        self._spawn(self._erase_and_restart(self._generation))

    def _set_state(self, state: ConnectionState) -> None:
        if state != self._state:
            logger.debug(f"State {self._state.value} -> {state.value}")
            self._state = state

    async def _release_handle(self) -> None:
        """Detach and close the current handle. Idempotent."""
        handle = self._handle
        self._handle = None
        if handle is None:
            return
        handle.detach()
        try:
            await handle.close()
        except Exception as e:
            logger.debug(f"Error closing previous session: {e}")

    # =========================================================================
    # Background work
    # =========================================================================

    async def _attempt(self, generation: int) -> None:
        """Load credentials and open a session for the given generation."""
        try:
            credentials = await self._load_credentials()
            handle = await asyncio.wait_for(
                self._client.open(credentials, self._sink_for(generation)),
                self.config.open_timeout
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Connection attempt failed: {type(e).__name__}: {e}")
            self._post(generation, Closed(reason=CloseReason.connection_lost(
                f"attempt failed: {e or type(e).__name__}"
            )))
            return

        async with self._lock:
            if generation != self._generation or self._state not in (
                ConnectionState.CONNECTING, ConnectionState.OPEN
            ):
                logger.info("Discarding session opened for a superseded attempt")
                handle.detach()
                try:
                    await handle.close()
                except Exception as e:
                    logger.debug(f"Error closing superseded session: {e}")
                return
            self._handle = handle

    async def _load_credentials(self) -> Optional[dict]:
        async with self._store_lock:
            try:
                return await self._store.load()
            except CredentialCorruption as e:
                logger.error(f"{e}; erasing and starting a new pairing")
                await self._store.erase()
                return None

    async def _persist_credentials(self, credentials: dict) -> None:
        async with self._store_lock:
            try:
                await self._store.persist(credentials)
            except Exception as e:
                logger.error(f"Failed to persist credentials: {e}", exc_info=True)

    async def _erase_credentials(self) -> None:
        async with self._store_lock:
            try:
                await self._store.erase()
            except Exception as e:
                logger.error(f"Failed to erase credentials: {e}", exc_info=True)

    async def _erase_and_restart(self, generation: int) -> None:
        await self._erase_credentials()
        async with self._lock:
            if generation != self._generation or self._state != ConnectionState.CLOSED:
                return
            await self._begin_attempt("corrupted session recovery")

    def _timer_callback(self, generation: int):
        async def fire() -> None:
            async with self._lock:
                if generation != self._generation:
                    return
                if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN,
                                   ConnectionState.TERMINATED):
                    return
                await self._begin_attempt(self.timer.reason or "timer")
        return fire

    def _relay(self, event: MessageReceived) -> None:
        if self._on_message is None:
            return
        try:
            self._on_message(event)
        except Exception as e:
            logger.error(f"Inbound message relay failed: {e}", exc_info=True)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # =========================================================================
    # Event channel
    # =========================================================================

    def _sink_for(self, generation: int):
        def sink(event: SessionEvent) -> None:
            self._post(generation, event)
        return sink

    def _post(self, generation: int, event: SessionEvent) -> None:
        self._events.put_nowait((generation, event))

    def _ensure_consumer(self) -> None:
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume_events())

    async def _consume_events(self) -> None:
        while True:
            generation, event = await self._events.get()
            try:
                await self.dispatch(event, generation)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Error handling {type(event).__name__}: {e}", exc_info=True)
            finally:
                self._events.task_done()
