"""
Reconnection policy and the cancellable reconnect timer.

The policy computes bounded exponential backoff with jitter:

    delay(n) = min(base * 2**(n-1) + jitter, cap),  jitter ~ U[0, max_jitter]

The timer owns at most one pending task; scheduling a new one always cancels
the previous one.
"""

import asyncio
import logging
import random
from typing import Optional, Callable, Awaitable


logger = logging.getLogger("wabridge.backoff")


class ReconnectPolicy:
    """
    Bounded exponential backoff with additive jitter.

    Args:
        base_delay: Delay before the first retry, in seconds
        max_delay: Upper bound for any delay
        max_jitter: Upper bound of the random jitter added to each delay
        max_attempts: Number of consecutive retries allowed
        rng: Random source (injectable for testing)
    """

    def __init__(
        self,
        base_delay: float = 2.0,
        max_delay: float = 60.0,
        max_jitter: float = 2.0,
        max_attempts: int = 5,
        rng: Optional[random.Random] = None
    ):
        if base_delay <= 0:
            raise ValueError("base_delay must be positive")
        if max_attempts < 0:
            raise ValueError("max_attempts must not be negative")
        self.base_delay = base_delay
        self.max_delay = max(max_delay, base_delay)
        self.max_jitter = max(0.0, max_jitter)
        self.max_attempts = max_attempts
        self._rng = rng or random.Random()

    def can_retry(self, attempts: int) -> bool:
        """Whether another retry is allowed after `attempts` consecutive failures."""
        return attempts < self.max_attempts

    def base_for(self, attempt: int) -> float:
        """Deterministic part of the delay for the given 1-based attempt."""
        return self.base_delay * (2 ** (max(attempt, 1) - 1))

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds before the given 1-based attempt."""
        jitter = self._rng.uniform(0, self.max_jitter) if self.max_jitter else 0.0
        return min(self.base_for(attempt) + jitter, self.max_delay)


class ReconnectTimer:
    """
    Single-slot scheduled task.

    At most one callback is ever pending. `schedule()` supersedes the pending
    one, `cancel()` drops it. Once the delay elapses the slot is released
    before the callback runs, so the callback may schedule again.
    """

    def __init__(self):
        self._task: Optional[asyncio.Task] = None
        self.delay: Optional[float] = None
        self.reason: Optional[str] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def schedule(
        self,
        delay: float,
        callback: Callable[[], Awaitable[None]],
        reason: str = "reconnect"
    ) -> None:
        """Schedule `callback` after `delay` seconds, replacing any pending one."""
        if self.pending:
            logger.debug(f"Superseding pending {self.reason} timer")
        self.cancel()
        self.delay = delay
        self.reason = reason
        self._task = asyncio.create_task(self._run(delay, callback))
        logger.info(f"Scheduled {reason} in {delay:.2f}s")

    def cancel(self) -> bool:
        """Cancel the pending callback. Returns True if one was pending."""
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            logger.debug(f"Cancelled {self.reason} timer")
            return True
        return False

    async def _run(self, delay: float, callback: Callable[[], Awaitable[None]]) -> None:
        await asyncio.sleep(delay)
        # Release the slot before firing
        self._task = None
        try:
            await callback()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in {self.reason} timer callback: {e}", exc_info=True)
