"""Reconnection state machine for the trade stream."""

import logging
from typing import Optional

from .types import ConnectionStatus

logger = logging.getLogger(__name__)

# Close code sent by the client when it shuts the channel on purpose.
NORMAL_CLOSURE = 1000
# Close code reported when the connection dropped without a close frame.
ABNORMAL_CLOSURE = 1006


class ExponentialBackoff:
    """Exponential backoff without jitter: min(base * 2**attempt, cap)."""

    def __init__(self, base_ms: int = 1000, max_ms: int = 16000):
        self.base_ms = base_ms
        self.max_ms = max_ms

    def delay_ms(self, attempt: int) -> int:
        """Delay before retry number `attempt` (0-based)."""
        return min(self.base_ms * (2 ** attempt), self.max_ms)


class ReconnectController:
    """
    Connection lifecycle for the trade stream.

    DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED (close/error)
    -> CONNECTING (after backoff) -> ...

    The controller owns no I/O. The stream client asks it whether to connect
    and what to do on close, and schedules the retry itself.
    """

    def __init__(
        self,
        base_delay_ms: int = 1000,
        max_delay_ms: int = 16000,
        max_attempts: int = 5,
    ):
        """
        Initialize the controller.

        Args:
            base_delay_ms: Delay before the first retry
            max_delay_ms: Upper bound on any retry delay
            max_attempts: Retries allowed before giving up
        """
        self._backoff = ExponentialBackoff(base_delay_ms, max_delay_ms)
        self._max_attempts = max_attempts

        self._status = ConnectionStatus.DISCONNECTED
        self._attempts = 0
        self._error: Optional[str] = None

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def attempts(self) -> int:
        """Reconnect attempts since the last successful open."""
        return self._attempts

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    @property
    def error(self) -> Optional[str]:
        """Last connection error; terminal once attempts are exhausted."""
        return self._error

    @property
    def exhausted(self) -> bool:
        return self._attempts >= self._max_attempts

    def compute_delay(self, attempt: int) -> float:
        """Retry delay in seconds for a given attempt number."""
        return self._backoff.delay_ms(attempt) / 1000.0

    def begin_connect(self, retry: bool = False) -> bool:
        """
        Claim the connect slot.

        A fresh connect is only allowed from DISCONNECTED. A scheduled retry
        is already CONNECTING and may proceed.

        Args:
            retry: True when called from a scheduled retry

        Returns:
            True if the caller should open a channel now
        """
        if retry:
            if self._status != ConnectionStatus.CONNECTING:
                return False
        elif self._status != ConnectionStatus.DISCONNECTED:
            return False
        elif self.exhausted:
            return False

        self._status = ConnectionStatus.CONNECTING
        return True

    def on_open(self) -> None:
        """Channel opened: reset attempts and clear any error."""
        self._attempts = 0
        self._error = None
        self._status = ConnectionStatus.CONNECTED

    def on_error(self, message: str) -> None:
        """Record a non-terminal connection error."""
        self._error = message

    def on_close(self, code: Optional[int]) -> Optional[float]:
        """
        Decide what happens after the channel closed.

        Args:
            code: WebSocket close code (None is treated as abnormal)

        Returns:
            Delay in seconds before the next attempt, or None when no retry
            should be scheduled
        """
        code = ABNORMAL_CLOSURE if code is None else code

        if code == NORMAL_CLOSURE:
            self._status = ConnectionStatus.DISCONNECTED
            return None

        if self.exhausted:
            self._status = ConnectionStatus.DISCONNECTED
            self._error = (
                f"Connection lost after {self._attempts} reconnect attempts (code={code})"
            )
            logger.error(self._error)
            return None

        delay = self.compute_delay(self._attempts)
        self._attempts += 1
        self._status = ConnectionStatus.CONNECTING
        logger.info(
            f"Stream closed (code={code}), retry {self._attempts}/{self._max_attempts} "
            f"in {delay:.1f}s"
        )
        return delay

    def mark_disconnected(self) -> None:
        """Force DISCONNECTED (teardown or cancelled retry)."""
        self._status = ConnectionStatus.DISCONNECTED

    def reset(self) -> None:
        """Manual reconnect: forget attempts and the terminal error."""
        self._attempts = 0
        self._error = None
