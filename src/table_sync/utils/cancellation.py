"""Cooperative cancellation checked at I/O boundaries."""

import threading

import structlog

from table_sync.errors import OperationCancelledError

log = structlog.stdlib.get_logger()


class CancellationToken:
    """Signals that in-flight synchronization work should stop."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason = "cancelled"

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            log.warning("cancellation_requested", reason=reason)
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def raise_if_cancelled(self) -> None:
        """
        Raise if cancellation has been requested.

        Raises:
            OperationCancelledError: If the token was cancelled
        """
        if self._event.is_set():
            raise OperationCancelledError(f"Operation cancelled: {self._reason}")

    def wait(self, seconds: float) -> None:
        """
        Sleep for up to `seconds`, waking early on cancellation.

        Raises:
            OperationCancelledError: If the token is cancelled before or during the wait
        """
        self.raise_if_cancelled()
        if seconds > 0:
            self._event.wait(seconds)
        self.raise_if_cancelled()
