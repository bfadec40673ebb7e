"""Retry policy with exponential backoff."""

import time
from dataclasses import dataclass, field
from typing import Callable, Generic, Tuple, Type, TypeVar

import structlog

from table_sync.models.config import RetrySettings
from table_sync.utils.cancellation import CancellationToken

log = structlog.stdlib.get_logger()

T = TypeVar("T")


@dataclass
class RetryOutcome(Generic[T]):
    """Result of running an action under a retry policy."""

    value: T | None = None
    error: BaseException | None = None
    attempts: int = 0
    delays: list[float] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.error is None


class RetryPolicy:
    """Runs an action until it succeeds or the attempt budget is spent.

    The k-th backoff sleep lasts ``min(max_delay, base_delay * 2 ** (k - 1))``
    seconds. No state is kept between calls to :meth:`run`.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 2.0,
        max_delay: float = 30.0,
        exceptions: Tuple[Type[BaseException], ...] = (Exception,),
        give_up_on: Tuple[Type[BaseException], ...] = (),
        sleep: Callable[[float], None] | None = None,
        cancellation: CancellationToken | None = None,
    ):
        """
        Initialize the retry policy.

        Args:
            max_attempts: Total number of attempts, including the first one
            base_delay: Delay in seconds before the second attempt
            max_delay: Maximum delay in seconds
            exceptions: Exception types that trigger a retry
            give_up_on: Exception types that are never retried, even if listed in `exceptions`
            sleep: Sleep function (defaults to a cancellable wait or time.sleep)
            cancellation: Optional token interrupting the backoff sleep
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if base_delay < 0 or max_delay < base_delay:
            raise ValueError("delays must satisfy 0 <= base_delay <= max_delay")

        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exceptions = exceptions
        self.give_up_on = give_up_on
        self._cancellation = cancellation
        if sleep is not None:
            self._sleep = sleep
        elif cancellation is not None:
            self._sleep = cancellation.wait
        else:
            self._sleep = time.sleep

    @classmethod
    def from_settings(cls, settings: RetrySettings, **kwargs) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay_seconds,
            max_delay=settings.max_delay_seconds,
            **kwargs,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff delay after the given (1-based) failed attempt."""
        return min(self.max_delay, self.base_delay * (2 ** (attempt - 1)))

    def _is_retryable(self, error: BaseException) -> bool:
        if self.give_up_on and isinstance(error, self.give_up_on):
            return False
        return isinstance(error, self.exceptions)

    def run(self, action: Callable[[], T], description: str = "") -> RetryOutcome[T]:
        """
        Run `action`, retrying failures with backoff.

        Errors that are not retryable end the loop immediately. The returned
        outcome carries either the value or the last error, never both.

        Args:
            action: Zero-argument callable performing one attempt
            description: Name used in log events

        Returns:
            RetryOutcome describing the final attempt
        """
        outcome: RetryOutcome[T] = RetryOutcome()
        name = description or getattr(action, "__name__", "action")

        for attempt in range(1, self.max_attempts + 1):
            outcome.attempts = attempt
            try:
                outcome.value = action()
                outcome.error = None
                return outcome
            except Exception as e:
                outcome.error = e

                if not self._is_retryable(e):
                    log.error("not_retrying_error", action=name, attempt=attempt, error=str(e))
                    return outcome

                if attempt == self.max_attempts:
                    log.error(
                        "max_attempts_reached",
                        action=name,
                        max_attempts=self.max_attempts,
                        error=str(e),
                    )
                    return outcome

                delay = self.delay_for(attempt)
                log.warning(
                    "retrying_after_error",
                    action=name,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    delay_seconds=delay,
                    error=str(e),
                )
                outcome.delays.append(delay)
                try:
                    self._sleep(delay)
                except Exception as interrupted:
                    outcome.error = interrupted
                    return outcome

        return outcome

    def execute(self, action: Callable[[], T], description: str = "") -> T:
        """
        Run `action` under the policy and return its value.

        Raises:
            Exception: The last error, unchanged, once attempts are exhausted
        """
        outcome = self.run(action, description)
        if outcome.error is not None:
            raise outcome.error
        return outcome.value  # type: ignore[return-value]
