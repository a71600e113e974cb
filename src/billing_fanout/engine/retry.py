# src/billing_fanout/engine/retry.py
"""RetryManager: bounded exponential backoff with tenacity.

Used for archive destination writes (batch level) and for the workflow's
WriteRecord and PublishProcessed steps (step level).
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeVar

from tenacity import (
    RetryError,
    Retrying,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

if TYPE_CHECKING:
    from billing_fanout.core.config import RetrySettings

T = TypeVar("T")


class MaxRetriesExceeded(Exception):
    """Raised when max retry attempts are exceeded."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Max retries ({attempts}) exceeded: {last_error}")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior.

    max_attempts is the TOTAL number of tries, not the number of retries.
    So max_attempts=3 means: try, retry, retry (3 total).
    """

    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 60.0  # seconds
    jitter: float = 1.0  # seconds
    exponential_base: float = 2.0  # backoff multiplier

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    @classmethod
    def no_retry(cls) -> "RetryConfig":
        """Factory for no-retry configuration (single attempt)."""
        return cls(max_attempts=1)

    @classmethod
    def from_settings(cls, settings: "RetrySettings") -> "RetryConfig":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.initial_delay_seconds,
            max_delay=settings.max_delay_seconds,
            jitter=settings.jitter_seconds,
            exponential_base=settings.exponential_base,
        )


class RetryManager:
    """Runs an operation with exponential backoff and jitter.

    Example:
        manager = RetryManager(RetryConfig(max_attempts=3))

        manager.execute_with_retry(
            lambda: store.put(key, record),
            is_retryable=lambda e: isinstance(e, StoreError),
            on_retry=lambda attempt, error: logger.warning("retrying", attempt=attempt),
        )
    """

    def __init__(self, config: RetryConfig, *, sleep: Callable[[float], None] | None = None) -> None:
        """Initialize with config.

        Args:
            config: Retry configuration
            sleep: Replacement for time.sleep (tests pass a no-op)
        """
        self._config = config
        self._sleep = sleep

    @property
    def config(self) -> RetryConfig:
        return self._config

    def execute_with_retry(
        self,
        operation: Callable[[], T],
        *,
        is_retryable: Callable[[BaseException], bool],
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """Execute operation with retry logic.

        Args:
            operation: Operation to execute
            is_retryable: Function to check if error is retryable
            on_retry: Called with (attempt, error) before each retry. attempt
                is 1-based and identifies the attempt that just failed.

        Returns:
            Result of operation

        Raises:
            MaxRetriesExceeded: If max attempts exceeded
            Exception: If non-retryable error occurs
        """
        attempt = 0
        last_error: BaseException | None = None

        retrying_kwargs: dict[str, Any] = {
            "stop": stop_after_attempt(self._config.max_attempts),
            "wait": wait_exponential_jitter(
                initial=self._config.base_delay,
                max=self._config.max_delay,
                exp_base=self._config.exponential_base,
                jitter=self._config.jitter,
            ),
            "retry": retry_if_exception(is_retryable),
            "reraise": False,  # RetryError is converted to MaxRetriesExceeded
        }
        if self._sleep is not None:
            retrying_kwargs["sleep"] = self._sleep

        try:
            for attempt_state in Retrying(**retrying_kwargs):
                with attempt_state:
                    attempt = attempt_state.retry_state.attempt_number
                    try:
                        return operation()
                    except Exception as e:
                        last_error = e
                        # Only announce retries that will actually happen
                        if on_retry is not None and is_retryable(e) and attempt < self._config.max_attempts:
                            on_retry(attempt, e)
                        raise

        except RetryError as e:
            final_error = last_error or e.last_attempt.exception()
            assert final_error is not None, "RetryError without exception is impossible"
            raise MaxRetriesExceeded(attempt, final_error) from e

        raise RuntimeError("Unexpected state in retry loop")  # pragma: no cover
