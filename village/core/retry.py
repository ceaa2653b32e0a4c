"""
Bounded retry with capped linear backoff for flaky remote lookups.

Wraps tenacity so every remote lookup in the session controller shares one
policy: N attempts, waiting min(step * attempt, max) between them, and a
None result instead of an exception once the attempts are exhausted.
"""

import asyncio
from typing import Awaitable, Callable, Dict, Optional, TypeVar

import structlog
from tenacity import AsyncRetrying, RetryError, stop_after_attempt, wait_incrementing

from village.core.config import settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class RetryHelper:
    """
    Runs async thunks with bounded retries.

    Attempt counters are keyed by operation name and are removed when the
    operation finishes, whether it succeeded or ran out of attempts.
    """

    def __init__(
        self,
        max_attempts: Optional[int] = None,
        backoff_step: Optional[float] = None,
        backoff_max: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.max_attempts = max_attempts or settings.retry_max_attempts
        self.backoff_step = (
            settings.retry_backoff_step_seconds if backoff_step is None else backoff_step
        )
        self.backoff_max = (
            settings.retry_backoff_max_seconds if backoff_max is None else backoff_max
        )
        self._sleep = sleep
        self._attempts: Dict[str, int] = {}

    def attempts_in_flight(self, operation_name: str) -> Optional[int]:
        """Current attempt number for a running operation, None when idle."""
        return self._attempts.get(operation_name)

    @property
    def active_operations(self) -> Dict[str, int]:
        return dict(self._attempts)

    async def run(
        self,
        operation_name: str,
        operation: Callable[[], Awaitable[T]],
        max_attempts: Optional[int] = None,
    ) -> Optional[T]:
        """
        Run operation until it succeeds or attempts are exhausted.

        Args:
            operation_name: Key for attempt bookkeeping and logs
            operation: Zero-argument coroutine factory
            max_attempts: Override for the configured attempt count

        Returns:
            The operation's result, or None after the last failed attempt
        """
        attempts = max_attempts or self.max_attempts
        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_incrementing(
                start=self.backoff_step,
                increment=self.backoff_step,
                max=self.backoff_max,
            ),
            sleep=self._sleep,
            before_sleep=self._log_retry(operation_name),
        )

        result: Optional[T] = None
        try:
            async for attempt in retrying:
                with attempt:
                    self._attempts[operation_name] = attempt.retry_state.attempt_number
                    result = await operation()
            return result
        except RetryError as e:
            last_error = e.last_attempt.exception()
            logger.warning(
                "retry_exhausted",
                operation=operation_name,
                attempts=attempts,
                error=str(last_error),
                error_type=type(last_error).__name__,
            )
            return None
        finally:
            self._attempts.pop(operation_name, None)

    @staticmethod
    def _log_retry(operation_name: str):
        def before_sleep(retry_state) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            logger.info(
                "retrying_operation",
                operation=operation_name,
                attempt=retry_state.attempt_number,
                wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
                error=str(error) if error else None,
            )

        return before_sleep
