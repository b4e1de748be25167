from tenacity import AsyncRetrying, RetryError, stop_after_attempt, wait_incrementing, retry_if_exception_type, retry_if_not_exception_type
from typing import Awaitable, Callable, Tuple, Type, TypeVar

import config
from execution.cancellation import ExtractionCancelled
from utils.logger import setup_logger

logger = setup_logger(__name__)

T = TypeVar("T")


class PersistenceError(Exception):
    """Raised when a store write still fails after all retries."""


class RetryHandler:
    """At-least-once execution of store writes with short incrementing backoff."""

    def __init__(
        self,
        retries: int = config.PERSISTENCE_RETRIES,
        base_delay: float = config.PERSISTENCE_BACKOFF_SECONDS,
        retry_on: Tuple[Type[BaseException], ...] = (Exception,)
    ):
        self.retries = retries
        self.base_delay = base_delay
        self.retry_on = retry_on

    async def execute_with_retry(
        self,
        func: Callable[[], Awaitable[T]],
        label: str
    ) -> T:
        def _log_attempt(retry_state):
            exc = retry_state.outcome.exception()
            logger.warning(f"{label} attempt {retry_state.attempt_number} failed: {exc}")

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_incrementing(start=self.base_delay, increment=self.base_delay),
            retry=retry_if_exception_type(self.retry_on) & retry_if_not_exception_type(ExtractionCancelled),
            after=_log_attempt,
            reraise=False,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await func()
        except RetryError as e:
            cause = e.last_attempt.exception()
            logger.error(f"{label} failed after {self.retries + 1} attempts: {cause}")
            raise PersistenceError(f"{label} failed: {cause}") from cause
