"""Cooperative cancellation for long-running book operations."""
import asyncio
from typing import Awaitable, Optional, TypeVar

T = TypeVar("T")


class ExtractionCancelled(Exception):
    """Raised when a caller cancels an in-progress operation."""

    def __init__(self, message: str = "Extraction cancelled"):
        super().__init__(message)


class CancelToken:
    """Signal shared between a caller and a running task.

    The task checks the token at safe points (start of each pass) and
    races network calls against it so an in-flight request is aborted
    rather than awaited to completion.
    """

    def __init__(self):
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise ExtractionCancelled()

    async def wait(self) -> None:
        await self._event.wait()


async def run_cancellable(awaitable: Awaitable[T], cancel_token: Optional[CancelToken] = None) -> T:
    """Await ``awaitable`` unless ``cancel_token`` fires first.

    Args:
        awaitable: The coroutine to run (typically a provider request)
        cancel_token: Optional token; when signalled the request task is cancelled

    Returns:
        The awaitable's result

    Raises:
        ExtractionCancelled: If the token fired before the request finished
    """
    if cancel_token is None:
        return await awaitable

    cancel_token.raise_if_cancelled()

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel_token.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task.done():
        return task.result()

    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    raise ExtractionCancelled()
