"""Test cancellation and per-book locking primitives."""
import asyncio

import pytest

from execution.book_lock import BookLockBusy, BookLocks
from execution.cancellation import CancelToken, ExtractionCancelled, run_cancellable


def test_request_finishes_before_cancel():
    async def request():
        return "done"

    assert asyncio.run(run_cancellable(request(), CancelToken())) == "done"
    assert asyncio.run(run_cancellable(request())) == "done"


def test_cancel_aborts_in_flight_request():
    finished = []

    async def slow_request():
        await asyncio.sleep(10)
        finished.append(True)

    async def scenario():
        token = CancelToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)
        await run_cancellable(slow_request(), token)

    with pytest.raises(ExtractionCancelled):
        asyncio.run(scenario())
    assert finished == []


def test_already_cancelled_token_raises_immediately():
    token = CancelToken()
    token.cancel()

    async def request():
        return "never"

    coro = request()
    with pytest.raises(ExtractionCancelled):
        asyncio.run(run_cancellable(coro, token))
    coro.close()
    assert token.cancelled


def test_book_lock_is_exclusive_per_book():
    locks = BookLocks()

    async def scenario():
        async with locks.hold("a"):
            assert locks.is_locked("a")
            assert not locks.is_locked("b")
            with pytest.raises(BookLockBusy):
                async with locks.hold("a"):
                    pass
            async with locks.hold("b"):
                pass
        assert not locks.is_locked("a")

    asyncio.run(scenario())


def test_book_lock_entries_are_dropped_after_release():
    locks = BookLocks()

    async def scenario():
        async with locks.hold("a"):
            assert len(locks) == 1
        assert len(locks) == 0

        started = asyncio.Event()
        release = asyncio.Event()

        async def first():
            async with locks.hold("b"):
                started.set()
                await release.wait()

        async def second():
            async with locks.hold("b", wait=True):
                return locks.is_locked("b")

        holder = asyncio.create_task(first())
        await started.wait()
        waiter = asyncio.create_task(second())
        await asyncio.sleep(0)
        release.set()
        await holder
        assert await waiter
        assert len(locks) == 0

    asyncio.run(scenario())
