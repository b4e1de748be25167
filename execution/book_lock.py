"""Per-book exclusive locks for extraction runs."""
import asyncio
from contextlib import asynccontextmanager
from typing import Dict

from utils.logger import setup_logger

logger = setup_logger(__name__)


class BookLockBusy(Exception):
    """Raised when a book's lock is already held by another run."""


class BookLocks:
    """In-process registry of one ``asyncio.Lock`` per book id.

    Entries live only while some run holds or waits on the book.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def is_locked(self, book_id: str) -> bool:
        lock = self._locks.get(book_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, book_id: str, wait: bool = False):
        """Hold the book's lock for the duration of the block.

        With ``wait=False`` a busy lock raises ``BookLockBusy`` instead of
        queueing a second run behind the first.
        """
        if self.is_locked(book_id) and not wait:
            raise BookLockBusy(f"Book {book_id} is locked by another run")

        lock = self._locks.setdefault(book_id, asyncio.Lock())
        self._users[book_id] = self._users.get(book_id, 0) + 1
        try:
            await lock.acquire()
            logger.debug(f"Lock acquired for book {book_id}")
            try:
                yield
            finally:
                lock.release()
                logger.debug(f"Lock released for book {book_id}")
        finally:
            self._users[book_id] -= 1
            if not self._users[book_id]:
                del self._users[book_id]
                del self._locks[book_id]
