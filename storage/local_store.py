"""Async, cached access to the local SQLite store."""
import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from utils.logger import setup_logger
from execution.retry_handler import RetryHandler
from storage.database import Database
from ingestion.models import TextChunk
from indexing.keyword_index import KeywordIndex
from indexing.models import BookIndexMeta
from extraction.models import BookEntity, BookEntityIndex
import config

logger = setup_logger(__name__)


@dataclass
class StoreCache:
    """Process-local read-through cache, keyed by book id."""
    chunks: Dict[str, List[TextChunk]] = field(default_factory=dict)
    keyword_indices: Dict[str, KeywordIndex] = field(default_factory=dict)
    meta: Dict[str, BookIndexMeta] = field(default_factory=dict)
    entities: Dict[str, List[BookEntity]] = field(default_factory=dict)
    entity_indices: Dict[str, BookEntityIndex] = field(default_factory=dict)

    def clear(self) -> None:
        self.chunks.clear()
        self.keyword_indices.clear()
        self.meta.clear()
        self.entities.clear()
        self.entity_indices.clear()

    def drop_book(self, book_id: str) -> None:
        self.chunks.pop(book_id, None)
        self.keyword_indices.pop(book_id, None)
        self.meta.pop(book_id, None)
        self.drop_entities(book_id)

    def drop_entities(self, book_id: str) -> None:
        self.entities.pop(book_id, None)
        self.entity_indices.pop(book_id, None)


class LocalStore:
    """Persistence for chunks, keyword indices, metadata and entities.

    SQLite calls run in worker threads so the event loop stays free. Writes
    are retried with short backoff and raise ``PersistenceError`` once the
    retries are exhausted; the cache is only updated after a confirmed write.
    """

    def __init__(
        self,
        db_path: Path = config.DB_PATH,
        retry_handler: Optional[RetryHandler] = None
    ):
        self.db_path = Path(db_path)
        self.db = Database(self.db_path)
        self.cache = StoreCache()
        self.retry_handler = retry_handler or RetryHandler()

    async def recover_from_error(self) -> None:
        """Drop every cached record and reopen the database."""
        logger.warning("Resetting local store after error")
        self.cache.clear()
        self.db = await asyncio.to_thread(Database, self.db_path)

    async def _write(self, label: str, func, *args) -> None:
        await self.retry_handler.execute_with_retry(
            lambda: asyncio.to_thread(func, *args),
            label
        )

    # ==================== Chunks ====================

    async def save_chunks(self, chunks: List[TextChunk]) -> None:
        if not chunks:
            return
        book_id = chunks[0].book_id
        await self._write("save_chunks", self.db.upsert_chunks, [c.to_dict() for c in chunks])
        self.cache.chunks[book_id] = list(chunks)
        logger.info(f"Saved {len(chunks)} chunks for book {book_id}")

    async def get_chunks(self, book_id: str, include_embeddings: bool = True) -> List[TextChunk]:
        """Load a book's chunks in reading order.

        Args:
            book_id: Book identity hash
            include_embeddings: When False, chunks come back without vectors

        Returns:
            List of TextChunks (empty when the book was never chunked)
        """
        cached = self.cache.chunks.get(book_id)
        if cached is None:
            rows = await asyncio.to_thread(self.db.get_chunks, book_id, include_embeddings)
            chunks = [TextChunk(**row) for row in rows]
            if not include_embeddings:
                return chunks
            self.cache.chunks[book_id] = chunks
            cached = chunks
            logger.debug(f"Loaded {len(chunks)} chunks for book {book_id}")

        if include_embeddings:
            return list(cached)
        return [c.without_embedding() for c in cached]

    async def delete_chunks(self, book_id: str) -> None:
        await self._write("delete_chunks", self.db.delete_chunks, book_id)
        self.cache.chunks.pop(book_id, None)

    # ==================== Keyword index ====================

    async def save_keyword_index(self, book_id: str, index: KeywordIndex) -> None:
        await self._write("save_keyword_index", self.db.put_record, "keyword_indices", book_id, index.to_dict())
        self.cache.keyword_indices[book_id] = index

    async def get_keyword_index(self, book_id: str) -> Optional[KeywordIndex]:
        if book_id in self.cache.keyword_indices:
            return self.cache.keyword_indices[book_id]
        data = await asyncio.to_thread(self.db.get_record, "keyword_indices", book_id)
        if data is None:
            return None
        try:
            index = KeywordIndex.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"Stored keyword index for book {book_id} is unreadable: {e}")
            return None
        self.cache.keyword_indices[book_id] = index
        return index

    async def delete_keyword_index(self, book_id: str) -> None:
        await self._write("delete_keyword_index", self.db.delete_record, "keyword_indices", book_id)
        self.cache.keyword_indices.pop(book_id, None)

    # ==================== Book metadata ====================

    async def save_meta(self, meta: BookIndexMeta) -> None:
        await self._write("save_meta", self.db.put_record, "book_meta", meta.book_id, meta.model_dump())
        self.cache.meta[meta.book_id] = meta

    async def get_meta(self, book_id: str) -> Optional[BookIndexMeta]:
        if book_id in self.cache.meta:
            return self.cache.meta[book_id]
        data = await asyncio.to_thread(self.db.get_record, "book_meta", book_id)
        if data is None:
            return None
        meta = BookIndexMeta(**data)
        self.cache.meta[book_id] = meta
        return meta

    async def is_indexed(self, book_id: str) -> bool:
        meta = await self.get_meta(book_id)
        return meta is not None and meta.total_chunks > 0

    async def list_meta(self) -> List[BookIndexMeta]:
        rows = await asyncio.to_thread(self.db.get_all_meta)
        return [BookIndexMeta(**row) for row in rows]

    # ==================== Entities ====================

    async def save_entities(self, book_id: str, entities: List[BookEntity]) -> None:
        """Persist the full entity set for a book, replacing the previous one."""
        snapshot = [e.model_copy(deep=True) for e in entities]
        await self._write("save_entities", self.db.replace_entities, book_id, [e.model_dump() for e in snapshot])
        self.cache.entities[book_id] = snapshot

    async def get_entities(self, book_id: str) -> List[BookEntity]:
        """Load a book's entities. Callers receive copies they may mutate."""
        cached = self.cache.entities.get(book_id)
        if cached is None:
            rows = await asyncio.to_thread(self.db.get_entities, book_id)
            cached = [BookEntity(**row) for row in rows]
            self.cache.entities[book_id] = cached
        return [e.model_copy(deep=True) for e in cached]

    async def save_entity_index(self, entity_index: BookEntityIndex) -> None:
        await self._write(
            "save_entity_index",
            self.db.put_record,
            "entity_index",
            entity_index.book_id,
            entity_index.model_dump()
        )
        self.cache.entity_indices[entity_index.book_id] = entity_index.model_copy(deep=True)

    async def get_entity_index(self, book_id: str) -> Optional[BookEntityIndex]:
        cached = self.cache.entity_indices.get(book_id)
        if cached is None:
            data = await asyncio.to_thread(self.db.get_record, "entity_index", book_id)
            if data is None:
                return None
            cached = BookEntityIndex(**data)
            self.cache.entity_indices[book_id] = cached
        return cached.model_copy(deep=True)

    async def is_entity_indexed(self, book_id: str) -> bool:
        entity_index = await self.get_entity_index(book_id)
        return entity_index is not None and entity_index.complete

    async def clear_entity_data(self, book_id: str) -> None:
        await self._write("clear_entity_data", self.db.clear_entity_data, book_id)
        self.cache.drop_entities(book_id)

    # ==================== Whole book ====================

    async def clear_book(self, book_id: str) -> None:
        await self._write("clear_book", self.db.clear_book, book_id)
        self.cache.drop_book(book_id)
