"""Book indexing: chunk, embed, keyword-index and persist once per book."""
from typing import Callable, Dict, List, Optional

from utils.logger import setup_logger
from ingestion.chunker import BookChunker
from ingestion.models import BookDocument, TextChunk
from indexing.keyword_index import KeywordIndex
from indexing.models import (
    BookIndexMeta, ChapterIndexInfo, EmbeddingProgress, IndexDiagnostics, IndexingState
)
from providers.base import AIProvider, ProviderError
from providers.factory import get_provider
from providers.settings import AISettings
from storage.local_store import LocalStore
import config

logger = setup_logger(__name__)

ProgressCallback = Callable[[EmbeddingProgress], None]


class IndexingError(Exception):
    """Raised when a book could not be indexed."""


class Indexer:
    """Builds the retrieval substrate for a book.

    Re-indexing a book whose metadata already exists is a no-op. On failure
    nothing partial is left behind for the book.
    """

    def __init__(
        self,
        store: LocalStore,
        provider_factory: Callable[[AISettings], AIProvider] = get_provider,
        chunker: Optional[BookChunker] = None
    ):
        self.store = store
        self.provider_factory = provider_factory
        self.chunker = chunker or BookChunker()
        self.states: Dict[str, IndexingState] = {}

    def get_state(self, book_id: str) -> IndexingState:
        return self.states.get(book_id) or IndexingState(book_id=book_id)

    async def is_indexed(self, book_id: str) -> bool:
        return await self.store.is_indexed(book_id)

    async def index(
        self,
        book_id: str,
        document: BookDocument,
        settings: Optional[AISettings] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> None:
        """Index a book for hybrid search.

        Args:
            book_id: Book identity hash
            document: Parsed book sections and TOC
            settings: Provider settings used for embeddings
            on_progress: Optional callback receiving EmbeddingProgress

        Raises:
            IndexingError: If embedding the chunks fails
            PersistenceError: If a store write fails after retries
        """
        if await self.store.get_meta(book_id) is not None:
            logger.info(f"Book {book_id} already indexed, skipping")
            self.states[book_id] = IndexingState(book_id=book_id, status="complete", progress=100)
            return

        state = IndexingState(book_id=book_id, status="indexing")
        self.states[book_id] = state

        def report(current: int, total: int, phase: str) -> None:
            state.chunks_processed = current
            state.total_chunks = total
            state.progress = round(current / total * 100) if total else 0
            if on_progress:
                on_progress(EmbeddingProgress(current=current, total=total, phase=phase))

        try:
            report(0, len(document.sections), "chunking")
            chunks = self.chunker.chunk(book_id, document)

            if not chunks:
                logger.warning(f"Book {book_id}: no indexable text found")
                state.status = "complete"
                state.progress = 100
                return

            provider = self.provider_factory(settings or AISettings())
            embedding_model = await self._embed_chunks(chunks, provider, report)

            report(len(chunks), len(chunks), "indexing")
            keyword_index = KeywordIndex.build(chunks)

            await self.store.save_chunks(chunks)
            await self.store.save_keyword_index(book_id, keyword_index)
            await self.store.save_meta(
                BookIndexMeta(
                    book_id=book_id,
                    title=document.display_title(),
                    author=document.display_author(),
                    total_sections=len(document.sections),
                    total_chunks=len(chunks),
                    embedding_model=embedding_model
                )
            )
        except Exception as e:
            state.status = "error"
            state.error = str(e)
            logger.error(f"Indexing failed for book {book_id}: {e}")
            await self._discard_partial(book_id)
            raise

        state.status = "complete"
        state.progress = 100
        logger.info(f"Indexed book {book_id}: {len(chunks)} chunks, model {embedding_model}")

    async def _embed_chunks(
        self,
        chunks: List[TextChunk],
        provider: AIProvider,
        report: Callable[[int, int, str], None]
    ) -> str:
        """Attach embeddings in place and return the embedding model name."""
        if not provider.supports_embeddings():
            logger.info(f"{provider.provider_id} has no embeddings, using keyword search only")
            return config.BM25_ONLY_MODEL

        report(0, len(chunks), "embedding")
        try:
            embeddings = await provider.embed([chunk.text for chunk in chunks])
        except ProviderError as e:
            raise IndexingError(f"Embedding failed: {e}") from e

        for chunk, embedding in zip(chunks, embeddings):
            chunk.embedding = embedding
        report(len(chunks), len(chunks), "embedding")
        return provider.embedding_model_name or provider.model_name

    async def _discard_partial(self, book_id: str) -> None:
        try:
            await self.store.delete_chunks(book_id)
            await self.store.delete_keyword_index(book_id)
        except Exception as e:
            logger.error(f"Could not clean up partial index for book {book_id}: {e}")

    async def get_index_diagnostics(self, book_id: str) -> Optional[IndexDiagnostics]:
        """Per-chapter breakdown of an indexed book, or None if not indexed."""
        meta = await self.store.get_meta(book_id)
        if meta is None:
            return None

        chunks = await self.store.get_chunks(book_id, include_embeddings=False)
        chapters: Dict[int, ChapterIndexInfo] = {}
        for chunk in chunks:
            info = chapters.get(chunk.section_index)
            if info is None:
                info = ChapterIndexInfo(
                    title=chunk.chapter_title,
                    section_index=chunk.section_index,
                    page_range=(chunk.page_number, chunk.page_number)
                )
                chapters[chunk.section_index] = info
            info.chunk_count += 1
            info.total_chars += len(chunk.text)
            info.page_range = (min(info.page_range[0], chunk.page_number), max(info.page_range[1], chunk.page_number))

        return IndexDiagnostics(
            book_id=book_id,
            total_chunks=meta.total_chunks,
            total_sections=meta.total_sections,
            chapters=[chapters[i] for i in sorted(chapters)],
            embedding_model=meta.embedding_model,
            last_updated=meta.last_updated
        )

    async def clear_book_index(self, book_id: str) -> None:
        """Remove everything stored for a book, entities included."""
        await self.store.clear_book(book_id)
        self.states.pop(book_id, None)
        logger.info(f"Cleared index for book {book_id}")
