"""Hybrid vector + keyword retrieval over a book's chunks."""
import asyncio
from typing import Callable, Dict, List, Optional, Sequence

import numpy as np

from utils.logger import setup_logger
from ingestion.models import TextChunk
from providers.base import AIProvider
from providers.factory import get_provider
from providers.settings import AISettings
from retrieval.models import ScoredChunk, SearchMethod
from storage.local_store import LocalStore
import config

logger = setup_logger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity, 0 for mismatched dimensions or zero vectors."""
    if len(a) != len(b) or len(a) == 0:
        return 0.0
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def normalize_scores(results: List[ScoredChunk], weight: float) -> List[ScoredChunk]:
    """Scale scores by the list's own max, then by ``weight``."""
    if not results:
        return []
    top = max(r.score for r in results)
    for r in results:
        r.score = (r.score / top) * weight if top > 0 else 0.0
    return results


def merge_results(*result_lists: List[ScoredChunk]) -> List[ScoredChunk]:
    """Fuse ranked lists, treating chunks with the same leading text as one hit.

    Duplicates keep the higher score and are marked ``hybrid``. The output is
    sorted by score, ties kept in first-seen order.
    """
    merged: Dict[str, ScoredChunk] = {}
    for results in result_lists:
        for r in results:
            key = r.text[:config.DEDUP_KEY_CHARS]
            existing = merged.get(key)
            if existing is None:
                merged[key] = r
                continue
            existing.score = max(existing.score, r.score)
            existing.method = "hybrid"
    return sorted(merged.values(), key=lambda r: r.score, reverse=True)


class HybridSearcher:
    """Answers free-text queries against one indexed book."""

    def __init__(
        self,
        store: LocalStore,
        provider_factory: Callable[[AISettings], AIProvider] = get_provider
    ):
        self.store = store
        self.provider_factory = provider_factory

    async def search(
        self,
        book_id: str,
        query: str,
        top_k: int = config.DEFAULT_TOP_K,
        max_page: Optional[int] = None,
        settings: Optional[AISettings] = None
    ) -> List[ScoredChunk]:
        """Find the chunks most relevant to ``query``.

        Args:
            book_id: Book identity hash
            query: Free-text query
            top_k: Maximum results
            max_page: If given, only chunks on or before this page are considered
            settings: Provider settings for the query embedding

        Returns:
            ScoredChunks best first, embeddings stripped. Empty for an
            unindexed book.
        """
        if top_k <= 0:
            return []

        chunks = await self.store.get_chunks(book_id)
        if not chunks:
            return []

        if max_page is not None:
            chunks = [c for c in chunks if c.page_number <= max_page]
            if not chunks:
                return []

        candidates = top_k * 2
        vector_results, keyword_results = await asyncio.gather(
            self.vector_search(book_id, query, chunks, candidates, settings),
            self.keyword_search(book_id, query, chunks, candidates)
        )

        merged = merge_results(
            normalize_scores(vector_results, config.VECTOR_WEIGHT),
            normalize_scores(keyword_results, config.KEYWORD_WEIGHT)
        )
        logger.debug(
            f"Search '{query}': {len(vector_results)} vector, {len(keyword_results)} keyword, "
            f"{len(merged)} merged"
        )
        return merged[:top_k]

    async def _embed_query(self, book_id: str, query: str, settings: Optional[AISettings]) -> Optional[List[float]]:
        meta = await self.store.get_meta(book_id)
        if meta is None or meta.embedding_model == config.BM25_ONLY_MODEL:
            return None
        try:
            provider = self.provider_factory(settings or AISettings())
            if not provider.supports_embeddings():
                return None
            return await provider.embed_one(query)
        except Exception as e:
            logger.warning(f"Query embedding failed, falling back to keyword search: {e}")
            return None

    async def vector_search(
        self,
        book_id: str,
        query: str,
        chunks: List[TextChunk],
        limit: int,
        settings: Optional[AISettings] = None
    ) -> List[ScoredChunk]:
        """Rank chunks by cosine similarity to the query embedding."""
        query_embedding = await self._embed_query(book_id, query, settings)
        if query_embedding is None:
            return []

        results = [
            self._scored(chunk, cosine_similarity(query_embedding, chunk.embedding), "vector")
            for chunk in chunks
            if chunk.embedding
        ]
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit]

    async def keyword_search(
        self,
        book_id: str,
        query: str,
        chunks: List[TextChunk],
        limit: int
    ) -> List[ScoredChunk]:
        """Rank chunks with BM25, restricted to ``chunks``."""
        keyword_index = await self.store.get_keyword_index(book_id)
        if keyword_index is None:
            return []

        by_id = {chunk.id: chunk for chunk in chunks}
        hits = keyword_index.search(query, limit, allowed_ids=set(by_id))
        return [self._scored(by_id[chunk_id], score, "keyword") for chunk_id, score in hits]

    @staticmethod
    def _scored(chunk: TextChunk, score: float, method: SearchMethod) -> ScoredChunk:
        return ScoredChunk.from_chunk(chunk.without_embedding(), score, method)
