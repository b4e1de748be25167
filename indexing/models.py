"""Pydantic models for book indexing."""
import time
from pydantic import BaseModel, Field
from typing import List, Literal, Optional, Tuple


def now_ms() -> int:
    return int(time.time() * 1000)


class BookIndexMeta(BaseModel):
    """Written once per book after chunks and keyword index are stored."""
    book_id: str
    title: str
    author: str
    total_sections: int
    total_chunks: int
    embedding_model: str
    last_updated: int = Field(default_factory=now_ms)


class IndexingState(BaseModel):
    """In-memory indexing status for one book."""
    book_id: str
    status: Literal["idle", "indexing", "complete", "error"] = "idle"
    progress: int = 0
    chunks_processed: int = 0
    total_chunks: int = 0
    error: Optional[str] = None


class EmbeddingProgress(BaseModel):
    current: int
    total: int
    phase: Literal["chunking", "embedding", "indexing"]


class ChapterIndexInfo(BaseModel):
    title: str
    section_index: int
    chunk_count: int = 0
    total_chars: int = 0
    page_range: Tuple[int, int]


class IndexDiagnostics(BaseModel):
    """Per-chapter summary of what was indexed for a book."""
    book_id: str
    total_chunks: int
    total_sections: int
    chapters: List[ChapterIndexInfo] = Field(default_factory=list)
    embedding_model: str
    last_updated: int
