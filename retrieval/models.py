"""Query-time result models."""
from typing import Literal

from ingestion.models import TextChunk

SearchMethod = Literal["keyword", "vector", "hybrid"]


class ScoredChunk(TextChunk):
    """A chunk with its fused relevance score. Never persisted."""
    score: float
    method: SearchMethod

    @classmethod
    def from_chunk(cls, chunk: TextChunk, score: float, method: SearchMethod) -> "ScoredChunk":
        return cls(**chunk.model_dump(), score=score, method=method)
