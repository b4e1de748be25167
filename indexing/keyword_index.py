"""BM25 keyword index over chunk text and chapter titles."""
import re
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from rank_bm25 import BM25Plus

from ingestion.models import TextChunk

_TOKEN = re.compile(r"\w+", re.UNICODE)

# Short English stop list; no stemming so proper names only match exactly
STOP_WORDS = frozenset("""
a able about across after all almost also am among an and any are as at be because been
but by can cannot could dear did do does either else ever every for from get got had has
have he her hers him his how however i if in into is it its just least let like likely may
me might most must my neither no nor not of off often on only or other our own rather said
say says she should since so some than that the their them then there these they this tis
to too twas us wants was we were what when where which while who whom why will with would
yet you your
""".split())


def tokenize(text: str) -> List[str]:
    """Lowercase word tokens with stop words removed."""
    return [t for t in _TOKEN.findall(text.lower()) if t not in STOP_WORDS]


class KeywordIndex:
    """Serializable BM25 index keyed by chunk id.

    The token lists are what gets persisted; the BM25 scorer is rebuilt
    lazily on first search after loading.
    """

    def __init__(self, chunk_ids: List[str], corpus_tokens: List[List[str]]):
        if len(chunk_ids) != len(corpus_tokens):
            raise ValueError("chunk_ids and corpus_tokens must have the same length")
        self.chunk_ids = chunk_ids
        self.corpus_tokens = corpus_tokens
        self._token_sets = [set(tokens) for tokens in corpus_tokens]
        self._bm25: Optional[BM25Plus] = None

    @classmethod
    def build(cls, chunks: Iterable[TextChunk]) -> "KeywordIndex":
        chunk_ids = []
        corpus_tokens = []
        for chunk in chunks:
            chunk_ids.append(chunk.id)
            corpus_tokens.append(tokenize(chunk.text) + tokenize(chunk.chapter_title))
        return cls(chunk_ids, corpus_tokens)

    def to_dict(self) -> Dict[str, Any]:
        return {"chunk_ids": self.chunk_ids, "corpus_tokens": self.corpus_tokens}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeywordIndex":
        return cls(list(data["chunk_ids"]), [list(t) for t in data["corpus_tokens"]])

    def __len__(self) -> int:
        return len(self.chunk_ids)

    def search(
        self,
        query: str,
        limit: int,
        allowed_ids: Optional[Set[str]] = None
    ) -> List[Tuple[str, float]]:
        """Rank chunks sharing at least one query token.

        Args:
            query: Free-text query
            limit: Maximum results
            allowed_ids: If given, only these chunk ids are ranked

        Returns:
            (chunk_id, score) pairs, best first
        """
        query_tokens = tokenize(query)
        if not query_tokens or limit <= 0 or not any(self.corpus_tokens):
            return []

        if self._bm25 is None:
            self._bm25 = BM25Plus(self.corpus_tokens)
        scores = self._bm25.get_scores(query_tokens)

        query_set = set(query_tokens)
        hits = []
        for i, chunk_id in enumerate(self.chunk_ids):
            if allowed_ids is not None and chunk_id not in allowed_ids:
                continue
            if query_set.isdisjoint(self._token_sets[i]):
                continue
            hits.append((chunk_id, float(scores[i])))

        hits.sort(key=lambda hit: hit[1], reverse=True)
        return hits[:limit]
