"""Test BM25 keyword index."""
from indexing.keyword_index import KeywordIndex, tokenize
from helpers import make_chunk


def build_index():
    chunks = [
        make_chunk("book", 0, "Dragon dragon castle.", n=0),
        make_chunk("book", 0, "Dragon by the river.", n=1),
        make_chunk("book", 1, "Castle moat.", n=0),
    ]
    return KeywordIndex.build(chunks)


def test_tokenize_lowercases_and_drops_stop_words():
    assert tokenize("The Dragon and the River!") == ["dragon", "river"]
    assert tokenize("") == []


def test_only_chunks_sharing_a_token_are_returned():
    index = build_index()

    hits = index.search("dragon", limit=10)

    assert [chunk_id for chunk_id, _ in hits] == ["book-0-0", "book-0-1"]
    assert hits[0][1] > hits[1][1] > 0


def test_chapter_title_is_searchable():
    index = build_index()

    hits = index.search("chapter 2", limit=10)

    assert [chunk_id for chunk_id, _ in hits][0] == "book-1-0"


def test_allowed_ids_and_limit():
    index = build_index()

    assert [c for c, _ in index.search("dragon", limit=10, allowed_ids={"book-0-1"})] == ["book-0-1"]
    assert len(index.search("dragon castle", limit=1)) == 1
    assert index.search("dragon", limit=0) == []


def test_stop_word_only_query_returns_nothing():
    assert build_index().search("the and of", limit=5) == []


def test_serialized_index_ranks_the_same():
    index = build_index()

    restored = KeywordIndex.from_dict(index.to_dict())

    assert restored.search("castle", limit=5) == index.search("castle", limit=5)
    assert len(restored) == 3


def test_empty_index():
    index = KeywordIndex.build([])

    assert index.search("dragon", limit=5) == []
