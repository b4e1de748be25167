"""Test multi-pass entity extraction."""
import asyncio
import re
import sqlite3

import pytest

from execution.cancellation import CancelToken, ExtractionCancelled
from execution.retry_handler import PersistenceError
from extraction.entity_extractor import (
    BookNotIndexedError,
    EntityExtractor,
    ExtractionInProgressError,
    build_text_passes,
    get_relevant_entities_for_pass,
    parse_extraction_result,
)
from extraction.models import TextPass
from providers.base import ProviderConfigError, ProviderError
from providers.settings import AISettings
from helpers import TEST_SETTINGS, StubProvider, all_keys_unique, entities_json, filler, make_chunk, make_entity


def seed_chunks(store, sections=5, chars=7000, book_id="book"):
    """One large chunk per section so that every section gets its own pass."""
    chunks = [
        make_chunk(book_id, i, f"SECTION{i} " + filler(f"Hero{i}", chars), page=i * 4 + 1)
        for i in range(sections)
    ]
    asyncio.run(store.save_chunks(chunks))
    return chunks


def hero(i, **kwargs):
    return {"name": f"Hero{i}", "type": "character", "description": f"Hero number {i}.", **kwargs}


def marker_entities(prompt):
    """One entity per section marker in the text being analysed."""
    text = prompt.split("TEXT TO ANALYZE")[-1]
    return entities_json(*({"name": f"E{n}"} for n in re.findall(r"SECTION(\d+) ", text)))


def extractor_for(store, provider):
    return EntityExtractor(store, provider_factory=lambda settings: provider, pass_delay=0)


# ==================== Passes ====================

def test_small_book_is_one_full_text_pass():
    chunks = [make_chunk("book", 1, "Second.", page=2), make_chunk("book", 0, "First.", page=1)]

    passes = build_text_passes(chunks)

    assert len(passes) == 1
    assert passes[0].label == "full text"
    assert passes[0].text == "First.\n\nSecond."
    assert passes[0].section_indices == [0, 1]
    assert passes[0].first_page == 1


def test_large_book_splits_into_five_labelled_passes():
    chunks = [make_chunk("book", i, "x" * 6000, page=i + 1) for i in range(10)]

    passes = build_text_passes(chunks)

    assert [p.label for p in passes] == ["beginning", "early-middle", "middle", "late-middle", "end"]
    assert [p.section_indices for p in passes] == [[0, 1], [2, 3], [4, 5], [6, 7], [8, 9]]
    assert all(len(p.text) <= 25_000 for p in passes)


def test_pass_stops_before_exceeding_char_limit():
    chunks = [make_chunk("book", i, "x" * 20_000, page=i + 1) for i in range(10)]

    passes = build_text_passes(chunks)

    assert len(passes) == 5
    assert passes[0].section_indices == [0]
    assert len(passes[0].text) == 20_000


# ==================== Parsing ====================

def test_parse_plain_and_fenced_json():
    body = entities_json({"name": "Alice"}, {"name": "  "}, {"type": "character"}, "junk")

    assert [e.name for e in parse_extraction_result(body)] == ["Alice"]
    assert [e.name for e in parse_extraction_result(f"```json\n{body}\n```")] == ["Alice"]


def test_parse_bare_list_and_prose_wrapped():
    assert [e.name for e in parse_extraction_result('[{"name": "Bob", "aliases": null}]')] == ["Bob"]

    wrapped = 'Sure! Here you go:\n{"entities": [{"name": "Carol"}]}\nHope that helps.'
    assert [e.name for e in parse_extraction_result(wrapped)] == ["Carol"]


def test_parse_garbage_yields_nothing():
    assert parse_extraction_result("I could not find any entities.") == []
    assert parse_extraction_result('{"entities": [oops') == []
    assert parse_extraction_result('{"people": []}') == []


# ==================== Relevance ====================

def test_relevant_entities_are_nearby_and_ranked():
    text_pass = TextPass(text="...", label="middle", section_indices=[10, 11])
    entities = [
        make_entity("Far", section_appearances=[1]),
        make_entity("Near", section_appearances=[13]),
        make_entity("Here", section_appearances=[10]),
        make_entity("Major", importance="major", section_appearances=[12]),
    ]

    relevant = get_relevant_entities_for_pass(text_pass, entities)

    assert [e.name for e in relevant] == ["Major", "Here", "Near"]
    assert len(get_relevant_entities_for_pass(text_pass, entities, max_entities=1)) == 1


# ==================== Extraction runs ====================

def test_extract_builds_complete_index(store):
    seed_chunks(store)
    provider = StubProvider([entities_json(hero(i)) for i in range(5)])
    events = []

    entities = asyncio.run(extractor_for(store, provider).extract("book", TEST_SETTINGS, on_progress=events.append))

    assert sorted(e.name for e in entities) == [f"Hero{i}" for i in range(5)]
    assert len(provider.prompts) == 5
    index = asyncio.run(store.get_entity_index("book"))
    assert index.complete
    assert index.progress_percent == 100
    assert index.max_extracted_section == 4
    assert index.processed_sections == [0, 1, 2, 3, 4]
    assert index.extraction_model == "stub-model"
    assert events[-1].phase == "storing"
    hero2 = next(e for e in entities if e.name == "Hero2")
    assert hero2.first_mention_section == 2
    assert hero2.first_mention_page == 9


def test_known_entities_are_named_in_later_prompts(store):
    seed_chunks(store)
    provider = StubProvider([entities_json(hero(0, importance="major"))] + [entities_json()] * 4)

    asyncio.run(extractor_for(store, provider).extract("book", TEST_SETTINGS))

    assert "Hero0" not in provider.prompts[0].split("TEXT TO ANALYZE")[0]
    assert "Hero0" in provider.prompts[1].split("TEXT TO ANALYZE")[0]


def test_extract_requires_index(store):
    with pytest.raises(BookNotIndexedError):
        asyncio.run(extractor_for(store, StubProvider()).extract("book", TEST_SETTINGS))


def test_extract_refuses_bad_provider_config(store):
    seed_chunks(store)
    provider = StubProvider()
    settings = AISettings(provider="openai", openai_api_key=None)

    with pytest.raises(ProviderConfigError):
        asyncio.run(extractor_for(store, provider).extract("book", settings))
    assert provider.prompts == []


def test_failed_pass_is_retried_on_next_run(store):
    seed_chunks(store)
    responses = [entities_json(hero(0)), ProviderError("model overloaded")] + [entities_json(hero(i)) for i in (2, 3, 4)]
    provider = StubProvider(responses)

    entities = asyncio.run(extractor_for(store, provider).extract("book", TEST_SETTINGS))

    assert "Hero1" not in {e.name for e in entities}
    index = asyncio.run(store.get_entity_index("book"))
    assert not index.complete
    assert index.processed_sections == [0, 2, 3, 4]
    assert index.progress_percent == 80
    assert asyncio.run(extractor_for(store, provider).get_extracted_section("book")) is None

    retry = StubProvider([entities_json(hero(1))])
    entities = asyncio.run(extractor_for(store, retry).extract("book", TEST_SETTINGS))

    assert len(retry.prompts) == 1
    assert "SECTION1 " in retry.prompts[0]
    assert sorted(e.name for e in entities) == [f"Hero{i}" for i in range(5)]
    index = asyncio.run(store.get_entity_index("book"))
    assert index.complete
    assert index.max_extracted_section == 4


def test_provider_outage_does_not_mark_book_complete(store):
    seed_chunks(store)
    outage = StubProvider([ProviderError("connection refused")] * 5)

    assert asyncio.run(extractor_for(store, outage).extract("book", TEST_SETTINGS)) == []

    index = asyncio.run(store.get_entity_index("book"))
    assert not index.complete
    assert index.processed_sections == []
    assert index.max_extracted_section is None

    working = StubProvider([entities_json(hero(i)) for i in range(5)])
    entities = asyncio.run(extractor_for(store, working).extract("book", TEST_SETTINGS))

    assert len(working.prompts) == 5
    assert len(entities) == 5
    assert asyncio.run(store.get_entity_index("book")).complete


def test_cancelled_run_resumes_where_it_stopped(store):
    seed_chunks(store)
    token = CancelToken()
    first = StubProvider([entities_json(hero(0))], on_complete=lambda prompt: token.cancel())

    with pytest.raises(ExtractionCancelled):
        asyncio.run(extractor_for(store, first).extract("book", TEST_SETTINGS, cancel_token=token))

    partial = asyncio.run(store.get_entity_index("book"))
    assert not partial.complete
    assert partial.processed_sections == [0]
    assert partial.progress_percent == 20
    assert [e.name for e in asyncio.run(store.get_entities("book"))] == ["Hero0"]

    second = StubProvider([entities_json(hero(i)) for i in range(1, 5)])
    entities = asyncio.run(extractor_for(store, second).extract("book", TEST_SETTINGS))

    assert len(second.prompts) == 4
    assert all("SECTION0 " not in p for p in second.prompts)
    assert sorted(e.name for e in entities) == [f"Hero{i}" for i in range(5)]
    assert asyncio.run(store.get_entity_index("book")).complete


def test_resumed_run_matches_uninterrupted_run_when_passes_truncate(store):
    """Oversized pass slices drop text; a resumed run must drop the same text."""
    seed_chunks(store, sections=10, chars=20_000, book_id="whole")
    seed_chunks(store, sections=10, chars=20_000, book_id="book")

    whole = asyncio.run(
        extractor_for(store, StubProvider(respond=marker_entities)).extract("whole", TEST_SETTINGS)
    )
    expected = sorted(e.name for e in whole)
    assert expected == ["E0", "E2", "E4", "E6", "E8"]

    token = CancelToken()

    def cancel_after_two(prompt):
        if len(first.prompts) == 2:
            token.cancel()

    first = StubProvider(respond=marker_entities, on_complete=cancel_after_two)
    with pytest.raises(ExtractionCancelled):
        asyncio.run(extractor_for(store, first).extract("book", TEST_SETTINGS, cancel_token=token))
    assert asyncio.run(store.get_entity_index("book")).processed_sections == [0, 2]

    second = StubProvider(respond=marker_entities)
    resumed = asyncio.run(extractor_for(store, second).extract("book", TEST_SETTINGS))

    assert len(second.prompts) == 3
    assert all("SECTION1 " not in p and "SECTION3 " not in p for p in second.prompts)
    assert sorted(e.name for e in resumed) == expected


def test_incremental_run_reads_only_new_sections(store):
    seed_chunks(store)
    first = StubProvider([entities_json(hero(0), hero(1))])
    asyncio.run(extractor_for(store, first).extract("book", TEST_SETTINGS, section_boundary=1))

    extractor = extractor_for(store, StubProvider())
    assert asyncio.run(extractor.get_extracted_section("book")) == 1

    second = StubProvider([entities_json(hero(2, aliases=["Hero0"]), hero(3), hero(4))])
    entities = asyncio.run(extractor_for(store, second).extract("book", TEST_SETTINGS))

    assert all("SECTION0 " not in p and "SECTION1 " not in p for p in second.prompts)
    assert asyncio.run(extractor.get_extracted_section("book")) == 4
    assert all_keys_unique(entities)
    assert "Hero2" in next(e for e in entities if e.name == "Hero0").aliases


def test_nothing_new_makes_no_llm_calls(store):
    seed_chunks(store)
    asyncio.run(extractor_for(store, StubProvider()).extract("book", TEST_SETTINGS))

    provider = StubProvider()
    asyncio.run(extractor_for(store, provider).extract("book", TEST_SETTINGS))

    assert provider.prompts == []


def test_persistence_failure_aborts_and_releases_lock(store, monkeypatch):
    seed_chunks(store)

    def broken(*args):
        raise sqlite3.OperationalError("disk full")

    monkeypatch.setattr(store.db, "replace_entities", broken)
    extractor = extractor_for(store, StubProvider([entities_json(hero(0))]))

    with pytest.raises(PersistenceError):
        asyncio.run(extractor.extract("book", TEST_SETTINGS))
    assert not extractor.locks.is_locked("book")
    assert asyncio.run(store.get_entity_index("book")) is None


def test_second_concurrent_run_is_rejected(store):
    seed_chunks(store, sections=1, chars=500)

    class SlowProvider(StubProvider):
        async def _complete(self, prompt, system):
            await release.wait()
            return entities_json(hero(0))

    async def scenario():
        extractor = extractor_for(store, SlowProvider())
        first = asyncio.create_task(extractor.extract("book", TEST_SETTINGS))
        while not extractor.locks.is_locked("book"):
            await asyncio.sleep(0)
        with pytest.raises(ExtractionInProgressError):
            await extractor.extract("book", TEST_SETTINGS)
        release.set()
        return await first

    release = asyncio.Event()
    entities = asyncio.run(scenario())

    assert [e.name for e in entities] == ["Hero0"]


def test_clear_entity_index(store):
    seed_chunks(store)
    extractor = extractor_for(store, StubProvider([entities_json(hero(0))]))
    asyncio.run(extractor.extract("book", TEST_SETTINGS))

    asyncio.run(extractor.clear_entity_index("book"))

    assert asyncio.run(store.get_entities("book")) == []
    assert asyncio.run(extractor.get_extracted_section("book")) is None
