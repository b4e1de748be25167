"""Test spoiler-scoped profiles, entity search and highlight lookup."""
from extraction.lookup import EntityLookupIndex
from extraction.profile import get_entity_profile, search_entities
from helpers import make_entity


def alice():
    return make_entity(
        "Alice",
        type="character",
        aliases=["Al"],
        fragments=[("A", 2), ("B", 5)],
        connections=["Rabbit", "the Queen"],
        section_appearances=[0, 2, 5],
        first_mention_section=0,
        importance="major"
    )


def test_description_scoped_to_reading_position():
    entity = alice()

    assert get_entity_profile(entity, 3, {}).scoped_description == "A"
    assert get_entity_profile(entity, 5, {}).scoped_description == "A B"
    assert get_entity_profile(entity, None, {}).scoped_description == "A B"


def test_earliest_fragment_shown_before_any_is_visible():
    assert get_entity_profile(alice(), 1, {}).scoped_description == "A"


def test_description_without_fragments_hidden_until_first_mention():
    entity = make_entity("Mad Hatter", description="Hosts the tea party. Arrested later.", first_mention_section=4)

    assert get_entity_profile(entity, 2, {}).scoped_description == ""
    assert get_entity_profile(entity, 4, {}).scoped_description == "Hosts the tea party. Arrested later."


def test_chapters_deduplicated_with_fallback_titles():
    titles = {0: "Down the Rabbit-Hole", 2: "Down the Rabbit-Hole"}

    profile = get_entity_profile(alice(), 5, titles)

    assert profile.chapters_appearing == ["Down the Rabbit-Hole", "Section 6"]
    assert get_entity_profile(alice(), 1, titles).chapters_appearing == ["Down the Rabbit-Hole"]


def test_connections_hidden_until_encountered():
    entity = alice()
    others = [
        entity,
        make_entity("White Rabbit", aliases=["Rabbit"], first_mention_section=0),
        make_entity("Queen of Hearts", aliases=["the Queen"], first_mention_section=8),
    ]

    assert get_entity_profile(entity, 3, {}, others).visible_connections == ["Rabbit"]
    assert get_entity_profile(entity, 9, {}, others).visible_connections == ["Rabbit", "the Queen"]
    assert get_entity_profile(entity, 3, {}).visible_connections == ["Rabbit", "the Queen"]


def test_search_entities_filters_and_sorts():
    entities = [
        make_entity("Cheshire Cat", type="character", first_mention_section=6),
        make_entity("Wonderland", type="location", importance="major"),
        make_entity("Bill", type="character", description="A lizard with a ladder."),
        alice(),
    ]

    assert [e.name for e in search_entities(entities, "")] == ["Alice", "Wonderland", "Bill", "Cheshire Cat"]
    assert [e.name for e in search_entities(entities, "", entity_type="character")] == ["Alice", "Bill", "Cheshire Cat"]
    assert [e.name for e in search_entities(entities, "", max_section=5)] == ["Alice", "Wonderland", "Bill"]
    assert [e.name for e in search_entities(entities, "LIZARD")] == ["Bill"]
    assert [e.name for e in search_entities(entities, " al ")] == ["Alice"]


def test_lookup_index():
    index = EntityLookupIndex.build([alice(), make_entity("Rabbit Hole")])

    assert index.lookup("AL") == "id-alice"
    assert index.lookup("Queen") is None
    assert index.lookup_all("Alice fell down the rabbit hole") == ["id-alice", "id-rabbit hole"]
