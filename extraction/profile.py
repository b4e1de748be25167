"""Spoiler-scoped entity views and entity search."""
from typing import Dict, List, Optional

from extraction.models import BookEntity, EntityProfile


def get_entity_profile(
    entity: BookEntity,
    max_section: Optional[int],
    chapter_titles: Dict[int, str],
    all_entities: Optional[List[BookEntity]] = None
) -> EntityProfile:
    """Build what a reader at ``max_section`` may see about an entity.

    Args:
        entity: The entity to describe
        max_section: Reader's current section; None shows everything
        chapter_titles: Section index -> chapter title
        all_entities: Book entities, used to hide connections not yet met

    Returns:
        EntityProfile with description, connections and chapters scoped
    """
    if max_section is not None:
        visible_appearances = [s for s in entity.section_appearances if s <= max_section]
    else:
        visible_appearances = list(entity.section_appearances)

    chapters_appearing: List[str] = []
    for section in visible_appearances:
        title = chapter_titles.get(section) or f"Section {section + 1}"
        if title not in chapters_appearing:
            chapters_appearing.append(title)

    fragments = entity.description_fragments
    if max_section is None:
        scoped_description = entity.description
    elif fragments:
        scoped_description = " ".join(f.text for f in fragments if f.max_section <= max_section)
        # Nothing visible yet: show the earliest fragment rather than nothing
        if not scoped_description:
            scoped_description = fragments[0].text
    elif entity.first_mention_section <= max_section:
        # Unscoped legacy description, only once the reader has met the entity
        scoped_description = entity.description
    else:
        scoped_description = ""

    visible_connections = list(entity.connections)
    if max_section is not None and all_entities is not None:
        encountered = set()
        for other in all_entities:
            if other.first_mention_section <= max_section:
                encountered.update(other.keys())
        visible_connections = [c for c in entity.connections if c.lower() in encountered]

    return EntityProfile(
        entity=entity,
        scoped_description=scoped_description,
        visible_connections=visible_connections,
        chapters_appearing=chapters_appearing
    )


def search_entities(
    entities: List[BookEntity],
    query: str,
    max_section: Optional[int] = None,
    entity_type: Optional[str] = None
) -> List[BookEntity]:
    """Filter entities by type, spoiler boundary and a substring query.

    Results are ordered major first, then by name.
    """
    q = query.strip().lower()
    results = entities

    if entity_type and entity_type != "all":
        results = [e for e in results if e.type == entity_type]
    if max_section is not None:
        results = [e for e in results if e.first_mention_section <= max_section]
    if q:
        results = [
            e for e in results
            if q in e.name.lower()
            or any(q in a.lower() for a in e.aliases)
            or q in e.description.lower()
        ]

    return sorted(results, key=lambda e: (e.importance != "major", e.name.lower()))
