"""Merge per-pass LLM output into a book's entity set."""
import uuid
from typing import Dict, List, Optional

from utils.logger import setup_logger
from extraction.models import BookEntity, DescriptionFragment, RawEntity, VALID_ENTITY_TYPES

logger = setup_logger(__name__)

NEAR_DUPLICATE_PREFIX = 40

NameLookup = Dict[str, BookEntity]


def build_name_lookup(entities: Dict[str, BookEntity]) -> NameLookup:
    """Reverse index from lowercase name/alias to entity."""
    lookup: NameLookup = {}
    for entity in entities.values():
        for key in entity.keys():
            lookup.setdefault(key, entity)
    return lookup


def register_keys(lookup: NameLookup, entity: BookEntity) -> None:
    for key in entity.keys():
        lookup[key] = entity


def _add_alias(entity: BookEntity, alias: str) -> bool:
    alias = alias.strip()
    if not alias or alias.lower() in entity.keys():
        return False
    entity.aliases.append(alias)
    return True


def _add_connection(entity: BookEntity, name: str) -> None:
    if name.lower() == entity.name.lower():
        return
    if not any(c.lower() == name.lower() for c in entity.connections):
        entity.connections.append(name)


def _add_fragment(entity: BookEntity, text: str, max_section: int) -> None:
    """Append a description fragment unless an existing one already covers it."""
    prefix = text.lower()[:NEAR_DUPLICATE_PREFIX]
    if any(prefix in f.text.lower() for f in entity.description_fragments):
        return
    entity.description_fragments.append(DescriptionFragment(text=text, max_section=max_section))


def _join_fragments(entity: BookEntity) -> None:
    if entity.description_fragments:
        entity.description = " ".join(f.text for f in entity.description_fragments)


def absorb(target: BookEntity, other: BookEntity) -> None:
    """Fold ``other`` into ``target``; ``other`` should then be discarded."""
    _add_alias(target, other.name)
    for alias in other.aliases:
        _add_alias(target, alias)
    for fragment in other.description_fragments:
        _add_fragment(target, fragment.text, fragment.max_section)
    for conn in other.connections:
        _add_connection(target, conn)
    target.section_appearances = sorted(set(target.section_appearances) | set(other.section_appearances))
    if other.importance == "major":
        target.importance = "major"
    if not target.role:
        target.role = other.role
    if other.first_mention_section < target.first_mention_section:
        target.first_mention_section = other.first_mention_section
    target.first_mention_page = min(target.first_mention_page, other.first_mention_page)
    _join_fragments(target)


def _find_matches(raw: RawEntity, lookup: NameLookup) -> List[BookEntity]:
    """Distinct known entities hit by the raw name or any alias, in lookup order."""
    matches: List[BookEntity] = []
    for key in [raw.name.lower()] + [a.lower() for a in raw.aliases]:
        entity = lookup.get(key)
        if entity is not None and all(entity is not m for m in matches):
            matches.append(entity)
    return matches


def _new_entity(raw: RawEntity, section_indices: List[int], book_id: str, first_page: int) -> BookEntity:
    entity_type = raw.type.lower() if raw.type.lower() in VALID_ENTITY_TYPES else "term"
    max_section = max(section_indices) if section_indices else 0
    entity = BookEntity(
        id=str(uuid.uuid4()),
        book_id=book_id,
        name=raw.name,
        type=entity_type,
        role=raw.role,
        description=raw.description,
        description_fragments=(
            [DescriptionFragment(text=raw.description, max_section=max_section)] if raw.description else []
        ),
        importance="major" if raw.importance.lower() == "major" else "minor",
        first_mention_section=min(section_indices) if section_indices else 0,
        first_mention_page=first_page,
        section_appearances=sorted(set(section_indices)),
    )
    for alias in raw.aliases:
        _add_alias(entity, alias)
    for conn in raw.connections:
        _add_connection(entity, conn)
    return entity


def _merge_into(entity: BookEntity, raw: RawEntity, section_indices: List[int]) -> None:
    if raw.description:
        max_section = max(section_indices) if section_indices else 0
        _add_fragment(entity, raw.description, max_section)
        _join_fragments(entity)

    _add_alias(entity, raw.name)
    for alias in raw.aliases:
        _add_alias(entity, alias)
    for conn in raw.connections:
        _add_connection(entity, conn)

    entity.section_appearances = sorted(set(entity.section_appearances) | set(section_indices))
    if raw.importance.lower() == "major":
        entity.importance = "major"
    if not entity.role and raw.role:
        entity.role = raw.role


def merge_raw_entities(
    raw_entities: List[RawEntity],
    section_indices: List[int],
    entities: Dict[str, BookEntity],
    book_id: str,
    first_page: int = 1,
    lookup: Optional[NameLookup] = None
) -> Dict[str, BookEntity]:
    """Merge one pass's raw entities into ``entities`` (keyed by entity id).

    A raw entity matching a known one by name or alias is merged into it;
    otherwise a new entity is created. When one raw entity matches several
    known entities, they are collapsed into the one mentioned first.

    Args:
        raw_entities: Parsed LLM output for the pass
        section_indices: Sections the pass covered
        entities: Current entity set, updated in place
        book_id: Book identity hash
        first_page: First page of the pass text, used for new entities
        lookup: Existing name lookup to reuse, built from ``entities`` if omitted

    Returns:
        The updated ``entities`` mapping
    """
    if lookup is None:
        lookup = build_name_lookup(entities)

    created = 0
    for raw in raw_entities:
        matches = _find_matches(raw, lookup)

        if not matches:
            entity = _new_entity(raw, section_indices, book_id, first_page)
            entities[entity.id] = entity
            register_keys(lookup, entity)
            created += 1
            continue

        canonical = min(matches, key=lambda e: e.first_mention_section)
        for other in matches:
            if other is canonical:
                continue
            logger.debug(f"Collapsing '{other.name}' into '{canonical.name}'")
            absorb(canonical, other)
            entities.pop(other.id, None)

        _merge_into(canonical, raw, section_indices)
        register_keys(lookup, canonical)

    logger.debug(f"Merged {len(raw_entities)} raw entities ({created} new), {len(entities)} total")
    return entities
