"""Name to entity-id lookup for highlighting entities in rendered text."""
from typing import Dict, Iterable, List, Optional

from extraction.models import BookEntity


class EntityLookupIndex:
    def __init__(self):
        self.name_map: Dict[str, str] = {}

    @classmethod
    def build(cls, entities: Iterable[BookEntity]) -> "EntityLookupIndex":
        index = cls()
        index.build_from_entities(entities)
        return index

    def build_from_entities(self, entities: Iterable[BookEntity]) -> None:
        self.name_map.clear()
        for entity in entities:
            for key in entity.keys():
                self.name_map[key] = entity.id

    def lookup(self, text: str) -> Optional[str]:
        """Exact, case-insensitive match of a name or alias."""
        return self.name_map.get(text.lower())

    def lookup_all(self, text: str) -> List[str]:
        """Ids of every entity whose name or alias occurs inside ``text``."""
        lower_text = text.lower()
        matches: List[str] = []
        for name, entity_id in self.name_map.items():
            if name in lower_text and entity_id not in matches:
                matches.append(entity_id)
        return matches
