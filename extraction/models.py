"""Pydantic models for X-Ray entity extraction."""
import time
from pydantic import BaseModel, Field, field_validator
from typing import List, Literal, Optional

EntityType = Literal["character", "location", "theme", "term", "event"]
VALID_ENTITY_TYPES = ("character", "location", "theme", "term", "event")
Importance = Literal["major", "minor"]


class DescriptionFragment(BaseModel):
    """Description text learned from passes up to ``max_section``."""
    text: str
    max_section: int


class BookEntity(BaseModel):
    """A named character, location, theme, term or event tracked across a book."""
    id: str
    book_id: str
    name: str
    type: EntityType = "term"
    aliases: List[str] = Field(default_factory=list)
    role: str = ""
    description: str = ""
    description_fragments: List[DescriptionFragment] = Field(default_factory=list)
    connections: List[str] = Field(default_factory=list)  # Entity names, not ids
    importance: Importance = "minor"
    first_mention_section: int = 0
    first_mention_page: int = 1
    section_appearances: List[int] = Field(default_factory=list)

    def keys(self) -> List[str]:
        """Lowercased name and aliases; the dedup key set."""
        return [self.name.lower()] + [a.lower() for a in self.aliases]


class BookEntityIndex(BaseModel):
    """Extraction progress checkpoint for one book."""
    book_id: str
    extraction_model: str
    version: int = 1
    last_updated: int = Field(default_factory=lambda: int(time.time() * 1000))
    processed_sections: List[int] = Field(default_factory=list)
    total_sections: int = 0
    complete: bool = False
    progress_percent: int = 0
    max_extracted_section: Optional[int] = None
    # Sections at or below this were covered by an earlier complete run
    base_section: int = -1

    def previous_boundary(self) -> int:
        """Highest section already extracted, or -1 when nothing has been."""
        if self.max_extracted_section is not None:
            return self.max_extracted_section
        if self.processed_sections:
            return max(self.processed_sections)
        return -1


class RawEntity(BaseModel):
    """One entity as returned by the LLM, before merging.

    Validation is lenient about shape (missing lists, stray whitespace) and
    strict about the name; entries that fail validation are dropped.
    """
    name: str = Field(min_length=1)
    type: str = "term"
    aliases: List[str] = Field(default_factory=list)
    role: str = ""
    description: str = ""
    connections: List[str] = Field(default_factory=list)
    importance: str = "minor"

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("aliases", "connections", mode="before")
    @classmethod
    def _clean_names(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        return [v.strip() for v in value if isinstance(v, str) and v.strip()]

    @field_validator("role", "description", "type", "importance", mode="before")
    @classmethod
    def _none_to_empty(cls, value):
        if value is None:
            return ""
        return value.strip() if isinstance(value, str) else value


class EntityProfile(BaseModel):
    """Spoiler-scoped view of an entity for display."""
    entity: BookEntity
    scoped_description: str
    visible_connections: List[str] = Field(default_factory=list)
    chapters_appearing: List[str] = Field(default_factory=list)


class EntityExtractionProgress(BaseModel):
    current: int
    total: int
    phase: Literal["extracting", "storing"]


class TextPass(BaseModel):
    """One bounded slice of book text sent to the LLM."""
    text: str
    label: str
    section_indices: List[int]
    first_page: int = 1
