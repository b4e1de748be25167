"""Pydantic models for ingestion module."""
from pydantic import BaseModel, Field
from typing import Any, Callable, Dict, List, Optional, Union


class TocItem(BaseModel):
    """A table-of-contents entry as supplied by the document parser."""
    id: int = 0
    label: str = ""
    href: Optional[str] = None
    subitems: List["TocItem"] = Field(default_factory=list)


class BookSection(BaseModel):
    """One spine section of a book.

    Either ``text`` is given directly or ``text_loader`` produces it on demand.
    """
    id: str
    linear: bool = True
    size: int = 0
    text: Optional[str] = None
    text_loader: Optional[Callable[[], str]] = Field(default=None, exclude=True)

    def read_text(self) -> str:
        """Return the section's linear text."""
        if self.text_loader is not None:
            return self.text_loader()
        return self.text or ""


class BookDocument(BaseModel):
    """Parsed book handed over by the document collaborator."""
    sections: List[BookSection] = Field(default_factory=list)
    toc: List[TocItem] = Field(default_factory=list)
    title: Union[str, Dict[str, str], None] = None
    author: Union[str, Dict[str, Any], None] = None

    def display_title(self) -> str:
        """Resolve the title, preferring English for language maps."""
        if not self.title:
            return "Unknown Book"
        if isinstance(self.title, str):
            return self.title
        return (
            self.title.get("en")
            or self.title.get("default")
            or next(iter(self.title.values()), None)
            or "Unknown Book"
        )

    def display_author(self) -> str:
        if not self.author:
            return "Unknown Author"
        if isinstance(self.author, str):
            return self.author
        return self.author.get("name") or "Unknown Author"


class TextChunk(BaseModel):
    """A bounded span of book text with page and chapter metadata."""
    id: str
    book_id: str
    section_index: int
    chapter_title: str
    text: str = Field(min_length=1)
    page_number: int = Field(ge=1)
    embedding: Optional[List[float]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for database insertion."""
        return {
            'id': self.id,
            'book_id': self.book_id,
            'section_index': self.section_index,
            'chapter_title': self.chapter_title,
            'text': self.text,
            'page_number': self.page_number,
            'embedding': self.embedding,
        }

    def without_embedding(self) -> "TextChunk":
        return self.model_copy(update={'embedding': None})
