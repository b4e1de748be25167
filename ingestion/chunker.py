"""Book section chunking module."""
import math
from typing import Dict, List, Tuple

from utils.logger import setup_logger
from ingestion.cleaner import clean_text, split_sentences
from ingestion.models import BookDocument, BookSection, TextChunk, TocItem
import config

logger = setup_logger(__name__)


def build_chapter_map(sections: List[BookSection], toc: List[TocItem]) -> Dict[int, str]:
    """Map spine section index to chapter title by matching TOC hrefs.

    TOC item ids are UI counters, not spine positions, so matching is done
    on href: exact first, then the part before the ``#`` fragment.

    Args:
        sections: Ordered book sections
        toc: Hierarchical table of contents

    Returns:
        Dict of section index -> chapter label
    """
    href_to_index = {section.id: i for i, section in enumerate(sections)}
    chapter_map: Dict[int, str] = {}

    def walk(items: List[TocItem]) -> None:
        for item in items:
            if item.href and item.label:
                href_base = item.href.split('#')[0]
                section_idx = href_to_index.get(item.href)
                if section_idx is None:
                    section_idx = href_to_index.get(href_base)
                if section_idx is not None and section_idx not in chapter_map:
                    chapter_map[section_idx] = item.label
            if item.subitems:
                walk(item.subitems)

    walk(toc)
    return chapter_map


def get_chapter_title(chapter_map: Dict[int, str], section_index: int) -> str:
    """Resolve a section's chapter title, inheriting from earlier sections."""
    if section_index in chapter_map:
        return chapter_map[section_index]
    for i in range(section_index - 1, -1, -1):
        if i in chapter_map:
            return chapter_map[i]
    return f"Section {section_index + 1}"


def page_for_offset(char_offset: int, page_size: int = config.PAGE_SIZE_CHARS) -> int:
    """Page number for a book-wide character offset (1-based)."""
    return math.floor(char_offset / page_size) + 1


class BookChunker:
    """Splits a book's linear sections into bounded text chunks."""

    def __init__(
        self,
        max_chars: int = config.CHUNK_MAX_CHARS,
        min_section_chars: int = config.MIN_SECTION_CHARS,
        page_size: int = config.PAGE_SIZE_CHARS
    ):
        """Initialize chunker.

        Args:
            max_chars: Upper bound on chunk length in characters
            min_section_chars: Sections shorter than this are skipped as noise
            page_size: Characters per page for page numbering
        """
        if max_chars <= 0:
            raise ValueError("max_chars must be positive")
        self.max_chars = max_chars
        self.min_section_chars = min_section_chars
        self.page_size = page_size

    def chunk(self, book_id: str, doc: BookDocument) -> List[TextChunk]:
        """Chunk every linear section of the document.

        Args:
            book_id: Book identity hash
            doc: Parsed book

        Returns:
            List of TextChunks in reading order
        """
        chapter_map = build_chapter_map(doc.sections, doc.toc)
        all_chunks: List[TextChunk] = []
        book_offset = 0
        skipped = 0

        for i, section in enumerate(doc.sections):
            if not section.linear:
                continue

            try:
                text = clean_text(section.read_text())
            except Exception as e:
                logger.warning(f"Section {i}: could not read text ({e}), skipping")
                skipped += 1
                continue

            section_offset = book_offset
            book_offset += len(text)

            if len(text) < self.min_section_chars:
                logger.debug(f"Section {i}: {len(text)} chars, below threshold")
                skipped += 1
                continue

            section_chunks = self.chunk_section(
                text,
                book_id=book_id,
                section_index=i,
                chapter_title=get_chapter_title(chapter_map, i),
                section_offset=section_offset
            )
            logger.debug(f"Section {i}: {len(text)} chars -> {len(section_chunks)} chunks")
            all_chunks.extend(section_chunks)

        logger.info(
            f"Created {len(all_chunks)} chunks from {len(doc.sections)} sections "
            f"({skipped} skipped)"
        )
        return all_chunks

    def chunk_section(
        self,
        text: str,
        book_id: str,
        section_index: int,
        chapter_title: str,
        section_offset: int
    ) -> List[TextChunk]:
        """Chunk the cleaned text of a single section.

        Args:
            text: Cleaned section text
            book_id: Book identity hash
            section_index: Spine index of the section
            chapter_title: Resolved chapter title
            section_offset: Characters in all prior linear sections

        Returns:
            List of chunks for this section
        """
        chunks = []
        for chunk_index, (start, end) in enumerate(self._pack_spans(text)):
            chunks.append(
                TextChunk(
                    id=f"{book_id}-{section_index}-{chunk_index}",
                    book_id=book_id,
                    section_index=section_index,
                    chapter_title=chapter_title,
                    text=text[start:end],
                    page_number=page_for_offset(section_offset + start, self.page_size)
                )
            )
        return chunks

    def _pack_spans(self, text: str) -> List[Tuple[int, int]]:
        """Greedily pack unit spans into chunk spans no longer than max_chars."""
        spans = []
        current_start = None
        current_end = None

        for start, end in self._unit_spans(text):
            if current_start is not None and end - current_start > self.max_chars:
                spans.append((current_start, current_end))
                current_start = None
            if current_start is None:
                current_start = start
            current_end = end

        if current_start is not None:
            spans.append((current_start, current_end))
        return spans

    def _unit_spans(self, text: str) -> List[Tuple[int, int]]:
        """Paragraph spans, with oversized paragraphs broken into sentences.

        A sentence that is itself too long is hard-split at max_chars.
        """
        units = []
        pos = 0
        for para in text.split('\n\n'):
            para_start = pos
            pos += len(para) + 2
            if not para.strip():
                continue
            if len(para) <= self.max_chars:
                units.append((para_start, para_start + len(para)))
                continue

            cursor = 0
            for sentence in split_sentences(para):
                s_start = para.find(sentence, cursor)
                cursor = s_start + len(sentence)
                for piece_start in range(s_start, cursor, self.max_chars):
                    piece_end = min(piece_start + self.max_chars, cursor)
                    units.append((para_start + piece_start, para_start + piece_end))
        return units
