"""Text cleaning utilities."""
import re
from typing import List

# Sentence end followed by whitespace; keeps the punctuation with the sentence
_SENTENCE_BOUNDARY = re.compile(r'(?<=[.!?…"”’])\s+')


def clean_text(text: str) -> str:
    """Normalize whitespace in section text while preserving paragraph breaks.

    Args:
        text: Raw text from the document parser

    Returns:
        Cleaned text
    """
    text = text.replace('\r\n', '\n').replace('\r', '\n')

    # Normalize whitespace within lines
    text = re.sub(r'[ \t ]+', ' ', text)

    # Remove leading/trailing whitespace from each line
    lines = [line.strip() for line in text.split('\n')]
    text = '\n'.join(lines)

    # Collapse runs of blank lines into a single paragraph break
    text = re.sub(r'\n{3,}', '\n\n', text)

    return text.strip()


def split_sentences(paragraph: str) -> List[str]:
    """Split a paragraph into sentences on terminal punctuation."""
    return [s for s in _SENTENCE_BOUNDARY.split(paragraph) if s]
