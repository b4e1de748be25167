"""Shared builders and a scripted provider for the test suite."""
import json
from typing import Callable, List, Optional

from providers.base import AIProvider, ProviderError
from providers.settings import AISettings
from ingestion.models import BookDocument, BookSection, TextChunk, TocItem
from extraction.models import BookEntity, DescriptionFragment

TEST_SETTINGS = AISettings(
    provider="ollama",
    ollama_base_url="http://localhost:11434",
    ollama_model="test-model",
    per_feature_models=False
)

VOCAB = ["lantern", "river", "castle", "dragon"]


def vocab_embedding(text: str) -> List[float]:
    """Bag-of-words over a tiny vocabulary, never all zero."""
    lower = text.lower()
    return [float(lower.count(word)) for word in VOCAB] + [0.1]


class StubProvider(AIProvider):
    """Provider that replays canned completions and computes fake embeddings."""

    provider_id = "stub"

    def __init__(
        self,
        responses: Optional[list] = None,
        embeddings: bool = True,
        fail_embed: bool = False,
        embed_fn: Callable[[str], List[float]] = vocab_embedding,
        on_complete: Optional[Callable[[str], None]] = None,
        respond: Optional[Callable[[str], str]] = None
    ):
        super().__init__(TEST_SETTINGS)
        self.responses = list(responses or [])
        self.embeddings = embeddings
        self.fail_embed = fail_embed
        self.embed_fn = embed_fn
        self.on_complete = on_complete
        self.respond = respond
        self.prompts: List[str] = []
        self.embed_calls = 0

    @property
    def model_name(self) -> str:
        return "stub-model"

    @property
    def embedding_model_name(self) -> Optional[str]:
        return "stub-embed" if self.embeddings else None

    def supports_embeddings(self) -> bool:
        return self.embeddings

    async def _complete(self, prompt, system):
        self.prompts.append(prompt)
        if self.respond:
            response = self.respond(prompt)
        else:
            response = self.responses.pop(0) if self.responses else '{"entities": []}'
        if self.on_complete:
            self.on_complete(prompt)
        if isinstance(response, Exception):
            raise response
        return response

    async def _embed(self, texts):
        self.embed_calls += 1
        if self.fail_embed:
            raise ProviderError("embedding service down")
        return [self.embed_fn(t) for t in texts]


def entities_json(*entities: dict) -> str:
    return json.dumps({"entities": list(entities)})


def filler(label: str, length: int) -> str:
    """Sentences mentioning ``label`` until ``length`` characters."""
    sentence = f"{label} walked on. "
    text = sentence * (length // len(sentence) + 1)
    return text[:length].strip()


def make_document(texts: List[str], toc: Optional[List[TocItem]] = None) -> BookDocument:
    return BookDocument(
        sections=[BookSection(id=f"ch{i}.xhtml", text=t) for i, t in enumerate(texts)],
        toc=toc or [],
        title="Test Book",
        author={"name": "A. Writer"}
    )


def make_chunk(book_id: str, section_index: int, text: str, page: int = 1, n: int = 0, embedding=None) -> TextChunk:
    return TextChunk(
        id=f"{book_id}-{section_index}-{n}",
        book_id=book_id,
        section_index=section_index,
        chapter_title=f"Chapter {section_index + 1}",
        text=text,
        page_number=page,
        embedding=embedding
    )


def make_entity(name: str, book_id: str = "book", **kwargs) -> BookEntity:
    fragments = kwargs.pop("fragments", None)
    entity = BookEntity(id=f"id-{name.lower()}", book_id=book_id, name=name, **kwargs)
    if fragments:
        entity.description_fragments = [DescriptionFragment(text=t, max_section=s) for t, s in fragments]
        entity.description = " ".join(t for t, _ in fragments)
    return entity


def all_keys_unique(entities) -> bool:
    keys = [key for e in entities for key in e.keys()]
    return len(keys) == len(set(keys))
