"""Resumable multi-pass X-Ray entity extraction."""
import asyncio
import json
import re
from typing import Callable, Dict, List, Optional

from pydantic import ValidationError

from utils.logger import setup_logger
from execution.book_lock import BookLockBusy, BookLocks
from execution.cancellation import CancelToken, ExtractionCancelled
from extraction import prompts
from extraction.merge import merge_raw_entities
from extraction.models import (
    BookEntity, BookEntityIndex, DescriptionFragment, EntityExtractionProgress, RawEntity, TextPass
)
from indexing.models import now_ms
from ingestion.models import TextChunk
from providers.base import AIProvider, ProviderConfigError, ProviderError
from providers.factory import get_provider
from providers.settings import AISettings, config_error, settings_for_feature
from storage.local_store import LocalStore
import config

logger = setup_logger(__name__)

PASS_LABELS = ["beginning", "early-middle", "middle", "late-middle", "end"]

_FENCE_START = re.compile(r"^```(?:json)?\s*")
_FENCE_END = re.compile(r"\s*```$")
_ENTITIES_OBJECT = re.compile(r'\{[\s\S]*"entities"[\s\S]*\}')

ProgressCallback = Callable[[EntityExtractionProgress], None]


class BookNotIndexedError(Exception):
    """Raised when extraction is requested for a book with no chunks."""


class ExtractionInProgressError(Exception):
    """Raised when another extraction run already holds the book."""


def build_text_passes(
    chunks: List[TextChunk],
    max_chars: int = config.MAX_PASS_CHARS,
    pass_count: int = config.PASS_COUNT
) -> List[TextPass]:
    """Split chunks into at most ``pass_count`` bounded slices of text.

    Chunks are taken in reading order and divided evenly by count. Each
    slice stops at the last chunk that keeps it within ``max_chars``; the
    remaining chunks of that slice are not sent. A book that fits entirely
    goes out as a single "full text" pass.
    """
    if not chunks:
        return []

    ordered = sorted(chunks, key=lambda c: (c.section_index, c.page_number))
    total_chars = sum(len(c.text) for c in ordered)

    if total_chars <= max_chars:
        section_indices = list(dict.fromkeys(c.section_index for c in ordered))
        return [TextPass(
            text="\n\n".join(c.text for c in ordered),
            label="full text",
            section_indices=section_indices,
            first_page=ordered[0].page_number
        )]

    pass_size = -(-len(ordered) // pass_count)
    passes = []
    for i in range(pass_count):
        pass_chunks = ordered[i * pass_size:(i + 1) * pass_size]

        text = ""
        section_indices: List[int] = []
        first_page = None
        for chunk in pass_chunks:
            if len(text) + len(chunk.text) > max_chars:
                break
            text += ("\n\n" if text else "") + chunk.text
            if chunk.section_index not in section_indices:
                section_indices.append(chunk.section_index)
            if first_page is None:
                first_page = chunk.page_number

        if text:
            label = PASS_LABELS[i] if i < len(PASS_LABELS) else f"pass {i + 1}"
            passes.append(TextPass(text=text, label=label, section_indices=section_indices, first_page=first_page))

    return passes


def parse_extraction_result(text: str) -> List[RawEntity]:
    """Parse the LLM's JSON answer, tolerating fences and surrounding prose.

    Returns:
        Valid raw entities; malformed output yields an empty list
    """
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = _FENCE_END.sub("", _FENCE_START.sub("", cleaned))

    try:
        parsed = json.loads(cleaned)
        items = parsed.get("entities", parsed) if isinstance(parsed, dict) else parsed
    except ValueError:
        match = _ENTITIES_OBJECT.search(cleaned)
        if not match:
            logger.warning("Extraction response contained no JSON")
            return []
        try:
            parsed = json.loads(match.group(0))
        except ValueError:
            logger.warning("Extraction response JSON could not be parsed")
            return []
        items = parsed.get("entities") if isinstance(parsed, dict) else None

    if not isinstance(items, list):
        return []

    entities = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            entities.append(RawEntity.model_validate(item))
        except ValidationError:
            logger.debug(f"Dropping malformed entity: {item!r}")
    return entities


def get_relevant_entities_for_pass(
    text_pass: TextPass,
    entities: List[BookEntity],
    section_window: int = config.RELEVANT_SECTION_WINDOW,
    max_entities: int = config.MAX_RELEVANT_ENTITIES
) -> List[BookEntity]:
    """Known entities worth naming in the prompt for this pass.

    Only entities appearing within ``section_window`` sections of the pass
    are considered, ranked by importance, proximity and connectedness.
    """
    if not entities:
        return []

    pass_sections = set(text_pass.section_indices)
    scored = []
    for entity in entities:
        nearby = any(
            abs(s - p) <= section_window
            for s in entity.section_appearances
            for p in text_pass.section_indices
        )
        if not nearby:
            continue

        score = 10.0 if entity.importance == "major" else 0.0
        for section in entity.section_appearances:
            if section in pass_sections:
                score += 5
            if section - 1 in pass_sections or section + 1 in pass_sections:
                score += 3
        score += min(len(entity.connections) * 0.5, 5)
        scored.append((score, entity))

    scored.sort(key=lambda item: item[0], reverse=True)
    return [entity for _, entity in scored[:max_entities]]


def _backfill_fragments(entity: BookEntity) -> BookEntity:
    if not entity.description_fragments and entity.description:
        entity.description_fragments = [
            DescriptionFragment(text=entity.description, max_section=entity.first_mention_section)
        ]
    return entity


class EntityExtractor:
    """Runs and resumes entity extraction for books in a LocalStore."""

    def __init__(
        self,
        store: LocalStore,
        provider_factory: Callable[[AISettings], AIProvider] = get_provider,
        locks: Optional[BookLocks] = None,
        pass_delay: float = config.PASS_DELAY_SECONDS
    ):
        self.store = store
        self.provider_factory = provider_factory
        self.locks = locks or BookLocks()
        self.pass_delay = pass_delay

    async def extract(
        self,
        book_id: str,
        settings: Optional[AISettings] = None,
        on_progress: Optional[ProgressCallback] = None,
        cancel_token: Optional[CancelToken] = None,
        section_boundary: Optional[int] = None
    ) -> List[BookEntity]:
        """Extract (or continue extracting) entities for a book.

        Args:
            book_id: Book identity hash
            settings: Provider settings; the X-Ray model override applies
            on_progress: Optional callback receiving EntityExtractionProgress
            cancel_token: Signals the run to stop before the next pass
            section_boundary: Only sections up to this index are read

        Returns:
            Every entity known for the book after the run

        Raises:
            ProviderConfigError: If the provider settings are incomplete
            ExtractionInProgressError: If another run holds the book
            BookNotIndexedError: If the book has no chunks
            ExtractionCancelled: If cancel_token fired
            PersistenceError: If a checkpoint could not be saved
        """
        settings = settings_for_feature(settings or AISettings(), "xray")
        problem = config_error(settings)
        if problem:
            raise ProviderConfigError(f"AI provider is not configured: {problem}")

        try:
            async with self.locks.hold(book_id):
                return await self._extract_locked(book_id, settings, on_progress, cancel_token, section_boundary)
        except BookLockBusy as e:
            raise ExtractionInProgressError(f"Extraction already running for book {book_id}") from e
        except ExtractionCancelled:
            logger.info(f"Extraction cancelled for book {book_id}")
            raise

    async def _extract_locked(
        self,
        book_id: str,
        settings: AISettings,
        on_progress: Optional[ProgressCallback],
        cancel_token: Optional[CancelToken],
        section_boundary: Optional[int]
    ) -> List[BookEntity]:
        all_chunks = await self.store.get_chunks(book_id, include_embeddings=False)
        if not all_chunks:
            raise BookNotIndexedError(f"Book {book_id} must be indexed before entity extraction")
        total_sections = len({c.section_index for c in all_chunks})

        chunks = all_chunks
        if section_boundary is not None:
            chunks = [c for c in chunks if c.section_index <= section_boundary]

        existing_index = await self.store.get_entity_index(book_id)
        entities: Dict[str, BookEntity] = {
            e.id: _backfill_fragments(e) for e in await self.store.get_entities(book_id)
        }

        if existing_index and existing_index.complete:
            base_section = existing_index.previous_boundary()
        elif existing_index:
            base_section = existing_index.base_section
        else:
            base_section = -1
        completed = set(existing_index.processed_sections) if existing_index else set()

        # A resumed run rebuilds the plan of the interrupted one and skips its finished passes
        plan_chunks = [c for c in chunks if c.section_index > base_section]
        passes = build_text_passes(plan_chunks)
        pending = [
            (i, text_pass) for i, text_pass in enumerate(passes)
            if not set(text_pass.section_indices) <= completed
        ]
        run_max = max([base_section] + [c.section_index for c in plan_chunks])

        if not pending:
            if existing_index and not existing_index.complete:
                logger.info(f"Book {book_id}: all sections processed, finalising entity index")
                await self.store.save_entity_index(existing_index.model_copy(update={
                    "complete": True,
                    "progress_percent": 100,
                    "last_updated": now_ms(),
                    "max_extracted_section": run_max if run_max >= 0 else None,
                }))
            else:
                logger.info(f"Book {book_id}: {len(entities)} entities cached, nothing new to extract")
            return list(entities.values())

        provider = self.provider_factory(settings)
        model_name = provider.model_name
        logger.info(
            f"Extracting entities for book {book_id}: {len(pending)} of {len(passes)} passes, {len(entities)} known"
        )

        failed = []
        for n, (i, text_pass) in enumerate(pending):
            if cancel_token:
                cancel_token.raise_if_cancelled()
            if n > 0:
                await asyncio.sleep(self.pass_delay)

            logger.info(f"Pass '{text_pass.label}': {len(text_pass.text)} chars")
            if on_progress:
                on_progress(EntityExtractionProgress(current=i, total=len(passes), phase="extracting"))

            relevant = get_relevant_entities_for_pass(text_pass, list(entities.values()))
            prompt = prompts.entity_extraction_prompt(
                text_pass.text, text_pass.label, [e.name for e in relevant]
            )

            try:
                response = await provider.complete(prompt, cancel_token=cancel_token)
            except ProviderError as e:
                logger.warning(f"Pass '{text_pass.label}' failed, skipping: {e}")
                failed.append(text_pass.label)
                continue

            raw_entities = parse_extraction_result(response)
            logger.info(f"Pass '{text_pass.label}': {len(raw_entities)} entities returned")
            merge_raw_entities(raw_entities, text_pass.section_indices, entities, book_id, text_pass.first_page)

            completed.update(text_pass.section_indices)
            await self.store.save_entities(book_id, list(entities.values()))
            await self.store.save_entity_index(BookEntityIndex(
                book_id=book_id,
                extraction_model=model_name,
                version=config.ENTITY_INDEX_VERSION,
                processed_sections=sorted(completed),
                total_sections=total_sections,
                complete=False,
                progress_percent=round((i + 1) / len(passes) * 100),
                max_extracted_section=max(completed),
                base_section=base_section,
            ))

        if on_progress:
            on_progress(EntityExtractionProgress(current=len(passes), total=len(passes), phase="storing"))

        if failed:
            # Left partial so the next run retries the failed passes
            finished = sum(1 for p in passes if set(p.section_indices) <= completed)
            await self.store.save_entity_index(BookEntityIndex(
                book_id=book_id,
                extraction_model=model_name,
                version=config.ENTITY_INDEX_VERSION,
                processed_sections=sorted(completed),
                total_sections=total_sections,
                complete=False,
                progress_percent=round(finished / len(passes) * 100),
                max_extracted_section=max(completed) if completed else None,
                base_section=base_section,
            ))
            logger.warning(
                f"Extraction incomplete for book {book_id}: {len(failed)} passes failed ({', '.join(failed)})"
            )
            return list(entities.values())

        await self.store.save_entity_index(BookEntityIndex(
            book_id=book_id,
            extraction_model=model_name,
            version=config.ENTITY_INDEX_VERSION,
            processed_sections=sorted(completed),
            total_sections=total_sections,
            complete=True,
            progress_percent=100,
            max_extracted_section=run_max,
            base_section=base_section,
        ))

        logger.info(f"Extraction complete for book {book_id}: {len(entities)} entities")
        return list(entities.values())

    async def get_extracted_section(self, book_id: str) -> Optional[int]:
        """Highest section covered by a complete extraction, or None."""
        entity_index = await self.store.get_entity_index(book_id)
        if entity_index is None or not entity_index.complete:
            return None
        boundary = entity_index.previous_boundary()
        return boundary if boundary >= 0 else None

    async def clear_entity_index(self, book_id: str) -> None:
        """Forget all entities and progress so the next run starts over."""
        await self.store.clear_entity_data(book_id)
        logger.info(f"Cleared entity index for book {book_id}")
