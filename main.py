"""Developer CLI for the Book X-Ray engine."""
import asyncio
import hashlib
import json
import signal
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from utils.logger import setup_logger
from execution.cancellation import CancelToken, ExtractionCancelled
from extraction.entity_extractor import EntityExtractor, BookNotIndexedError, ExtractionInProgressError
from extraction.profile import get_entity_profile, search_entities
from indexing.indexer import Indexer
from ingestion.chunker import build_chapter_map, get_chapter_title
from ingestion.models import BookDocument
from monitoring.progress_tracker import ProgressTracker
from providers.base import ProviderError
from providers.settings import AISettings
from retrieval.hybrid_search import HybridSearcher
from storage.local_store import LocalStore
import config

logger = setup_logger(__name__)
console = Console()


def compute_file_hash(file_path: Path) -> str:
    """Compute SHA256 hash of a file.

    Args:
        file_path: Path to file

    Returns:
        Hex digest of hash
    """
    sha256_hash = hashlib.sha256()
    with open(file_path, "rb") as f:
        for byte_block in iter(lambda: f.read(4096), b""):
            sha256_hash.update(byte_block)
    return sha256_hash.hexdigest()


def load_book(book_path: Path) -> tuple[str, BookDocument]:
    """Read a parsed book from JSON (sections, toc, title, author)."""
    with open(book_path, "r", encoding="utf-8") as f:
        data = json.load(f)
    return compute_file_hash(book_path), BookDocument.model_validate(data)


def chapter_titles(doc: BookDocument) -> dict[int, str]:
    chapter_map = build_chapter_map(doc.sections, doc.toc)
    return {i: get_chapter_title(chapter_map, i) for i in range(len(doc.sections))}


def make_settings(provider):
    if provider:
        return AISettings(provider=provider)
    return AISettings()


book_option = click.option('--book', required=True, type=click.Path(exists=True), help='Path to parsed book JSON')
provider_option = click.option(
    '--provider',
    type=click.Choice(["ollama", "openai", "anthropic", "openai-compatible"]),
    default=None,
    help='Override AI_PROVIDER'
)


@click.group()
@click.option('--db', default=str(config.DB_PATH), type=click.Path(), help='SQLite database path')
@click.pass_context
def cli(ctx, db):
    """Book X-Ray - hybrid search and entity extraction for books"""
    ctx.obj = LocalStore(Path(db))


@cli.command()
@book_option
@provider_option
@click.pass_obj
def index(store, book, provider):
    """Chunk, embed and keyword-index a book."""
    book_id, doc = load_book(Path(book))
    console.print(f"\n[bold cyan]Indexing[/bold cyan] {doc.display_title()} ([dim]{book_id[:12]}[/dim])\n")

    indexer = Indexer(store)
    try:
        with ProgressTracker(console) as tracker:
            asyncio.run(indexer.index(book_id, doc, make_settings(provider), on_progress=tracker.update))
    except Exception as e:
        console.print(f"[red]Indexing failed: {e}[/red]")
        raise SystemExit(1)

    meta = asyncio.run(store.get_meta(book_id))
    if meta is None:
        console.print("[yellow]No indexable text found[/yellow]")
        return
    console.print(f"[green]✓ Indexed {meta.total_chunks} chunks[/green] (embeddings: {meta.embedding_model})")


@cli.command()
@book_option
@click.option('--query', '-q', required=True, help='Search text')
@click.option('--top-k', default=config.DEFAULT_TOP_K, help='Number of results')
@click.option('--max-page', type=int, default=None, help='Only search up to this page')
@provider_option
@click.pass_obj
def search(store, book, query, top_k, max_page, provider):
    """Hybrid search over an indexed book."""
    book_id, _ = load_book(Path(book))
    searcher = HybridSearcher(store)
    results = asyncio.run(searcher.search(book_id, query, top_k=top_k, max_page=max_page, settings=make_settings(provider)))

    if not results:
        console.print("[yellow]No results[/yellow]")
        return

    table = Table(title=f"Results for '{query}'")
    table.add_column("Score", justify="right")
    table.add_column("Method")
    table.add_column("Page", justify="right")
    table.add_column("Chapter")
    table.add_column("Text")
    for r in results:
        snippet = r.text[:120].replace("\n", " ")
        table.add_row(f"{r.score:.3f}", r.method, str(r.page_number), r.chapter_title, snippet)
    console.print(table)


@cli.command()
@book_option
@click.option('--section', type=int, default=None, help='Only read up to this section index')
@provider_option
@click.pass_obj
def extract(store, book, section, provider):
    """Extract X-Ray entities (resumes interrupted runs)."""
    book_id, doc = load_book(Path(book))
    console.print(f"\n[bold cyan]Entity Extraction[/bold cyan] {doc.display_title()}\n")
    extractor = EntityExtractor(store)

    async def run(tracker):
        cancel_token = CancelToken()
        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, cancel_token.cancel)
        except NotImplementedError:
            pass
        return await extractor.extract(
            book_id,
            make_settings(provider),
            on_progress=tracker.update,
            cancel_token=cancel_token,
            section_boundary=section
        )

    try:
        with ProgressTracker(console) as tracker:
            entities = asyncio.run(run(tracker))
    except ExtractionCancelled:
        console.print("[yellow]Cancelled; progress so far is saved and will resume next run[/yellow]")
        return
    except BookNotIndexedError:
        console.print("[red]Book is not indexed. Run 'index' first.[/red]")
        raise SystemExit(1)
    except (ExtractionInProgressError, ProviderError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise SystemExit(1)

    majors = sum(1 for e in entities if e.importance == "major")
    console.print(f"[green]✓ {len(entities)} entities[/green] ({majors} major)")


@cli.command()
@book_option
@click.option('--query', '-q', default="", help='Filter by name, alias or description')
@click.option('--type', 'entity_type', default="all", help='character, location, theme, term, event or all')
@click.option('--max-section', type=int, default=None, help="Hide entities first met after this section")
@click.pass_obj
def entities(store, book, query, entity_type, max_section):
    """List extracted entities."""
    book_id, _ = load_book(Path(book))
    found = search_entities(asyncio.run(store.get_entities(book_id)), query, max_section, entity_type)

    table = Table(title=f"{len(found)} entities")
    table.add_column("Name", style="cyan")
    table.add_column("Type")
    table.add_column("Importance")
    table.add_column("First section", justify="right")
    table.add_column("Aliases")
    for e in found:
        table.add_row(e.name, e.type, e.importance, str(e.first_mention_section), ", ".join(e.aliases))
    console.print(table)


@cli.command()
@book_option
@click.option('--name', required=True, help='Entity name or alias')
@click.option('--max-section', type=int, default=None, help="Reader's current section")
@click.pass_obj
def profile(store, book, name, max_section):
    """Show a spoiler-scoped entity profile."""
    book_id, doc = load_book(Path(book))
    all_entities = asyncio.run(store.get_entities(book_id))
    entity = next((e for e in all_entities if name.lower() in e.keys()), None)
    if entity is None:
        console.print(f"[red]No entity named '{name}'[/red]")
        raise SystemExit(1)

    view = get_entity_profile(entity, max_section, chapter_titles(doc), all_entities)
    console.print(f"\n[bold cyan]{entity.name}[/bold cyan] ({entity.type}, {entity.importance})")
    if entity.aliases:
        console.print(f"Also known as: {', '.join(entity.aliases)}")
    if entity.role:
        console.print(f"Role: {entity.role}")
    console.print(f"\n{view.scoped_description}\n")
    if view.visible_connections:
        console.print(f"Connections: {', '.join(view.visible_connections)}")
    if view.chapters_appearing:
        console.print(f"Appears in: {', '.join(view.chapters_appearing)}")


@cli.command()
@book_option
@click.pass_obj
def status(store, book):
    """Show index and extraction status for a book."""
    book_id, _ = load_book(Path(book))

    async def gather_status():
        indexer = Indexer(store)
        return await indexer.get_index_diagnostics(book_id), await store.get_entity_index(book_id)

    diagnostics, entity_index = asyncio.run(gather_status())
    if diagnostics is None:
        console.print("[yellow]Not indexed[/yellow]")
        return

    table = Table(title=f"Index ({diagnostics.total_chunks} chunks, {diagnostics.embedding_model})")
    table.add_column("Section", justify="right")
    table.add_column("Chapter")
    table.add_column("Chunks", justify="right")
    table.add_column("Chars", justify="right")
    table.add_column("Pages")
    for ch in diagnostics.chapters:
        table.add_row(
            str(ch.section_index), ch.title, str(ch.chunk_count), str(ch.total_chars),
            f"{ch.page_range[0]}-{ch.page_range[1]}"
        )
    console.print(table)

    if entity_index is None:
        console.print("Entities: [dim]not extracted[/dim]")
    else:
        state = "complete" if entity_index.complete else f"partial ({entity_index.progress_percent}%)"
        console.print(
            f"Entities: {state}, model {entity_index.extraction_model}, "
            f"up to section {entity_index.max_extracted_section}"
        )


@cli.command()
@book_option
@click.option('--entities-only', is_flag=True, help='Keep the search index, drop extracted entities')
@click.confirmation_option(prompt='Delete stored data for this book?')
@click.pass_obj
def clear(store, book, entities_only):
    """Delete stored data for a book."""
    book_id, _ = load_book(Path(book))
    if entities_only:
        asyncio.run(EntityExtractor(store).clear_entity_index(book_id))
        console.print("[green]✓ Entity index cleared[/green]")
    else:
        asyncio.run(Indexer(store).clear_book_index(book_id))
        console.print("[green]✓ Book data cleared[/green]")


if __name__ == '__main__':
    cli()
