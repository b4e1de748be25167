from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TimeRemainingColumn

from indexing.models import EmbeddingProgress
from extraction.models import EntityExtractionProgress

PHASE_LABELS = {
    "chunking": "Chunking sections...",
    "embedding": "Embedding chunks...",
    "indexing": "Building keyword index...",
    "extracting": "Extracting entities...",
    "storing": "Saving entity index...",
}


class ProgressTracker:
    """Feeds indexing and extraction progress callbacks into a rich progress bar."""

    def __init__(self, console):
        self.console = console
        self.progress = None
        self.task_id = None

    def create_progress(self):
        return Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TimeRemainingColumn(),
            console=self.console
        )

    def __enter__(self):
        self.progress = self.create_progress()
        self.progress.__enter__()
        self.task_id = self.progress.add_task("Starting...", total=None)
        return self

    def __exit__(self, exc_type, exc, tb):
        self.progress.__exit__(exc_type, exc, tb)
        self.progress = None
        self.task_id = None

    def update(self, event: EmbeddingProgress | EntityExtractionProgress) -> None:
        if self.progress is None:
            return
        self.progress.update(
            self.task_id,
            description=PHASE_LABELS.get(event.phase, event.phase),
            completed=event.current,
            total=event.total or None
        )
