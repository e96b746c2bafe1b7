"""
CLI tool for building the Islamic knowledge base.

Usage:
    # Download the Quran and hadith collections
    python -m knowledge_service.data_ingestion.cli fetch

    # Normalize raw files into the canonical corpus
    python -m knowledge_service.data_ingestion.cli process

    # Load the corpus into MongoDB + Qdrant (resumes if interrupted)
    python -m knowledge_service.data_ingestion.cli load --batch-size 25

    # Query the vector index
    python -m knowledge_service.data_ingestion.cli search "patience in hardship"
"""

import sys
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table
from loguru import logger

from ..config.settings import Settings, get_settings
from ..core.document_store import MongoDocumentStore
from ..core.embeddings import EmbeddingService
from ..core.errors import FatalError, FetchError, StoreError, EmbeddingError
from ..core.vector_index import QdrantVectorIndex
from .checkpoint import CheckpointStore
from .events import LoggingObserver, ProgressBarObserver
from .fetcher import RetryingFetcher, QuranSource, HadithSource, fetch_all
from .loader import ResumableLoader
from .normalizer import build_corpus
from .retry import RetryPolicy, linear_backoff


app = typer.Typer(help="Fetch, normalize and load Islamic texts into the knowledge base")
console = Console()


def setup_logging(settings: Settings):
    """Configure loguru sinks: stderr, plus a rotating file if configured."""
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level.upper())
    if settings.log_file:
        Path(settings.log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(settings.log_file),
            level="DEBUG",
            rotation="10 MB",
            retention=5,
            encoding="utf-8",
        )


def build_vector_index(settings: Settings) -> QdrantVectorIndex:
    return QdrantVectorIndex.connect(
        collection_name=settings.qdrant.collection_name,
        url=settings.qdrant.url,
        host=settings.qdrant.host,
        port=settings.qdrant.port,
        api_key=settings.qdrant.api_key,
        timeout=settings.qdrant.timeout,
    )


def build_document_store(settings: Settings) -> MongoDocumentStore:
    store = MongoDocumentStore.connect(
        uri=settings.mongo.uri,
        database=settings.mongo.database,
        collection=settings.mongo.collection,
        timeout_ms=settings.mongo.timeout_ms,
    )
    store.ping()
    return store


def build_embedder(settings: Settings) -> EmbeddingService:
    return EmbeddingService(
        model_name=settings.embedding.model_name,
        device=settings.embedding.device,
    )


@app.command()
def fetch(
    output_dir: Optional[Path] = typer.Option(None, help="Raw data directory (overrides config)"),
):
    """Download the Quran and the six hadith collections."""
    settings = get_settings()
    setup_logging(settings)
    raw_dir = output_dir or settings.raw_dir

    console.print(f"\n[bold blue]Fetching Islamic Texts[/bold blue]")
    console.print(f"Output: {raw_dir}\n")

    policy = RetryPolicy(
        max_attempts=settings.fetch.max_attempts,
        backoff=linear_backoff(settings.fetch.backoff_seconds),
    )
    fetcher = RetryingFetcher(policy=policy, timeout=settings.fetch.timeout)
    try:
        report = fetch_all(
            raw_dir,
            QuranSource(fetcher, settings.fetch.quran_cdn_base, settings.fetch.quran_api_base),
            HadithSource(fetcher, settings.fetch.hadith_cdn_base),
        )
    except FetchError as e:
        console.print(f"[bold red]✗ Quran fetch failed: {e}[/bold red]")
        raise typer.Exit(code=1)
    finally:
        fetcher.close()

    table = Table(title="Fetch Results")
    table.add_column("Source", style="cyan")
    table.add_column("Count", style="green")

    table.add_row("Quran verses", str(report.quran_verses))
    for result in report.collections:
        count = f"[red]failed[/red]" if result.error else str(result.count)
        table.add_row(result.collection.display_name, count)
    table.add_row("Total hadiths", str(report.total_hadiths))

    console.print(table)
    if report.failed_collections:
        console.print(f"[yellow]Failed collections: {', '.join(report.failed_collections)}[/yellow]")
    console.print("\n[bold green]✓ Fetch complete![/bold green]\n")


@app.command()
def process(
    raw_dir: Optional[Path] = typer.Option(None, help="Raw data directory (overrides config)"),
    output: Optional[Path] = typer.Option(None, help="Corpus file to write (overrides config)"),
):
    """Normalize raw files into the canonical corpus."""
    settings = get_settings()
    setup_logging(settings)

    console.print(f"\n[bold blue]Processing Raw Data[/bold blue]\n")
    report = build_corpus(raw_dir or settings.raw_dir, output or settings.corpus_file)

    table = Table(title="Processing Results")
    table.add_column("Source", style="cyan")
    table.add_column("Documents", style="green")

    for label, count in report.counts.items():
        table.add_row(label, str(count))
    table.add_row("Total", str(report.total))
    table.add_row("File size", f"{report.size_bytes / 1024 / 1024:.2f} MB")

    console.print(table)
    if report.missing:
        console.print(f"[yellow]Missing raw files: {', '.join(report.missing)}[/yellow]")
    console.print(f"\n[bold green]✓ Corpus written to {report.output_file}[/bold green]\n")


@app.command()
def load(
    corpus: Optional[Path] = typer.Option(None, help="Corpus file (overrides config)"),
    batch_size: Optional[int] = typer.Option(None, "--batch-size", min=1, help="Documents per batch"),
    fresh: bool = typer.Option(False, "--fresh", help="Ignore any checkpoint and reload from scratch"),
):
    """Load the corpus into the document store and the vector index."""
    settings = get_settings()
    setup_logging(settings)
    corpus_file = corpus or settings.corpus_file

    console.print(f"\n[bold blue]Loading Knowledge Base[/bold blue]")
    console.print(f"Corpus: {corpus_file}")
    console.print(f"Collection: {settings.qdrant.collection_name}\n")

    try:
        loader = ResumableLoader(
            document_store=build_document_store(settings),
            vector_index=build_vector_index(settings),
            embedder=build_embedder(settings),
            checkpoints=CheckpointStore(settings.checkpoint_file),
            dimension=settings.embedding.dimension,
            batch_size=batch_size or settings.loader.batch_size,
            pause_every=settings.loader.pause_every,
            pause_seconds=settings.loader.pause_seconds,
            observers=[LoggingObserver(), ProgressBarObserver()],
        )
        stats = loader.load_file(corpus_file, force_fresh=fresh)
    except (FatalError, StoreError) as e:
        console.print(f"[bold red]✗ Load failed: {e}[/bold red]")
        raise typer.Exit(code=1)

    table = Table(title="Load Results")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Total documents", str(stats.total))
    table.add_row("Valid documents", str(stats.valid))
    table.add_row("Skipped (empty text)", str(stats.invalid))
    table.add_row("Resumed from", str(stats.resumed_from))
    table.add_row("Loaded this run", str(stats.loaded))
    table.add_row("Errors", str(stats.errors))
    table.add_row("Document store count", str(stats.document_count))
    table.add_row("Vector index points", str(stats.point_count))

    console.print(table)
    console.print("\n[bold green]✓ Load complete![/bold green]\n")


@app.command()
def search(
    query: str = typer.Argument(..., help="Search text"),
    top_k: int = typer.Option(5, "--top-k", min=1, help="Number of results"),
):
    """Search the vector index."""
    settings = get_settings()
    setup_logging(settings)

    try:
        index = build_vector_index(settings)
        vector = build_embedder(settings).embed(query)
        hits = index.search(vector, k=top_k)
    except (StoreError, EmbeddingError, FatalError) as e:
        console.print(f"[bold red]✗ Search failed: {e}[/bold red]")
        raise typer.Exit(code=1)

    if not hits:
        console.print("[yellow]No results.[/yellow]")
        return

    table = Table(title=f"Results for: {query}")
    table.add_column("Score", style="cyan")
    table.add_column("Reference", style="green")
    table.add_column("Text")

    for hit in hits:
        text = hit.text if len(hit.text) <= 120 else hit.text[:117] + "..."
        table.add_row(f"{hit.score:.3f}", hit.reference or "", text)

    console.print(table)


@app.command()
def status():
    """Show checkpoint and store counts."""
    settings = get_settings()
    setup_logging(settings)

    table = Table(title="Knowledge Base Status")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")

    try:
        checkpoint = CheckpointStore(settings.checkpoint_file).load()
    except FatalError as e:
        table.add_row("Checkpoint", f"[red]{e}[/red]")
    else:
        table.add_row("Checkpoint", str(checkpoint.last_index) if checkpoint else "none")

    try:
        info = build_vector_index(settings).collection_info()
        table.add_row("Vector index points", str(info.points_count))
        table.add_row("Collection status", info.status)
    except StoreError as e:
        table.add_row("Vector index", f"[red]{e}[/red]")

    try:
        table.add_row("Document store count", str(build_document_store(settings).count()))
    except StoreError as e:
        table.add_row("Document store", f"[red]{e}[/red]")

    console.print(table)


if __name__ == "__main__":
    app()
