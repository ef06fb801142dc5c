"""
Command-line interface for kbcore.

Commands:
    ingest       - Chunk, embed and store one or more text files
    add-text     - Ingest manually entered text
    update-text  - Replace manually entered text and re-embed it
    query        - Show the chunks most relevant to a question
    delete       - Remove a document's chunks
    list         - List stored documents
    version      - Show version information
"""

import asyncio
import uuid
from collections import defaultdict
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn, TimeElapsedColumn
from rich.table import Table

from kbcore.config import Settings, get_settings
from kbcore.exceptions import InvalidCredentialError, KBCoreError
from kbcore.logging_config import configure_logging
from kbcore.models import Document, FileDocument, TextDocument
from kbcore.retrieval.embeddings import EmbeddingClient, RetryPolicy
from kbcore.retrieval.indexer import VectorIndex
from kbcore.retrieval.ingestion import IngestionPipeline, delete_chunks
from kbcore.retrieval.retriever import RetrievalService
from kbcore.storage import JSONChunkStore

app = typer.Typer(
    name="kbcore",
    help="Chunk, embed and search your own documents",
    add_completion=False,
)
console = Console()


def _load(settings: Settings) -> tuple[JSONChunkStore, VectorIndex]:
    store = JSONChunkStore(settings.store_path)
    index = VectorIndex.from_store(store, dimension=settings.embedding_dimension)
    return store, index


def _file_document_id(path: Path) -> str:
    """Stable id so re-ingesting a file replaces its previous chunks."""
    return uuid.uuid5(uuid.NAMESPACE_URL, path.resolve().as_uri()).hex


def _run_ingestion(settings: Settings, documents: list[Document], chunk_size: int, overlap: int) -> None:
    store, index = _load(settings)

    for document in documents:
        stale = [c.id for c in store.fetch_all_chunks() if c.owner_document_id == document.id]
        if stale:
            console.print(f"[yellow]Replacing {len(stale)} existing chunks of {document.title}[/yellow]")
            delete_chunks(stale, index, store)

    pipeline = IngestionPipeline(
        embedder=EmbeddingClient.from_settings(settings),
        index=index,
        store=store,
        retry_policy=RetryPolicy.from_settings(settings),
        chunk_size=chunk_size,
        overlap=overlap,
    )

    with Progress(
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.percentage:>3.0f}%"),
        TimeElapsedColumn(),
        console=console,
    ) as progress:
        tasks = {
            document.id: progress.add_task(f"[cyan]{document.title}", total=1.0)
            for document in documents
        }

        def on_progress(document_id: str, fraction: float) -> None:
            progress.update(tasks[document_id], completed=fraction)

        results = asyncio.run(pipeline.ingest_many(documents, progress_callback=on_progress))

    for document, result in zip(documents, results):
        console.print(
            f"[green]  ✓ {document.title}: {result.chunk_count} chunks "
            f"({result.elapsed_seconds:.1f}s)[/green] [dim]{document.id}[/dim]"
        )


def _fail(error: KBCoreError) -> None:
    if isinstance(error, InvalidCredentialError):
        console.print("[red]The embedding provider rejected the API key.[/red]")
        console.print("Set OPENAI_API_KEY in the environment or in .env.")
    else:
        console.print(f"[red]{error}[/red]")
    raise typer.Exit(1)


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Override LOG_LEVEL"),
) -> None:
    """Configure logging for every command."""
    settings = get_settings()
    configure_logging(log_level or settings.log_level)


@app.command()
def ingest(
    paths: list[Path] = typer.Argument(..., help="UTF-8 text files to ingest"),
    chunk_size: Optional[int] = typer.Option(None, min=1, help="Character budget per chunk"),
    overlap: Optional[int] = typer.Option(None, min=0, help="Words carried over between chunks"),
) -> None:
    """Chunk, embed and store text files."""
    settings = get_settings()

    missing = [p for p in paths if not p.is_file()]
    if missing:
        for path in missing:
            console.print(f"[red]File not found: {path}[/red]")
        raise typer.Exit(1)

    documents: list[Document] = []
    seen: set[str] = set()
    for path in paths:
        document_id = _file_document_id(path)
        if document_id in seen:
            continue
        seen.add(document_id)
        document = FileDocument.from_path(path)
        document.id = document_id
        documents.append(document)

    console.print(f"[blue]Ingesting {len(documents)} file(s) into {settings.store_path}[/blue]\n")
    try:
        _run_ingestion(
            settings,
            documents,
            chunk_size=settings.chunk_size if chunk_size is None else chunk_size,
            overlap=settings.chunk_overlap if overlap is None else overlap,
        )
    except KBCoreError as e:
        _fail(e)


def _text_source(text: Optional[str], file: Optional[Path]) -> str:
    if (text is None) == (file is None):
        console.print("[red]Provide exactly one of --text or --file.[/red]")
        raise typer.Exit(1)
    if text is not None:
        return text
    return FileDocument.from_path(file).read_text()


@app.command("add-text")
def add_text(
    title: str = typer.Argument(..., help="Title for the text"),
    text: Optional[str] = typer.Option(None, "--text", "-t", help="Text to ingest"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Read the text from a file"),
) -> None:
    """Ingest manually entered text."""
    settings = get_settings()

    try:
        document = TextDocument(title=title, content=_text_source(text, file))
        _run_ingestion(settings, [document], chunk_size=settings.chunk_size, overlap=settings.chunk_overlap)
    except KBCoreError as e:
        _fail(e)


@app.command("update-text")
def update_text(
    document_id: str = typer.Argument(..., help="Id of text added with 'kbcore add-text'"),
    text: Optional[str] = typer.Option(None, "--text", "-t", help="Replacement text"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="Read the replacement text from a file"),
) -> None:
    """Replace the text of a stored document and re-embed it."""
    settings = get_settings()

    try:
        content = _text_source(text, file)
        store = JSONChunkStore(settings.store_path)
        existing = sorted(
            (c for c in store.fetch_all_chunks() if c.owner_document_id == document_id),
            key=lambda c: c.created_order,
        )
        if not existing:
            console.print(f"[yellow]No chunks found for document {document_id}[/yellow]")
            raise typer.Exit(1)

        document = TextDocument(title=document_id, id=document_id, chunks=existing, is_processed=True)
        document.update(content)
        _run_ingestion(settings, [document], chunk_size=settings.chunk_size, overlap=settings.chunk_overlap)
    except KBCoreError as e:
        _fail(e)


@app.command()
def query(
    question: str = typer.Argument(..., help="Question to search for"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Number of chunks"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show scores and ids"),
) -> None:
    """Show the chunks most relevant to a question."""
    settings = get_settings()

    try:
        store, index = _load(settings)
        if index.size == 0:
            console.print("[yellow]The store is empty. Ingest documents first.[/yellow]")
            return

        service = RetrievalService(
            embedder=EmbeddingClient.from_settings(settings),
            index=index,
            store=store,
            retry_policy=RetryPolicy.from_settings(settings),
        )
        with console.status("[bold green]Searching..."):
            matches = asyncio.run(service.retrieve_matches(question, limit=limit or settings.retrieval_limit))
    except KBCoreError as e:
        _fail(e)
        return

    if not matches:
        console.print("[yellow]No matching chunks.[/yellow]")
        return

    for rank, match in enumerate(matches, 1):
        header = f"[blue]#{rank}[/blue]"
        if verbose:
            header += f" [dim]score={match.score:.4f} chunk={match.chunk.id} doc={match.chunk.owner_document_id}[/dim]"
        console.print(header)
        console.print(match.chunk.text)
        console.print()


@app.command()
def delete(
    document_id: str = typer.Argument(..., help="Document id shown by 'kbcore list'"),
) -> None:
    """Remove every chunk of a document."""
    settings = get_settings()

    try:
        store, index = _load(settings)
        chunk_ids = [c.id for c in store.fetch_all_chunks() if c.owner_document_id == document_id]
        if not chunk_ids:
            console.print(f"[yellow]No chunks found for document {document_id}[/yellow]")
            raise typer.Exit(1)
        delete_chunks(chunk_ids, index, store)
    except KBCoreError as e:
        _fail(e)

    console.print(f"[green]Deleted {len(chunk_ids)} chunks of document {document_id}[/green]")


@app.command("list")
def list_documents() -> None:
    """List stored documents and their chunk counts."""
    settings = get_settings()

    try:
        store = JSONChunkStore(settings.store_path)
    except KBCoreError as e:
        _fail(e)
        return

    by_document = defaultdict(list)
    for chunk in store.fetch_all_chunks():
        by_document[chunk.owner_document_id].append(chunk)

    if not by_document:
        console.print("[yellow]No documents stored.[/yellow]")
        return

    table = Table(title=f"Documents in {settings.store_path.name}")
    table.add_column("Document", style="cyan")
    table.add_column("Chunks", style="green", justify="right")
    table.add_column("Preview")

    for document_id, chunks in by_document.items():
        first = min(chunks, key=lambda c: c.created_order)
        table.add_row(document_id, str(len(chunks)), first.text[:60])

    console.print(table)


@app.command()
def version() -> None:
    """Show version information."""
    from kbcore import __version__

    console.print(f"kbcore v{__version__}")


if __name__ == "__main__":
    app()
