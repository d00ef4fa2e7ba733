import asyncio
import json
import logging
from pathlib import Path
from typing import Annotated, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from typer import Argument, Exit, Option, Typer

from .config import StoreConfig
from .errors import BoltedStoreError
from .generation import GeminiTextGenerator
from .search import SearchEmphasis
from .store import BoltedVectorStore

app = Typer(help="Chunked vector store over bolted structural + semantic embeddings.")
console = Console()

_CONTENT_TYPES_BY_SUFFIX = {
    ".md": "markdown",
    ".markdown": "markdown",
    ".py": "code",
    ".js": "code",
    ".ts": "code",
    ".json": "json",
    ".html": "html",
    ".csv": "table",
}


@app.callback()
def configure(
    verbose: Annotated[
        bool, Option("--verbose", "-v", help="Log chunk loads, saves and evictions.")
    ] = False,
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def build_store(chunk_root: str | None = None) -> BoltedVectorStore:
    """Store wired to Gemini from environment configuration."""
    config = StoreConfig.from_env()
    return BoltedVectorStore(
        config,
        text_generator=GeminiTextGenerator(model=config.generation_model),
        chunk_root=chunk_root,
    )


def _guess_content_type(path: Path) -> str:
    return _CONTENT_TYPES_BY_SUFFIX.get(path.suffix.lower(), "text")


def _fail(exc: Exception) -> None:
    console.print(f"[bold red]Error:[/] {exc}")
    raise Exit(code=1)


async def _insert_paths(
    store: BoltedVectorStore,
    paths: list[Path],
    partition: str | None,
    content_type: str | None,
) -> None:
    with console.status(status="Embedding documents...") as status:
        for path in paths:
            status.update(f"Embedding {path}...")
            embedding = await store.insert_document_embedding(
                str(path),
                path.read_text(encoding="utf-8", errors="replace"),
                content_type or _guess_content_type(path),
                metadata={"path": str(path), "name": path.name},
                partition_key=partition,
            )
            console.print(f"[green]Stored[/] {embedding.identifier}")


@app.command()
def insert(
    paths: Annotated[list[Path], Argument(help="Files to embed and store.", exists=True)],
    partition: Annotated[
        Optional[str], Option("--partition", "-p", help="Partition key for all files.")
    ] = None,
    content_type: Annotated[
        Optional[str], Option("--content-type", help="Override the guessed content type.")
    ] = None,
    chunk_root: Annotated[
        Optional[str], Option("--chunk-root", help="Chunk directory (default from env).")
    ] = None,
) -> None:
    """Embed files and store them."""
    files = [path for path in paths if path.is_file()]
    try:
        store = build_store(chunk_root)
    except (ValueError, BoltedStoreError) as exc:
        _fail(exc)
    try:
        asyncio.run(_insert_paths(store, files, partition, content_type))
    except (OSError, BoltedStoreError) as exc:
        _fail(exc)
    finally:
        store.close()
    console.print(f"[bold green]Inserted {len(files)} document(s).[/]")


@app.command()
def search(
    query: Annotated[str, Argument(help="Query text.")],
    emphasis: Annotated[
        str,
        Option(
            "--emphasis",
            "-e",
            help="balanced, structural, semantic or custom:W_S,W_M",
        ),
    ] = "balanced",
    filters: Annotated[
        Optional[str], Option("--filters", "-f", help="Metadata filters, e.g. \"lang=en\".")
    ] = None,
    max_results: Annotated[int, Option("--max-results", "-n", min=1)] = 10,
    chunk_root: Annotated[Optional[str], Option("--chunk-root")] = None,
) -> None:
    """Search stored documents with a text query."""
    try:
        parsed_emphasis = SearchEmphasis.parse(emphasis)
        store = build_store(chunk_root)
    except (ValueError, BoltedStoreError) as exc:
        _fail(exc)
    try:
        response = asyncio.run(
            store.search_text(
                query, parsed_emphasis, filters=filters, max_results=max_results
            )
        )
    except (ValueError, BoltedStoreError) as exc:
        _fail(exc)
    finally:
        store.close()

    table = Table(title=f"Results for {query!r}")
    table.add_column("#", justify="right")
    table.add_column("Identifier")
    table.add_column("Similarity", justify="right")
    table.add_column("Chunk")
    for position, hit in enumerate(response.results, start=1):
        table.add_row(str(position), hit.identifier, f"{hit.similarity:.4f}", hit.chunk_id or "")
    console.print(table)
    if response.partial:
        console.print(
            f"[yellow]Partial results: {len(response.chunks_skipped)} chunk(s) skipped.[/]"
        )


@app.command()
def stats(
    chunk_root: Annotated[Optional[str], Option("--chunk-root")] = None,
) -> None:
    """Show chunk residency and memory figures."""
    store = BoltedVectorStore(StoreConfig.from_env(), chunk_root=chunk_root)
    try:
        data = store.stats()
    finally:
        store.close()
    console.print(
        Panel(json.dumps(data, indent=2), title="Store stats", title_align="left", border_style="bold cyan")
    )


@app.command()
def flush(
    chunk_root: Annotated[Optional[str], Option("--chunk-root")] = None,
) -> None:
    """Write every dirty resident chunk to disk."""
    store = BoltedVectorStore(StoreConfig.from_env(), chunk_root=chunk_root)
    try:
        written = store.flush_all()
    except BoltedStoreError as exc:
        _fail(exc)
    finally:
        store.close()
    console.print(f"[bold green]Flushed {written} chunk(s).[/]")


@app.command()
def serve(
    host: Annotated[str, Option("--host")] = "127.0.0.1",
    port: Annotated[int, Option("--port")] = 8000,
) -> None:
    """Run the HTTP API."""
    from .server import run_server

    run_server(host=host, port=port)
