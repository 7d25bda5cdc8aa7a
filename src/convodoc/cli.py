"""CLI interface for convodoc.

Typer-based command-line interface with Rich output formatting.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from convodoc import __version__
from convodoc.exceptions import ConvodocError
from convodoc.ingest import ColumnMapping, CsvFileIngester
from convodoc.project import ProjectManager
from convodoc.runtime import (
    StreamSummary,
    build_runtime,
    create_rag_service,
    open_store,
    stream_summaries,
)

if TYPE_CHECKING:
    from convodoc.types import RunLog, StoredProposal

__all__ = ["app"]

app = typer.Typer(
    name="convodoc",
    help="Turns conversation streams into reviewable documentation proposals.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()


@app.callback()
def main(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show debug logging"),
    ] = False,
) -> None:
    """convodoc command-line interface."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _require_project() -> ProjectManager:
    root = ProjectManager.find_project_root()
    pm = ProjectManager(root)
    if not pm.is_initialized:
        console.print(
            "[yellow]No convodoc project found.[/yellow] Run [bold]convodoc init[/bold] first."
        )
        raise typer.Exit(code=1)
    return pm


def _fmt_time(value: datetime | None) -> str:
    return value.isoformat(timespec="seconds") if value is not None else "-"


@app.command()
def version() -> None:
    """Show convodoc version."""
    console.print(f"convodoc {__version__}")


@app.command()
def init(
    name: Annotated[
        str,
        typer.Option("--name", "-n", help="Project name"),
    ] = "",
    domain: Annotated[
        str,
        typer.Option("--domain", "-d", help="Product domain, used in prompts"),
    ] = "",
) -> None:
    """Initialize a new convodoc project in the current directory."""
    pm = ProjectManager()
    project_dir = pm.init(name=name, domain=domain)

    console.print(f"[green]Initialized convodoc project[/green] at {project_dir}")
    console.print("\nCreated:")
    console.print(f"  {pm.config_path}")
    console.print(f"  {pm.prompts_dir}  (prompt overrides)")
    console.print(f"  {pm.inbox_dir}  (CSV drop folder)")

    console.print("\nNext steps:")
    console.print("  convodoc index            Index the documentation directory")
    console.print("  convodoc import-csv <f>   Import messages from a CSV file")
    console.print("  convodoc process          Generate proposals from pending messages")


@app.command(name="import-csv")
def import_csv(
    paths: Annotated[
        list[Path] | None,
        typer.Argument(help="CSV file(s); defaults to every file in .convodoc/inbox"),
    ] = None,
    stream: Annotated[
        str,
        typer.Option("--stream", "-s", help="Stream id the messages belong to"),
    ] = "csv",
    content_col: Annotated[str, typer.Option("--content-col", help="Content column")] = "content",
    timestamp_col: Annotated[
        str, typer.Option("--timestamp-col", help="Timestamp column")
    ] = "timestamp",
    author_col: Annotated[str, typer.Option("--author-col", help="Author column")] = "author",
    id_col: Annotated[str, typer.Option("--id-col", help="Message id column")] = "message_id",
    channel_col: Annotated[str, typer.Option("--channel-col", help="Channel column")] = "",
) -> None:
    """Import messages from CSV files into a stream."""
    pm = _require_project()
    config = pm.load()
    mapping = ColumnMapping(
        content=content_col,
        timestamp=timestamp_col,
        author=author_col,
        message_id=id_col,
        channel=channel_col,
    )
    files = list(paths) if paths else sorted(pm.inbox_dir.glob("*.csv"))
    if not files:
        console.print("[yellow]No CSV files to import.[/yellow]")
        raise typer.Exit(code=1)

    async def run() -> int:
        store = open_store(pm, config)
        ingester = CsvFileIngester(store, mapping)
        failures = 0
        try:
            for path in files:
                try:
                    report = await ingester.ingest_file(path, stream)
                except ConvodocError as e:
                    console.print(f"  [red]Error importing {path.name}:[/red] {e}")
                    failures += 1
                    continue
                console.print(
                    f"  [green]{path.name}[/green]: {report.imported} new, "
                    f"{report.duplicates} duplicate, "
                    f"{report.skipped_before_watermark} already imported, "
                    f"{report.failed_rows} invalid"
                )
                for err in report.errors[:10]:
                    console.print(f"    [dim]row {err.row}: {err.error}[/dim]")
        finally:
            await store.close()
        return failures

    if asyncio.run(run()):
        raise typer.Exit(code=1)


@app.command()
def index(
    docs_dir: Annotated[
        Path | None,
        typer.Argument(help="Documentation directory (default: [rag] docs_dir)"),
    ] = None,
) -> None:
    """Index documentation for retrieval."""
    from convodoc.rag.indexer import index_directory

    pm = _require_project()
    config = pm.load()
    target = docs_dir or (pm.root / config.rag.docs_dir)
    try:
        service = create_rag_service(pm, config)
        report = index_directory(target, service, config.rag.max_section_chars)
    except ConvodocError as e:
        console.print(f"[red]Indexing failed:[/red] {e}")
        raise typer.Exit(code=1) from e

    console.print(
        f"[green]Indexed {report.files_indexed} file(s)[/green] "
        f"({report.sections_indexed} sections, {report.files_removed} removed)"
    )
    for rel in report.failed:
        console.print(f"  [red]Failed:[/red] {rel}")


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Search query")],
    top_k: Annotated[
        int,
        typer.Option("--top-k", "-k", help="Number of results"),
    ] = 5,
) -> None:
    """Search the documentation index."""
    pm = _require_project()
    config = pm.load()
    try:
        results = create_rag_service(pm, config).search(query, top_k)
    except ConvodocError as e:
        console.print(f"[red]Search failed:[/red] {e}")
        raise typer.Exit(code=1) from e

    if not results:
        console.print("[dim]No results.[/dim]")
        return
    for doc in results:
        console.print(f"[bold]{doc.file_path}[/bold] {doc.title} [dim]({doc.similarity:.3f})[/dim]")
        console.print(f"  {doc.content[:200]}")


@app.command()
def process(
    stream: Annotated[
        str | None,
        typer.Option("--stream", "-s", help="Only process this stream"),
    ] = None,
) -> None:
    """Run the pipeline over every pending batch."""
    pm = _require_project()
    try:
        runtime = build_runtime(pm)
    except ConvodocError as e:
        console.print(f"[red]Failed to initialize pipeline:[/red] {e}")
        raise typer.Exit(code=1) from e

    async def run() -> int:
        try:
            return await runtime.processor.process_batch(stream)
        finally:
            await runtime.store.close()

    processed = asyncio.run(run())
    if processed:
        console.print(f"[green]Processed {processed} message(s)[/green]")
    else:
        console.print("[dim]No messages processed.[/dim]")


@app.command()
def status() -> None:
    """Show project status: streams, watermarks and pending messages."""
    pm = _require_project()
    st = pm.status()
    config = st.config or pm.load()
    console.print(f"[bold]convodoc project:[/bold] {config.project.name or st.root.name}")
    console.print(f"  Pipeline: {config.pipeline.pipeline_id}")
    console.print(f"  LLM: {config.llm.provider} ({config.llm.model})")
    if st.prompt_overrides:
        console.print(f"  Prompt overrides: {st.prompt_overrides}")

    async def load() -> list[StreamSummary]:
        store = open_store(pm, config)
        try:
            return await stream_summaries(store)
        finally:
            await store.close()

    summaries = asyncio.run(load())
    if not summaries:
        console.print("\n[dim]No messages imported yet.[/dim]")
        return

    table = Table(title="Streams")
    table.add_column("stream")
    table.add_column("pending", justify="right")
    table.add_column("watermark")
    table.add_column("last batch")
    for s in summaries:
        table.add_row(
            s.stream_id, str(s.pending), _fmt_time(s.watermark), _fmt_time(s.last_processed_batch)
        )
    console.print(table)


@app.command()
def runs(
    limit: Annotated[int, typer.Option("--limit", "-n", help="Number of runs")] = 20,
) -> None:
    """Show recent pipeline runs."""
    pm = _require_project()
    config = pm.load()

    async def load() -> list[RunLog]:
        store = open_store(pm, config)
        try:
            return await store.list_run_logs(limit)
        finally:
            await store.close()

    logs = asyncio.run(load())
    if not logs:
        console.print("[dim]No pipeline runs yet.[/dim]")
        return

    table = Table(title="Pipeline runs")
    for col in ("id", "batch", "status", "messages", "threads", "proposals", "ms", "error"):
        table.add_column(col)
    for log in logs:
        table.add_row(
            str(log.id),
            log.batch_id,
            str(log.status),
            str(log.input_messages),
            str(log.output_threads),
            str(log.output_proposals),
            str(log.total_duration_ms),
            log.error_message[:60],
        )
    console.print(table)


@app.command()
def proposals(
    stream: Annotated[
        str | None,
        typer.Option("--stream", "-s", help="Only show proposals from this stream"),
    ] = None,
) -> None:
    """List generated documentation proposals."""
    pm = _require_project()
    config = pm.load()

    async def load() -> list[StoredProposal]:
        store = open_store(pm, config)
        try:
            return await store.list_proposals(stream)
        finally:
            await store.close()

    stored = asyncio.run(load())
    if not stored:
        console.print("[dim]No proposals yet.[/dim]")
        return

    for sp in stored:
        p = sp.proposal
        header = f"#{sp.id} [bold]{p.update_type}[/bold] {p.page}"
        if p.section:
            header += f" § {p.section}"
        console.print(header)
        console.print(f"  [dim]{sp.stream_id} / {sp.thread_id}[/dim]")
        if p.reasoning:
            console.print(f"  {p.reasoning}")
        for warning in p.warnings:
            console.print(f"  [yellow]! {warning}[/yellow]")
