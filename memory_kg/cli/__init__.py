"""
Command-Line Interface

CLI commands for memory-kg operations.

Commands:
    memory-kg ingest  - Remember a text file
    memory-kg show    - Show the nodes and edges learned from one page
    memory-kg info    - Display knowledge graph statistics

Usage:
    # Remember a note
    memory-kg ingest notes.txt --db ./memory.duckdb --title "Team notes"

    # Remember a personal note (first-person statements map to the owner)
    memory-kg ingest diary.txt --source-type user_input

    # Inspect what was learned
    memory-kg show <page-id> --db ./memory.duckdb
    memory-kg info --db ./memory.duckdb
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn
from rich.table import Table

__all__ = ["main", "app"]

app = typer.Typer(
    name="memory-kg",
    help="Personal knowledge graph built from captured text",
    no_args_is_help=True,
)
console = Console()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("memory_kg").setLevel(logging.DEBUG if verbose else logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def _config(db: Optional[Path]):
    from memory_kg.config import KGConfig

    config = KGConfig()
    if db is not None:
        config = config.with_overrides(db_path=str(db))
    return config


@app.callback()
def _root(
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Enable debug logging",
    ),
) -> None:
    load_dotenv()
    _configure_logging(verbose)


@app.command()
def ingest(
    path: Path = typer.Argument(
        ...,
        help="Text file to remember",
        exists=True,
        dir_okay=False,
    ),
    db: Optional[Path] = typer.Option(
        None,
        "--db",
        help="DuckDB database file (defaults to MEMORY_KG_DB_PATH or ./memory_kg.duckdb)",
    ),
    title: Optional[str] = typer.Option(
        None,
        "--title", "-t",
        help="Title (defaults to the file name)",
    ),
    url: str = typer.Option(
        "",
        "--url", "-u",
        help="Origin URL",
    ),
    source_type: str = typer.Option(
        "webpage",
        "--source-type", "-s",
        help="webpage, selection, user_input or raw_text",
    ),
    page_id: Optional[str] = typer.Option(
        None,
        "--page-id",
        help="Identifier for the captured item (random when omitted)",
    ),
    cost_debug: bool = typer.Option(
        False,
        "--cost-debug",
        help="Print per-stage token usage and estimated cost",
    ),
) -> None:
    """Extract entities and facts from a text file into the knowledge graph."""

    async def _run() -> None:
        from memory_kg.api.knowledge_graph import KnowledgeGraph

        content = path.read_text(encoding="utf-8")
        kg = KnowledgeGraph(config=_config(db))

        try:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                console=console,
            ) as progress:
                task = progress.add_task(f"Remembering {path.name}...", total=100)

                def on_progress(update) -> None:
                    progress.update(task, description=update.stage, completed=update.progress)

                result = await kg.remember(
                    content,
                    title or path.stem,
                    page_id=page_id,
                    url=url,
                    source_type=source_type,
                    on_progress=on_progress,
                    cost_debug=cost_debug,
                )

            console.print()
            style = "green" if result.success else "red"
            source_line = (
                f"  Page ID: {result.created_source.target_id}\n" if result.created_source else ""
            )
            console.print(Panel(
                f"[{style}]{result.final_message}[/]\n\n"
                f"{source_line}"
                f"  Nodes: {len(result.created_nodes)}\n"
                f"  Edges: {len(result.created_edges)}",
                title="Ingestion Complete" if result.success else "Ingestion Failed",
            ))

            if result.errors:
                console.print("[yellow]Warnings:[/]")
                for error in result.errors:
                    console.print(f"  - {error}")

            if result.cost_debug is not None:
                breakdown = result.cost_debug.breakdown
                table = Table(title=f"Usage (pricing {result.cost_debug.pricing_version})")
                table.add_column("Stage", style="cyan")
                table.add_column("Calls", justify="right")
                table.add_column("Tokens", justify="right")
                table.add_column("Cost (USD)", justify="right", style="green")
                for stage in breakdown.by_stage:
                    table.add_row(
                        stage.stage,
                        str(stage.calls),
                        str(stage.total_tokens),
                        f"{stage.estimated_cost_usd:.6f}",
                    )
                table.add_row(
                    "total",
                    str(breakdown.total_calls),
                    str(breakdown.total_tokens),
                    f"{breakdown.total_estimated_cost_usd:.6f}",
                )
                console.print(table)
                for warning in result.cost_debug.warnings:
                    console.print(f"[yellow]{warning}[/]")
        finally:
            await kg.close()

    asyncio.run(_run())


@app.command()
def show(
    page_id: str = typer.Argument(
        ...,
        help="Page ID given (or printed) at ingestion",
    ),
    db: Optional[Path] = typer.Option(
        None,
        "--db",
        help="DuckDB database file",
    ),
) -> None:
    """Show the nodes and edges learned from one page."""

    async def _run() -> None:
        from memory_kg.api.knowledge_graph import KnowledgeGraph

        kg = KnowledgeGraph(config=_config(db))

        try:
            graph = await kg.get_graph_for_page(page_id)
            if graph is None:
                console.print(f"[yellow]No source found for page '{page_id}'[/]")
                raise typer.Exit(code=1)

            console.print(Panel(
                f"{graph.source.name}\n[dim]{graph.source.reference_time.isoformat()}[/]",
                title=f"Source {graph.source.id}",
            ))

            names = {node.id: node.name for node in graph.nodes}

            nodes_table = Table(title="Nodes")
            nodes_table.add_column("Name", style="cyan")
            nodes_table.add_column("Type", style="dim")
            nodes_table.add_column("Summary")
            for node in graph.nodes:
                nodes_table.add_row(node.name, node.node_type, node.summary or "")
            console.print(nodes_table)

            edges_table = Table(title="Edges")
            edges_table.add_column("Source", style="cyan")
            edges_table.add_column("Relation", style="magenta")
            edges_table.add_column("Destination", style="cyan")
            edges_table.add_column("Valid", style="dim")
            edges_table.add_column("Fact")
            for edge in graph.edges:
                valid = edge.valid_at.date().isoformat() if edge.valid_at else ""
                if edge.invalid_at:
                    valid = f"{valid} - {edge.invalid_at.date().isoformat()}"
                edges_table.add_row(
                    names.get(edge.source_id, edge.source_id),
                    edge.edge_type,
                    names.get(edge.destination_id, edge.destination_id),
                    valid,
                    edge.fact_text,
                )
            console.print(edges_table)
        finally:
            await kg.close()

    asyncio.run(_run())


@app.command()
def info(
    db: Optional[Path] = typer.Option(
        None,
        "--db",
        help="DuckDB database file",
    ),
) -> None:
    """Display knowledge graph statistics."""

    async def _run() -> None:
        from memory_kg.api.knowledge_graph import KnowledgeGraph

        kg = KnowledgeGraph(config=_config(db))

        try:
            stats = await kg.stats()

            table = Table(title=f"Knowledge Graph: {kg.path}")
            table.add_column("Metric", style="cyan")
            table.add_column("Count", justify="right", style="green")

            table.add_row("Sources", str(stats["sources"]))
            table.add_row("Nodes", str(stats["nodes"]))
            table.add_row("Edges", str(stats["edges"]))

            console.print(table)
        finally:
            await kg.close()

    asyncio.run(_run())


def main() -> None:
    """Entry point for the CLI."""
    app()
