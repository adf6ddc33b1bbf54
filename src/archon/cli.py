"""
archon CLI - run and manage agents from the terminal.

Commands:
    archon agents                 List the agent roster
    archon ask AGENT_ID QUERY     Run a query through one agent
    archon test [AGENT_ID]        Smoke-test one agent, or all of them
    archon templates              List built-in agent templates
    archon ingest DIR             Index a directory of JSON chunk files
    archon serve                  Start the HTTP gateway

Global options:
    --settings PATH   Settings file (default: $ARCHON_SETTINGS_PATH or .archon/settings.json)
    --verbose         Debug logging
"""

import asyncio
import logging
import os
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.table import Table

from .agents.templates import list_templates
from .config import SETTINGS_PATH_ENV
from .errors import ArchonError
from .runtime import build_runtime

app = typer.Typer(help="Multi-agent orchestration over your knowledge base")
console = Console()

_state: dict = {"settings": None}


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=True, show_path=False)],
        force=True,
    )


@app.callback()
def main(
    settings: Path = typer.Option(None, "--settings", help="Settings file path"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
):
    """Multi-agent orchestration over your knowledge base."""
    configure_logging(verbose)
    _state["settings"] = settings


def _fail(message: str) -> None:
    console.print(f"[bold red]Error:[/bold red] {message}")
    raise typer.Exit(1)


# =============================================================================
# AGENTS
# =============================================================================


@app.command()
def agents():
    """List the agent roster."""

    async def _run():
        runtime = build_runtime(_state["settings"])
        await runtime.start()
        return runtime.manager

    try:
        manager = asyncio.run(_run())
    except ArchonError as e:
        _fail(str(e))

    table = Table(title="Agents")
    table.add_column("ID", style="bold")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Status")
    table.add_column("Tools")
    table.add_column("Last test")

    for summary in manager.list_agents():
        config = manager.get_agent(summary.id)
        status = "[green]enabled[/green]" if config.enabled else "[dim]disabled[/dim]"
        if config.is_master:
            status += " [blue](master)[/blue]"
        table.add_row(
            config.id,
            config.name,
            config.category,
            status,
            "yes" if config.enable_tools else "no",
            config.test_status,
        )

    console.print(table)


# =============================================================================
# ASK
# =============================================================================


@app.command()
def ask(
    agent_id: str = typer.Argument(..., help="Agent to run"),
    query: str = typer.Argument(..., help="Question or instruction"),
    show_sources: bool = typer.Option(False, "--sources", help="List the retrieved sources"),
):
    """Run a query through one agent and print the answer."""

    async def _run():
        runtime = build_runtime(_state["settings"])
        await runtime.start()
        return await runtime.manager.execute_agent(agent_id, query)

    try:
        with console.status(f"[bold blue]{agent_id}[/bold blue] is thinking..."):
            response = asyncio.run(_run())
    except ArchonError as e:
        _fail(str(e))

    console.print(Markdown(response.answer))
    console.print(
        f"\n[dim]{response.agent_used} via {response.model_provider}/{response.model} "
        f"in {response.execution_time_ms:.0f}ms, {len(response.tool_results)} tool call(s)[/dim]"
    )
    if show_sources and response.sources:
        console.print("\n[bold]Sources:[/bold]")
        for source in response.sources:
            console.print(f"  - {source.document_title} ({source.section})")


# =============================================================================
# TEST
# =============================================================================


@app.command()
def test(
    agent_id: str = typer.Argument(None, help="Agent to test (default: all live agents)"),
):
    """Smoke-test agents with a canned query and record the result."""

    async def _run():
        runtime = build_runtime(_state["settings"])
        await runtime.start()
        if agent_id:
            return {agent_id: await runtime.manager.test_agent(agent_id)}
        return await runtime.manager.test_all_agents()

    try:
        results = asyncio.run(_run())
    except ArchonError as e:
        _fail(str(e))

    table = Table(title="Agent Tests")
    table.add_column("Agent", style="bold")
    table.add_column("Result")
    for tested_id, passed in results.items():
        table.add_row(tested_id, "[green]PASS[/green]" if passed else "[red]FAIL[/red]")
    console.print(table)

    if not all(results.values()):
        raise typer.Exit(1)


# =============================================================================
# TEMPLATES
# =============================================================================


@app.command()
def templates():
    """List built-in agent templates."""
    table = Table(title="Agent Templates")
    table.add_column("ID", style="bold")
    table.add_column("Name")
    table.add_column("Category")
    table.add_column("Description")

    for template in list_templates():
        table.add_row(template.id, template.name, template.category, template.description)

    console.print(table)


# =============================================================================
# INGEST
# =============================================================================


@app.command()
def ingest(
    directory: Path = typer.Argument(..., help="Directory of JSON chunk files"),
    reset: bool = typer.Option(False, "--reset", help="Clear the index first"),
):
    """Index chunk files and remember the directory in the settings."""
    if not directory.is_dir():
        _fail(f"Not a directory: {directory}")

    async def _run():
        runtime = build_runtime(_state["settings"])
        await runtime.retriever.initialize()
        if reset:
            count = await runtime.retriever.reingest(directory)
        else:
            count = await runtime.retriever.ingest_directory(directory)
        runtime.store.save(runtime.store.settings.copy(chunks_dir=str(directory.resolve())))
        return count, runtime.retriever.stats()

    try:
        count, stats = asyncio.run(_run())
    except ArchonError as e:
        _fail(str(e))

    console.print(
        f"[bold green]Ingested {count} chunk(s)[/bold green] "
        f"({stats['documents']} document(s), {stats['backend']} store, "
        f"{stats['embedding_provider']} embeddings)"
    )


# =============================================================================
# SERVE
# =============================================================================


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Bind address"),
    port: int = typer.Option(8000, help="Port"),
    reload: bool = typer.Option(False, "--reload", help="Auto-reload on code changes"),
):
    """Start the HTTP gateway."""
    import uvicorn

    if _state["settings"] is not None:
        os.environ[SETTINGS_PATH_ENV] = str(_state["settings"])

    console.print(f"\n[bold blue]archon serve[/bold blue] on http://{host}:{port}\n")
    uvicorn.run(
        "archon.api.gateway:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


if __name__ == "__main__":
    app()
