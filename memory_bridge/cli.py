"""Command-line interface for Memory Bridge."""

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .config import CONFIG_FILENAME, DEFAULT_AGENT_ID, MemoryConfig, get_memory_home
from .errors import AuthenticationError, MemoryBridgeError
from .memory import DEFAULT_DAYS, DEFAULT_LIMIT, MemoryStore

console = Console()
err_console = Console(stderr=True)

app = typer.Typer(help="Persistent, queryable memory for conversational agents", no_args_is_help=True)


@contextmanager
def _handle_errors():
    """Print Memory Bridge errors and exit non-zero."""
    try:
        yield
    except AuthenticationError as e:
        err_console.print(f"[red]Authentication failed:[/red] {escape(str(e))}")
        err_console.print("Check the url and password in your config, or MEMORY_BRIDGE_PASSWORD.")
        raise typer.Exit(code=2)
    except MemoryBridgeError as e:
        err_console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(code=1)


def _open_store(ctx: typer.Context, agent: Optional[str] = None) -> MemoryStore:
    config = MemoryConfig.load(ctx.obj["config_path"])
    store = MemoryStore.from_config(config)
    if agent:
        store.agent_id = agent
    return store


def _echo_json(data) -> None:
    typer.echo(json.dumps(data, indent=2))


@app.callback()
def main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to config.json"),
    json_output: bool = typer.Option(False, "--json", help="Print structured JSON output"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Store, query and browse agent memories."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s [%(levelname)-8s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    ctx.obj = {"config_path": config, "json": json_output}


@app.command("init")
def init_command(
    ctx: typer.Context,
    directory: Optional[Path] = typer.Option(None, "--dir", help="Memory directory (default: ~/.memory-bridge)"),
    agent: str = typer.Option(DEFAULT_AGENT_ID, "--agent", help="Default agent id"),
    storage: str = typer.Option("sqlite", "--storage", help="sqlite, json or redis"),
    url: Optional[str] = typer.Option(None, "--url", help="Redis URL for remote storage"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing config"),
):
    """Create the memory directory and a default config.json.

    Examples:
        memory-bridge init
        memory-bridge init --agent OpenClaw
        memory-bridge init --storage redis --url redis://memory.internal:6379/0
    """
    memory_dir = (directory or get_memory_home()).expanduser()
    config_path = ctx.obj["config_path"] or memory_dir / CONFIG_FILENAME

    if config_path.exists() and not force:
        console.print("[green]✓[/green] Memory Bridge already installed")
        console.print(f"   Location: {memory_dir}")
        return

    with _handle_errors():
        config = MemoryConfig(storage=storage, agent_id=agent, url=url)
        if not config.is_remote:
            filename = "memories.json" if config.backend_kind == "json" else "memory.db"
            config = MemoryConfig(storage=storage, agent_id=agent, path=str(memory_dir / filename))
        try:
            config.save(config_path)
        except OSError as e:
            err_console.print(f"[red]Error:[/red] cannot write {config_path}: {escape(str(e))}")
            raise typer.Exit(code=1)

    console.print("[green]✓[/green] Memory Bridge installed")
    console.print(f"   Config: {config_path}")
    if config.is_remote:
        console.print(f"   Remote: {config.url}")
    else:
        console.print(f"   Storage: {config.path}")


@app.command("store")
def store_command(
    ctx: typer.Context,
    content: str = typer.Argument(..., help="Content to remember"),
    content_type: Optional[str] = typer.Option(
        None, "--type", "-t", help="insight, preference, error, goal, decision, conversation or a custom tag"
    ),
    importance: Optional[int] = typer.Option(None, "--importance", "-i", help="1-10 (computed when omitted)"),
    source: Optional[str] = typer.Option(None, "--source", help="Provenance tag"),
    agent: Optional[str] = typer.Option(None, "--agent", help="Agent id (default from config)"),
):
    """Store a memory.

    Examples:
        memory-bridge store "User prefers dark mode" --type preference
        memory-bridge store "Ship the beta by Friday" --type goal --importance 9
    """
    with _handle_errors():
        with _open_store(ctx, agent) as store:
            memory = store.store_memory(content, content_type=content_type, importance=importance, source=source)

    if ctx.obj["json"]:
        _echo_json(memory.to_dict())
        return
    console.print(
        f"[green]✓[/green] Stored {memory.content_type} memory "
        f"(ID: {memory.id}, importance {memory.importance})"
    )


@app.command("query")
def query_command(
    ctx: typer.Context,
    text: str = typer.Argument(..., help="What to look for"),
    limit: int = typer.Option(DEFAULT_LIMIT, "--limit", "-n", help="Maximum number of results"),
    days: int = typer.Option(DEFAULT_DAYS, "--days", "-d", help="Only memories from the last N days"),
    min_importance: int = typer.Option(0, "--min-importance", help="Only memories at least this important"),
    agent: Optional[str] = typer.Option(None, "--agent", help="Agent id (default from config)"),
):
    """Find the most relevant memories.

    Examples:
        memory-bridge query "dark mode"
        memory-bridge query "launch plans" --days 7 --min-importance 8
    """
    with _handle_errors():
        with _open_store(ctx, agent) as store:
            results = store.query(text, limit=limit, days=days, min_importance=min_importance)

    if ctx.obj["json"]:
        _echo_json([m.to_dict() for m in results])
        return

    if not results:
        console.print("[yellow]No memories found[/yellow]")
        return

    table = Table(title=f"Memories ({len(results)} found)")
    table.add_column("Relevance", justify="right", style="cyan")
    table.add_column("Imp.", justify="right")
    table.add_column("Type", style="green")
    table.add_column("Created", style="dim")
    table.add_column("Content")
    for memory in results:
        table.add_row(
            f"{memory.relevance:.2f}",
            str(memory.importance),
            escape(memory.content_type),
            memory.created_at[:16].replace("T", " "),
            escape(memory.content),
        )
    console.print(table)


@app.command("timeline")
def timeline_command(
    ctx: typer.Context,
    days: int = typer.Argument(..., help="Number of days to look back"),
    agent: Optional[str] = typer.Option(None, "--agent", help="Agent id (default from config)"),
):
    """Show memories grouped by day, most recent first."""
    with _handle_errors():
        with _open_store(ctx, agent) as store:
            grouped = store.timeline(days)

    if ctx.obj["json"]:
        _echo_json({day: [m.to_dict() for m in memories] for day, memories in grouped.items()})
        return

    if not grouped:
        console.print(f"[yellow]No memories in the last {days} days[/yellow]")
        return

    for day, memories in grouped.items():
        console.print(f"[bold]{day}[/bold] ({len(memories)})")
        for memory in memories:
            console.print(
                f"  {memory.created_at[11:16]} [green]\\[{escape(memory.content_type)}][/green] "
                f"{escape(memory.content)}"
            )


@app.command("context")
def context_command(
    ctx: typer.Context,
    agent: Optional[str] = typer.Option(None, "--agent", help="Agent id (default from config)"),
):
    """Print recent work, preferences and goals for a new session."""
    with _handle_errors():
        with _open_store(ctx, agent) as store:
            context = store.session_context()

    if ctx.obj["json"]:
        _echo_json(context.to_dict())
        return

    if not (context.has_context or context.goals):
        console.print("[yellow]No stored context[/yellow]")
        return
    console.print(escape(context.format()))


if __name__ == "__main__":
    app()
