"""tourquote CLI.

Commands:
- init: Initialize database schema
- generate: Generate an estimate for a chat session
- submit: Submit a session's estimate to an expert
- send: Dispatch a pending estimate to the customer
- show: Show an estimate with its items
- web serve: Run the API server
"""

from __future__ import annotations

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from tourquote.config import get_config
from tourquote.core.logging import configure_logging
from tourquote.db.connection import close_db, get_engine
from tourquote.db.models import Base
from tourquote.errors import TourQuoteError
from tourquote.services import build_services

app = typer.Typer(
    name="tourquote",
    help="tourquote - survey-to-itinerary estimate generation",
    no_args_is_help=True,
)
web_cli = typer.Typer(help="Web API")
app.add_typer(web_cli, name="web")

console = Console()


def _run(coro):
    """Run a coroutine, disposing the engine afterwards and reporting domain errors."""

    async def _wrapped():
        try:
            return await coro
        finally:
            await close_db()

    try:
        return asyncio.run(_wrapped())
    except TourQuoteError as e:
        console.print(f"[bold red]✗[/bold red] {type(e).__name__}: {e}")
        raise typer.Exit(code=1) from e


@app.command()
def init(
    drop: bool = typer.Option(False, "--drop", help="Drop existing tables"),
):
    """Initialize database schema."""
    config = get_config()
    console.print(f"[bold]Initializing database:[/bold] {config.db.url}")

    async def _init():
        engine = get_engine()
        async with engine.begin() as conn:
            if drop:
                console.print("[yellow]Dropping existing tables...[/yellow]")
                await conn.run_sync(Base.metadata.drop_all)
            console.print("[green]Creating tables...[/green]")
            await conn.run_sync(Base.metadata.create_all)

    _run(_init())
    console.print("[bold green]✓[/bold green] Database initialized")


@app.command()
def generate(session_id: str = typer.Argument(..., help="Chat session ID")):
    """Generate an estimate for a completed survey."""
    configure_logging()

    async def _generate():
        return await build_services().orchestrator.generate_estimate(session_id)

    result = _run(_generate())
    metadata = result.metadata

    table = Table(title=f"Estimate #{result.estimate_id} ({result.status})")
    table.add_column("Day", justify="right")
    table.add_column("#", justify="right")
    table.add_column("Item")
    table.add_column("Qty", justify="right")
    table.add_column("Subtotal", justify="right")
    for item in result.items:
        name = item.display_name
        if item.placeholder:
            name = f"[yellow]{name} (TBD)[/yellow]"
        table.add_row(
            str(item.day), str(item.order_index), name, str(item.quantity), str(item.subtotal)
        )
    console.print(table)

    console.print(f"Share token: [bold]{result.share_token}[/bold]")
    console.print(f"Source: {metadata.source.value}" + (
        f" ({metadata.fallback_reason})" if metadata.fallback_reason else ""
    ))
    console.print(f"Confidence: [bold]{metadata.confidence_score}[/bold]/100")


@app.command()
def submit(session_id: str = typer.Argument(..., help="Chat session ID")):
    """Submit a session's estimate to an expert (idempotent)."""
    configure_logging()

    async def _submit():
        return await build_services().lifecycle.submit_to_expert(session_id)

    result = _run(_submit())
    if result.already_submitted:
        console.print(f"[yellow]Already submitted[/yellow] (status: {result.status})")
    else:
        console.print(f"[bold green]✓[/bold green] Submitted (status: {result.status})")
    if result.warning:
        console.print(f"[yellow]Warning:[/yellow] {result.warning}")


@app.command()
def send(estimate_id: int = typer.Argument(..., help="Estimate ID")):
    """Dispatch a pending estimate to the customer."""
    configure_logging()

    async def _send():
        return await build_services().lifecycle.send_estimate(estimate_id)

    status = _run(_send())
    console.print(f"[bold green]✓[/bold green] Estimate #{estimate_id} is now {status}")


@app.command()
def show(estimate_id: int = typer.Argument(..., help="Estimate ID")):
    """Show an estimate with its items and generation metadata."""

    async def _show():
        return await build_services().lifecycle.get_estimate(estimate_id)

    estimate = _run(_show())

    console.print(f"[bold]{estimate['title']}[/bold] (#{estimate['id']}, {estimate['status']})")
    table = Table()
    table.add_column("Day", justify="right")
    table.add_column("Item")
    table.add_column("Qty", justify="right")
    table.add_column("Subtotal", justify="right")
    for item in estimate["items"]:
        name = item["display_name"] + (" (TBD)" if item["placeholder"] else "")
        table.add_row(str(item["day"]), name, str(item["quantity"]), str(item["subtotal"]))
    console.print(table)
    console.print(f"Total: {estimate['total_amount']}")

    metadata = estimate.get("generation_metadata") or {}
    if metadata:
        console.print(
            f"Confidence: {metadata.get('confidence_score')}/100 "
            f"(source: {metadata.get('source')})"
        )
    for revision in estimate.get("revision_history") or []:
        console.print(
            f"Revision {revision['revision_number']} ({revision['status']}): "
            f"{revision.get('note') or '-'}"
        )


@web_cli.command("serve")
def web_serve(
    host: str = typer.Option("0.0.0.0", help="Host to bind"),
    port: int = typer.Option(8000, help="Port to bind"),
    reload: bool = typer.Option(False, help="Enable autoreload (dev only)"),
):
    """Run the FastAPI server."""
    import uvicorn

    typer.echo(f"Starting tourquote API on http://{host}:{port}")
    uvicorn.run(
        "tourquote.web.app:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
        workers=1,
    )


def main():
    app()


if __name__ == "__main__":
    main()
