from __future__ import annotations

import asyncio
import logging

import typer
from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from solsniff import services
from solsniff.config import get_settings
from solsniff.db import init_db
from solsniff.models import AnalysisPipelineResult

app = typer.Typer(help="SolSniff: Solana ecosystem narrative detection")
console = Console()


def _configure_logging(*, verbose: int, json_output: bool) -> None:
    if verbose <= 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    handlers: list[logging.Handler]
    if json_output:
        handlers = [logging.StreamHandler()]
        fmt = "%(levelname)s: %(message)s"
    else:
        handlers = [RichHandler(console=console, show_time=False, show_path=False, markup=False)]
        fmt = "%(message)s"

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)


@app.callback()
def app_callback(
    ctx: typer.Context,
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    ctx.obj = {"json_output": json_output, "verbose": verbose}
    _configure_logging(verbose=verbose, json_output=json_output)


def _render_result(result: AnalysisPipelineResult) -> None:
    meta = result.metadata
    console.print(Panel(
        f"[bold]{services.summarize(result)}[/bold]\n"
        f"Period: {meta.started_at.date().isoformat()} to {meta.completed_at.date().isoformat()}"
        f" · {meta.duration_ms / 1000:.1f}s",
        title="SolSniff analysis",
        border_style="cyan",
    ))

    table = Table(show_header=True, header_style="bold green", box=ROUNDED)
    table.add_column("Narrative")
    table.add_column("Status")
    table.add_column("Confidence", justify="right")
    table.add_column("Trend")
    table.add_column("Signals", justify="right")
    table.add_column("Ideas", justify="right")
    for narrative in result.narratives:
        table.add_row(
            narrative.title,
            narrative.status,
            str(narrative.confidence_score),
            narrative.trend_direction,
            str(len(narrative.signals)),
            str(len(narrative.ideas)),
        )
    console.print(Panel(table, title="Narratives", border_style="green"))

    ideas = services.list_ideas(result)[:10]
    if ideas:
        idea_table = Table(show_header=True, header_style="bold yellow", box=ROUNDED)
        idea_table.add_column("Idea")
        idea_table.add_column("Category")
        idea_table.add_column("Feasibility")
        idea_table.add_column("Score", justify="right")
        idea_table.add_column("Narrative")
        for idea in ideas:
            idea_table.add_row(
                idea["title"], idea["category"], idea["feasibility"],
                str(idea["score"]), idea["narrative_title"],
            )
        console.print(Panel(idea_table, title="Top build ideas", border_style="yellow"))

    if result.errors:
        console.print(Panel("\n".join(result.errors), title="Errors", border_style="red"))


@app.command()
def run(
    ctx: typer.Context,
    save: bool = typer.Option(True, "--save/--no-save", help="Persist the result to the database."),
) -> None:
    """Run one full analysis and print the result."""
    settings = get_settings()
    if save:
        init_db(settings.database_path)

    state = services.AnalysisState()
    result = asyncio.run(services.run_analysis(state, persist=save))
    if result is None:
        console.print(f"[red]Analysis failed:[/red] {state.last_error}")
        raise typer.Exit(code=1)

    if ctx.obj and ctx.obj.get("json_output"):
        typer.echo(result.model_dump_json(indent=2))
    else:
        _render_result(result)


@app.command()
def serve(
    host: str | None = typer.Option(None, help="Bind address (defaults to API_HOST)."),
    port: int | None = typer.Option(None, help="Port (defaults to API_PORT)."),
) -> None:
    """Start the HTTP API."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("solsniff.app:app", host=host or settings.api_host, port=port or settings.api_port)


if __name__ == "__main__":
    app()
