from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, NoReturn

import typer
from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from quadrant import services, store
from quadrant.config import get_settings
from quadrant.db import clean_session_id, init_db, session_scope
from quadrant.importer import CsvImportError
from quadrant.priority import Priority
from quadrant.store import InitiativeNotFound
from quadrant.types import User

app = typer.Typer(help="Collaborative Impact x Complexity scoring of an initiative backlog")
console = Console()

_PRIORITY_STYLE = {"High": "red", "Medium": "yellow", "Low": "green"}


def _configure_logging(*, verbose: int, json_output: bool) -> None:
    if verbose <= 0:
        level = logging.ERROR
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    handlers: list[logging.Handler]
    if json_output:
        handlers = [logging.StreamHandler()]
        fmt = "%(levelname)s: %(message)s"
    else:
        handlers = [RichHandler(console=console, show_time=False, show_path=False, markup=True)]
        fmt = "%(message)s"

    logging.basicConfig(level=level, format=fmt, handlers=handlers, force=True)


@app.callback()
def app_callback(
    ctx: typer.Context,
    db_path: Path | None = typer.Option(None, "--db-path", help="SQLite file (defaults to settings)."),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    ctx.obj = {"json_output": json_output, "verbose": verbose, "db_path": db_path}
    _configure_logging(verbose=verbose, json_output=json_output)


def _wants_json(ctx: typer.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("json_output"))


def _open_db(ctx: typer.Context) -> None:
    init_db((ctx.obj or {}).get("db_path"))


def _session_id(raw: str) -> str:
    try:
        return clean_session_id(raw)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _fail(message: str) -> NoReturn:
    console.print(f"[red]✗[/red] {message}")
    raise typer.Exit(code=1)


def _echo_json(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))


def _fmt(value: float | None) -> str:
    return "-" if value is None else f"{value:.1f}"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command("import")
def import_command(
    ctx: typer.Context,
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="CSV or XLSX file."),
    session_id: str = typer.Option(..., "--session", "-s", help="Scoring session id."),
) -> None:
    """Replace the session's initiatives with the rows of FILE."""
    sid = _session_id(session_id)
    _open_db(ctx)
    try:
        with session_scope() as session:
            if file.suffix.lower() == ".xlsx":
                snapshot = services.import_xlsx(session, sid, file)
            else:
                snapshot = services.import_text(session, sid, file.read_text(encoding="utf-8-sig"))
    except CsvImportError as exc:
        _fail(str(exc))
    payload = {"session_id": sid, "total_imported": len(snapshot)}
    if _wants_json(ctx):
        _echo_json(payload)
        return
    console.print(f"[green]✓[/green] Imported {len(snapshot)} initiatives into session '{sid}'")


@app.command("queue")
def queue_command(
    ctx: typer.Context,
    session_id: str = typer.Option(..., "--session", "-s"),
    user_id: str = typer.Option(..., "--user-id", "-u"),
) -> None:
    """Show what USER still has to score, in voting order."""
    sid = _session_id(session_id)
    _open_db(ctx)
    with session_scope() as session:
        queue = services.voting_queue(session, sid, user_id)
    items = [services.initiative_summary(i) for i in queue]
    if _wants_json(ctx):
        _echo_json({"remaining": len(items), "items": items})
        return
    if not items:
        console.print(Panel("[bold green]All initiatives scored[/bold green]", border_style="green"))
        return
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("#", justify="right")
    table.add_column("ID", justify="right")
    table.add_column("Priority")
    table.add_column("Team")
    table.add_column("Initiative")
    for idx, item in enumerate(items, start=1):
        style = _PRIORITY_STYLE.get(item["priority"], "white")
        table.add_row(str(idx), str(item["id"]), f"[{style}]{item['priority']}[/{style}]",
                      item["team"], item["name"])
    console.print(Panel(table, title=f"queue · {len(items)} remaining", border_style="cyan"))


@app.command("vote")
def vote_command(
    ctx: typer.Context,
    session_id: str = typer.Option(..., "--session", "-s"),
    initiative_id: int = typer.Option(..., "--initiative-id", "-i"),
    user_id: str = typer.Option(..., "--user-id", "-u"),
    user_name: str = typer.Option(..., "--name"),
    team: str = typer.Option(..., "--team"),
    impact: int = typer.Option(..., "--impact", min=0, max=100),
    complexity: int = typer.Option(..., "--complexity", min=0, max=100),
) -> None:
    """Submit (or replace) a vote."""
    settings = get_settings()
    if team not in settings.teams:
        raise typer.BadParameter(f"team must be one of: {', '.join(settings.teams)}")
    sid = _session_id(session_id)
    _open_db(ctx)
    user = User(id=user_id, name=user_name, team=team)
    try:
        with session_scope() as session:
            init = services.cast_vote(session, sid, initiative_id, user, impact, complexity)
    except InitiativeNotFound as exc:
        _fail(str(exc))
    detail = services.initiative_detail(init, settings.oversight_team, user_id)
    if _wants_json(ctx):
        _echo_json(detail)
        return
    console.print(
        f"[green]✓[/green] Vote saved for '{init.name}' "
        f"(impact {impact}, complexity {complexity}; {len(init.votes)} votes total)"
    )


@app.command("matrix")
def matrix_command(
    ctx: typer.Context,
    session_id: str = typer.Option(..., "--session", "-s"),
    team: str | None = typer.Option(None, "--team", help="Only initiatives owned by this team."),
    priority: str | None = typer.Option(None, "--priority", help="High, Medium or Low."),
) -> None:
    """Weighted Impact x Complexity coordinates of voted initiatives."""
    if priority and priority not in {p.value for p in Priority}:
        raise typer.BadParameter("priority must be High, Medium or Low")
    sid = _session_id(session_id)
    _open_db(ctx)
    with session_scope() as session:
        result = services.matrix(session, sid, get_settings().oversight_team, team=team, priority=priority)
    if _wants_json(ctx):
        _echo_json(result)
        return
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("Initiative")
    table.add_column("Team")
    table.add_column("Priority")
    table.add_column("Impact", justify="right")
    table.add_column("Complexity", justify="right")
    table.add_column("Votes", justify="right")
    table.add_column("Quadrant")
    for p in sorted(result["points"], key=lambda p: -p["avg_impact"]):
        table.add_row(p["name"], p["team"], p["priority"], _fmt(p["avg_impact"]),
                      _fmt(p["avg_complexity"]), str(p["vote_count"]), p["quadrant"])
    title = f"matrix · {result['shown']} of {result['plotted']} initiatives"
    console.print(Panel(table, title=title, border_style="green"))


@app.command("stats")
def stats_command(
    ctx: typer.Context,
    session_id: str = typer.Option(..., "--session", "-s"),
    user_id: str | None = typer.Option(None, "--user-id", "-u"),
) -> None:
    """Counts by priority and team."""
    sid = _session_id(session_id)
    _open_db(ctx)
    with session_scope() as session:
        stats = services.compute_stats(store.load_snapshot(session, sid), user_id)
    if _wants_json(ctx):
        _echo_json(stats)
        return
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("total", str(stats["total"]))
    for label, count in stats["by_priority"].items():
        table.add_row(f"priority · {label}", str(count))
    for label, count in sorted(stats["by_team"].items()):
        table.add_row(f"team · {label}", str(count))
    if user_id:
        table.add_row("pending votes", str(stats["pending_votes"]))
    console.print(Panel(table, title=f"stats · {sid}", border_style="cyan"))


@app.command("teams")
def teams_command(ctx: typer.Context) -> None:
    """List configured teams; the last one is the oversight team."""
    settings = get_settings()
    if _wants_json(ctx):
        _echo_json({"teams": settings.teams, "oversight_team": settings.oversight_team})
        return
    for team in settings.teams:
        marker = " [bold yellow](oversight, impact x2)[/bold yellow]" if team == settings.oversight_team else ""
        console.print(f"• {team}{marker}")


@app.command("serve")
def serve_command(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8001, "--port"),
    reload: bool = typer.Option(False, "--reload"),
) -> None:
    """Run the HTTP API."""
    import uvicorn
    uvicorn.run("quadrant.app:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
