from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable

import typer
from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table
from sqlalchemy.orm import Session

from pitchmatch import services
from pitchmatch.config import get_settings
from pitchmatch.db import current_db_path, init_db, session_scope
from pitchmatch.errors import MatchingError
from pitchmatch.importer import import_file

app = typer.Typer(help="Startup/investor compatibility matching engine")
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
    project_root: str | None = typer.Option(
        None, "--project-root", help="Directory containing config/ and data/.",
    ),
    db: str | None = typer.Option(None, "--db", help="SQLite database file (overrides PITCHMATCH_DB)."),
    json_output: bool = typer.Option(False, "--json", help="Output raw JSON for scripting."),
    verbose: int = typer.Option(0, "-v", "--verbose", count=True, help="Increase log verbosity."),
) -> None:
    if project_root:
        os.environ["PITCHMATCH_HOME"] = str(Path(project_root).expanduser().resolve())
    if db:
        os.environ["PITCHMATCH_DB"] = str(Path(db).expanduser().resolve())
    if project_root or db:
        get_settings.cache_clear()
    ctx.obj = {"json_output": json_output, "verbose": verbose}
    _configure_logging(verbose=verbose, json_output=json_output)


def _wants_json(ctx: typer.Context) -> bool:
    return bool(ctx.obj and ctx.obj.get("json_output"))


def _format_scalar(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:.4f}"
    if value is None:
        return "-"
    return str(value)


def _render_table(title: str, rows: list[tuple[str, str]], *, border_style: str = "cyan") -> None:
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    for field, value in rows:
        table.add_row(field, value)
    console.print(Panel(table, title=title, border_style=border_style))


def _print(title: str, payload: dict[str, Any], ctx: typer.Context) -> None:
    if _wants_json(ctx):
        typer.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return

    scalar_rows = [
        (key, _format_scalar(value)) for key, value in payload.items()
        if isinstance(value, (str, int, float, bool)) or value is None
    ]
    if scalar_rows:
        _render_table(title, scalar_rows)
    for key, value in payload.items():
        if isinstance(value, dict):
            _render_table(
                f"{title} · {key}",
                [(k, _format_scalar(v)) for k, v in value.items()],
                border_style="magenta",
            )
        elif isinstance(value, list) and value:
            if all(isinstance(v, str) for v in value):
                console.print(Panel("\n".join(f"- {v}" for v in value), title=f"{title} · {key}", border_style="yellow"))
            else:
                _render_table(
                    f"{title} · {key}",
                    [("items", str(len(value))), ("preview", json.dumps(value[:3], ensure_ascii=False))],
                    border_style="yellow",
                )


def _print_matches(title: str, rows: list[dict[str, Any]], ctx: typer.Context) -> None:
    if _wants_json(ctx):
        typer.echo(json.dumps(rows, indent=2, ensure_ascii=False))
        return
    table = Table(show_header=True, header_style="bold cyan", box=ROUNDED)
    for column in ("id", "startup", "investor", "type", "score", "confidence", "action", "status"):
        table.add_column(column)
    for r in rows:
        table.add_row(
            str(r["id"]), r["startup_id"], r["investor_id"], r["match_type"],
            str(r["overall_score"]), _format_scalar(r["confidence"]),
            r["recommended_action"], r["status"],
        )
    console.print(Panel(table, title=title, border_style="cyan"))


def _run(fn: Callable[[Session], Any]) -> Any:
    """Run against a fresh session, turning engine errors into a clean exit."""
    init_db()
    try:
        with session_scope() as session:
            return fn(session)
    except (MatchingError, ValueError) as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc


@app.command("init-db")
def init_db_command(ctx: typer.Context) -> None:
    init_db()
    _print("init-db", {"status": "ok", "database": str(current_db_path())}, ctx)


@app.command("import")
def import_command(
    ctx: typer.Context,
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="XLSX or JSON file."),
) -> None:
    result = _run(lambda session: import_file(path, session))
    _print("import", result.model_dump(), ctx)


@app.command("match")
def match_command(
    ctx: typer.Context,
    startup_id: str = typer.Argument(...),
    investor_id: str = typer.Argument(...),
    match_type: str = typer.Option("investment", "--type", help="Match type."),
    force: bool = typer.Option(False, "--force", help="Recompute even if a fresh record exists."),
) -> None:
    def _compute(session):
        outcome = services.get_or_compute(session, startup_id, investor_id, match_type, force_recalculate=force)
        return {**services.match_record_dict(outcome.record), "from_cache": outcome.from_cache}

    _print("match", _run(_compute), ctx)


@app.command("lookup")
def lookup_command(
    ctx: typer.Context,
    startup_id: str = typer.Argument(...),
    investor_id: str = typer.Argument(...),
    match_type: str = typer.Option("investment", "--type", help="Match type."),
) -> None:
    def _lookup(session):
        outcome = services.get_or_compute(session, startup_id, investor_id, match_type, read_only=True)
        return services.match_record_dict(outcome.record)

    _print("lookup", _run(_lookup), ctx)


@app.command("list")
def list_command(
    ctx: typer.Context,
    startup_id: str | None = typer.Option(None, "--startup", help="Startup id."),
    investor_id: str | None = typer.Option(None, "--investor", help="Investor id."),
    limit: int = typer.Option(20, help="Max rows."),
) -> None:
    if not startup_id and not investor_id:
        raise typer.BadParameter("Provide --startup or --investor")
    rows = _run(lambda session: services.list_matches(
        session, startup_id=startup_id, investor_id=investor_id, limit=limit,
    ))
    _print_matches("matches", rows, ctx)


@app.command("feedback")
def feedback_command(
    ctx: typer.Context,
    match_id: int = typer.Argument(...),
    side: str = typer.Option(..., help="startup, investor or admin."),
    rating: str | None = typer.Option(None, help="excellent, good, average, poor or no-feedback."),
    notes: str | None = typer.Option(None, help="Free-text notes."),
    outcome: str | None = typer.Option(None, help="Actual outcome, e.g. investment-made."),
) -> None:
    record = _run(lambda session: services.match_record_dict(services.submit_feedback(
        session, match_id, side, feedback=rating, notes=notes, actual_outcome=outcome,
    )))
    _print("feedback", record, ctx)


@app.command("status")
def status_command(
    ctx: typer.Context,
    match_id: int = typer.Argument(...),
    status: str = typer.Argument(..., help="presented, acted-upon, completed, expired or archived."),
) -> None:
    record = _run(lambda session: services.match_record_dict(services.update_status(session, match_id, status)))
    _print("status", record, ctx)


@app.command("expire")
def expire_command(ctx: typer.Context) -> None:
    count = _run(services.expire_stale)
    _print("expire", {"expired": count}, ctx)


@app.command("stats")
def stats_command(ctx: typer.Context) -> None:
    _print("stats", _run(services.compute_stats), ctx)


@app.command("serve")
def serve_command(
    host: str = typer.Option("127.0.0.1", help="Bind host."),
    port: int = typer.Option(8001, help="Bind port."),
) -> None:
    import uvicorn
    uvicorn.run("pitchmatch.app:app", host=host, port=port)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
