from typing import Optional

import typer

from callsync.core.config import settings
from callsync.core.database import SessionLocal, init_db
from callsync.core.logging import configure_logging
from callsync.schemas import SyncMode
from callsync.services.audit import log_sync_result
from callsync.services.retell_client import RetellError
from callsync.services.sync import run_sync

app = typer.Typer()


@app.callback()
def main(log_level: str = typer.Option(settings.log_level, help="Logging level")) -> None:
    configure_logging(log_level)


@app.command("init-db")
def init_db_command() -> None:
    init_db()
    typer.echo("Database tables created")


@app.command()
def sync(
    mode: SyncMode = typer.Option(SyncMode.SCOPED, help="scoped or global"),
    workers: Optional[int] = typer.Option(None, help="Concurrent scope workers"),
) -> None:
    if mode is SyncMode.CONNECTIVITY_TEST:
        raise typer.BadParameter("use the test-connection command", param_hint="--mode")
    overrides = {"workers": workers} if workers else {}
    try:
        summary = run_sync(mode, session_factory=SessionLocal, **overrides)
    except RetellError as exc:
        typer.echo(f"Sync failed: {exc}", err=True)
        raise typer.Exit(code=1)
    db = SessionLocal()
    try:
        log_sync_result(db, summary, source="cli")
    finally:
        db.close()
    typer.echo(summary.model_dump_json(indent=2))


@app.command("test-connection")
def test_connection() -> None:
    try:
        result = run_sync(SyncMode.CONNECTIVITY_TEST)
    except RetellError as exc:
        typer.echo(f"Configuration error: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(result.model_dump_json(indent=2))
    if not result.reachable:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
