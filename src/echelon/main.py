from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from echelon.config import settings
from echelon.data.repositories import HierarchyRepository
from echelon.data.storage import Database
from echelon.services import HierarchyService

cli = typer.Typer(help="Echelon CLI (unit hierarchy and access control)")


@cli.command()
def version() -> None:
    """Print runtime version."""
    typer.echo(f"Echelon {settings.app.version}")


@cli.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Host to bind"),
    port: int = typer.Option(8000, help="Port to bind"),
    reload: bool = typer.Option(False, help="Enable autoreload for local development"),
) -> None:
    """Run the Echelon API server."""
    uvicorn.run(
        "echelon.api.main:app",
        host=host,
        port=port,
        reload=reload,
        app_dir="src",
    )


@cli.command()
def verify(
    db_path: Optional[Path] = typer.Option(None, help="SQLite database (defaults to settings.paths.db_path)"),
) -> None:
    """Scan the stored unit tree for cycles, dangling parents and level violations."""
    db = Database(db_path or settings.paths.db_path)
    report = HierarchyService(HierarchyRepository(db)).integrity_report()
    typer.echo(json.dumps(report, indent=2, ensure_ascii=False))
    if not report["ok"]:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    cli()
