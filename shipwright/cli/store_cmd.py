"""Pipeline store listing and run history commands."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.table import Table

from shipwright.cli._helpers import console


def list_pipelines(
    store_dir: Annotated[Path | None, typer.Option("--dir", help="Pipeline store dir")] = None,
) -> None:
    """List pipelines in the definition store."""
    from shipwright.config import get_pipelines_dir
    from shipwright.pipeline.store import PipelineStore

    store = PipelineStore(store_dir or get_pipelines_dir())
    names = store.names()
    if not names:
        console.print(f"No pipelines found in {escape(str(store.root))}")
        return

    table = Table(title=f"Pipelines in {store.root}")
    table.add_column("Name", style="cyan")
    table.add_column("Description")
    table.add_column("Steps", justify="right")
    table.add_column("File")
    for name in names:
        definition = store.get(name)
        table.add_row(
            name,
            escape(definition.metadata.description),
            str(len(definition.spec.steps)),
            store.path_of(name).name,
        )
    console.print(table)


def history(
    pipeline: Annotated[str | None, typer.Option(help="Filter by pipeline name")] = None,
    limit: Annotated[int, typer.Option(help="Number of runs to show")] = 20,
    audit_db: Annotated[Path | None, typer.Option(help="Path to audit database")] = None,
) -> None:
    """Show recent runs from the audit log."""
    from shipwright.audit import AuditLogger

    audit = AuditLogger(audit_db)
    try:
        records = audit.query(pipeline=pipeline, limit=limit)
    finally:
        audit.close()

    if not records:
        console.print("No runs recorded.")
        return

    table = Table(title="Run history")
    table.add_column("Run ID", style="cyan")
    table.add_column("Pipeline")
    table.add_column("Timestamp")
    table.add_column("Status")
    table.add_column("Version")
    table.add_column("Failed step")
    for r in records:
        style = "green" if r.status == "passed" else "red"
        table.add_row(
            r.run_id,
            r.pipeline,
            r.timestamp[:19],
            f"[{style}]{r.status}[/{style}]",
            r.version or "-",
            r.failed_step or "-",
        )
    console.print(table)
