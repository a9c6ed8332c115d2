"""Shared CLI helpers: console, argument parsing and pipeline resolution."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from shipwright.errors import PipelineLoadError, PipelineNotFoundError
from shipwright.pipeline.schema import PipelineDefinition

console = Console()
err_console = Console(stderr=True)


def parse_pairs(values: list[str] | None, option: str) -> dict[str, str]:
    """Parse repeated ``key=value`` options into a dict, exiting on bad input."""
    pairs: dict[str, str] = {}
    for item in values or []:
        if "=" not in item:
            err_console.print(
                f"[red]Error:[/red] Invalid {option} format: '{escape(item)}'. Use key=value."
            )
            raise typer.Exit(2)
        key, value = item.split("=", 1)
        pairs[key.strip()] = value
    return pairs


def resolve_pipeline(ref: str, store_dir: Path | None = None) -> tuple[PipelineDefinition, Path]:
    """Load a pipeline by file path, or by name from the definition store.

    Returns the definition and the directory it was loaded from.
    """
    from shipwright.pipeline.loader import load_pipeline
    from shipwright.pipeline.store import PipelineStore

    path = Path(ref)
    try:
        if path.suffix in (".yaml", ".yml") or path.exists():
            return load_pipeline(path), path.resolve().parent
        store = PipelineStore(store_dir or _default_store_dir())
        return store.get(ref), store.path_of(ref).parent
    except (PipelineLoadError, PipelineNotFoundError) as e:
        err_console.print(f"[red]Error:[/red] {escape(e.message)}")
        raise typer.Exit(2) from None


def _default_store_dir() -> Path:
    from shipwright.config import get_pipelines_dir

    return get_pipelines_dir()
