"""Run, validate and version commands."""

from __future__ import annotations

from datetime import date
from pathlib import Path
from typing import Annotated

import typer
from rich.markup import escape
from rich.table import Table

from shipwright.cli._helpers import console, err_console, parse_pairs, resolve_pipeline

_STATUS_STYLE = {
    "succeeded": "green",
    "failed": "red",
    "skipped": "yellow",
    "not_run": "dim",
}


def _parse_date(value: str | None) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        err_console.print(f"[red]Error:[/red] Invalid date '{escape(value)}'. Use YYYY-MM-DD.")
        raise typer.Exit(2) from None


def _build_history(commit_count: int | None, repo: Path, branch: str | None, tag: str | None):
    from shipwright.versioning import GitHistory, StaticHistory

    if commit_count is not None:
        return StaticHistory(commit_count, branch, tag)
    return GitHistory(repo)


def _collect_secrets(definition, env_dirs: list[Path], files: dict[str, str], from_env: bool):
    from shipwright.secrets import EnvSecretSource

    names = {s.name for s in definition.spec.secrets}
    for profile in definition.spec.profiles:
        names.update(profile.requires)

    secrets: dict[str, bytes | str] = {}
    if from_env:
        secrets.update(EnvSecretSource(env_dirs).fetch(sorted(names)))
    for name, file_path in files.items():
        try:
            secrets[name] = Path(file_path).read_bytes()
        except OSError as e:
            err_console.print(f"[red]Error:[/red] Cannot read secret file for {name}: {e}")
            raise typer.Exit(2) from None
    return secrets


def run(
    pipeline_ref: Annotated[str, typer.Argument(help="Pipeline YAML path or stored name")],
    input_: Annotated[
        list[str] | None, typer.Option("--input", "-i", help="Input in key=value format")
    ] = None,
    secret_file: Annotated[
        list[str] | None,
        typer.Option("--secret-file", help="Secret read from a file, NAME=path"),
    ] = None,
    env_secrets: Annotated[
        bool,
        typer.Option(help="Read declared secrets from the environment and .env files"),
    ] = True,
    branch: Annotated[str | None, typer.Option(help="Branch name (default: from git)")] = None,
    tag: Annotated[str | None, typer.Option(help="Tag at HEAD (default: from git)")] = None,
    check: Annotated[
        list[str] | None,
        typer.Option("--check", help="Upstream check result, name=status"),
    ] = None,
    commit_count: Annotated[
        int | None, typer.Option(help="Commit count; skips reading git history")
    ] = None,
    build_date: Annotated[
        str | None, typer.Option("--date", help="Build date YYYY-MM-DD (default: today, UTC)")
    ] = None,
    repo: Annotated[Path, typer.Option(help="Git repository for history")] = Path("."),
    workdir: Annotated[Path | None, typer.Option(help="Working directory for steps")] = None,
    timeout: Annotated[float | None, typer.Option(help="Run time budget in seconds")] = None,
    store_dir: Annotated[Path | None, typer.Option("--dir", help="Pipeline store dir")] = None,
    json_output: Annotated[bool, typer.Option("--json", help="Print JSON summary")] = False,
    report: Annotated[Path | None, typer.Option(help="Write a Markdown report here")] = None,
    audit_db: Annotated[Path | None, typer.Option(help="Path to audit database")] = None,
    no_audit: Annotated[bool, typer.Option(help="Disable audit logging")] = False,
) -> None:
    """Run a pipeline and exit with its verdict."""
    from shipwright.context import RunFacts
    from shipwright.engine import run_pipeline
    from shipwright.secrets import SecretVault

    definition, pipeline_dir = resolve_pipeline(pipeline_ref, store_dir)
    inputs = parse_pairs(input_, "--input")
    checks = parse_pairs(check, "--check")
    files = parse_pairs(secret_file, "--secret-file")
    day = _parse_date(build_date)
    workdir = (workdir or Path.cwd()).resolve()

    history = _build_history(commit_count, repo, branch, tag)
    facts = RunFacts(
        branch=branch if branch is not None else history.branch(),
        tag=tag if tag is not None else history.tag(),
        checks=checks,
    )
    secrets = _collect_secrets(definition, [pipeline_dir, workdir], files, env_secrets)
    with SecretVault(secrets) as vault:
        literals = vault.literals()

    kwargs = {"clock": (lambda: day)} if day is not None else {}
    summary = run_pipeline(
        definition,
        history=history,
        inputs=inputs,
        secrets=secrets,
        facts=facts,
        workdir=workdir,
        timeout_seconds=timeout,
        **kwargs,
    )

    if not no_audit:
        from shipwright.audit import AuditLogger

        audit = AuditLogger(audit_db)
        try:
            audit.log(summary, literals=literals)
        finally:
            audit.close()

    if report is not None:
        from shipwright.report import write_report

        write_report(summary, report)

    if json_output:
        typer.echo(summary.to_json())
    else:
        _display_summary(summary)

    if summary.exit_code != 0:
        raise typer.Exit(summary.exit_code)


def _display_summary(summary) -> None:
    table = Table(title=f"Pipeline: {summary.pipeline} ({summary.run_id})")
    table.add_column("Step", style="cyan")
    table.add_column("Status")
    table.add_column("Reason")
    table.add_column("Duration", justify="right")
    for step in summary.steps:
        style = _STATUS_STYLE.get(str(step.status), "")
        table.add_row(
            step.name,
            f"[{style}]{step.status}[/{style}]" if style else str(step.status),
            escape(step.reason or ""),
            f"{step.duration_ms}ms",
        )
    if summary.steps:
        console.print(table)

    if summary.gate is not None:
        gate_table = Table(title="Gate")
        gate_table.add_column("Predicate", style="cyan")
        gate_table.add_column("Outcome")
        gate_table.add_column("Required")
        gate_table.add_column("Reason")
        for r in summary.gate.results:
            outcome = "[green]pass[/green]" if r.passed else "[red]fail[/red]"
            gate_table.add_row(r.name, outcome, "yes" if r.required else "no", escape(r.reason))
        console.print(gate_table)

    if summary.version:
        console.print(f"[bold]Version:[/bold] {summary.version}")
    if summary.profile:
        console.print(f"[bold]Profile:[/bold] {summary.profile}")
    if summary.error:
        console.print(f"[red]Error ({summary.status}):[/red] {escape(summary.error['message'])}")
        if summary.failed_step:
            for step in summary.steps:
                if step.name == summary.failed_step and step.output:
                    console.print(escape(step.output))
    elif summary.success:
        console.print("[green]Passed[/green]")
    else:
        console.print("[red]Gate failed[/red]")


def validate(
    pipeline_ref: Annotated[str, typer.Argument(help="Pipeline YAML path or stored name")],
    store_dir: Annotated[Path | None, typer.Option("--dir", help="Pipeline store dir")] = None,
) -> None:
    """Validate a pipeline definition and display its structure."""
    from shipwright.artifacts import order_profiles

    definition, _ = resolve_pipeline(pipeline_ref, store_dir)
    spec = definition.spec

    table = Table(title=f"Pipeline: {definition.metadata.name}")
    table.add_column("Step", style="cyan")
    table.add_column("When")
    table.add_column("Secrets")
    table.add_column("Outputs")
    table.add_column("Profile")
    for step in spec.steps:
        table.add_row(
            step.name,
            escape(str(step.when)),
            ", ".join(step.secrets) or "-",
            ", ".join(step.outputs) or "-",
            step.requires_profile or "-",
        )
    console.print(table)

    if spec.profiles:
        profiles = Table(title="Profiles (selection order)")
        profiles.add_column("Profile", style="cyan")
        profiles.add_column("Requires")
        profiles.add_column("Places")
        for profile in order_profiles(spec.profiles):
            profiles.add_row(
                profile.name + (" (fallback)" if profile.fallback else ""),
                ", ".join(profile.requires) or "-",
                ", ".join(p.path for p in profile.placements) or "-",
            )
        console.print(profiles)

    if spec.gate.predicates:
        gate = Table(title="Gate")
        gate.add_column("Predicate", style="cyan")
        gate.add_column("Type")
        gate.add_column("Required")
        for pred in spec.gate.predicates:
            gate.add_row(pred.name, pred.type, "yes" if pred.required else "no")
        console.print(gate)

    console.print(f"[green]Valid[/green] ({len(spec.steps)} step(s))")


def version(
    commit_count: Annotated[
        int | None, typer.Option(help="Commit count; skips reading git history")
    ] = None,
    build_date: Annotated[
        str | None, typer.Option("--date", help="Build date YYYY-MM-DD (default: today, UTC)")
    ] = None,
    repo: Annotated[Path, typer.Option(help="Git repository for history")] = Path("."),
    separator: Annotated[str, typer.Option(help="Separator: '_' or '.'")] = "_",
) -> None:
    """Print the deterministic build identifier for HEAD."""
    from shipwright.errors import IncompleteHistoryError
    from shipwright.versioning import SEPARATORS, VersionGenerator

    if separator not in SEPARATORS:
        err_console.print("[red]Error:[/red] Separator must be '_' or '.'")
        raise typer.Exit(2)
    day = _parse_date(build_date)
    history = _build_history(commit_count, repo, None, None)
    kwargs = {"clock": (lambda: day)} if day is not None else {}
    try:
        typer.echo(VersionGenerator(history, separator=separator, **kwargs).generate())
    except IncompleteHistoryError as e:
        err_console.print(f"[red]Error:[/red] {escape(e.message)}")
        raise typer.Exit(5) from None
