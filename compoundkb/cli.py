"""CLI entry point for compoundkb."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import typer
from rich import print as rprint

from compoundkb.activity import read_activity_log
from compoundkb.config import Config
from compoundkb.errors import NotFoundError
from compoundkb.export import export_solutions, import_solutions
from compoundkb.pipeline import build_engine
from compoundkb.query.retriever import Retriever, results_to_json
from compoundkb.storage.db import get_connection
from compoundkb.storage.repository import Repository

app = typer.Typer(help="Capture solved problems as durable, searchable knowledge.")

STATUS_STYLES = {
    "created": "green",
    "incremented": "cyan",
    "linked": "blue",
    "no_finding": "dim",
    "skipped": "yellow",
}


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_config(db_path: str | None) -> Config:
    config = Config.load()
    if db_path:
        config.db_path = Path(db_path)
    issues = config.validate()
    if issues:
        for issue in issues:
            rprint(f"[red]Config error: {issue}[/red]")
        raise typer.Exit(1)
    return config


def _open_repo(config: Config, must_exist: bool = True) -> Repository:
    if must_exist and not config.db_path.exists():
        rprint(
            f"[red]Database not found at {config.db_path}. "
            "Run 'compoundkb capture' first.[/red]"
        )
        raise typer.Exit(1)
    return Repository(get_connection(config.db_path))


def read_transcript(path: Path) -> list[str]:
    """Load transcript events from a file.

    ``.jsonl`` files hold one event per line, either a JSON string or an
    object with a ``text`` (or ``content``) field. Any other file is split on
    blank lines, one event per paragraph.
    """
    text = path.read_text()
    if path.suffix == ".jsonl":
        events: list[str] = []
        for line in text.splitlines():
            if not line.strip():
                continue
            entry = json.loads(line)
            if isinstance(entry, str):
                events.append(entry)
            elif isinstance(entry, dict):
                events.append(str(entry.get("text") or entry.get("content") or ""))
        return events
    return [p.strip() for p in text.split("\n\n") if p.strip()]


@app.command()
def capture(
    transcript: Path = typer.Argument(help="Transcript file (.txt/.md paragraphs or .jsonl events)"),
    session_id: str = typer.Option("", "--session", "-s", help="Session identifier for provenance"),
    hint: str = typer.Option(None, "--hint", help="Category hint (e.g. performance-issue)"),
    use_claude: bool = typer.Option(False, "--claude", help="Extract with Claude instead of rules"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: text or json"),
    db_path: str = typer.Option(None, help="Database file path"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Capture knowledge from a finished session transcript."""
    _setup_logging(verbose)
    config = _load_config(db_path)
    if use_claude and not config.anthropic_api_key:
        rprint("[red]ANTHROPIC_API_KEY not set[/red]")
        raise typer.Exit(1)
    if not transcript.exists():
        rprint(f"[red]Transcript not found: {transcript}[/red]")
        raise typer.Exit(1)

    repo = _open_repo(config, must_exist=False)
    engine = build_engine(config, repo, use_claude=use_claude)
    try:
        result = engine.capture_session(
            read_transcript(transcript),
            session_id=session_id or transcript.stem,
            category_hint=hint,
        )
    finally:
        repo.close()

    if format == "json":
        typer.echo(result.to_json())
        return

    style = STATUS_STYLES.get(result.status, "white")
    rprint(f"[{style}]{result.status}[/{style}]", end=" ")
    if result.document is None:
        rprint(result.note)
        return
    doc = result.document
    rprint(f"{doc.id} ({doc.category}, occurrences: {doc.occurrence_count})")
    if result.linked_to:
        rprint(f"  linked to near-duplicate {result.linked_to}")
    if result.pattern:
        rprint(f"[bold magenta]Promoted critical pattern:[/bold magenta] {result.pattern.statement}")


@app.command()
def search(
    query: str = typer.Argument(help="What you are about to work on"),
    category: str = typer.Option(None, "--category", "-c", help="Restrict to one category"),
    limit: int = typer.Option(10, "--limit", "-n"),
    format: str = typer.Option("text", "--format", "-f", help="Output format: text or json"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Search past solutions, critical patterns first."""
    config = _load_config(db_path)
    repo = _open_repo(config)
    try:
        results = Retriever(repo).search(query, category=category, limit=limit)
    finally:
        repo.close()

    if format == "json":
        typer.echo(results_to_json(query, results))
        return
    if not results:
        rprint("No matching solutions.")
        return
    for r in results:
        doc = r.document
        if r.pattern:
            rprint(f"[bold magenta]CRITICAL[/bold magenta] {r.pattern.statement}")
            rprint(f"  from {doc.id}")
        else:
            rprint(f"[bold]{doc.title}[/bold] [dim]({doc.category}, x{doc.occurrence_count}, score {r.score:.2f})[/dim]")
            rprint(f"  fix: {doc.fix}")


@app.command()
def patterns(
    all_patterns: bool = typer.Option(False, "--all", help="Include demoted patterns"),
    markdown: bool = typer.Option(False, "--markdown", help="Print the block injected into planning"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """List critical patterns."""
    config = _load_config(db_path)
    repo = _open_repo(config)
    try:
        if markdown:
            typer.echo(Retriever(repo).render_critical_patterns())
            return
        found = repo.patterns(active_only=not all_patterns)
        if not found:
            rprint("No critical patterns yet.")
        for p in found:
            state = "[green]active[/green]" if p.still_active else "[dim]demoted[/dim]"
            rprint(f"{p.pattern_id} {state} {p.statement}")
    finally:
        repo.close()


@app.command()
def demote(
    pattern_id: str = typer.Argument(help="Pattern to deactivate"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Deactivate a critical pattern. This cannot be undone."""
    config = _load_config(db_path)
    repo = _open_repo(config)
    try:
        pattern = repo.demote_pattern(pattern_id)
    except NotFoundError as e:
        rprint(f"[red]{e}[/red]")
        raise typer.Exit(1)
    finally:
        repo.close()
    rprint(f"Demoted {pattern.pattern_id}: {pattern.statement}")


@app.command()
def show(
    doc_id: str = typer.Argument(help="Solution id"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Show one solution document as JSON."""
    config = _load_config(db_path)
    repo = _open_repo(config)
    try:
        doc = repo.get(doc_id)
    except NotFoundError as e:
        rprint(f"[red]{e}[/red]")
        raise typer.Exit(1)
    finally:
        repo.close()
    typer.echo(json.dumps(doc.to_dict(), indent=2))


@app.command()
def stats(
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Show statistics about captured knowledge."""
    config = _load_config(db_path)
    repo = _open_repo(config)
    try:
        s = repo.get_stats()
    finally:
        repo.close()

    rprint("[bold]compoundkb statistics:[/bold]")
    rprint(f"  Solutions:         {s['total_solutions']}")
    rprint(f"  Occurrences:       {s['total_occurrences']}")
    rprint(f"  Active patterns:   {s['active_patterns']}")
    rprint(f"  Demoted patterns:  {s['demoted_patterns']}")
    if s["by_category"]:
        rprint("\n[bold]By category:[/bold]")
        for category, count in s["by_category"].items():
            rprint(f"  {category}: {count}")


@app.command()
def activity(
    tool: str = typer.Option(None, "--tool", "-t", help="Only show calls to this MCP tool"),
    limit: int = typer.Option(20, "--limit", "-n", help="Number of entries to show"),
    log_path: Path = typer.Option(None, help="Activity log file (default: next to the database)"),
) -> None:
    """Show what the MCP server served and captured, most recent first."""
    entries = read_activity_log(limit=limit, tool_name=tool, log_path=log_path)
    if not entries:
        rprint("[yellow]No activity recorded yet.[/yellow] Calls are logged when agents use the MCP tools.")
        return

    errors = sum(1 for e in entries if e.get("error"))
    rprint(f"[bold]{len(entries)} call(s)[/bold], {errors} with errors\n")
    for entry in entries:
        status = "[red]error[/red]" if entry.get("error") else "[green]ok[/green]"
        when = str(entry.get("timestamp", ""))[:19].replace("T", " ")
        rprint(f"{when}  [bold]{entry.get('tool_name')}[/bold]  {status}  {entry.get('duration_ms', 0)}ms")
        typer.echo(f"  args: {json.dumps(entry.get('arguments', {}))[:120]}")
        if entry.get("error"):
            typer.echo(f"  error: {entry['error']}")


@app.command()
def export(
    out_dir: Path = typer.Option(Path("docs/solutions"), "--out", "-o", help="Output directory"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Write solutions as markdown files, one per document, grouped by category."""
    config = _load_config(db_path)
    repo = _open_repo(config)
    try:
        written = export_solutions(repo, out_dir)
    finally:
        repo.close()
    rprint(f"[green]Wrote {len(written)} file(s) to {out_dir}[/green]")


@app.command("import")
def import_(
    in_dir: Path = typer.Argument(help="Directory laid out as <category>/<id>.md"),
    db_path: str = typer.Option(None, help="Database file path"),
) -> None:
    """Load markdown solution files into the database."""
    config = _load_config(db_path)
    repo = _open_repo(config, must_exist=False)
    try:
        imported = import_solutions(repo, in_dir)
    finally:
        repo.close()
    rprint(f"[green]Imported {len(imported)} solution(s)[/green]")


@app.command()
def serve() -> None:
    """Start the MCP server (called by Claude Code / Cursor automatically)."""
    import asyncio
    from compoundkb.mcp_server import main as mcp_main
    asyncio.run(mcp_main())


if __name__ == "__main__":
    app()
