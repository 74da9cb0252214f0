"""FormPilot CLI: inspect and maintain the local manual cache."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from formpilot import __version__, config
from formpilot.engine.catalog import convert_catalog_entry, parse_elements
from formpilot.engine.errors import CatalogError
from formpilot.engine.manual_store import FileManualStore
from formpilot.engine.url_patterns import detect_platform, url_matches_pattern, url_to_pattern

console = Console()

app = typer.Typer(
    name="formpilot",
    help="Cache-first form filling engine: manual cache maintenance.",
    no_args_is_help=True,
)
manuals_app = typer.Typer(help="List, inspect and import cached manuals.", no_args_is_help=True)
app.add_typer(manuals_app, name="manuals")

DirOption = typer.Option(None, "--dir", help="Manuals directory (default: $FORMPILOT_DIR/manuals)")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    config.load_env()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def version() -> None:
    """Print the installed version."""
    console.print(f"formpilot {__version__}")


def _store(directory: Optional[Path]) -> FileManualStore:
    return FileManualStore(directory or config.MANUALS_DIR)


def _health_style(score: float) -> str:
    if score >= 0.7:
        return "green"
    if score >= 0.3:
        return "yellow"
    return "red"


@manuals_app.command("list")
def list_manuals(
    directory: Optional[Path] = DirOption,
    task: Optional[str] = typer.Option(None, "--task", help="Only manuals for this task type"),
) -> None:
    """List cached manuals, healthiest first."""
    manuals = _store(directory).get_all()
    if task:
        manuals = [m for m in manuals if m.task_pattern == task]
    if not manuals:
        console.print("[yellow]No manuals found[/yellow]")
        raise typer.Exit(code=0)

    table = Table(title=f"Manuals ({len(manuals)})")
    table.add_column("ID", style="dim")
    table.add_column("Pattern")
    table.add_column("Task")
    table.add_column("Platform")
    table.add_column("Source")
    table.add_column("Steps", justify="right")
    table.add_column("Health", justify="right")
    table.add_column("Runs (ok/fail)", justify="right")

    for m in sorted(manuals, key=lambda m: m.health_score, reverse=True):
        style = _health_style(m.health_score)
        table.add_row(
            m.id,
            m.url_pattern,
            m.task_pattern,
            m.platform,
            m.source,
            str(len(m.steps)),
            f"[{style}]{m.health_score:.2f}[/{style}]",
            f"{m.success_count}/{m.failure_count}",
        )
    console.print(table)


@manuals_app.command()
def show(
    manual_id: str = typer.Argument(..., help="Manual ID"),
    directory: Optional[Path] = DirOption,
) -> None:
    """Show one manual's steps."""
    manual = _store(directory).get(manual_id)
    if manual is None:
        console.print(f"[red]Manual not found:[/red] {manual_id}")
        raise typer.Exit(code=1)

    console.print(f"[bold]{manual.id}[/bold]  {manual.url_pattern}  {escape(f'[{manual.task_pattern}]')}")
    console.print(f"platform={manual.platform} source={manual.source} health={manual.health_score:.2f}")

    table = Table()
    table.add_column("#", justify="right")
    table.add_column("Action")
    table.add_column("Locator")
    table.add_column("Value")
    table.add_column("Health", justify="right")
    for step in manual.sorted_steps():
        locator = ", ".join(
            f"{k}={v}" for k, v in step.locator.model_dump(by_alias=True, exclude_none=True).items()
        )
        table.add_row(
            str(step.order),
            step.action,
            locator,
            step.value or "",
            f"{step.health_score:.2f}",
        )
    console.print(table)


@manuals_app.command()
def remove(
    manual_id: str = typer.Argument(..., help="Manual ID"),
    directory: Optional[Path] = DirOption,
) -> None:
    """Delete a manual from the cache."""
    if _store(directory).remove(manual_id):
        console.print(f"[green]Removed[/green] {manual_id}")
    else:
        console.print(f"[red]Manual not found:[/red] {manual_id}")
        raise typer.Exit(code=1)


@manuals_app.command()
def pattern(
    url: str = typer.Argument(..., help="Concrete page URL"),
    directory: Optional[Path] = DirOption,
) -> None:
    """Show the generalized pattern for a URL and which manuals match it."""
    console.print(f"Pattern:  [bold]{url_to_pattern(url)}[/bold]")
    console.print(f"Platform: {detect_platform(url)}")

    matching = [m for m in _store(directory).get_all() if url_matches_pattern(url, m.url_pattern)]
    if not matching:
        console.print("[yellow]No cached manual matches this URL[/yellow]")
        return
    for m in matching:
        console.print(f"  {m.id}  {escape(f'[{m.task_pattern}]')}  health={m.health_score:.2f}")


@manuals_app.command()
def seed(directory: Optional[Path] = DirOption) -> None:
    """Copy the bundled template cookbooks into the cache (existing files are kept)."""
    target = directory or config.MANUALS_DIR
    before = {m.id for m in FileManualStore(target).get_all()}
    store = FileManualStore(target, seed_dir=config.SEED_DIR)
    added = [m for m in store.get_all() if m.id not in before]
    if not added:
        console.print("[dim]Nothing to seed; bundled cookbooks already present.[/dim]")
        return
    for m in added:
        console.print(f"[green]Seeded[/green] {m.id}  {m.url_pattern}")


@manuals_app.command("import-catalog")
def import_catalog(
    file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Catalog entry JSON file"),
    url: str = typer.Option(..., "--url", help="Page URL the entry applies to"),
    task: str = typer.Option("apply", "--task", help="Task type"),
    directory: Optional[Path] = DirOption,
) -> None:
    """Import a catalog entry (elements JSON) as an imported manual."""
    try:
        raw = json.loads(file.read_text(encoding="utf-8"))
        elements = parse_elements(raw.get("elements", raw) if isinstance(raw, dict) else raw)
    except (OSError, ValueError, CatalogError) as e:
        console.print(f"[red]Cannot read catalog entry:[/red] {e}")
        raise typer.Exit(code=1)

    manual = convert_catalog_entry(elements, task, url_to_pattern(url), platform=detect_platform(url))
    if manual is None:
        console.print("[red]Catalog entry has no elements with selectors[/red]")
        raise typer.Exit(code=1)

    _store(directory).save(manual)
    console.print(
        f"[green]Imported[/green] {manual.id}: {len(manual.steps)} steps for "
        f"{manual.url_pattern} (health {manual.health_score:.2f})"
    )
