"""Command Line Interface for Visit-Facts.

Read-side commands over the configured fact repository and concept catalog:
completion statistics of a visit, previous-value lookups and CSV export.
"""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import typer
from pydantic import BaseModel
from rich.console import Console
from rich.table import Table

from visitfacts.adapters.dataframe_export import export_facts_csv
from visitfacts.domain.observation_fact import VisitRef
from visitfacts.domain.ports import ConceptCatalogPort, FactRepositoryPort, FactStoreError
from visitfacts.domain.services import (
    ObservationWorkingSet,
    PreviousValueResolver,
    StatisticsAggregator,
)
from visitfacts.domain.values import MedicationValue
from visitfacts.infrastructure.logging_config import setup_logging
from visitfacts.infrastructure.settings import APP_VERSION, Settings

app = typer.Typer(
    name="visitfacts",
    help="Visit-Facts: clinical observation fact store",
    add_completion=False
)
console = Console()


def _open_adapters() -> tuple[FactRepositoryPort, ConceptCatalogPort]:
    try:
        from visitfacts.main import create_concept_catalog, create_fact_repository
        return create_fact_repository(), create_concept_catalog()
    except (FactStoreError, ValueError) as e:
        console.print(f"[red]✗[/red] Failed to initialize: {str(e)}")
        raise typer.Exit(code=1)


def _display(value: Optional[BaseModel]) -> str:
    if value is None:
        return "-"
    if isinstance(value, MedicationValue):
        return value.summary()
    return ", ".join(
        f"{key}={item}" for key, item in value.model_dump(by_alias=True, exclude_none=True).items()
    )


@app.command()
def info() -> None:
    """Display configuration."""
    settings = Settings()
    console.print("[bold blue]Visit-Facts Configuration[/bold blue]\n")

    info_table = Table(show_header=False, box=None, padding=(0, 2))
    info_table.add_row("Application:", settings.app_name)
    info_table.add_row("Database Type:", settings.db_config.db_type)
    if settings.db_config.db_type == "duckdb":
        info_table.add_row("Database Path:", settings.get_db_path())
    info_table.add_row("Concept Catalog:", settings.catalog_csv_path or "(empty)")
    info_table.add_row("Source System:", settings.source_system)
    info_table.add_row("Log Level:", settings.log_level)
    console.print(info_table)


@app.command()
def stats(
    patient_id: str = typer.Argument(..., help="Patient identifier"),
    visit_id: str = typer.Argument(..., help="Visit identifier"),
    category: Optional[List[str]] = typer.Option(
        None, "--category", "-c", help="Active category (repeatable, default: all)"
    ),
) -> None:
    """Show completion statistics of a visit per category.

    Examples:
        visitfacts stats P001 V2
        visitfacts stats P001 V2 -c Vitals -c Labs
    """
    repository, catalog = _open_adapters()

    async def _run():
        try:
            working_set = await ObservationWorkingSet.open(patient_id, visit_id, repository, catalog)
            return working_set, StatisticsAggregator.from_catalog(catalog, category or None).attach(working_set)
        finally:
            await repository.close()

    try:
        working_set, aggregator = asyncio.run(_run())
        overall = aggregator.overall_stats()
    except FactStoreError as e:
        console.print(f"[red]✗[/red] {str(e)}")
        raise typer.Exit(code=1)

    table = Table(title=f"Visit {visit_id} of patient {patient_id}", header_style="bold")
    table.add_column("Category")
    table.add_column("Filled", justify="right")
    table.add_column("Total", justify="right")
    table.add_column("Completion", justify="right")
    for item in overall.categories:
        table.add_row(item.category, str(item.filled), str(item.total), f"{item.percentage}%")
    table.add_row("[bold]Overall[/bold]", str(overall.filled), str(overall.total), f"[bold]{overall.percentage}%[/bold]")
    console.print(table)

    if overall.uncategorized:
        console.print(f"[dim]Uncategorized observations:[/dim] {overall.uncategorized}")
    if working_set.load_errors:
        console.print(f"[yellow]⚠[/yellow] {len(working_set.load_errors)} rows could not be decoded")


@app.command()
def previous(
    patient_id: str = typer.Argument(..., help="Patient identifier"),
    concept_code: str = typer.Argument(..., help="Concept code"),
    before: datetime = typer.Option(
        ..., "--before", "-b", help="Visit date to look before",
        formats=["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S"]
    ),
) -> None:
    """Show the most recent value of a concept recorded before a date.

    Examples:
        visitfacts previous P001 WEIGHT --before 2024-03-01
    """
    repository, _ = _open_adapters()

    async def _run():
        try:
            return await PreviousValueResolver.load(repository, patient_id)
        finally:
            await repository.close()

    try:
        resolver = asyncio.run(_run())
        before_visit = VisitRef(visit_id="", visit_date=before)
        found = resolver.resolve_with_value(patient_id, concept_code, before_visit)
    except FactStoreError as e:
        console.print(f"[red]✗[/red] {str(e)}")
        raise typer.Exit(code=1)

    if found is None:
        console.print(f"[yellow]⚠[/yellow] No value of {concept_code} recorded before {before:%Y-%m-%d}")
        raise typer.Exit(code=1)

    fact, value = found

    result_table = Table(show_header=False, box=None, padding=(0, 2))
    result_table.add_row("Visit:", fact.visit_id)
    result_table.add_row("Recorded at:", f"{fact.recorded_at:%Y-%m-%d %H:%M}")
    result_table.add_row("Value:", _display(value))
    console.print(result_table)


@app.command()
def export(
    patient_id: str = typer.Argument(..., help="Patient identifier"),
    visit_id: str = typer.Argument(..., help="Visit identifier"),
    output: Path = typer.Argument(..., help="Output CSV file"),
) -> None:
    """Export the facts of a visit to CSV."""
    repository, _ = _open_adapters()

    async def _run():
        try:
            return await repository.get(patient_id, visit_id)
        finally:
            await repository.close()

    result = asyncio.run(_run())
    if result.is_failure():
        console.print(f"[red]✗[/red] Failed to read visit: {result.error}")
        raise typer.Exit(code=1)

    export_result = export_facts_csv(result.value or [], str(output))
    if export_result.is_failure():
        console.print(f"[red]✗[/red] {export_result.error}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Exported {export_result.value} facts to {output}")


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show version information"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
) -> None:
    """Visit-Facts: clinical observation fact store."""
    if version:
        console.print(f"Visit-Facts v{APP_VERSION}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit()
    settings = Settings()
    setup_logging(use_json=settings.log_json, log_level="DEBUG" if verbose else settings.log_level)


if __name__ == "__main__":
    app()
