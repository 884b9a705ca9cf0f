# -*- coding: utf-8 -*-
"""
CarbonLedger CLI
================

carbonledger calculate  - Calculate a project's emissions from a YAML/JSON file
carbonledger footprint  - Product (CFP) or organization (CFO) footprint
carbonledger factors    - List the emission factor table
carbonledger version    - Show version

Input file layout (YAML or JSON):

    project:
      project_id: plant-1
      baseline_year: 2020
      reporting_year: 2024
      region: GB
    activities:
      - activity_id: a1
        scope: scope1
        activity_type: diesel
        quantity: 1000
        unit: liter
        year: 2024
    emission_factors:        # optional, added to the factor table
      - {activity_type: biogas, year: 2024, value: 0.2, unit: kg CO2e per kwh}
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import typer
import yaml
from pydantic import ValidationError
from rich import box
from rich.console import Console
from rich.table import Table

from carbonledger import __version__
from carbonledger.emissions_engine.config import get_config
from carbonledger.emissions_engine.models import (
    Activity,
    CalculationResult,
    EmissionFactor,
    HotSpotGranularity,
    ProjectMeta,
)
from carbonledger.emissions_engine.orchestrator import CalculationOrchestrator
from carbonledger.emissions_engine.store import (
    InMemoryCalculationStore,
    load_default_emission_factors,
)
from carbonledger.exceptions import CarbonLedgerException

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="carbonledger",
    help="CarbonLedger: emissions calculation and aggregation engine",
    no_args_is_help=True,
    add_completion=False,
)
console = Console()


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _load_input(input_file: Path) -> Dict[str, Any]:
    """Load a project file, exiting with status 1 on bad input."""
    if not input_file.exists():
        console.print(f"[red]Input file not found: {input_file}[/red]")
        raise typer.Exit(1)

    with open(input_file, encoding="utf-8") as f:
        if input_file.suffix == ".json":
            data = json.load(f)
        elif input_file.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        else:
            console.print(f"[red]Unsupported input format: {input_file.suffix}[/red]")
            console.print("[yellow]Use .json or .yaml files[/yellow]")
            raise typer.Exit(1)

    if not isinstance(data, dict) or "project" not in data:
        console.print("[red]Input must be a mapping with a 'project' section[/red]")
        raise typer.Exit(1)
    return data


def _build_store(data: Dict[str, Any]) -> InMemoryCalculationStore:
    """Seed an in-memory store from the default factors and the input file."""
    factors_path = get_config().emission_factors_path or None
    try:
        store = InMemoryCalculationStore(load_default_emission_factors(factors_path))
        project = ProjectMeta(**data["project"])
        store.add_project(project)
        store.add_emission_factors(
            EmissionFactor(**entry) for entry in data.get("emission_factors") or []
        )
        for entry in data.get("activities") or []:
            entry = dict(entry)
            entry.setdefault("project_id", project.project_id)
            store.upsert_activity(Activity(**entry))
    except ValidationError as e:
        console.print(f"[red]Invalid input: {e.error_count()} error(s)[/red]")
        for err in e.errors():
            loc = ".".join(str(part) for part in err["loc"])
            console.print(f"  - {loc}: {err['msg']}")
        raise typer.Exit(1)
    return store


def _print_result(result: CalculationResult) -> None:
    summary = Table(title=f"Emissions - {result.project_id}", box=box.ROUNDED)
    summary.add_column("Scope", style="cyan")
    summary.add_column("tCO2e", justify="right")
    summary.add_row("Scope 1", str(result.scope1_tco2e))
    summary.add_row("Scope 2", str(result.scope2_tco2e))
    summary.add_row("Scope 3", str(result.scope3_tco2e))
    summary.add_row("  upstream", str(result.scope3_upstream_tco2e))
    summary.add_row("  downstream", str(result.scope3_downstream_tco2e))
    summary.add_row("[bold]Total[/bold]", f"[bold]{result.total_emissions_tco2e}[/bold]")
    console.print(summary)

    console.print(
        f"Activities: {result.activity_count}  Excluded: {result.excluded_count}  "
        f"Data quality: {result.data_quality_score}"
    )

    if result.hot_spots:
        spots = Table(title="Hot spots", box=box.SIMPLE)
        spots.add_column("#", justify="right")
        spots.add_column("Contributor", style="cyan")
        spots.add_column("tCO2e", justify="right")
        spots.add_column("%", justify="right")
        for rank, spot in enumerate(result.hot_spots, start=1):
            spots.add_row(
                str(rank), spot.contributor_id,
                str(spot.emissions_tco2e), str(spot.percentage_of_total),
            )
        console.print(spots)

    for warning in result.warnings:
        console.print(
            f"[yellow]Excluded {warning.activity_id}[/yellow] "
            f"({warning.error_type}): {warning.message}"
        )


@app.command()
def calculate(
    input_file: Path = typer.Argument(..., help="Project file (JSON/YAML)"),
    hotspots: Optional[int] = typer.Option(
        None, "--hotspots", "-n", min=0, help="Number of hot spots to report",
    ),
    granularity: HotSpotGranularity = typer.Option(
        HotSpotGranularity.ACTIVITY, "--granularity", "-g",
        help="Rank individual activities or scope/category buckets",
    ),
    region: Optional[str] = typer.Option(
        None, "--region", "-r", help="Region override for factor lookup",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
):
    """Calculate a project's emissions from an input file."""
    _configure_logging(verbose)
    data = _load_input(input_file)
    store = _build_store(data)
    orchestrator = CalculationOrchestrator(store)

    options = {"hotspot_granularity": granularity.value}
    if hotspots is not None:
        options["hotspot_limit"] = hotspots
    if region:
        options["region_override"] = region

    try:
        result = orchestrator.recalculate_all(data["project"]["project_id"], options)
    except CarbonLedgerException as e:
        console.print(f"[red]Calculation failed: {e}[/red]")
        raise typer.Exit(1)

    if as_json:
        typer.echo(result.model_dump_json(indent=2))
    else:
        _print_result(result)


@app.command()
def footprint(
    input_file: Path = typer.Argument(..., help="Project file (JSON/YAML)"),
    kind: str = typer.Option(
        "product", "--kind", "-k", help="product (CFP) or organization (CFO)",
    ),
    name: Optional[str] = typer.Option(None, "--name", help="Product or organization name"),
    volume: Optional[float] = typer.Option(
        None, "--volume", min=0, help="Production volume in functional units (CFP)",
    ),
    year: Optional[int] = typer.Option(None, "--year", help="Reporting year (CFO)"),
    facility: Optional[List[str]] = typer.Option(
        None, "--facility", "-f", help="Restrict to facility (repeatable)",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the footprint as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
):
    """Calculate a product or organization footprint."""
    _configure_logging(verbose)
    if kind not in ("product", "organization"):
        console.print(f"[red]Unknown footprint kind: {kind}[/red]")
        raise typer.Exit(1)

    data = _load_input(input_file)
    store = _build_store(data)
    orchestrator = CalculationOrchestrator(store)
    project_id = data["project"]["project_id"]

    request: Dict[str, Any] = {"facilities": list(facility) if facility else None}
    try:
        if kind == "product":
            if name:
                request["product_name"] = name
            if volume is not None:
                request["production_volume"] = str(volume)
            result = orchestrator.calculate_product_footprint(project_id, request)
            rows = [(stage, str(t)) for stage, t in result.lifecycle_stages.items()]
            rows.append(("per unit", str(result.per_unit_tco2e)))
            title = f"Product footprint - {result.product_name}"
        else:
            if name:
                request["organization_name"] = name
            if year is not None:
                request["reporting_year"] = year
            result = orchestrator.calculate_organization_footprint(project_id, request)
            rows = [
                ("Scope 1", str(result.scope1_tco2e)),
                ("Scope 2", str(result.scope2_tco2e)),
                ("Scope 3 upstream", str(result.scope3_upstream_tco2e)),
                ("Scope 3 downstream", str(result.scope3_downstream_tco2e)),
            ]
            title = f"Organization footprint - {result.organization_name} ({result.reporting_year})"
    except CarbonLedgerException as e:
        console.print(f"[red]Calculation failed: {e}[/red]")
        raise typer.Exit(1)

    if as_json:
        typer.echo(result.model_dump_json(indent=2))
        return

    table = Table(title=title, box=box.ROUNDED)
    table.add_column("Item", style="cyan")
    table.add_column("tCO2e", justify="right")
    for label, value in rows:
        table.add_row(label, value)
    table.add_row("[bold]Total[/bold]", f"[bold]{result.total_tco2e}[/bold]")
    console.print(table)


@app.command()
def factors(
    activity_type: Optional[str] = typer.Option(
        None, "--type", "-t", help="Only show this activity type",
    ),
    factors_file: Optional[Path] = typer.Option(
        None, "--file", help="Factor table (defaults to the packaged table)",
    ),
):
    """List the emission factor table."""
    path = factors_file or get_config().emission_factors_path or None
    try:
        entries = load_default_emission_factors(path)
    except FileNotFoundError:
        console.print(f"[red]Factor table not found: {path}[/red]")
        raise typer.Exit(1)

    if activity_type:
        wanted = activity_type.strip().lower()
        entries = [f for f in entries if f.activity_type.lower() == wanted]
    if not entries:
        console.print("No factors found")
        return

    table = Table(title="Emission factors", box=box.SIMPLE)
    table.add_column("Activity type", style="cyan")
    table.add_column("Year", justify="right")
    table.add_column("Region")
    table.add_column("Value", justify="right")
    table.add_column("Unit")
    for f in sorted(entries, key=lambda f: (f.activity_type, f.year, f.region or "")):
        table.add_row(f.activity_type, str(f.year), f.region or "global", str(f.value), f.unit)
    console.print(table)
    console.print(f"{len(entries)} factor(s)")


@app.command()
def version():
    """Show CarbonLedger version"""
    console.print(f"[bold green]CarbonLedger v{__version__}[/bold green]")
