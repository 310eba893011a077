"""
AgroHaul CLI

Command-line interface for the AgroHaul dispatch system.
"""

import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from ..config import settings
from ..db import get_repository
from ..dispatch import DispatchEngine, PricingCalculator
from ..exceptions import DispatchError
from ..models import (
    ActorContext,
    BookingStatus,
    Coordinates,
    EntityKind,
    Role,
    Vehicle,
    VehicleType,
)
from ..utils import configure_logging

# Fix Windows console encoding
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding='utf-8', errors='replace')

app = typer.Typer(
    name="agrohaul",
    help="AgroHaul: produce transport dispatch",
    add_completion=False,
)
console = Console()

# Sample fleet around Lucknow and Delhi
SAMPLE_VEHICLES = [
    {
        "id": "veh-lko-001",
        "owner_id": "carrier-ramesh",
        "vehicle_number": "UP32AB1234",
        "vehicle_type": VehicleType.TRUCK,
        "capacity_kg": 9000,
        "rate_per_km": 15,
        "current_location": (26.8467, 80.9462),
        "current_address": "Hazratganj, Lucknow",
    },
    {
        "id": "veh-lko-002",
        "owner_id": "carrier-suresh",
        "vehicle_number": "UP32CD5678",
        "vehicle_type": VehicleType.MINI_TRUCK,
        "capacity_kg": 2500,
        "rate_per_km": 11,
        "current_location": (26.8850, 80.9990),
        "current_address": "Aliganj, Lucknow",
    },
    {
        "id": "veh-lko-003",
        "owner_id": "carrier-suresh",
        "vehicle_number": "UP32EF9012",
        "vehicle_type": VehicleType.TRACTOR,
        "capacity_kg": 4000,
        "rate_per_km": 9,
        "current_location": (26.7606, 80.8893),
        "current_address": "Bijnor Road, Lucknow",
    },
    {
        "id": "veh-bbk-001",
        "owner_id": "carrier-anita",
        "vehicle_number": "UP41GH3456",
        "vehicle_type": VehicleType.PICKUP,
        "capacity_kg": 1200,
        "rate_per_km": 10,
        "refrigerated": True,
        "current_location": (26.9270, 81.1830),
        "current_address": "Barabanki",
    },
    {
        "id": "veh-del-001",
        "owner_id": "carrier-anita",
        "vehicle_number": "DL01JK7890",
        "vehicle_type": VehicleType.TRUCK,
        "capacity_kg": 12000,
        "rate_per_km": 18,
        "current_location": (28.6139, 77.2090),
        "current_address": "Connaught Place, New Delhi",
    },
]


def _engine() -> DispatchEngine:
    engine = DispatchEngine(get_repository())
    engine.rebuild_index()
    return engine


def _fail(error: DispatchError) -> None:
    console.print(f"[red]{error.code}: {error.message}[/red]")
    raise typer.Exit(1)


# =============================================================================
# Setup Commands
# =============================================================================

@app.command()
def init():
    """
    Initialize the database.

    Run this once to set up the system before first use.
    """
    console.print("[cyan]Initializing AgroHaul...[/cyan]")

    get_repository()
    console.print(f"[green]Database initialized at {settings.DATABASE_URL}.[/green]")

    console.print(Panel.fit(
        "[bold green]AgroHaul is ready![/bold green]\n\n"
        "Next steps:\n"
        "1. Run [cyan]agrohaul seed[/cyan] to register a sample fleet\n"
        "2. Run [cyan]agrohaul nearby 26.85 80.95[/cyan] to find vehicles\n"
        "3. Run [cyan]agrohaul serve[/cyan] to start the API",
        title="Setup Complete",
    ))


@app.command()
def seed():
    """Register the sample fleet (safe to re-run)."""
    configure_logging()
    engine = _engine()

    table = Table(title="Sample Fleet")
    table.add_column("Vehicle", style="cyan")
    table.add_column("Owner", style="white")
    table.add_column("Type", width=10)
    table.add_column("Capacity", style="green", justify="right")
    table.add_column("Rate/km", style="green", justify="right")
    table.add_column("Location", style="dim")

    for sample in SAMPLE_VEHICLES:
        fields = dict(sample)
        lat, lon = fields.pop("current_location")
        vehicle = Vehicle(current_location=Coordinates(latitude=lat, longitude=lon), **fields)
        actor = ActorContext(actor_id=vehicle.owner_id, role=Role.CARRIER)
        try:
            stored = engine.register_vehicle(actor, vehicle)
        except DispatchError as e:
            _fail(e)

        table.add_row(
            stored.id,
            stored.owner_id,
            stored.vehicle_type.value,
            f"{stored.capacity_kg:,.0f} kg",
            f"{stored.rate_per_km:.2f}",
            stored.current_address or "",
        )

    console.print(table)


# =============================================================================
# Query Commands
# =============================================================================

@app.command()
def quote(
    pickup_lat: float = typer.Argument(..., help="Pickup latitude"),
    pickup_lon: float = typer.Argument(..., help="Pickup longitude"),
    dropoff_lat: float = typer.Argument(..., help="Dropoff latitude"),
    dropoff_lon: float = typer.Argument(..., help="Dropoff longitude"),
    rate: float = typer.Option(15.0, "--rate", "-r", help="Rate per km"),
):
    """
    Price a trip between two points.

    Example:
        agrohaul quote 26.8467 80.9462 28.6139 77.2090 --rate 15
    """
    try:
        pricing = PricingCalculator().quote(
            Coordinates(latitude=pickup_lat, longitude=pickup_lon),
            Coordinates(latitude=dropoff_lat, longitude=dropoff_lon),
            rate,
        )
    except DispatchError as e:
        _fail(e)
    except ValueError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)

    table = Table(title="Trip Quote")
    table.add_column("Item", style="cyan")
    table.add_column("Value", style="green", justify="right")

    table.add_row("Distance", f"{pricing.display_distance_km:,.2f} km")
    table.add_row("Rate", f"{pricing.rate_per_km:,.2f} / km")
    table.add_row("Base amount", f"{pricing.base_amount:,.2f} {pricing.currency}")
    table.add_row("Total", f"[bold]{pricing.total_amount:,.2f} {pricing.currency}[/bold]")

    console.print(table)


@app.command()
def nearby(
    latitude: float = typer.Argument(..., help="Centre latitude"),
    longitude: float = typer.Argument(..., help="Centre longitude"),
    radius: float = typer.Option(settings.DEFAULT_SEARCH_RADIUS_KM, "--radius", "-r", help="Radius in km"),
    limit: int = typer.Option(settings.NEARBY_RESULT_LIMIT, "--limit", "-l", help="Maximum results"),
    kind: EntityKind = typer.Option(EntityKind.VEHICLE, "--kind", "-k", help="vehicle or request"),
    vehicle_type: Optional[VehicleType] = typer.Option(None, "--type", "-t", help="Vehicle type filter"),
):
    """
    Find vehicles or pending requests near a point, nearest first.
    """
    engine = _engine()
    try:
        results = engine.find_nearby(
            kind,
            Coordinates.model_construct(latitude=latitude, longitude=longitude),
            radius_km=radius,
            limit=limit,
            vehicle_type=vehicle_type,
        )
    except DispatchError as e:
        _fail(e)

    if not results:
        console.print(f"[yellow]Nothing within {radius:g} km.[/yellow]")
        return

    table = Table(title=f"Nearby {kind.value}s ({len(results)} found)")
    table.add_column("Distance", style="cyan", justify="right")
    table.add_column("ID", style="white")
    table.add_column("Detail", style="dim")

    for result in results:
        entity = result.entity
        if kind == EntityKind.VEHICLE:
            detail = f"{entity.vehicle_type.value}, {entity.capacity_kg:,.0f} kg, {entity.rate_per_km:g}/km"
        else:
            detail = f"{entity.cargo.category.value}, {entity.cargo.total_weight_kg:,.0f} kg"
        table.add_row(f"{result.display_distance_km:.2f} km", result.entity_id, detail)

    console.print(table)


@app.command()
def booking(
    booking_ref: str = typer.Argument(..., help="Booking reference"),
):
    """Show a booking and its timeline."""
    repo = get_repository()
    found = repo.get_booking(booking_ref)
    if found is None:
        console.print(f"[red]Booking {booking_ref} not found.[/red]")
        raise typer.Exit(1)

    status_color = {
        BookingStatus.COMPLETED: "green",
        BookingStatus.CANCELLED: "red",
        BookingStatus.REJECTED: "red",
    }.get(found.status, "yellow")

    console.print(Panel.fit(
        f"[bold]{found.ref}[/bold]  [{status_color}]{found.status.value}[/{status_color}]\n\n"
        f"From: {found.pickup.address}\n"
        f"To:   {found.dropoff.address}\n"
        f"Cargo: {found.cargo.category.value}, {found.cargo.total_weight_kg:,.0f} kg\n"
        f"Distance: {found.pricing.display_distance_km:,.2f} km\n"
        f"Total: {found.pricing.total_amount:,.2f} {found.pricing.currency}\n"
        f"Carrier: {found.carrier_id or '-'}  Vehicle: {found.vehicle_id or '-'}",
        title="Booking",
    ))

    table = Table(title="Timeline")
    table.add_column("When", style="dim")
    table.add_column("Status", style="cyan")
    table.add_column("Actor")
    table.add_column("Note")

    for entry in found.timeline:
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M"),
            entry.status.value,
            entry.actor_id,
            entry.note or "",
        )

    console.print(table)


@app.command()
def stats():
    """
    Show database statistics.

    Displays counts of bookings by status, vehicles and identities.
    """
    db_stats = get_repository().get_stats()

    table = Table(title="Bookings")
    table.add_column("Status", style="cyan")
    table.add_column("Count", style="green")
    for status, count in db_stats["bookings"].items():
        table.add_row(status.replace("_", " ").title(), str(count))
    console.print(table)

    table = Table(title="Fleet")
    table.add_column("Metric", style="cyan")
    table.add_column("Count", style="green")
    table.add_row("Vehicles", str(db_stats["vehicles"]["total"]))
    table.add_row("Available", str(db_stats["vehicles"]["available"]))
    table.add_row("Identities", str(db_stats["identities"]["total"]))
    console.print(table)


# =============================================================================
# Server Commands
# =============================================================================

@app.command()
def version():
    """Show version information."""
    console.print(Panel(
        f"[bold]AgroHaul[/bold] v{settings.APP_VERSION}\n"
        "Produce transport dispatch",
        title="Version",
    ))


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(False, "--reload", "-r", help="Enable auto-reload on code changes"),
):
    """
    Start the AgroHaul API server.

    Swagger UI available at: http://localhost:8000/docs

    Examples:
        agrohaul serve
        agrohaul serve --port 3000
    """
    import uvicorn

    console.print(Panel.fit(
        "[bold green]AgroHaul API Server[/bold green]\n\n"
        f"Starting server on http://{host}:{port}\n\n"
        "[cyan]Endpoints:[/cyan]\n"
        "  • Swagger UI: /docs\n"
        "  • Bookings: POST /v1/bookings\n"
        "  • Nearby: GET /v1/nearby\n\n"
        "[dim]Press Ctrl+C to stop[/dim]",
        title="Server Mode",
    ))

    try:
        uvicorn.run(
            "agrohaul.server:app",
            host=host,
            port=port,
            reload=reload,
            log_level=settings.LOG_LEVEL.lower(),
        )
    except KeyboardInterrupt:
        console.print("\n[yellow]Server stopped by user[/yellow]")


# =============================================================================
# Entry Point
# =============================================================================

def main():
    """Main entry point for CLI."""
    app()


if __name__ == "__main__":
    main()
