"""
Main CLI application using Typer.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Annotated, List, Optional

import pendulum
import typer
from pendulum import DateTime
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from .. import __version__
from ..adapters.memory_store import InMemoryStore
from ..adapters.roster_api_client import RosterApiClient
from ..config import AppConfig, get_default_config_path
from ..domain.exceptions import (
    BookingConflictError,
    InvalidRequestError,
    SchedulingError,
    StoreUnavailableError,
)
from ..domain.models import CustomerInfo
from ..domain.projector import local_minutes_to_instant
from ..services.availability import AvailabilityService
from ..services.booking import BookingService

app = typer.Typer(
    name="slotbooker",
    help="Find bookable appointment slots and commit bookings without overbooking",
    add_completion=False,
)

console = Console()

EXIT_INPUT_ERROR = 1
EXIT_CONFLICT = 2
EXIT_UNAVAILABLE = 3

ConfigOption = Annotated[
    Optional[Path],
    typer.Option("--config", "-c", help="Path to config file. Defaults to ./config.yaml"),
]
FixtureOption = Annotated[
    Optional[Path],
    typer.Option("--fixture", "-f", help="YAML fixture with roster, services and bookings"),
]
VerboseOption = Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging")]


@dataclass
class Runtime:
    config: AppConfig
    store: InMemoryStore
    fixture_path: Path
    availability: AvailabilityService
    booking: BookingService


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )


def _load_config(config_file: Optional[Path]) -> AppConfig:
    config_path = config_file or get_default_config_path()
    if config_file is None and not config_path.exists():
        return AppConfig()
    return AppConfig.load_from_yaml(config_path)


def _build_runtime(
    config_file: Optional[Path],
    fixture: Optional[Path],
    branch_id: Optional[str] = None,
) -> Runtime:
    """
    Load config and fixture, optionally refresh the roster from the admin API,
    and wire the services.
    """
    config = _load_config(config_file)
    fixture_path = fixture or config.fixture_path

    if fixture_path is None:
        raise FileNotFoundError(
            "No fixture given. Pass --fixture or set fixture_path in the config file."
        )

    store = InMemoryStore.from_fixture(
        fixture_path,
        transaction_timeout_seconds=config.defaults.transaction_timeout_seconds,
    )

    if config.roster_api and branch_id:
        client = RosterApiClient(
            base_url=config.roster_api.base_url,
            branch_id=branch_id,
            token=config.roster_api.token,
            timeout_seconds=config.roster_api.timeout_seconds,
        )
        client.sync_into(store)

    availability = AvailabilityService(roster=store, occupancy=store, catalog=store, config=config)
    booking = BookingService(store=store, availability=availability, config=config)

    return Runtime(
        config=config,
        store=store,
        fixture_path=fixture_path,
        availability=availability,
        booking=booking,
    )


def _parse_date(value: str) -> date:
    try:
        return pendulum.from_format(value, "YYYY-MM-DD").date()
    except ValueError as exc:
        raise InvalidRequestError(f"Invalid date {value!r}, expected YYYY-MM-DD") from exc


def _parse_start(day: date, value: str, timezone: str) -> DateTime:
    """Accept a local ``HH:mm`` on ``day`` or a full ISO 8601 instant."""
    if "T" in value:
        try:
            parsed = pendulum.parse(value, tz=timezone)
        except ValueError as exc:
            raise InvalidRequestError(f"Invalid start {value!r}") from exc
        if not isinstance(parsed, DateTime):
            raise InvalidRequestError(f"Invalid start {value!r}, expected a date and time")
        return parsed

    try:
        hours, minutes = (int(part) for part in value.split(":"))
    except ValueError as exc:
        raise InvalidRequestError(f"Invalid start {value!r}, expected HH:mm") from exc

    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise InvalidRequestError(f"Invalid start {value!r}, expected HH:mm")

    return local_minutes_to_instant(day, hours * 60 + minutes, timezone)


def _fail(message: str, code: int) -> None:
    console.print(f"[bold red]Error:[/bold red] {message}")
    raise typer.Exit(code)


def _handle_error(exc: Exception) -> None:
    if isinstance(exc, BookingConflictError):
        _fail(f"{exc}. Query fresh slots and try again.", EXIT_CONFLICT)
    if isinstance(exc, StoreUnavailableError):
        _fail(f"{exc} (retry later)", EXIT_UNAVAILABLE)
    _fail(str(exc), EXIT_INPUT_ERROR)


@app.command()
def slots(
    branch: Annotated[str, typer.Argument(help="Branch id")],
    day: Annotated[str, typer.Option("--date", "-d", help="Local date (YYYY-MM-DD)")],
    service: Annotated[List[str], typer.Option("--service", "-s", help="Service id (repeatable)")],
    professional: Annotated[Optional[str], typer.Option("--professional", "-p", help="Pin a professional")] = None,
    config_file: ConfigOption = None,
    fixture: FixtureOption = None,
    verbose: VerboseOption = False,
):
    """
    List bookable slots for a branch on one date.

    Examples:

        slotbooker slots centro --date 2024-11-25 --service cut -f fixtures/demo.yaml

        slotbooker slots centro -d 2024-11-25 -s cut -s beard --professional ana
    """
    _configure_logging(verbose)

    try:
        runtime = _build_runtime(config_file, fixture, branch)
        local_day = _parse_date(day)
        search = asyncio.run(
            runtime.availability.find_slots(
                branch_id=branch,
                day=local_day,
                service_ids=service,
                professional_id=professional,
            )
        )
    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _handle_error(e)
        return

    tz = search.timezone
    names = {p.id: p.name for p in runtime.store.professionals()}

    console.print()
    if search.degraded:
        console.print(
            f"[yellow]⚠ Incomplete result: could not read availability of "
            f"{', '.join(search.skipped_professional_ids)}[/yellow]"
        )

    if not search.options:
        console.print(
            "[yellow]⚠ No available slots found.[/yellow]\n"
            "Try another date or fewer services."
        )
        return

    table = Table(
        title=f"{len(search.options)} slot(s) of {search.duration_minutes} min ({tz})",
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("Time", style="bold")
    table.add_column("Recommended", style="bold yellow")
    table.add_column("Also available", style="dim")

    for option in search.options:
        others = [
            o.professional_name
            for o in option.professional_options
            if o.professional_id != option.recommended_professional_id
        ]
        table.add_row(
            option.format_display(tz),
            names.get(option.recommended_professional_id, option.recommended_professional_id),
            ", ".join(others),
        )

    console.print(table)
    console.print()


@app.command()
def book(
    branch: Annotated[str, typer.Argument(help="Branch id")],
    day: Annotated[str, typer.Option("--date", "-d", help="Local date (YYYY-MM-DD)")],
    start: Annotated[str, typer.Option("--start", help="Local start time HH:mm or ISO 8601 instant")],
    service: Annotated[List[str], typer.Option("--service", "-s", help="Service id (repeatable)")],
    customer_name: Annotated[str, typer.Option("--customer-name", help="Customer name")],
    customer_phone: Annotated[Optional[str], typer.Option("--customer-phone")] = None,
    customer_email: Annotated[Optional[str], typer.Option("--customer-email")] = None,
    professional: Annotated[Optional[str], typer.Option("--professional", "-p", help="Pin a professional")] = None,
    notes: Annotated[Optional[str], typer.Option("--notes")] = None,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Do not write the fixture back")] = False,
    config_file: ConfigOption = None,
    fixture: FixtureOption = None,
    verbose: VerboseOption = False,
):
    """
    Commit a booking. Without --professional the fairness recommendation is used.
    """
    _configure_logging(verbose)

    try:
        runtime = _build_runtime(config_file, fixture, branch)
        tz = runtime.config.timezone_for(branch)
        local_day = _parse_date(day)
        start_at = _parse_start(local_day, start, tz)
        customer = CustomerInfo(name=customer_name, phone=customer_phone, email=customer_email)

        booking = asyncio.run(
            runtime.booking.commit_booking(
                branch_id=branch,
                service_ids=service,
                day=local_day,
                start=start_at,
                customer=customer,
                professional_id=professional,
                notes=notes,
            )
        )
    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _handle_error(e)
        return

    if not dry_run:
        runtime.store.to_fixture(runtime.fixture_path)

    local_start = booking.start.in_timezone(tz)
    local_end = booking.end.in_timezone(tz)
    console.print(
        f"\n[bold green]✓ Booking {booking.id} confirmed[/bold green]\n"
        f"   Professional: {booking.professional_id}\n"
        f"   Time: {local_start.format('DD.MM.YYYY HH:mm')} - {local_end.format('HH:mm')} ({tz})\n"
        f"   Customer: {booking.customer.name}\n"
    )
    if dry_run:
        console.print("[yellow]⊘ Dry run: fixture not updated[/yellow]\n")


@app.command()
def cancel(
    booking_id: Annotated[str, typer.Argument(help="Booking id")],
    reason: Annotated[Optional[str], typer.Option("--reason", help="Cancellation reason")] = None,
    config_file: ConfigOption = None,
    fixture: FixtureOption = None,
    verbose: VerboseOption = False,
):
    """
    Cancel a confirmed booking. The record is kept with status canceled.
    """
    _configure_logging(verbose)

    try:
        runtime = _build_runtime(config_file, fixture)
        asyncio.run(runtime.booking.cancel_booking(booking_id, reason=reason))
    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _handle_error(e)
        return

    runtime.store.to_fixture(runtime.fixture_path)
    console.print(f"\n[green]✓ Booking {booking_id} canceled.[/green]\n")


@app.command()
def professionals(
    branch: Annotated[str, typer.Argument(help="Branch id")],
    config_file: ConfigOption = None,
    fixture: FixtureOption = None,
    verbose: VerboseOption = False,
):
    """
    List the professionals of a branch.
    """
    _configure_logging(verbose)

    try:
        runtime = _build_runtime(config_file, fixture, branch)
    except (SchedulingError, FileNotFoundError, ValueError) as e:
        _handle_error(e)
        return

    members = [p for p in runtime.store.professionals() if p.branch_id == branch]
    if not members:
        console.print(f"[yellow]No professionals in branch {branch}.[/yellow]")
        return

    table = Table(title=f"Professionals of {branch}", show_header=True, header_style="bold cyan")
    table.add_column("Id", style="bold yellow")
    table.add_column("Name")
    table.add_column("Services", style="dim")
    table.add_column("Registered", style="dim")
    table.add_column("Active")

    for professional in members:
        table.add_row(
            professional.id,
            professional.name,
            ", ".join(sorted(professional.service_ids)),
            professional.created_at.format("YYYY-MM-DD"),
            "yes" if professional.is_active else "no",
        )

    console.print()
    console.print(table)
    console.print()


@app.command()
def version():
    """
    Show version information.
    """
    console.print(f"\n[bold cyan]slotbooker[/bold cyan] version [bold]{__version__}[/bold]\n")


if __name__ == "__main__":
    app()
