import logging
import os
import subprocess
from datetime import datetime
from typing import Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from circulation.config import settings
from circulation.library import Library
from circulation.models import DamageLevel, RecordStatus, to_iso
from circulation.outcome import Outcome

console = Console()
app = typer.Typer(help="Library circulation desk")


def _get_library() -> Library:
    # Read at call time so a per-run LIBRARY_DB_FILE override is honored
    return Library(db_file=os.environ.get("LIBRARY_DB_FILE") or None)


def _ok(outcome: Outcome):
    """Return the outcome value or print its error and exit with status 1."""
    if outcome.ok:
        return outcome.value
    console.print(f"[bold red]Error ({outcome.error_code}):[/] {escape(outcome.message)}")
    raise typer.Exit(code=1)


def _fmt(moment: Optional[datetime]) -> str:
    return moment.strftime("%Y-%m-%d %H:%M") if moment else "-"


@app.callback()
def _global_options(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log circulation events to stderr"),
):
    """Global options for the CLI."""
    logging.basicConfig(level=logging.INFO if verbose else logging.WARNING)


# --- Catalog records ---
@app.command("add-item")
def cli_add_item(title: str, copies: int = typer.Option(1, "--copies", "-c", help="Total copies")):
    """Register an item with its copy count."""
    item = _ok(_get_library().add_item(title, copies))
    console.print(f"Item {item.item_id} added: {escape(item.title)} ({item.total_copies} copies)")


@app.command("add-patron")
def cli_add_patron(name: str, email: str):
    """Register a patron."""
    patron = _ok(_get_library().add_patron(name, email))
    console.print(f"Patron {patron.patron_id} added: {escape(patron.name)} <{escape(patron.email)}>")


# --- Loans ---
@app.command("issue")
def cli_issue(patron_id: int, item_id: int):
    """Lend an item to a patron."""
    loan = _ok(_get_library().issue(patron_id, item_id))
    console.print(f"Loan {loan.loan_id} issued, due {loan.due_date.isoformat()}")


@app.command("return")
def cli_return(
    loan_id: int,
    at: Optional[datetime] = typer.Option(None, "--at", help="Return time (ISO 8601), defaults to now"),
):
    """Return a loan and record any overdue fine."""
    receipt = _ok(_get_library().return_loan(loan_id, at))
    if receipt.fine > 0:
        console.print(f"Loan {loan_id} returned. Fine due: {receipt.fine}")
    else:
        console.print(f"Loan {loan_id} returned. No fine.")


@app.command("renew")
def cli_renew(loan_id: int):
    """Extend a loan by one loan period."""
    loan = _ok(_get_library().renew(loan_id))
    console.print(f"Loan {loan_id} renewed, now due {loan.due_date.isoformat()}")


@app.command("fine")
def cli_fine(loan_id: int):
    """Show the fine accrued on a loan so far."""
    projection = _ok(_get_library().current_fine_projection(loan_id))
    console.print(f"Loan {loan_id}: {projection.days_overdue} days overdue, fine {projection.amount}")


@app.command("collect")
def cli_collect(loan_id: int, amount: str):
    """Record the fine amount collected for a loan."""
    loan = _ok(_get_library().collect_fine(loan_id, amount))
    console.print(f"Loan {loan_id}: fine recorded as {loan.fine_paid}")


@app.command("loans")
def cli_loans(patron_id: int, history: bool = typer.Option(False, "--history", help="Include returned loans")):
    """List a patron's loans."""
    library = _get_library()
    loans = _ok(library.loan_history_for_patron(patron_id) if history else library.active_loans_for_patron(patron_id))
    if not loans:
        console.print("No loans.")
        return
    table = Table(title=f"Loans for patron {patron_id}")
    for column in ("Loan", "Item", "Borrowed", "Due", "Status", "Fine"):
        table.add_column(column)
    for loan in loans:
        table.add_row(
            str(loan.loan_id), str(loan.item_id), _fmt(loan.borrowed_at), _fmt(loan.due_at),
            loan.status.value, str(loan.fine_paid or "-"),
        )
    console.print(table)


@app.command("active")
def cli_active():
    """List every open loan with time left or fine accrued."""
    active = _ok(_get_library().active_loans())
    if not active:
        console.print("No active loans.")
        return
    table = Table(title="Active loans")
    for column in ("Loan", "Patron", "Item", "Due", "Days left", "Fine"):
        table.add_column(column)
    for entry in active:
        table.add_row(
            str(entry.loan.loan_id), str(entry.loan.patron_id), str(entry.loan.item_id), _fmt(entry.loan.due_at),
            "overdue" if entry.is_overdue else str(entry.days_until_due), str(entry.projected_fine),
        )
    console.print(table)
    console.print(f"{len(active)} active loans")


@app.command("overdue")
def cli_overdue():
    """List overdue loans with their accrued fines."""
    overdue = _ok(_get_library().overdue_loans())
    if not overdue:
        console.print("No overdue loans.")
        return
    table = Table(title="Overdue loans")
    for column in ("Loan", "Patron", "Item", "Due", "Days", "Fine"):
        table.add_column(column)
    for entry in overdue:
        table.add_row(
            str(entry.loan.loan_id), str(entry.loan.patron_id), str(entry.loan.item_id),
            _fmt(entry.loan.due_at), str(entry.days_overdue), str(entry.accrued_fine),
        )
    console.print(table)
    console.print(f"{len(overdue)} overdue loans")


# --- Reservations ---
@app.command("reserve")
def cli_reserve(patron_id: int, item_id: int):
    """Reserve an item that has no copies available."""
    reservation = _ok(_get_library().reserve(patron_id, item_id))
    console.print(f"Reservation {reservation.reservation_id} placed at {to_iso(reservation.reserved_at)}")


@app.command("cancel")
def cli_cancel(patron_id: int, item_id: int):
    """Cancel a patron's reservation on an item."""
    removed = _ok(_get_library().cancel_reservation(patron_id, item_id))
    console.print("Reservation cancelled." if removed else "No reservation to cancel.")


# --- Lost / damaged ---
@app.command("report-lost")
def cli_report_lost(
    item_id: int,
    reported_by: str = typer.Option(..., "--by", help="Staff member filing the report"),
    description: str = typer.Option("", "--description", "-d"),
    location: Optional[str] = typer.Option(None, "--location", help="Last seen location"),
):
    """Report a copy as lost."""
    record = _ok(_get_library().report_lost(item_id, reported_by, description, last_seen_location=location))
    console.print(f"Lost report {record.record_id} filed for item {item_id}")


@app.command("report-damaged")
def cli_report_damaged(
    item_id: int,
    reported_by: str = typer.Option(..., "--by", help="Staff member filing the report"),
    level: DamageLevel = typer.Option(DamageLevel.MINOR, "--level", case_sensitive=False),
    unrepairable: bool = typer.Option(False, "--unrepairable", help="The copy cannot be repaired"),
    description: str = typer.Option("", "--description", "-d"),
):
    """Report a copy as damaged."""
    record = _ok(_get_library().report_damaged(
        item_id, reported_by, level, repairable=not unrepairable, description=description,
    ))
    state = "withdrawn from circulation" if record.withdrawn else "still circulating"
    console.print(f"Damage report {record.record_id} filed for item {item_id} ({state})")


@app.command("resolve")
def cli_resolve(record_id: int, status: RecordStatus = typer.Argument(..., case_sensitive=False)):
    """Move a lost/damaged record to a new status."""
    record = _ok(_get_library().update_lost_damaged_status(record_id, status))
    console.print(f"Record {record_id} is now {record.status.value}")


# --- Administration ---
@app.command("settings")
def cli_settings(
    loan_days: Optional[int] = typer.Option(None, "--loan-days"),
    fine: Optional[str] = typer.Option(None, "--fine", help="Fine per overdue day"),
    limit: Optional[int] = typer.Option(None, "--limit", help="Borrowing limit per patron"),
):
    """Show, or update, the circulation policy."""
    library = _get_library()
    if loan_days is None and fine is None and limit is None:
        policy = _ok(library.get_settings())
    else:
        policy = _ok(library.update_settings(loan_period_days=loan_days, fine_per_day=fine, borrowing_limit=limit))
    console.print(f"Loan period: {policy.loan_period_days} days")
    console.print(f"Fine per day: {policy.fine_per_day}")
    console.print(f"Borrowing limit: {policy.borrowing_limit}")


@app.command("stats")
def cli_stats():
    """Show inventory statistics."""
    stats = _ok(_get_library().inventory_stats())
    for key, value in stats.items():
        console.print(f"{key.replace('_', ' ').capitalize()}: {value}")


@app.command("serve")
def cli_serve(
    host: str = typer.Option(settings.api_host, "--host"),
    port: int = typer.Option(settings.api_port, "--port"),
):
    """Run the HTTP API with uvicorn."""
    console.print(f"Starting circulation API on http://{host}:{port}")
    subprocess.run(["uvicorn", "circulation.api:app", "--host", host, "--port", str(port)])


def main() -> None:
    app()


if __name__ == "__main__":
    main()
