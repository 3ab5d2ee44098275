"""Loan lifecycle: issue, renew, return, and fine bookkeeping.

A loan is ``ACTIVE`` from issue until return and ``RETURNED`` afterwards;
renewal extends the due date without leaving ``ACTIVE``. While a loan is
active exactly one copy of its item is off the shelf on its behalf, so every
method that opens or closes a loan also moves a copy through the
availability ledger on the same connection, inside the caller's transaction.

All methods take ``now`` (or ``as_of``) explicitly; the clock belongs to the
caller.
"""

import logging
import sqlite3
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List

from circulation.catalog import CatalogStore
from circulation.errors import (
    AlreadyBorrowed,
    AlreadyReturned,
    BorrowLimitExceeded,
    InvalidArgument,
    ItemHidden,
    NotFound,
    OutOfStock,
    RenewalBlocked,
)
from circulation.fines import calculate_fine, days_overdue, days_until_due
from circulation.ledger import AvailabilityLedger
from circulation.models import ActiveLoan, FineProjection, Loan, LoanStatus, OverdueLoan, ReturnReceipt, to_iso
from circulation.settings_provider import get_settings
from circulation.validators import MoneyValidator

logger = logging.getLogger(__name__)

def _due_after(start: datetime, days: int) -> datetime:
    try:
        return start + timedelta(days=days)
    except OverflowError as exc:
        raise InvalidArgument(f"A loan period of {days} days runs past the supported date range.") from exc


_LOAN_COLUMNS = (
    "loan_id, patron_id, item_id, borrowed_at, due_at, status, returned_at, fine_paid, renewal_count"
)


class LoanEngine:

    def __init__(self, catalog: CatalogStore, ledger: AvailabilityLedger) -> None:
        self.catalog = catalog
        self.ledger = ledger

    # ------------------------- Lookups ------------------------- #
    def find_loan(self, conn: sqlite3.Connection, loan_id: int):
        row = conn.execute(f"SELECT {_LOAN_COLUMNS} FROM loans WHERE loan_id = ?", (loan_id,)).fetchone()
        return Loan.from_row(row) if row else None

    def get_loan(self, conn: sqlite3.Connection, loan_id: int) -> Loan:
        loan = self.find_loan(conn, loan_id)
        if loan is None:
            raise NotFound(f"Loan {loan_id} not found.")
        return loan

    def open_loan_count(self, conn: sqlite3.Connection, patron_id: int) -> int:
        return conn.execute(
            "SELECT COUNT(*) FROM loans WHERE patron_id = ? AND status = 'ACTIVE'", (patron_id,)
        ).fetchone()[0]

    def find_open_loan(self, conn: sqlite3.Connection, patron_id: int, item_id: int):
        row = conn.execute(
            f"SELECT {_LOAN_COLUMNS} FROM loans WHERE patron_id = ? AND item_id = ? AND status = 'ACTIVE'",
            (patron_id, item_id),
        ).fetchone()
        return Loan.from_row(row) if row else None

    # ------------------------- Transitions ------------------------- #
    def issue(self, conn: sqlite3.Connection, patron_id: int, item_id: int, now: datetime) -> Loan:
        """Lend one copy of ``item_id`` to ``patron_id``.

        Checks run in a fixed order: patron and item exist, item is visible,
        a copy is free, the patron is under the borrowing limit, and the
        patron does not already hold this item. The copy is then taken
        through the ledger, the loan row written, and any reservation the
        patron held on the item consumed.
        """
        self.catalog.get_patron(conn, patron_id)
        item = self.catalog.get_item(conn, item_id)
        if not item.visible:
            raise ItemHidden(f"'{item.title}' is not available for borrowing.")
        if item.available_copies <= 0:
            raise OutOfStock(f"No copies of '{item.title}' are currently available.")

        policy = get_settings(conn)
        if self.open_loan_count(conn, patron_id) >= policy.borrowing_limit:
            raise BorrowLimitExceeded(
                f"Patron {patron_id} has reached the borrowing limit of {policy.borrowing_limit} items."
            )
        if self.find_open_loan(conn, patron_id, item_id) is not None:
            raise AlreadyBorrowed(f"Patron {patron_id} already has '{item.title}' on loan.")

        self.ledger.reserve_one_copy(conn, item_id)

        due_at = _due_after(now, policy.loan_period_days)
        try:
            cursor = conn.execute(
                "INSERT INTO loans (patron_id, item_id, borrowed_at, due_at, status) VALUES (?, ?, ?, ?, ?)",
                (patron_id, item_id, to_iso(now), to_iso(due_at), LoanStatus.ACTIVE.value),
            )
        except sqlite3.IntegrityError as exc:
            raise AlreadyBorrowed(f"Patron {patron_id} already has '{item.title}' on loan.") from exc

        consumed = conn.execute(
            "DELETE FROM reservations WHERE patron_id = ? AND item_id = ?", (patron_id, item_id)
        ).rowcount
        loan = self.get_loan(conn, cursor.lastrowid)
        logger.info(
            f"Issued loan {loan.loan_id}: item={item_id} patron={patron_id} due={to_iso(due_at)}"
            + (" (reservation fulfilled)" if consumed else "")
        )
        return loan

    def return_loan(self, conn: sqlite3.Connection, loan_id: int, observed_at: datetime) -> ReturnReceipt:
        """Close the loan, fix its fine as of ``observed_at`` and shelve the copy."""
        loan = self.get_loan(conn, loan_id)
        if loan.is_returned:
            raise AlreadyReturned(f"Loan {loan_id} was already returned.")
        if observed_at < loan.borrowed_at:
            raise InvalidArgument(f"Return time precedes the borrow time of loan {loan_id}.")

        policy = get_settings(conn)
        fine = calculate_fine(loan.due_at, observed_at, policy.fine_per_day)
        fine_paid = fine if fine > 0 else None

        cursor = conn.execute(
            "UPDATE loans SET status = ?, returned_at = ?, fine_paid = ? WHERE loan_id = ? AND status = 'ACTIVE'",
            (LoanStatus.RETURNED.value, to_iso(observed_at), str(fine_paid) if fine_paid is not None else None, loan_id),
        )
        if cursor.rowcount == 0:
            raise AlreadyReturned(f"Loan {loan_id} was already returned.")
        self.ledger.release_one_copy(conn, loan.item_id)

        returned = self.get_loan(conn, loan_id)
        logger.info(f"Returned loan {loan_id}: item={loan.item_id} fine={fine}")
        return ReturnReceipt(loan=returned, fine=fine)

    def renew(self, conn: sqlite3.Connection, loan_id: int, now: datetime) -> Loan:
        """Extend the due date by one loan period, counted from the current due date."""
        loan = self.get_loan(conn, loan_id)
        if loan.is_returned:
            raise AlreadyReturned(f"Loan {loan_id} was already returned.")
        if loan.due_at < now:
            raise RenewalBlocked("Overdue loans must be returned and fined before renewal.")

        policy = get_settings(conn)
        new_due = _due_after(loan.due_at, policy.loan_period_days)
        conn.execute(
            "UPDATE loans SET due_at = ?, renewal_count = renewal_count + 1 WHERE loan_id = ?",
            (to_iso(new_due), loan_id),
        )
        logger.info(f"Renewed loan {loan_id}: due {to_iso(loan.due_at)} -> {to_iso(new_due)}")
        return self.get_loan(conn, loan_id)

    def collect_fine(self, conn: sqlite3.Connection, loan_id: int, amount) -> Loan:
        """Record ``amount`` as the loan's fine, overriding any computed value."""
        value = MoneyValidator.parse_amount(amount)
        self.get_loan(conn, loan_id)
        conn.execute("UPDATE loans SET fine_paid = ? WHERE loan_id = ?", (str(value), loan_id))
        logger.info(f"Fine recorded on loan {loan_id}: {value}")
        return self.get_loan(conn, loan_id)

    # ------------------------- Queries ------------------------- #
    def fine_projection(self, conn: sqlite3.Connection, loan_id: int, as_of: datetime) -> FineProjection:
        """Fine accrued so far on an open loan; for a returned loan, the fine fixed at return."""
        loan = self.get_loan(conn, loan_id)
        if loan.is_returned:
            return FineProjection(
                loan_id=loan_id,
                as_of=loan.returned_at,
                days_overdue=days_overdue(loan.due_at, loan.returned_at),
                amount=loan.fine_paid or Decimal("0"),
            )
        policy = get_settings(conn)
        return FineProjection(
            loan_id=loan_id,
            as_of=as_of,
            days_overdue=days_overdue(loan.due_at, as_of),
            amount=calculate_fine(loan.due_at, as_of, policy.fine_per_day),
        )

    def active_loans_for_patron(self, conn: sqlite3.Connection, patron_id: int) -> List[Loan]:
        self.catalog.get_patron(conn, patron_id)
        rows = conn.execute(
            f"SELECT {_LOAN_COLUMNS} FROM loans WHERE patron_id = ? AND status = 'ACTIVE' ORDER BY borrowed_at DESC",
            (patron_id,),
        ).fetchall()
        return [Loan.from_row(row) for row in rows]

    def loan_history_for_patron(self, conn: sqlite3.Connection, patron_id: int) -> List[Loan]:
        self.catalog.get_patron(conn, patron_id)
        rows = conn.execute(
            f"SELECT {_LOAN_COLUMNS} FROM loans WHERE patron_id = ? ORDER BY borrowed_at DESC",
            (patron_id,),
        ).fetchall()
        return [Loan.from_row(row) for row in rows]

    def active_loans(self, conn: sqlite3.Connection, as_of: datetime) -> List[ActiveLoan]:
        """Every open loan in the library, most recently borrowed first."""
        policy = get_settings(conn)
        rows = conn.execute(
            f"SELECT {_LOAN_COLUMNS} FROM loans WHERE status = 'ACTIVE' ORDER BY borrowed_at DESC, loan_id DESC"
        ).fetchall()
        active = []
        for row in rows:
            loan = Loan.from_row(row)
            active.append(ActiveLoan(
                loan=loan,
                is_overdue=loan.is_overdue(as_of),
                days_until_due=days_until_due(loan.due_at, as_of),
                projected_fine=calculate_fine(loan.due_at, as_of, policy.fine_per_day),
            ))
        return active

    def overdue_loans(self, conn: sqlite3.Connection, as_of: datetime) -> List[OverdueLoan]:
        """Open loans past due as of ``as_of``, oldest due date first."""
        policy = get_settings(conn)
        rows = conn.execute(
            f"SELECT {_LOAN_COLUMNS} FROM loans WHERE status = 'ACTIVE' AND due_at < ? ORDER BY due_at ASC",
            (to_iso(as_of),),
        ).fetchall()
        overdue = []
        for row in rows:
            loan = Loan.from_row(row)
            overdue.append(OverdueLoan(
                loan=loan,
                days_overdue=days_overdue(loan.due_at, as_of),
                accrued_fine=calculate_fine(loan.due_at, as_of, policy.fine_per_day),
            ))
        return overdue

    def fines_for_patron(self, conn: sqlite3.Connection, patron_id: int, as_of: datetime) -> dict:
        """Fines recorded on the patron's loans plus fines still accruing on overdue ones."""
        self.catalog.get_patron(conn, patron_id)
        policy = get_settings(conn)
        recorded = Decimal("0")
        accruing = Decimal("0")
        rows = conn.execute(f"SELECT {_LOAN_COLUMNS} FROM loans WHERE patron_id = ?", (patron_id,)).fetchall()
        for row in rows:
            loan = Loan.from_row(row)
            if loan.fine_paid is not None and loan.fine_paid > 0:
                recorded += loan.fine_paid
            elif loan.is_overdue(as_of):
                accruing += calculate_fine(loan.due_at, as_of, policy.fine_per_day)
        return {
            "patron_id": patron_id,
            "recorded": recorded,
            "accruing": accruing,
            "total": recorded + accruing,
        }
