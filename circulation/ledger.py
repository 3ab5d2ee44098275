"""Availability ledger: the only code allowed to change copy counts.

Every change is a single conditional ``UPDATE`` whose ``WHERE`` clause
restates the precondition, run on the caller's connection inside the
caller's transaction. A row count of zero means the precondition did not
hold at write time, so a concurrent writer can never push
``available_copies`` below zero or above ``total_copies``.
"""

import logging
import sqlite3

from circulation.catalog import CatalogStore
from circulation.errors import InvariantViolation, OutOfStock, OverRelease
from circulation.models import AuditReport, Item

logger = logging.getLogger(__name__)


class AvailabilityLedger:

    def __init__(self, catalog: CatalogStore) -> None:
        self.catalog = catalog

    def available_copies(self, conn: sqlite3.Connection, item_id: int) -> int:
        return self.catalog.get_item(conn, item_id).available_copies

    def reserve_one_copy(self, conn: sqlite3.Connection, item_id: int) -> None:
        """Take one copy off the shelf; ``OutOfStock`` when none is free."""
        cursor = conn.execute(
            "UPDATE items SET available_copies = available_copies - 1 "
            "WHERE item_id = ? AND available_copies > 0",
            (item_id,),
        )
        if cursor.rowcount == 1:
            return
        item = self.catalog.get_item(conn, item_id)
        raise OutOfStock(f"No copies of '{item.title}' are currently available.")

    def release_one_copy(self, conn: sqlite3.Connection, item_id: int) -> None:
        """Put one copy back on the shelf; ``OverRelease`` if all copies are already there."""
        cursor = conn.execute(
            "UPDATE items SET available_copies = available_copies + 1 "
            "WHERE item_id = ? AND available_copies < total_copies",
            (item_id,),
        )
        if cursor.rowcount == 1:
            return
        item = self.catalog.get_item(conn, item_id)
        logger.error(
            f"Over-release on item {item_id}: available={item.available_copies}, total={item.total_copies}"
        )
        raise OverRelease(f"All {item.total_copies} copies of item {item_id} are already available.")

    def adjust_capacity(self, conn: sqlite3.Connection, item_id: int, delta_total: int, delta_available: int) -> Item:
        """Change both counts at once, keeping ``0 <= available <= total``.

        Used by the condition tracker to write copies off permanently.
        """
        cursor = conn.execute(
            """
            UPDATE items
            SET total_copies = total_copies + ?, available_copies = available_copies + ?
            WHERE item_id = ?
              AND available_copies + ? >= 0
              AND available_copies + ? <= total_copies + ?
            """,
            (delta_total, delta_available, item_id, delta_available, delta_available, delta_total),
        )
        item = self.catalog.get_item(conn, item_id)
        if cursor.rowcount == 1:
            return item
        logger.error(
            f"Rejected capacity change on item {item_id}: total {item.total_copies}{delta_total:+d}, "
            f"available {item.available_copies}{delta_available:+d}"
        )
        raise InvariantViolation(
            f"Adjusting item {item_id} by total {delta_total:+d} / available {delta_available:+d} "
            f"would leave its copy counts out of range."
        )

    def audit(self, conn: sqlite3.Connection, item_id: int) -> AuditReport:
        """Reconcile the counts against open loans and withdrawn loss/damage reports."""
        item = self.catalog.get_item(conn, item_id)
        open_loans = conn.execute(
            "SELECT COUNT(*) FROM loans WHERE item_id = ? AND status = 'ACTIVE'", (item_id,)
        ).fetchone()[0]
        withdrawn = conn.execute(
            """
            SELECT COUNT(*) FROM lost_damaged
            WHERE item_id = ? AND withdrawn = 1
              AND status NOT IN ('FOUND', 'REPAIRED', 'IRREPARABLE', 'REPLACED', 'CLOSED')
            """,
            (item_id,),
        ).fetchone()[0]
        report = AuditReport(
            item_id=item_id,
            total_copies=item.total_copies,
            available_copies=item.available_copies,
            open_loans=open_loans,
            withdrawn_records=withdrawn,
        )
        if not report.consistent:
            logger.error(f"Ledger drift detected: {report.to_dict()}")
        return report
