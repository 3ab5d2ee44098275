"""Lost and damaged copies.

A report may take a copy out of the lending pool (``withdrawn``): lost
copies always are, damaged ones only when the damage is severe or cannot be
repaired. Resolving the report either puts the copy back (found, repaired,
replaced) or writes it off for good (irreparable, closed), in which case the
item's total shrinks as well.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Dict, FrozenSet, List, Optional

from circulation.catalog import CatalogStore
from circulation.errors import InvalidArgument, InvalidTransition, NotFound, OutOfStock
from circulation.ledger import AvailabilityLedger
from circulation.models import TERMINAL_STATUSES, DamageLevel, LostDamagedRecord, RecordStatus, RecordType, to_iso
from circulation.validators import MoneyValidator

logger = logging.getLogger(__name__)

_RECORD_COLUMNS = (
    "record_id, item_id, type, status, damage_level, repairable, reported_by, description, "
    "last_seen_location, estimated_value, repair_cost, withdrawn, reported_at, resolved_at"
)

S = RecordStatus
TRANSITIONS: Dict[RecordType, Dict[RecordStatus, FrozenSet[RecordStatus]]] = {
    RecordType.LOST: {
        S.REPORTED: frozenset({S.INVESTIGATING, S.FOUND, S.REPLACED, S.CLOSED}),
        S.INVESTIGATING: frozenset({S.FOUND, S.REPLACED, S.CLOSED}),
    },
    RecordType.DAMAGED: {
        S.REPORTED: frozenset({S.INVESTIGATING, S.REPAIRED, S.IRREPARABLE, S.REPLACED, S.CLOSED}),
        S.INVESTIGATING: frozenset({S.REPAIRED, S.IRREPARABLE, S.REPLACED, S.CLOSED}),
    },
}

RESTORING = frozenset({S.FOUND, S.REPAIRED, S.REPLACED})
WRITE_OFF = frozenset({S.IRREPARABLE, S.CLOSED})


def allowed_transitions(record_type: RecordType, status: RecordStatus) -> FrozenSet[RecordStatus]:
    return TRANSITIONS[record_type].get(status, frozenset())


class ConditionTracker:

    def __init__(self, catalog: CatalogStore, ledger: AvailabilityLedger) -> None:
        self.catalog = catalog
        self.ledger = ledger

    def get_record(self, conn: sqlite3.Connection, record_id: int) -> LostDamagedRecord:
        row = conn.execute(
            f"SELECT {_RECORD_COLUMNS} FROM lost_damaged WHERE record_id = ?", (record_id,)
        ).fetchone()
        if row is None:
            raise NotFound(f"Lost/damaged record {record_id} not found.")
        return LostDamagedRecord.from_row(row)

    def report_lost(
        self,
        conn: sqlite3.Connection,
        item_id: int,
        *,
        reported_by: str,
        description: str,
        now: datetime,
        last_seen_location: Optional[str] = None,
        estimated_value=None,
    ) -> LostDamagedRecord:
        """Record a lost copy and take it out of the lending pool immediately."""
        reported_by = self._require_reporter(reported_by)
        value = MoneyValidator.parse_optional(estimated_value, field="estimated_value")
        self.catalog.get_item(conn, item_id)
        try:
            self.ledger.reserve_one_copy(conn, item_id)
        except OutOfStock as exc:
            raise OutOfStock(f"Item {item_id} has no copy on the shelf to mark as lost.") from exc

        cursor = conn.execute(
            """
            INSERT INTO lost_damaged
                (item_id, type, status, reported_by, description, last_seen_location,
                 estimated_value, withdrawn, reported_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?)
            """,
            (item_id, RecordType.LOST.value, S.REPORTED.value, reported_by, description,
             last_seen_location, str(value) if value is not None else None, to_iso(now)),
        )
        logger.info(f"Lost report {cursor.lastrowid} filed for item {item_id}")
        return self.get_record(conn, cursor.lastrowid)

    def report_damaged(
        self,
        conn: sqlite3.Connection,
        item_id: int,
        *,
        reported_by: str,
        description: str,
        damage_level: DamageLevel,
        repairable: bool,
        now: datetime,
        repair_cost=None,
    ) -> LostDamagedRecord:
        """Record a damaged copy; severe or unrepairable damage withdraws it."""
        reported_by = self._require_reporter(reported_by)
        try:
            level = DamageLevel(damage_level)
        except ValueError as exc:
            raise InvalidArgument(f"Unknown damage level {damage_level!r}.") from exc
        cost = MoneyValidator.parse_optional(repair_cost, field="repair_cost")
        self.catalog.get_item(conn, item_id)

        withdraw = level is DamageLevel.SEVERE or not repairable
        if withdraw:
            try:
                self.ledger.reserve_one_copy(conn, item_id)
            except OutOfStock as exc:
                raise OutOfStock(f"Item {item_id} has no copy on the shelf to withdraw.") from exc

        cursor = conn.execute(
            """
            INSERT INTO lost_damaged
                (item_id, type, status, damage_level, repairable, reported_by, description,
                 repair_cost, withdrawn, reported_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (item_id, RecordType.DAMAGED.value, S.REPORTED.value, level.value, int(bool(repairable)),
             reported_by, description, str(cost) if cost is not None else None, int(withdraw), to_iso(now)),
        )
        logger.info(
            f"Damage report {cursor.lastrowid} filed for item {item_id}: level={level.value} "
            f"repairable={bool(repairable)} withdrawn={withdraw}"
        )
        return self.get_record(conn, cursor.lastrowid)

    def update_status(
        self, conn: sqlite3.Connection, record_id: int, new_status: RecordStatus, now: datetime
    ) -> LostDamagedRecord:
        record = self.get_record(conn, record_id)
        try:
            target = RecordStatus(new_status)
        except ValueError as exc:
            raise InvalidArgument(f"Unknown status {new_status!r}.") from exc

        if record.is_terminal:
            raise InvalidTransition(
                f"Record {record_id} was already resolved as {record.status.value}; it cannot move to {target.value}."
            )
        if target not in allowed_transitions(record.type, record.status):
            raise InvalidTransition(
                f"A {record.type.value} record cannot move from {record.status.value} to {target.value}."
            )

        if record.withdrawn and target in RESTORING:
            self.ledger.release_one_copy(conn, record.item_id)
        elif record.withdrawn and target in WRITE_OFF:
            self.ledger.adjust_capacity(conn, record.item_id, -1, 0)
        elif not record.withdrawn and target is S.IRREPARABLE:
            if self.ledger.available_copies(conn, record.item_id) == 0:
                raise OutOfStock(f"The damaged copy of item {record.item_id} must be on the shelf to write it off.")
            self.ledger.adjust_capacity(conn, record.item_id, -1, -1)

        resolved_at = to_iso(now) if target in TERMINAL_STATUSES else None
        conn.execute(
            "UPDATE lost_damaged SET status = ?, resolved_at = ? WHERE record_id = ?",
            (target.value, resolved_at, record_id),
        )
        logger.info(f"Lost/damaged record {record_id}: {record.status.value} -> {target.value}")
        return self.get_record(conn, record_id)

    def records(self, conn: sqlite3.Connection, record_type: Optional[RecordType] = None) -> List[LostDamagedRecord]:
        if record_type is None:
            rows = conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM lost_damaged ORDER BY reported_at DESC, record_id DESC"
            ).fetchall()
        else:
            try:
                wanted = RecordType(record_type)
            except ValueError as exc:
                raise InvalidArgument(f"Unknown record type {record_type!r}.") from exc
            rows = conn.execute(
                f"SELECT {_RECORD_COLUMNS} FROM lost_damaged WHERE type = ? ORDER BY reported_at DESC, record_id DESC",
                (wanted.value,),
            ).fetchall()
        return [LostDamagedRecord.from_row(row) for row in rows]

    def inventory_stats(self, conn: sqlite3.Connection) -> dict:
        """Library-wide copy counts. ``checked_out`` is every copy off the shelf:
        ``on_loan`` plus ``withdrawn`` by unresolved loss/damage reports.
        """
        totals = conn.execute(
            "SELECT COUNT(*), COALESCE(SUM(total_copies), 0), COALESCE(SUM(available_copies), 0) FROM items"
        ).fetchone()
        on_loan = conn.execute("SELECT COUNT(*) FROM loans WHERE status = 'ACTIVE'").fetchone()[0]
        terminal = tuple(status.value for status in TERMINAL_STATUSES)
        withdrawn = conn.execute(
            f"SELECT COUNT(*) FROM lost_damaged WHERE withdrawn = 1 AND status NOT IN ({', '.join('?' * len(terminal))})",
            terminal,
        ).fetchone()[0]
        by_type = {
            row["type"]: row["n"]
            for row in conn.execute("SELECT type, COUNT(*) AS n FROM lost_damaged GROUP BY type").fetchall()
        }
        return {
            "total_items": totals[0],
            "total_copies": totals[1],
            "available_copies": totals[2],
            "checked_out": totals[1] - totals[2],
            "on_loan": on_loan,
            "withdrawn": withdrawn,
            "lost_reports": by_type.get(RecordType.LOST.value, 0),
            "damaged_reports": by_type.get(RecordType.DAMAGED.value, 0),
        }

    @staticmethod
    def _require_reporter(reported_by: str) -> str:
        reported_by = (reported_by or "").strip()
        if not reported_by:
            raise InvalidArgument("reported_by is required.")
        return reported_by
