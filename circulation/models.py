"""Entities of the circulation core.

Rows come out of SQLite as ``sqlite3.Row``; each entity knows how to build
itself from one (``from_row``) and how to render itself for JSON transports
(``to_dict``). Timestamps are timezone-aware UTC datetimes stored as ISO-8601
text; money is ``Decimal`` stored as text.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Mapping, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes, convert aware ones."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    # Fixed-width UTC text so stored timestamps sort and compare as strings
    return as_utc(value).isoformat(timespec="microseconds")


def parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    if raw is None:
        return None
    return as_utc(datetime.fromisoformat(raw))


def parse_money(raw: Optional[str]) -> Optional[Decimal]:
    return Decimal(raw) if raw is not None else None


def money_str(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


class LoanStatus(str, Enum):
    ACTIVE = "ACTIVE"
    RETURNED = "RETURNED"


class RecordType(str, Enum):
    LOST = "LOST"
    DAMAGED = "DAMAGED"


class RecordStatus(str, Enum):
    REPORTED = "REPORTED"
    INVESTIGATING = "INVESTIGATING"
    FOUND = "FOUND"
    REPAIRED = "REPAIRED"
    IRREPARABLE = "IRREPARABLE"
    REPLACED = "REPLACED"
    CLOSED = "CLOSED"


TERMINAL_STATUSES = frozenset({
    RecordStatus.FOUND,
    RecordStatus.REPAIRED,
    RecordStatus.IRREPARABLE,
    RecordStatus.REPLACED,
    RecordStatus.CLOSED,
})


class DamageLevel(str, Enum):
    MINOR = "MINOR"
    MODERATE = "MODERATE"
    SEVERE = "SEVERE"


@dataclass
class Item:
    item_id: int
    title: str
    total_copies: int
    available_copies: int
    visible: bool = True

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "Item":
        return Item(
            item_id=row["item_id"],
            title=row["title"],
            total_copies=row["total_copies"],
            available_copies=row["available_copies"],
            visible=bool(row["visible"]),
        )

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "title": self.title,
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "visible": self.visible,
        }


@dataclass
class Patron:
    patron_id: int
    name: str
    email: str

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "Patron":
        return Patron(patron_id=row["patron_id"], name=row["name"], email=row["email"])

    def to_dict(self) -> dict:
        return {"patron_id": self.patron_id, "name": self.name, "email": self.email}


@dataclass
class Loan:
    """One borrow-to-return transaction for one copy of one item."""

    loan_id: int
    patron_id: int
    item_id: int
    borrowed_at: datetime
    due_at: datetime
    status: LoanStatus = LoanStatus.ACTIVE
    returned_at: Optional[datetime] = None
    fine_paid: Optional[Decimal] = None
    renewal_count: int = 0

    @property
    def is_returned(self) -> bool:
        return self.status is LoanStatus.RETURNED

    @property
    def due_date(self) -> date:
        return self.due_at.date()

    def is_overdue(self, as_of: datetime) -> bool:
        return not self.is_returned and as_of > self.due_at

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "Loan":
        return Loan(
            loan_id=row["loan_id"],
            patron_id=row["patron_id"],
            item_id=row["item_id"],
            borrowed_at=parse_timestamp(row["borrowed_at"]),
            due_at=parse_timestamp(row["due_at"]),
            status=LoanStatus(row["status"]),
            returned_at=parse_timestamp(row["returned_at"]),
            fine_paid=parse_money(row["fine_paid"]),
            renewal_count=row["renewal_count"],
        )

    def to_dict(self) -> dict:
        return {
            "loan_id": self.loan_id,
            "patron_id": self.patron_id,
            "item_id": self.item_id,
            "borrowed_at": to_iso(self.borrowed_at),
            "due_at": to_iso(self.due_at),
            "due_date": self.due_date.isoformat(),
            "status": self.status.value,
            "is_returned": self.is_returned,
            "returned_at": to_iso(self.returned_at),
            "fine_paid": money_str(self.fine_paid),
            "renewal_count": self.renewal_count,
        }


@dataclass
class Reservation:
    reservation_id: int
    patron_id: int
    item_id: int
    reserved_at: datetime

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "Reservation":
        return Reservation(
            reservation_id=row["reservation_id"],
            patron_id=row["patron_id"],
            item_id=row["item_id"],
            reserved_at=parse_timestamp(row["reserved_at"]),
        )

    def to_dict(self) -> dict:
        return {
            "reservation_id": self.reservation_id,
            "patron_id": self.patron_id,
            "item_id": self.item_id,
            "reserved_at": to_iso(self.reserved_at),
        }


@dataclass
class LostDamagedRecord:
    record_id: int
    item_id: int
    type: RecordType
    status: RecordStatus
    reported_by: str
    reported_at: datetime
    withdrawn: bool
    description: Optional[str] = None
    damage_level: Optional[DamageLevel] = None
    repairable: Optional[bool] = None
    last_seen_location: Optional[str] = None
    estimated_value: Optional[Decimal] = None
    repair_cost: Optional[Decimal] = None
    resolved_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "LostDamagedRecord":
        return LostDamagedRecord(
            record_id=row["record_id"],
            item_id=row["item_id"],
            type=RecordType(row["type"]),
            status=RecordStatus(row["status"]),
            reported_by=row["reported_by"],
            reported_at=parse_timestamp(row["reported_at"]),
            withdrawn=bool(row["withdrawn"]),
            description=row["description"],
            damage_level=DamageLevel(row["damage_level"]) if row["damage_level"] else None,
            repairable=bool(row["repairable"]) if row["repairable"] is not None else None,
            last_seen_location=row["last_seen_location"],
            estimated_value=parse_money(row["estimated_value"]),
            repair_cost=parse_money(row["repair_cost"]),
            resolved_at=parse_timestamp(row["resolved_at"]),
        )

    def to_dict(self) -> dict:
        return {
            "record_id": self.record_id,
            "item_id": self.item_id,
            "type": self.type.value,
            "status": self.status.value,
            "reported_by": self.reported_by,
            "reported_at": to_iso(self.reported_at),
            "withdrawn": self.withdrawn,
            "description": self.description,
            "damage_level": self.damage_level.value if self.damage_level else None,
            "repairable": self.repairable,
            "last_seen_location": self.last_seen_location,
            "estimated_value": money_str(self.estimated_value),
            "repair_cost": money_str(self.repair_cost),
            "resolved_at": to_iso(self.resolved_at),
        }


@dataclass(frozen=True)
class LibrarySettings:
    loan_period_days: int
    fine_per_day: Decimal
    borrowing_limit: int

    def to_dict(self) -> dict:
        return {
            "loan_period_days": self.loan_period_days,
            "fine_per_day": str(self.fine_per_day),
            "borrowing_limit": self.borrowing_limit,
        }


@dataclass(frozen=True)
class FineProjection:
    """Fine accrued on a loan as of a moment; display only, never persisted."""

    loan_id: int
    as_of: datetime
    days_overdue: int
    amount: Decimal

    def to_dict(self) -> dict:
        return {
            "loan_id": self.loan_id,
            "as_of": to_iso(self.as_of),
            "days_overdue": self.days_overdue,
            "amount": str(self.amount),
        }


@dataclass(frozen=True)
class ReturnReceipt:
    loan: Loan
    fine: Decimal

    def to_dict(self) -> dict:
        return {"loan": self.loan.to_dict(), "fine": str(self.fine)}


@dataclass(frozen=True)
class OverdueLoan:
    loan: Loan
    days_overdue: int
    accrued_fine: Decimal

    def to_dict(self) -> dict:
        return {
            "loan": self.loan.to_dict(),
            "days_overdue": self.days_overdue,
            "accrued_fine": str(self.accrued_fine),
        }


@dataclass(frozen=True)
class ActiveLoan:
    """An open loan with its standing as of a moment: time left, or fine accrued."""

    loan: Loan
    is_overdue: bool
    days_until_due: int
    projected_fine: Decimal

    def to_dict(self) -> dict:
        return {
            "loan": self.loan.to_dict(),
            "is_overdue": self.is_overdue,
            "days_until_due": self.days_until_due,
            "projected_fine": str(self.projected_fine),
        }


@dataclass(frozen=True)
class AuditReport:
    """Reconciliation of an item's copy counts against its open obligations."""

    item_id: int
    total_copies: int
    available_copies: int
    open_loans: int
    withdrawn_records: int

    @property
    def consistent(self) -> bool:
        return (
            0 <= self.available_copies <= self.total_copies
            and self.total_copies - self.available_copies == self.open_loans + self.withdrawn_records
        )

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "total_copies": self.total_copies,
            "available_copies": self.available_copies,
            "open_loans": self.open_loans,
            "withdrawn_records": self.withdrawn_records,
            "consistent": self.consistent,
        }
