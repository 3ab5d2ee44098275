import logging
import sqlite3
from datetime import datetime
from functools import wraps
from typing import Callable, Optional

from circulation import database
from circulation.catalog import CatalogStore
from circulation.condition import ConditionTracker
from circulation.database import initialize_database, read_only, transaction
from circulation.errors import INTERNAL_ERRORS, CirculationError, StorageError
from circulation.ledger import AvailabilityLedger
from circulation.loans import LoanEngine
from circulation.models import DamageLevel, RecordStatus, RecordType, as_utc, utc_now
from circulation.outcome import Outcome
from circulation.reservations import ReservationQueue
from circulation import settings_provider

logger = logging.getLogger(__name__)


def _as_outcome(operation):
    """Run a public operation and report its result as an Outcome.

    Rule violations come back as failures for the caller to display. Ledger
    invariant and storage failures are logged as bugs; the transaction that
    raised them has already been rolled back.
    """
    @wraps(operation)
    def wrapper(self, *args, **kwargs):
        try:
            return Outcome.success(operation(self, *args, **kwargs))
        except INTERNAL_ERRORS as exc:
            logger.error(f"{operation.__name__} aborted: {exc.code}: {exc.message}")
            return Outcome.failure(exc)
        except CirculationError as exc:
            logger.info(f"{operation.__name__} rejected: {exc.code}: {exc.message}")
            return Outcome.failure(exc)
        except sqlite3.Error as exc:
            logger.exception(f"{operation.__name__} failed in storage")
            return Outcome.failure(StorageError(f"Storage failure during {operation.__name__}: {exc}"))
    return wrapper


class Library:
    """Circulation desk: lending, returns, reservations and loss/damage handling.

    Each mutating operation is a single database transaction, so a failure
    at any step leaves copy counts, loans and reservations as they were.
    ``clock`` returns the current time and may be replaced in tests.
    """

    def __init__(self, db_file: Optional[str] = None, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.db_file = db_file or database.DATABASE_FILE
        self.clock = clock or utc_now
        initialize_database(self.db_file)

        self.catalog = CatalogStore()
        self.ledger = AvailabilityLedger(self.catalog)
        self.loans = LoanEngine(self.catalog, self.ledger)
        self.reservations = ReservationQueue(self.catalog)
        self.conditions = ConditionTracker(self.catalog, self.ledger)

    def _now(self) -> datetime:
        return as_utc(self.clock())

    # ------------------------- Catalog (external records) ------------------------- #
    @_as_outcome
    def add_item(self, title: str, total_copies: int = 1, visible: bool = True):
        with transaction(self.db_file) as conn:
            return self.catalog.add_item(conn, title, total_copies, visible=visible)

    @_as_outcome
    def get_item(self, item_id: int):
        with read_only(self.db_file) as conn:
            return self.catalog.get_item(conn, item_id)

    @_as_outcome
    def list_items(self):
        with read_only(self.db_file) as conn:
            return self.catalog.list_items(conn)

    @_as_outcome
    def set_item_visibility(self, item_id: int, visible: bool):
        with transaction(self.db_file) as conn:
            return self.catalog.set_visibility(conn, item_id, visible)

    @_as_outcome
    def add_patron(self, name: str, email: str):
        with transaction(self.db_file) as conn:
            return self.catalog.add_patron(conn, name, email)

    # ------------------------- Settings ------------------------- #
    @_as_outcome
    def get_settings(self):
        with read_only(self.db_file) as conn:
            return settings_provider.get_settings(conn)

    @_as_outcome
    def update_settings(self, *, loan_period_days=None, fine_per_day=None, borrowing_limit=None):
        with transaction(self.db_file) as conn:
            return settings_provider.update_settings(
                conn,
                loan_period_days=loan_period_days,
                fine_per_day=fine_per_day,
                borrowing_limit=borrowing_limit,
            )

    # ------------------------- Loans ------------------------- #
    @_as_outcome
    def issue(self, patron_id: int, item_id: int):
        with transaction(self.db_file) as conn:
            return self.loans.issue(conn, patron_id, item_id, self._now())

    @_as_outcome
    def return_loan(self, loan_id: int, observed_at: Optional[datetime] = None):
        observed = as_utc(observed_at) if observed_at is not None else self._now()
        with transaction(self.db_file) as conn:
            return self.loans.return_loan(conn, loan_id, observed)

    @_as_outcome
    def renew(self, loan_id: int):
        with transaction(self.db_file) as conn:
            return self.loans.renew(conn, loan_id, self._now())

    @_as_outcome
    def collect_fine(self, loan_id: int, amount):
        with transaction(self.db_file) as conn:
            return self.loans.collect_fine(conn, loan_id, amount)

    @_as_outcome
    def get_loan(self, loan_id: int):
        with read_only(self.db_file) as conn:
            return self.loans.get_loan(conn, loan_id)

    @_as_outcome
    def active_loans_for_patron(self, patron_id: int):
        with read_only(self.db_file) as conn:
            return self.loans.active_loans_for_patron(conn, patron_id)

    @_as_outcome
    def loan_history_for_patron(self, patron_id: int):
        with read_only(self.db_file) as conn:
            return self.loans.loan_history_for_patron(conn, patron_id)

    @_as_outcome
    def active_loans(self, as_of: Optional[datetime] = None):
        moment = as_utc(as_of) if as_of is not None else self._now()
        with read_only(self.db_file) as conn:
            return self.loans.active_loans(conn, moment)

    @_as_outcome
    def overdue_loans(self, as_of: Optional[datetime] = None):
        moment = as_utc(as_of) if as_of is not None else self._now()
        with read_only(self.db_file) as conn:
            return self.loans.overdue_loans(conn, moment)

    @_as_outcome
    def current_fine_projection(self, loan_id: int, as_of: Optional[datetime] = None):
        moment = as_utc(as_of) if as_of is not None else self._now()
        with read_only(self.db_file) as conn:
            return self.loans.fine_projection(conn, loan_id, moment)

    @_as_outcome
    def patron_fines(self, patron_id: int):
        with read_only(self.db_file) as conn:
            return self.loans.fines_for_patron(conn, patron_id, self._now())

    # ------------------------- Reservations ------------------------- #
    @_as_outcome
    def reserve(self, patron_id: int, item_id: int):
        with transaction(self.db_file) as conn:
            return self.reservations.create(conn, patron_id, item_id, self._now())

    @_as_outcome
    def cancel_reservation(self, patron_id: int, item_id: int):
        with transaction(self.db_file) as conn:
            return self.reservations.cancel(conn, patron_id, item_id)

    @_as_outcome
    def reservations_for_patron(self, patron_id: int):
        with read_only(self.db_file) as conn:
            return self.reservations.for_patron(conn, patron_id)

    @_as_outcome
    def reservations_for_item(self, item_id: int):
        with read_only(self.db_file) as conn:
            return self.reservations.for_item(conn, item_id)

    # ------------------------- Lost / damaged ------------------------- #
    @_as_outcome
    def report_lost(self, item_id: int, reported_by: str, description: str = "",
                    last_seen_location: Optional[str] = None, estimated_value=None):
        with transaction(self.db_file) as conn:
            return self.conditions.report_lost(
                conn, item_id,
                reported_by=reported_by,
                description=description,
                now=self._now(),
                last_seen_location=last_seen_location,
                estimated_value=estimated_value,
            )

    @_as_outcome
    def report_damaged(self, item_id: int, reported_by: str, damage_level: DamageLevel,
                       repairable: bool = True, description: str = "", repair_cost=None):
        with transaction(self.db_file) as conn:
            return self.conditions.report_damaged(
                conn, item_id,
                reported_by=reported_by,
                description=description,
                damage_level=damage_level,
                repairable=repairable,
                now=self._now(),
                repair_cost=repair_cost,
            )

    @_as_outcome
    def update_lost_damaged_status(self, record_id: int, status: RecordStatus):
        with transaction(self.db_file) as conn:
            return self.conditions.update_status(conn, record_id, status, self._now())

    @_as_outcome
    def lost_damaged_records(self, record_type: Optional[RecordType] = None):
        with read_only(self.db_file) as conn:
            return self.conditions.records(conn, record_type)

    @_as_outcome
    def inventory_stats(self):
        with read_only(self.db_file) as conn:
            return self.conditions.inventory_stats(conn)

    @_as_outcome
    def audit_item(self, item_id: int):
        with read_only(self.db_file) as conn:
            return self.ledger.audit(conn, item_id)

    def close(self) -> None:
        """Connections are opened per operation, so there is nothing to release."""
        return None
