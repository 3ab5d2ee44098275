"""Library policy settings: loan period, daily fine, borrowing limit.

The settings live in a single ``library_settings`` row that administrators
edit. The core only reads them; until the row exists, the defaults from
:mod:`circulation.config` apply (14 days, 1.00 per day, 5 loans).
"""

import logging
import sqlite3
from decimal import Decimal
from typing import Optional, Union

from circulation.config import settings as app_settings
from circulation.models import LibrarySettings
from circulation.validators import MoneyValidator, PolicyValidator

logger = logging.getLogger(__name__)

MAX_LOAN_PERIOD_DAYS = 3650
MAX_BORROWING_LIMIT = 1000


def default_settings() -> LibrarySettings:
    return LibrarySettings(
        loan_period_days=app_settings.default_loan_period_days,
        fine_per_day=app_settings.default_fine_per_day,
        borrowing_limit=app_settings.default_borrowing_limit,
    )


def get_settings(conn: sqlite3.Connection) -> LibrarySettings:
    """Current policy values, falling back to the defaults when unset."""
    row = conn.execute(
        "SELECT loan_period_days, fine_per_day, borrowing_limit FROM library_settings WHERE settings_id = 1"
    ).fetchone()
    if row is None:
        return default_settings()
    return LibrarySettings(
        loan_period_days=row["loan_period_days"],
        fine_per_day=Decimal(row["fine_per_day"]),
        borrowing_limit=row["borrowing_limit"],
    )


def update_settings(
    conn: sqlite3.Connection,
    *,
    loan_period_days: Optional[int] = None,
    fine_per_day: Union[Decimal, str, float, None] = None,
    borrowing_limit: Optional[int] = None,
) -> LibrarySettings:
    """Upsert the settings row; omitted values keep their current setting."""
    current = get_settings(conn)
    updated = LibrarySettings(
        loan_period_days=(
            PolicyValidator.positive_int(loan_period_days, field="loan_period_days", maximum=MAX_LOAN_PERIOD_DAYS)
            if loan_period_days is not None else current.loan_period_days
        ),
        fine_per_day=(
            MoneyValidator.parse_amount(fine_per_day, field="fine_per_day")
            if fine_per_day is not None else current.fine_per_day
        ),
        borrowing_limit=(
            PolicyValidator.positive_int(borrowing_limit, field="borrowing_limit", maximum=MAX_BORROWING_LIMIT)
            if borrowing_limit is not None else current.borrowing_limit
        ),
    )
    conn.execute(
        """
        INSERT INTO library_settings (settings_id, loan_period_days, fine_per_day, borrowing_limit)
        VALUES (1, ?, ?, ?)
        ON CONFLICT(settings_id) DO UPDATE SET
            loan_period_days = excluded.loan_period_days,
            fine_per_day = excluded.fine_per_day,
            borrowing_limit = excluded.borrowing_limit,
            updated_at = CURRENT_TIMESTAMP
        """,
        (updated.loan_period_days, str(updated.fine_per_day), updated.borrowing_limit),
    )
    logger.info(f"Library settings updated: {updated.to_dict()}")
    return updated
