"""Reservations: a patron's advisory claim on an item with no free copies.

Reservations gate nothing at issue time. When a copy comes back, every
holder may try to borrow it and the first successful issue wins; the issue
path deletes the winner's reservation. Listings are ordered by
``reserved_at`` for display only.
"""

import logging
import sqlite3
from datetime import datetime
from typing import List

from circulation.catalog import CatalogStore
from circulation.errors import DuplicateReservation, ItemAvailableNoReservationNeeded, ItemHidden
from circulation.models import Reservation, to_iso

logger = logging.getLogger(__name__)


class ReservationQueue:

    def __init__(self, catalog: CatalogStore) -> None:
        self.catalog = catalog

    def create(self, conn: sqlite3.Connection, patron_id: int, item_id: int, now: datetime) -> Reservation:
        self.catalog.get_patron(conn, patron_id)
        item = self.catalog.get_item(conn, item_id)
        if not item.visible:
            raise ItemHidden(f"'{item.title}' cannot be reserved.")
        if item.available_copies > 0:
            raise ItemAvailableNoReservationNeeded(
                f"'{item.title}' has {item.available_copies} copies available, no need to reserve."
            )
        try:
            cursor = conn.execute(
                "INSERT INTO reservations (patron_id, item_id, reserved_at) VALUES (?, ?, ?)",
                (patron_id, item_id, to_iso(now)),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateReservation(f"Patron {patron_id} already has a reservation for '{item.title}'.") from exc
        logger.info(f"Reservation {cursor.lastrowid} created: item={item_id} patron={patron_id}")
        return Reservation(reservation_id=cursor.lastrowid, patron_id=patron_id, item_id=item_id, reserved_at=now)

    def cancel(self, conn: sqlite3.Connection, patron_id: int, item_id: int) -> bool:
        """Delete the reservation if present. Returns whether one was removed."""
        removed = conn.execute(
            "DELETE FROM reservations WHERE patron_id = ? AND item_id = ?", (patron_id, item_id)
        ).rowcount
        if removed:
            logger.info(f"Reservation cancelled: item={item_id} patron={patron_id}")
        return bool(removed)

    def for_patron(self, conn: sqlite3.Connection, patron_id: int) -> List[Reservation]:
        self.catalog.get_patron(conn, patron_id)
        rows = conn.execute(
            "SELECT reservation_id, patron_id, item_id, reserved_at FROM reservations "
            "WHERE patron_id = ? ORDER BY reserved_at DESC",
            (patron_id,),
        ).fetchall()
        return [Reservation.from_row(row) for row in rows]

    def for_item(self, conn: sqlite3.Connection, item_id: int) -> List[Reservation]:
        self.catalog.get_item(conn, item_id)
        rows = conn.execute(
            "SELECT reservation_id, patron_id, item_id, reserved_at FROM reservations "
            "WHERE item_id = ? ORDER BY reserved_at ASC, reservation_id ASC",
            (item_id,),
        ).fetchall()
        return [Reservation.from_row(row) for row in rows]
