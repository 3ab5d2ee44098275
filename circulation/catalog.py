"""Minimal item and patron persistence.

Catalog metadata management lives outside the circulation core; this store
only covers what circulation needs: creating records with copy counts,
looking them up, and toggling item visibility. It never changes
``available_copies`` after creation; that belongs to the availability ledger.
"""

import sqlite3
from typing import List, Optional

from circulation.errors import InvalidArgument, NotFound
from circulation.models import Item, Patron


class CatalogStore:

    def add_item(self, conn: sqlite3.Connection, title: str, total_copies: int = 1, *, visible: bool = True) -> Item:
        title = (title or "").strip()
        if not title:
            raise InvalidArgument("Title cannot be empty.")
        if isinstance(total_copies, bool) or not isinstance(total_copies, int) or total_copies < 0:
            raise InvalidArgument("total_copies must be a non-negative integer.")
        cursor = conn.execute(
            "INSERT INTO items (title, total_copies, available_copies, visible) VALUES (?, ?, ?, ?)",
            (title, total_copies, total_copies, int(visible)),
        )
        return Item(item_id=cursor.lastrowid, title=title, total_copies=total_copies,
                    available_copies=total_copies, visible=visible)

    def find_item(self, conn: sqlite3.Connection, item_id: int) -> Optional[Item]:
        row = conn.execute(
            "SELECT item_id, title, total_copies, available_copies, visible FROM items WHERE item_id = ?",
            (item_id,),
        ).fetchone()
        return Item.from_row(row) if row else None

    def get_item(self, conn: sqlite3.Connection, item_id: int) -> Item:
        item = self.find_item(conn, item_id)
        if item is None:
            raise NotFound(f"Item {item_id} not found.")
        return item

    def list_items(self, conn: sqlite3.Connection) -> List[Item]:
        rows = conn.execute(
            "SELECT item_id, title, total_copies, available_copies, visible FROM items ORDER BY title"
        ).fetchall()
        return [Item.from_row(row) for row in rows]

    def set_visibility(self, conn: sqlite3.Connection, item_id: int, visible: bool) -> Item:
        cursor = conn.execute("UPDATE items SET visible = ? WHERE item_id = ?", (int(visible), item_id))
        if cursor.rowcount == 0:
            raise NotFound(f"Item {item_id} not found.")
        return self.get_item(conn, item_id)

    def add_patron(self, conn: sqlite3.Connection, name: str, email: str) -> Patron:
        name = (name or "").strip()
        email = (email or "").strip().lower()
        if not name or not email:
            raise InvalidArgument("Patron name and email are required.")
        try:
            cursor = conn.execute("INSERT INTO patrons (name, email) VALUES (?, ?)", (name, email))
        except sqlite3.IntegrityError as exc:
            raise InvalidArgument(f"A patron with email {email} already exists.") from exc
        return Patron(patron_id=cursor.lastrowid, name=name, email=email)

    def find_patron(self, conn: sqlite3.Connection, patron_id: int) -> Optional[Patron]:
        row = conn.execute(
            "SELECT patron_id, name, email FROM patrons WHERE patron_id = ?", (patron_id,)
        ).fetchone()
        return Patron.from_row(row) if row else None

    def get_patron(self, conn: sqlite3.Connection, patron_id: int) -> Patron:
        patron = self.find_patron(conn, patron_id)
        if patron is None:
            raise NotFound(f"Patron {patron_id} not found.")
        return patron
