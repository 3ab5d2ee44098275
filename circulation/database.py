import logging
import sqlite3
from contextlib import contextmanager
from typing import Iterator, Optional

from circulation.config import settings

logger = logging.getLogger(__name__)

# Default database file. LIBRARY_DB_FILE takes precedence over the legacy
# LIBRARY_DATA_FILE (both are read by config.py); callers such as Library and
# the tests pass an explicit path instead.
DATABASE_FILE = settings.data_file


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the SQLite database.

    Connections run in autocommit mode; write paths open their own
    ``BEGIN IMMEDIATE`` transaction through :func:`transaction`.
    """
    conn = sqlite3.connect(
        db_file or DATABASE_FILE,
        timeout=settings.db_busy_timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


@contextmanager
def transaction(db_file: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Run the enclosed block as one atomic unit of work.

    ``BEGIN IMMEDIATE`` takes the database write lock up front, so two units
    that read-then-write the same rows are serialized instead of interleaved.
    Any exception rolls the whole unit back and is re-raised.
    """
    conn = get_db_connection(db_file)
    try:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")
    finally:
        conn.close()


@contextmanager
def read_only(db_file: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Connection for queries; closed on exit."""
    conn = get_db_connection(db_file)
    try:
        yield conn
    finally:
        conn.close()


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the circulation tables if they do not exist yet."""
    conn = get_db_connection(db_file)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS items (
                item_id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                total_copies INTEGER NOT NULL CHECK(total_copies >= 0),
                available_copies INTEGER NOT NULL
                    CHECK(available_copies >= 0 AND available_copies <= total_copies),
                visible INTEGER NOT NULL DEFAULT 1,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS patrons (
                patron_id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                email TEXT UNIQUE NOT NULL,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS loans (
                loan_id INTEGER PRIMARY KEY AUTOINCREMENT,
                patron_id INTEGER NOT NULL,
                item_id INTEGER NOT NULL,
                borrowed_at TEXT NOT NULL,
                due_at TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'ACTIVE' CHECK(status IN ('ACTIVE', 'RETURNED')),
                returned_at TEXT,
                fine_paid TEXT,
                renewal_count INTEGER NOT NULL DEFAULT 0,
                FOREIGN KEY (patron_id) REFERENCES patrons(patron_id),
                FOREIGN KEY (item_id) REFERENCES items(item_id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS reservations (
                reservation_id INTEGER PRIMARY KEY AUTOINCREMENT,
                patron_id INTEGER NOT NULL,
                item_id INTEGER NOT NULL,
                reserved_at TEXT NOT NULL,
                UNIQUE (item_id, patron_id),
                FOREIGN KEY (patron_id) REFERENCES patrons(patron_id),
                FOREIGN KEY (item_id) REFERENCES items(item_id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS lost_damaged (
                record_id INTEGER PRIMARY KEY AUTOINCREMENT,
                item_id INTEGER NOT NULL,
                type TEXT NOT NULL CHECK(type IN ('LOST', 'DAMAGED')),
                status TEXT NOT NULL DEFAULT 'REPORTED',
                damage_level TEXT,
                repairable INTEGER,
                reported_by TEXT NOT NULL,
                description TEXT,
                last_seen_location TEXT,
                estimated_value TEXT,
                repair_cost TEXT,
                withdrawn INTEGER NOT NULL DEFAULT 0,
                reported_at TEXT NOT NULL,
                resolved_at TEXT,
                FOREIGN KEY (item_id) REFERENCES items(item_id)
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS library_settings (
                settings_id INTEGER PRIMARY KEY CHECK(settings_id = 1),
                loan_period_days INTEGER NOT NULL,
                fine_per_day TEXT NOT NULL,
                borrowing_limit INTEGER NOT NULL,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)

        # One open loan per (patron, item)
        cursor.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_loans_open_patron_item "
            "ON loans(patron_id, item_id) WHERE status = 'ACTIVE'"
        )
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_item_status ON loans(item_id, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_patron_status ON loans(patron_id, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_due_at ON loans(due_at)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_reservations_patron ON reservations(patron_id)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_lost_damaged_item ON lost_damaged(item_id)")
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Initialize the database, creating tables when needed."""
    create_tables(db_file)
    logger.debug(f"Database ready at {db_file or DATABASE_FILE}")
