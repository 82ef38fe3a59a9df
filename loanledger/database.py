import logging
import os
import sqlite3
from typing import Optional

from loanledger.config import settings

logger = logging.getLogger(__name__)

# Default database file.
# Priority:
# 1) LIBRARY_DB_FILE (read through settings / .env)
# 2) library.db in the working directory
DATABASE_FILE = settings.db_file

# SQLite INTEGER columns are signed 64-bit
SQLITE_MAX_INTEGER = 2**63 - 1
SQLITE_MIN_INTEGER = -(2**63)


def get_db_connection(db_file: Optional[str] = None) -> sqlite3.Connection:
    """Open a connection to the ledger database.

    Connections run in autocommit mode (``isolation_level=None``) so callers
    open their own ``BEGIN IMMEDIATE`` transactions around conditional writes.
    """
    conn = sqlite3.connect(
        db_file or DATABASE_FILE,
        timeout=settings.sqlite_timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    # WAL lets readers proceed while a loan transaction holds the write lock
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    conn.execute("PRAGMA foreign_keys=ON;")
    return conn


def create_tables(db_file: Optional[str] = None) -> None:
    """Create the ledger tables if they do not exist."""
    conn = get_db_connection(db_file)
    try:
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS books (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                title TEXT NOT NULL,
                isbn TEXT NOT NULL UNIQUE,
                stock INTEGER NOT NULL DEFAULT 0 CHECK(stock >= 0),
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS borrowers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                id_card_number TEXT NOT NULL UNIQUE,
                name TEXT NOT NULL,
                email TEXT NOT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        # Append-only: rows are never deleted, and the referenced book/borrower
        # cannot be deleted while a loan points at it.
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS loans (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                book_id INTEGER NOT NULL REFERENCES books(id) ON DELETE RESTRICT,
                borrower_id INTEGER NOT NULL REFERENCES borrowers(id) ON DELETE RESTRICT,
                status TEXT NOT NULL DEFAULT 'active' CHECK(status IN ('active', 'returned')),
                borrowed_at TEXT NOT NULL,
                due_date TEXT NOT NULL,
                returned_at TEXT,
                CHECK(due_date > borrowed_at),
                CHECK((status = 'active') = (returned_at IS NULL))
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_book_status ON loans(book_id, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_borrower_status ON loans(borrower_id, status)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_loans_status_due ON loans(status, due_date)")
        # Last line of defence for the one-active-loan rule
        cursor.execute(
            "CREATE UNIQUE INDEX IF NOT EXISTS idx_loans_one_active_per_borrower "
            "ON loans(borrower_id) WHERE status = 'active'"
        )
    finally:
        conn.close()


def initialize_database(db_file: Optional[str] = None) -> None:
    """Initialize the database, creating the tables when needed."""
    target = db_file or DATABASE_FILE
    directory = os.path.dirname(os.path.abspath(target))
    os.makedirs(directory, exist_ok=True)
    create_tables(target)
    logger.info(f"Ledger database ready at {target}")
