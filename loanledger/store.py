"""SQLite-backed ledger store.

The store owns persistence only. It knows nothing about lending policy
beyond the two invariants it re-checks inside its write transactions
(copies left, one active loan per borrower), and it reports a lost race
as :class:`~loanledger.errors.ConflictError` rather than a domain error.
Reads that find nothing return ``None``.
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from loanledger.database import SQLITE_MAX_INTEGER, SQLITE_MIN_INTEGER, get_db_connection, initialize_database
from loanledger.errors import ConflictError, DuplicateRecord, LedgerBusy
from loanledger.models import Book, Borrower, Loan, LoanStatus, format_instant

logger = logging.getLogger(__name__)

_UNSET = object()


def _storable(*values: Optional[int]) -> bool:
    """Whether every given integer fits a SQLite INTEGER; ids outside it cannot exist."""
    return all(v is None or SQLITE_MIN_INTEGER <= v <= SQLITE_MAX_INTEGER for v in values)


class LedgerStore:
    """Keyed storage for books, borrowers and loans in one SQLite file."""

    def __init__(self, db_file: str) -> None:
        self.db_file = db_file
        initialize_database(db_file)

    # ------------------------- Connections ------------------------- #
    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = get_db_connection(self.db_file)
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction; the database write lock is taken up front."""
        with self._connection() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE")
            except sqlite3.OperationalError as e:
                logger.warning(f"Write lock on {self.db_file} not acquired: {e}")
                raise LedgerBusy() from e
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def ping(self) -> bool:
        with self._connection() as conn:
            conn.execute("SELECT 1")
        return True

    # ------------------------- Books ------------------------- #
    def get_book(self, book_id: int) -> Optional[Book]:
        if not _storable(book_id):
            return None
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
        return Book.from_dict(dict(row)) if row else None

    def find_book_by_isbn(self, isbn: str) -> Optional[Book]:
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM books WHERE isbn = ?", (isbn,)).fetchone()
        return Book.from_dict(dict(row)) if row else None

    def list_books(self) -> List[Book]:
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM books ORDER BY title COLLATE NOCASE, id").fetchall()
        return [Book.from_dict(dict(row)) for row in rows]

    def insert_book(self, book: Book, now: datetime) -> Book:
        stamp = format_instant(now)
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    "INSERT INTO books (title, isbn, stock, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                    (book.title, book.isbn, book.stock, stamp, stamp),
                )
                book_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise DuplicateRecord(f"Book with ISBN {book.isbn} already exists.") from e
        return self.get_book(book_id)

    def update_book(self, book_id: int, now: datetime, *, title=_UNSET, isbn=_UNSET, stock=_UNSET) -> Optional[Book]:
        """Update the given fields; ``None`` when the book does not exist.

        A stock change is conditional on the new stock still covering the
        book's active loans, checked in the same transaction; losing that
        check raises ``ConflictError("book")``.
        """
        if not _storable(book_id):
            return None
        try:
            with self._transaction() as conn:
                row = conn.execute("SELECT * FROM books WHERE id = ?", (book_id,)).fetchone()
                if row is None:
                    return None
                current = dict(row)
                new_stock = current["stock"] if stock is _UNSET else stock
                active = self._count_active(conn, book_id=book_id)
                if new_stock < active:
                    raise ConflictError("book", f"Book {book_id} has {active} copies on loan.")
                conn.execute(
                    "UPDATE books SET title = ?, isbn = ?, stock = ?, updated_at = ? WHERE id = ?",
                    (
                        current["title"] if title is _UNSET else title,
                        current["isbn"] if isbn is _UNSET else isbn,
                        new_stock,
                        format_instant(now),
                        book_id,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateRecord(f"Book with ISBN {isbn} already exists.") from e
        return self.get_book(book_id)

    def delete_book(self, book_id: int) -> bool:
        """Delete a book with no loan history; ``ConflictError`` if loans reference it."""
        if not _storable(book_id):
            return False
        try:
            with self._transaction() as conn:
                cursor = conn.execute("DELETE FROM books WHERE id = ?", (book_id,))
                return cursor.rowcount > 0
        except sqlite3.IntegrityError as e:
            raise ConflictError("book", f"Book {book_id} is referenced by loans.") from e

    # ------------------------- Borrowers ------------------------- #
    def get_borrower(self, borrower_id: int) -> Optional[Borrower]:
        if not _storable(borrower_id):
            return None
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM borrowers WHERE id = ?", (borrower_id,)).fetchone()
        return Borrower.from_dict(dict(row)) if row else None

    def list_borrowers(self) -> List[Borrower]:
        with self._connection() as conn:
            rows = conn.execute("SELECT * FROM borrowers ORDER BY name COLLATE NOCASE, id").fetchall()
        return [Borrower.from_dict(dict(row)) for row in rows]

    def insert_borrower(self, borrower: Borrower, now: datetime) -> Borrower:
        stamp = format_instant(now)
        try:
            with self._transaction() as conn:
                cursor = conn.execute(
                    "INSERT INTO borrowers (id_card_number, name, email, created_at, updated_at) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (borrower.id_card_number, borrower.name, borrower.email, stamp, stamp),
                )
                borrower_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise DuplicateRecord(
                f"Borrower with ID card {borrower.id_card_number} already exists."
            ) from e
        return self.get_borrower(borrower_id)

    def update_borrower(self, borrower_id: int, now: datetime, *, id_card_number=_UNSET,
                        name=_UNSET, email=_UNSET) -> Optional[Borrower]:
        if not _storable(borrower_id):
            return None
        try:
            with self._transaction() as conn:
                row = conn.execute("SELECT * FROM borrowers WHERE id = ?", (borrower_id,)).fetchone()
                if row is None:
                    return None
                current = dict(row)
                conn.execute(
                    "UPDATE borrowers SET id_card_number = ?, name = ?, email = ?, updated_at = ? WHERE id = ?",
                    (
                        current["id_card_number"] if id_card_number is _UNSET else id_card_number,
                        current["name"] if name is _UNSET else name,
                        current["email"] if email is _UNSET else email,
                        format_instant(now),
                        borrower_id,
                    ),
                )
        except sqlite3.IntegrityError as e:
            raise DuplicateRecord(f"Borrower with ID card {id_card_number} already exists.") from e
        return self.get_borrower(borrower_id)

    def delete_borrower(self, borrower_id: int) -> bool:
        if not _storable(borrower_id):
            return False
        try:
            with self._transaction() as conn:
                cursor = conn.execute("DELETE FROM borrowers WHERE id = ?", (borrower_id,))
                return cursor.rowcount > 0
        except sqlite3.IntegrityError as e:
            raise ConflictError("borrower", f"Borrower {borrower_id} is referenced by loans.") from e

    # ------------------------- Loans ------------------------- #
    @staticmethod
    def _count_active(conn: sqlite3.Connection, book_id: Optional[int] = None,
                      borrower_id: Optional[int] = None) -> int:
        query = "SELECT COUNT(*) FROM loans WHERE status = ?"
        params: list = [LoanStatus.ACTIVE.value]
        if book_id is not None:
            query += " AND book_id = ?"
            params.append(book_id)
        if borrower_id is not None:
            query += " AND borrower_id = ?"
            params.append(borrower_id)
        return conn.execute(query, params).fetchone()[0]

    def count_active_loans(self, book_id: Optional[int] = None, borrower_id: Optional[int] = None) -> int:
        if not _storable(book_id, borrower_id):
            return 0
        with self._connection() as conn:
            return self._count_active(conn, book_id=book_id, borrower_id=borrower_id)

    def count_loans(self, book_id: Optional[int] = None, borrower_id: Optional[int] = None) -> int:
        """Count loans of any status (the ledger history) for a book and/or borrower."""
        if not _storable(book_id, borrower_id):
            return 0
        query = "SELECT COUNT(*) FROM loans WHERE 1 = 1"
        params: list = []
        if book_id is not None:
            query += " AND book_id = ?"
            params.append(book_id)
        if borrower_id is not None:
            query += " AND borrower_id = ?"
            params.append(borrower_id)
        with self._connection() as conn:
            return conn.execute(query, params).fetchone()[0]

    def active_loan_counts(self, column: str) -> Dict[int, int]:
        """Map ``book_id`` or ``borrower_id`` to its number of active loans."""
        if column not in ("book_id", "borrower_id"):
            raise ValueError(f"Cannot group loans by {column!r}")
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT {column}, COUNT(*) FROM loans WHERE status = ? GROUP BY {column}",
                (LoanStatus.ACTIVE.value,),
            ).fetchall()
        return {row[0]: row[1] for row in rows}

    def get_loan(self, loan_id: int) -> Optional[Loan]:
        if not _storable(loan_id):
            return None
        with self._connection() as conn:
            row = conn.execute("SELECT * FROM loans WHERE id = ?", (loan_id,)).fetchone()
        return Loan.from_dict(dict(row)) if row else None

    def insert_loan_if_invariants_hold(self, book_id: int, borrower_id: int,
                                       borrowed_at: datetime, due_date: datetime) -> Loan:
        """Insert an active loan if a copy is free and the borrower has no active loan.

        Both conditions are read and the row written under one write lock,
        so two callers racing for the last copy (or the same borrower)
        cannot both commit.
        """
        if not _storable(book_id):
            raise ConflictError("book_missing")
        if not _storable(borrower_id):
            raise ConflictError("borrower_missing")
        try:
            with self._transaction() as conn:
                row = conn.execute("SELECT stock FROM books WHERE id = ?", (book_id,)).fetchone()
                if row is None:
                    raise ConflictError("book_missing")
                if conn.execute("SELECT 1 FROM borrowers WHERE id = ?", (borrower_id,)).fetchone() is None:
                    raise ConflictError("borrower_missing")
                if self._count_active(conn, book_id=book_id) >= row["stock"]:
                    raise ConflictError("book")
                if self._count_active(conn, borrower_id=borrower_id) > 0:
                    raise ConflictError("borrower")
                cursor = conn.execute(
                    "INSERT INTO loans (book_id, borrower_id, status, borrowed_at, due_date, returned_at) "
                    "VALUES (?, ?, ?, ?, ?, NULL)",
                    (book_id, borrower_id, LoanStatus.ACTIVE.value,
                     format_instant(borrowed_at), format_instant(due_date)),
                )
                loan_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            # Only the partial unique index can fire here
            raise ConflictError("borrower") from e
        logger.debug(f"Loan {loan_id} inserted: book={book_id} borrower={borrower_id}")
        return self.get_loan(loan_id)

    def update_loan_return(self, loan_id: int, returned_at: datetime) -> Loan:
        """Mark an active loan returned; ``ConflictError("loan")`` if it is not active."""
        if not _storable(loan_id):
            raise ConflictError("loan")
        with self._transaction() as conn:
            cursor = conn.execute(
                "UPDATE loans SET status = ?, returned_at = ? WHERE id = ? AND status = ?",
                (LoanStatus.RETURNED.value, format_instant(returned_at), loan_id, LoanStatus.ACTIVE.value),
            )
            if cursor.rowcount == 0:
                raise ConflictError("loan")
        return self.get_loan(loan_id)

    def list_loans(self, status: Optional[LoanStatus] = None, book_id: Optional[int] = None,
                   borrower_id: Optional[int] = None) -> List[Loan]:
        """Loans matching the filter, newest first."""
        if not _storable(book_id, borrower_id):
            return []
        query = "SELECT * FROM loans WHERE 1 = 1"
        params: list = []
        if status is not None:
            query += " AND status = ?"
            params.append(LoanStatus(status).value)
        if book_id is not None:
            query += " AND book_id = ?"
            params.append(book_id)
        if borrower_id is not None:
            query += " AND borrower_id = ?"
            params.append(borrower_id)
        query += " ORDER BY borrowed_at DESC, id DESC"
        with self._connection() as conn:
            rows = conn.execute(query, params).fetchall()
        return [Loan.from_dict(dict(row)) for row in rows]
