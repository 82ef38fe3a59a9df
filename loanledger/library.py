import logging
from typing import Any, Dict, List, Optional

from loanledger.availability import available_copies, has_active_loan
from loanledger.clock import Clock, SystemClock
from loanledger.config import settings
from loanledger.database import SQLITE_MAX_INTEGER
from loanledger.errors import (
    BookNotFound,
    BorrowerNotFound,
    ConflictError,
    InvalidRecord,
    RecordInUse,
)
from loanledger.lending import DueDate, LoanReport, LoanService
from loanledger.locks import KeyedLocks
from loanledger.models import Book, Borrower
from loanledger.store import LedgerStore
from loanledger.validators import ISBNValidator, TextValidator

logger = logging.getLogger(__name__)


class BookReport:
    """A book with its derived shelf availability."""

    def __init__(self, book: Book, active_loans: int) -> None:
        self.book = book
        self.active_loans = active_loans
        self.available_copies = available_copies(book.stock, active_loans)

    def to_dict(self) -> dict:
        data = self.book.to_dict()
        data["available_copies"] = self.available_copies
        return data


class BorrowerReport:
    """A borrower with the derived active-loan flag."""

    def __init__(self, borrower: Borrower, active_loans: int) -> None:
        self.borrower = borrower
        self.has_active_loan = has_active_loan(active_loans)

    def to_dict(self) -> dict:
        data = self.borrower.to_dict()
        data["has_active_loan"] = self.has_active_loan
        return data


class Library:
    """Wires the ledger store, clock and lending core, and manages the catalogue."""

    def __init__(self, db_file: Optional[str] = None, clock: Optional[Clock] = None) -> None:
        self.db_file = db_file or settings.db_file
        self.clock = clock or SystemClock()
        self.store = LedgerStore(self.db_file)
        self.locks = KeyedLocks()
        self.loans = LoanService(self.store, self.clock, self.locks)

    # ------------------------- Lending ------------------------- #
    def create_loan(self, book_id: int, borrower_id: int, due_date: DueDate) -> LoanReport:
        loan = self.loans.create_loan(book_id, borrower_id, due_date)
        return self.loans.get_loan(loan.id)

    def return_loan(self, loan_id: int) -> LoanReport:
        loan = self.loans.return_loan(loan_id)
        return self.loans.get_loan(loan.id)

    def get_loan(self, loan_id: int) -> LoanReport:
        return self.loans.get_loan(loan_id)

    def list_loans(self, status: Optional[str] = None, book_id: Optional[int] = None,
                   borrower_id: Optional[int] = None) -> List[LoanReport]:
        return self.loans.list_loans(status=status, book_id=book_id, borrower_id=borrower_id)

    def loan_counts(self) -> Dict[str, int]:
        return self.loans.loan_counts()

    # ------------------------- Books ------------------------- #
    def add_book(self, title: str, isbn: str, stock: int) -> BookReport:
        """Register a title with ``stock`` copies. Duplicate ISBNs are rejected."""
        book = Book(title=self._check_title(title), isbn=self._check_isbn(isbn), stock=self._check_stock(stock))
        created = self.store.insert_book(book, self.clock.now())
        logger.info(f"Book {created.id} added: {created.title} ({created.isbn}) x{created.stock}")
        return BookReport(created, 0)

    def get_book(self, book_id: int) -> BookReport:
        book = self.store.get_book(book_id)
        if book is None:
            raise BookNotFound(book_id)
        return BookReport(book, self.store.count_active_loans(book_id=book_id))

    def list_books(self) -> List[BookReport]:
        counts = self.store.active_loan_counts("book_id")
        return [BookReport(book, counts.get(book.id, 0)) for book in self.store.list_books()]

    def update_book(self, book_id: int, *, title: Optional[str] = None, isbn: Optional[str] = None,
                    stock: Optional[int] = None) -> BookReport:
        """Update title, ISBN and/or stock.

        Stock may not drop below the copies currently on loan; that would
        make ``available_copies`` negative.
        """
        if title is None and isbn is None and stock is None:
            raise InvalidRecord("Nothing to update. Provide title, isbn and/or stock.")
        changes: Dict[str, Any] = {}
        if title is not None:
            changes["title"] = self._check_title(title)
        if isbn is not None:
            changes["isbn"] = self._check_isbn(isbn)
        if stock is not None:
            changes["stock"] = self._check_stock(stock)

        with self.locks.hold(("book", book_id)):
            try:
                book = self.store.update_book(book_id, self.clock.now(), **changes)
            except ConflictError:
                active = self.store.count_active_loans(book_id=book_id)
                raise RecordInUse(
                    f"Stock cannot be lowered to {stock}: {active} copies of book {book_id} are on loan."
                ) from None
        if book is None:
            raise BookNotFound(book_id)
        logger.info(f"Book {book_id} updated: {', '.join(sorted(changes))}")
        return self.get_book(book_id)

    def remove_book(self, book_id: int) -> None:
        """Delete a book that has never been lent out."""
        with self.locks.hold(("book", book_id)):
            if self.store.get_book(book_id) is None:
                raise BookNotFound(book_id)
            if has_active_loan(self.store.count_active_loans(book_id=book_id)):
                logger.warning(f"Refused to delete book {book_id}: copies are on loan")
                raise RecordInUse(f"Book {book_id} has active loans and cannot be deleted.")
            try:
                deleted = self.store.delete_book(book_id)
            except ConflictError:
                logger.warning(f"Refused to delete book {book_id}: it has loan history")
                raise RecordInUse(f"Book {book_id} has loan history and cannot be deleted.") from None
        if not deleted:
            raise BookNotFound(book_id)
        logger.info(f"Book {book_id} deleted")

    # ------------------------- Borrowers ------------------------- #
    def add_borrower(self, id_card_number: str, name: str, email: str) -> BorrowerReport:
        borrower = Borrower(
            id_card_number=self._check_id_card(id_card_number),
            name=self._check_name(name),
            email=self._check_email(email),
        )
        created = self.store.insert_borrower(borrower, self.clock.now())
        logger.info(f"Borrower {created.id} added: {created.name} ({created.id_card_number})")
        return BorrowerReport(created, 0)

    def get_borrower(self, borrower_id: int) -> BorrowerReport:
        borrower = self.store.get_borrower(borrower_id)
        if borrower is None:
            raise BorrowerNotFound(borrower_id)
        return BorrowerReport(borrower, self.store.count_active_loans(borrower_id=borrower_id))

    def list_borrowers(self) -> List[BorrowerReport]:
        counts = self.store.active_loan_counts("borrower_id")
        return [BorrowerReport(b, counts.get(b.id, 0)) for b in self.store.list_borrowers()]

    def update_borrower(self, borrower_id: int, *, id_card_number: Optional[str] = None,
                        name: Optional[str] = None, email: Optional[str] = None) -> BorrowerReport:
        if id_card_number is None and name is None and email is None:
            raise InvalidRecord("Nothing to update. Provide id_card_number, name and/or email.")
        changes: Dict[str, Any] = {}
        if id_card_number is not None:
            changes["id_card_number"] = self._check_id_card(id_card_number)
        if name is not None:
            changes["name"] = self._check_name(name)
        if email is not None:
            changes["email"] = self._check_email(email)

        borrower = self.store.update_borrower(borrower_id, self.clock.now(), **changes)
        if borrower is None:
            raise BorrowerNotFound(borrower_id)
        logger.info(f"Borrower {borrower_id} updated: {', '.join(sorted(changes))}")
        return self.get_borrower(borrower_id)

    def remove_borrower(self, borrower_id: int) -> None:
        """Delete a borrower who has never borrowed anything."""
        with self.locks.hold(("borrower", borrower_id)):
            if self.store.get_borrower(borrower_id) is None:
                raise BorrowerNotFound(borrower_id)
            if has_active_loan(self.store.count_active_loans(borrower_id=borrower_id)):
                logger.warning(f"Refused to delete borrower {borrower_id}: active loan")
                raise RecordInUse(f"Borrower {borrower_id} has an active loan and cannot be deleted.")
            try:
                deleted = self.store.delete_borrower(borrower_id)
            except ConflictError:
                logger.warning(f"Refused to delete borrower {borrower_id}: it has loan history")
                raise RecordInUse(f"Borrower {borrower_id} has loan history and cannot be deleted.") from None
        if not deleted:
            raise BorrowerNotFound(borrower_id)
        logger.info(f"Borrower {borrower_id} deleted")

    # ------------------------- Statistics ------------------------- #
    def get_statistics(self) -> Dict[str, int]:
        """Catalogue and loan figures for the dashboard."""
        books = self.list_books()
        borrowers = self.list_borrowers()
        stats = {
            "total_books": len(books),
            "total_copies": sum(b.book.stock for b in books),
            "available_copies": sum(b.available_copies for b in books),
            "total_borrowers": len(borrowers),
            "borrowers_with_active_loan": sum(1 for b in borrowers if b.has_active_loan),
        }
        counts = self.loan_counts()
        stats.update({f"{name}_loans": value for name, value in counts.items()})
        return stats

    def health(self) -> bool:
        try:
            return self.store.ping()
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def close(self) -> None:
        """Connections are opened per operation, so there is nothing to release."""
        return None

    # ------------------------- Validation ------------------------- #
    @staticmethod
    def _check_title(title: Optional[str]) -> str:
        if not TextValidator.validate_title(title):
            raise InvalidRecord("Title cannot be empty.")
        return TextValidator.clean(title)

    @staticmethod
    def _check_isbn(isbn: Optional[str]) -> str:
        normalized = ISBNValidator.normalize_isbn(isbn)
        if not ISBNValidator.is_valid_isbn(normalized):
            raise InvalidRecord(f"Invalid ISBN: {isbn!r}.")
        return normalized

    @staticmethod
    def _check_stock(stock: Any) -> int:
        if isinstance(stock, bool) or not isinstance(stock, int) or not 0 <= stock <= SQLITE_MAX_INTEGER:
            raise InvalidRecord(f"Stock must be an integer between 0 and {SQLITE_MAX_INTEGER}.")
        return stock

    @staticmethod
    def _check_name(name: Optional[str]) -> str:
        if not TextValidator.validate_name(name):
            raise InvalidRecord("Name cannot be empty.")
        return TextValidator.clean(name)

    @staticmethod
    def _check_email(email: Optional[str]) -> str:
        if not TextValidator.validate_email(email):
            raise InvalidRecord(f"Invalid email address: {email!r}.")
        return email.strip()

    @staticmethod
    def _check_id_card(number: Optional[str]) -> str:
        if not TextValidator.validate_id_card(number):
            raise InvalidRecord("ID card number cannot be empty or contain spaces.")
        return number.strip()
