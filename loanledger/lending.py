"""Loan lifecycle core.

``LoanService`` is the only code that creates loans or moves them to
``returned``. Every rule is checked against the store while the affected
book and borrower (or loan) are locked, and the write itself is a
conditional insert/update that re-checks the invariants in one SQLite
transaction. A lost race is retried once and otherwise reported in the
same vocabulary as an ordinary failed precondition.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Union

from loanledger.availability import available_copies, has_active_loan
from loanledger.clock import Clock, SystemClock, ensure_utc
from loanledger.errors import (
    BookNotFound,
    BorrowerAlreadyHasActiveLoan,
    BorrowerNotFound,
    ConflictError,
    InvalidDueDate,
    LendingError,
    LoanAlreadyReturned,
    LoanNotFound,
    NoCopiesAvailable,
)
from loanledger.locks import KeyedLocks
from loanledger.models import Book, Borrower, Loan, LoanStatus
from loanledger.overdue import LOAN_FILTERS, days_overdue, is_overdue, matches, tally
from loanledger.store import LedgerStore

logger = logging.getLogger(__name__)

# Lending policy
MAX_LOAN_DAYS = 30
MAX_LOAN_PERIOD = timedelta(days=MAX_LOAN_DAYS)
MAX_CREATE_ATTEMPTS = 2

DueDate = Union[date, datetime, str]


def _parse_due_text(text: str) -> Union[date, datetime]:
    # A bare calendar date parses as a date; anything with a time part as a datetime
    try:
        return date.fromisoformat(text)
    except ValueError:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))


def normalize_due_date(value: DueDate, now: datetime) -> datetime:
    """Turn a requested due date into an aware UTC instant.

    A calendar date (``date`` or an ISO date string) is anchored to the
    current UTC time of day, so a date 30 days out is exactly the limit.
    """
    try:
        if isinstance(value, str):
            value = _parse_due_text(value.strip())
        if isinstance(value, datetime):
            return ensure_utc(value)
        if isinstance(value, date):
            return datetime.combine(value, ensure_utc(now).timetz())
    except (ValueError, OverflowError):
        raise InvalidDueDate(f"Due date {value!r} is not a valid date.") from None
    raise InvalidDueDate(f"Due date {value!r} is not a valid date.")


class LoanReport:
    """A loan as shown to callers, with its derived overdue state."""

    def __init__(self, loan: Loan, now: datetime, book: Optional[Book] = None,
                 borrower: Optional[Borrower] = None, book_active_loans: int = 0,
                 borrower_active_loans: int = 0) -> None:
        self.loan = loan
        self.book = book
        self.borrower = borrower
        self.available_copies = available_copies(book.stock, book_active_loans) if book else None
        self.has_active_loan = has_active_loan(borrower_active_loans)
        self.overdue = is_overdue(loan, now)
        self.days_overdue = days_overdue(loan, now)

    @property
    def id(self) -> int:
        return self.loan.id

    @property
    def status(self) -> LoanStatus:
        return self.loan.status

    @property
    def display_status(self) -> str:
        if self.loan.status is LoanStatus.RETURNED:
            return "Returned"
        if self.overdue:
            return f"Overdue ({self.days_overdue} days)"
        return "Active"

    def to_dict(self) -> dict:
        data = self.loan.to_dict()
        data["overdue"] = self.overdue
        data["days_overdue"] = self.days_overdue
        data["book"] = (
            {
                "id": self.book.id,
                "title": self.book.title,
                "isbn": self.book.isbn,
                "available_copies": self.available_copies,
            }
            if self.book
            else None
        )
        data["borrower"] = (
            {
                "id": self.borrower.id,
                "name": self.borrower.name,
                "id_card_number": self.borrower.id_card_number,
                "has_active_loan": self.has_active_loan,
            }
            if self.borrower
            else None
        )
        return data


class LoanService:
    """Creates and returns loans and reports on the ledger."""

    def __init__(self, store: LedgerStore, clock: Optional[Clock] = None,
                 locks: Optional[KeyedLocks] = None) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.locks = locks or KeyedLocks()

    # ------------------------- Commands ------------------------- #
    def create_loan(self, book_id: int, borrower_id: int, due_date: DueDate) -> Loan:
        """Lend one copy of ``book_id`` to ``borrower_id`` until ``due_date``.

        Raises BookNotFound, BorrowerNotFound, NoCopiesAvailable,
        BorrowerAlreadyHasActiveLoan or InvalidDueDate (checked in that
        order); nothing is written when any of them is raised.
        """
        with self.locks.hold(("book", book_id), ("borrower", borrower_id)):
            for attempt in range(1, MAX_CREATE_ATTEMPTS + 1):
                now = self.clock.now()
                due = self._check_create(book_id, borrower_id, due_date, now)
                try:
                    loan = self.store.insert_loan_if_invariants_hold(book_id, borrower_id, now, due)
                except ConflictError as e:
                    if attempt < MAX_CREATE_ATTEMPTS:
                        logger.warning(
                            f"Loan insert for book={book_id} borrower={borrower_id} lost a race "
                            f"({e.reason}); re-validating"
                        )
                        continue
                    raise self._translate_conflict(e, book_id, borrower_id) from None
                logger.info(
                    f"Loan {loan.id} created: book={book_id} borrower={borrower_id} "
                    f"due={loan.due_date.isoformat()}"
                )
                return loan
        raise AssertionError("unreachable")  # pragma: no cover

    def return_loan(self, loan_id: int) -> Loan:
        """Close an active loan. A second return raises LoanAlreadyReturned."""
        with self.locks.hold(("loan", loan_id)):
            loan = self.store.get_loan(loan_id)
            if loan is None:
                raise LoanNotFound(loan_id)
            if loan.status is LoanStatus.RETURNED:
                raise LoanAlreadyReturned(loan_id)
            try:
                returned = self.store.update_loan_return(loan_id, self.clock.now())
            except ConflictError:
                # Someone else (another process) returned it first
                if self.store.get_loan(loan_id) is None:
                    raise LoanNotFound(loan_id) from None
                raise LoanAlreadyReturned(loan_id) from None
        logger.info(f"Loan {loan_id} returned: book={returned.book_id} borrower={returned.borrower_id}")
        return returned

    # ------------------------- Queries ------------------------- #
    def get_loan(self, loan_id: int) -> LoanReport:
        loan = self.store.get_loan(loan_id)
        if loan is None:
            raise LoanNotFound(loan_id)
        return LoanReport(
            loan,
            self.clock.now(),
            book=self.store.get_book(loan.book_id),
            borrower=self.store.get_borrower(loan.borrower_id),
            book_active_loans=self.store.count_active_loans(book_id=loan.book_id),
            borrower_active_loans=self.store.count_active_loans(borrower_id=loan.borrower_id),
        )

    def list_loans(self, status: Optional[str] = None, book_id: Optional[int] = None,
                   borrower_id: Optional[int] = None) -> List[LoanReport]:
        """Loans in the ``status`` view (all, active, returned or overdue), newest first."""
        if status not in (None, *LOAN_FILTERS):
            raise ValueError(f"Unknown loan filter {status!r}; expected one of {', '.join(LOAN_FILTERS)}")
        stored_status = {"active": LoanStatus.ACTIVE, "overdue": LoanStatus.ACTIVE,
                         "returned": LoanStatus.RETURNED}.get(status or "all")
        loans = self.store.list_loans(status=stored_status, book_id=book_id, borrower_id=borrower_id)
        now = self.clock.now()
        books: Dict[int, Book] = {b.id: b for b in self.store.list_books()}
        borrowers: Dict[int, Borrower] = {b.id: b for b in self.store.list_borrowers()}
        on_loan = self.store.active_loan_counts("book_id")
        borrowing = self.store.active_loan_counts("borrower_id")
        return [
            LoanReport(
                loan,
                now,
                book=books.get(loan.book_id),
                borrower=borrowers.get(loan.borrower_id),
                book_active_loans=on_loan.get(loan.book_id, 0),
                borrower_active_loans=borrowing.get(loan.borrower_id, 0),
            )
            for loan in loans
            if matches(loan, status, now)
        ]

    def loan_counts(self) -> Dict[str, int]:
        """Total, active, overdue and returned loan counts."""
        return tally(self.store.list_loans(), self.clock.now())

    # ------------------------- Helpers ------------------------- #
    def _check_create(self, book_id: int, borrower_id: int, due_date: DueDate, now: datetime) -> datetime:
        book = self.store.get_book(book_id)
        if book is None:
            raise BookNotFound(book_id)
        if self.store.get_borrower(borrower_id) is None:
            raise BorrowerNotFound(borrower_id)
        if available_copies(book.stock, self.store.count_active_loans(book_id=book_id)) <= 0:
            raise NoCopiesAvailable(book_id)
        if has_active_loan(self.store.count_active_loans(borrower_id=borrower_id)):
            raise BorrowerAlreadyHasActiveLoan(borrower_id)

        due = normalize_due_date(due_date, now)
        if due <= now:
            raise InvalidDueDate("Due date must be in the future.")
        if due > now + MAX_LOAN_PERIOD:
            raise InvalidDueDate(f"Loan duration cannot exceed {MAX_LOAN_DAYS} days.")
        return due

    @staticmethod
    def _translate_conflict(error: ConflictError, book_id: int, borrower_id: int) -> LendingError:
        if error.reason == "book_missing":
            return BookNotFound(book_id)
        if error.reason == "borrower_missing":
            return BorrowerNotFound(borrower_id)
        if error.reason == "borrower":
            return BorrowerAlreadyHasActiveLoan(borrower_id)
        return NoCopiesAvailable(book_id)
