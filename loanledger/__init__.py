"""Library loan ledger: books, borrowers and a concurrency-safe loan lifecycle."""

from loanledger.clock import FixedClock, SystemClock
from loanledger.errors import (
    BookNotFound,
    BorrowerAlreadyHasActiveLoan,
    BorrowerNotFound,
    DuplicateRecord,
    InvalidDueDate,
    InvalidRecord,
    LedgerBusy,
    LendingError,
    LoanAlreadyReturned,
    LoanNotFound,
    NoCopiesAvailable,
    NotFoundError,
    RecordInUse,
    ValidationError,
)
from loanledger.lending import MAX_LOAN_DAYS, LoanReport, LoanService
from loanledger.library import BookReport, BorrowerReport, Library
from loanledger.models import Book, Borrower, Loan, LoanStatus
from loanledger.store import LedgerStore

__all__ = [
    # clock
    "FixedClock",
    "SystemClock",
    # models
    "Book",
    "Borrower",
    "Loan",
    "LoanStatus",
    # storage
    "LedgerStore",
    # core
    "LoanService",
    "LoanReport",
    "MAX_LOAN_DAYS",
    # facade
    "Library",
    "BookReport",
    "BorrowerReport",
    # errors
    "LendingError",
    "NotFoundError",
    "ValidationError",
    "BookNotFound",
    "BorrowerNotFound",
    "LoanNotFound",
    "InvalidDueDate",
    "NoCopiesAvailable",
    "BorrowerAlreadyHasActiveLoan",
    "LoanAlreadyReturned",
    "InvalidRecord",
    "DuplicateRecord",
    "RecordInUse",
    "LedgerBusy",
]
