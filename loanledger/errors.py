"""Named failure conditions of the lending core.

Not-found conditions are ``LookupError`` subclasses and validation
conditions are ``ValueError`` subclasses, so callers that only care about
the broad category can catch the builtin type.
"""


class LendingError(Exception):
    """Base class for every condition reported to callers."""

    code = "LendingError"
    field = "base"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message())

    @classmethod
    def default_message(cls) -> str:
        return cls.code

    @property
    def message(self) -> str:
        return str(self.args[0]) if self.args else self.code


class NotFoundError(LendingError, LookupError):
    code = "NotFound"


class BookNotFound(NotFoundError):
    code = "BookNotFound"

    def __init__(self, book_id: int) -> None:
        self.book_id = book_id
        super().__init__(f"Book {book_id} not found.")


class BorrowerNotFound(NotFoundError):
    code = "BorrowerNotFound"

    def __init__(self, borrower_id: int) -> None:
        self.borrower_id = borrower_id
        super().__init__(f"Borrower {borrower_id} not found.")


class LoanNotFound(NotFoundError):
    code = "LoanNotFound"

    def __init__(self, loan_id: int) -> None:
        self.loan_id = loan_id
        super().__init__(f"Loan {loan_id} not found.")


class ValidationError(LendingError, ValueError):
    code = "ValidationError"


class InvalidDueDate(ValidationError):
    code = "InvalidDueDate"
    field = "due_date"


class NoCopiesAvailable(ValidationError):
    code = "NoCopiesAvailable"

    def __init__(self, book_id: int) -> None:
        self.book_id = book_id
        super().__init__(f"Book {book_id} is out of stock.")


class BorrowerAlreadyHasActiveLoan(ValidationError):
    code = "BorrowerAlreadyHasActiveLoan"

    def __init__(self, borrower_id: int) -> None:
        self.borrower_id = borrower_id
        super().__init__(f"Borrower {borrower_id} already has an active loan.")


class LoanAlreadyReturned(ValidationError):
    code = "LoanAlreadyReturned"

    def __init__(self, loan_id: int) -> None:
        self.loan_id = loan_id
        super().__init__(f"Loan {loan_id} has already been returned.")


class InvalidRecord(ValidationError):
    code = "InvalidRecord"


class DuplicateRecord(ValidationError):
    code = "DuplicateRecord"


class RecordInUse(ValidationError):
    code = "RecordInUse"


class LedgerBusy(LendingError):
    """The ledger stayed write-locked for longer than the SQLite timeout."""

    code = "LedgerBusy"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or "The ledger is busy; try again.")


class ConflictError(Exception):
    """Raised by the store when a conditional write loses a race.

    ``reason`` names the invariant that would have been broken:
    ``"book"`` (no copy left), ``"borrower"`` (already borrowing),
    ``"book_missing"``, ``"borrower_missing"`` or ``"loan"`` (not active).
    The lending core translates it; it is never shown to API callers.
    """

    def __init__(self, reason: str, message: str | None = None) -> None:
        self.reason = reason
        super().__init__(message or f"Concurrent write conflict ({reason}).")
