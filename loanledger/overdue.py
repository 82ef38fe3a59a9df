"""Read-side overdue evaluation.

A loan becomes overdue purely by time passing, so overdue state is never
written anywhere. Every listing, filter and count of loans goes through
these functions with a single ``now`` per request.
"""

from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional

from loanledger.clock import ensure_utc
from loanledger.models import Loan, LoanStatus

LOAN_FILTERS = ("all", "active", "returned", "overdue")

ONE_DAY = timedelta(days=1)


def is_overdue(loan: Loan, now: datetime) -> bool:
    return loan.status is LoanStatus.ACTIVE and ensure_utc(now) > loan.due_date


def days_overdue(loan: Loan, now: datetime) -> int:
    """Whole days past the due date, 0 when the loan is not overdue."""
    if not is_overdue(loan, now):
        return 0
    return max(0, (ensure_utc(now) - loan.due_date) // ONE_DAY)


def matches(loan: Loan, status_filter: Optional[str], now: datetime) -> bool:
    """Whether ``loan`` belongs in the ``status_filter`` view (all/active/returned/overdue)."""
    if status_filter in (None, "", "all"):
        return True
    if status_filter == "active":
        return loan.status is LoanStatus.ACTIVE
    if status_filter == "returned":
        return loan.status is LoanStatus.RETURNED
    if status_filter == "overdue":
        return is_overdue(loan, now)
    raise ValueError(f"Unknown loan filter {status_filter!r}; expected one of {', '.join(LOAN_FILTERS)}")


def tally(loans: Iterable[Loan], now: datetime) -> Dict[str, int]:
    """Dashboard counts; an overdue loan is counted as both active and overdue."""
    counts = {"total": 0, "active": 0, "overdue": 0, "returned": 0}
    for loan in loans:
        counts["total"] += 1
        for name in ("active", "overdue", "returned"):
            if matches(loan, name, now):
                counts[name] += 1
    return counts
