from datetime import datetime, timedelta, timezone

import pytest

from loanledger.clock import FixedClock
from loanledger.models import Loan, LoanStatus
from loanledger.overdue import days_overdue, is_overdue, matches, tally

T = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_loan(status=LoanStatus.ACTIVE, due=T, loan_id=1):
    return Loan(
        id=loan_id,
        book_id=1,
        borrower_id=loan_id,
        status=status,
        borrowed_at=due - timedelta(days=14),
        due_date=due,
        returned_at=due if status is LoanStatus.RETURNED else None,
    )


def test_not_overdue_at_due_instant():
    loan = make_loan()
    assert is_overdue(loan, T) is False
    assert days_overdue(loan, T) == 0


def test_overdue_one_second_later():
    loan = make_loan()
    assert is_overdue(loan, T + timedelta(seconds=1)) is True
    assert days_overdue(loan, T + timedelta(seconds=1)) == 0


def test_days_overdue_grows_one_per_day():
    loan = make_loan()
    clock = FixedClock(T + timedelta(seconds=1))
    seen = []
    for _ in range(4):
        seen.append(days_overdue(loan, clock.now()))
        clock.advance(days=1)
    assert seen == [0, 1, 2, 3]


def test_whole_days_are_floored():
    loan = make_loan()
    assert days_overdue(loan, T + timedelta(days=2, hours=23, minutes=59)) == 2
    assert days_overdue(loan, T + timedelta(days=3)) == 3


def test_returned_loan_is_never_overdue():
    loan = make_loan(status=LoanStatus.RETURNED)
    later = T + timedelta(days=40)
    assert is_overdue(loan, later) is False
    assert days_overdue(loan, later) == 0


def test_naive_now_is_treated_as_utc():
    loan = make_loan()
    assert is_overdue(loan, datetime(2026, 5, 1, 12, 0, 1)) is True


def test_matches_filters():
    now = T + timedelta(days=1)
    active = make_loan(due=T + timedelta(days=5), loan_id=1)
    late = make_loan(due=T, loan_id=2)
    returned = make_loan(status=LoanStatus.RETURNED, loan_id=3)

    assert [matches(x, "all", now) for x in (active, late, returned)] == [True, True, True]
    assert [matches(x, None, now) for x in (active, late, returned)] == [True, True, True]
    assert [matches(x, "active", now) for x in (active, late, returned)] == [True, True, False]
    assert [matches(x, "overdue", now) for x in (active, late, returned)] == [False, True, False]
    assert [matches(x, "returned", now) for x in (active, late, returned)] == [False, False, True]

    with pytest.raises(ValueError):
        matches(active, "missing", now)


def test_tally_counts_overdue_as_active():
    now = T + timedelta(days=1)
    loans = [
        make_loan(due=T + timedelta(days=5), loan_id=1),
        make_loan(due=T, loan_id=2),
        make_loan(status=LoanStatus.RETURNED, loan_id=3),
    ]
    assert tally(loans, now) == {"total": 3, "active": 2, "overdue": 1, "returned": 1}
    assert tally([], now) == {"total": 0, "active": 0, "overdue": 0, "returned": 0}
