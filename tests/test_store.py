import sqlite3
from datetime import timedelta

import pytest

from loanledger.database import get_db_connection
from loanledger.errors import ConflictError
from loanledger.models import Book, LoanStatus


@pytest.fixture
def store(lib):
    return lib.store


def test_missing_records_are_none(store):
    assert store.get_book(1) is None
    assert store.get_borrower(1) is None
    assert store.get_loan(1) is None
    assert store.find_book_by_isbn("9780199535675") is None


def test_insert_loan_conflict_reasons(store, clock, make_isbn, book, borrower):
    now = clock.now()
    due = now + timedelta(days=3)

    with pytest.raises(ConflictError) as missing_book:
        store.insert_loan_if_invariants_hold(999, borrower.id, now, due)
    assert missing_book.value.reason == "book_missing"

    with pytest.raises(ConflictError) as missing_borrower:
        store.insert_loan_if_invariants_hold(book.id, 999, now, due)
    assert missing_borrower.value.reason == "borrower_missing"

    store.insert_loan_if_invariants_hold(book.id, borrower.id, now, due)

    with pytest.raises(ConflictError) as no_copy:
        store.insert_loan_if_invariants_hold(book.id, borrower.id, now, due)
    assert no_copy.value.reason == "book"

    other_book = store.insert_book(Book(title="Dubliners", isbn=make_isbn(9), stock=1), now)
    with pytest.raises(ConflictError) as busy:
        store.insert_loan_if_invariants_hold(other_book.id, borrower.id, now, due)
    assert busy.value.reason == "borrower"

    assert store.count_active_loans() == 1


def test_update_loan_return_is_conditional(store, clock, book, borrower):
    now = clock.now()
    loan = store.insert_loan_if_invariants_hold(book.id, borrower.id, now, now + timedelta(days=3))

    returned = store.update_loan_return(loan.id, now + timedelta(days=1))
    assert returned.status is LoanStatus.RETURNED
    assert returned.returned_at == now + timedelta(days=1)

    with pytest.raises(ConflictError):
        store.update_loan_return(loan.id, now + timedelta(days=2))
    with pytest.raises(ConflictError):
        store.update_loan_return(12345, now)


def test_one_active_loan_index(store, clock, db_file, make_isbn, book, borrower):
    now = clock.now()
    other = store.insert_book(Book(title="Dubliners", isbn=make_isbn(9), stock=1), now)
    store.insert_loan_if_invariants_hold(book.id, borrower.id, now, now + timedelta(days=3))

    # Writing around the store still cannot create a second active loan
    conn = get_db_connection(db_file)
    try:
        with pytest.raises(sqlite3.IntegrityError):
            conn.execute(
                "INSERT INTO loans (book_id, borrower_id, status, borrowed_at, due_date) VALUES (?, ?, 'active', ?, ?)",
                (other.id, borrower.id, "2026-03-02T09:30:00.000000+00:00", "2026-03-05T09:30:00.000000+00:00"),
            )
    finally:
        conn.close()


def test_counts_and_listing(store, clock, make_isbn, book, borrower):
    now = clock.now()
    first = store.insert_loan_if_invariants_hold(book.id, borrower.id, now, now + timedelta(days=3))
    store.update_loan_return(first.id, now + timedelta(hours=1))
    second = store.insert_loan_if_invariants_hold(book.id, borrower.id, now + timedelta(hours=2),
                                                  now + timedelta(days=4))

    assert store.count_loans(book_id=book.id) == 2
    assert store.count_active_loans(book_id=book.id) == 1
    assert store.active_loan_counts("book_id") == {book.id: 1}
    assert store.active_loan_counts("borrower_id") == {borrower.id: 1}
    assert [loan.id for loan in store.list_loans()] == [second.id, first.id]
    assert [loan.id for loan in store.list_loans(status=LoanStatus.RETURNED)] == [first.id]

    with pytest.raises(ValueError):
        store.active_loan_counts("title")


def test_instants_round_trip_in_utc(store, clock, book, borrower):
    now = clock.now()
    loan = store.insert_loan_if_invariants_hold(book.id, borrower.id, now, now + timedelta(days=3))
    stored = store.get_loan(loan.id)
    assert stored.borrowed_at == now
    assert stored.borrowed_at.utcoffset() == timedelta(0)
    assert stored.to_dict()["borrowed_at"] == "2026-03-02T09:30:00.000000+00:00"
