from datetime import timedelta

import pytest

from loanledger.errors import (
    BookNotFound,
    BorrowerNotFound,
    DuplicateRecord,
    InvalidRecord,
    RecordInUse,
)
from loanledger.library import Library


def test_add_list_and_get_book(lib):
    assert lib.list_books() == []

    report = lib.add_book("  Ulysses ", "978-0-19-953567-5", stock=2)
    assert report.book.id is not None
    assert report.book.title == "Ulysses"
    assert report.book.isbn == "9780199535675"
    assert report.available_copies == 2

    books = lib.list_books()
    assert len(books) == 1
    assert books[0].to_dict()["available_copies"] == 2
    assert lib.get_book(report.book.id).book.title == "Ulysses"


def test_add_duplicate_isbn(lib):
    lib.add_book("Ulysses", "9780199535675", stock=1)
    with pytest.raises(DuplicateRecord, match="already exists"):
        lib.add_book("Ulysses again", "9780199535675", stock=1)
    assert len(lib.list_books()) == 1


@pytest.mark.parametrize(
    "title, isbn, stock",
    [
        ("", "9780199535675", 1),
        ("Ulysses", "12345", 1),
        ("Ulysses", "9780199535676", 1),
        ("Ulysses", "9780199535675", -1),
        ("Ulysses", "9780199535675", True),
    ],
)
def test_add_book_validation(lib, title, isbn, stock):
    with pytest.raises(InvalidRecord):
        lib.add_book(title, isbn, stock=stock)
    assert lib.list_books() == []


def test_isbn10_is_accepted(lib):
    assert lib.add_book("Old Edition", "0-306-40615-2", stock=1).book.isbn == "0306406152"


def test_persistence(db_file, clock):
    lib = Library(db_file=db_file, clock=clock)
    lib.add_book("Sapiens", "9780099590088", stock=4)

    # A new instance reads the same ledger file
    lib2 = Library(db_file=db_file, clock=clock)
    books = lib2.list_books()
    assert len(books) == 1
    assert books[0].book.title == "Sapiens"


def test_update_book_partial(lib):
    book = lib.add_book("Original Title", "9780199535675", stock=1).book

    updated = lib.update_book(book.id, title="Only Title Changed")
    assert updated.book.title == "Only Title Changed"
    assert updated.book.stock == 1

    updated = lib.update_book(book.id, stock=5)
    assert updated.book.title == "Only Title Changed"
    assert updated.available_copies == 5


def test_update_book_requires_changes(lib, book):
    with pytest.raises(InvalidRecord):
        lib.update_book(book.id)


def test_update_book_not_found(lib):
    with pytest.raises(BookNotFound):
        lib.update_book(404, title="New Title")


def test_update_book_isbn_clash(lib, book):
    other = lib.add_book("Sapiens", "9780099590088", stock=1).book
    with pytest.raises(DuplicateRecord):
        lib.update_book(other.id, isbn=book.isbn)


def test_stock_cannot_drop_below_active_loans(lib, clock, make_isbn, borrower):
    book = lib.add_book("Popular", make_isbn(5), stock=2).book
    lib.create_loan(book.id, borrower.id, clock.now() + timedelta(days=5))

    with pytest.raises(RecordInUse):
        lib.update_book(book.id, stock=0)

    report = lib.update_book(book.id, stock=1)
    assert report.available_copies == 0
    assert report.book.stock == 1


def test_remove_unused_book(lib, book):
    lib.remove_book(book.id)
    with pytest.raises(BookNotFound):
        lib.get_book(book.id)
    with pytest.raises(BookNotFound):
        lib.remove_book(book.id)


def test_remove_book_on_loan_is_refused(lib, clock, book, borrower):
    lib.create_loan(book.id, borrower.id, clock.now() + timedelta(days=5))
    with pytest.raises(RecordInUse, match="active loans"):
        lib.remove_book(book.id)


def test_remove_book_with_history_is_refused(lib, clock, book, borrower):
    report = lib.create_loan(book.id, borrower.id, clock.now() + timedelta(days=5))
    lib.return_loan(report.id)
    with pytest.raises(RecordInUse, match="history"):
        lib.remove_book(book.id)
    # the ledger still resolves the book
    assert lib.get_loan(report.id).book.title == "Ulysses"


def test_borrower_lifecycle(lib):
    report = lib.add_borrower("ID-1", "Ada Lovelace", "ada@example.com")
    assert report.has_active_loan is False
    assert report.to_dict()["has_active_loan"] is False

    updated = lib.update_borrower(report.borrower.id, email="ada@analytical.org")
    assert updated.borrower.email == "ada@analytical.org"
    assert updated.borrower.name == "Ada Lovelace"

    lib.remove_borrower(report.borrower.id)
    assert lib.list_borrowers() == []


@pytest.mark.parametrize(
    "card, name, email",
    [
        ("", "Ada", "ada@example.com"),
        ("ID 1", "Ada", "ada@example.com"),
        ("ID-1", "   ", "ada@example.com"),
        ("ID-1", "1234", "ada@example.com"),
        ("ID-1", "Ada", "not-an-email"),
    ],
)
def test_add_borrower_validation(lib, card, name, email):
    with pytest.raises(InvalidRecord):
        lib.add_borrower(card, name, email)


def test_duplicate_id_card(lib, borrower):
    with pytest.raises(DuplicateRecord):
        lib.add_borrower(borrower.id_card_number, "Someone Else", "else@example.com")


def test_borrower_not_found(lib):
    with pytest.raises(BorrowerNotFound):
        lib.get_borrower(5)
    with pytest.raises(BorrowerNotFound):
        lib.update_borrower(5, name="Nobody")
    with pytest.raises(BorrowerNotFound):
        lib.remove_borrower(5)


def test_remove_borrower_with_active_loan_is_refused(lib, clock, book, borrower):
    lib.create_loan(book.id, borrower.id, clock.now() + timedelta(days=5))
    with pytest.raises(RecordInUse):
        lib.remove_borrower(borrower.id)
    assert lib.get_borrower(borrower.id).has_active_loan is True


def test_statistics(lib, clock, make_isbn, book, borrower):
    other = lib.add_book("Dubliners", make_isbn(3), stock=3).book
    second = lib.add_borrower("ID-2", "Grace Hopper", "grace@example.com").borrower
    lib.add_borrower("ID-3", "Alan Turing", "alan@example.com")

    lib.create_loan(book.id, borrower.id, clock.now() + timedelta(days=1))
    done = lib.create_loan(other.id, second.id, clock.now() + timedelta(days=10))
    lib.return_loan(done.id)
    clock.advance(days=2)

    assert lib.get_statistics() == {
        "total_books": 2,
        "total_copies": 4,
        "available_copies": 3,
        "total_borrowers": 3,
        "borrowers_with_active_loan": 1,
        "total_loans": 2,
        "active_loans": 1,
        "overdue_loans": 1,
        "returned_loans": 1,
    }


def test_health(lib):
    assert lib.health() is True


def test_ids_beyond_sqlite_range(lib, book):
    huge = 2**70
    with pytest.raises(BookNotFound):
        lib.get_book(huge)
    with pytest.raises(BookNotFound):
        lib.update_book(huge, title="Nowhere")
    with pytest.raises(BorrowerNotFound):
        lib.update_borrower(-huge, name="Nobody")
    assert lib.list_loans(book_id=huge) == []

    with pytest.raises(InvalidRecord):
        lib.add_book("Too Many", "9780099590088", stock=2**63)
    with pytest.raises(InvalidRecord):
        lib.update_book(book.id, stock=2**63)
    assert lib.get_book(book.id).book.stock == 1
