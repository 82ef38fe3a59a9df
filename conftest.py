from datetime import datetime, timezone

import pytest

from loanledger.clock import FixedClock
from loanledger.library import Library
from loanledger.ui_helpers import OUTPUT_MODE_ENV

# A Monday morning, so "N days later" arithmetic is easy to eyeball
START = datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)


def _isbn13(n: int) -> str:
    body = f"978{n:09d}"
    total = sum(int(ch) * (1 if i % 2 == 0 else 3) for i, ch in enumerate(body))
    return body + str((10 - total % 10) % 10)


@pytest.fixture
def make_isbn():
    """Return a factory producing distinct valid ISBN-13s."""
    return _isbn13


@pytest.fixture
def clock():
    return FixedClock(START)


@pytest.fixture
def db_file(tmp_path, request):
    # Unique database file per test
    return str(tmp_path / f"test_{request.node.name}.db")


@pytest.fixture
def lib(db_file, clock):
    lib = Library(db_file=db_file, clock=clock)
    yield lib
    lib.close()


@pytest.fixture
def book(lib):
    """A single-copy book."""
    return lib.add_book("Ulysses", "9780199535675", stock=1).book


@pytest.fixture
def borrower(lib):
    return lib.add_borrower("ID-1001", "Ada Lovelace", "ada@example.com").borrower


@pytest.fixture(autouse=True)
def _plain_cli_output(monkeypatch):
    # The CLI stores its output mode in the environment
    monkeypatch.delenv(OUTPUT_MODE_ENV, raising=False)
