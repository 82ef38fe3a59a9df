from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from loanledger.clock import ensure_utc


class LoanStatus(str, Enum):
    ACTIVE = "active"
    RETURNED = "returned"


def format_instant(value: Optional[datetime]) -> Optional[str]:
    """Serialize an instant as fixed-width UTC ISO-8601 so stored values sort correctly."""
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="microseconds")


def parse_instant(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(str(value)))


class Book:
    """A title the library owns ``stock`` physical copies of."""

    def __init__(self, title: str, isbn: str, stock: int = 0, id: Optional[int] = None,
                 created_at: Optional[str] = None, updated_at: Optional[str] = None) -> None:
        self.id = id
        self.title = title.strip()
        self.isbn = isbn.strip()
        self.stock = stock
        self.created_at = created_at
        self.updated_at = updated_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.title} (ISBN: {self.isbn}, stock: {self.stock})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "isbn": self.isbn,
            "stock": self.stock,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Book":
        return Book(
            id=data.get("id"),
            title=data["title"],
            isbn=data["isbn"],
            stock=int(data.get("stock") or 0),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


class Borrower:
    """A registered library member."""

    def __init__(self, id_card_number: str, name: str, email: str, id: Optional[int] = None,
                 created_at: Optional[str] = None, updated_at: Optional[str] = None) -> None:
        self.id = id
        self.id_card_number = id_card_number.strip()
        self.name = name.strip()
        self.email = email.strip()
        self.created_at = created_at
        self.updated_at = updated_at

    def __str__(self) -> str:  # pragma: no cover - string formatting trivial
        return f"{self.name} <{self.email}> (card: {self.id_card_number})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "id_card_number": self.id_card_number,
            "name": self.name,
            "email": self.email,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Borrower":
        return Borrower(
            id=data.get("id"),
            id_card_number=data["id_card_number"],
            name=data["name"],
            email=data["email"],
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


class Loan:
    """One lending transaction. Only ``status`` and ``returned_at`` ever change."""

    def __init__(self, id: int, book_id: int, borrower_id: int, status: LoanStatus,
                 borrowed_at: datetime, due_date: datetime, returned_at: Optional[datetime] = None) -> None:
        self.id = id
        self.book_id = book_id
        self.borrower_id = borrower_id
        self.status = LoanStatus(status)
        self.borrowed_at = borrowed_at
        self.due_date = due_date
        self.returned_at = returned_at

    @property
    def is_active(self) -> bool:
        return self.status is LoanStatus.ACTIVE

    def __repr__(self) -> str:  # pragma: no cover
        return f"Loan(id={self.id}, book_id={self.book_id}, borrower_id={self.borrower_id}, status={self.status.value})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "book_id": self.book_id,
            "borrower_id": self.borrower_id,
            "status": self.status.value,
            "borrowed_at": format_instant(self.borrowed_at),
            "due_date": format_instant(self.due_date),
            "returned_at": format_instant(self.returned_at),
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> "Loan":
        return Loan(
            id=data["id"],
            book_id=data["book_id"],
            borrower_id=data["borrower_id"],
            status=LoanStatus(data["status"]),
            borrowed_at=parse_instant(data["borrowed_at"]),
            due_date=parse_instant(data["due_date"]),
            returned_at=parse_instant(data.get("returned_at")),
        )
