import re
from typing import Optional

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# Hyphens and spaces are printing conventions, not part of the number
_ISBN_SEPARATORS = re.compile(r"[\s-]")
_ISBN10_RE = re.compile(r"^\d{9}[\dX]$")
_ISBN13_RE = re.compile(r"^97[89]\d{10}$")


def _isbn10_checksum_ok(isbn: str) -> bool:
    # Weights 10..1; a trailing X stands for 10
    digits = [10 if ch == "X" else int(ch) for ch in isbn]
    return sum(weight * d for weight, d in zip(range(10, 0, -1), digits)) % 11 == 0


def _isbn13_checksum_ok(isbn: str) -> bool:
    # Alternating weights 1 and 3 over all thirteen digits
    return sum(int(ch) * (3 if i % 2 else 1) for i, ch in enumerate(isbn)) % 10 == 0


class ISBNValidator:
    """Catalogue ISBNs: ISBN-10 or a Bookland (978/979) ISBN-13, checksum verified."""

    @staticmethod
    def normalize_isbn(raw: Optional[str]) -> str:
        return _ISBN_SEPARATORS.sub("", raw or "").upper()

    @staticmethod
    def is_valid_isbn(isbn: Optional[str]) -> bool:
        s = ISBNValidator.normalize_isbn(isbn)
        if _ISBN10_RE.match(s):
            return _isbn10_checksum_ok(s)
        if _ISBN13_RE.match(s):
            return _isbn13_checksum_ok(s)
        return False


class TextValidator:
    """Basic checks for catalogue text fields."""

    @staticmethod
    def clean(text: Optional[str]) -> str:
        if text is None:
            return ""
        return " ".join(text.split())

    @staticmethod
    def validate_title(title: Optional[str]) -> bool:
        t = TextValidator.clean(title)
        return bool(t) and any(c.isalnum() for c in t)

    @staticmethod
    def validate_name(name: Optional[str]) -> bool:
        # must contain letters, not digits only
        t = TextValidator.clean(name)
        return bool(t) and any(c.isalpha() for c in t)

    @staticmethod
    def validate_email(email: Optional[str]) -> bool:
        if email is None:
            return False
        return bool(_EMAIL_RE.match(email.strip()))

    @staticmethod
    def validate_id_card(number: Optional[str]) -> bool:
        t = (number or "").strip()
        return bool(t) and not any(c.isspace() for c in t)
