"""Derived availability figures.

Nothing here is stored. ``available_copies`` and ``has_active_loan`` are
recomputed from the store's active loan counts whenever a book, borrower
or loan is reported, so they cannot drift from the loan ledger.
"""


def available_copies(stock: int, active_count: int) -> int:
    """Copies on the shelf, always within ``[0, stock]``."""
    return max(0, min(stock, stock - active_count))


def has_active_loan(active_count: int) -> bool:
    return active_count > 0
