import json
import os
from typing import Any, Dict, List

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

# Environment variable controlling CLI output mode
# Allowed values: 'plain' (default), 'json', 'rich'
OUTPUT_MODE_ENV = "LOANLEDGER_CLI_OUTPUT"

_console = Console()


def set_output_mode(mode: str) -> None:
    mode = (mode or "").lower().strip()
    if mode in {"plain", "json", "rich"}:
        os.environ[OUTPUT_MODE_ENV] = mode


def get_output_mode() -> str:
    return os.environ.get(OUTPUT_MODE_ENV, "plain").lower()


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False, default=str))


def print_books(books: List[Any]) -> None:
    """Print book reports.

    - plain: '<id> - <title> (ISBN <isbn>) <available>/<stock> available'
    - json: list of book dicts
    - rich: table, out-of-stock rows highlighted
    """
    mode = get_output_mode()
    if not books:
        print("No books in library.")
        return

    if mode == "json":
        _print_json([b.to_dict() for b in books])
    elif mode == "rich":
        table = Table(title="📚 Books", header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Title")
        table.add_column("ISBN", no_wrap=True)
        table.add_column("Stock", justify="right")
        table.add_column("Available", justify="right")
        for b in books:
            style = "red" if b.available_copies == 0 else None
            table.add_row(str(b.book.id), b.book.title, b.book.isbn, str(b.book.stock),
                          str(b.available_copies), style=style)
        _console.print(table)
    else:
        for b in books:
            print(f"{b.book.id} - {b.book.title} (ISBN {b.book.isbn}) {b.available_copies}/{b.book.stock} available")


def print_borrowers(borrowers: List[Any]) -> None:
    mode = get_output_mode()
    if not borrowers:
        print("No borrowers registered.")
        return

    if mode == "json":
        _print_json([b.to_dict() for b in borrowers])
    elif mode == "rich":
        table = Table(title="👥 Borrowers", header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("ID Card")
        table.add_column("Name")
        table.add_column("Email")
        table.add_column("Loan Status")
        for b in borrowers:
            status = "[yellow]Has Active Loan[/]" if b.has_active_loan else "[green]No Active Loan[/]"
            table.add_row(str(b.borrower.id), b.borrower.id_card_number, b.borrower.name, b.borrower.email, status)
        _console.print(table)
    else:
        for b in borrowers:
            status = "has active loan" if b.has_active_loan else "no active loan"
            print(f"{b.borrower.id} - {b.borrower.name} <{b.borrower.email}> [{b.borrower.id_card_number}] {status}")


def _loan_line(report: Any) -> str:
    book = report.book.title if report.book else f"book {report.loan.book_id}"
    borrower = report.borrower.name if report.borrower else f"borrower {report.loan.borrower_id}"
    return (
        f"{report.loan.id} - {book} -> {borrower} due {report.loan.due_date.date().isoformat()} "
        f"[{report.display_status}]"
    )


def print_loans(loans: List[Any]) -> None:
    mode = get_output_mode()
    if not loans:
        print("No loans found matching the current filter.")
        return

    if mode == "json":
        _print_json([r.to_dict() for r in loans])
    elif mode == "rich":
        table = Table(title="🔄 Loans", header_style="bold cyan")
        table.add_column("ID", style="magenta", no_wrap=True)
        table.add_column("Borrower")
        table.add_column("Book")
        table.add_column("Borrowed")
        table.add_column("Due")
        table.add_column("Returned")
        table.add_column("Status")
        for r in loans:
            returned = r.loan.returned_at.date().isoformat() if r.loan.returned_at else "-"
            color = "green" if r.loan.returned_at else ("red" if r.overdue else "yellow")
            table.add_row(
                str(r.loan.id),
                r.borrower.name if r.borrower else str(r.loan.borrower_id),
                r.book.title if r.book else str(r.loan.book_id),
                r.loan.borrowed_at.date().isoformat(),
                r.loan.due_date.date().isoformat(),
                returned,
                f"[{color}]{r.display_status}[/]",
            )
        _console.print(table)
    else:
        for r in loans:
            print(_loan_line(r))


def print_loan(report: Any, headline: str) -> None:
    mode = get_output_mode()
    if mode == "json":
        _print_json(report.to_dict())
    elif mode == "rich":
        _console.print(Panel.fit(_loan_line(report), title=headline, border_style="green"))
    else:
        print(f"{headline}: {_loan_line(report)}")


def print_stats(stats: Dict[str, int]) -> None:
    """Print dashboard statistics in the current output mode."""
    mode = get_output_mode()
    labels = {
        "total_books": "Total Books",
        "total_copies": "Total Copies",
        "available_copies": "Available Copies",
        "total_borrowers": "Borrowers",
        "borrowers_with_active_loan": "Borrowers With Active Loan",
        "total_loans": "Total Loans",
        "active_loans": "Active Loans",
        "overdue_loans": "Overdue Loans",
        "returned_loans": "Returned Loans",
    }
    if mode == "json":
        _print_json(stats)
    elif mode == "rich":
        content = "\n".join(f"[bold]{labels.get(k, k)}:[/] {v}" for k, v in stats.items())
        _console.print(Panel.fit(content, title="📊 Stats", border_style="blue"))
    else:
        for key, value in stats.items():
            print(f"{labels.get(key, key)}: {value}")


def print_error(message: str) -> None:
    if get_output_mode() == "rich":
        _console.print(f"[bold red]Error:[/] {message}")
    else:
        print(f"Error: {message}")
