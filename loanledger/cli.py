import subprocess
import sys
import webbrowser
from datetime import timedelta
from typing import NoReturn, Optional

import typer

from loanledger.config import configure_logging, settings
from loanledger.errors import LendingError
from loanledger.lending import MAX_LOAN_DAYS
from loanledger.library import Library
from loanledger.ui_helpers import (
    print_books,
    print_borrowers,
    print_error,
    print_loan,
    print_loans,
    print_stats,
    set_output_mode,
)

app = typer.Typer(help="Library loan ledger CLI")

_state = {"db_file": None, "library": None}


def get_library() -> Library:
    """Library for the selected database, created on first use."""
    if _state["library"] is None:
        _state["library"] = Library(db_file=_state["db_file"] or settings.db_file)
    return _state["library"]


def _fail(error: Exception) -> NoReturn:
    print_error(str(error))
    raise typer.Exit(code=1)


@app.callback()
def _global_options(
    output: Optional[str] = typer.Option(
        None, "--output", "-o", help="Output format: plain | json | rich (default: plain)"
    ),
    db: Optional[str] = typer.Option(None, "--db", help="SQLite ledger file (default: LIBRARY_DB_FILE)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level"),
):
    """Global options (output mode, database file)."""
    configure_logging("DEBUG" if verbose else "WARNING")
    if output:
        set_output_mode(output)
    _state["db_file"] = db
    _state["library"] = None


# --- Catalogue ---
@app.command("books")
def cli_books():
    """List books with their available copies."""
    print_books(get_library().list_books())


@app.command("add-book")
def cli_add_book(
    title: str = typer.Argument(..., help="Book title"),
    isbn: str = typer.Argument(..., help="ISBN-10 or ISBN-13"),
    stock: int = typer.Option(1, "--stock", "-s", help="Number of copies owned"),
):
    """Register a book."""
    try:
        report = get_library().add_book(title=title, isbn=isbn, stock=stock)
    except LendingError as e:
        _fail(e)
    print(f"Added book {report.book.id}: {report.book.title} ({report.book.stock} copies)")


@app.command("remove-book")
def cli_remove_book(book_id: int):
    """Delete a book that has never been lent out."""
    try:
        get_library().remove_book(book_id)
    except LendingError as e:
        _fail(e)
    print(f"Book {book_id} has been removed.")


@app.command("borrowers")
def cli_borrowers():
    """List borrowers and whether they currently have a loan."""
    print_borrowers(get_library().list_borrowers())


@app.command("add-borrower")
def cli_add_borrower(
    id_card_number: str = typer.Argument(..., help="ID card number"),
    name: str = typer.Argument(..., help="Full name"),
    email: str = typer.Argument(..., help="Email address"),
):
    """Register a borrower."""
    try:
        report = get_library().add_borrower(id_card_number=id_card_number, name=name, email=email)
    except LendingError as e:
        _fail(e)
    print(f"Added borrower {report.borrower.id}: {report.borrower.name}")


# --- Loans ---
@app.command("loans")
def cli_loans(
    status: str = typer.Option("all", "--status", "-s", help="all | active | returned | overdue"),
    book_id: Optional[int] = typer.Option(None, "--book", help="Only loans of this book"),
    borrower_id: Optional[int] = typer.Option(None, "--borrower", help="Only loans of this borrower"),
):
    """List loans with their overdue state."""
    try:
        loans = get_library().list_loans(status=status, book_id=book_id, borrower_id=borrower_id)
    except ValueError as e:
        _fail(e)
    print_loans(loans)


@app.command("borrow")
def cli_borrow(
    book_id: int = typer.Argument(..., help="Book id"),
    borrower_id: int = typer.Argument(..., help="Borrower id"),
    due: Optional[str] = typer.Option(None, "--due", "-d", help="Due date (YYYY-MM-DD)"),
    days: Optional[int] = typer.Option(None, "--days", help=f"Loan length in days (max {MAX_LOAN_DAYS})"),
):
    """Lend a book to a borrower."""
    if (due is None) == (days is None):
        _fail(ValueError("Provide exactly one of --due or --days."))
    library = get_library()
    due_date = due if due is not None else library.clock.now() + timedelta(days=days)
    try:
        report = library.create_loan(book_id, borrower_id, due_date)
    except LendingError as e:
        _fail(e)
    print_loan(report, "Loan created")


@app.command("return")
def cli_return(loan_id: int):
    """Return a borrowed book."""
    try:
        report = get_library().return_loan(loan_id)
    except LendingError as e:
        _fail(e)
    print_loan(report, "Book returned")


@app.command("stats")
def cli_stats():
    """Show dashboard statistics."""
    print_stats(get_library().get_statistics())


@app.command("serve")
def serve(
    host: str = typer.Option(settings.api_host, "--host", help="Bind address"),
    port: int = typer.Option(settings.api_port, "--port", help="Port"),
    open_browser: bool = typer.Option(False, "--open", help="Open the API docs in a browser"),
):
    """Run the HTTP API with uvicorn."""
    url = f"http://{host}:{port}/docs"
    print(f"Starting API on {url}")
    if open_browser:
        webbrowser.open(url)
    subprocess.run([sys.executable, "-m", "uvicorn", "loanledger.api:app", "--host", host, "--port", str(port)])


def main() -> None:
    app()


if __name__ == "__main__":
    main()
